"""CLI contract tests for `comp-reduce` commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import numpy as np
import pytest
from astropy.io import fits
from click.testing import CliRunner

from comp_reduce import __version__
from comp_reduce.cli.common_cli import EXIT_INPUT_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR
from comp_reduce.cli.main import cli, main
from comp_reduce.config import FrameLayout
from comp_reduce.geometry.circle import Circle
from comp_reduce.pipeline import quick_invert_filenames
from tests.fixtures.synthetic import (
    current_geometry_header,
    make_annulus_image,
    make_frame,
    make_line_stack,
    write_stack_file,
)

SHAPE = (40, 40)
DATE = "20150401"

LAYOUT = FrameLayout(frame_shape=(420, 420), beam_shape=(200, 200))
FLAT_PAYLOAD = {
    "occulter1": {"x": 1.0, "y": -2.0, "r": 50.0},
    "occulter2": {"x": -2.0, "y": 1.0, "r": 50.0},
    "field1": {"x": 0.0, "y": 0.0, "r": 85.0},
    "field2": {"x": 0.0, "y": 0.0, "r": 85.0},
    "post_angle1": 88.0,
    "post_angle2": 92.0,
}


def _write_json(path: Path, payload: dict) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _write_header_file(path: Path, header: fits.Header) -> Path:
    hdu = fits.PrimaryHDU()
    hdu.header.update(header)
    hdu.writeto(path)
    return path


def _geometry_header() -> fits.Header:
    return current_geometry_header(
        SHAPE, occulter=Circle(0.0, 0.0, 5.0), field=Circle(0.0, 0.0, 18.0)
    )


@pytest.fixture
def small_calibration(tmp_path: Path) -> Path:
    return _write_json(tmp_path / "calibration.json", {"post_width": 4.0})


def test_version_option() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestQuickInvertCommand:
    def test_success_writes_summary(self, tmp_path: Path, small_calibration: Path) -> None:
        input_name, output_name = quick_invert_filenames(DATE, "1074")
        write_stack_file(
            tmp_path / DATE / input_name,
            make_line_stack(SHAPE, line_center=1074.63),
            _geometry_header(),
        )
        summary_path = tmp_path / "summary.json"

        result = CliRunner().invoke(
            cli,
            [
                "quick-invert",
                "--process-dir",
                str(tmp_path),
                "--date",
                DATE,
                "--wave-type",
                "1074",
                "--calibration",
                str(small_calibration),
                "--image-occulter-radius",
                "--peak",
                "--out",
                str(summary_path),
            ],
        )

        assert result.exit_code == EXIT_OK, result.output
        summary = json.loads(summary_path.read_text(encoding="utf-8"))
        assert summary["processed"] == 1
        assert summary["errors"] == 0
        with fits.open(tmp_path / DATE / output_name) as hdu_list:
            assert hdu_list[0].header["N_EXT"] == 9
            assert hdu_list[-1].header["EXTNAME"] == "Peak intensity"

    def test_file_error_exits_runtime(self, tmp_path: Path) -> None:
        input_name, _ = quick_invert_filenames(DATE, "1074")
        write_stack_file(tmp_path / DATE / input_name, make_line_stack(SHAPE))
        summary_path = tmp_path / "summary.json"

        result = CliRunner().invoke(
            cli,
            [
                "quick-invert",
                "--process-dir",
                str(tmp_path),
                "--date",
                DATE,
                "--out",
                str(summary_path),
            ],
        )

        assert result.exit_code == EXIT_RUNTIME_ERROR
        summary = json.loads(summary_path.read_text(encoding="utf-8"))
        assert summary["errors"] == 1
        assert summary["skipped_missing"] == 1  # no 1079 file
        assert summary["error_class_counts"] == {"ConfigurationError": 1}

    def test_allow_missing_geometry(self, tmp_path: Path) -> None:
        input_name, output_name = quick_invert_filenames(DATE, "1074")
        write_stack_file(tmp_path / DATE / input_name, make_line_stack(SHAPE))

        result = CliRunner().invoke(
            cli,
            [
                "quick-invert",
                "--process-dir",
                str(tmp_path),
                "--date",
                DATE,
                "--wave-type",
                "1074",
                "--allow-missing-geometry",
                "--out",
                str(tmp_path / "summary.json"),
            ],
        )

        assert result.exit_code == EXIT_OK, result.output
        assert (tmp_path / DATE / output_name).is_file()

    def test_bad_calibration_exits_input_error(self, tmp_path: Path) -> None:
        calibration = _write_json(tmp_path / "bad.json", {"unknown_key": 1})
        result = CliRunner().invoke(
            cli,
            [
                "quick-invert",
                "--process-dir",
                str(tmp_path),
                "--date",
                DATE,
                "--calibration",
                str(calibration),
            ],
        )
        assert result.exit_code == EXIT_INPUT_ERROR


class TestMaskCommand:
    def test_writes_mask(self, tmp_path: Path, small_calibration: Path) -> None:
        header_path = _write_header_file(tmp_path / "header.fts", _geometry_header())
        out = tmp_path / "mask.fts"

        result = CliRunner().invoke(
            cli,
            [
                "mask",
                str(header_path),
                "--out",
                str(out),
                "--shape",
                "40",
                "40",
                "--calibration",
                str(small_calibration),
                "--image-occulter-radius",
                "--no-post",
            ],
        )

        assert result.exit_code == EXIT_OK, result.output
        mask = fits.getdata(out)
        assert mask.shape == SHAPE
        assert mask[20, 20] == 0.0
        assert mask[20, 30] == 1.0
        assert mask[0, 0] == 0.0

    def test_header_without_geometry(self, tmp_path: Path) -> None:
        header_path = _write_header_file(tmp_path / "header.fts", fits.Header())
        result = CliRunner().invoke(
            cli,
            ["mask", str(header_path), "--out", str(tmp_path / "mask.fts"), "--shape", "8", "8"],
        )
        assert result.exit_code == EXIT_INPUT_ERROR
        assert "geometry" in result.output
        assert not (tmp_path / "mask.fts").exists()


class TestGeometryCommand:
    def test_locates_circles(self, tmp_path: Path) -> None:
        beams = [
            make_annulus_image(LAYOUT.beam_shape, Circle(1.5, -2.0, 50.0), Circle(-1.0, 0.5, 85.0)),
            make_annulus_image(LAYOUT.beam_shape, Circle(-2.0, 1.0, 50.5), Circle(0.5, -1.0, 84.5)),
        ]
        frame_path = tmp_path / "flat.fts"
        fits.PrimaryHDU(data=make_frame(LAYOUT, *beams).astype(np.float32)).writeto(frame_path)
        calibration = _write_json(
            tmp_path / "calibration.json",
            {
                "frame_shape": [420, 420],
                "beam_shape": [200, 200],
                "distortion_k1": 1.0,
                "distortion_k2": 1.0,
                "occulter_window": 12.0,
                "field_window": 10.0,
                "n_edge_angles": 180,
            },
        )
        flat_json = _write_json(tmp_path / "flat.json", FLAT_PAYLOAD)
        out = tmp_path / "geometry.json"

        result = CliRunner().invoke(
            cli,
            [
                "geometry",
                str(frame_path),
                "--flat-json",
                str(flat_json),
                "--calibration",
                str(calibration),
                "--out",
                str(out),
            ],
        )

        assert result.exit_code == EXIT_OK, result.output
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["occulter1"]["r"] == pytest.approx(50.0, abs=0.5)
        assert payload["field2"]["r"] == pytest.approx(84.5, abs=0.5)
        assert payload["overlap_angle"] == pytest.approx(-45.0)

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("{not json", "is not valid JSON"),
            ("[1, 2]", "must hold an object"),
            ('{"occulter1": {"x": 0, "y": 0, "r": 50}}', "is missing occulter2"),
        ],
    )
    def test_bad_flat_geometry_file(self, tmp_path: Path, content: str, message: str) -> None:
        frame_path = tmp_path / "flat.fts"
        fits.PrimaryHDU(data=np.zeros((16, 16), dtype=np.float32)).writeto(frame_path)
        flat_json = tmp_path / "flat.json"
        flat_json.write_text(content, encoding="utf-8")

        result = CliRunner().invoke(
            cli, ["geometry", str(frame_path), "--flat-json", str(flat_json)]
        )

        assert result.exit_code == EXIT_INPUT_ERROR
        assert "flat geometry file" in result.output
        assert message in result.output

    def test_flat_keywords_missing(self, tmp_path: Path) -> None:
        frame_path = tmp_path / "flat.fts"
        fits.PrimaryHDU(data=np.zeros((16, 16), dtype=np.float32)).writeto(frame_path)
        result = CliRunner().invoke(cli, ["geometry", str(frame_path)])
        assert result.exit_code == EXIT_INPUT_ERROR
        assert "OXCNTER1" in result.output


class TestMainEntrypoint:
    def test_returns_exit_code(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        header_path = _write_header_file(tmp_path / "header.fts", fits.Header())
        argv = ["comp-reduce", "mask", str(header_path), "--out", str(tmp_path / "m.fts")]
        monkeypatch.setattr(sys, "argv", [*argv, "--shape", "8", "8"])
        assert main() == EXIT_INPUT_ERROR

    def test_version_returns_ok(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "argv", ["comp-reduce", "--version"])
        assert main() == EXIT_OK
