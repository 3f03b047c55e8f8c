"""Tests for comp_reduce.io.fits_io (stack reading and product writing)."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from astropy.io import fits

from comp_reduce.config import ReductionContext
from comp_reduce.constants import FWHM_FACTOR
from comp_reduce.errors import ConfigurationError, InvalidInputError, MissingInputError
from comp_reduce.inversion.quick_invert import QuickInvertConfig, QuickInvertEngine
from comp_reduce.io.fits_io import (
    EMPTY_PLANE_DATA_RANGE,
    OUTPUT_EXTENSIONS,
    read_wavelength_stack,
    write_quick_invert,
)
from tests.fixtures.synthetic import make_line_stack, write_stack_file

SHAPE = (12, 16)


@pytest.fixture
def stack_path(tmp_path: Path) -> Path:
    header = fits.Header()
    header["DATE-OBS"] = "2015-04-01"
    header["INSTRUME"] = "COMP"
    return write_stack_file(
        tmp_path / "20150401.comp.1074.median.synoptic.fts.gz",
        make_line_stack(SHAPE, line_center=1074.63),
        header,
    )


class TestReadWavelengthStack:
    def test_reads_stokes_major_extensions(self, stack_path: Path) -> None:
        stack_file = read_wavelength_stack(stack_path)
        stack = stack_file.stack
        assert stack.nstokes == 4
        assert stack.ntune == 5
        assert stack.image_shape == SHAPE
        np.testing.assert_allclose(stack.wavelengths, [1074.38, 1074.50, 1074.62, 1074.74, 1074.86])

        expected = make_line_stack(SHAPE, line_center=1074.63)
        np.testing.assert_allclose(stack.data, expected.data, rtol=1e-6)
        assert len(stack_file.extension_headers) == 20
        assert stack_file.primary_header["INSTRUME"] == "COMP"

    def test_ntunes_keyword_accepted(self, tmp_path: Path) -> None:
        path = write_stack_file(
            tmp_path / "in.fts", make_line_stack(SHAPE, nstokes=3), tune_keyword="NTUNES"
        )
        stack = read_wavelength_stack(path).stack
        assert stack.nstokes == 3

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MissingInputError) as exc_info:
            read_wavelength_stack(tmp_path / "absent.fts.gz")
        assert exc_info.value.path.endswith("absent.fts.gz")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.fts"
        path.touch()
        with pytest.raises(MissingInputError):
            read_wavelength_stack(path)

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "corrupt.fts.gz"
        path.write_bytes(b"this is not a FITS file\n" * 200)
        with pytest.raises(InvalidInputError, match="cannot read corrupt.fts.gz") as exc_info:
            read_wavelength_stack(path)
        assert exc_info.value.context["path"] == str(path)

    def test_planes_of_different_shape(self, tmp_path: Path) -> None:
        primary = fits.PrimaryHDU()
        primary.header["NTUNE"] = 3
        extensions = []
        for index, wavelength in enumerate((1074.50, 1074.62, 1074.74) * 4):
            shape = (5, 5) if index == 4 else SHAPE
            hdu = fits.ImageHDU(data=np.ones(shape, dtype=np.float32))
            hdu.header["WAVELENG"] = wavelength
            extensions.append(hdu)
        path = tmp_path / "ragged.fts"
        fits.HDUList([primary, *extensions]).writeto(path)

        with pytest.raises(InvalidInputError, match="differ in shape"):
            read_wavelength_stack(path)

    def test_missing_tune_count(self, tmp_path: Path) -> None:
        path = tmp_path / "no_ntune.fts"
        fits.HDUList([fits.PrimaryHDU(), fits.ImageHDU(np.zeros((2, 2)))]).writeto(path)
        with pytest.raises(ConfigurationError, match="NTUNE"):
            read_wavelength_stack(path)

    def test_missing_wavelength(self, tmp_path: Path) -> None:
        path = write_stack_file(tmp_path / "in.fts", make_line_stack(SHAPE, nstokes=3))
        with fits.open(path, mode="update") as hdu_list:
            del hdu_list[2].header["WAVELENG"]
        with pytest.raises(ConfigurationError, match="WAVELENG"):
            read_wavelength_stack(path)


class TestWriteQuickInvert:
    @pytest.fixture
    def result(self):
        return QuickInvertEngine(ReductionContext()).invert(
            make_line_stack(SHAPE, line_center=1074.63), "1074"
        )

    def test_extension_order_and_primary_edits(self, tmp_path: Path, stack_path: Path, result) -> None:
        primary = read_wavelength_stack(stack_path).primary_header
        out = write_quick_invert(
            tmp_path / "out.fts.gz", result, primary, method="median", version="0.3.0"
        )

        with fits.open(out) as hdu_list:
            names = [hdu.header["EXTNAME"] for hdu in hdu_list[1:]]
            header = hdu_list[0].header
            assert names == list(OUTPUT_EXTENSIONS)
            assert "OBS_PLAN" not in header
            assert "OBS_ID" not in header
            assert header["METHOD"] == "median"
            assert header["N_EXT"] == 8
            assert header["VERSION"] == "0.3.0"
            assert header["INSTRUME"] == "COMP"
            assert hdu_list[1].data.shape == SHAPE

            velocity = hdu_list[OUTPUT_EXTENSIONS.index("Corrected LOS velocity") + 1]
            assert velocity.header["RESTWVL"] == pytest.approx(result.rest_wavelength)

    def test_line_width_written_as_fwhm(self, tmp_path: Path, result) -> None:
        out = write_quick_invert(tmp_path / "out.fts", result, fits.Header(), method="mean")
        with fits.open(out) as hdu_list:
            width = hdu_list[OUTPUT_EXTENSIONS.index("Line width (FWHM)") + 1].data
        np.testing.assert_allclose(width, result.line_width * FWHM_FACTOR, rtol=1e-6)

    def test_datamin_datamax_ignore_nan(self, tmp_path: Path) -> None:
        mask = np.ones(SHAPE)
        mask[:, :4] = 0.0
        result = QuickInvertEngine(ReductionContext()).invert(
            make_line_stack(SHAPE, q_fraction=0.1), "1074", mask=mask
        )
        out = write_quick_invert(tmp_path / "out.fts", result, fits.Header(), method="median")
        with fits.open(out) as hdu_list:
            q = hdu_list[2]
            assert q.header["DATAMIN"] == pytest.approx(1.0, rel=1e-6)
            assert q.header["DATAMAX"] == pytest.approx(1.0, rel=1e-6)
            intensity = hdu_list[1]
            assert intensity.header["DATAMIN"] == 0.0

    def test_all_nan_plane_keeps_data_range(self, tmp_path: Path) -> None:
        # a 0.4 nm line is too wide for the velocity gate everywhere
        result = QuickInvertEngine(ReductionContext()).invert(
            make_line_stack(SHAPE, width=0.4), "1074"
        )
        assert np.all(np.isnan(result.corrected_velocity))

        out = write_quick_invert(tmp_path / "out.fts", result, fits.Header(), method="median")
        with fits.open(out) as hdu_list:
            velocity = hdu_list["Corrected LOS velocity"]
            assert velocity.header["DATAMIN"] == EMPTY_PLANE_DATA_RANGE
            assert velocity.header["DATAMAX"] == EMPTY_PLANE_DATA_RANGE
            for hdu in hdu_list[1:]:
                assert "DATAMIN" in hdu.header
                assert "DATAMAX" in hdu.header

    def test_optional_extensions_appended(self, tmp_path: Path, result) -> None:
        config = QuickInvertConfig(include_peak_intensity=True, include_uncorrected_velocity=True)
        out = write_quick_invert(
            tmp_path / "out.fts", result, fits.Header(), method="median", config=config
        )
        with fits.open(out) as hdu_list:
            names = [hdu.header["EXTNAME"] for hdu in hdu_list[1:]]
            assert hdu_list[0].header["N_EXT"] == 10
        assert names == [*OUTPUT_EXTENSIONS, "Peak intensity", "Uncorrected LOS velocity"]
