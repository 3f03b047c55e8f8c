"""CLI entrypoint for CoMP geometry and quick-invert reduction.

Usage:
    comp-reduce quick-invert --process-dir process --date 20150401 [options]
    comp-reduce geometry FLAT_FITS [--flat-json guesses.json]
    comp-reduce mask HEADER_FITS --out mask.fts

Example:
    comp-reduce --log-level INFO quick-invert --process-dir process \\
        --date 20150401 --wave-type 1074 --wave-type 1079 --peak
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import numpy as np
from astropy.io import fits
from numpy.typing import NDArray

from comp_reduce import __version__
from comp_reduce.cli.common_cli import (
    EXIT_INPUT_ERROR,
    EXIT_OK,
    EXIT_RUNTIME_ERROR,
    LOG_LEVELS,
    CompCliError,
    configure_logging,
    json_output_target,
    read_flat_geometry_json,
    write_json_result,
)
from comp_reduce.config import ReductionContext, load_context
from comp_reduce.constants import WaveType
from comp_reduce.errors import (
    ConfigurationError,
    InvalidInputError,
    MissingInputError,
    ReductionError,
)
from comp_reduce.geometry.mask import MaskBuilder, MaskConfig
from comp_reduce.geometry.model import FlatGeometry, locate_geometry
from comp_reduce.inversion.quick_invert import QuickInvertConfig
from comp_reduce.pipeline import run_quick_invert_batch

WAVE_TYPE_CHOICES = [wave.value for wave in WaveType]


def _load_context(calibration: Path | None) -> ReductionContext:
    if calibration is None:
        return ReductionContext()
    try:
        return load_context(calibration)
    except ConfigurationError as exc:
        raise CompCliError(exc.message, exit_code=EXIT_INPUT_ERROR) from exc


def _cli_error(exc: ReductionError) -> CompCliError:
    """Input problems exit 1; failures of the reduction itself exit 2."""
    if isinstance(exc, (ConfigurationError, InvalidInputError, MissingInputError)):
        return CompCliError(exc.message, exit_code=EXIT_INPUT_ERROR)
    return CompCliError(exc.message, exit_code=EXIT_RUNTIME_ERROR)


def _read_image(path: Path) -> tuple[NDArray[np.float64], fits.Header]:
    """First 2-D image of a FITS file and the primary header."""
    try:
        with fits.open(path) as hdu_list:
            primary = hdu_list[0].header.copy()
            for hdu in hdu_list:
                if hdu.data is not None and np.ndim(hdu.data) == 2:
                    return np.array(hdu.data, dtype=np.float64), primary
    except OSError as exc:
        raise CompCliError(f"Cannot read {path}: {exc}") from exc
    raise CompCliError(f"No 2-D image found in {path}")


def _mask_options(func):
    func = click.option(
        "--image-occulter-radius",
        is_flag=True,
        default=False,
        help="Use the per-image ORADIUS instead of the calibrated OCC-ID radius.",
    )(func)
    func = click.option(
        "--field-offset", type=float, default=None, help="Field-stop overmask margin (pixels)."
    )(func)
    func = click.option(
        "--occulter-offset", type=float, default=None, help="Occulter overmask margin (pixels)."
    )(func)
    func = click.option(
        "--no-post", is_flag=True, default=False, help="Do not mask the occulter post."
    )(func)
    func = click.option(
        "--calibration",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="JSON calibration overrides.",
    )(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="comp-reduce")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Library log level.",
)
def cli(log_level: str) -> None:
    """comp-reduce CLI for CoMP coronagraph reduction."""
    configure_logging(log_level)


@cli.command("quick-invert")
@click.option(
    "--process-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Root of the processed data tree (one subdirectory per date).",
)
@click.option("--date", "dates", multiple=True, required=True, help="YYYYMMDD. Repeatable.")
@click.option(
    "--wave-type",
    "wave_types",
    type=click.Choice(WAVE_TYPE_CHOICES),
    multiple=True,
    default=("1074", "1079"),
    show_default=True,
    help="Line to invert. Repeatable.",
)
@click.option(
    "--method",
    type=click.Choice(["mean", "median"]),
    default="median",
    show_default=True,
    help="Averaging method of the input files.",
)
@click.option("--synthetic", is_flag=True, default=False, help="Invert the synthetic averages.")
@_mask_options
@click.option("--peak", is_flag=True, default=False, help="Write the peak-intensity extension.")
@click.option(
    "--uncorrected",
    is_flag=True,
    default=False,
    help="Write the uncorrected-velocity extension.",
)
@click.option(
    "--fixed-rest-wavelength",
    is_flag=True,
    default=False,
    help="Reference velocities to the fixed rest wavelength.",
)
@click.option(
    "--allow-missing-geometry",
    is_flag=True,
    default=False,
    help="Invert unmasked when the input header carries no geometry.",
)
@click.option("--out", "output_path_arg", type=str, default=None, help="Summary JSON path or '-'.")
def quick_invert_command(
    process_dir: Path,
    dates: tuple[str, ...],
    wave_types: tuple[str, ...],
    method: str,
    synthetic: bool,
    calibration: Path | None,
    no_post: bool,
    occulter_offset: float | None,
    field_offset: float | None,
    image_occulter_radius: bool,
    peak: bool,
    uncorrected: bool,
    fixed_rest_wavelength: bool,
    allow_missing_geometry: bool,
    output_path_arg: str | None,
) -> None:
    """Quick-invert averaged files of one or more days."""
    context = _load_context(calibration)
    summary = run_quick_invert_batch(
        process_dir,
        list(dates),
        list(wave_types),
        method=method,
        synthetic=synthetic,
        context=context,
        mask_config=MaskConfig(
            occulter_offset=occulter_offset,
            field_offset=field_offset,
            no_post=no_post,
            image_occulter_radius=image_occulter_radius,
        ),
        config=QuickInvertConfig(
            include_peak_intensity=peak,
            include_uncorrected_velocity=uncorrected,
            correct_rest_wavelength=not fixed_rest_wavelength,
        ),
        require_geometry=not allow_missing_geometry,
    )
    write_json_result(summary.model_dump(), json_output_target(output_path_arg))
    if summary.errors:
        raise CompCliError(
            f"{summary.errors} file(s) failed: {summary.error_class_counts}",
            exit_code=EXIT_RUNTIME_ERROR,
        )


@cli.command("geometry")
@click.argument("flat_fits", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--flat-json",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Flat geometry guesses; defaults to the keywords of FLAT_FITS.",
)
@click.option(
    "--calibration",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON calibration overrides.",
)
@click.option("--out", "output_path_arg", type=str, default=None, help="Output JSON path or '-'.")
def geometry_command(
    flat_fits: Path,
    flat_json: Path | None,
    calibration: Path | None,
    output_path_arg: str | None,
) -> None:
    """Locate occulter and field stop of both beams in a raw frame."""
    context = _load_context(calibration)
    frame, header = _read_image(flat_fits)
    try:
        if flat_json is not None:
            flat = FlatGeometry.from_dict(read_flat_geometry_json(flat_json))
        else:
            flat = FlatGeometry.from_header(header, context.layout)
        geometry, _ = locate_geometry(frame, flat, context=context)
    except ReductionError as exc:
        raise _cli_error(exc) from exc
    except ValueError as exc:
        raise CompCliError(str(exc), exit_code=EXIT_INPUT_ERROR) from exc
    write_json_result(geometry.to_dict(), json_output_target(output_path_arg))


@cli.command("mask")
@click.argument("header_fits", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--out",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Output FITS path for the combined mask.",
)
@click.option(
    "--shape",
    type=(int, int),
    default=None,
    help="Mask shape ROWS COLS; defaults to the header's image axes.",
)
@_mask_options
def mask_command(
    header_fits: Path,
    output_path: Path,
    shape: tuple[int, int] | None,
    calibration: Path | None,
    no_post: bool,
    occulter_offset: float | None,
    field_offset: float | None,
    image_occulter_radius: bool,
) -> None:
    """Write the geometric validity mask of a file's primary header."""
    context = _load_context(calibration)
    try:
        header = fits.getheader(header_fits)
    except OSError as exc:
        raise CompCliError(f"Cannot read {header_fits}: {exc}") from exc

    builder = MaskBuilder(
        context,
        MaskConfig(
            occulter_offset=occulter_offset,
            field_offset=field_offset,
            no_post=no_post,
            image_occulter_radius=image_occulter_radius,
        ),
    )
    try:
        mask = builder.from_header(header, shape)
    except ReductionError as exc:
        raise _cli_error(exc) from exc

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fits.PrimaryHDU(data=mask.astype(np.float32)).writeto(output_path, overwrite=True)
    click.echo(f"wrote {output_path} ({int(mask.sum())} of {mask.size} pixels valid)")


def main() -> int:
    """Main entry point for the CLI."""
    try:
        cli.main(standalone_mode=False)
        return EXIT_OK
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return EXIT_INPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())
