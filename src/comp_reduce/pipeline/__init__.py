"""Pipeline entry points for quick-invert reduction of processed CoMP days.

Key Functions
-------------
quick_invert_filenames : function
    Input and output file names of one (date, wave type, method, kind).
run_quick_invert : function
    Invert one averaged file and write its quick-invert product.
run_quick_invert_batch : function
    Run every (date, wave type) combination with per-file error isolation.

Data Classes
------------
BatchSummary : pydantic model
    Counts, outputs and error classes of a batch run.

Example
-------
>>> from comp_reduce.pipeline import run_quick_invert_batch
>>> summary = run_quick_invert_batch("process", ["20150401"], ["1074", "1079"])
>>> print(f"Processed {summary.processed} files")
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Iterable
from importlib import metadata
from pathlib import Path

import numpy as np
from astropy.io import fits
from pydantic import BaseModel, ConfigDict, Field

from comp_reduce import __version__
from comp_reduce.config import ReductionContext
from comp_reduce.constants import WaveType
from comp_reduce.errors import ConfigurationError, MissingInputError, ReductionError
from comp_reduce.geometry.edges import image_center
from comp_reduce.geometry.mask import MaskBuilder, MaskConfig, detect_schema
from comp_reduce.inversion.quick_invert import QuickInvertConfig, QuickInvertEngine
from comp_reduce.io.fits_io import read_wavelength_stack, write_quick_invert

logger = logging.getLogger(__name__)


def _pipeline_version() -> str:
    try:
        return metadata.version("comp-reduce")
    except metadata.PackageNotFoundError:
        return __version__


def quick_invert_filenames(
    date: str, wave_type: str | WaveType, method: str = "median", synthetic: bool = False
) -> tuple[str, str]:
    """Input and output file names of one quick-invert unit of work.

    Returns:
        (input name, output name), e.g. ``20150401.comp.1074.median.synoptic.fts.gz``
        and ``20150401.comp.1074.quick_invert.median.synoptic.fts.gz``.
    """
    wave = WaveType.parse(wave_type).value
    kind = "synthetic" if synthetic else "synoptic"
    return (
        f"{date}.comp.{wave}.{method}.{kind}.fts.gz",
        f"{date}.comp.{wave}.quick_invert.{method}.{kind}.fts.gz",
    )


def _has_geometry(header: fits.Header) -> bool:
    try:
        detect_schema(header)
    except ConfigurationError:
        return False
    return True


def run_quick_invert(
    process_dir: Path | str,
    date: str,
    wave_type: str | WaveType,
    *,
    method: str = "median",
    synthetic: bool = False,
    context: ReductionContext | None = None,
    mask_config: MaskConfig | None = None,
    config: QuickInvertConfig | None = None,
    require_geometry: bool = True,
) -> Path | None:
    """Quick-invert one averaged file of a processed day.

    Files are read from and written to ``process_dir / date``.

    Args:
        process_dir: Root of the processed data tree.
        date: Observing day, ``YYYYMMDD``.
        wave_type: Observed line.
        method: Averaging method in the file name.
        synthetic: Use the synthetic rather than the synoptic average.
        context: Calibration context. Defaults to the built-in one.
        mask_config: Geometric mask options.
        config: Quick-invert options.
        require_geometry: Fail when the primary header carries no geometry;
            otherwise an all-ones mask is used.

    Returns:
        Path of the written product, or ``None`` when the input is missing.

    Raises:
        ReductionError: Any per-file reduction failure.
    """
    context = context or ReductionContext()
    config = config or QuickInvertConfig()
    day_dir = Path(process_dir) / date
    input_name, output_name = quick_invert_filenames(date, wave_type, method, synthetic)

    try:
        stack_file = read_wavelength_stack(day_dir / input_name)
    except MissingInputError as exc:
        logger.warning("%s, skipping quick invert", exc.message)
        return None

    shape = stack_file.stack.image_shape
    header = stack_file.primary_header
    if _has_geometry(header) or require_geometry:
        builder = MaskBuilder(context, mask_config)
        geometry = builder.geometry_from_header(header, shape)
        mask = builder.from_geometry(geometry, shape)
        center = geometry.occulter_center(shape)
    else:
        logger.warning("%s carries no geometry keywords, using an unmasked image", input_name)
        mask = np.ones(shape, dtype=np.float64)
        center = image_center(shape)

    result = QuickInvertEngine(context, config).invert(
        stack_file.stack, wave_type, mask=mask, center=center
    )
    return write_quick_invert(
        day_dir / output_name,
        result,
        header,
        method=method,
        config=config,
        fwhm_factor=context.fwhm_factor,
        version=_pipeline_version(),
    )


class BatchSummary(BaseModel):
    """Summary statistics from a batch quick-invert run.

    Attributes:
        processed: Files inverted and written.
        skipped_missing: Units of work whose input file was missing.
        errors: Files that failed with a reduction error.
        error_class_counts: Counts of each error class encountered.
        outputs: Written product paths.
        wall_time_seconds: Total wall-clock time of the run.
    """

    model_config = ConfigDict(extra="forbid")

    processed: int = 0
    skipped_missing: int = 0
    errors: int = 0
    error_class_counts: dict[str, int] = Field(default_factory=dict)
    outputs: list[str] = Field(default_factory=list)
    wall_time_seconds: float = 0.0


def run_quick_invert_batch(
    process_dir: Path | str,
    dates: Iterable[str],
    wave_types: Iterable[str | WaveType],
    *,
    method: str = "median",
    synthetic: bool = False,
    context: ReductionContext | None = None,
    mask_config: MaskConfig | None = None,
    config: QuickInvertConfig | None = None,
    require_geometry: bool = True,
) -> BatchSummary:
    """Quick-invert every (date, wave type) combination.

    A reduction error in one file is logged and counted; the remaining files
    are still processed.
    """
    start = time.monotonic()
    context = context or ReductionContext()
    wave_list = list(wave_types)
    summary = BatchSummary()
    error_classes: Counter[str] = Counter()

    for date in dates:
        for wave_type in wave_list:
            try:
                output = run_quick_invert(
                    process_dir,
                    date,
                    wave_type,
                    method=method,
                    synthetic=synthetic,
                    context=context,
                    mask_config=mask_config,
                    config=config,
                    require_geometry=require_geometry,
                )
            except ReductionError as exc:
                summary.errors += 1
                error_classes[type(exc).__name__] += 1
                logger.error(
                    "quick invert of %s %s failed [%s]: %s %s",
                    date,
                    wave_type,
                    exc.error_type.value,
                    exc.message,
                    exc.context,
                )
                continue
            if output is None:
                summary.skipped_missing += 1
            else:
                summary.processed += 1
                summary.outputs.append(str(output))

    summary.error_class_counts = dict(error_classes)
    summary.wall_time_seconds = time.monotonic() - start
    logger.info(
        "quick invert batch: %d processed, %d missing, %d errors in %.1fs",
        summary.processed,
        summary.skipped_missing,
        summary.errors,
        summary.wall_time_seconds,
    )
    return summary
