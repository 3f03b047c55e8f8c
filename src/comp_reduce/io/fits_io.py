"""FITS reading of wavelength-scan stacks and writing of quick-invert products.

Input files hold an empty primary HDU followed by one image extension per
(Stokes parameter, tune), Stokes-major: extension ``1 + stokes * ntune + tune``.
The last group of ``ntune`` extensions is the background and is not read.

Quick-invert products hold a copy of the input primary header followed by the
derived maps in the fixed order of :data:`OUTPUT_EXTENSIONS`, then the optional
peak-intensity and uncorrected-velocity extensions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from astropy.io import fits
from numpy.typing import NDArray

from comp_reduce.constants import FWHM_FACTOR
from comp_reduce.errors import (
    ConfigurationError,
    InsufficientStokesDataError,
    InvalidInputError,
    MissingInputError,
)
from comp_reduce.inversion.quick_invert import QuickInvertConfig
from comp_reduce.inversion.stack import WavelengthStack

if TYPE_CHECKING:
    from comp_reduce.inversion.quick_invert import QuickInvertResult

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS = (
    "Center wavelength intensity",
    "Stokes Q",
    "Stokes U",
    "Linear polarization",
    "Azimuth",
    "Corrected LOS velocity",
    "Line width (FWHM)",
    "Radial azimuth",
)
PEAK_INTENSITY_EXTENSION = "Peak intensity"
UNCORRECTED_VELOCITY_EXTENSION = "Uncorrected LOS velocity"

# DATAMIN / DATAMAX of a plane with no finite value
EMPTY_PLANE_DATA_RANGE = 0.0

# Observation-plan keywords that describe the input file, not the product
_DROPPED_PRIMARY_KEYWORDS = ("OBS_PLAN", "OBS_ID")
_STRUCTURAL_KEYWORDS = frozenset({"SIMPLE", "BITPIX", "EXTEND", "END"})


@dataclass(frozen=True)
class StackFile:
    """Wavelength stack together with the headers it was read from."""

    stack: WavelengthStack
    primary_header: fits.Header
    extension_headers: tuple[fits.Header, ...]


def _ntune(header: fits.Header, path: Path) -> int:
    for key in ("NTUNE", "NTUNES"):
        if key in header:
            return int(header[key])
    raise ConfigurationError(
        f"primary header of {path.name} has neither NTUNE nor NTUNES", path=str(path)
    )


def _read_planes(
    path: Path,
) -> tuple[fits.Header, int, int, list[NDArray[np.float64]], list[fits.Header]]:
    with fits.open(path) as hdu_list:
        primary = hdu_list[0].header.copy()
        ntune = _ntune(primary, path)
        if ntune <= 0:
            raise ConfigurationError(f"invalid tune count {ntune} in {path.name}", path=str(path))
        n_ext = len(hdu_list) - 1
        nstokes = n_ext // ntune - 1
        if nstokes < 1:
            raise InsufficientStokesDataError(max(nstokes, 0), path=str(path), n_ext=n_ext)

        planes: list[NDArray[np.float64]] = []
        headers: list[fits.Header] = []
        for stokes in range(nstokes):
            for tune in range(ntune):
                hdu = hdu_list[1 + stokes * ntune + tune]
                if hdu.data is None or np.ndim(hdu.data) != 2:
                    raise InvalidInputError(
                        str(path),
                        f"extension {1 + stokes * ntune + tune} of {path.name} is not a 2-D image",
                        extension=1 + stokes * ntune + tune,
                    )
                planes.append(np.array(hdu.data, dtype=np.float64))
                headers.append(hdu.header.copy())
    return primary, nstokes, ntune, planes, headers


def read_wavelength_stack(path: Path | str) -> StackFile:
    """Read a wavelength-scan stack.

    Args:
        path: FITS file, optionally gzip-compressed.

    Returns:
        StackFile with data of shape (nstokes, ntune, ny, nx).

    Raises:
        MissingInputError: The file is absent or empty.
        InvalidInputError: The file is not valid FITS or its planes do not
            form a stack.
        ConfigurationError: The tune count or a tune wavelength is missing.
        InsufficientStokesDataError: The file holds no complete Stokes group.
    """
    path = Path(path)
    if not path.is_file() or path.stat().st_size == 0:
        raise MissingInputError(str(path))

    try:
        primary, nstokes, ntune, planes, headers = _read_planes(path)
    except (OSError, ValueError) as exc:
        raise InvalidInputError(str(path), f"cannot read {path.name}: {exc}") from exc

    wavelengths = []
    for tune, header in enumerate(headers[:ntune]):
        if "WAVELENG" not in header:
            raise ConfigurationError(
                f"extension {1 + tune} of {path.name} is missing keyword WAVELENG",
                path=str(path),
                extension=1 + tune,
            )
        wavelengths.append(float(header["WAVELENG"]))

    shapes = {plane.shape for plane in planes}
    if len(shapes) != 1:
        raise InvalidInputError(
            str(path),
            f"image planes of {path.name} differ in shape: {sorted(shapes)}",
            shapes=sorted(shapes),
        )
    ny, nx = planes[0].shape
    data = np.stack(planes).reshape(nstokes, ntune, ny, nx)
    logger.info(
        "read %s: %d Stokes x %d tunes of %dx%d pixels", path.name, nstokes, ntune, ny, nx
    )
    return StackFile(
        stack=WavelengthStack(data=data, wavelengths=np.asarray(wavelengths)),
        primary_header=primary,
        extension_headers=tuple(headers),
    )


def output_maps(
    result: QuickInvertResult,
    *,
    config: QuickInvertConfig | None = None,
    fwhm_factor: float = FWHM_FACTOR,
) -> list[tuple[str, NDArray[np.float64]]]:
    """Named product maps in extension order."""
    config = config or QuickInvertConfig()
    maps = [
        ("Center wavelength intensity", result.intensity),
        ("Stokes Q", result.q),
        ("Stokes U", result.u),
        ("Linear polarization", result.linear_pol),
        ("Azimuth", result.azimuth),
        ("Corrected LOS velocity", result.corrected_velocity),
        ("Line width (FWHM)", result.line_width * fwhm_factor),
        ("Radial azimuth", result.radial_azimuth),
    ]
    if config.include_peak_intensity:
        maps.append((PEAK_INTENSITY_EXTENSION, result.peak_intensity))
    if config.include_uncorrected_velocity:
        maps.append((UNCORRECTED_VELOCITY_EXTENSION, result.raw_velocity))
    return maps


def _product_primary(primary_header: fits.Header) -> fits.PrimaryHDU:
    primary = fits.PrimaryHDU()
    for card in primary_header.cards:
        keyword = card.keyword
        if keyword in _STRUCTURAL_KEYWORDS or keyword.startswith("NAXIS"):
            continue
        if keyword in _DROPPED_PRIMARY_KEYWORDS:
            continue
        primary.header.append(card)
    return primary


def _image_extension(name: str, data: NDArray[np.floating]) -> fits.ImageHDU:
    """Image extension with EXTNAME and the range of its finite values.

    A plane without any finite value (e.g. a velocity map where every pixel
    failed the quality gate) gets DATAMIN = DATAMAX = 0.0.
    """
    hdu = fits.ImageHDU(data=np.asarray(data, dtype=np.float32))
    hdu.header["EXTNAME"] = name
    finite = np.isfinite(data)
    if finite.any():
        data_min, data_max = float(np.min(data[finite])), float(np.max(data[finite]))
    else:
        data_min = data_max = EMPTY_PLANE_DATA_RANGE
    hdu.header["DATAMIN"] = (data_min, "minimum data value")
    hdu.header["DATAMAX"] = (data_max, "maximum data value")
    return hdu


def write_quick_invert(
    path: Path | str,
    result: QuickInvertResult,
    primary_header: fits.Header,
    *,
    method: str,
    config: QuickInvertConfig | None = None,
    fwhm_factor: float = FWHM_FACTOR,
    version: str | None = None,
) -> Path:
    """Write a quick-invert product file.

    Args:
        path: Output path; a ``.gz`` suffix gives a gzip-compressed file.
        result: Maps to write.
        primary_header: Primary header of the input file.
        method: Averaging method of the input (e.g. ``mean``, ``median``).
        config: Selects the optional extensions.
        fwhm_factor: Conversion from 1/e width to the published FWHM.
        version: Software version recorded in the primary header.

    Returns:
        The written path.
    """
    path = Path(path)
    maps = output_maps(result, config=config, fwhm_factor=fwhm_factor)

    primary = _product_primary(primary_header)
    primary.header["METHOD"] = (method, "averaging method of the input")
    primary.header["N_EXT"] = (len(maps), "number of extensions")
    if version is not None:
        primary.header["VERSION"] = (version, "comp-reduce version")

    extensions = []
    for name, data in maps:
        hdu = _image_extension(name, data)
        if name == "Corrected LOS velocity":
            hdu.header["RESTWVL"] = (result.rest_wavelength, "rest wavelength [nm]")
        extensions.append(hdu)

    path.parent.mkdir(parents=True, exist_ok=True)
    fits.HDUList([primary, *extensions]).writeto(path, overwrite=True)
    logger.info("wrote %s with %d extensions", path.name, len(extensions))
    return path
