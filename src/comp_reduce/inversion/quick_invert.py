"""Quick inversion of a three-wavelength Stokes stack into physical maps.

From the I, Q, U images at the three tunes nearest line center this module
derives intensity, linear polarization, azimuth, line-of-sight velocity, line
width and peak intensity. Each stage is a pure function returning new arrays;
the engine only wires them together:

1. polarization maps at the center tune (I <= 0 pixels zeroed / NaN)
2. azimuth and radial azimuth
3. closed-form Gaussian fit of the three I tunes
4. quality gates (polarization: looser, velocity: stricter)
5. Doppler trend correction over velocity-gated pixels
6. geometric mask applied to every channel
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from comp_reduce.constants import (
    RADIAL_AZIMUTH_SENTINEL,
    SPEED_OF_LIGHT_KMS,
    LineConstants,
    WaveType,
)
from comp_reduce.errors import InsufficientStokesDataError
from comp_reduce.geometry.edges import image_center
from comp_reduce.inversion.doppler import DopplerCorrection, DopplerCorrector
from comp_reduce.inversion.gauss import GaussFit, analytic_gauss_fit
from comp_reduce.inversion.stack import STOKES_I, STOKES_Q, STOKES_U, WavelengthStack

if TYPE_CHECKING:
    from comp_reduce.config import ReductionContext

logger = logging.getLogger(__name__)

MIN_STOKES = 3


@dataclass(frozen=True)
class QuickInvertConfig:
    """Quick-invert options.

    Attributes:
        include_peak_intensity: Write the peak-intensity extension.
        include_uncorrected_velocity: Write the uncorrected-velocity extension.
        correct_rest_wavelength: Reference velocities to the median observed
            line center. When False the fixed rest wavelength is kept.
    """

    include_peak_intensity: bool = False
    include_uncorrected_velocity: bool = False
    correct_rest_wavelength: bool = True


@dataclass(frozen=True)
class QuickInvertResult:
    """Per-pixel maps of one quick inversion; every map has the image shape.

    Velocities and line width are in km/s; ``line_width`` is the 1/e
    half-width (the published extension is converted to FWHM).
    """

    intensity: NDArray[np.float64]
    q: NDArray[np.float64]
    u: NDArray[np.float64]
    linear_pol: NDArray[np.float64]
    azimuth: NDArray[np.float64]
    radial_azimuth: NDArray[np.float64]
    raw_velocity: NDArray[np.float64]
    corrected_velocity: NDArray[np.float64]
    line_width: NDArray[np.float64]
    peak_intensity: NDArray[np.float64]
    wave_type: WaveType
    rest_wavelength: float
    tune_indices: tuple[int, int, int]
    d_lambda: float
    correction: DopplerCorrection
    n_good_polarization: int
    n_good_velocity: int


def polarization_maps(
    intensity: NDArray[np.floating],
    q: NDArray[np.floating],
    u: NDArray[np.floating],
) -> tuple[
    NDArray[np.float64],
    NDArray[np.float64],
    NDArray[np.float64],
    NDArray[np.float64],
    NDArray[np.bool_],
]:
    """Center-tune intensity, Q, U and linear polarization.

    Returns:
        (intensity, q, u, linear_pol, zeroed) where ``zeroed`` marks pixels with
        I <= 0 (or non-finite I); those have intensity 0 and NaN Q, U, linear_pol.
    """
    i = np.asarray(intensity, dtype=np.float64)
    zeroed = ~(i > 0)
    q_out = np.where(zeroed, np.nan, np.asarray(q, dtype=np.float64))
    u_out = np.where(zeroed, np.nan, np.asarray(u, dtype=np.float64))
    return (
        np.where(zeroed, 0.0, i),
        q_out,
        u_out,
        np.sqrt(q_out**2 + u_out**2),
        zeroed,
    )


def compute_azimuth(q: NDArray[np.floating], u: NDArray[np.floating]) -> NDArray[np.float64]:
    """Polarization azimuth ``0.5 atan2(U, Q)`` in degrees, in ``[0, 180)``."""
    azimuth = 0.5 * np.degrees(np.arctan2(u, q))
    return np.where(azimuth < 0.0, azimuth + 180.0, azimuth)


def compute_radial_azimuth(
    azimuth: NDArray[np.floating], center: tuple[float, float]
) -> NDArray[np.float64]:
    """Azimuth relative to the radial direction from ``center``, in ``[-90, 90)``."""
    az = np.asarray(azimuth, dtype=np.float64)
    rows, cols = np.indices(az.shape, dtype=np.float64)
    position_angle = np.degrees(np.arctan2(rows - center[1], cols - center[0]))
    return np.mod(az - position_angle + 90.0, 180.0) - 90.0


def polarization_gate(
    i2: NDArray[np.floating], line: LineConstants
) -> NDArray[np.bool_]:
    """Pixels bright enough, but not saturated, for polarization output."""
    center = np.asarray(i2, dtype=np.float64)
    return (center > line.pol_int_min) & (center < line.int_max)


def velocity_gate(
    i1: NDArray[np.floating],
    i2: NDArray[np.floating],
    i3: NDArray[np.floating],
    fit: GaussFit,
    width_kms: NDArray[np.floating],
    line: LineConstants,
) -> NDArray[np.bool_]:
    """Pixels whose three intensities, line width and peak support a velocity."""
    good = np.isfinite(fit.doppler_shift) & np.isfinite(fit.peak)
    for sample in (i1, i2, i3):
        values = np.asarray(sample, dtype=np.float64)
        good &= (values > line.int_min) & (values < line.int_max)
    with np.errstate(invalid="ignore"):
        good &= (width_kms > line.width_min) & (width_kms < line.width_max)
        good &= fit.peak < line.int_max
    return good


class QuickInvertEngine:
    """Derive polarization and line observables from a wavelength stack.

    Example:
        >>> engine = QuickInvertEngine(ReductionContext())
        >>> result = engine.invert(stack, "1074", mask=mask)
        >>> result.corrected_velocity.shape
        (620, 620)
    """

    def __init__(self, context: ReductionContext, config: QuickInvertConfig | None = None) -> None:
        self.context = context
        self.config = config or QuickInvertConfig()

    def invert(
        self,
        stack: WavelengthStack,
        wave_type: str | WaveType,
        *,
        mask: NDArray[np.floating] | None = None,
        center: tuple[float, float] | None = None,
    ) -> QuickInvertResult:
        """Run the quick inversion.

        Args:
            stack: Stack with at least the I, Q and U planes.
            wave_type: Observed line, one of 1074, 1079, 1083.
            mask: Geometric validity mask (0 excluded). Defaults to all ones.
            center: (x, y) disk center for radial azimuth and the east-west
                trend. Defaults to the image center.

        Raises:
            InsufficientStokesDataError: Fewer than 3 Stokes planes.
            ConfigurationError: Unknown wave type or unordered wavelengths.
            InsufficientDataError: No three tunes around line center.
        """
        if stack.nstokes < MIN_STOKES:
            raise InsufficientStokesDataError(stack.nstokes)
        wave = WaveType.parse(wave_type)
        line = self.context.line(wave)

        indices = stack.center_indices(line.rest_wavelength)
        d_lambda = stack.d_lambda(indices)
        shape = stack.image_shape
        logger.debug("wave type %s: tunes %s, d_lambda=%.4f nm", wave.value, indices, d_lambda)

        if mask is None:
            in_mask = np.ones(shape, dtype=bool)
        else:
            geometry_mask = np.asarray(mask, dtype=np.float64)
            if geometry_mask.shape != shape:
                raise ValueError(f"mask shape {geometry_mask.shape} does not match image {shape}")
            in_mask = geometry_mask != 0
        disk_center = image_center(shape) if center is None else center

        blue, mid, red = (stack.plane(STOKES_I, k) for k in indices)
        center_tune = indices[1]
        intensity, q, u, linear_pol, zeroed = polarization_maps(
            mid, stack.plane(STOKES_Q, center_tune), stack.plane(STOKES_U, center_tune)
        )
        azimuth = compute_azimuth(q, u)
        radial_azimuth = compute_radial_azimuth(azimuth, disk_center)

        fit = analytic_gauss_fit(blue, mid, red, d_lambda)
        to_kms = SPEED_OF_LIGHT_KMS / line.nominal_wavelength
        line_center = line.rest_wavelength + fit.doppler_shift
        raw_velocity = (line_center - line.rest_wavelength) * to_kms
        width_kms = fit.width * to_kms

        pol_good = polarization_gate(mid, line) & in_mask & ~zeroed
        vel_good = velocity_gate(blue, mid, red, fit, width_kms, line) & in_mask

        corrector = DopplerCorrector(
            self.context, correct_rest_wavelength=self.config.correct_rest_wavelength
        )
        correction = corrector.correct(
            raw_velocity, fit.peak, vel_good, center=disk_center, wave_type=wave
        )

        n_pol, n_vel = int(pol_good.sum()), int(vel_good.sum())
        logger.info(
            "quick invert %s: %d polarization pixels, %d velocity pixels of %d",
            wave.value,
            n_pol,
            n_vel,
            intensity.size,
        )

        return QuickInvertResult(
            intensity=np.where(in_mask, intensity, 0.0),
            q=np.where(pol_good, q, np.nan),
            u=np.where(pol_good, u, np.nan),
            linear_pol=np.where(pol_good, linear_pol, np.nan),
            azimuth=np.where(pol_good, azimuth, 0.0),
            radial_azimuth=np.where(pol_good, radial_azimuth, RADIAL_AZIMUTH_SENTINEL),
            raw_velocity=np.where(vel_good, raw_velocity, np.nan),
            corrected_velocity=np.where(vel_good, correction.velocity, np.nan),
            line_width=np.where(vel_good, width_kms, np.nan),
            peak_intensity=np.where(vel_good, fit.peak, np.nan),
            wave_type=wave,
            rest_wavelength=correction.rest_wavelength,
            tune_indices=indices,
            d_lambda=d_lambda,
            correction=correction,
            n_good_polarization=n_pol,
            n_good_velocity=n_vel,
        )
