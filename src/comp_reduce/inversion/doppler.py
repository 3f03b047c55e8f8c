"""Systematic-trend removal and rest-wavelength correction for Doppler maps.

The raw line-of-sight velocity carries an instrumental east-west gradient and
a trend correlated with line intensity (and so with plasma temperature). Both
are fitted jointly over the quality-gated pixels::

    v = c0 + ew * (x - xc) + t * (peak / median(peak) - 1)

Only the east-west term is removed. The median of the corrected velocity over
good pixels is then taken as the self-consistent rest velocity and subtracted,
so the published map is referenced to the observed line center. A large
temperature trend ``t`` is flagged as a likely bad correction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from comp_reduce.constants import SPEED_OF_LIGHT_KMS, WaveType

if TYPE_CHECKING:
    from comp_reduce.config import ReductionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DopplerCorrection:
    """Result of the Doppler trend correction.

    Attributes:
        velocity: Published velocity map (km/s): corrected minus rest velocity.
        corrected: Velocity map with the east-west trend removed (km/s).
        intercept: Fitted constant term (km/s).
        ew_trend: Fitted east-west slope (km/s per pixel).
        temperature_trend: Fitted slope against fractional peak intensity (km/s).
        rest_velocity: Median corrected velocity over good pixels (km/s).
        rest_wavelength: Rest wavelength implied by ``rest_velocity`` (nm).
        n_good: Number of pixels used in the fit.
        warned: True when the temperature trend exceeded the warning threshold.
    """

    velocity: NDArray[np.float64]
    corrected: NDArray[np.float64]
    intercept: float
    ew_trend: float
    temperature_trend: float
    rest_velocity: float
    rest_wavelength: float
    n_good: int
    warned: bool = False


def fit_doppler_trends(
    velocity: NDArray[np.floating],
    peak_intensity: NDArray[np.floating],
    good: NDArray[np.bool_],
    center_x: float,
) -> tuple[float, float, float]:
    """Least-squares fit of intercept, east-west and temperature trends.

    Regressors with no spread over the good pixels are dropped and reported
    as a zero slope.

    Returns:
        (intercept, ew_trend, temperature_trend)
    """
    rows, cols = np.nonzero(good)
    v = np.asarray(velocity, dtype=np.float64)[rows, cols]
    peak = np.asarray(peak_intensity, dtype=np.float64)[rows, cols]

    x = cols.astype(np.float64) - center_x
    t = peak / np.median(peak) - 1.0

    regressors = {"ew": x, "temperature": t}
    names = [name for name, column in regressors.items() if np.ptp(column) > 0]
    design = np.column_stack([np.ones_like(v)] + [regressors[name] for name in names])
    solution, *_ = np.linalg.lstsq(design, v, rcond=None)

    coefficients = dict(zip(names, solution[1:], strict=True))
    return (
        float(solution[0]),
        float(coefficients.get("ew", 0.0)),
        float(coefficients.get("temperature", 0.0)),
    )


class DopplerCorrector:
    """Remove the instrumental Doppler trend and reference velocities to the line.

    Example:
        >>> corrector = DopplerCorrector(ReductionContext())
        >>> result = corrector.correct(velocity, peak, good, center=(309.5, 309.5),
        ...                            wave_type="1074")
        >>> result.rest_wavelength
    """

    def __init__(self, context: ReductionContext, *, correct_rest_wavelength: bool = True) -> None:
        self.context = context
        self.correct_rest_wavelength = correct_rest_wavelength

    def correct(
        self,
        velocity: NDArray[np.floating],
        peak_intensity: NDArray[np.floating],
        good: NDArray[np.bool_],
        *,
        center: tuple[float, float],
        wave_type: str | WaveType,
    ) -> DopplerCorrection:
        """Correct a raw velocity map.

        Args:
            velocity: Raw line-of-sight velocity (km/s).
            peak_intensity: Fitted peak intensity of the line.
            good: Pixels passing the velocity quality gate.
            center: (x, y) pixel of the disk center.
            wave_type: Observed line.

        Returns:
            DopplerCorrection; pixels outside ``good`` are corrected but were
            not used in any fit.
        """
        line = self.context.line(wave_type)
        v = np.asarray(velocity, dtype=np.float64)
        peak = np.asarray(peak_intensity, dtype=np.float64)
        usable = np.asarray(good, dtype=bool) & np.isfinite(v) & np.isfinite(peak) & (peak > 0)
        n_good = int(usable.sum())

        if n_good < self.context.min_trend_pixels:
            logger.warning(
                "only %d good velocity pixels (need %d), skipping Doppler trend correction",
                n_good,
                self.context.min_trend_pixels,
            )
            return DopplerCorrection(
                velocity=v.copy(),
                corrected=v.copy(),
                intercept=0.0,
                ew_trend=0.0,
                temperature_trend=0.0,
                rest_velocity=0.0,
                rest_wavelength=line.rest_wavelength,
                n_good=n_good,
            )

        center_x = center[0]
        intercept, ew_trend, temperature_trend = fit_doppler_trends(v, peak, usable, center_x)
        logger.debug(
            "Doppler trends: intercept=%.3f km/s, ew=%.5f km/s/px, temperature=%.3f km/s",
            intercept,
            ew_trend,
            temperature_trend,
        )

        warned = abs(temperature_trend) > self.context.temperature_trend_warning
        if warned:
            logger.warning(
                "temperature trend %.3f km/s exceeds %.3f km/s, Doppler correction may be bad",
                temperature_trend,
                self.context.temperature_trend_warning,
            )

        cols = np.arange(v.shape[1], dtype=np.float64) - center_x
        corrected = v - ew_trend * cols[np.newaxis, :]

        if self.correct_rest_wavelength:
            rest_velocity = float(np.median(corrected[usable]))
        else:
            rest_velocity = 0.0
        rest_wavelength = (
            line.rest_wavelength + rest_velocity * line.nominal_wavelength / SPEED_OF_LIGHT_KMS
        )
        logger.info(
            "rest velocity %.3f km/s over %d pixels, rest wavelength %.5f nm",
            rest_velocity,
            n_good,
            rest_wavelength,
        )

        return DopplerCorrection(
            velocity=corrected - rest_velocity,
            corrected=corrected,
            intercept=intercept,
            ew_trend=ew_trend,
            temperature_trend=temperature_trend,
            rest_velocity=rest_velocity,
            rest_wavelength=rest_wavelength,
            n_good=n_good,
            warned=warned,
        )
