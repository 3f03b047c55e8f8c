"""Closed-form Gaussian fit through three equally spaced line samples.

For a profile ``I(l) = peak * exp(-(l - l0)^2 / w^2)`` sampled at
``-d, 0, +d`` with intensities ``i1, i2, i3``, let ``a = ln(i3 / i2)`` and
``b = ln(i1 / i2)``. Then::

    w     = sqrt(-2 d^2 / (a + b))
    l0    = w^2 (a - b) / (4 d)
    peak  = i2 exp(l0^2 / w^2)

``l0`` is the Doppler shift relative to the center sample and ``w`` the 1/e
half-width. Pixels where the samples are non-positive or not peaked
(``a + b >= 0``) give NaN.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True)
class GaussFit:
    """Per-pixel three-point Gaussian fit.

    Attributes:
        doppler_shift: Line-center offset from the center sample, in wavelength units.
        width: 1/e half-width, in wavelength units.
        peak: Peak intensity.
    """

    doppler_shift: NDArray[np.float64]
    width: NDArray[np.float64]
    peak: NDArray[np.float64]


def analytic_gauss_fit(
    i1: ArrayLike,
    i2: ArrayLike,
    i3: ArrayLike,
    d_lambda: float,
) -> GaussFit:
    """Fit a Gaussian through three equally spaced intensity samples.

    Args:
        i1: Intensity at the blue sample (center - d_lambda).
        i2: Intensity at the center sample.
        i3: Intensity at the red sample (center + d_lambda).
        d_lambda: Sample spacing.

    Returns:
        GaussFit with NaN wherever the fit is undefined.
    """
    if d_lambda <= 0:
        raise ValueError(f"d_lambda must be positive, got {d_lambda}")
    blue = np.asarray(i1, dtype=np.float64)
    center = np.asarray(i2, dtype=np.float64)
    red = np.asarray(i3, dtype=np.float64)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        valid = (blue > 0) & (center > 0) & (red > 0)
        a = np.where(valid, np.log(red / center), np.nan)
        b = np.where(valid, np.log(blue / center), np.nan)
        curvature = a + b
        peaked = curvature < 0
        width_squared = np.where(peaked, -2.0 * d_lambda**2 / curvature, np.nan)
        width = np.sqrt(width_squared)
        shift = width_squared * (a - b) / (4.0 * d_lambda)
        peak = center * np.exp(shift**2 / width_squared)

    return GaussFit(doppler_shift=shift, width=width, peak=peak)
