"""Radial edge detection for occulter and field-stop boundaries.

For each scan angle the intensity is sampled along a radius spanning
``[radius_guess - window, radius_guess + window]`` around a scan center, the
profile is differentiated, and the radius of the derivative extremum is kept:
the maximum for a rising (positive) edge such as the occulter, the minimum for
a falling (negative) edge such as the field stop.

Outliers are not filtered here; the circle fit absorbs them through its
least-squares residual. Extrema landing on the window boundary are returned
as-is and counted in :attr:`EdgeScan.boundary_hits`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import NDArray
from scipy import ndimage

from comp_reduce.errors import ConfigurationError

Polarity = Literal["positive", "negative"]

DEFAULT_N_ANGLES = 360


@dataclass(frozen=True)
class EdgeSample:
    """One measured edge point: polar angle (radians) and radius (pixels)."""

    theta: float
    radius: float


@dataclass(frozen=True)
class EdgeScan:
    """Edge samples of one radial scan.

    Attributes:
        samples: One sample per scan angle, in scan order.
        polarity: Edge polarity that was searched for.
        center: (x, y) pixel the radii are measured from.
        boundary_hits: Number of samples whose extremum fell on the window edge.
    """

    samples: tuple[EdgeSample, ...]
    polarity: Polarity
    center: tuple[float, float]
    boundary_hits: int = 0

    @property
    def thetas(self) -> NDArray[np.float64]:
        return np.array([s.theta for s in self.samples], dtype=np.float64)

    @property
    def radii(self) -> NDArray[np.float64]:
        return np.array([s.radius for s in self.samples], dtype=np.float64)

    def __len__(self) -> int:
        return len(self.samples)


def default_angles(n_angles: int = DEFAULT_N_ANGLES) -> NDArray[np.float64]:
    """Return ``n_angles`` evenly spaced angles covering a full circle."""
    return np.arange(n_angles, dtype=np.float64) * (2.0 * np.pi / n_angles)


def image_center(shape: tuple[int, ...]) -> tuple[float, float]:
    """Return the (x, y) pixel center of an image of the given (rows, cols) shape."""
    rows, cols = shape[-2], shape[-1]
    return ((cols - 1) / 2.0, (rows - 1) / 2.0)


def _parabolic_offset(left: float, mid: float, right: float) -> float:
    """Sub-sample offset of the vertex of a parabola through three samples."""
    denom = left - 2.0 * mid + right
    if denom == 0.0 or not np.isfinite(denom):
        return 0.0
    offset = 0.5 * (left - right) / denom
    return float(np.clip(offset, -0.5, 0.5))


def find_radial_edges(
    image: NDArray[np.floating],
    radius_guess: float,
    window: float,
    *,
    polarity: Polarity = "positive",
    angles: NDArray[np.floating] | None = None,
    center: tuple[float, float] | None = None,
    step: float = 1.0,
) -> EdgeScan:
    """Locate a step edge along radial profiles at a set of angles.

    Args:
        image: 2-D image, indexed ``[row, col]``.
        radius_guess: Expected edge radius in pixels.
        window: Half-width of the radial search window in pixels.
        polarity: ``"positive"`` for a rising edge, ``"negative"`` for a falling one.
        angles: Scan angles in radians. Defaults to 360 angles over a full circle.
        center: (x, y) scan center. Defaults to the image center.
        step: Radial sampling step in pixels.

    Returns:
        EdgeScan with one sample per angle.

    Raises:
        ConfigurationError: If the polarity is unknown.
        ValueError: If the image is not 2-D or the window is not usable.
    """
    if polarity not in ("positive", "negative"):
        raise ConfigurationError(f"unknown edge polarity {polarity!r}", polarity=polarity)
    data = np.asarray(image, dtype=np.float64)
    if data.ndim != 2:
        raise ValueError(f"image must be 2-D, got shape {data.shape}")
    if window <= 0 or step <= 0:
        raise ValueError(f"window and step must be positive, got window={window}, step={step}")

    thetas = default_angles() if angles is None else np.asarray(angles, dtype=np.float64)
    cx, cy = image_center(data.shape) if center is None else center

    n_radii = int(round(2.0 * window / step)) + 1
    if n_radii < 3:
        raise ValueError(f"radial window too small: {n_radii} samples")
    radii = radius_guess - window + step * np.arange(n_radii, dtype=np.float64)

    # (n_angles, n_radii) sample positions
    xs = cx + np.outer(np.cos(thetas), radii)
    ys = cy + np.outer(np.sin(thetas), radii)
    profiles = ndimage.map_coordinates(data, [ys.ravel(), xs.ravel()], order=1, mode="nearest")
    profiles = profiles.reshape(xs.shape)

    derivative = np.gradient(profiles, step, axis=1)
    if polarity == "negative":
        derivative = -derivative
    locations = np.argmax(derivative, axis=1)

    samples: list[EdgeSample] = []
    boundary_hits = 0
    for theta, row, loc in zip(thetas, derivative, locations, strict=True):
        if loc == 0 or loc == n_radii - 1:
            boundary_hits += 1
            radius = float(radii[loc])
        else:
            offset = _parabolic_offset(row[loc - 1], row[loc], row[loc + 1])
            radius = float(radii[loc] + offset * step)
        samples.append(EdgeSample(theta=float(theta), radius=radius))

    return EdgeScan(
        samples=tuple(samples),
        polarity=polarity,
        center=(float(cx), float(cy)),
        boundary_hits=boundary_hits,
    )
