"""Circle model and direct least-squares circle fitting.

The fit is the algebraic (Kasa) formulation: with edge points
``(px, py) = r (cos t, sin t)`` the circle satisfies
``px^2 + py^2 = a px + b py + c``, which is linear in ``(a, b, c)`` and is
solved in a single ``lstsq`` call. Center and radius follow from
``x = a / 2``, ``y = b / 2`` and ``r^2 = c + x^2 + y^2``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from comp_reduce.errors import DegenerateGeometryError, InsufficientDataError
from comp_reduce.geometry.edges import EdgeSample, EdgeScan


MIN_FIT_SAMPLES = 3


@dataclass(frozen=True)
class Circle:
    """Circle given by its center offset from an image center and its radius.

    Attributes:
        x: Center offset along columns, in pixels.
        y: Center offset along rows, in pixels.
        r: Radius in pixels, strictly positive.
    """

    x: float
    y: float
    r: float

    def __post_init__(self) -> None:
        if not (np.isfinite(self.x) and np.isfinite(self.y) and np.isfinite(self.r)):
            raise ValueError(f"circle parameters must be finite, got {(self.x, self.y, self.r)}")
        if self.r <= 0:
            raise ValueError(f"circle radius must be positive, got {self.r}")

    def radius_at(self, theta: ArrayLike) -> NDArray[np.float64]:
        """Radius of the circle boundary seen from the origin along ``theta``.

        Valid when the origin lies inside the circle.
        """
        t = np.asarray(theta, dtype=np.float64)
        along = self.x * np.cos(t) + self.y * np.sin(t)
        across = self.x * np.sin(t) - self.y * np.cos(t)
        return along + np.sqrt(self.r**2 - across**2)

    def translated(self, dx: float, dy: float) -> Circle:
        return Circle(x=self.x + dx, y=self.y + dy, r=self.r)

    def to_dict(self) -> dict[str, float]:
        return {"x": float(self.x), "y": float(self.y), "r": float(self.r)}


def fit_circle(thetas: ArrayLike, radii: ArrayLike) -> Circle:
    """Fit a circle to edge samples given in polar form.

    Args:
        thetas: Sample angles in radians.
        radii: Sample radii in pixels, measured from the scan center.

    Returns:
        Best-fit circle, center relative to the scan center.

    Raises:
        InsufficientDataError: Fewer than 3 finite samples or collinear samples.
        DegenerateGeometryError: The solution has a non-positive radius.
    """
    t = np.asarray(thetas, dtype=np.float64).ravel()
    r = np.asarray(radii, dtype=np.float64).ravel()
    if t.shape != r.shape:
        raise ValueError(f"thetas and radii must match, got {t.shape} and {r.shape}")

    finite = np.isfinite(t) & np.isfinite(r)
    t, r = t[finite], r[finite]
    if t.size < MIN_FIT_SAMPLES:
        raise InsufficientDataError(
            f"circle fit needs at least {MIN_FIT_SAMPLES} samples, got {t.size}",
            n_samples=int(t.size),
        )

    px = r * np.cos(t)
    py = r * np.sin(t)
    design = np.column_stack([px, py, np.ones_like(px)])
    target = px**2 + py**2

    solution, _, rank, _ = np.linalg.lstsq(design, target, rcond=None)
    if rank < 3:
        raise InsufficientDataError(
            "circle fit samples are collinear", n_samples=int(t.size), rank=int(rank)
        )

    a, b, c = solution
    x0, y0 = a / 2.0, b / 2.0
    r_squared = c + x0**2 + y0**2
    if not np.isfinite(r_squared) or r_squared <= 0:
        raise DegenerateGeometryError(
            "circle fit produced a non-positive radius",
            r_squared=float(r_squared),
            n_samples=int(t.size),
        )
    return Circle(x=float(x0), y=float(y0), r=float(np.sqrt(r_squared)))


def fit_circle_to_samples(samples: Sequence[EdgeSample] | EdgeScan) -> Circle:
    """Fit a circle to an edge scan or a sequence of edge samples."""
    if isinstance(samples, EdgeScan):
        return fit_circle(samples.thetas, samples.radii)
    return fit_circle([s.theta for s in samples], [s.radius for s in samples])


def circle_residuals(circle: Circle, thetas: ArrayLike, radii: ArrayLike) -> NDArray[np.float64]:
    """Radial residuals ``r_i - r_model(theta_i)`` of samples against a circle."""
    return np.asarray(radii, dtype=np.float64) - circle.radius_at(thetas)


def residual_rms(circle: Circle, scan: EdgeScan) -> float:
    """Root-mean-square radial residual of a scan against its fitted circle."""
    residuals = circle_residuals(circle, scan.thetas, scan.radii)
    return float(np.sqrt(np.nanmean(residuals**2)))
