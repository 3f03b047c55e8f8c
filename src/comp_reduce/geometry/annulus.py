"""Occulter and field-stop location in one beam sub-image.

The occulter is found as a rising (positive) edge, the field stop as a
falling (negative) edge, each fitted with a circle. Sub-images must already be
distortion corrected (see :mod:`comp_reduce.geometry.distortion`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from comp_reduce.geometry.circle import Circle, fit_circle_to_samples, residual_rms
from comp_reduce.geometry.edges import EdgeScan, default_angles, find_radial_edges, image_center

if TYPE_CHECKING:
    from comp_reduce.config import ReductionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnnulusResult:
    """Occulter and field circles of one sub-image.

    Circles are offsets from the sub-image center. The edge scans are kept
    for diagnostics and are not used downstream.
    """

    occulter: Circle
    field: Circle
    occulter_scan: EdgeScan
    field_scan: EdgeScan

    def to_dict(self) -> dict[str, object]:
        return {
            "occulter": self.occulter.to_dict(),
            "field": self.field.to_dict(),
            "occulter_boundary_hits": self.occulter_scan.boundary_hits,
            "field_boundary_hits": self.field_scan.boundary_hits,
        }


def _locate_edge(
    image: NDArray[np.float64],
    guess: Circle,
    window: float,
    polarity: str,
    angles: NDArray[np.float64],
    label: str,
) -> tuple[Circle, EdgeScan]:
    cx, cy = image_center(image.shape)
    scan_center = (cx + guess.x, cy + guess.y)
    scan = find_radial_edges(
        image,
        guess.r,
        window,
        polarity=polarity,  # type: ignore[arg-type]
        angles=angles,
        center=scan_center,
    )
    if scan.boundary_hits:
        logger.warning(
            "%s edge scan: %d of %d samples at window boundary (guess r=%.1f, window=%.1f)",
            label,
            scan.boundary_hits,
            len(scan),
            guess.r,
            window,
        )
    local = fit_circle_to_samples(scan)
    logger.debug(
        "%s circle fit rms=%.3f px over %d samples", label, residual_rms(local, scan), len(scan)
    )
    # scan radii are measured from the guessed center
    return local.translated(guess.x, guess.y), scan


def locate_annulus(
    sub_image: NDArray[np.floating],
    occulter_guess: Circle,
    field_guess: Circle,
    *,
    context: ReductionContext,
    angles: NDArray[np.floating] | None = None,
) -> AnnulusResult:
    """Find the occulter and field-stop circles of a distortion-corrected sub-image.

    Args:
        sub_image: One beam sub-image.
        occulter_guess: Expected occulter circle, offset from the sub-image center.
        field_guess: Expected field-stop circle, offset from the sub-image center.
        context: Reduction context supplying the scan windows and angle count.
        angles: Scan angles in radians; defaults to ``context.n_edge_angles``
            angles over a full circle.

    Returns:
        AnnulusResult with both circles relative to the sub-image center.

    Raises:
        InsufficientDataError: An edge scan is too degenerate to fit.
        DegenerateGeometryError: A fit produced no valid circle.
    """
    image = np.asarray(sub_image, dtype=np.float64)
    scan_angles = (
        default_angles(context.n_edge_angles)
        if angles is None
        else np.asarray(angles, dtype=np.float64)
    )

    occulter, occulter_scan = _locate_edge(
        image, occulter_guess, context.occulter_window, "positive", scan_angles, "occulter"
    )
    field, field_scan = _locate_edge(
        image, field_guess, context.field_window, "negative", scan_angles, "field"
    )
    logger.debug(
        "annulus: occulter=(%.2f, %.2f, %.2f) field=(%.2f, %.2f, %.2f)",
        occulter.x,
        occulter.y,
        occulter.r,
        field.x,
        field.y,
        field.r,
    )
    return AnnulusResult(
        occulter=occulter, field=field, occulter_scan=occulter_scan, field_scan=field_scan
    )
