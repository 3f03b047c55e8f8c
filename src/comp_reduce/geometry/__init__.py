"""Occulter and field-stop geometry of CoMP frames.

Edge finding and circle fitting:
- find_radial_edges: Radial derivative extremum along rays from a center.
- fit_circle / fit_circle_to_samples: Algebraic circle fit in polar samples.

Annulus location and assembly:
- locate_annulus: Occulter and field-stop circles of one beam sub-image.
- locate_geometry: Both beams of a raw frame assembled into a GeometryModel.
- FlatGeometry: Flat-field guesses per beam.

Masks:
- MaskBuilder: Combined disk / field / post / overlap mask from header or geometry.
- MaskGeometry: Schema-independent mask geometry.
"""

from __future__ import annotations

from comp_reduce.geometry.annulus import AnnulusResult, locate_annulus
from comp_reduce.geometry.circle import Circle, fit_circle, fit_circle_to_samples
from comp_reduce.geometry.distortion import apply_distortion
from comp_reduce.geometry.edges import EdgeSample, EdgeScan, find_radial_edges, image_center
from comp_reduce.geometry.mask import (
    MaskBuilder,
    MaskConfig,
    MaskGeometry,
    compute_overlap_angle,
    detect_schema,
)
from comp_reduce.geometry.model import (
    FlatGeometry,
    GeometryModel,
    assemble_geometry,
    extract_beam,
    locate_geometry,
)

__all__ = [
    "AnnulusResult",
    "Circle",
    "EdgeSample",
    "EdgeScan",
    "FlatGeometry",
    "GeometryModel",
    "MaskBuilder",
    "MaskConfig",
    "MaskGeometry",
    "apply_distortion",
    "assemble_geometry",
    "compute_overlap_angle",
    "detect_schema",
    "extract_beam",
    "find_radial_edges",
    "fit_circle",
    "fit_circle_to_samples",
    "image_center",
    "locate_annulus",
    "locate_geometry",
]
