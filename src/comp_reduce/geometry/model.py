"""Full-frame geometry assembled from the two beam sub-images.

A raw frame holds two beam sub-images (see :class:`~comp_reduce.config.FrameLayout`).
Each beam is located independently in its own sub-image coordinates; this
module translates the per-beam circles into full-frame offsets (relative to
the full-frame center) and records the post and overlap angles. No fitting
happens here.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from astropy.io import fits
from numpy.typing import NDArray

from comp_reduce.errors import ConfigurationError
from comp_reduce.geometry.annulus import AnnulusResult, locate_annulus
from comp_reduce.geometry.circle import Circle
from comp_reduce.geometry.distortion import apply_distortion
from comp_reduce.geometry.edges import image_center
from comp_reduce.geometry.mask import (
    MaskGeometry,
    compute_overlap_angle,
    mask_geometry_to_header,
)

if TYPE_CHECKING:
    from comp_reduce.config import FrameLayout, ReductionContext

logger = logging.getLogger(__name__)

BEAMS = (1, 2)


def extract_beam(
    frame: NDArray[np.floating], beam: int, layout: FrameLayout
) -> NDArray[np.float64]:
    """Cut one beam sub-image out of a raw frame."""
    data = np.asarray(frame, dtype=np.float64)
    if data.shape != tuple(layout.frame_shape):
        raise ValueError(f"frame shape {data.shape} does not match layout {layout.frame_shape}")
    x0, y0 = layout.beam_origin(beam)
    rows, cols = layout.beam_shape
    return data[y0 : y0 + rows, x0 : x0 + cols].copy()


def beam_to_frame(circle: Circle, beam: int, layout: FrameLayout) -> Circle:
    """Re-express a sub-image circle as an offset from the full-frame center."""
    x0, y0 = layout.beam_origin(beam)
    sub_cx, sub_cy = image_center(layout.beam_shape)
    frame_cx, frame_cy = image_center(layout.frame_shape)
    return circle.translated(x0 + sub_cx - frame_cx, y0 + sub_cy - frame_cy)


def _header_float(header: fits.Header, key: str) -> float:
    if key not in header:
        raise ConfigurationError(f"flat header is missing keyword {key}", keyword=key)
    return float(header[key])


@dataclass(frozen=True)
class FlatGeometry:
    """Flat-field calibration geometry used as guesses for each beam.

    Circles are offsets from the beam sub-image center.
    """

    occulter1: Circle
    occulter2: Circle
    field1: Circle
    field2: Circle
    post_angle1: float
    post_angle2: float

    def occulter(self, beam: int) -> Circle:
        return self.occulter1 if beam == 1 else self.occulter2

    def field(self, beam: int) -> Circle:
        return self.field1 if beam == 1 else self.field2

    @classmethod
    def from_header(cls, header: fits.Header, layout: FrameLayout) -> FlatGeometry:
        """Read flat geometry keywords.

        Centers (``OXCNTER{b}``, ``OYCNTER{b}``, ``FXCNTER{b}``, ``FYCNTER{b}``)
        are 1-based sub-image pixel positions; radii are ``ORADIUS{b}`` and
        ``FRADIUS{b}``; post angles ``POSTANG{b}``.
        """
        cx, cy = image_center(layout.beam_shape)
        values: dict[str, Any] = {}
        for beam in BEAMS:
            values[f"occulter{beam}"] = Circle(
                x=_header_float(header, f"OXCNTER{beam}") - 1.0 - cx,
                y=_header_float(header, f"OYCNTER{beam}") - 1.0 - cy,
                r=_header_float(header, f"ORADIUS{beam}"),
            )
            values[f"field{beam}"] = Circle(
                x=_header_float(header, f"FXCNTER{beam}") - 1.0 - cx,
                y=_header_float(header, f"FYCNTER{beam}") - 1.0 - cy,
                r=_header_float(header, f"FRADIUS{beam}"),
            )
            values[f"post_angle{beam}"] = _header_float(header, f"POSTANG{beam}")
        return cls(**values)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> FlatGeometry:
        try:
            return cls(
                occulter1=Circle(**payload["occulter1"]),
                occulter2=Circle(**payload["occulter2"]),
                field1=Circle(**payload["field1"]),
                field2=Circle(**payload["field2"]),
                post_angle1=float(payload["post_angle1"]),
                post_angle2=float(payload["post_angle2"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid flat geometry: {exc}") from exc


@dataclass(frozen=True)
class GeometryModel:
    """Full-frame geometry of one observation.

    Attributes:
        occulter1, occulter2: Occulter circles per beam, offsets from the frame center.
        field1, field2: Field-stop circles per beam, offsets from the frame center.
        post_angle1, post_angle2: Occulter post angles (degrees) per beam.
        delta_x, delta_y: Beam 2 minus beam 1 flat occulter center offset (pixels).
        overlap_angle: ``atan(delta_y / delta_x)`` in degrees, guarded at ``delta_x == 0``.
    """

    occulter1: Circle
    occulter2: Circle
    field1: Circle
    field2: Circle
    post_angle1: float
    post_angle2: float
    delta_x: float
    delta_y: float
    overlap_angle: float

    def to_mask_geometry(self) -> MaskGeometry:
        """Average both beams into the occulter-centred combined-beam frame."""
        dx = ((self.field1.x - self.occulter1.x) + (self.field2.x - self.occulter2.x)) / 2.0
        dy = ((self.field1.y - self.occulter1.y) + (self.field2.y - self.occulter2.y)) / 2.0
        occulter_r = (self.occulter1.r + self.occulter2.r) / 2.0
        return MaskGeometry(
            occulter=Circle(x=0.0, y=0.0, r=occulter_r),
            field=Circle(x=dx, y=dy, r=(self.field1.r + self.field2.r) / 2.0),
            post_angle=(self.post_angle1 + self.post_angle2) / 2.0,
            overlap_angle=self.overlap_angle,
            overlap_shift=math.hypot(dx, dy),
            p_angle=0.0,
            schema="current",
        )

    def to_header(
        self,
        shape: tuple[int, int],
        *,
        p_angle: float = 0.0,
        occulter_id: str | None = None,
    ) -> fits.Header:
        """Geometry keywords (current schema) of the combined-beam image."""
        return mask_geometry_to_header(
            self.to_mask_geometry(), shape, p_angle=p_angle, occulter_id=occulter_id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "occulter1": self.occulter1.to_dict(),
            "occulter2": self.occulter2.to_dict(),
            "field1": self.field1.to_dict(),
            "field2": self.field2.to_dict(),
            "post_angle1": self.post_angle1,
            "post_angle2": self.post_angle2,
            "delta_x": self.delta_x,
            "delta_y": self.delta_y,
            "overlap_angle": self.overlap_angle,
        }


def assemble_geometry(
    result1: AnnulusResult,
    result2: AnnulusResult,
    flat: FlatGeometry,
    *,
    layout: FrameLayout,
) -> GeometryModel:
    """Combine per-beam annulus results into a full-frame GeometryModel."""
    delta_x = flat.occulter2.x - flat.occulter1.x
    delta_y = flat.occulter2.y - flat.occulter1.y
    return GeometryModel(
        occulter1=beam_to_frame(result1.occulter, 1, layout),
        occulter2=beam_to_frame(result2.occulter, 2, layout),
        field1=beam_to_frame(result1.field, 1, layout),
        field2=beam_to_frame(result2.field, 2, layout),
        post_angle1=flat.post_angle1,
        post_angle2=flat.post_angle2,
        delta_x=delta_x,
        delta_y=delta_y,
        overlap_angle=compute_overlap_angle(delta_x, delta_y),
    )


def locate_geometry(
    frame: NDArray[np.floating],
    flat: FlatGeometry,
    *,
    context: ReductionContext,
    angles: NDArray[np.floating] | None = None,
) -> tuple[GeometryModel, tuple[AnnulusResult, AnnulusResult]]:
    """Locate occulter and field stop in both beams of a raw frame.

    Each beam is extracted, distortion corrected, and scanned around the flat
    geometry guesses.

    Returns:
        The assembled GeometryModel and the per-beam annulus results.
    """
    results = []
    for beam in BEAMS:
        sub_image = extract_beam(frame, beam, context.layout)
        corrected = apply_distortion(sub_image, context.distortion_k1, context.distortion_k2)
        results.append(
            locate_annulus(
                corrected,
                flat.occulter(beam),
                flat.field(beam),
                context=context,
                angles=angles,
            )
        )
    result1, result2 = results
    geometry = assemble_geometry(result1, result2, flat, layout=context.layout)
    logger.info(
        "geometry: occulter radii %.2f / %.2f, field radii %.2f / %.2f, overlap angle %.2f",
        geometry.occulter1.r,
        geometry.occulter2.r,
        geometry.field1.r,
        geometry.field2.r,
        geometry.overlap_angle,
    )
    return geometry, (result1, result2)
