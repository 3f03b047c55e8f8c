"""Geometric validity masks for combined-beam images.

The final mask is the elementwise product of four sub-masks, so composition
is associative and adding an exclusion can only shrink it:

- disk mask: 0 inside the occulter (plus an overmask margin), 1 outside
- field mask: 1 inside the field stop (less an overmask margin), 0 outside
- post mask: 0 on the strip shadowed by the occulter post, 1 elsewhere
- overlap mask: 1 only where the field stops of both beams overlap

Two header schemas carry the geometry. Legacy headers expose per-beam
averaged circles (``OCRAD1``, ``FCENX1``, ...). Current headers expose a
single occulter / field circle plus post, overlap and solar P angles. Both
are converted to a :class:`MaskGeometry` before any mask is built.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import numpy as np
from astropy.io import fits
from numpy.typing import NDArray

from comp_reduce.errors import ConfigurationError
from comp_reduce.geometry.circle import Circle
from comp_reduce.geometry.edges import image_center

if TYPE_CHECKING:
    from comp_reduce.config import ReductionContext

logger = logging.getLogger(__name__)

Schema = Literal["legacy", "current"]

LEGACY_KEYWORDS = (
    "CRPIX1",
    "CRPIX2",
    "OCRAD1",
    "OCRAD2",
    "FCENX1",
    "FCENX2",
    "FCENY1",
    "FCENY2",
    "FCRAD1",
    "FCRAD2",
)
CURRENT_KEYWORDS = (
    "CRPIX1",
    "CRPIX2",
    "FRPIX1",
    "FRPIX2",
    "FRADIUS",
    "POSTPANG",
    "OVRLPANG",
    "SOLAR_P0",
)


def compute_overlap_angle(delta_x: float, delta_y: float) -> float:
    """Overlap angle ``atan(delta_y / delta_x)`` in degrees.

    ``delta_x == 0`` has no quotient: the angle is +90 or -90 degrees by the
    sign of ``delta_y``, and 0 when both deltas vanish (coincident beams, where
    the angle has no effect on the overlap region).
    """
    if delta_x == 0.0:
        if delta_y == 0.0:
            logger.warning("overlap angle undefined for zero beam offset, using 0.0")
            return 0.0
        return math.copysign(90.0, delta_y)
    return math.degrees(math.atan(delta_y / delta_x))


@dataclass(frozen=True)
class MaskGeometry:
    """Schema-independent mask geometry of one image.

    Circles are offsets from the image center. Angles are in degrees,
    counter-clockwise from the +x (column) axis, in the instrument frame;
    the image-frame angle adds ``p_angle``.

    Attributes:
        occulter: Occulter circle.
        field: Field-stop circle.
        post_angle: Direction of the occulter post.
        overlap_angle: Direction along which the two beams' field stops are displaced.
        overlap_shift: Displacement (pixels) of each beam's field stop from ``field``.
        p_angle: Solar P angle the image is rotated by.
        schema: Header schema the geometry was read from.
    """

    occulter: Circle
    field: Circle
    post_angle: float
    overlap_angle: float
    overlap_shift: float
    p_angle: float = 0.0
    schema: Schema = "current"

    def image_angle(self, angle: float) -> float:
        return angle + self.p_angle

    def occulter_center(self, shape: tuple[int, int]) -> tuple[float, float]:
        """Absolute (x, y) pixel of the occulter center in an image of ``shape``."""
        cx, cy = image_center(shape)
        return (cx + self.occulter.x, cy + self.occulter.y)


@dataclass(frozen=True)
class MaskConfig:
    """Mask options.

    Attributes:
        occulter_offset: Occulter overmask margin (pixels); ``None`` uses the
            calibrated default of the reduction context.
        field_offset: Field-stop overmask margin (pixels); ``None`` uses the
            calibrated default.
        no_post: Disable the post exclusion.
        image_occulter_radius: Use the per-frame occulter radius of the header
            (``ORADIUS``) instead of the calibrated radius of its ``OCC-ID``.
    """

    occulter_offset: float | None = None
    field_offset: float | None = None
    no_post: bool = False
    image_occulter_radius: bool = False


@dataclass(frozen=True)
class MaskComponents:
    disk: NDArray[np.float64]
    field: NDArray[np.float64]
    post: NDArray[np.float64]
    overlap: NDArray[np.float64]

    @property
    def combined(self) -> NDArray[np.float64]:
        return self.disk * self.field * self.post * self.overlap


def _offset_grid(
    shape: tuple[int, int], dx: float, dy: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Pixel offsets (x, y) from the point ``image center + (dx, dy)``."""
    cx, cy = image_center(shape)
    rows, cols = np.indices(shape, dtype=np.float64)
    return cols - (cx + dx), rows - (cy + dy)


def disk_mask(
    shape: tuple[int, int], occulter: Circle, offset: float = 0.0
) -> NDArray[np.float64]:
    """1 outside the occulter radius plus ``offset``, 0 inside."""
    x, y = _offset_grid(shape, occulter.x, occulter.y)
    return (np.hypot(x, y) > occulter.r + offset).astype(np.float64)


def field_mask(
    shape: tuple[int, int], field: Circle, offset: float = 0.0
) -> NDArray[np.float64]:
    """1 inside the field radius less ``offset``, 0 outside."""
    x, y = _offset_grid(shape, field.x, field.y)
    return (np.hypot(x, y) < field.r - offset).astype(np.float64)


def post_mask(
    shape: tuple[int, int],
    angle: float,
    width: float,
    center: Circle | None = None,
) -> NDArray[np.float64]:
    """0 on the strip of ``width`` pixels running outward from ``center`` along ``angle``.

    The post shadow is modelled as a parallel-sided strip rather than an
    angular wedge: ``width`` (the context ``post_width``) is a width in
    pixels, not an opening angle, so the excluded band does not widen with
    distance from the occulter.
    """
    dx, dy = (0.0, 0.0) if center is None else (center.x, center.y)
    x, y = _offset_grid(shape, dx, dy)
    theta = math.radians(angle)
    along = x * math.cos(theta) + y * math.sin(theta)
    across = -x * math.sin(theta) + y * math.cos(theta)
    shadow = (along > 0.0) & (np.abs(across) < width / 2.0)
    return np.where(shadow, 0.0, 1.0)


def overlap_mask(
    shape: tuple[int, int],
    field: Circle,
    angle: float,
    shift: float,
    offset: float = 0.0,
) -> NDArray[np.float64]:
    """1 inside both field circles displaced by ``+/- shift`` along ``angle``.

    The region seen by both beams is the intersection of the two displaced
    field-stop circles, not an angular wedge; ``angle`` only sets the
    displacement direction and ``shift`` is in pixels.
    """
    theta = math.radians(angle)
    sx, sy = shift * math.cos(theta), shift * math.sin(theta)
    first = field_mask(shape, field.translated(sx, sy), offset)
    second = field_mask(shape, field.translated(-sx, -sy), offset)
    return first * second


def _require(header: fits.Header, keywords: tuple[str, ...], schema: str) -> None:
    missing = [key for key in keywords if key not in header]
    if missing:
        raise ConfigurationError(
            f"{schema} geometry header is missing keyword(s) {', '.join(missing)}",
            schema=schema,
            missing=missing,
        )


def detect_schema(header: fits.Header) -> Schema:
    """Identify the geometry schema of a header."""
    if "OCRAD1" in header:
        return "legacy"
    if "FRPIX1" in header:
        return "current"
    raise ConfigurationError("header carries no recognised geometry keywords")


def legacy_mask_geometry(
    header: fits.Header, shape: tuple[int, int], *, post_angle: float
) -> MaskGeometry:
    """Geometry of a legacy header.

    ``CRPIX1/2`` are 1-based; the field centers ``FCENX{b}/FCENY{b}`` are
    stored 0-based. Occulter and field radii are beam averages, the overlap
    direction comes from the beam field-center delta.
    """
    _require(header, LEGACY_KEYWORDS, "legacy")
    cx, cy = image_center(shape)
    occulter = Circle(
        x=float(header["CRPIX1"]) - 1.0 - cx,
        y=float(header["CRPIX2"]) - 1.0 - cy,
        r=(float(header["OCRAD1"]) + float(header["OCRAD2"])) / 2.0,
    )
    fx1, fx2 = float(header["FCENX1"]), float(header["FCENX2"])
    fy1, fy2 = float(header["FCENY1"]), float(header["FCENY2"])
    field = Circle(
        x=(fx1 + fx2) / 2.0 - cx,
        y=(fy1 + fy2) / 2.0 - cy,
        r=(float(header["FCRAD1"]) + float(header["FCRAD2"])) / 2.0,
    )
    return MaskGeometry(
        occulter=occulter,
        field=field,
        post_angle=post_angle,
        overlap_angle=compute_overlap_angle(fx2 - fx1, fy2 - fy1),
        overlap_shift=math.hypot(fx2 - fx1, fy2 - fy1) / 2.0,
        p_angle=0.0,
        schema="legacy",
    )


def current_mask_geometry(
    header: fits.Header, shape: tuple[int, int], *, occulter_radius: float
) -> MaskGeometry:
    """Geometry of a current-schema header; ``CRPIX`` and ``FRPIX`` are 1-based."""
    _require(header, CURRENT_KEYWORDS, "current")
    cx, cy = image_center(shape)
    occulter = Circle(
        x=float(header["CRPIX1"]) - 1.0 - cx,
        y=float(header["CRPIX2"]) - 1.0 - cy,
        r=occulter_radius,
    )
    field = Circle(
        x=float(header["FRPIX1"]) - 1.0 - cx,
        y=float(header["FRPIX2"]) - 1.0 - cy,
        r=float(header["FRADIUS"]),
    )
    return MaskGeometry(
        occulter=occulter,
        field=field,
        post_angle=float(header["POSTPANG"]),
        overlap_angle=float(header["OVRLPANG"]),
        overlap_shift=math.hypot(field.x - occulter.x, field.y - occulter.y),
        p_angle=float(header["SOLAR_P0"]),
        schema="current",
    )


def mask_geometry_to_header(
    geometry: MaskGeometry,
    shape: tuple[int, int],
    *,
    p_angle: float = 0.0,
    occulter_id: str | None = None,
) -> fits.Header:
    """Current-schema geometry keywords for an image of ``shape``."""
    cx, cy = image_center(shape)
    header = fits.Header()
    header["CRPIX1"] = (cx + geometry.occulter.x + 1.0, "occulter center x [pixel]")
    header["CRPIX2"] = (cy + geometry.occulter.y + 1.0, "occulter center y [pixel]")
    header["ORADIUS"] = (geometry.occulter.r, "image occulter radius [pixel]")
    if occulter_id is not None:
        header["OCC-ID"] = (occulter_id, "occulter ID")
    header["FRPIX1"] = (cx + geometry.field.x + 1.0, "field stop center x [pixel]")
    header["FRPIX2"] = (cy + geometry.field.y + 1.0, "field stop center y [pixel]")
    header["FRADIUS"] = (geometry.field.r, "field stop radius [pixel]")
    header["POSTPANG"] = (geometry.post_angle, "occulter post angle [deg]")
    header["OVRLPANG"] = (geometry.overlap_angle, "beam overlap angle [deg]")
    header["SOLAR_P0"] = (p_angle, "solar P angle [deg]")
    return header


class MaskBuilder:
    """Build combined validity masks from header geometry or a MaskGeometry.

    Example:
        >>> builder = MaskBuilder(ReductionContext(), MaskConfig(no_post=True))
        >>> mask = builder.from_header(primary_header, shape=(620, 620))
    """

    def __init__(self, context: ReductionContext, config: MaskConfig | None = None) -> None:
        self.context = context
        self.config = config or MaskConfig()

    @property
    def occulter_offset(self) -> float:
        offset = self.config.occulter_offset
        return self.context.occulter_offset if offset is None else offset

    @property
    def field_offset(self) -> float:
        offset = self.config.field_offset
        return self.context.field_offset if offset is None else offset

    def geometry_from_header(self, header: fits.Header, shape: tuple[int, int]) -> MaskGeometry:
        """Read the mask geometry of either header schema."""
        schema = detect_schema(header)
        if schema == "legacy":
            return legacy_mask_geometry(header, shape, post_angle=self.context.default_post_angle)

        if self.config.image_occulter_radius:
            if "ORADIUS" not in header:
                raise ConfigurationError(
                    "header is missing keyword ORADIUS required for image occulter radius",
                    missing=["ORADIUS"],
                )
            radius = float(header["ORADIUS"])
        else:
            if "OCC-ID" not in header:
                raise ConfigurationError("header is missing keyword OCC-ID", missing=["OCC-ID"])
            radius = self.context.occulter_radius(str(header["OCC-ID"]))
        return current_mask_geometry(header, shape, occulter_radius=radius)

    def components(self, geometry: MaskGeometry, shape: tuple[int, int]) -> MaskComponents:
        shape = (int(shape[0]), int(shape[1]))
        if self.config.no_post:
            post = np.ones(shape, dtype=np.float64)
        else:
            post = post_mask(
                shape,
                geometry.image_angle(geometry.post_angle),
                self.context.post_width,
                center=geometry.occulter,
            )
        return MaskComponents(
            disk=disk_mask(shape, geometry.occulter, self.occulter_offset),
            field=field_mask(shape, geometry.field, self.field_offset),
            post=post,
            overlap=overlap_mask(
                shape,
                geometry.field,
                geometry.image_angle(geometry.overlap_angle),
                geometry.overlap_shift,
                self.field_offset,
            ),
        )

    def from_geometry(self, geometry: MaskGeometry, shape: tuple[int, int]) -> NDArray[np.float64]:
        """Combined mask of a MaskGeometry."""
        return self.components(geometry, shape).combined

    def from_header(
        self, header: fits.Header, shape: tuple[int, int] | None = None
    ) -> NDArray[np.float64]:
        """Combined mask of a header; ``shape`` defaults to the header's NAXIS2/NAXIS1."""
        if shape is None:
            if header.get("NAXIS", 0) < 2:
                raise ConfigurationError("mask shape not given and header has no image axes")
            shape = (int(header["NAXIS2"]), int(header["NAXIS1"]))
        geometry = self.geometry_from_header(header, shape)
        mask = self.from_geometry(geometry, shape)
        logger.debug(
            "%s geometry mask: %d of %d pixels valid", geometry.schema, int(mask.sum()), mask.size
        )
        return mask
