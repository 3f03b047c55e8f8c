"""Reduction context: calibration constants shared by every component.

A :class:`ReductionContext` is loaded once per run and passed explicitly to
every component call. It is frozen and its tables are read-only mappings, so
it can be shared across files and threads without locking.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from comp_reduce.constants import FWHM_FACTOR, LINE_CONSTANTS, LineConstants, WaveType
from comp_reduce.errors import ConfigurationError

# Calibrated occulter radii (pixels) keyed by the OCC-ID header value
DEFAULT_OCCULTER_RADII: dict[str, float] = {
    "OC-991.6": 224.62,
    "OC-1004.7": 227.59,
    "OC-1018.0": 230.60,
}


@dataclass(frozen=True)
class FrameLayout:
    """Placement of the two beam sub-images inside a raw camera frame.

    Beam 1 is the upper-left sub-image, beam 2 the lower-right one. Shapes are
    (rows, cols) and rows increase upward, as in the FITS convention.
    """

    frame_shape: tuple[int, int] = (1024, 1024)
    beam_shape: tuple[int, int] = (620, 620)

    def __post_init__(self) -> None:
        if any(b > f for b, f in zip(self.beam_shape, self.frame_shape, strict=True)):
            raise ValueError(
                f"beam_shape {self.beam_shape} does not fit in frame_shape {self.frame_shape}"
            )

    def beam_origin(self, beam: int) -> tuple[int, int]:
        """Return the (x, y) full-frame pixel of a beam's sub-image origin."""
        frame_rows, frame_cols = self.frame_shape
        beam_rows, beam_cols = self.beam_shape
        if beam == 1:
            return (0, frame_rows - beam_rows)
        if beam == 2:
            return (frame_cols - beam_cols, 0)
        raise ValueError(f"beam must be 1 or 2, got {beam}")


def _frozen(mapping: Mapping[Any, Any]) -> Mapping[Any, Any]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ReductionContext:
    """Immutable calibration context for geometry and inversion.

    Attributes:
        distortion_k1: Distortion scale along x applied to each beam.
        distortion_k2: Distortion scale along y applied to each beam.
        layout: Beam placement inside the raw frame.
        line_constants: Per-wave-type line constants.
        occulter_radii: Calibrated occulter radius (pixels) per occulter ID.
        occulter_offset: Default occulter overmask margin (pixels).
        field_offset: Default field-stop overmask margin (pixels).
        post_width: Width (pixels) of the occulter post exclusion strip.
        default_post_angle: Post angle (degrees) for headers that carry none.
        fwhm_factor: Conversion from 1/e Gaussian width to FWHM.
        temperature_trend_warning: Temperature trend magnitude (km/s) above
            which the Doppler correction is flagged as suspicious.
        min_trend_pixels: Minimum good pixels for the Doppler trend fit.
        occulter_window: Half-width (pixels) of the occulter edge scan.
        field_window: Half-width (pixels) of the field-stop edge scan.
        n_edge_angles: Number of angles of each edge scan.
    """

    distortion_k1: float = 0.99353
    distortion_k2: float = 1.00973
    layout: FrameLayout = field(default_factory=FrameLayout)
    line_constants: Mapping[WaveType, LineConstants] = field(
        default_factory=lambda: _frozen(LINE_CONSTANTS)
    )
    occulter_radii: Mapping[str, float] = field(
        default_factory=lambda: _frozen(DEFAULT_OCCULTER_RADII)
    )
    occulter_offset: float = 2.0
    field_offset: float = 4.0
    post_width: float = 52.0
    default_post_angle: float = 270.0
    fwhm_factor: float = FWHM_FACTOR
    temperature_trend_warning: float = 0.5
    min_trend_pixels: int = 10
    occulter_window: float = 40.0
    field_window: float = 40.0
    n_edge_angles: int = 360

    def __post_init__(self) -> None:
        if not isinstance(self.line_constants, MappingProxyType):
            object.__setattr__(self, "line_constants", _frozen(self.line_constants))
        if not isinstance(self.occulter_radii, MappingProxyType):
            object.__setattr__(self, "occulter_radii", _frozen(self.occulter_radii))
        if self.post_width <= 0:
            raise ValueError(f"post_width must be positive, got {self.post_width}")
        if self.n_edge_angles < 3:
            raise ValueError(f"n_edge_angles must be at least 3, got {self.n_edge_angles}")
        if self.min_trend_pixels < 3:
            raise ValueError(f"min_trend_pixels must be at least 3, got {self.min_trend_pixels}")

    def line(self, wave_type: str | int | WaveType) -> LineConstants:
        """Look up the line constants of a wave type.

        Raises:
            ConfigurationError: If the wave type is unknown or has no constants.
        """
        key = WaveType.parse(wave_type)
        try:
            return self.line_constants[key]
        except KeyError:
            raise ConfigurationError(
                f"no line constants configured for wave type {key.value}", wave_type=key.value
            ) from None

    def occulter_radius(self, occulter_id: str) -> float:
        """Look up the calibrated radius of an occulter by its ID."""
        try:
            return float(self.occulter_radii[occulter_id.strip()])
        except KeyError:
            raise ConfigurationError(
                f"unknown occulter ID {occulter_id!r}",
                occulter_id=occulter_id,
                known=sorted(self.occulter_radii),
            ) from None


class LineOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rest_wavelength: float | None = None
    nominal_wavelength: float | None = None
    int_min: float | None = None
    int_max: float | None = None
    pol_int_min: float | None = None
    width_min: float | None = None
    width_max: float | None = None


class ContextOverrides(BaseModel):
    """Schema of a JSON calibration file; every field is optional."""

    model_config = ConfigDict(extra="forbid")

    distortion_k1: float | None = None
    distortion_k2: float | None = None
    frame_shape: tuple[int, int] | None = None
    beam_shape: tuple[int, int] | None = None
    occulter_radii: dict[str, float] | None = None
    lines: dict[str, LineOverride] | None = None
    occulter_offset: float | None = None
    field_offset: float | None = None
    post_width: float | None = None
    default_post_angle: float | None = None
    fwhm_factor: float | None = None
    temperature_trend_warning: float | None = None
    min_trend_pixels: int | None = None
    occulter_window: float | None = None
    field_window: float | None = None
    n_edge_angles: int | None = None


_SCALAR_FIELDS = (
    "distortion_k1",
    "distortion_k2",
    "occulter_offset",
    "field_offset",
    "post_width",
    "default_post_angle",
    "fwhm_factor",
    "temperature_trend_warning",
    "min_trend_pixels",
    "occulter_window",
    "field_window",
    "n_edge_angles",
)


def apply_overrides(base: ReductionContext, overrides: ContextOverrides) -> ReductionContext:
    """Return a new context with the non-null overrides applied."""
    changes: dict[str, Any] = {
        name: getattr(overrides, name)
        for name in _SCALAR_FIELDS
        if getattr(overrides, name) is not None
    }

    if overrides.frame_shape is not None or overrides.beam_shape is not None:
        changes["layout"] = FrameLayout(
            frame_shape=overrides.frame_shape or base.layout.frame_shape,
            beam_shape=overrides.beam_shape or base.layout.beam_shape,
        )

    if overrides.occulter_radii is not None:
        radii = dict(base.occulter_radii)
        radii.update(overrides.occulter_radii)
        changes["occulter_radii"] = radii

    if overrides.lines:
        lines = dict(base.line_constants)
        for label, line_override in overrides.lines.items():
            wave_type = WaveType.parse(label)
            updates = line_override.model_dump(exclude_none=True)
            lines[wave_type] = dataclasses.replace(lines[wave_type], **updates)
        changes["line_constants"] = lines

    return dataclasses.replace(base, **changes)


def load_context(path: Path | str, *, base: ReductionContext | None = None) -> ReductionContext:
    """Load a reduction context from a JSON calibration file.

    Args:
        path: JSON file whose keys follow :class:`ContextOverrides`.
        base: Context to apply the overrides to. Defaults to the built-in one.

    Raises:
        ConfigurationError: If the file cannot be read or fails validation.
    """
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"calibration file not found: {path}", path=str(path)) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read calibration file {path}: {exc}", path=str(path)) from exc

    try:
        overrides = ContextOverrides.model_validate(payload)
        return apply_overrides(base or ReductionContext(), overrides)
    except (ValidationError, ValueError) as exc:
        raise ConfigurationError(f"invalid calibration file {path}: {exc}", path=str(path)) from exc
