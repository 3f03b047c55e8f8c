"""comp-reduce: geometry and quick-invert reduction for CoMP coronagraph data."""

from __future__ import annotations

from comp_reduce.config import FrameLayout, ReductionContext, load_context
from comp_reduce.constants import WaveType
from comp_reduce.errors import (
    ConfigurationError,
    DegenerateGeometryError,
    InsufficientDataError,
    InsufficientStokesDataError,
    InvalidInputError,
    MissingInputError,
    ReductionError,
)

__version__ = "0.3.0"

__all__ = [
    "ConfigurationError",
    "DegenerateGeometryError",
    "FrameLayout",
    "InsufficientDataError",
    "InsufficientStokesDataError",
    "InvalidInputError",
    "MissingInputError",
    "ReductionContext",
    "WaveType",
    "__version__",
    "load_context",
]
