"""Local error taxonomy for comp-reduce.

The reduction core is pure array work and must not depend on any pipeline
runtime. Every failure is raised as a ``ReductionError`` subclass carrying a
small, stable error envelope that a batch runner can log, count, and
translate into its own status reporting.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    CONFIGURATION = "CONFIGURATION"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    DEGENERATE_GEOMETRY = "DEGENERATE_GEOMETRY"
    MISSING_INPUT = "MISSING_INPUT"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ErrorType
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


def make_error(error_type: ErrorType, message: str, **context: Any) -> ErrorEnvelope:
    return ErrorEnvelope(type=error_type, message=message, context=dict(context))


class ReductionError(Exception):
    """Base class for failures of one unit of work (one observation file).

    Attributes:
        envelope: Structured error envelope with error details.
        error_type: The error type of the envelope.
        message: The error message.
        context: Diagnostic values recorded when the error was raised.
    """

    error_type_default: ErrorType = ErrorType.INTERNAL_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        self._message = message
        self.envelope = make_error(self.error_type_default, message, **context)
        super().__init__(message)

    @property
    def error_type(self) -> ErrorType:
        """Return the error type from the envelope."""
        return self.envelope.type

    @property
    def message(self) -> str:
        """Return the error message."""
        return self._message

    @property
    def context(self) -> dict[str, Any]:
        """Return the error context from the envelope."""
        return self.envelope.context


class ConfigurationError(ReductionError):
    """Unknown wave type, missing header keyword, or malformed calibration."""

    error_type_default = ErrorType.CONFIGURATION


class InsufficientDataError(ReductionError):
    """Too few edge samples, tunes, or Stokes planes to proceed."""

    error_type_default = ErrorType.INSUFFICIENT_DATA


class InsufficientStokesDataError(InsufficientDataError):
    """Wavelength stack carries fewer than the three Stokes planes I, Q, U."""

    def __init__(self, nstokes: int, message: str | None = None, **context: Any) -> None:
        self.nstokes = int(nstokes)
        if message is None:
            message = f"not enough Stokes parameters: {self.nstokes} < 3"
        super().__init__(message, nstokes=self.nstokes, **context)


class DegenerateGeometryError(ReductionError):
    """A geometric fit produced no valid circle."""

    error_type_default = ErrorType.DEGENERATE_GEOMETRY


class MissingInputError(ReductionError):
    """Input file is absent or has zero length."""

    error_type_default = ErrorType.MISSING_INPUT

    def __init__(self, path: str, message: str | None = None) -> None:
        self.path = str(path)
        if message is None:
            message = f"input file missing or empty: {self.path}"
        super().__init__(message, path=self.path)


class InvalidInputError(ReductionError):
    """Input file exists but is not a readable wavelength stack."""

    error_type_default = ErrorType.INVALID_INPUT

    def __init__(self, path: str, message: str, **context: Any) -> None:
        self.path = str(path)
        super().__init__(message, path=self.path, **context)
