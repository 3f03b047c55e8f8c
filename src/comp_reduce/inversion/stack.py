"""Wavelength-scan image stacks.

A :class:`WavelengthStack` holds images indexed by (Stokes parameter, tune)
together with the wavelength of each tune. Stokes planes follow the order
I, Q, U, V.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from comp_reduce.errors import ConfigurationError, InsufficientDataError

STOKES_LABELS = ("I", "Q", "U", "V")
STOKES_I, STOKES_Q, STOKES_U, STOKES_V = range(4)


@dataclass(frozen=True)
class WavelengthStack:
    """Images of a wavelength scan.

    Attributes:
        data: Array of shape (nstokes, ntune, ny, nx).
        wavelengths: Wavelength (nm) of each tune, length ntune.
    """

    data: NDArray[np.float64]
    wavelengths: NDArray[np.float64]

    def __post_init__(self) -> None:
        data = np.asarray(self.data, dtype=np.float64)
        wavelengths = np.asarray(self.wavelengths, dtype=np.float64).ravel()
        if data.ndim != 4:
            raise ValueError(f"data must have shape (nstokes, ntune, ny, nx), got {data.shape}")
        if data.shape[1] != wavelengths.size:
            raise ValueError(
                f"{data.shape[1]} tunes in data but {wavelengths.size} wavelengths given"
            )
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "wavelengths", wavelengths)

    @property
    def nstokes(self) -> int:
        return int(self.data.shape[0])

    @property
    def ntune(self) -> int:
        return int(self.data.shape[1])

    @property
    def image_shape(self) -> tuple[int, int]:
        return (int(self.data.shape[2]), int(self.data.shape[3]))

    def plane(self, stokes: int, tune: int) -> NDArray[np.float64]:
        return self.data[stokes, tune]

    def center_indices(self, center_wavelength: float) -> tuple[int, int, int]:
        """Tune indices of the three wavelengths nearest the line center.

        Raises:
            ConfigurationError: Wavelengths do not strictly increase with tune.
            InsufficientDataError: Fewer than 3 tunes, or the tune nearest the
                center has no neighbour on one side.
        """
        if self.ntune < 3:
            raise InsufficientDataError(
                f"three-point fit needs at least 3 tunes, got {self.ntune}", ntune=self.ntune
            )
        if np.any(np.diff(self.wavelengths) <= 0):
            raise ConfigurationError(
                "wavelengths must strictly increase with tune index",
                wavelengths=self.wavelengths.tolist(),
            )
        center = int(np.argmin(np.abs(self.wavelengths - center_wavelength)))
        if center == 0 or center == self.ntune - 1:
            raise InsufficientDataError(
                f"tune nearest {center_wavelength} nm is at the edge of the scan",
                center_wavelength=center_wavelength,
                wavelengths=self.wavelengths.tolist(),
            )
        return (center - 1, center, center + 1)

    def d_lambda(self, indices: tuple[int, int, int]) -> float:
        """Mean wavelength spacing of three tunes."""
        first, _, last = indices
        return float(self.wavelengths[last] - self.wavelengths[first]) / 2.0
