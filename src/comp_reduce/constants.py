"""Physical and per-line constants for the quick-invert reduction.

Per-line values live in a single lookup table keyed by :class:`WaveType`.
Unknown wave types are rejected by :meth:`WaveType.parse`; there is no
silent default.

Intensities are in units of millionths of the solar disk intensity, wavelengths
in nm, velocities and line widths in km/s.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from comp_reduce.errors import ConfigurationError

SPEED_OF_LIGHT_KMS = 299792.458

# Gaussian 1/e half-width to full width at half maximum
FWHM_FACTOR = 2.0 * math.sqrt(math.log(2.0))

# Sentinel written to radial azimuth where no polarization is available
RADIAL_AZIMUTH_SENTINEL = -999.0


class WaveType(str, Enum):
    FE_XIII_1074 = "1074"
    FE_XIII_1079 = "1079"
    HE_I_1083 = "1083"

    @classmethod
    def parse(cls, value: str | int | WaveType) -> WaveType:
        """Resolve a wave type from its string or integer label.

        Raises:
            ConfigurationError: If the label is not a known wave type.
        """
        if isinstance(value, WaveType):
            return value
        label = str(value).strip()
        try:
            return cls(label)
        except ValueError:
            raise ConfigurationError(
                f"unknown wave type {label!r}, expected one of {[w.value for w in cls]}",
                wave_type=label,
            ) from None


@dataclass(frozen=True)
class LineConstants:
    """Calibration constants of one spectral line.

    Attributes:
        rest_wavelength: Rest (velocity-zero) wavelength of the line center.
        nominal_wavelength: Wavelength used to convert shifts to velocity.
        int_min: Minimum intensity of each of the three tunes for a velocity.
        int_max: Maximum intensity of each of the three tunes.
        pol_int_min: Minimum center-tune intensity for polarization output.
        width_min: Minimum plausible 1/e line width (km/s) for a velocity.
        width_max: Maximum plausible 1/e line width (km/s) for a velocity.
    """

    rest_wavelength: float
    nominal_wavelength: float
    int_min: float
    int_max: float
    pol_int_min: float
    width_min: float
    width_max: float

    def __post_init__(self) -> None:
        if self.nominal_wavelength <= 0:
            raise ValueError(f"nominal_wavelength must be positive, got {self.nominal_wavelength}")
        if self.int_min >= self.int_max:
            raise ValueError(f"int_min ({self.int_min}) must be less than int_max ({self.int_max})")
        if self.pol_int_min > self.int_min:
            raise ValueError("pol_int_min must not exceed int_min (polarization gate is looser)")
        if self.width_min >= self.width_max:
            raise ValueError(
                f"width_min ({self.width_min}) must be less than width_max ({self.width_max})"
            )


LINE_CONSTANTS: dict[WaveType, LineConstants] = {
    WaveType.FE_XIII_1074: LineConstants(
        rest_wavelength=1074.62,
        nominal_wavelength=1074.7,
        int_min=1.0,
        int_max=60.0,
        pol_int_min=0.25,
        width_min=15.0,
        width_max=90.0,
    ),
    WaveType.FE_XIII_1079: LineConstants(
        rest_wavelength=1079.78,
        nominal_wavelength=1079.8,
        int_min=0.5,
        int_max=60.0,
        pol_int_min=0.15,
        width_min=15.0,
        width_max=90.0,
    ),
    WaveType.HE_I_1083: LineConstants(
        rest_wavelength=1083.0,
        nominal_wavelength=1083.0,
        int_min=2.0,
        int_max=400.0,
        pol_int_min=1.0,
        width_min=5.0,
        width_max=60.0,
    ),
}
