"""Quick inversion of wavelength-scan Stokes stacks.

- WavelengthStack: Images indexed by (Stokes, tune) with tune wavelengths.
- analytic_gauss_fit: Closed-form Gaussian through three line samples.
- QuickInvertEngine: Intensity, polarization, velocity and width maps.
- DopplerCorrector: East-west trend removal and rest-wavelength referencing.
"""

from __future__ import annotations

from comp_reduce.inversion.doppler import DopplerCorrection, DopplerCorrector
from comp_reduce.inversion.gauss import GaussFit, analytic_gauss_fit
from comp_reduce.inversion.quick_invert import (
    QuickInvertConfig,
    QuickInvertEngine,
    QuickInvertResult,
)
from comp_reduce.inversion.stack import WavelengthStack

__all__ = [
    "DopplerCorrection",
    "DopplerCorrector",
    "GaussFit",
    "QuickInvertConfig",
    "QuickInvertEngine",
    "QuickInvertResult",
    "WavelengthStack",
    "analytic_gauss_fit",
]
