"""FITS input and output."""

from __future__ import annotations

from comp_reduce.io.fits_io import (
    OUTPUT_EXTENSIONS,
    StackFile,
    read_wavelength_stack,
    write_quick_invert,
)

__all__ = ["OUTPUT_EXTENSIONS", "StackFile", "read_wavelength_stack", "write_quick_invert"]
