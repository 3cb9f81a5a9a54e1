"""Unit conversion helpers for DrawingML extents."""
from __future__ import annotations

EMU_PER_INCH = 914400
DEFAULT_DPI = 72


def pixels_to_emu(pixels: int, dpi: float = DEFAULT_DPI) -> int:
    """Convert a pixel length at ``dpi`` into English Metric Units."""
    if dpi <= 0:
        dpi = DEFAULT_DPI
    return int(pixels * EMU_PER_INCH // dpi)
