"""Length units and canvas geometry.

OOXML stores positions in EMU (914400 per inch). The preview model works in
percentages of the canvas, so everything here is a pure function of its
arguments and never raises on odd input.
"""
from __future__ import annotations

from typing import Any

from pptx.util import Inches, Mm

# Slide size used when ppt/presentation.xml has no usable p:sldSz (10" x 7.5").
DEFAULT_SLIDE_WIDTH_EMU: int = int(Inches(10))
DEFAULT_SLIDE_HEIGHT_EMU: int = int(Inches(7.5))

# Documents are previewed on a fixed A4 portrait canvas.
A4_WIDTH_EMU: int = int(Mm(210))
A4_HEIGHT_EMU: int = int(Mm(297))


def parse_emu(raw: Any, default: int = 0) -> int:
    """Parse an integer attribute value, returning `default` when unusable."""
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def canvas_size(cx: Any, cy: Any) -> tuple[int, int]:
    """Resolve slide canvas size from raw `cx`/`cy` attribute values.

    Each dimension falls back to the 10" x 7.5" default independently when it
    is absent, unparsable or not positive.
    """
    width = parse_emu(cx, DEFAULT_SLIDE_WIDTH_EMU)
    height = parse_emu(cy, DEFAULT_SLIDE_HEIGHT_EMU)
    if width <= 0:
        width = DEFAULT_SLIDE_WIDTH_EMU
    if height <= 0:
        height = DEFAULT_SLIDE_HEIGHT_EMU
    return (width, height)


def to_pct(value: float, extent: float) -> float:
    """Express `value` as a percentage of `extent` (0.0 when extent <= 0)."""
    if extent <= 0:
        return 0.0
    return (float(value) / float(extent)) * 100.0


def font_size_pt(sz: Any) -> float | None:
    """DrawingML `sz` is in hundredths of a point."""
    v = parse_emu(sz, -1)
    if v <= 0:
        return None
    return v / 100.0


def half_points_to_pt(sz: Any) -> float | None:
    """WordprocessingML `w:sz@w:val` is in half points."""
    v = parse_emu(sz, -1)
    if v <= 0:
        return None
    return v / 2.0
