"""Preview model: positioned, styled visual elements in canvas percentages."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class BoundingBox:
    """Position and size as percentages of canvas width/height (not clamped)."""

    x_pct: float
    y_pct: float
    w_pct: float
    h_pct: float

    def to_dict(self) -> dict[str, float]:
        return {
            "x": round(self.x_pct, 4),
            "y": round(self.y_pct, 4),
            "w": round(self.w_pct, 4),
            "h": round(self.h_pct, 4),
        }


@dataclass(frozen=True)
class TextElement:
    element_id: str
    content: str
    bbox: BoundingBox
    font_size_pt: float | None = None
    font_family: str | None = None
    color: str | None = None    # "#RRGGBB"
    bold: bool | None = None
    italic: bool | None = None
    align: str | None = None    # left | center | right | justify

    kind = "text"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.element_id,
            "type": self.kind,
            "text": self.content,
            **self.bbox.to_dict(),
        }
        for key, value in (
            ("fontSize", self.font_size_pt),
            ("fontFamily", self.font_family),
            ("color", self.color),
            ("bold", self.bold),
            ("italic", self.italic),
            ("align", self.align),
        ):
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class ImageElement:
    element_id: str
    source_base64: str
    mime_type: str
    bbox: BoundingBox

    kind = "image"

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.source_base64}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.element_id,
            "type": self.kind,
            "src": self.data_uri,
            **self.bbox.to_dict(),
        }


VisualElement = Union[TextElement, ImageElement]
