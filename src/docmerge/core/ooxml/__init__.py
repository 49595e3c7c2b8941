"""OOXML package layer.

Loading, units, the preview model and the error hierarchy shared by the
extractor, the merge engine and the concatenator.

Keep this module as a thin re-export layer so callers can import a stable path:

    from docmerge.core.ooxml import load, Package, InvalidPackage
"""

from __future__ import annotations

from .consistency import check_slide_consistency
from .errors import DataSourceError, DocmergeError, InvalidPackage, SchemaValidationError, UnsupportedFormat
from .model import BoundingBox, ImageElement, TextElement, VisualElement
from .package import MIME_DOCX, MIME_PPTX, MIME_ZIP, Package, PackageKind, load, load_file

__all__ = [
    "BoundingBox",
    "DataSourceError",
    "DocmergeError",
    "ImageElement",
    "InvalidPackage",
    "MIME_DOCX",
    "MIME_PPTX",
    "MIME_ZIP",
    "Package",
    "PackageKind",
    "SchemaValidationError",
    "TextElement",
    "UnsupportedFormat",
    "VisualElement",
    "check_slide_consistency",
    "load",
    "load_file",
]
