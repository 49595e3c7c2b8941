"""Batch export: one merged file per row (zipped) or one concatenated deck."""
from __future__ import annotations

import io
import logging
import re
import zipfile
from typing import Any, Mapping, Sequence

from docmerge.core.merge.concatenate import concatenate
from docmerge.core.merge.merge_engine import display_value, merge
from docmerge.core.ooxml.package import Package

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_NAME_HINTS = ("nome", "name")


def _name_column(row: Mapping[str, Any]) -> str | None:
    for key in row:
        lowered = str(key).lower()
        if any(hint in lowered for hint in _NAME_HINTS):
            return key
    return None


def row_file_name(row: Mapping[str, Any], index: int, extension: str) -> str:
    """`Doc_<name>.<ext>` from the row's name column, or its 1-based number."""
    key = _name_column(row)
    raw = display_value(row.get(key)) if key is not None else ""
    if not raw.strip():
        raw = str(index + 1)
    return f"Doc_{_UNSAFE_RE.sub('_', raw)}.{extension}"


def _unique(name: str, taken: set[str]) -> str:
    if name not in taken:
        return name
    stem, dot, ext = name.rpartition(".")
    n = 2
    while f"{stem}_{n}{dot}{ext}" in taken:
        n += 1
    return f"{stem}_{n}{dot}{ext}"


def export_per_row(
    package: Package,
    rows: Sequence[Mapping[str, Any]],
    mapping: Mapping[str, str],
) -> bytes:
    """ZIP archive holding one merged package per row."""
    buf = io.BytesIO()
    taken: set[str] = set()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for i, row in enumerate(rows):
            name = _unique(row_file_name(row, i, package.extension), taken)
            taken.add(name)
            zf.writestr(name, merge(package, row, mapping).data)
    logger.debug("exported %d file(s)", len(taken))
    return buf.getvalue()


def export_single(
    package: Package,
    rows: Sequence[Mapping[str, Any]],
    mapping: Mapping[str, str],
) -> Package:
    """Every row in one presentation. Raises UnsupportedFormat for documents."""
    return concatenate(package, rows, mapping)
