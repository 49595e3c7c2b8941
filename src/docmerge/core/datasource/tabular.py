"""Tabular input: spreadsheet, CSV or JSON rows keyed by header name."""
from __future__ import annotations

import csv
import datetime
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
from zipfile import BadZipFile

import openpyxl
import orjson
from openpyxl.utils.exceptions import InvalidFileException

from docmerge.core.ooxml.errors import DataSourceError
from docmerge.core.validate.schema_validate import validate_named

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".xlsx", ".csv", ".json")


@dataclass(frozen=True)
class TabularData:
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)


def _cell_value(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, (datetime.datetime, datetime.date, datetime.time)):
        return v.isoformat()
    if isinstance(v, str):
        return v.strip()
    return v


def _header_row(values: tuple) -> List[tuple[int, str]]:
    """(column index, header) pairs, blank headers dropped."""
    out: List[tuple[int, str]] = []
    for i, v in enumerate(values):
        name = str(v).strip() if v is not None else ""
        if name:
            out.append((i, name))
    return out


def _rows_from_matrix(matrix: List[tuple]) -> TabularData:
    if not matrix:
        return TabularData(headers=[], rows=[])
    columns = _header_row(matrix[0])
    rows: List[Dict[str, Any]] = []
    for values in matrix[1:]:
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        rows.append({
            name: _cell_value(values[i]) if i < len(values) else ""
            for i, name in columns
        })
    return TabularData(headers=[name for _, name in columns], rows=rows)


def _read_xlsx(path: Path) -> TabularData:
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, OSError, KeyError, ValueError) as exc:
        raise DataSourceError(f"cannot open workbook {path}: {exc}") from exc
    try:
        ws = wb.worksheets[0]
        matrix = [tuple(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()
    return _rows_from_matrix(matrix)


def _read_csv(path: Path) -> TabularData:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise DataSourceError(f"cannot read {path}: {exc}") from exc
    matrix = [tuple(r) for r in csv.reader(io.StringIO(text))]
    return _rows_from_matrix(matrix)


def _read_json(path: Path) -> TabularData:
    try:
        data = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as exc:
        raise DataSourceError(f"cannot read {path}: {exc}") from exc

    issues = validate_named("rows", data)
    if issues:
        raise DataSourceError(f"{path}: " + "; ".join(issues))

    headers: List[str] = []
    for row in data:
        for key in row:
            if key not in headers:
                headers.append(key)
    rows = [{h: _cell_value(row.get(h)) for h in headers} for row in data]
    return TabularData(headers=headers, rows=rows)


def load_rows(path: str | Path) -> TabularData:
    """Read rows from `.xlsx`, `.csv` or `.json`.

    Raises:
        DataSourceError: unknown suffix, unreadable file, or no data rows.
    """
    p = Path(path)
    suf = p.suffix.lower()
    if suf == ".xlsx":
        data = _read_xlsx(p)
    elif suf == ".csv":
        data = _read_csv(p)
    elif suf == ".json":
        data = _read_json(p)
    else:
        raise DataSourceError(f"unsupported data file: {p.suffix} (use {', '.join(SUPPORTED_SUFFIXES)})")

    if not data.rows:
        raise DataSourceError(f"{p}: no data rows")
    logger.debug("%s: %d row(s), headers=%s", p, len(data.rows), data.headers)
    return data
