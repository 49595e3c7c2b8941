"""
attendance_pdf.py: Printable attendance sheet (A4 portrait) with PyMuPDF.

Layout, in centimetres from the top-left corner:
  logo            (1.5, 1.0) 3.5 x 1.5, when settings carry a readable image
  company name    x=6.5 baseline 1.6, bold 16 pt, upper-case
  issue date      x=6.5 baseline 2.1, 9 pt
  rule            y=2.8 across the margins
  title           centred, baseline 4.2, bold 22 pt
  table           from y=5.5: # | NOME DO PARTICIPANTE | CPF | ASSINATURA

Rows that do not fit continue on a new page that starts at the top margin and
repeats the header row.

Import:
    from docmerge.core.attendance.attendance_pdf import render_attendance_pdf
    pdf = render_attendance_pdf(rows, {"company_name": "ACME"}, {"name": "Nome", "cpf": "CPF"})
"""
from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import fitz  # PyMuPDF

from docmerge.core.merge.merge_engine import display_value
from docmerge.core.utils.formatters import digits, format_cpf

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Layout constants
# ---------------------------------------------------------------------------

PT_PER_CM = 72.0 / 2.54

PAGE_WIDTH, PAGE_HEIGHT = fitz.paper_size("a4")
MARGIN = 1.5 * PT_PER_CM

LOGO_RECT_CM = (1.5, 1.0, 3.5, 1.5)  # x, y, w, h
HEADER_TEXT_X = 6.5 * PT_PER_CM
COMPANY_BASELINE = 1.6 * PT_PER_CM
DATE_BASELINE = 2.1 * PT_PER_CM
RULE_Y = 2.8 * PT_PER_CM
RULE_WIDTH = 0.05 * PT_PER_CM
TITLE_BASELINE = 4.2 * PT_PER_CM
TABLE_TOP = 5.5 * PT_PER_CM

DEFAULT_TITLE = "LISTA DE PRESENÇA"
HEADERS = ("#", "NOME DO PARTICIPANTE", "CPF", "ASSINATURA")

FONT = "helv"
FONT_BOLD = "hebo"
COMPANY_SIZE = 16
DATE_SIZE = 9
TITLE_SIZE = 22
CELL_SIZE = 9

CELL_PADDING = 0.3 * PT_PER_CM
ROW_HEIGHT = CELL_SIZE * 1.2 + 2 * CELL_PADDING
GRID_WIDTH = 0.02 * PT_PER_CM
GRID_COLOR = (150 / 255, 150 / 255, 150 / 255)
HEAD_FILL = (240 / 255, 240 / 255, 240 / 255)
HEAD_TEXT = (40 / 255, 40 / 255, 40 / 255)
BLACK = (0, 0, 0)

NUMBER_COL = 1.0 * PT_PER_CM
CPF_COL = 3.5 * PT_PER_CM
SIGNATURE_COL = 7.0 * PT_PER_CM
NAME_COL = PAGE_WIDTH - 2 * MARGIN - NUMBER_COL - CPF_COL - SIGNATURE_COL

COLUMN_WIDTHS = (NUMBER_COL, NAME_COL, CPF_COL, SIGNATURE_COL)
CENTRED = (True, False, True, False)

ELLIPSIS = "..."

# ---------------------------------------------------------------------------
# Drawing helpers
# ---------------------------------------------------------------------------


def _fit(text: str, width: float, fontname: str, fontsize: float) -> str:
    """Truncate `text` so it fits in `width` points."""
    if fitz.get_text_length(text, fontname=fontname, fontsize=fontsize) <= width:
        return text
    while text and fitz.get_text_length(text + ELLIPSIS, fontname=fontname, fontsize=fontsize) > width:
        text = text[:-1]
    return text.rstrip() + ELLIPSIS if text else ""


def _cell(
    page: Any,
    x: float,
    y: float,
    w: float,
    text: str,
    *,
    centred: bool,
    fontname: str = FONT,
    color: tuple = BLACK,
    fill: tuple | None = None,
) -> None:
    rect = fitz.Rect(x, y, x + w, y + ROW_HEIGHT)
    page.draw_rect(rect, color=GRID_COLOR, fill=fill, width=GRID_WIDTH)
    if not text:
        return
    shown = _fit(text, w - 2 * CELL_PADDING, fontname, CELL_SIZE)
    if centred:
        tx = x + (w - fitz.get_text_length(shown, fontname=fontname, fontsize=CELL_SIZE)) / 2
    else:
        tx = x + CELL_PADDING
    baseline = y + ROW_HEIGHT / 2 + CELL_SIZE * 0.35
    page.insert_text(fitz.Point(tx, baseline), shown, fontname=fontname, fontsize=CELL_SIZE, color=color)


def _row(page: Any, y: float, values: Sequence[str], *, header: bool = False) -> None:
    x = MARGIN
    for w, text, centred in zip(COLUMN_WIDTHS, values, CENTRED):
        if header:
            _cell(page, x, y, w, text, centred=True, fontname=FONT_BOLD, color=HEAD_TEXT, fill=HEAD_FILL)
        else:
            _cell(page, x, y, w, text, centred=centred)
        x += w


def _logo(page: Any, logo_path: str | None) -> None:
    if not logo_path:
        return
    p = Path(logo_path)
    if not p.is_file():
        logger.warning("logo not found: %s", p)
        return
    x, y, w, h = (v * PT_PER_CM for v in LOGO_RECT_CM)
    try:
        page.insert_image(fitz.Rect(x, y, x + w, y + h), filename=str(p), keep_proportion=True)
    except (RuntimeError, ValueError) as exc:
        logger.warning("logo skipped (%s): %s", p, exc)


def _letterhead(page: Any, settings: Mapping[str, Any], issued_on: datetime.date) -> None:
    _logo(page, settings.get("logo_path"))

    company = str(settings.get("company_name") or "").upper()
    if company:
        page.insert_text(
            fitz.Point(HEADER_TEXT_X, COMPANY_BASELINE), company, fontname=FONT_BOLD, fontsize=COMPANY_SIZE
        )
    page.insert_text(
        fitz.Point(HEADER_TEXT_X, DATE_BASELINE),
        f"Documento emitido em: {issued_on.strftime('%d/%m/%Y')}",
        fontname=FONT,
        fontsize=DATE_SIZE,
    )
    page.draw_line(
        fitz.Point(MARGIN, RULE_Y), fitz.Point(PAGE_WIDTH - MARGIN, RULE_Y), color=BLACK, width=RULE_WIDTH
    )

    title = str(settings.get("title") or DEFAULT_TITLE)
    tw = fitz.get_text_length(title, fontname=FONT_BOLD, fontsize=TITLE_SIZE)
    page.insert_text(
        fitz.Point((PAGE_WIDTH - tw) / 2, TITLE_BASELINE), title, fontname=FONT_BOLD, fontsize=TITLE_SIZE
    )


def _cpf_cell(value: Any) -> str:
    raw = display_value(value)
    return format_cpf(raw) if len(digits(raw)) == 11 else raw


def body_rows(rows: Sequence[Mapping[str, Any]], columns: Mapping[str, str]) -> list[tuple[str, str, str, str]]:
    """Table body as strings: number, upper-cased name, CPF, empty signature."""
    name_col = columns.get("name")
    cpf_col = columns.get("cpf")
    if not name_col or not cpf_col:
        raise ValueError("columns must name both 'name' and 'cpf'")
    return [
        (str(i + 1), display_value(row.get(name_col)).upper(), _cpf_cell(row.get(cpf_col)), "")
        for i, row in enumerate(rows)
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_attendance_pdf(
    rows: Sequence[Mapping[str, Any]],
    settings: Mapping[str, Any],
    columns: Mapping[str, str],
    *,
    issued_on: datetime.date | None = None,
) -> bytes:
    """Render the attendance sheet and return the PDF bytes."""
    body = body_rows(rows, columns)
    issued = issued_on or datetime.date.today()
    bottom = PAGE_HEIGHT - MARGIN

    doc = fitz.open()
    try:
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        _letterhead(page, settings, issued)
        y = TABLE_TOP
        _row(page, y, HEADERS, header=True)
        y += ROW_HEIGHT

        for values in body:
            if y + ROW_HEIGHT > bottom:
                page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
                y = MARGIN
                _row(page, y, HEADERS, header=True)
                y += ROW_HEIGHT
            _row(page, y, values)
            y += ROW_HEIGHT

        logger.debug("attendance sheet: %d row(s) on %d page(s)", len(body), doc.page_count)
        return doc.tobytes()
    finally:
        doc.close()
