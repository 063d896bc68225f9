"""
writer.py — workbook exports for merged tables and cleaned sheets.

Every worksheet gets the same treatment: bold white header row on a coloured
fill, frozen header, column widths inferred from the first few hundred rows.
Targets can be filesystem paths or binary file objects (e.g. io.BytesIO for
a web download).
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from pathlib import Path
from typing import IO, Any, Mapping, Sequence, Union

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sheet_splitter.models import SourceSheet
from sheet_splitter.values import cell_text, is_number

logger = logging.getLogger(__name__)

Target = Union[str, Path, IO[bytes]]

MAX_SHEET_TITLE = 31
SHEET_TITLE_UNSAFE_RE = re.compile(r"[:\\/?*\[\]]")
MEMBER_NAME_UNSAFE_RE = re.compile(r"[\\/:*?\"<>|]")

HEADER_COLOR_SHEET = "1565C0"   # blue
HEADER_COLOR_REPORT = "4CAF50"  # green


# ══════════════════════════════════════════════════════════════════════════════
# NAMES
# ══════════════════════════════════════════════════════════════════════════════

def safe_sheet_title(name: str, taken: set[str]) -> str:
    """Legal, unique worksheet title; adds the result to `taken`."""
    base = SHEET_TITLE_UNSAFE_RE.sub("", name or "").strip()[:MAX_SHEET_TITLE] or "Sheet"
    title = base
    counter = 0
    while title.lower() in {item.lower() for item in taken}:
        counter += 1
        suffix = f"_{counter}"
        title = f"{base[:MAX_SHEET_TITLE - len(suffix)]}{suffix}"
    taken.add(title)
    return title


def safe_member_name(name: str, taken: set[str], extension: str = ".xlsx") -> str:
    base = MEMBER_NAME_UNSAFE_RE.sub("_", name or "").strip() or "sheet"
    member = f"{base}{extension}"
    counter = 0
    while member in taken:
        counter += 1
        member = f"{base}_{counter}{extension}"
    taken.add(member)
    return member


# ══════════════════════════════════════════════════════════════════════════════
# STYLING
# ══════════════════════════════════════════════════════════════════════════════

def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str) -> None:
    """Apply bold header, color, frozen row, and column widths."""
    fill = _header_fill(header_color)
    font = _header_font()
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(cell_text(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(cell_text(val)) + 2))
    return widths


def _excel_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool)) or is_number(value):
        return value
    return cell_text(value)


# ══════════════════════════════════════════════════════════════════════════════
# WRITERS
# ══════════════════════════════════════════════════════════════════════════════

def _fill_worksheet(
    ws,
    keys: Sequence[str],
    headers: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
    header_color: str,
) -> None:
    table = [list(headers)]
    ws.append(list(headers))
    for row in rows:
        values = [_excel_value(row.get(key)) for key in keys]
        ws.append(values)
        table.append(values)
    _style_sheet(ws, _infer_col_widths(table), header_color)


def _save(workbook: openpyxl.Workbook, target: Target) -> None:
    if isinstance(target, (str, Path)):
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(path)
    else:
        workbook.save(target)


def write_workbook(sheets: Sequence[SourceSheet], target: Target) -> None:
    """One worksheet per sheet, titles made legal and unique."""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    taken: set[str] = set()
    for sheet in sheets:
        ws = workbook.create_sheet(safe_sheet_title(sheet.sheet_name, taken))
        _fill_worksheet(ws, sheet.headers, sheet.headers, sheet.rows, HEADER_COLOR_SHEET)
    if not sheets:
        workbook.create_sheet("Sheet1")
    _save(workbook, target)
    logger.info("Wrote workbook with %d sheet(s)", len(sheets))


def write_workbook_archive(sheets: Sequence[SourceSheet], target: Target) -> list[str]:
    """Zip of single-sheet workbooks; returns the member names in order."""
    if isinstance(target, (str, Path)):
        Path(target).parent.mkdir(parents=True, exist_ok=True)
    members: list[str] = []
    taken: set[str] = set()
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for sheet in sheets:
            workbook = openpyxl.Workbook()
            ws = workbook.active
            ws.title = "Sheet1"
            _fill_worksheet(ws, sheet.headers, sheet.headers, sheet.rows, HEADER_COLOR_SHEET)
            buffer = io.BytesIO()
            workbook.save(buffer)
            member = safe_member_name(sheet.sheet_name, taken)
            archive.writestr(member, buffer.getvalue())
            members.append(member)
    logger.info("Wrote archive with %d workbook(s)", len(members))
    return members


def write_flat_table(
    rows: Sequence[Mapping[str, Any]],
    headers: Sequence[str],
    target: Target,
    title: str = "Report",
    labels: Mapping[str, str] | None = None,
) -> None:
    """
    Single-sheet workbook of `rows`.

    `headers` are the row keys to export, in order; `labels` optionally maps a
    key to the text shown in the header row.
    """
    workbook = openpyxl.Workbook()
    ws = workbook.active
    ws.title = safe_sheet_title(title, set())
    shown = [(labels or {}).get(key, key) for key in headers]
    _fill_worksheet(ws, headers, shown, rows, HEADER_COLOR_REPORT)
    _save(workbook, target)
    logger.info("Wrote %d row(s) to '%s'", len(rows), ws.title)
