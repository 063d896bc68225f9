"""
reader.py — turn spreadsheet files into SourceSheets.

Supports: .xlsx .xlsm .xls .ods .csv .tsv .txt

Public API:
    sheets = read_sheets(["north.xlsx", "south.csv"])
    sheets = read_blobs([("north.xlsx", raw_bytes)])

Every sheet's first non-blank row is its header row; headers go through the
header registry so they are unique and non-empty. Each following row becomes
a `{header: raw value}` dict that omits empty cells. Date cells come back as
spreadsheet serial numbers so the value normalizer decodes them the same way
whatever the source format.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import zipfile
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Iterable, Sequence

import chardet
import pandas as pd
from openpyxl import load_workbook

from sheet_splitter.headers import register_headers
from sheet_splitter.models import ReadError, SourceSheet
from sheet_splitter.values import datetime_to_serial

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
OPENPYXL_FORMATS = {".xlsx", ".xlsm"}
PANDAS_EXCEL_FORMATS = {".xls", ".ods"}
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
ALL_FORMATS = OPENPYXL_FORMATS | PANDAS_EXCEL_FORMATS | TEXT_FORMATS

DELIMITER_CANDIDATES = ",;\t|"


# ══════════════════════════════════════════════════════════════════════════════
# CELL + ROW SHAPING
# ══════════════════════════════════════════════════════════════════════════════

def _cell_value(value: Any) -> Any:
    """Convert a library cell value into a raw sheet value; None means empty."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str):
        return value if value != "" else None
    if isinstance(value, datetime):
        return datetime_to_serial(value.to_pydatetime() if isinstance(value, pd.Timestamp) else value)
    if isinstance(value, date):
        return datetime_to_serial(datetime.combine(value, time()))
    if isinstance(value, time):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar from pandas
        return value.item()
    return value


def _is_blank_row(values: Sequence[Any]) -> bool:
    return all(value is None for value in values)


def rows_to_sheet(file_name: str, sheet_name: str, raw_rows: Iterable[Sequence[Any]]) -> SourceSheet | None:
    """
    Build a SourceSheet from positional rows.

    Fully blank rows are dropped first, leading ones included, so the header
    is the first row holding any value rather than literally row 0. Returns
    None when the sheet holds nothing but blank rows.
    """
    cleaned = [[_cell_value(value) for value in row] for row in raw_rows]
    cleaned = [row for row in cleaned if not _is_blank_row(row)]
    if not cleaned:
        return None

    width = max(len(row) for row in cleaned)
    header_cells = list(cleaned[0]) + [None] * (width - len(cleaned[0]))
    headers = register_headers(header_cells)

    rows: list[dict[str, Any]] = []
    for values in cleaned[1:]:
        rows.append({header: value for header, value in zip(headers, values) if value is not None})

    logger.debug("Read %s / %s: %d column(s), %d row(s)", file_name, sheet_name, len(headers), len(rows))
    return SourceSheet(file_name=file_name, sheet_name=sheet_name, headers=headers, rows=rows)


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def is_encrypted_ooxml(data: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile:
        # Encrypted packages are OLE containers, not zips
        return data[:8] == b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
    return {"EncryptedPackage", "EncryptionInfo"}.issubset(names)


def _read_openpyxl(file_name: str, data: bytes) -> list[SourceSheet]:
    if is_encrypted_ooxml(data):
        raise ReadError(f"{file_name}: workbook is password-protected.")
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ReadError(f"{file_name}: could not open workbook: {exc}") from exc

    sheets: list[SourceSheet] = []
    try:
        for worksheet in workbook.worksheets:
            sheet = rows_to_sheet(file_name, worksheet.title, worksheet.iter_rows(values_only=True))
            if sheet is not None:
                sheets.append(sheet)
    finally:
        workbook.close()
    return sheets


def _read_pandas_excel(file_name: str, data: bytes, suffix: str) -> list[SourceSheet]:
    if suffix == ".xls":
        engine = "xlrd"
        hint = ".xls files require xlrd (pip install xlrd)"
    else:
        engine = "odf"
        hint = ".ods files require odfpy (pip install odfpy)"
    try:
        frames = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, dtype=object, engine=engine)
    except ImportError as exc:
        raise ReadError(f"{file_name}: {hint}") from exc
    except Exception as exc:
        raise ReadError(f"{file_name}: could not open workbook: {exc}") from exc

    sheets: list[SourceSheet] = []
    for sheet_name, frame in frames.items():
        sheet = rows_to_sheet(file_name, str(sheet_name), frame.itertuples(index=False, name=None))
        if sheet is not None:
            sheets.append(sheet)
    return sheets


def decode_text(data: bytes) -> str:
    """Decode delimited text, trusting a BOM or UTF-8 first, then chardet."""
    if data.startswith(b"\xef\xbb\xbf"):
        return data[3:].decode("utf-8", errors="replace")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    detected = chardet.detect(data).get("encoding") or "cp1252"
    logger.debug("chardet guessed %s", detected)
    try:
        return data.decode(detected)
    except (LookupError, UnicodeDecodeError):
        return data.decode("cp1252", errors="replace")


def detect_delimiter(text: str, suffix: str) -> str:
    if suffix == ".tsv":
        return "\t"
    sample = "\n".join([line for line in text.splitlines() if line.strip()][:25])
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=DELIMITER_CANDIDATES).delimiter
    except csv.Error:
        return ","


def _read_text(file_name: str, data: bytes, suffix: str) -> list[SourceSheet]:
    text = decode_text(data).replace("\x00", "")
    delimiter = detect_delimiter(text, suffix)
    widths = [len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    if not widths or max(widths) == 0:
        return []
    sep = r"\|" if delimiter == "|" else delimiter
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            header=None,
            names=list(range(max(widths))),
            dtype=str,
            keep_default_na=False,
            sep=sep,
            engine="python",
            skip_blank_lines=True,
        )
    except Exception as exc:
        raise ReadError(f"{file_name}: could not parse {suffix} file: {exc}") from exc

    sheet = rows_to_sheet(file_name, Path(file_name).stem, frame.itertuples(index=False, name=None))
    return [sheet] if sheet is not None else []


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def read_blob(file_name: str, data: bytes) -> list[SourceSheet]:
    """
    Read every non-empty sheet of one file.

    Raises:
        ReadError  for unsupported formats, unreadable content and files that
                   hold no sheet with a header row.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix not in ALL_FORMATS:
        raise ReadError(f"{file_name}: unsupported file type '{suffix or '(none)'}'. Supported: {sorted(ALL_FORMATS)}")
    if not data:
        raise ReadError(f"{file_name}: file is empty.")

    if suffix in OPENPYXL_FORMATS:
        sheets = _read_openpyxl(file_name, data)
    elif suffix in PANDAS_EXCEL_FORMATS:
        sheets = _read_pandas_excel(file_name, data, suffix)
    else:
        sheets = _read_text(file_name, data, suffix)

    if not sheets:
        raise ReadError(f"{file_name}: no sheets with data were found.")
    logger.info("Read %d sheet(s) from %s", len(sheets), file_name)
    return sheets


def read_blobs(blobs: Iterable[tuple[str, bytes]]) -> list[SourceSheet]:
    sheets: list[SourceSheet] = []
    for file_name, data in blobs:
        sheets.extend(read_blob(file_name, data))
    return sheets


def read_sheets(paths: Iterable[str | Path]) -> list[SourceSheet]:
    blobs = []
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise ReadError(f"File not found: {path}")
        if not path.is_file():
            raise ReadError(f"Not a file: {path}")
        blobs.append((path.name, path.read_bytes()))
    return read_blobs(blobs)
