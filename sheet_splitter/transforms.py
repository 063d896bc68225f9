"""
transforms.py — bulk cleaning operations over a table of row dicts.

Cell operations map every target cell through one function and count the
rows where at least one target cell changed. Table operations drop rows
(duplicates, empty rows) or rewrite the header list (delete/keep/swap
columns). Nothing is modified in place: each call returns new rows.
"""

from __future__ import annotations

import math
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from sheet_splitter.models import InputError
from sheet_splitter.values import (
    cell_text,
    is_empty_text,
    is_number,
    is_serial_date,
    parse_date_text,
    parse_float,
    serial_to_iso,
    strict_number,
    tidy_number,
)

CellFunction = Callable[[Any], Any]

DUPLICATE_KEY_SEPARATOR = "|"
SYMBOLS_RE = re.compile(r"[^A-Za-z0-9_\s\u4e00-\u9fa5]")
WHITESPACE_RE = re.compile(r"\s+")
WORD_RE = re.compile(r"\w\S*")
NON_NUMERIC_CHARS_RE = re.compile(r"[^0-9.\-]")
DIGITS_RE = re.compile(r"^\d+$")


@dataclass
class TransformResult:
    rows: list[dict[str, Any]]
    label: str
    changed: int = 0
    removed: int = 0

    @property
    def is_noop(self) -> bool:
        return self.changed == 0 and self.removed == 0


# ══════════════════════════════════════════════════════════════════════════════
# CELL FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════════

def _text_only(func: Callable[[str], str]) -> CellFunction:
    def apply(value: Any) -> Any:
        return func(value) if isinstance(value, str) else value
    return apply


def _title_case(text: str) -> str:
    return WORD_RE.sub(lambda match: match.group(0)[0].upper() + match.group(0)[1:].lower(), text)


def _falsy(value: Any) -> bool:
    return value is None or value == "" or (is_number(value) and value == 0) or value is False


def _text_or_blank(value: Any) -> str:
    return "" if _falsy(value) else cell_text(value)


def _numeric(func: Callable[[float], float]) -> CellFunction:
    def apply(value: Any) -> Any:
        number = parse_float(cell_text(value)) if value is not None else None
        if number is None:
            return value
        return tidy_number(func(number))
    return apply


def _round_half_up(number: float) -> float:
    return math.floor(number + 0.5)


def _to_number(value: Any) -> Any:
    if _falsy(value):
        return value
    number = parse_float(NON_NUMERIC_CHARS_RE.sub("", cell_text(value)))
    return value if number is None else tidy_number(number)


def _to_currency(value: Any) -> Any:
    if value is None or cell_text(value).strip() == "":
        return value
    number = parse_float(cell_text(value).replace(",", ""))
    if number is None:
        return value
    formatted = f"{number:,.3f}".rstrip("0").rstrip(".")
    return formatted


def _to_date(value: Any) -> Any:
    if _falsy(value):
        return value
    serial = float(value) if is_number(value) else strict_number(value)
    if serial is not None and is_serial_date(serial):
        return serial_to_iso(serial)
    parsed = parse_date_text(cell_text(value))
    return parsed.strftime("%Y-%m-%d") if parsed else value


def _pad_left(length: int) -> CellFunction:
    def apply(value: Any) -> Any:
        if value is None:
            return value
        text = cell_text(value)
        if DIGITS_RE.match(text):
            text = text.lstrip("0") or "0"
        return text.rjust(length, "0")
    return apply


def _require_text(params: dict[str, Any], name: str, message: str) -> str:
    value = params.get(name)
    if value is None or str(value) == "":
        raise InputError(message)
    return str(value)


def _operand(params: dict[str, Any]) -> float:
    number = strict_number(params.get("operand", 0))
    if number is None:
        raise InputError("The operand must be a number.")
    return number


def _build_find_replace(params: dict[str, Any]) -> CellFunction:
    find = _require_text(params, "find", "Enter the text to find.")
    replace = str(params.get("replace") or "")
    return lambda value: _text_or_blank(value).replace(find, replace)


def _build_regex_replace(params: dict[str, Any]) -> CellFunction:
    pattern = _require_text(params, "find", "Enter a regular expression.")
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise InputError(f"Invalid regular expression: {exc}") from exc
    replace = str(params.get("replace") or "")
    return lambda value: compiled.sub(replace, _text_or_blank(value))


def _build_prepend(params: dict[str, Any]) -> CellFunction:
    text = _require_text(params, "text", "Enter the text to add.")
    return lambda value: text + _text_or_blank(value)


def _build_append(params: dict[str, Any]) -> CellFunction:
    text = _require_text(params, "text", "Enter the text to add.")
    return lambda value: _text_or_blank(value) + text


def _build_pad_left(params: dict[str, Any]) -> CellFunction:
    length = strict_number(params.get("length", 3))
    if length is None or length < 0:
        raise InputError("The padding length must be a non-negative number.")
    return _pad_left(int(length))


def _arithmetic(combine: Callable[[float, float], float]) -> Callable[[dict[str, Any]], CellFunction]:
    def build(params: dict[str, Any]) -> CellFunction:
        operand = _operand(params)
        return _numeric(lambda number: combine(number, operand))
    return build


def _build_divide(params: dict[str, Any]) -> CellFunction:
    operand = _operand(params)
    if operand == 0:
        raise InputError("The divisor must not be zero.")
    return _numeric(lambda number: number / operand)


def _build_fill_empty(params: dict[str, Any]) -> CellFunction:
    fill = str(params.get("fill") or "")
    return lambda value: fill if is_empty_text(value) else value


CELL_OPERATIONS: dict[str, tuple[str, Callable[[dict[str, Any]], CellFunction]]] = {
    "trim": ("Trim whitespace", lambda params: _text_only(str.strip)),
    "remove_all_spaces": ("Remove all whitespace", lambda params: _text_only(lambda text: WHITESPACE_RE.sub("", text))),
    "upper": ("Upper case", lambda params: _text_only(str.upper)),
    "lower": ("Lower case", lambda params: _text_only(str.lower)),
    "title_case": ("Title case", lambda params: _text_only(_title_case)),
    "remove_symbols": ("Remove symbols", lambda params: _text_only(lambda text: SYMBOLS_RE.sub("", text))),
    "find_replace": ("Find and replace", _build_find_replace),
    "regex_replace": ("Regex replace", _build_regex_replace),
    "prepend": ("Prepend text", _build_prepend),
    "append": ("Append text", _build_append),
    "to_number": ("Numbers only", lambda params: _to_number),
    "to_currency": ("Currency format", lambda params: _to_currency),
    "round": ("Round", lambda params: _numeric(_round_half_up)),
    "floor": ("Round down", lambda params: _numeric(math.floor)),
    "ceil": ("Round up", lambda params: _numeric(math.ceil)),
    "to_fixed2": ("Two decimals", lambda params: _numeric(lambda number: _round_half_up(number * 100) / 100)),
    "to_date": ("Standardise dates", lambda params: _to_date),
    "pad_left": ("Pad with leading zeros", _build_pad_left),
    "add": ("Add", _arithmetic(operator.add)),
    "subtract": ("Subtract", _arithmetic(operator.sub)),
    "multiply": ("Multiply", _arithmetic(operator.mul)),
    "divide": ("Divide", _build_divide),
    "fill_empty": ("Fill empty cells", _build_fill_empty),
}

TABLE_OPERATIONS = {
    "remove_duplicates": "Remove duplicate rows",
    "remove_empty_rows": "Remove empty rows",
}

COLUMN_OPERATIONS = {
    "delete_columns": "Delete selected columns",
    "keep_columns": "Keep selected columns",
    "swap_columns": "Swap two columns",
}


def build_cell_function(name: str, **params: Any) -> tuple[str, CellFunction]:
    """
    Return (label, function) for a named cell operation.

    Raises:
        InputError  for unknown names or unusable parameters (empty find
                    text, invalid regex, zero divisor, ...).
    """
    try:
        label, factory = CELL_OPERATIONS[name]
    except KeyError:
        raise InputError(f"Unknown cell operation: {name}") from None
    return label, factory(params)


# ══════════════════════════════════════════════════════════════════════════════
# APPLYING
# ══════════════════════════════════════════════════════════════════════════════

def _differs(old: Any, new: Any) -> bool:
    if isinstance(old, bool) != isinstance(new, bool):
        return True
    if type(old) is str or type(new) is str:
        return type(old) is not type(new) or old != new
    return old != new


def apply_cell_function(
    rows: Sequence[dict[str, Any]],
    columns: Sequence[str],
    func: CellFunction,
) -> tuple[list[dict[str, Any]], int]:
    """Map `func` over the target cells; return (new rows, rows changed)."""
    changed = 0
    updated: list[dict[str, Any]] = []
    for row in rows:
        new_row = row
        for column in columns:
            old = row.get(column)
            new = func(old)
            if _differs(old, new):
                if new_row is row:
                    new_row = dict(row)
                new_row[column] = new
        if new_row is not row:
            changed += 1
        updated.append(new_row)
    return updated, changed


def run_cell_operation(rows: Sequence[dict[str, Any]], columns: Sequence[str], name: str, **params: Any) -> TransformResult:
    label, func = build_cell_function(name, **params)
    updated, changed = apply_cell_function(rows, columns, func)
    return TransformResult(rows=updated, label=label, changed=changed)


def remove_duplicate_rows(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> TransformResult:
    """Keep the first row for each combination of target-column values."""
    seen: set[str] = set()
    kept: list[dict[str, Any]] = []
    for row in rows:
        key = DUPLICATE_KEY_SEPARATOR.join(cell_text(row.get(column)) for column in columns)
        if key in seen:
            continue
        seen.add(key)
        kept.append(row)
    return TransformResult(rows=kept, label=TABLE_OPERATIONS["remove_duplicates"], removed=len(rows) - len(kept))


def remove_empty_rows(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> TransformResult:
    """Drop rows whose target columns are all empty or whitespace."""
    kept = [row for row in rows if any(not is_empty_text(row.get(column)) for column in columns)]
    return TransformResult(rows=kept, label=TABLE_OPERATIONS["remove_empty_rows"], removed=len(rows) - len(kept))


def run_table_operation(rows: Sequence[dict[str, Any]], columns: Sequence[str], name: str, **params: Any) -> TransformResult:
    """Dispatch a row-level or cell-level operation by name."""
    if name == "remove_duplicates":
        return remove_duplicate_rows(rows, columns)
    if name == "remove_empty_rows":
        return remove_empty_rows(rows, columns)
    return run_cell_operation(rows, columns, name, **params)


# ══════════════════════════════════════════════════════════════════════════════
# COLUMN STRUCTURE
# ══════════════════════════════════════════════════════════════════════════════

def _require_selection(selected: Iterable[str]) -> list[str]:
    chosen = list(dict.fromkeys(selected))
    if not chosen:
        raise InputError("Select at least one column first.")
    return chosen


def delete_columns(headers: Sequence[str], selected: Iterable[str]) -> list[str]:
    chosen = set(_require_selection(selected))
    return [header for header in headers if header not in chosen]


def keep_columns(headers: Sequence[str], selected: Iterable[str]) -> list[str]:
    chosen = set(_require_selection(selected))
    return [header for header in headers if header in chosen]


def swap_columns(headers: Sequence[str], selected: Iterable[str]) -> list[str]:
    chosen = _require_selection(selected)
    if len(chosen) != 2:
        raise InputError("Select exactly two columns to swap.")
    first, second = chosen
    if first not in headers or second not in headers:
        raise InputError("Both selected columns must exist in the sheet.")
    swapped = list(headers)
    i, j = swapped.index(first), swapped.index(second)
    swapped[i], swapped[j] = swapped[j], swapped[i]
    return swapped


def run_column_operation(headers: Sequence[str], selected: Iterable[str], name: str) -> list[str]:
    if name == "delete_columns":
        return delete_columns(headers, selected)
    if name == "keep_columns":
        return keep_columns(headers, selected)
    if name == "swap_columns":
        return swap_columns(headers, selected)
    raise InputError(f"Unknown column operation: {name}")
