"""Single-field filters used to split the merged table into export subsets."""

from __future__ import annotations

import re
from typing import Any, Callable, Sequence

from sheet_splitter.models import InputError
from sheet_splitter.values import cell_text, is_blank, parse_float, strict_number

TYPE_SAMPLE_SIZE = 100
NUMERIC_SHARE_THRESHOLD = 0.8

NUMERIC_OPERATORS = ("eq", "neq", "gt", "lt", "gte", "lte")
STRING_OPERATORS = ("eq", "neq", "contains", "not_contains", "starts_with", "ends_with")
DEFAULT_OPERATOR = {"number": "lte", "string": "contains"}

OPERATOR_LABELS = {
    "eq": "Equals",
    "neq": "NotEq",
    "gt": "Gt",
    "lt": "Lt",
    "gte": "Gte",
    "lte": "Lte",
    "contains": "Has",
    "not_contains": "NotHas",
    "starts_with": "Start",
    "ends_with": "End",
}

_NUMERIC_TESTS: dict[str, Callable[[float, float], bool]] = {
    "eq": lambda cell, target: cell == target,
    "neq": lambda cell, target: cell != target,
    "gt": lambda cell, target: cell > target,
    "lt": lambda cell, target: cell < target,
    "gte": lambda cell, target: cell >= target,
    "lte": lambda cell, target: cell <= target,
}

_STRING_TESTS: dict[str, Callable[[str, str], bool]] = {
    "eq": lambda cell, target: cell == target,
    "neq": lambda cell, target: cell != target,
    "contains": lambda cell, target: target in cell,
    "not_contains": lambda cell, target: target not in cell,
    "starts_with": lambda cell, target: cell.startswith(target),
    "ends_with": lambda cell, target: cell.endswith(target),
}

FILENAME_UNSAFE_RE = re.compile(r"[\\/:*?\"<>|]+")


def detect_type(rows: Sequence[dict[str, Any]], field_key: str) -> str:
    """'number' when more than 80% of sampled non-empty values are numbers."""
    valid = 0
    numeric = 0
    for row in rows[:TYPE_SAMPLE_SIZE]:
        value = row.get(field_key)
        if is_blank(value):
            continue
        valid += 1
        if parse_float(value) is not None and strict_number(value) is not None:
            numeric += 1
    if valid and numeric / valid > NUMERIC_SHARE_THRESHOLD:
        return "number"
    return "string"


def operators_for(field_type: str) -> tuple[str, ...]:
    return NUMERIC_OPERATORS if field_type == "number" else STRING_OPERATORS


def coerce_operator(field_type: str, operator: str) -> str:
    """Keep `operator` if the type offers it, else fall back to the type's default."""
    return operator if operator in operators_for(field_type) else DEFAULT_OPERATOR[field_type]


def build_predicate(field_key: str, operator: str, compare_value: Any, field_type: str) -> Callable[[dict[str, Any]], bool]:
    if field_type == "number":
        test = _NUMERIC_TESTS.get(operator)
        if test is None:
            raise InputError(f"Operator '{operator}' is not available for numeric fields.")
        target = parse_float(compare_value)

        def numeric_predicate(row: dict[str, Any]) -> bool:
            cell = parse_float(cell_text(row.get(field_key)))
            if cell is None or target is None:
                return False
            return test(cell, target)

        return numeric_predicate

    test = _STRING_TESTS.get(operator)
    if test is None:
        raise InputError(f"Operator '{operator}' is not available for text fields.")
    target_text = cell_text(compare_value).lower()

    def string_predicate(row: dict[str, Any]) -> bool:
        return test(cell_text(row.get(field_key)).lower(), target_text)

    return string_predicate


def filter_rows(
    rows: Sequence[dict[str, Any]],
    field_key: str,
    operator: str,
    compare_value: Any,
    field_type: str | None = None,
) -> list[dict[str, Any]]:
    """
    Return the rows whose `field_key` satisfies `operator compare_value`.

    `field_type` defaults to the detected type of the column. Numeric
    comparisons exclude rows where either side is not a number. The result
    keeps row identity and order.

    Raises:
        InputError  when no field is chosen, the compare value is empty or
                    the operator does not exist for the field type.
    """
    if not field_key:
        raise InputError("Choose a field to filter on.")
    if compare_value is None or cell_text(compare_value).strip() == "":
        raise InputError("Enter a value to filter by.")
    kind = field_type or detect_type(rows, field_key)
    predicate = build_predicate(field_key, operator, compare_value, kind)
    return [row for row in rows if predicate(row)]


def search_rows(rows: Sequence[dict[str, Any]], keys: Sequence[str], text: str) -> list[dict[str, Any]]:
    """Case-insensitive substring search across `keys`; empty text keeps all rows."""
    if not text:
        return list(rows)
    needle = text.lower()
    return [row for row in rows if any(needle in cell_text(row.get(key)).lower() for key in keys)]


def split_export_name(field_key: str, operator: str, compare_value: Any) -> str:
    label = OPERATOR_LABELS.get(operator, operator)
    name = f"Split_{field_key}_{label}_{cell_text(compare_value)}"
    return FILENAME_UNSAFE_RE.sub("_", name)
