"""Header registry: unique per-sheet header names and column references."""

from __future__ import annotations

from typing import Any, Iterable

from sheet_splitter.models import ColumnRef
from sheet_splitter.values import cell_text

DEFAULT_HEADER = "Column"
REF_DELIMITER = "::"


def register_headers(raw_headers: Iterable[Any]) -> list[str]:
    """
    Return trimmed, non-empty, unique header names in the same order.

    Repeats of a name get `_1`, `_2`, ... in order of appearance; the first
    occurrence keeps the bare name. A suffix already used by a literal
    header is skipped.
    """
    counts: dict[str, int] = {}
    taken: set[str] = set()
    headers: list[str] = []
    for raw in raw_headers:
        name = cell_text(raw).strip() or DEFAULT_HEADER
        if name not in taken:
            counts.setdefault(name, 0)
            taken.add(name)
            headers.append(name)
            continue
        counter = counts.get(name, 0)
        while True:
            counter += 1
            candidate = f"{name}_{counter}"
            if candidate not in taken:
                break
        counts[name] = counter
        taken.add(candidate)
        headers.append(candidate)
    return headers


def format_ref(ref: ColumnRef) -> str:
    return str(ref)


def parse_ref(value: str) -> ColumnRef:
    """Split `file::sheet::header`; only the first two delimiters count."""
    parts = value.split(REF_DELIMITER, 2)
    if len(parts) < 3:
        return ColumnRef("", "", value)
    return ColumnRef(parts[0], parts[1], parts[2])
