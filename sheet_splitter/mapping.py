"""
mapping.py — target fields and their ordered source candidates.

A mapping is `{field_key: [ColumnRef, ...]}`. The candidate order is the
source precedence used by the stack merge: for a row of sheet S, the first
candidate owned by S whose cell is non-empty wins.

Every function here returns new objects; inputs are never mutated.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sheet_splitter.models import (
    ColumnRef,
    FieldDefinition,
    InputError,
    SourceSheet,
    is_reserved_key,
)
from sheet_splitter.values import is_blank

logger = logging.getLogger(__name__)

Mapping = dict[str, list[ColumnRef]]


# ══════════════════════════════════════════════════════════════════════════════
# RESOLUTION
# ══════════════════════════════════════════════════════════════════════════════

def candidates_for_sheet(candidates: Sequence[ColumnRef], sheet: SourceSheet) -> list[ColumnRef]:
    return [ref for ref in candidates if sheet.owns(ref)]


def resolve_value(mapping: Mapping, field_key: str, sheet: SourceSheet, row: dict[str, Any]) -> Any:
    """
    Return the raw value that wins for `field_key` on one row of `sheet`.

    Candidates owned by other sheets are skipped. Bare candidates (a header
    with no file/sheet part) match any sheet.
    """
    for ref in mapping.get(field_key, []):
        if not (ref.is_bare or sheet.owns(ref)):
            continue
        value = row.get(ref.header)
        if not is_blank(value):
            return value
    return ""


# ══════════════════════════════════════════════════════════════════════════════
# ORDERING
# ══════════════════════════════════════════════════════════════════════════════

def reorder_sheets(order: Sequence[SourceSheet], from_index: int, to_index: int) -> list[SourceSheet]:
    reordered = list(order)
    if from_index == to_index:
        return reordered
    if not (0 <= from_index < len(reordered)) or not (0 <= to_index < len(reordered)):
        raise InputError(f"Sheet position out of range: {from_index} -> {to_index}")
    item = reordered.pop(from_index)
    reordered.insert(to_index, item)
    return reordered


def sheet_priority(ref: ColumnRef, order: Sequence[SourceSheet]) -> int:
    """Index of the sheet owning `ref` in `order`, or -1."""
    for index, sheet in enumerate(order):
        if sheet.owns(ref):
            return index
    return -1


def reorder_candidates(mapping: Mapping, order: Sequence[SourceSheet]) -> Mapping:
    """Stable re-sort of every field's candidates by owning-sheet position."""
    missing_rank = len(order)
    positions = {sheet.key: index for index, sheet in enumerate(order)}

    def rank(ref: ColumnRef) -> int:
        return positions.get(ref.sheet_key, missing_rank)

    resorted = {key: sorted(refs, key=rank) for key, refs in mapping.items()}
    changed = [key for key in mapping if resorted[key] != mapping[key]]
    if changed:
        logger.debug("Re-sorted candidates for %d field(s): %s", len(changed), changed)
    return resorted


def reorder_candidate(mapping: Mapping, field_key: str, from_index: int, to_index: int) -> Mapping:
    """Move one candidate inside a field; index 0 is the first choice."""
    refs = list(mapping.get(field_key, []))
    if not (0 <= from_index < len(refs)) or not (0 <= to_index < len(refs)):
        raise InputError(f"Candidate position out of range for field '{field_key}'")
    ref = refs.pop(from_index)
    refs.insert(to_index, ref)
    updated = dict(mapping)
    updated[field_key] = refs
    return updated


def move_candidate(mapping: Mapping, ref: ColumnRef, from_key: str, to_key: str) -> Mapping:
    """Move a candidate to the end of another field's list; an empty `from_key` maps a new column."""
    if from_key == to_key:
        return dict(mapping)
    if to_key not in mapping:
        raise InputError(f"Unknown field: {to_key}")
    updated = dict(mapping)
    if from_key in mapping:
        updated[from_key] = [item for item in mapping[from_key] if item != ref]
    if ref not in updated[to_key]:
        updated[to_key] = [*updated[to_key], ref]
    return updated


def move_field(fields: Sequence[FieldDefinition], from_index: int, to_index: int) -> list[FieldDefinition]:
    reordered = list(fields)
    if not (0 <= from_index < len(reordered)) or not (0 <= to_index < len(reordered)):
        raise InputError(f"Field position out of range: {from_index} -> {to_index}")
    item = reordered.pop(from_index)
    reordered.insert(to_index, item)
    return reordered


# ══════════════════════════════════════════════════════════════════════════════
# FIELD AUTHORING
# ══════════════════════════════════════════════════════════════════════════════

def _safe_field_key(header: str, taken: set[str]) -> str:
    key = header.lstrip("_") or "Column"
    base = key
    counter = 0
    while is_reserved_key(key) or key in taken:
        counter += 1
        key = f"{base}_{counter}"
    return key


def auto_detect(sheets: Sequence[SourceSheet]) -> tuple[list[FieldDefinition], Mapping, str]:
    """
    Suggest one target field per distinct header, first-seen order.

    Each field maps to every sheet column carrying that header, in sheet
    order. The join key defaults to the first field.
    """
    by_header: dict[str, list[ColumnRef]] = {}
    for sheet in sheets:
        for header in sheet.headers:
            by_header.setdefault(header, []).append(sheet.ref(header))

    fields: list[FieldDefinition] = []
    mapping: Mapping = {}
    taken: set[str] = set()
    for header, refs in by_header.items():
        key = header if not is_reserved_key(header) and header not in taken else _safe_field_key(header, taken)
        taken.add(key)
        fields.append(FieldDefinition(key=key, label=key))
        mapping[key] = list(refs)

    join_key = fields[0].key if fields else ""
    logger.debug("Auto-detected %d field(s) across %d sheet(s)", len(fields), len(sheets))
    return fields, mapping, join_key


def validate_field_name(name: str, fields: Sequence[FieldDefinition], *, ignore: str | None = None) -> str:
    key = (name or "").strip()
    if not key:
        raise InputError("Field name must not be empty.")
    if is_reserved_key(key):
        raise InputError(f"Field name '{key}' is reserved; names may not start with '_' or be 'id'.")
    if any(item.key == key for item in fields if item.key != ignore):
        raise InputError(f"A field named '{key}' already exists.")
    return key


def add_field(
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
    name: str,
) -> tuple[list[FieldDefinition], Mapping]:
    key = validate_field_name(name, fields)
    updated = dict(mapping)
    updated[key] = []
    return [*fields, FieldDefinition(key=key, label=key)], updated


def rename_field(
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
    join_key: str,
    old_key: str,
    new_name: str,
) -> tuple[list[FieldDefinition], Mapping, str]:
    """Rename a field; its mapping entry and the join key follow it."""
    if not any(item.key == old_key for item in fields):
        raise InputError(f"Unknown field: {old_key}")
    new_key = validate_field_name(new_name, fields, ignore=old_key)
    renamed = [
        FieldDefinition(key=new_key, label=new_key, type=item.type) if item.key == old_key else item
        for item in fields
    ]
    updated = {(new_key if key == old_key else key): list(refs) for key, refs in mapping.items()}
    updated.setdefault(new_key, [])
    return renamed, updated, new_key if join_key == old_key else join_key


def remove_field(
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
    join_key: str,
    key: str,
) -> tuple[list[FieldDefinition], Mapping, str]:
    remaining = [item for item in fields if item.key != key]
    updated = {name: list(refs) for name, refs in mapping.items() if name != key}
    return remaining, updated, "" if join_key == key else join_key
