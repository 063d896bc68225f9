"""
merge.py — combine N source sheets into one table of merged rows.

Two strategies:
    stack  rows of every sheet one after another, sheet order preserved
    join   one row per join-key value, correlated across sheets

Merged rows are plain dicts: the synthetic `id`, one entry per target field
holding a normalised value, then `_sourceFile` / `_sourceSheet`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sheet_splitter.mapping import Mapping, candidates_for_sheet, resolve_value
from sheet_splitter.models import (
    JOIN_TYPES,
    JOINED_SENTINEL,
    MERGE_METHODS,
    ROW_ID_KEY,
    SOURCE_FILE_KEY,
    SOURCE_SHEET_KEY,
    ColumnRef,
    FieldDefinition,
    InputError,
    MergeConfig,
    SourceSheet,
)
from sheet_splitter.values import cell_text, is_blank, normalize_value

logger = logging.getLogger(__name__)


@dataclass
class KeySlot:
    row: dict[str, Any]
    file_name: str
    sheet_name: str


@dataclass
class KeyIndex:
    """key -> {sheet index -> first row seen with that key on that sheet}."""

    slots: dict[str, dict[int, KeySlot]] = field(default_factory=dict)

    def add(self, key: str, sheet_index: int, sheet: SourceSheet, row: dict[str, Any]) -> None:
        per_sheet = self.slots.setdefault(key, {})
        if sheet_index not in per_sheet:
            per_sheet[sheet_index] = KeySlot(row, sheet.file_name, sheet.sheet_name)


def merged_row(row_id: str, values: dict[str, Any], file_name: str, sheet_name: str) -> dict[str, Any]:
    row: dict[str, Any] = {ROW_ID_KEY: row_id}
    row.update(values)
    row[SOURCE_FILE_KEY] = file_name
    row[SOURCE_SHEET_KEY] = sheet_name
    return row


# ══════════════════════════════════════════════════════════════════════════════
# STACK
# ══════════════════════════════════════════════════════════════════════════════

def stack_rows(
    sheets: Sequence[SourceSheet],
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
) -> list[dict[str, Any]]:
    """Concatenate every sheet's rows; never deduplicates."""
    merged: list[dict[str, Any]] = []
    for sheet in sheets:
        for index, row in enumerate(sheet.rows):
            values = {
                item.key: normalize_value(resolve_value(mapping, item.key, sheet, row))
                for item in fields
            }
            merged.append(
                merged_row(f"{sheet.file_name}-{sheet.sheet_name}-{index}", values, sheet.file_name, sheet.sheet_name)
            )
    logger.debug("Stacked %d row(s) from %d sheet(s)", len(merged), len(sheets))
    return merged


# ══════════════════════════════════════════════════════════════════════════════
# JOIN
# ══════════════════════════════════════════════════════════════════════════════

def derive_join_key(key_refs: Sequence[ColumnRef], row: dict[str, Any]) -> str | None:
    """First non-empty (after trimming) value among the sheet's key candidates."""
    for ref in key_refs:
        value = row.get(ref.header)
        if value is None:
            continue
        text = cell_text(value).strip()
        if text:
            return text
    return None


def build_key_index(sheets: Sequence[SourceSheet], key_candidates: Sequence[ColumnRef]) -> KeyIndex:
    index = KeyIndex()
    for sheet_index, sheet in enumerate(sheets):
        refs = candidates_for_sheet(key_candidates, sheet)
        for row in sheet.rows:
            key = derive_join_key(refs, row)
            if key is not None:
                index.add(key, sheet_index, sheet, row)
    return index


def select_join_keys(
    index: KeyIndex,
    sheets: Sequence[SourceSheet],
    key_candidates: Sequence[ColumnRef],
    join_type: str,
) -> list[str]:
    if join_type == "outer":
        return list(index.slots)
    if join_type == "inner":
        return [key for key, per_sheet in index.slots.items() if len(per_sheet) == len(sheets)]
    if join_type == "left":
        if not sheets:
            return []
        first = sheets[0]
        refs = candidates_for_sheet(key_candidates, first)
        keys: dict[str, None] = {}
        for row in first.rows:
            key = derive_join_key(refs, row)
            if key is not None:
                keys.setdefault(key, None)
        return list(keys)
    raise InputError(f"Unknown join type: {join_type}")


def _first_slot_value(per_sheet: dict[int, KeySlot], refs_per_sheet: Sequence[Sequence[ColumnRef]]) -> Any:
    for sheet_index, refs in enumerate(refs_per_sheet):
        slot = per_sheet.get(sheet_index)
        if slot is None:
            continue
        for ref in refs:
            value = slot.row.get(ref.header)
            if not is_blank(value):
                return value
    return ""


def join_rows(
    sheets: Sequence[SourceSheet],
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
    join_key: str,
    join_type: str = "outer",
) -> list[dict[str, Any]]:
    """
    One output row per join-key value.

    For each field the value comes from the lowest-index sheet that holds a
    row for the key and has a non-empty candidate cell; within that sheet the
    candidates are tried in mapping order.
    """
    key_candidates = mapping.get(join_key, []) if join_key else []
    index = build_key_index(sheets, key_candidates)
    keys = select_join_keys(index, sheets, key_candidates, join_type)
    refs_by_sheet = {
        item.key: [candidates_for_sheet(mapping.get(item.key, []), sheet) for sheet in sheets]
        for item in fields
    }

    merged: list[dict[str, Any]] = []
    for ordinal, key in enumerate(keys):
        per_sheet = index.slots.get(key, {})
        values: dict[str, Any] = {}
        for item in fields:
            values[item.key] = normalize_value(_first_slot_value(per_sheet, refs_by_sheet[item.key]))
        if per_sheet:
            first_slot = per_sheet[min(per_sheet)]
            file_name, sheet_name = first_slot.file_name, first_slot.sheet_name
        else:
            file_name = sheet_name = JOINED_SENTINEL
        merged.append(merged_row(f"joined-{key}-{ordinal}", values, file_name, sheet_name))

    logger.debug(
        "Joined %d sheet(s) on '%s' (%s): %d distinct key(s), %d output row(s)",
        len(sheets), join_key, join_type, len(index.slots), len(merged),
    )
    return merged


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def merge_sheets(
    sheets: Sequence[SourceSheet],
    fields: Sequence[FieldDefinition],
    mapping: Mapping,
    config: MergeConfig,
) -> list[dict[str, Any]]:
    """
    Merge `sheets` under `config`.

    Raises:
        InputError  for an unknown method or join type. A join without a
                    usable join key returns an empty list; callers report it.
    """
    if config.method not in MERGE_METHODS:
        raise InputError(f"Unknown merge method: {config.method}")
    if config.method == "join":
        if config.join_type not in JOIN_TYPES:
            raise InputError(f"Unknown join type: {config.join_type}")
        rows = join_rows(sheets, fields, mapping, config.join_key, config.join_type)
    else:
        rows = stack_rows(sheets, fields, mapping)
    logger.info("Merged %d sheet(s) with method '%s' into %d row(s)", len(sheets), config.method, len(rows))
    return rows
