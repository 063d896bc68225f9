"""
plan.py — merge plan files.

A plan captures everything needed to reproduce a merge outside the web app:

    {
      "sheet_order": [["north.xlsx", "Sales"], ["south.xlsx", "RD"]],
      "fields": [{"key": "Name", "label": "Name", "type": "string"}],
      "mapping": {"Name": ["north.xlsx::Sales::Name", "south.xlsx::RD::Full Name"]},
      "merge": {"method": "join", "join_key": "Name", "join_type": "outer",
                "remove_duplicates": true}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from sheet_splitter.headers import parse_ref
from sheet_splitter.mapping import Mapping, auto_detect
from sheet_splitter.models import (
    FIELD_TYPES,
    JOIN_TYPES,
    MERGE_METHODS,
    FieldDefinition,
    MergeConfig,
    PlanError,
    SourceSheet,
    is_reserved_key,
)

logger = logging.getLogger(__name__)


@dataclass
class MergePlan:
    sheet_order: list[tuple[str, str]] = field(default_factory=list)
    fields: list[FieldDefinition] = field(default_factory=list)
    mapping: Mapping = field(default_factory=dict)
    merge: MergeConfig = field(default_factory=MergeConfig)

    # ── construction ────────────────────────────────────────────────────────

    @classmethod
    def from_sheets(cls, sheets: Sequence[SourceSheet], method: str = "join") -> "MergePlan":
        fields, mapping, join_key = auto_detect(sheets)
        return cls(
            sheet_order=[sheet.key for sheet in sheets],
            fields=fields,
            mapping=mapping,
            merge=MergeConfig(method=method, join_key=join_key),
        )

    @classmethod
    def from_dict(cls, payload: Any) -> "MergePlan":
        if not isinstance(payload, dict):
            raise PlanError("Plan must be a JSON object.")

        order = []
        for entry in payload.get("sheet_order", []):
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise PlanError(f"sheet_order entries must be [file, sheet] pairs, got {entry!r}")
            order.append((str(entry[0]), str(entry[1])))

        fields = []
        for entry in payload.get("fields", []):
            if isinstance(entry, str):
                entry = {"key": entry}
            if not isinstance(entry, dict) or not entry.get("key"):
                raise PlanError(f"Field entries need a 'key', got {entry!r}")
            key = str(entry["key"])
            fields.append(FieldDefinition(key=key, label=str(entry.get("label") or key), type=str(entry.get("type") or "string")))

        raw_mapping = payload.get("mapping", {})
        if not isinstance(raw_mapping, dict):
            raise PlanError("'mapping' must be an object of field -> candidate list.")
        mapping: Mapping = {}
        for key, refs in raw_mapping.items():
            if not isinstance(refs, list):
                raise PlanError(f"Mapping for '{key}' must be a list of 'file::sheet::header' strings.")
            mapping[str(key)] = [parse_ref(str(ref)) for ref in refs]

        merge_payload = payload.get("merge", {})
        if not isinstance(merge_payload, dict):
            raise PlanError("'merge' must be an object.")
        defaults = MergeConfig()
        merge = MergeConfig(
            method=str(merge_payload.get("method", defaults.method)),
            join_key=str(merge_payload.get("join_key", defaults.join_key) or ""),
            join_type=str(merge_payload.get("join_type", defaults.join_type)),
            remove_duplicates=bool(merge_payload.get("remove_duplicates", defaults.remove_duplicates)),
        )

        plan = cls(sheet_order=order, fields=fields, mapping=mapping, merge=merge)
        plan.validate()
        return plan

    @classmethod
    def load(cls, path: str | Path) -> "MergePlan":
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise PlanError(f"Plan file not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise PlanError(f"Plan file is not valid JSON: {path}: {exc}") from exc
        return cls.from_dict(payload)

    # ── validation + serialisation ──────────────────────────────────────────

    def validate(self) -> None:
        keys = [item.key for item in self.fields]
        seen: set[str] = set()
        for item in self.fields:
            if is_reserved_key(item.key):
                raise PlanError(f"Field key '{item.key}' is reserved.")
            if item.key in seen:
                raise PlanError(f"Duplicate field key '{item.key}'.")
            if item.type not in FIELD_TYPES:
                raise PlanError(f"Field '{item.key}' has unknown type '{item.type}'.")
            seen.add(item.key)
        for key in self.mapping:
            if key not in seen:
                raise PlanError(f"Mapping refers to unknown field '{key}'.")
        for key in keys:
            self.mapping.setdefault(key, [])
        if self.merge.method not in MERGE_METHODS:
            raise PlanError(f"Unknown merge method '{self.merge.method}'. Expected one of {list(MERGE_METHODS)}.")
        if self.merge.join_type not in JOIN_TYPES:
            raise PlanError(f"Unknown join type '{self.merge.join_type}'. Expected one of {list(JOIN_TYPES)}.")
        if self.merge.method == "join" and self.merge.join_key not in seen:
            raise PlanError(f"Join key '{self.merge.join_key}' is not one of the plan's fields.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheet_order": [list(key) for key in self.sheet_order],
            "fields": [item.to_dict() for item in self.fields],
            "mapping": {key: [str(ref) for ref in refs] for key, refs in self.mapping.items()},
            "merge": self.merge.to_dict(),
        }

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return path

    # ── application ─────────────────────────────────────────────────────────

    def apply_sheet_order(self, sheets: Sequence[SourceSheet]) -> list[SourceSheet]:
        """
        Order `sheets` as the plan lists them; sheets the plan does not name
        follow in their given order.
        """
        by_key = {sheet.key: sheet for sheet in sheets}
        ordered = []
        for key in self.sheet_order:
            sheet = by_key.pop(key, None)
            if sheet is None:
                logger.warning("Plan names sheet %s / %s but it was not loaded", *key)
                continue
            ordered.append(sheet)
        ordered.extend(sheet for sheet in sheets if sheet.key in by_key)
        return ordered

