"""Shared data model for sheet-splitter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple

ROW_ID_KEY = "id"
SOURCE_FILE_KEY = "_sourceFile"
SOURCE_SHEET_KEY = "_sourceSheet"
RESERVED_PREFIX = "_"
JOINED_SENTINEL = "Joined"

SYSTEM_FIELD_LABELS = {
    SOURCE_FILE_KEY: "Source File",
    SOURCE_SHEET_KEY: "Source Sheet",
}

MERGE_METHODS = ("vertical", "join")
JOIN_TYPES = ("outer", "inner", "left")
FIELD_TYPES = ("string", "number")

NOTICE_LEVELS = ("success", "info", "error")


class SheetSplitterError(Exception):
    """Base class for every error raised by sheet-splitter."""


class InputError(SheetSplitterError, ValueError):
    """A user-supplied value makes the requested operation impossible."""


class ReadError(InputError):
    """A file could not be parsed into sheets."""


class PlanError(InputError):
    """A merge plan is malformed or inconsistent."""


def is_reserved_key(key: str) -> bool:
    return key == ROW_ID_KEY or key.startswith(RESERVED_PREFIX)


class ColumnRef(NamedTuple):
    file_name: str
    sheet_name: str
    header: str

    @property
    def sheet_key(self) -> tuple[str, str]:
        return (self.file_name, self.sheet_name)

    @property
    def is_bare(self) -> bool:
        return not self.file_name and not self.sheet_name

    def __str__(self) -> str:
        if self.is_bare:
            return self.header
        return f"{self.file_name}::{self.sheet_name}::{self.header}"


@dataclass
class SourceSheet:
    file_name: str
    sheet_name: str
    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.file_name, self.sheet_name)

    def ref(self, header: str) -> ColumnRef:
        return ColumnRef(self.file_name, self.sheet_name, header)

    def owns(self, ref: ColumnRef) -> bool:
        return ref.file_name == self.file_name and ref.sheet_name == self.sheet_name


@dataclass
class FieldDefinition:
    key: str
    label: str
    type: str = "string"

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "label": self.label, "type": self.type}


@dataclass
class MergeConfig:
    method: str = "join"
    join_key: str = ""
    join_type: str = "outer"
    remove_duplicates: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "join_key": self.join_key,
            "join_type": self.join_type,
            "remove_duplicates": self.remove_duplicates,
        }


@dataclass
class Notice:
    message: str
    level: str = "info"

    @property
    def is_error(self) -> bool:
        return self.level == "error"
