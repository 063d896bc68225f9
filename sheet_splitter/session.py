"""
session.py — stateful workspaces behind the web app.

MergeWorkspace walks UPLOAD -> MAPPING -> PREVIEW: import sheets, edit the
field mapping and merge settings, merge, then edit / clean / split / export
the merged table. CleanerWorkspace edits the raw sheets of a single file.

Both keep their own History of whole-table snapshots. User mistakes never
raise out of a workspace: they become error notices and leave the state as
it was. Every mutating method returns True when it changed something.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Sequence

from sheet_splitter import mapping as mapping_ops
from sheet_splitter.filters import coerce_operator, detect_type, filter_rows, search_rows, split_export_name
from sheet_splitter.history import History
from sheet_splitter.mapping import Mapping
from sheet_splitter.merge import merge_sheets
from sheet_splitter.models import (
    ROW_ID_KEY,
    SYSTEM_FIELD_LABELS,
    ColumnRef,
    FieldDefinition,
    InputError,
    MergeConfig,
    Notice,
    SheetSplitterError,
    SourceSheet,
    is_reserved_key,
)
from sheet_splitter.reader import read_blobs, read_sheets
from sheet_splitter.samples import sample_sheets
from sheet_splitter.transforms import (
    COLUMN_OPERATIONS,
    TransformResult,
    run_column_operation,
    run_table_operation,
)
from sheet_splitter.writer import Target, write_flat_table, write_workbook, write_workbook_archive

logger = logging.getLogger(__name__)

STEP_UPLOAD = "upload"
STEP_MAPPING = "mapping"
STEP_PREVIEW = "preview"

MODE_SPLITTER = "splitter"
MODE_CLEANER = "cleaner"

EXPORT_ALL_NAME = "Merged_Master_Data"
EXPORT_MODES = ("single", "multiple")

Rows = list[dict[str, Any]]


class _NoticeBoard:
    """Collects notices; the UI drains them after every interaction."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append(Notice(message=message, level=level))
        logger.debug("notice (%s): %s", level, message)

    def drain(self) -> list[Notice]:
        drained, self.notices = self.notices, []
        return drained

    @property
    def last_notice(self) -> Notice | None:
        return self.notices[-1] if self.notices else None

    def _report_transform(self, result: TransformResult) -> bool:
        if result.removed:
            self.notify(f"Removed {result.removed} row(s).", "success")
            return True
        if result.changed:
            self.notify(f"Applied: {result.label} ({result.changed} row(s) affected).", "success")
            return True
        self.notify("Nothing needed changing.", "info")
        return False


# ══════════════════════════════════════════════════════════════════════════════
# MERGE WORKSPACE
# ══════════════════════════════════════════════════════════════════════════════

class MergeWorkspace(_NoticeBoard):
    def __init__(self) -> None:
        super().__init__()
        self._import_token = 0
        self._clear()

    def _clear(self) -> None:
        self.step = STEP_UPLOAD
        self.sheets: list[SourceSheet] = []
        self.fields: list[FieldDefinition] = []
        self.mapping: Mapping = {}
        self.merge_config = MergeConfig()
        self.history: History[Rows] = History()
        self.hidden_keys: set[str] = set()

    def reset(self) -> None:
        """Back to the upload step with everything cleared."""
        self._import_token += 1
        self._clear()
        self.notify("Returned to the start and cleared all data.", "success")

    # ── import ──────────────────────────────────────────────────────────────

    def begin_import(self) -> int:
        """Start an import; only the latest token's result will be applied."""
        self._import_token += 1
        return self._import_token

    def finish_import(
        self,
        token: int,
        sheets: Sequence[SourceSheet] | None = None,
        error: Exception | None = None,
        message: str = "Files loaded.",
    ) -> bool:
        if token != self._import_token:
            logger.debug("Discarding stale import result (token %d, current %d)", token, self._import_token)
            return False
        if error is not None:
            self.notify(f"Could not read the files: {error}", "error")
            return False
        if not sheets:
            self.notify("Could not read the files or they are empty.", "error")
            return False
        self.sheets = list(sheets)
        self._detect_mapping()
        self.history = History()
        self.hidden_keys = set()
        self.step = STEP_MAPPING
        self.notify(message, "success")
        return True

    def import_files(self, paths: Iterable[str | Path]) -> bool:
        token = self.begin_import()
        try:
            sheets = read_sheets(paths)
        except SheetSplitterError as exc:
            return self.finish_import(token, error=exc)
        return self.finish_import(token, sheets)

    def import_blobs(self, blobs: Iterable[tuple[str, bytes]]) -> bool:
        token = self.begin_import()
        try:
            sheets = read_blobs(blobs)
        except SheetSplitterError as exc:
            return self.finish_import(token, error=exc)
        return self.finish_import(token, sheets)

    def load_sample(self) -> bool:
        return self.finish_import(self.begin_import(), sample_sheets(), message="Sample data loaded.")

    # ── mapping step ────────────────────────────────────────────────────────

    def _detect_mapping(self) -> None:
        self.fields, self.mapping, join_key = mapping_ops.auto_detect(self.sheets)
        self.merge_config = MergeConfig(join_key=join_key)

    def reset_mapping(self) -> None:
        self._detect_mapping()
        self.notify("Mapping reset to the detected fields.", "info")

    def move_sheet(self, from_index: int, to_index: int) -> bool:
        try:
            order = mapping_ops.reorder_sheets(self.sheets, from_index, to_index)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        if order == self.sheets:
            return False
        self.sheets = order
        self.mapping = mapping_ops.reorder_candidates(self.mapping, self.sheets)
        self.notify("Sheet priority updated; each field's first candidate now follows the new order.", "info")
        return True

    def add_field(self, name: str) -> bool:
        try:
            self.fields, self.mapping = mapping_ops.add_field(self.fields, self.mapping, name)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        return True

    def rename_field(self, old_key: str, new_name: str) -> bool:
        try:
            self.fields, self.mapping, join_key = mapping_ops.rename_field(
                self.fields, self.mapping, self.merge_config.join_key, old_key, new_name
            )
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        self.merge_config = replace(self.merge_config, join_key=join_key)
        return True

    def remove_field(self, key: str) -> bool:
        self.fields, self.mapping, join_key = mapping_ops.remove_field(
            self.fields, self.mapping, self.merge_config.join_key, key
        )
        self.merge_config = replace(self.merge_config, join_key=join_key)
        return True

    def move_field(self, from_index: int, to_index: int) -> bool:
        try:
            self.fields = mapping_ops.move_field(self.fields, from_index, to_index)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        return True

    def move_candidate(self, ref: ColumnRef, from_key: str, to_key: str) -> bool:
        try:
            self.mapping = mapping_ops.move_candidate(self.mapping, ref, from_key, to_key)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        return True

    def reorder_candidate(self, field_key: str, from_index: int, to_index: int) -> bool:
        try:
            self.mapping = mapping_ops.reorder_candidate(self.mapping, field_key, from_index, to_index)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        return True

    def set_merge_config(self, **changes: Any) -> None:
        self.merge_config = replace(self.merge_config, **changes)

    def confirm_mapping(self) -> bool:
        """Merge with the current mapping and start a fresh table history."""
        if not self.fields:
            self.notify("Define at least one field before merging.", "error")
            return False
        config = self.merge_config
        if config.method == "join" and not any(item.key == config.join_key for item in self.fields):
            self.notify("Choose a join key field before merging.", "error")
            return False
        try:
            rows = merge_sheets(self.sheets, self.fields, self.mapping, config)
        except SheetSplitterError as exc:
            self.notify(f"Merge failed: {exc}", "error")
            return False
        if not rows:
            self.notify("The merge produced no rows; check the join key mapping.", "error")
            return False
        self.history = History(rows)
        self.hidden_keys = set()
        self.step = STEP_PREVIEW
        self.notify(f"Merged {len(rows)} row(s).", "success")
        return True

    def back_to_mapping(self) -> None:
        if self.sheets:
            self.step = STEP_MAPPING

    # ── merged table ────────────────────────────────────────────────────────

    @property
    def rows(self) -> Rows:
        return self.history.current or []

    @property
    def all_fields(self) -> list[FieldDefinition]:
        system = [FieldDefinition(key=key, label=label) for key, label in SYSTEM_FIELD_LABELS.items()]
        return [*self.fields, *system]

    @property
    def visible_fields(self) -> list[FieldDefinition]:
        return [item for item in self.all_fields if item.key not in self.hidden_keys]

    def edit_cell(self, row_id: str, key: str, value: Any) -> bool:
        """Change one cell in the current frame without adding an undo step."""
        if is_reserved_key(key):
            self.notify(f"'{key}' is a system column and cannot be edited.", "error")
            return False
        rows = self.rows
        updated = [dict(row, **{key: value}) if row.get(ROW_ID_KEY) == row_id else row for row in rows]
        if all(new is old for new, old in zip(updated, rows)):
            self.notify(f"No row with id '{row_id}'.", "error")
            return False
        self.history.replace_current(updated)
        return True

    def _target_columns(self, column: str | None) -> list[str]:
        if not column:
            return [item.key for item in self.fields]
        if is_reserved_key(column):
            raise InputError(f"'{column}' is a system column and cannot be edited.")
        if column not in {item.key for item in self.all_fields}:
            raise InputError(f"Unknown column: {column}")
        return [column]

    def apply_transform(self, name: str, column: str | None = None, **params: Any) -> bool:
        """
        Run a cell or row operation over one column, or over every mapped
        field when no column is given. Pushes an undo step only on change.
        """
        try:
            result = run_table_operation(self.rows, self._target_columns(column), name, **params)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        if not result.is_noop:
            self.history.push(result.rows)
        return self._report_transform(result)

    def undo(self) -> bool:
        if self.history.undo():
            self.notify("Undid the last step.", "info")
            return True
        return False

    def redo(self) -> bool:
        if self.history.redo():
            self.notify("Redid the step.", "info")
            return True
        return False

    def toggle_column(self, key: str) -> None:
        if key in self.hidden_keys:
            self.hidden_keys.discard(key)
        else:
            self.hidden_keys.add(key)

    def toggle_all_columns(self) -> None:
        """Show everything, or hide everything except the first column."""
        if self.hidden_keys:
            self.hidden_keys = set()
            return
        keys = [item.key for item in self.all_fields]
        self.hidden_keys = set(keys[1:])

    def search(self, text: str) -> Rows:
        return search_rows(self.rows, [item.key for item in self.visible_fields], text)

    def split_type(self, field_key: str) -> str:
        return detect_type(self.rows, field_key)

    def split_operator(self, field_key: str, operator: str) -> str:
        return coerce_operator(self.split_type(field_key), operator)

    def split(self, field_key: str, operator: str, value: Any) -> Rows:
        """Rows matching the split condition; no match is an info notice, bad input an error."""
        try:
            matched = filter_rows(self.rows, field_key, operator, value, self.split_type(field_key) if field_key else None)
        except InputError as exc:
            self.notify(str(exc), "error")
            return []
        if not matched:
            self.notify("No rows match the split condition.", "info")
        return matched

    # ── export ──────────────────────────────────────────────────────────────

    def _write_rows(self, rows: Sequence[dict[str, Any]], target: Target, title: str) -> None:
        visible = self.visible_fields
        write_flat_table(
            rows,
            [item.key for item in visible],
            target,
            title=title,
            labels={item.key: item.label for item in visible},
        )

    def export_all(self, target: Target) -> bool:
        if not self.rows:
            self.notify("There is no data to export.", "error")
            return False
        self._write_rows(self.rows, target, "Report")
        self.notify("Exported the full table.", "success")
        return True

    def export_split(self, target: Target, field_key: str, operator: str, value: Any) -> str | None:
        """Write the matching rows; returns the export name, or None."""
        matched = self.split(field_key, operator, value)
        if not matched:
            return None
        self._write_rows(matched, target, "Report")
        name = split_export_name(field_key, operator, value)
        self.notify(f"Split and exported {len(matched)} row(s) as {name}.", "success")
        return name


# ══════════════════════════════════════════════════════════════════════════════
# CLEANER WORKSPACE
# ══════════════════════════════════════════════════════════════════════════════

class CleanerWorkspace(_NoticeBoard):
    def __init__(self) -> None:
        super().__init__()
        self.file_name: str | None = None
        self.history: History[list[SourceSheet]] = History()
        self.active_sheet_name: str | None = None
        self.selected_columns: list[str] = []

    # ── loading ─────────────────────────────────────────────────────────────

    def _load(self, file_name: str, sheets: Sequence[SourceSheet]) -> bool:
        self.file_name = file_name
        self.history = History(list(sheets))
        self.active_sheet_name = sheets[0].sheet_name if sheets else None
        self.selected_columns = []
        self.notify(f"Loaded {file_name}.", "success")
        return True

    def open_file(self, path: str | Path) -> bool:
        try:
            sheets = read_sheets([path])
        except SheetSplitterError as exc:
            self.notify(f"Could not read the file: {exc}", "error")
            return False
        return self._load(Path(path).name, sheets)

    def open_blob(self, file_name: str, data: bytes) -> bool:
        try:
            sheets = read_blobs([(file_name, data)])
        except SheetSplitterError as exc:
            self.notify(f"Could not read the file: {exc}", "error")
            return False
        return self._load(file_name, sheets)

    # ── state ───────────────────────────────────────────────────────────────

    @property
    def sheets(self) -> list[SourceSheet]:
        return self.history.current or []

    @property
    def active_sheet(self) -> SourceSheet | None:
        for sheet in self.sheets:
            if sheet.sheet_name == self.active_sheet_name:
                return sheet
        return None

    def set_active_sheet(self, sheet_name: str) -> None:
        if sheet_name != self.active_sheet_name:
            self.active_sheet_name = sheet_name
            self.selected_columns = []

    def toggle_column(self, header: str) -> None:
        if header in self.selected_columns:
            self.selected_columns.remove(header)
        else:
            self.selected_columns.append(header)

    def clear_selection(self) -> None:
        self.selected_columns = []

    def _target_headers(self, sheet: SourceSheet) -> list[str]:
        return list(self.selected_columns) if self.selected_columns else list(sheet.headers)

    def _replace_active(self, updated: SourceSheet, *, coalesce: bool = False) -> None:
        snapshot = [updated if sheet.sheet_name == self.active_sheet_name else sheet for sheet in self.sheets]
        if coalesce:
            self.history.replace_current(snapshot)
        else:
            self.history.push(snapshot)

    # ── edits ───────────────────────────────────────────────────────────────

    def edit_cell(self, row_index: int, header: str, value: Any) -> bool:
        sheet = self.active_sheet
        if sheet is None:
            return False
        if not 0 <= row_index < len(sheet.rows):
            self.notify(f"Row {row_index} does not exist.", "error")
            return False
        rows = list(sheet.rows)
        rows[row_index] = dict(rows[row_index], **{header: value})
        self._replace_active(replace(sheet, rows=rows), coalesce=True)
        return True

    def apply_transform(self, name: str, **params: Any) -> bool:
        """Cell or row operation over the selected columns, or all columns."""
        sheet = self.active_sheet
        if sheet is None:
            return False
        try:
            result = run_table_operation(sheet.rows, self._target_headers(sheet), name, **params)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        if not result.is_noop:
            self._replace_active(replace(sheet, rows=result.rows))
        return self._report_transform(result)

    def change_columns(self, name: str) -> bool:
        """delete_columns / keep_columns / swap_columns on the selection."""
        sheet = self.active_sheet
        if sheet is None:
            return False
        try:
            headers = run_column_operation(sheet.headers, self.selected_columns, name)
        except InputError as exc:
            self.notify(str(exc), "error")
            return False
        kept = set(headers)
        rows = [{key: value for key, value in row.items() if key in kept} for row in sheet.rows]
        self._replace_active(replace(sheet, headers=headers, rows=rows))
        self.selected_columns = []
        self.notify(f"{COLUMN_OPERATIONS[name]}: column layout changed.", "success")
        return True

    def run_operation(self, name: str, **params: Any) -> bool:
        if name in COLUMN_OPERATIONS:
            return self.change_columns(name)
        return self.apply_transform(name, **params)

    def undo(self) -> bool:
        if self.history.undo():
            self.notify("Undid the last step.", "info")
            return True
        return False

    def redo(self) -> bool:
        if self.history.redo():
            self.notify("Redid the step.", "info")
            return True
        return False

    # ── export ──────────────────────────────────────────────────────────────

    @property
    def export_name(self) -> str:
        stem = Path(self.file_name).stem if self.file_name else "workbook"
        return f"Cleaned_{stem}"

    def export(self, target: Target, sheet_names: Iterable[str] | None = None, mode: str = "single") -> bool:
        """
        Write the chosen sheets (all by default) as one workbook ("single")
        or as a zip of one workbook per sheet ("multiple").
        """
        if mode not in EXPORT_MODES:
            self.notify(f"Unknown export mode: {mode}", "error")
            return False
        wanted = None if sheet_names is None else set(sheet_names)
        chosen = [sheet for sheet in self.sheets if wanted is None or sheet.sheet_name in wanted]
        if not chosen:
            self.notify("Select at least one sheet to export.", "error")
            return False
        if mode == "single":
            write_workbook(chosen, target)
        else:
            write_workbook_archive(chosen, target)
        self.notify(f"Exported {len(chosen)} sheet(s).", "success")
        return True
