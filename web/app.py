#!/usr/bin/env python3
from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import Any

import pandas as pd
import streamlit as st


ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sheet_splitter.filters import OPERATOR_LABELS, operators_for, split_export_name  # noqa: E402
from sheet_splitter.headers import parse_ref  # noqa: E402
from sheet_splitter.models import JOIN_TYPES, MERGE_METHODS, ROW_ID_KEY, Notice  # noqa: E402
from sheet_splitter.reader import ALL_FORMATS  # noqa: E402
from sheet_splitter.session import (  # noqa: E402
    EXPORT_ALL_NAME,
    MODE_CLEANER,
    MODE_SPLITTER,
    STEP_MAPPING,
    STEP_PREVIEW,
    STEP_UPLOAD,
    CleanerWorkspace,
    MergeWorkspace,
)
from sheet_splitter.transforms import CELL_OPERATIONS, COLUMN_OPERATIONS, TABLE_OPERATIONS  # noqa: E402

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ZIP_MIME = "application/zip"
MAX_PREVIEW_ROWS = 500

OPERATION_LABELS = {
    **{name: label for name, (label, _factory) in CELL_OPERATIONS.items()},
    **TABLE_OPERATIONS,
}

# Parameters each operation asks for: (param name, widget label, default).
OPERATION_PARAMS: dict[str, list[tuple[str, str, Any]]] = {
    "find_replace": [("find", "Find", ""), ("replace", "Replace with", "")],
    "regex_replace": [("find", "Pattern", ""), ("replace", "Replace with", "")],
    "prepend": [("text", "Text", "")],
    "append": [("text", "Text", "")],
    "pad_left": [("length", "Length", "3")],
    "add": [("operand", "Operand", "0")],
    "subtract": [("operand", "Operand", "0")],
    "multiply": [("operand", "Operand", "1")],
    "divide": [("operand", "Operand", "1")],
    "fill_empty": [("fill", "Fill value", "")],
}


def ensure_state() -> None:
    st.session_state.setdefault("mode", MODE_SPLITTER)
    st.session_state.setdefault("merge_ws", MergeWorkspace())
    st.session_state.setdefault("cleaner_ws", CleanerWorkspace())
    st.session_state.setdefault("notices", [])
    st.session_state.setdefault("upload_round", 0)


def merge_ws() -> MergeWorkspace:
    return st.session_state["merge_ws"]


def cleaner_ws() -> CleanerWorkspace:
    return st.session_state["cleaner_ws"]


def collect_notices(*workspaces) -> None:
    for workspace in workspaces:
        st.session_state["notices"].extend(workspace.drain())


def render_notices() -> None:
    notices: list[Notice] = st.session_state["notices"]
    for notice in notices:
        if notice.level == "error":
            st.error(notice.message)
        elif notice.level == "success":
            st.success(notice.message)
        else:
            st.info(notice.message)
    st.session_state["notices"] = []


def rows_frame(rows: list[dict[str, Any]], keys: list[str], labels: dict[str, str] | None = None) -> pd.DataFrame:
    frame = pd.DataFrame([[row.get(key, "") for key in keys] for row in rows[:MAX_PREVIEW_ROWS]], columns=keys)
    if labels:
        frame = frame.rename(columns=labels)
    return frame.astype(str).replace({"None": ""})


def to_bytes(write) -> bytes:
    buffer = io.BytesIO()
    write(buffer)
    return buffer.getvalue()


def operation_params(name: str, key_prefix: str) -> dict[str, Any]:
    params: dict[str, Any] = {}
    specs = OPERATION_PARAMS.get(name, [])
    if not specs:
        return params
    columns = st.columns(len(specs))
    for column, (param, label, default) in zip(columns, specs):
        params[param] = column.text_input(label, value=default, key=f"{key_prefix}_{name}_{param}")
    return params


# ══════════════════════════════════════════════════════════════════════════════
# SPLITTER MODE
# ══════════════════════════════════════════════════════════════════════════════

def render_upload() -> None:
    workspace = merge_ws()
    uploads = st.file_uploader(
        "Upload spreadsheets",
        type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)],
        accept_multiple_files=True,
        key=f"splitter_uploads_{st.session_state['upload_round']}",
    )
    left, right = st.columns(2)
    if left.button("Load files", type="primary", width="stretch", disabled=not uploads):
        with st.spinner("Reading files..."):
            workspace.import_blobs([(item.name, item.getvalue()) for item in uploads])
        collect_notices(workspace)
        st.rerun()
    if right.button("Try the sample data", width="stretch"):
        workspace.load_sample()
        collect_notices(workspace)
        st.rerun()
    st.info("Supported here: " + " ".join(sorted(ALL_FORMATS)))


def render_sheet_order(workspace: MergeWorkspace) -> None:
    st.markdown("**Sheet priority**")
    st.caption("Earlier sheets win when several sources hold a value for the same field.")
    for index, sheet in enumerate(workspace.sheets):
        label, up, down = st.columns([6, 1, 1])
        label.write(f"{index + 1}. {sheet.file_name} / {sheet.sheet_name} ({len(sheet.rows)} rows)")
        if up.button("↑", key=f"sheet_up_{index}", disabled=index == 0):
            workspace.move_sheet(index, index - 1)
            st.rerun()
        if down.button("↓", key=f"sheet_down_{index}", disabled=index == len(workspace.sheets) - 1):
            workspace.move_sheet(index, index + 1)
            st.rerun()


def render_merge_settings(workspace: MergeWorkspace) -> None:
    config = workspace.merge_config
    field_keys = [item.key for item in workspace.fields]
    method = st.radio(
        "Merge method",
        options=list(MERGE_METHODS),
        index=MERGE_METHODS.index(config.method),
        format_func=lambda value: "Stack rows" if value == "vertical" else "Join on a key",
        horizontal=True,
    )
    changes: dict[str, Any] = {"method": method}
    if method == "join":
        left, right = st.columns(2)
        if field_keys:
            changes["join_key"] = left.selectbox(
                "Join key",
                options=field_keys,
                index=field_keys.index(config.join_key) if config.join_key in field_keys else 0,
            )
        changes["join_type"] = right.selectbox("Join type", options=list(JOIN_TYPES), index=JOIN_TYPES.index(config.join_type))
    changes["remove_duplicates"] = st.checkbox(
        "Skip repeated join keys within a sheet",
        value=config.remove_duplicates,
        disabled=method != "join",
    )
    workspace.set_merge_config(**changes)


def render_field_editor(workspace: MergeWorkspace) -> None:
    st.markdown("**Target fields**")
    field_keys = [item.key for item in workspace.fields]
    for index, field in enumerate(workspace.fields):
        with st.expander(f"{field.key}  •  {len(workspace.mapping.get(field.key, []))} source(s)"):
            name_col, up_col, down_col, remove_col = st.columns([5, 1, 1, 2])
            new_name = name_col.text_input("Field name", value=field.key, key=f"field_name_{index}_{field.key}")
            if new_name != field.key and workspace.rename_field(field.key, new_name):
                st.rerun()
            if up_col.button("↑", key=f"field_up_{field.key}", disabled=index == 0):
                workspace.move_field(index, index - 1)
                st.rerun()
            if down_col.button("↓", key=f"field_down_{field.key}", disabled=index == len(field_keys) - 1):
                workspace.move_field(index, index + 1)
                st.rerun()
            if remove_col.button("Remove", key=f"field_remove_{field.key}"):
                workspace.remove_field(field.key)
                st.rerun()

            candidates = workspace.mapping.get(field.key, [])
            for position, ref in enumerate(candidates):
                ref_col, up, down, target_col = st.columns([5, 1, 1, 3])
                ref_col.caption(f"{position + 1}. {ref}")
                if up.button("↑", key=f"cand_up_{field.key}_{position}", disabled=position == 0):
                    workspace.reorder_candidate(field.key, position, position - 1)
                    st.rerun()
                if down.button("↓", key=f"cand_down_{field.key}_{position}", disabled=position == len(candidates) - 1):
                    workspace.reorder_candidate(field.key, position, position + 1)
                    st.rerun()
                others = [key for key in field_keys if key != field.key]
                target = target_col.selectbox(
                    "Move to",
                    options=["", *others],
                    key=f"cand_move_{field.key}_{position}",
                    label_visibility="collapsed",
                )
                if target and workspace.move_candidate(ref, field.key, target):
                    st.rerun()

    with st.form("add_field", clear_on_submit=True):
        name = st.text_input("New field name")
        if st.form_submit_button("Add field") and workspace.add_field(name):
            st.rerun()


def render_unmapped(workspace: MergeWorkspace) -> None:
    mapped = {str(ref) for refs in workspace.mapping.values() for ref in refs}
    unmapped = [
        str(sheet.ref(header))
        for sheet in workspace.sheets
        for header in sheet.headers
        if str(sheet.ref(header)) not in mapped
    ]
    if not unmapped or not workspace.fields:
        return
    st.markdown("**Unmapped columns**")
    ref_col, target_col, button_col = st.columns([5, 3, 2])
    chosen = ref_col.selectbox("Column", options=unmapped, key="unmapped_ref")
    target = target_col.selectbox("Field", options=[item.key for item in workspace.fields], key="unmapped_target")
    if button_col.button("Map", key="unmapped_map"):
        workspace.move_candidate(parse_ref(chosen), "", target)
        st.rerun()


def render_mapping() -> None:
    workspace = merge_ws()
    st.subheader("Map the fields")
    render_sheet_order(workspace)
    st.divider()
    render_merge_settings(workspace)
    st.divider()
    render_field_editor(workspace)
    render_unmapped(workspace)

    left, middle, right = st.columns(3)
    if left.button("Merge", type="primary", width="stretch"):
        with st.spinner("Merging..."):
            workspace.confirm_mapping()
        collect_notices(workspace)
        st.rerun()
    if middle.button("Reset detected mapping", width="stretch"):
        workspace.reset_mapping()
        collect_notices(workspace)
        st.rerun()
    if right.button("Start over", width="stretch"):
        workspace.reset()
        st.session_state["upload_round"] += 1
        collect_notices(workspace)
        st.rerun()


def render_merged_table(workspace: MergeWorkspace) -> None:
    visible = workspace.visible_fields
    keys = [item.key for item in visible]
    query = st.text_input("Search", key="merged_search")
    rows = workspace.search(query)
    frame = rows_frame(rows, [ROW_ID_KEY, *keys]).set_index(ROW_ID_KEY)
    st.caption(f"{len(rows)} of {len(workspace.rows)} row(s)")
    edited = st.data_editor(
        frame,
        disabled=[key for key in keys if key.startswith("_")],
        key=f"merged_editor_{workspace.history.index}",
        width="stretch",
    )
    for row_id, changes in edited.compare(frame).groupby(level=0):
        for key in keys:
            if key in changes.columns.get_level_values(0):
                workspace.edit_cell(str(row_id), key, edited.at[row_id, key])


def render_merged_tools(workspace: MergeWorkspace) -> None:
    with st.sidebar:
        st.markdown("**Columns**")
        if st.button("Show / hide all", width="stretch"):
            workspace.toggle_all_columns()
            st.rerun()
        for item in workspace.all_fields:
            shown = st.checkbox(item.label, value=item.key not in workspace.hidden_keys, key=f"show_{item.key}")
            if shown == (item.key in workspace.hidden_keys):
                workspace.toggle_column(item.key)

    st.markdown("**Clean**")
    op_col, column_col = st.columns(2)
    name = op_col.selectbox("Operation", options=list(OPERATION_LABELS), format_func=OPERATION_LABELS.get, key="merged_op")
    column = column_col.selectbox(
        "Column",
        options=["", *[item.key for item in workspace.fields]],
        format_func=lambda key: key or "All mapped fields",
        key="merged_op_column",
    )
    params = operation_params(name, "merged")
    apply_col, undo_col, redo_col = st.columns(3)
    if apply_col.button("Apply", type="primary", width="stretch"):
        workspace.apply_transform(name, column or None, **params)
        collect_notices(workspace)
        st.rerun()
    if undo_col.button("Undo", width="stretch", disabled=not workspace.history.can_undo):
        workspace.undo()
        collect_notices(workspace)
        st.rerun()
    if redo_col.button("Redo", width="stretch", disabled=not workspace.history.can_redo):
        workspace.redo()
        collect_notices(workspace)
        st.rerun()


def render_split(workspace: MergeWorkspace) -> None:
    st.markdown("**Split and export**")
    field_col, op_col, value_col = st.columns(3)
    field_key = field_col.selectbox("Field", options=[item.key for item in workspace.fields], key="split_field")
    field_type = workspace.split_type(field_key) if field_key else "string"
    operator = op_col.selectbox(
        "Condition",
        options=list(operators_for(field_type)),
        format_func=OPERATOR_LABELS.get,
        key=f"split_operator_{field_type}",
    )
    value = value_col.text_input("Value", key="split_value")
    if field_key and value.strip():
        matched = workspace.split(field_key, operator, value)
        collect_notices(workspace)
        if matched:
            st.caption(f"{len(matched)} matching row(s)")
            st.download_button(
                "Download split",
                data=to_bytes(lambda buffer: workspace.export_split(buffer, field_key, operator, value)),
                file_name=f"{split_export_name(field_key, operator, value)}.xlsx",
                mime=XLSX_MIME,
                width="stretch",
            )
            workspace.drain()

    st.download_button(
        "Download everything",
        data=to_bytes(workspace.export_all),
        file_name=f"{EXPORT_ALL_NAME}.xlsx",
        mime=XLSX_MIME,
        width="stretch",
        disabled=not workspace.rows,
    )
    workspace.drain()


def render_preview() -> None:
    workspace = merge_ws()
    st.subheader("Merged table")
    render_merged_tools(workspace)
    render_merged_table(workspace)
    st.divider()
    render_split(workspace)
    left, right = st.columns(2)
    if left.button("Back to mapping", width="stretch"):
        workspace.back_to_mapping()
        st.rerun()
    if right.button("Start over", width="stretch"):
        workspace.reset()
        st.session_state["upload_round"] += 1
        collect_notices(workspace)
        st.rerun()


def render_splitter() -> None:
    step = merge_ws().step
    if step == STEP_UPLOAD:
        render_upload()
    elif step == STEP_MAPPING:
        render_mapping()
    elif step == STEP_PREVIEW:
        render_preview()


# ══════════════════════════════════════════════════════════════════════════════
# CLEANER MODE
# ══════════════════════════════════════════════════════════════════════════════

def render_cleaner_sheet(workspace: CleanerWorkspace) -> None:
    sheet = workspace.active_sheet
    if sheet is None:
        return
    selected = st.multiselect(
        "Selected columns",
        options=list(sheet.headers),
        default=[header for header in workspace.selected_columns if header in sheet.headers],
        key=f"cleaner_selection_{sheet.sheet_name}_{workspace.history.index}",
    )
    workspace.selected_columns = list(selected)

    frame = rows_frame(sheet.rows, list(sheet.headers))
    edited = st.data_editor(frame, key=f"cleaner_editor_{sheet.sheet_name}_{workspace.history.index}", width="stretch")
    for row_index, changes in edited.compare(frame).groupby(level=0):
        for header in sheet.headers:
            if header in changes.columns.get_level_values(0):
                workspace.edit_cell(int(row_index), header, edited.at[row_index, header])


def render_cleaner_tools(workspace: CleanerWorkspace) -> None:
    labels = {**OPERATION_LABELS, **COLUMN_OPERATIONS}
    name = st.selectbox("Operation", options=list(labels), format_func=labels.get, key="cleaner_op")
    params = operation_params(name, "cleaner")
    st.caption("Applies to the selected columns, or to every column when none are selected.")
    apply_col, undo_col, redo_col = st.columns(3)
    if apply_col.button("Apply", type="primary", width="stretch", key="cleaner_apply"):
        workspace.run_operation(name, **params)
        collect_notices(workspace)
        st.rerun()
    if undo_col.button("Undo", width="stretch", disabled=not workspace.history.can_undo, key="cleaner_undo"):
        workspace.undo()
        collect_notices(workspace)
        st.rerun()
    if redo_col.button("Redo", width="stretch", disabled=not workspace.history.can_redo, key="cleaner_redo"):
        workspace.redo()
        collect_notices(workspace)
        st.rerun()


def render_cleaner_export(workspace: CleanerWorkspace) -> None:
    st.markdown("**Export**")
    names = [sheet.sheet_name for sheet in workspace.sheets]
    chosen = st.multiselect("Sheets", options=names, default=names, key="cleaner_export_sheets")
    mode = st.radio(
        "Layout",
        options=["single", "multiple"],
        format_func=lambda value: "One workbook" if value == "single" else "One file per sheet (zip)",
        horizontal=True,
        key="cleaner_export_mode",
    )
    extension, mime = (".xlsx", XLSX_MIME) if mode == "single" else (".zip", ZIP_MIME)
    st.download_button(
        "Download cleaned file",
        data=to_bytes(lambda buffer: workspace.export(buffer, chosen, mode)) if chosen else b"",
        file_name=f"{workspace.export_name}{extension}",
        mime=mime,
        width="stretch",
        disabled=not chosen,
    )
    workspace.drain()


def render_cleaner() -> None:
    workspace = cleaner_ws()
    upload = st.file_uploader(
        "Upload a spreadsheet",
        type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)],
        key="cleaner_upload",
    )
    if upload is not None and upload.name != workspace.file_name:
        workspace.open_blob(upload.name, upload.getvalue())
        collect_notices(workspace)
        st.rerun()
    if not workspace.sheets:
        st.info("Upload one file to clean its sheets.")
        return

    names = [sheet.sheet_name for sheet in workspace.sheets]
    active = st.radio(
        "Sheet",
        options=names,
        index=names.index(workspace.active_sheet_name) if workspace.active_sheet_name in names else 0,
        horizontal=True,
    )
    workspace.set_active_sheet(active)
    render_cleaner_tools(workspace)
    render_cleaner_sheet(workspace)
    st.divider()
    render_cleaner_export(workspace)


def set_visuals() -> None:
    st.set_page_config(page_title="sheet-splitter", page_icon="📑", layout="wide", initial_sidebar_state="auto")
    st.markdown(
        """
        <style>
        :root {
            --qt-bg: #ffffff;
            --qt-bg-secondary: #fafafe;
            --qt-surface-strong: rgba(250, 250, 254, 1);
            --qt-text: #2a2a32;
            --qt-border: #e8e8f0;
            --qt-primary: #9d72ff;
            --qt-primary-strong: #8b4cf7;
        }
        @media (prefers-color-scheme: dark) {
            :root {
                --qt-bg: #1a1a1a;
                --qt-bg-secondary: #22222b;
                --qt-surface-strong: rgba(30, 30, 39, 1);
                --qt-text: #f4f4f8;
                --qt-border: rgba(66, 66, 79, 0.8);
                --qt-primary: #b89fff;
                --qt-primary-strong: #9d72ff;
            }
        }
        .stApp {
            background: linear-gradient(180deg, var(--qt-bg) 0%, var(--qt-bg-secondary) 100%);
            color: var(--qt-text);
        }
        .block-container {
            padding-top: 2rem;
            max-width: 1400px;
        }
        .stButton > button, .stDownloadButton > button {
            border-radius: 999px !important;
            background: linear-gradient(135deg, var(--qt-primary) 0%, var(--qt-primary-strong) 100%) !important;
            color: #ffffff !important;
            font-weight: 600 !important;
        }
        .stButton > button:disabled {
            opacity: 0.55 !important;
        }
        .stExpander, .stAlert, .stDataFrame {
            border-radius: 18px;
            border: 1px solid var(--qt-border) !important;
            overflow: hidden;
        }
        </style>
        """,
        unsafe_allow_html=True,
    )


def main() -> None:
    set_visuals()
    ensure_state()

    st.title("sheet-splitter")
    st.caption("Merge spreadsheets with different headers, clean the result, and split it into exports.")

    mode = st.radio(
        "Mode",
        options=[MODE_SPLITTER, MODE_CLEANER],
        format_func=lambda value: "Merge and split" if value == MODE_SPLITTER else "Clean one file",
        horizontal=True,
        key="mode",
    )
    render_notices()
    if mode == MODE_SPLITTER:
        render_splitter()
    else:
        render_cleaner()


if __name__ == "__main__":
    main()
