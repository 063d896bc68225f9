from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from sheet_splitter import __version__ as TOOL_VERSION
from sheet_splitter.contracts import build_run_summary, stamp_payload
from sheet_splitter.filters import DEFAULT_OPERATOR, NUMERIC_OPERATORS, STRING_OPERATORS, detect_type, filter_rows, split_export_name
from sheet_splitter.merge import merge_sheets
from sheet_splitter.models import (
    JOIN_TYPES,
    MERGE_METHODS,
    SYSTEM_FIELD_LABELS,
    PlanError,
    ReadError,
    SheetSplitterError,
    SourceSheet,
)
from sheet_splitter.plan import MergePlan
from sheet_splitter.reader import read_sheets
from sheet_splitter.session import EXPORT_ALL_NAME, CleanerWorkspace
from sheet_splitter.transforms import CELL_OPERATIONS, COLUMN_OPERATIONS, TABLE_OPERATIONS
from sheet_splitter.writer import write_flat_table

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_EMPTY_RESULT = 3
EXIT_PLAN_INVALID = 5

ALL_OPERATIONS = sorted({*CELL_OPERATIONS, *TABLE_OPERATIONS, *COLUMN_OPERATIONS})
ALL_OPERATORS = sorted({*NUMERIC_OPERATORS, *STRING_OPERATORS})


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SheetSplitterArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def timestamp_token() -> str:
    override = os.environ.get("SHEET_SPLITTER_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "sheet-splitter-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def safe_output_path(explicit: str | None, default_path: Path) -> Path:
    path = Path(explicit) if explicit else default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_error(exc: SheetSplitterError) -> int:
    if isinstance(exc, PlanError):
        return EXIT_PLAN_INVALID
    if isinstance(exc, ReadError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════════
# INPUTS
# ══════════════════════════════════════════════════════════════════════════════

def require_inputs(raw_paths: Sequence[str]) -> list[Path]:
    paths = [Path(raw) for raw in raw_paths]
    for path in paths:
        if not path.exists():
            raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
    return paths


def load_inputs(paths: Sequence[Path]) -> list[SourceSheet]:
    try:
        return read_sheets(paths)
    except ReadError as exc:
        raise CliError(str(exc), EXIT_PARSE_FAILED) from exc


def resolve_plan(args: argparse.Namespace, sheets: list[SourceSheet]) -> tuple[MergePlan, list[SourceSheet]]:
    """Plan file (or auto-detected plan) with command-line overrides applied."""
    if args.plan:
        plan = MergePlan.load(args.plan)
    else:
        plan = MergePlan.from_sheets(sheets)
    changes = {}
    if args.method:
        changes["method"] = args.method
    if args.join_key:
        changes["join_key"] = args.join_key
    if args.join_type:
        changes["join_type"] = args.join_type
    for name, value in changes.items():
        setattr(plan.merge, name, value)
    plan.validate()
    return plan, plan.apply_sheet_order(sheets)


def export_columns(plan: MergePlan, include_source: bool) -> tuple[list[str], dict[str, str]]:
    keys = [item.key for item in plan.fields]
    labels = {item.key: item.label for item in plan.fields}
    if include_source:
        keys.extend(SYSTEM_FIELD_LABELS)
        labels.update(SYSTEM_FIELD_LABELS)
    return keys, labels


def parse_params(raw: Sequence[str] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in raw or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise CliError(f"--param expects key=value, got {item!r}", EXIT_COMMAND_ERROR)
        params[name.strip()] = value
    return params


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_inspect_text(sheets: Sequence[SourceSheet]) -> str:
    lines = ["sheet-splitter inspect", f"Sheets: {len(sheets)}"]
    for sheet in sheets:
        lines.append(f"- {sheet.file_name} / {sheet.sheet_name}: {len(sheet.rows)} row(s)")
        lines.append(f"  Headers: {', '.join(sheet.headers)}")
    return "\n".join(lines) + "\n"


def render_merge_text(plan: MergePlan, sheets: Sequence[SourceSheet], row_count: int, output_path: Path) -> str:
    lines = [
        "sheet-splitter merge",
        f"Sheets: {len(sheets)}",
        f"Method: {plan.merge.method}",
    ]
    if plan.merge.method == "join":
        lines.append(f"Join: {plan.merge.join_type} on {plan.merge.join_key}")
    lines.extend(
        [
            f"Fields: {len(plan.fields)}",
            f"Rows: {row_count}",
            f"Output: {output_path}",
        ]
    )
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_inspect(args: argparse.Namespace) -> int:
    paths = require_inputs(args.inputs)
    sheets = load_inputs(paths)
    payload = stamp_payload(
        "sheet_splitter.inspect",
        {
            "sheets": [
                {
                    "file": sheet.file_name,
                    "sheet": sheet.sheet_name,
                    "headers": list(sheet.headers),
                    "rows": len(sheet.rows),
                }
                for sheet in sheets
            ]
        },
        build_run_summary(
            command="inspect",
            input_paths=paths,
            metrics={"sheets": len(sheets), "rows": sum(len(sheet.rows) for sheet in sheets)},
        ),
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(render_inspect_text(sheets).rstrip(), quiet=args.quiet)
    return EXIT_SUCCESS


def run_plan(args: argparse.Namespace) -> int:
    paths = require_inputs(args.inputs)
    sheets = load_inputs(paths)
    plan = MergePlan.from_sheets(sheets, method=args.method or "join")
    output_path = safe_output_path(args.output, determine_output_dir(args, paths[0]) / "plan.json")
    plan.save(output_path)
    payload = stamp_payload(
        "sheet_splitter.plan",
        {"plan": plan.to_dict()},
        build_run_summary(
            command="plan",
            input_paths=paths,
            output_path=output_path,
            metrics={"fields": len(plan.fields), "sheets": len(sheets)},
        ),
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(f"Detected {len(plan.fields)} field(s) across {len(sheets)} sheet(s).", quiet=args.quiet)
        emit_human(f"Plan written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_merge(args: argparse.Namespace) -> int:
    paths = require_inputs(args.inputs)
    sheets = load_inputs(paths)
    plan, ordered = resolve_plan(args, sheets)
    rows = merge_sheets(ordered, plan.fields, plan.mapping, plan.merge)
    if not rows:
        eprint("The merge produced no rows; check the join key mapping.")
        return EXIT_EMPTY_RESULT

    output_path = safe_output_path(args.output, determine_output_dir(args, paths[0]) / f"{EXPORT_ALL_NAME}.xlsx")
    keys, labels = export_columns(plan, not args.no_source_columns)
    write_flat_table(rows, keys, output_path, labels=labels)

    payload = stamp_payload(
        "sheet_splitter.merge_summary",
        {"merge": plan.merge.to_dict(), "fields": [item.key for item in plan.fields]},
        build_run_summary(
            command="merge",
            input_paths=paths,
            output_path=output_path,
            metrics={"sheets": len(ordered), "rows_in": sum(len(sheet.rows) for sheet in ordered), "rows_out": len(rows)},
        ),
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(render_merge_text(plan, ordered, len(rows), output_path).rstrip(), quiet=args.quiet)
    return EXIT_SUCCESS


def run_split(args: argparse.Namespace) -> int:
    paths = require_inputs(args.inputs)
    sheets = load_inputs(paths)
    plan, ordered = resolve_plan(args, sheets)
    keys, labels = export_columns(plan, not args.no_source_columns)
    if args.field not in keys and args.field not in SYSTEM_FIELD_LABELS:
        raise CliError(f"Unknown field '{args.field}'. Available: {', '.join(keys)}", EXIT_COMMAND_ERROR)

    rows = merge_sheets(ordered, plan.fields, plan.mapping, plan.merge)
    field_type = detect_type(rows, args.field)
    operator = args.op or DEFAULT_OPERATOR[field_type]
    matched = filter_rows(rows, args.field, operator, args.value, field_type)
    if not matched:
        eprint(f"No rows match {args.field} {operator} {args.value!r} ({field_type} comparison).")
        return EXIT_EMPTY_RESULT

    name = split_export_name(args.field, operator, args.value)
    output_path = safe_output_path(args.output, determine_output_dir(args, paths[0]) / f"{name}.xlsx")
    write_flat_table(matched, keys, output_path, labels=labels)

    payload = stamp_payload(
        "sheet_splitter.split_summary",
        {
            "split": {"field": args.field, "operator": operator, "value": args.value, "field_type": field_type},
            "merge": plan.merge.to_dict(),
        },
        build_run_summary(
            command="split",
            input_paths=paths,
            output_path=output_path,
            metrics={"rows_merged": len(rows), "rows_matched": len(matched)},
        ),
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(f"Matched {len(matched)} of {len(rows)} row(s) ({field_type} comparison).", quiet=args.quiet)
        emit_human(f"Split written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_clean(args: argparse.Namespace) -> int:
    (path,) = require_inputs([args.input])
    params = parse_params(args.param)
    workspace = CleanerWorkspace()
    if not workspace.open_file(path):
        for notice in workspace.drain():
            eprint(notice.message)
        return EXIT_PARSE_FAILED
    workspace.drain()

    available = [sheet.sheet_name for sheet in workspace.sheets]
    targets = args.sheet or available
    unknown = [name for name in targets if name not in available]
    if unknown:
        raise CliError(f"Sheet(s) not found: {unknown}. Available: {available}", EXIT_COMMAND_ERROR)

    changed_sheets = 0
    for name in targets:
        workspace.set_active_sheet(name)
        headers = workspace.active_sheet.headers
        for column in args.columns or []:
            if column not in headers:
                raise CliError(f"Column '{column}' not found in sheet '{name}'. Available: {headers}", EXIT_COMMAND_ERROR)
            workspace.toggle_column(column)
        if workspace.run_operation(args.op, **params):
            changed_sheets += 1
        for notice in workspace.drain():
            if notice.is_error:
                eprint(f"{name}: {notice.message}")
                return EXIT_COMMAND_ERROR
            emit_human(f"{name}: {notice.message}", quiet=args.quiet or args.json)

    suffix = ".zip" if args.archive else ".xlsx"
    output_path = safe_output_path(args.output, determine_output_dir(args, path) / f"{workspace.export_name}{suffix}")
    workspace.export(output_path, mode="multiple" if args.archive else "single")
    workspace.drain()

    payload = stamp_payload(
        "sheet_splitter.clean_summary",
        {"operation": args.op, "params": params, "sheets": targets, "columns": list(args.columns or [])},
        build_run_summary(
            command="clean",
            input_paths=[path],
            status="ok" if changed_sheets else "noop",
            output_path=output_path,
            metrics={"sheets_targeted": len(targets), "sheets_changed": changed_sheets},
        ),
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(f"Cleaned workbook: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS if changed_sheets else EXIT_EMPTY_RESULT


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


# ══════════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════════

def add_common_flags(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    sub.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    sub.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")


def add_output_flags(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    sub.add_argument("--output", help="Explicit output path")


def add_merge_flags(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--plan", help="Merge plan JSON (see `sheet-splitter plan`)")
    sub.add_argument("--method", choices=MERGE_METHODS, help="Override the merge method")
    sub.add_argument("--join-key", dest="join_key", help="Override the join key field")
    sub.add_argument("--join-type", dest="join_type", choices=JOIN_TYPES, help="Override the join type")
    sub.add_argument("--no-source-columns", dest="no_source_columns", action="store_true", help="Leave out the Source File / Source Sheet columns")


def build_parser() -> argparse.ArgumentParser:
    parser = SheetSplitterArgumentParser(prog="sheet-splitter", description="Merge, clean and split spreadsheets.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect = subparsers.add_parser("inspect", help="List sheets, headers and row counts.")
    inspect.add_argument("inputs", nargs="+", help="Input file paths")
    add_common_flags(inspect)

    plan = subparsers.add_parser("plan", help="Write an auto-detected merge plan.")
    plan.add_argument("inputs", nargs="+", help="Input file paths")
    plan.add_argument("--method", choices=MERGE_METHODS, help="Merge method to record in the plan")
    add_output_flags(plan)
    add_common_flags(plan)

    merge = subparsers.add_parser("merge", help="Merge sheets into one workbook.")
    merge.add_argument("inputs", nargs="+", help="Input file paths")
    add_merge_flags(merge)
    add_output_flags(merge)
    add_common_flags(merge)

    split = subparsers.add_parser("split", help="Merge, then export the rows matching one condition.")
    split.add_argument("inputs", nargs="+", help="Input file paths")
    split.add_argument("--field", required=True, help="Field to filter on")
    split.add_argument("--op", choices=ALL_OPERATORS, help="Comparison operator (default depends on the field type)")
    split.add_argument("--value", required=True, help="Value to compare against")
    add_merge_flags(split)
    add_output_flags(split)
    add_common_flags(split)

    clean = subparsers.add_parser("clean", help="Apply one cleaning operation to a workbook's sheets.")
    clean.add_argument("input", help="Input file path")
    clean.add_argument("--op", required=True, choices=ALL_OPERATIONS, help="Operation name")
    clean.add_argument("--column", dest="columns", action="append", help="Target column (repeatable; default: all columns)")
    clean.add_argument("--param", action="append", help="Operation parameter as key=value (repeatable)")
    clean.add_argument("--sheet", action="append", help="Sheet to clean (repeatable; default: all sheets)")
    clean.add_argument("--archive", action="store_true", help="Export a zip with one workbook per sheet")
    add_output_flags(clean)
    add_common_flags(clean)

    subparsers.add_parser("version", help="Print version")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "inspect":
            return run_inspect(args)
        if args.command == "plan":
            return run_plan(args)
        if args.command == "merge":
            return run_merge(args)
        if args.command == "split":
            return run_split(args)
        if args.command == "clean":
            return run_clean(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except SheetSplitterError as exc:
        eprint(str(exc))
        return classify_error(exc)


if __name__ == "__main__":
    raise SystemExit(main())
