from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
import zipfile
from pathlib import Path

from openpyxl import load_workbook

from sheet_splitter.samples import sample_sheets
from sheet_splitter.writer import write_workbook


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "sheet_splitter.cli"]
FIXED_STAMP = "20260301T010203Z"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["SHEET_SPLITTER_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), merged_env.get("PYTHONPATH")]))
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_samples(folder: Path) -> list[str]:
    paths = []
    for sheet in sample_sheets():
        path = folder / sheet.file_name
        write_workbook([sheet], path)
        paths.append(str(path))
    return paths


def write_plan(folder: Path, **merge) -> Path:
    north, south = sample_sheets()
    plan = {
        "sheet_order": [[north.file_name, north.sheet_name], [south.file_name, south.sheet_name]],
        "fields": ["EmpID", "Name", "Entity"],
        "mapping": {
            "EmpID": [str(north.ref("EmpID")), str(south.ref("員工編號"))],
            "Name": [str(north.ref("Full_Name")), str(south.ref("姓名"))],
            "Entity": [str(north.ref("Entity")), str(south.ref("分公司"))],
        },
        "merge": {"method": "join", "join_key": "EmpID", "join_type": "outer", **merge},
    }
    path = folder / "plan.json"
    path.write_text(json.dumps(plan, ensure_ascii=False), encoding="utf-8")
    return path


class SheetSplitterCliTests(unittest.TestCase):
    def test_inspect_json_lists_every_sheet(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_samples(Path(tmpdir))
            proc = run_cli("inspect", *inputs, "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "sheet_splitter.inspect")
        self.assertEqual([item["rows"] for item in payload["sheets"]], [5, 5])
        self.assertEqual(payload["sheets"][1]["headers"][0], "員工編號")
        self.assertEqual(proc.stderr.strip(), "")

    def test_plan_writes_default_plan_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_samples(Path(tmpdir))
            out = Path(tmpdir) / "out"
            proc = run_cli("plan", *inputs, "--out", str(out))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("Plan written:", proc.stderr)
            plan = json.loads((out / "plan.json").read_text(encoding="utf-8"))
        self.assertEqual(len(plan["fields"]), 12)
        self.assertEqual(plan["merge"]["join_key"], "EmpID")

    def test_merge_with_plan_joins_both_sheets(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            plan = write_plan(folder)
            proc = run_cli("merge", *inputs, "--plan", str(plan), "--out", str(folder / "out"), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            output = folder / "out" / "Merged_Master_Data.xlsx"
            ws = load_workbook(output).active
            header = [cell.value for cell in ws[1]]
            max_row = ws.max_row
        self.assertEqual(payload["run_summary"]["metrics"]["rows_out"], 10)
        self.assertEqual(header, ["EmpID", "Name", "Entity", "Source File", "Source Sheet"])
        self.assertEqual(max_row, 11)

    def test_merge_overrides_and_no_source_columns(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            plan = write_plan(folder)
            proc = run_cli(
                "merge", *inputs, "--plan", str(plan), "--join-type", "inner",
                "--no-source-columns", "--output", str(folder / "inner.xlsx"),
            )
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertIn("no rows", proc.stderr)

            proc = run_cli("merge", *inputs, "--method", "vertical", "--no-source-columns", "--output", str(folder / "stack.xlsx"))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("Rows: 10", proc.stderr)
            header = [cell.value for cell in load_workbook(folder / "stack.xlsx").active[1]]
        self.assertNotIn("Source File", header)

    def test_merge_refuses_to_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            target = folder / "exists.xlsx"
            target.write_bytes(b"keep me")
            proc = run_cli("merge", *inputs, "--output", str(target))
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Refusing to overwrite", proc.stderr)
            self.assertEqual(target.read_bytes(), b"keep me")

    def test_invalid_plan_returns_exit_5(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            plan = write_plan(folder, join_key="Ghost")
            proc = run_cli("merge", *inputs, "--plan", str(plan), "--out", str(folder / "out"))
        self.assertEqual(proc.returncode, 5)
        self.assertIn("Ghost", proc.stderr)

    def test_split_writes_matching_rows(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            plan = write_plan(folder)
            proc = run_cli(
                "split", *inputs, "--plan", str(plan), "--field", "Entity", "--value", "north",
                "--out", str(folder / "out"), "--json",
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            output = folder / "out" / "Split_Entity_Has_north.xlsx"
            self.assertTrue(output.exists())
            max_row = load_workbook(output).active.max_row
        self.assertEqual(payload["split"]["operator"], "contains")
        self.assertEqual(payload["run_summary"]["metrics"]["rows_matched"], 5)
        self.assertEqual(max_row, 6)

    def test_split_numeric_and_empty_results(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            proc = run_cli(
                "split", *inputs, "--method", "vertical", "--field", "Base_Salary", "--op", "gte",
                "--value", "80000", "--out", str(folder / "out"),
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("Matched 2 of 10 row(s) (number comparison)", proc.stderr)

            proc = run_cli("split", *inputs, "--method", "vertical", "--field", "Entity", "--value", "Mars")
            self.assertEqual(proc.returncode, 3, proc.stderr)

            proc = run_cli("split", *inputs, "--field", "Nope", "--value", "x")
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Unknown field", proc.stderr)

    def test_clean_writes_cleaned_workbook(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            source = folder / "staff.xlsx"
            write_workbook(sample_sheets(), source)
            proc = run_cli("clean", str(source), "--op", "lower", "--column", "Entity", "--sheet", "業務部_Sales", "--out", str(folder / "out"))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("Cleaned workbook:", proc.stderr)
            wb = load_workbook(folder / "out" / "Cleaned_staff.xlsx")
            self.assertEqual(wb.sheetnames, ["業務部_Sales", "研發部_RD"])
            self.assertEqual(wb["業務部_Sales"]["F2"].value, "tw_north")

    def test_clean_archive_and_params(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            source = folder / "staff.xlsx"
            write_workbook(sample_sheets(), source)
            proc = run_cli(
                "clean", str(source), "--op", "prepend", "--param", "text=ID-",
                "--column", "EmpID", "--sheet", "業務部_Sales", "--archive", "--out", str(folder / "out"), "--json",
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(payload["params"], {"text": "ID-"})
            with zipfile.ZipFile(folder / "out" / "Cleaned_staff.zip") as archive:
                self.assertEqual(archive.namelist(), ["業務部_Sales.xlsx", "研發部_RD.xlsx"])

    def test_clean_without_changes_returns_exit_3(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            source = folder / "staff.xlsx"
            write_workbook(sample_sheets(), source)
            proc = run_cli("clean", str(source), "--op", "trim", "--out", str(folder / "out"))
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertTrue((folder / "out" / "Cleaned_staff.xlsx").exists())

    def test_clean_reports_bad_operation_input(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            source = folder / "staff.xlsx"
            write_workbook(sample_sheets(), source)
            proc = run_cli("clean", str(source), "--op", "divide", "--param", "operand=0", "--out", str(folder / "out"))
            self.assertEqual(proc.returncode, 1)
            self.assertIn("divisor", proc.stderr)
            proc = run_cli("clean", str(source), "--op", "trim", "--column", "Ghost")
            self.assertEqual(proc.returncode, 1)

    def test_missing_and_unreadable_inputs(self):
        proc = run_cli("inspect", "does-not-exist.xlsx")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)
        with tempfile.TemporaryDirectory() as tmpdir:
            corrupt = Path(tmpdir) / "corrupt.xlsx"
            corrupt.write_bytes(b"this is not a workbook")
            proc = run_cli("inspect", str(corrupt))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("could not open workbook", proc.stderr)

    def test_bad_arguments_return_exit_1(self):
        proc = run_cli("merge")
        self.assertEqual(proc.returncode, 1)
        proc = run_cli("clean", "x.xlsx", "--op", "explode")
        self.assertEqual(proc.returncode, 1)

    def test_default_output_directory_uses_stamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            folder = Path(tmpdir)
            inputs = write_samples(folder)
            proc = subprocess.run(
                [*CLI, "plan", *inputs],
                cwd=folder,
                capture_output=True,
                text=True,
                env={
                    **os.environ,
                    "SHEET_SPLITTER_OUTPUT_STAMP": FIXED_STAMP,
                    "PYTHONPATH": os.pathsep.join(filter(None, [str(ROOT), os.environ.get("PYTHONPATH")])),
                },
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            stem = Path(inputs[0]).stem
            self.assertTrue((folder / "sheet-splitter-output" / f"{stem}-{FIXED_STAMP}" / "plan.json").exists())

    def test_version_prints_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")


if __name__ == "__main__":
    unittest.main()
