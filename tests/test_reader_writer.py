from __future__ import annotations

import io
import tempfile
import unittest
import zipfile
from datetime import datetime
from pathlib import Path

from openpyxl import Workbook, load_workbook

from sheet_splitter.models import ReadError, SourceSheet
from sheet_splitter.reader import decode_text, detect_delimiter, read_blob, read_sheets, rows_to_sheet
from sheet_splitter.writer import (
    safe_member_name,
    safe_sheet_title,
    write_flat_table,
    write_workbook,
    write_workbook_archive,
)


def build_workbook(path: Path) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = "Staff"
    ws.append([None, None, None])
    ws.append(["Name", "Start", "Name"])
    ws.append(["Ann", datetime(2024, 1, 1), "A."])
    ws.append([None, None, None])
    ws.append(["Bob", None, 7])
    wb.create_sheet("Empty")
    other = wb.create_sheet("Other")
    other.append(["Code"])
    other.append(["X1"])
    wb.save(path)
    return path


class ReaderTests(unittest.TestCase):
    def test_xlsx_sheets_headers_and_rows(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = build_workbook(Path(tmpdir) / "people.xlsx")
            sheets = read_sheets([path])

        self.assertEqual([sheet.sheet_name for sheet in sheets], ["Staff", "Other"])
        staff = sheets[0]
        self.assertEqual(staff.file_name, "people.xlsx")
        self.assertEqual(staff.headers, ["Name", "Start", "Name_1"])
        self.assertEqual(staff.rows, [{"Name": "Ann", "Start": 45292, "Name_1": "A."}, {"Name": "Bob", "Name_1": 7}])

    def test_header_is_first_non_blank_row(self):
        sheet = rows_to_sheet("a.xlsx", "S", [(None, None), ("", None), ("Name", "Age"), ("Ann", 3)])
        self.assertEqual(sheet.headers, ["Name", "Age"])
        self.assertEqual(sheet.rows, [{"Name": "Ann", "Age": 3}])
        self.assertIsNone(rows_to_sheet("a.xlsx", "S", [(None,), ("",)]))

    def test_csv_uses_file_stem_as_sheet_name(self):
        sheets = read_blob("south.csv", "員工編號,姓名\nS001,黃怡君\n\nS002,\n".encode("utf-8"))
        self.assertEqual(len(sheets), 1)
        self.assertEqual(sheets[0].sheet_name, "south")
        self.assertEqual(sheets[0].headers, ["員工編號", "姓名"])
        self.assertEqual(sheets[0].rows, [{"員工編號": "S001", "姓名": "黃怡君"}, {"員工編號": "S002"}])

    def test_semicolon_and_tab_delimiters(self):
        sheets = read_blob("data.csv", b"name;amount\nAnn;10\nBob;20\n")
        self.assertEqual(sheets[0].headers, ["name", "amount"])
        self.assertEqual(sheets[0].rows[1], {"name": "Bob", "amount": "20"})
        sheets = read_blob("data.tsv", b"a\tb\n1\t2\n")
        self.assertEqual(sheets[0].rows, [{"a": "1", "b": "2"}])

    def test_short_rows_are_padded(self):
        sheets = read_blob("ragged.csv", b"a,b,c\n1\n1,2,3,4\n")
        self.assertEqual(sheets[0].headers, ["a", "b", "c", "Column"])
        self.assertEqual(sheets[0].rows, [{"a": "1"}, {"a": "1", "b": "2", "c": "3", "Column": "4"}])

    def test_bom_is_stripped(self):
        self.assertEqual(decode_text("\ufeffa,b".encode("utf-8")), "a,b")
        self.assertEqual(detect_delimiter("x\ty", ".tsv"), "\t")

    def test_unreadable_inputs_raise_read_error(self):
        with self.assertRaises(ReadError):
            read_blob("notes.pdf", b"%PDF")
        with self.assertRaises(ReadError):
            read_blob("empty.csv", b"")
        with self.assertRaises(ReadError):
            read_blob("blank.csv", b"\n\n")
        with self.assertRaises(ReadError):
            read_blob("broken.xlsx", b"not a zip at all")
        with self.assertRaises(ReadError):
            read_sheets(["/definitely/missing.xlsx"])


class NameTests(unittest.TestCase):
    def test_sheet_titles_are_legal_and_unique(self):
        taken: set[str] = set()
        self.assertEqual(safe_sheet_title("a/b:c", taken), "abc")
        self.assertEqual(safe_sheet_title("ABC", taken), "ABC_1")
        self.assertEqual(safe_sheet_title("[]", taken), "Sheet")
        long_title = safe_sheet_title("x" * 40, taken)
        self.assertEqual(len(long_title), 31)
        again = safe_sheet_title("x" * 40, taken)
        self.assertEqual(len(again), 31)
        self.assertTrue(again.endswith("_1"))

    def test_member_names(self):
        taken: set[str] = set()
        self.assertEqual(safe_member_name("業務/部", taken), "業務_部.xlsx")
        self.assertEqual(safe_member_name("業務/部", taken), "業務_部_1.xlsx")


class WriterTests(unittest.TestCase):
    def test_workbook_round_trip(self):
        sheets = [
            SourceSheet("a.xlsx", "Data", ["A", "B"], [{"A": 1, "B": "x"}, {"B": "y"}]),
            SourceSheet("b.xlsx", "data", ["C"], [{"C": "z"}]),
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "out.xlsx"
            write_workbook(sheets, path)
            wb = load_workbook(path)
            self.assertEqual(wb.sheetnames, ["Data", "data_1"])
            ws = wb["Data"]
            self.assertEqual(ws.freeze_panes, "A2")
            self.assertTrue(ws["A1"].font.bold)
            self.assertEqual([[cell.value for cell in row] for row in ws.iter_rows()], [["A", "B"], [1, "x"], [None, "y"]])

            reread = read_sheets([path])
            self.assertEqual(reread[0].rows, sheets[0].rows)

    def test_archive_holds_one_workbook_per_sheet(self):
        sheets = [
            SourceSheet("a.xlsx", "Same", ["A"], [{"A": 1}]),
            SourceSheet("b.xlsx", "Same", ["B"], [{"B": 2}]),
        ]
        buffer = io.BytesIO()
        members = write_workbook_archive(sheets, buffer)
        self.assertEqual(members, ["Same.xlsx", "Same_1.xlsx"])
        with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as archive:
            self.assertEqual(archive.namelist(), members)
            wb = load_workbook(io.BytesIO(archive.read("Same_1.xlsx")))
        self.assertEqual(wb.sheetnames, ["Sheet1"])
        self.assertEqual(wb["Sheet1"]["A2"].value, 2)

    def test_flat_table_uses_labels_and_key_order(self):
        rows = [{"id": "r0", "Name": "Ann", "_sourceFile": "a.xlsx"}]
        buffer = io.BytesIO()
        write_flat_table(rows, ["Name", "_sourceFile"], buffer, labels={"_sourceFile": "Source File"})
        wb = load_workbook(io.BytesIO(buffer.getvalue()))
        ws = wb.active
        self.assertEqual(ws.title, "Report")
        self.assertEqual([cell.value for cell in ws[1]], ["Name", "Source File"])
        self.assertEqual([cell.value for cell in ws[2]], ["Ann", "a.xlsx"])


if __name__ == "__main__":
    unittest.main()
