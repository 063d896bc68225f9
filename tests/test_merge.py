from __future__ import annotations

import unittest

from sheet_splitter.merge import join_rows, merge_sheets, stack_rows
from sheet_splitter.models import (
    JOINED_SENTINEL,
    ColumnRef,
    FieldDefinition,
    InputError,
    MergeConfig,
    SourceSheet,
)
from sheet_splitter.values import cell_text


def people_sheets() -> list[SourceSheet]:
    staff = SourceSheet(
        file_name="staff.xlsx",
        sheet_name="Staff",
        headers=["ID", "Name", "Start"],
        rows=[
            {"ID": "1", "Name": "Ann", "Start": 45292},
            {"ID": " 2 ", "Name": "Bob"},
            {"ID": "2", "Name": "Bob (duplicate)"},
            {"Name": "No key"},
        ],
    )
    pay = SourceSheet(
        file_name="pay.xlsx",
        sheet_name="Pay",
        headers=["Code", "Salary", "Name"],
        rows=[
            {"Code": "2", "Salary": "$1,000", "Name": "Robert"},
            {"Code": "3", "Salary": "500", "Name": "Cid"},
        ],
    )
    return [staff, pay]


FIELDS = [
    FieldDefinition("ID", "ID"),
    FieldDefinition("Name", "Name"),
    FieldDefinition("Salary", "Salary"),
    FieldDefinition("Start", "Start"),
]

MAPPING = {
    "ID": [ColumnRef("staff.xlsx", "Staff", "ID"), ColumnRef("pay.xlsx", "Pay", "Code")],
    "Name": [ColumnRef("pay.xlsx", "Pay", "Name"), ColumnRef("staff.xlsx", "Staff", "Name")],
    "Salary": [ColumnRef("pay.xlsx", "Pay", "Salary")],
    "Start": [ColumnRef("staff.xlsx", "Staff", "Start")],
}


def by_id(rows):
    return {cell_text(row["ID"]): row for row in rows}


class StackTests(unittest.TestCase):
    def test_every_row_of_every_sheet_is_kept_in_order(self):
        rows = stack_rows(people_sheets(), FIELDS, MAPPING)
        self.assertEqual(len(rows), 6)
        self.assertEqual(rows[0]["id"], "staff.xlsx-Staff-0")
        self.assertEqual(rows[4]["id"], "pay.xlsx-Pay-0")
        self.assertEqual([row["_sourceSheet"] for row in rows], ["Staff"] * 4 + ["Pay"] * 2)

    def test_values_are_normalized(self):
        rows = stack_rows(people_sheets(), FIELDS, MAPPING)
        self.assertEqual(rows[0]["Start"], "2024-01-01")
        self.assertEqual(rows[4]["Salary"], 1000)
        self.assertEqual(rows[1]["ID"], 2)
        self.assertEqual(rows[3]["ID"], "")

    def test_row_keys_follow_field_order_with_provenance_last(self):
        row = stack_rows(people_sheets(), FIELDS, MAPPING)[0]
        self.assertEqual(list(row), ["id", "ID", "Name", "Salary", "Start", "_sourceFile", "_sourceSheet"])

    def test_candidate_order_decides_within_a_sheet(self):
        sheet = SourceSheet("a.csv", "a", ["First", "Second"], [{"First": "x", "Second": "y"}, {"Second": "y"}])
        fields = [FieldDefinition("Value", "Value")]
        mapping = {"Value": [ColumnRef("a.csv", "a", "Second"), ColumnRef("a.csv", "a", "First")]}
        rows = stack_rows([sheet], fields, mapping)
        self.assertEqual([row["Value"] for row in rows], ["y", "y"])


class JoinTests(unittest.TestCase):
    def test_outer_join_keeps_every_key_in_first_seen_order(self):
        rows = join_rows(people_sheets(), FIELDS, MAPPING, "ID", "outer")
        self.assertEqual([cell_text(row["ID"]) for row in rows], ["1", "2", "3"])
        self.assertEqual(rows[0]["id"], "joined-1-0")

    def test_lower_index_sheet_wins_for_shared_fields(self):
        rows = by_id(join_rows(people_sheets(), FIELDS, MAPPING, "ID", "outer"))
        self.assertEqual(rows["2"]["Name"], "Bob")
        self.assertEqual(rows["2"]["Salary"], 1000)
        self.assertEqual(rows["3"]["Name"], "Cid")
        self.assertEqual(rows["3"]["Start"], "")

    def test_first_row_per_key_per_sheet_is_used(self):
        rows = by_id(join_rows(people_sheets(), FIELDS, MAPPING, "ID", "outer"))
        self.assertNotEqual(rows["2"]["Name"], "Bob (duplicate)")

    def test_provenance_is_the_lowest_index_sheet(self):
        rows = by_id(join_rows(people_sheets(), FIELDS, MAPPING, "ID", "outer"))
        self.assertEqual(rows["2"]["_sourceFile"], "staff.xlsx")
        self.assertEqual(rows["3"]["_sourceFile"], "pay.xlsx")
        self.assertEqual(rows["3"]["_sourceSheet"], "Pay")

    def test_inner_join_keeps_keys_present_in_every_sheet(self):
        rows = join_rows(people_sheets(), FIELDS, MAPPING, "ID", "inner")
        self.assertEqual([cell_text(row["ID"]) for row in rows], ["2"])

    def test_left_join_keeps_keys_of_the_first_sheet(self):
        rows = join_rows(people_sheets(), FIELDS, MAPPING, "ID", "left")
        self.assertEqual([cell_text(row["ID"]) for row in rows], ["1", "2"])

    def test_left_join_is_empty_when_first_sheet_has_no_key_column(self):
        mapping = dict(MAPPING, ID=[ColumnRef("pay.xlsx", "Pay", "Code")])
        self.assertEqual(join_rows(people_sheets(), FIELDS, mapping, "ID", "left"), [])

    def test_joined_rows_never_fall_back_to_the_sentinel_when_a_sheet_matched(self):
        rows = join_rows(people_sheets(), FIELDS, MAPPING, "ID", "outer")
        self.assertNotIn(JOINED_SENTINEL, [row["_sourceFile"] for row in rows])

    def test_join_without_key_candidates_is_empty(self):
        self.assertEqual(join_rows(people_sheets(), FIELDS, MAPPING, "", "outer"), [])
        self.assertEqual(join_rows(people_sheets(), FIELDS, {**MAPPING, "ID": []}, "ID", "outer"), [])


class JoinScenarioTests(unittest.TestCase):
    def setUp(self):
        self.sheets = [
            SourceSheet("a.csv", "a", ["Key", "X"], [{"Key": "1", "X": "a"}]),
            SourceSheet("b.csv", "b", ["Key", "Y"], [{"Key": "1", "Y": "b"}, {"Key": "2", "Y": "c"}]),
        ]
        self.fields = [FieldDefinition("Key", "Key"), FieldDefinition("X", "X"), FieldDefinition("Y", "Y")]
        self.mapping = {
            "Key": [ColumnRef("a.csv", "a", "Key"), ColumnRef("b.csv", "b", "Key")],
            "X": [ColumnRef("a.csv", "a", "X")],
            "Y": [ColumnRef("b.csv", "b", "Y")],
        }

    def join(self, join_type):
        return join_rows(self.sheets, self.fields, self.mapping, "Key", join_type)

    def test_outer(self):
        rows = self.join("outer")
        self.assertEqual([(row["X"], row["Y"]) for row in rows], [("a", "b"), ("", "c")])

    def test_inner_is_a_subset_of_outer(self):
        inner = {cell_text(row["Key"]) for row in self.join("inner")}
        outer = {cell_text(row["Key"]) for row in self.join("outer")}
        self.assertEqual(inner, {"1"})
        self.assertTrue(inner <= outer)

    def test_left_follows_the_first_sheet(self):
        rows = self.join("left")
        self.assertEqual([cell_text(row["Key"]) for row in rows], ["1"])
        self.assertEqual(rows[0]["Y"], "b")


class MergeSheetsTests(unittest.TestCase):
    def test_dispatches_on_method(self):
        stacked = merge_sheets(people_sheets(), FIELDS, MAPPING, MergeConfig(method="vertical"))
        joined = merge_sheets(people_sheets(), FIELDS, MAPPING, MergeConfig(method="join", join_key="ID"))
        self.assertEqual(len(stacked), 6)
        self.assertEqual(len(joined), 3)

    def test_unknown_method_or_join_type_raises(self):
        with self.assertRaises(InputError):
            merge_sheets(people_sheets(), FIELDS, MAPPING, MergeConfig(method="diagonal"))
        with self.assertRaises(InputError):
            merge_sheets(people_sheets(), FIELDS, MAPPING, MergeConfig(join_key="ID", join_type="cross"))

    def test_inputs_are_not_mutated(self):
        sheets = people_sheets()
        before = [dict(row) for row in sheets[0].rows]
        merge_sheets(sheets, FIELDS, MAPPING, MergeConfig(join_key="ID"))
        self.assertEqual(sheets[0].rows, before)


if __name__ == "__main__":
    unittest.main()
