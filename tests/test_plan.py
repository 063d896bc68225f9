from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from sheet_splitter.models import ColumnRef, PlanError, SourceSheet
from sheet_splitter.plan import MergePlan
from sheet_splitter.samples import sample_sheets


def valid_payload() -> dict:
    return {
        "sheet_order": [["north.xlsx", "Sales"], ["south.xlsx", "RD"]],
        "fields": [{"key": "EmpID", "label": "Employee"}, "Name"],
        "mapping": {
            "EmpID": ["north.xlsx::Sales::EmpID", "south.xlsx::RD::員工編號"],
            "Name": ["Name"],
        },
        "merge": {"method": "join", "join_key": "EmpID", "join_type": "left"},
    }


class MergePlanTests(unittest.TestCase):
    def test_from_sheets_matches_auto_detection(self):
        plan = MergePlan.from_sheets(sample_sheets())
        self.assertEqual(len(plan.fields), 12)
        self.assertEqual(plan.merge.method, "join")
        self.assertEqual(plan.merge.join_key, "EmpID")
        self.assertEqual(plan.sheet_order[0], ("2024_北部人員名單.xlsx", "業務部_Sales"))

    def test_from_dict_parses_refs_and_defaults(self):
        plan = MergePlan.from_dict(valid_payload())
        self.assertEqual([item.key for item in plan.fields], ["EmpID", "Name"])
        self.assertEqual(plan.fields[0].label, "Employee")
        self.assertEqual(plan.fields[1].label, "Name")
        self.assertEqual(plan.mapping["EmpID"][1], ColumnRef("south.xlsx", "RD", "員工編號"))
        self.assertTrue(plan.mapping["Name"][0].is_bare)
        self.assertEqual(plan.merge.join_type, "left")
        self.assertTrue(plan.merge.remove_duplicates)

    def test_candidate_order_is_kept_as_written(self):
        payload = valid_payload()
        payload["mapping"]["EmpID"].reverse()
        plan = MergePlan.from_dict(payload)
        self.assertEqual(plan.mapping["EmpID"][0].sheet_name, "RD")

    def test_fields_without_mapping_get_an_empty_list(self):
        payload = valid_payload()
        del payload["mapping"]["Name"]
        plan = MergePlan.from_dict(payload)
        self.assertEqual(plan.mapping["Name"], [])

    def test_save_and_load_round_trip(self):
        plan = MergePlan.from_dict(valid_payload())
        with tempfile.TemporaryDirectory() as tmpdir:
            path = plan.save(Path(tmpdir) / "plans" / "plan.json")
            loaded = MergePlan.load(path)
            raw = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(loaded.to_dict(), plan.to_dict())
        self.assertIn("south.xlsx::RD::員工編號", raw["mapping"]["EmpID"])

    def test_invalid_plans_raise_plan_error(self):
        broken = []
        payload = valid_payload()
        payload["fields"].append({"key": "_secret"})
        broken.append(payload)
        payload = valid_payload()
        payload["fields"].append("Name")
        broken.append(payload)
        payload = valid_payload()
        payload["fields"][1] = {"key": "Name", "type": "date"}
        broken.append(payload)
        payload = valid_payload()
        payload["mapping"]["Ghost"] = []
        broken.append(payload)
        payload = valid_payload()
        payload["merge"]["method"] = "zip"
        broken.append(payload)
        payload = valid_payload()
        payload["merge"]["join_type"] = "cross"
        broken.append(payload)
        payload = valid_payload()
        payload["merge"]["join_key"] = "Ghost"
        broken.append(payload)
        payload = valid_payload()
        payload["sheet_order"] = [["only-one"]]
        broken.append(payload)
        broken.append(["not", "an", "object"])

        for payload in broken:
            with self.assertRaises(PlanError, msg=repr(payload)):
                MergePlan.from_dict(payload)

    def test_vertical_plan_needs_no_join_key(self):
        payload = valid_payload()
        payload["merge"] = {"method": "vertical"}
        plan = MergePlan.from_dict(payload)
        self.assertEqual(plan.merge.join_key, "")

    def test_load_errors(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(PlanError):
                MergePlan.load(Path(tmpdir) / "missing.json")
            bad = Path(tmpdir) / "bad.json"
            bad.write_text("{not json", encoding="utf-8")
            with self.assertRaises(PlanError):
                MergePlan.load(bad)

    def test_apply_sheet_order(self):
        plan = MergePlan.from_dict(valid_payload())
        north = SourceSheet("north.xlsx", "Sales", [], [])
        south = SourceSheet("south.xlsx", "RD", [], [])
        extra = SourceSheet("extra.csv", "extra", [], [])
        ordered = plan.apply_sheet_order([extra, south, north])
        self.assertEqual([sheet.sheet_name for sheet in ordered], ["Sales", "RD", "extra"])
        with self.assertLogs("sheet_splitter.plan", level="WARNING"):
            ordered = plan.apply_sheet_order([south])
        self.assertEqual(ordered, [south])


if __name__ == "__main__":
    unittest.main()
