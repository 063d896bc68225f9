"""Built-in demo data: two staff lists with different header vocabularies."""

from __future__ import annotations

from sheet_splitter.models import SourceSheet

_NORTH_HEADERS = ["EmpID", "Full_Name", "Job_Level", "Base_Salary", "Dept_Name", "Entity"]
_NORTH_ROWS = [
    ["N001", "陳大衛", "8", "85000", "業務一處", "TW_North"],
    ["N002", "林雅婷", "4", "42000", "業務二處", "TW_North"],
    ["N003", "張志豪", "10", "120000", "業務部管理", "TW_North"],
    ["N004", "李美惠", "3", "38000", "行政支援", "TW_North"],
    ["N005", "王建國", "6", "55000", "業務一處", "TW_North"],
]

_SOUTH_HEADERS = ["員工編號", "姓名", "職等", "本薪", "部門", "分公司"]
_SOUTH_ROWS = [
    ["S001", "黃怡君", "7", "72000", "軟體開發部", "TW_South"],
    ["S002", "劉冠宇", "5", "48000", "測試部", "TW_South"],
    ["S003", "吳淑芬", "12", "150000", "研發中心", "TW_South"],
    ["S004", "蔡宗翰", "9", "95000", "架構組", "TW_South"],
    ["S005", "楊佳穎", "4", "41000", "UI設計", "TW_South"],
]

SAMPLE_FILES = (
    ("2024_北部人員名單.xlsx", "業務部_Sales", _NORTH_HEADERS, _NORTH_ROWS),
    ("2024_南部薪資表.xlsx", "研發部_RD", _SOUTH_HEADERS, _SOUTH_ROWS),
)


def sample_sheets() -> list[SourceSheet]:
    """Fresh copies every call, so callers may edit them freely."""
    return [
        SourceSheet(
            file_name=file_name,
            sheet_name=sheet_name,
            headers=list(headers),
            rows=[dict(zip(headers, values)) for values in rows],
        )
        for file_name, sheet_name, headers, rows in SAMPLE_FILES
    ]
