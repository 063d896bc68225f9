#!/usr/bin/env python3
"""
Generates the demo workbooks used by the "Try the sample data" button as
real files, so the CLI can be tried on them too.

Run from the repo root:
    python sample-data/generate_xlsx.py

Files written next to this script:
  2024_北部人員名單.xlsx
    - Sheet "業務部_Sales" with English headers (EmpID, Full_Name, ...)
  2024_南部薪資表.xlsx
    - Sheet "研發部_RD" with Chinese headers (員工編號, 姓名, ...)

The two sheets share no header, so auto-detection yields twelve fields;
map e.g. 員工編號 onto EmpID before joining.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sheet_splitter.samples import sample_sheets  # noqa: E402
from sheet_splitter.writer import write_workbook  # noqa: E402

OUTPUT_DIR = Path(__file__).parent

for sheet in sample_sheets():
    output = OUTPUT_DIR / sheet.file_name
    write_workbook([sheet], output)
    print(f"Created: {output}")
