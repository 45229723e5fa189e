#!/usr/bin/env python3
"""
Generates a sample template workbook plus a messy upload that violates it.

Run from the repo root:
    python sample-data/generate_xlsx.py

Outputs:
  sample-data/vendor_template.xlsx
    Sheet "Vendors"
      - Row 1 headers, some with a description after 3+ spaces
      - Row 2 requirement markers (Required / Optional / Conditional)
      - Column D "Vendor Type   I=Individual, B=Business" becomes a list column
      - Data validation: list on E (country codes), whole number on G, text length on H
      - Conditional formats: B/C required when D="I", F required when E="US"
    Sheet "Country Codes"
      - Lookup table feeding the list validation on E
  sample-data/vendor_upload.csv
    - Padded whitespace, case mismatches, currency/thousand separators,
      a lowercase country code, a dotted date, and missing conditional values
"""

import csv
from pathlib import Path

import openpyxl
from openpyxl.formatting.rule import FormulaRule
from openpyxl.styles import PatternFill
from openpyxl.worksheet.datavalidation import DataValidation

HERE = Path(__file__).parent
TEMPLATE = HERE / "vendor_template.xlsx"
UPLOAD = HERE / "vendor_upload.csv"
HIGHLIGHT = PatternFill("solid", fgColor="FFFF00")

wb = openpyxl.Workbook()

# ── Sheet 1: Vendors ─────────────────────────────────────────────────────────
ws = wb.active
ws.title = "Vendors"
ws.append(
    [
        "Vendor ID   Unique vendor code",
        "First Name",
        "Last Name",
        "Vendor Type   I=Individual, B=Business",
        "Country",
        "State",
        "Employee Count",
        "Notes   Free text",
        "Start Date   MM/DD/YYYY",
        "Owner Name",
    ]
)
ws.append(["Required", "Conditional", "Conditional", "Required", "Conditional", "Conditional", "Optional", "Optional", "Required", "Conditional"])

country_list = DataValidation(type="list", formula1="'Country Codes'!$A$2:$A$6", allow_blank=True)
country_list.add("E3:E500")
whole = DataValidation(type="whole", operator="greaterThanOrEqual", formula1="0", allow_blank=True)
whole.add("G3:G500")
notes_length = DataValidation(type="textLength", operator="lessThanOrEqual", formula1="40", allow_blank=True)
notes_length.add("H3:H500")
for dv in (country_list, whole, notes_length):
    ws.add_data_validation(dv)

ws.conditional_formatting.add("B3:C500", FormulaRule(formula=['$D3="I"'], fill=HIGHLIGHT))
ws.conditional_formatting.add("F3:F500", FormulaRule(formula=['$E3="US"'], fill=HIGHLIGHT))
ws.conditional_formatting.add("J3:J500", FormulaRule(formula=['$D3="B"'], fill=HIGHLIGHT))

# ── Sheet 2: Country Codes (lookup) ──────────────────────────────────────────
codes = wb.create_sheet("Country Codes")
codes.append(["Code", "Country"])
for row in (["US", "United States"], ["CA", "Canada"], ["GB", "United Kingdom"], ["DE", "Germany"], ["FR", "France"]):
    codes.append(row)

wb.save(TEMPLATE)
print(f"Created: {TEMPLATE}")

# ── Messy upload ─────────────────────────────────────────────────────────────
rows = [
    ["Vendor ID", "First Name", "Last Name", "Vendor Type", "Country", "State", "Employee Count", "Notes", "Start Date", "Owner Name"],
    ["V001", "Ada", "Lovelace", "I", "US", "NY", "12", "Preferred", "01/15/2024", ""],
    ["V002", "  grace ", "hopper", "i", "us", "", "1,200", "", "2024-02-01", ""],
    ["V003", "", "", "B", "ca", "", "$3,400", "", "15.03.2024", "Acme Ltd"],
    ["V004", "", "", "I", "Canadaa", "", "seven", "x" * 60, "not a date", ""],
    ["", "Alan", "Turing", "B", "GB", "", "40", "", "03/01/2024", ""],
]
with UPLOAD.open("w", newline="", encoding="utf-8") as handle:
    csv.writer(handle).writerows(rows)
print(f"Created: {UPLOAD}")
