from __future__ import annotations

import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from builders import write_vendor_template

from template_maestro.extractor import (
    detect_complex_rules,
    detect_date_format,
    extract_codes,
    extract_template,
    extract_template_file,
    find_main_sheet,
    max_length_from,
    parse_columns,
    parse_lookup_table,
    parse_requirement,
    split_header,
    sqref_columns,
    summarize_template,
)
from template_maestro.models import (
    ConditionalFormatSpec,
    ConditionOperator,
    DataValidationSpec,
    Requirement,
    SheetData,
    TemplateError,
    WorkbookData,
    template_from_json,
    template_to_json,
)
from template_maestro.workbook import cell_text, read_workbook


def sheet(name, grid, validations=None, formats=None):
    return SheetData(name=name, grid=grid, data_validations=validations or [], conditional_formats=formats or [])


class HeaderParsingTests(unittest.TestCase):
    def test_split_header(self):
        self.assertEqual(split_header("Vendor ID   Unique vendor code"), ("Vendor ID", "Unique vendor code"))
        self.assertEqual(split_header("Notes\tFree text"), ("Notes", "Free text"))
        self.assertEqual(split_header("First Name"), ("First Name", ""))
        self.assertEqual(split_header("Status   A=Active, I=Inactive"), ("Status   A=Active, I=Inactive", ""))

    def test_extract_codes_is_deduplicated(self):
        self.assertEqual(extract_codes("Status A=Active, I=Inactive, A=Again, T = Terminated"), ["A", "I", "T"])

    def test_detect_date_format(self):
        self.assertEqual(detect_date_format("Hire Date MM/DD/YYYY"), (True, "MM/DD/YYYY"))
        self.assertEqual(detect_date_format("Birth date"), (True, None))
        self.assertEqual(detect_date_format("State"), (False, None))

    def test_parse_requirement(self):
        self.assertEqual(parse_requirement("Required"), (Requirement.REQUIRED, ""))
        self.assertEqual(parse_requirement("Mandatory field"), (Requirement.REQUIRED, "Mandatory field"))
        self.assertEqual(parse_requirement("Conditional"), (Requirement.CONDITIONAL, ""))
        self.assertEqual(parse_requirement("One of first/last or owner"), (Requirement.CONDITIONAL, "One of first/last or owner"))
        self.assertEqual(parse_requirement(""), (Requirement.OPTIONAL, ""))

    def test_parse_requirement_precedence(self):
        self.assertEqual(
            parse_requirement("Required - either SSN or EIN"),
            (Requirement.REQUIRED, "Required - either SSN or EIN"),
        )
        self.assertEqual(parse_requirement("Optional (one of)"), (Requirement.OPTIONAL, "Optional (one of)"))
        self.assertEqual(
            parse_requirement("Required if conditional on US"),
            (Requirement.CONDITIONAL, "Required if conditional on US"),
        )

    def test_parse_columns_types_and_letters(self):
        columns = parse_columns(
            sheet(
                "Main",
                [
                    ["EmpID", None, "Status   A=Active, I=Inactive", "Hire Date   MM/DD/YYYY"],
                    ["Required", "", "Required", "Optional"],
                ],
            )
        )
        self.assertEqual([c.column_letter for c in columns], ["A", "C", "D"])
        self.assertEqual(columns[1].type, "list")
        self.assertEqual(columns[1].allowed_values, ["A", "I"])
        self.assertEqual(columns[2].field_name, "Hire Date")
        self.assertEqual(columns[2].type, "date")
        self.assertEqual(columns[2].date_format, "MM/DD/YYYY")

    def test_parse_columns_without_headers_raises(self):
        with self.assertRaises(TemplateError):
            parse_columns(sheet("Main", [[None, ""]]))


class SheetTests(unittest.TestCase):
    def test_find_main_sheet_skips_helper_sheets(self):
        self.assertEqual(find_main_sheet(["Instructions", "Lookup Codes", "Employees"]), "Employees")
        self.assertEqual(find_main_sheet(["Help", "Codes"]), "Help")
        with self.assertRaises(TemplateError):
            find_main_sheet([])

    def test_parse_lookup_table(self):
        table = parse_lookup_table(sheet("Codes", [["Code", "Name"], ["us", "United States"], ["CA", None], [None, None]]))
        self.assertEqual(table.headers, ["Code", "Name"])
        self.assertEqual(len(table.rows), 2)
        self.assertEqual(table.key_to_value, {"US": "United States", "CA": "CA"})

    def test_single_column_lookup_has_no_key_map(self):
        table = parse_lookup_table(sheet("List", [["Code"], ["A"], ["B"]]))
        self.assertEqual(table.key_to_value, {})
        self.assertEqual(table.column_values(0), ["A", "B"])


class OverlayTests(unittest.TestCase):
    def test_sqref_columns(self):
        self.assertEqual(sqref_columns("A2:C50 E2"), ["A", "B", "C", "E"])

    def test_max_length_from_operators(self):
        self.assertEqual(max_length_from(DataValidationSpec("A1", "textLength", "1", "40", operator="between")), 40)
        self.assertEqual(max_length_from(DataValidationSpec("A1", "textLength", "40", operator="lessThanOrEqual")), 40)
        self.assertEqual(max_length_from(DataValidationSpec("A1", "textLength", "40", operator="lessThan")), 39)
        self.assertIsNone(max_length_from(DataValidationSpec("A1", "textLength", "40", operator="greaterThan")))

    def test_inline_list_validation_overrides_type(self):
        workbook = WorkbookData(
            [
                sheet(
                    "Main",
                    [["EmpID", "Status"], ["Required", "Required"]],
                    validations=[DataValidationSpec("B3:B100", "list", '"A,I,T"')],
                )
            ]
        )
        template = extract_template(workbook)
        status = template.column("Status")
        self.assertEqual(status.type, "list")
        self.assertEqual(status.allowed_values, ["A", "I", "T"])
        self.assertEqual(status.validation.kind, "list")
        self.assertEqual(template.data_validations[0]["allowedValues"], ["A", "I", "T"])

    def test_unknown_validation_kind_becomes_text_with_warning(self):
        workbook = WorkbookData(
            [sheet("Main", [["Code"], ["Required"]], validations=[DataValidationSpec("A2:A9", "sparkle")])]
        )
        with self.assertLogs("template_maestro.extractor", level="WARNING"):
            template = extract_template(workbook)
        self.assertEqual(template.columns[0].type, "text")

    def test_conditional_format_attaches_condition_to_conditional_columns_only(self):
        workbook = WorkbookData(
            [
                sheet(
                    "Main",
                    [["CountryCode", "StateCode", "Notes"], ["Optional", "Conditional", "Optional"]],
                    formats=[ConditionalFormatSpec("B3:C100", ['$A3="US"'])],
                )
            ]
        )
        template = extract_template(workbook)
        state = template.column("StateCode")
        self.assertEqual(len(state.conditions), 1)
        self.assertEqual(state.conditions[0].field, "CountryCode")
        self.assertIs(state.conditions[0].operator, ConditionOperator.EQUALS)
        self.assertEqual(state.conditions[0].value, "US")
        self.assertIsNone(template.column("Notes").conditional_requirement)
        self.assertEqual(template.conditional_rules[0]["interpretation"]["operator"], "AND")

    def test_self_reference_and_outside_columns_are_ignored(self):
        workbook = WorkbookData(
            [
                sheet(
                    "Main",
                    [["Owner Name"], ["Conditional"]],
                    formats=[ConditionalFormatSpec("A3:A100", ['AND(LEN(TRIM($A3))=0,$Z3<>"")'])],
                )
            ]
        )
        template = extract_template(workbook)
        self.assertIsNone(template.columns[0].conditional_requirement)


class ComplexRuleTests(unittest.TestCase):
    def test_either_or_detection(self):
        columns = parse_columns(
            sheet(
                "Main",
                [["FirstName", "LastName", "OwnerName"], ["Conditional", "Conditional", "Conditional"]],
            )
        )
        rules = detect_complex_rules(columns)
        self.assertEqual(len(rules), 1)
        self.assertEqual(rules[0].kind, "either_or")
        self.assertEqual(rules[0].groups, [["A", "B"], ["C"]])

    def test_either_or_needs_a_conditional_column(self):
        columns = parse_columns(
            sheet("Main", [["FirstName", "LastName", "OwnerName"], ["Required", "Required", "Optional"]])
        )
        self.assertEqual(detect_complex_rules(columns), [])

    def test_dependent_detection(self):
        columns = parse_columns(
            sheet("Main", [["State", "Country", "Citizenship Country"], ["Optional", "Conditional", "Optional"]])
        )
        rules = detect_complex_rules(columns)
        self.assertEqual([(r.kind, r.trigger, r.dependent) for r in rules], [("dependent", "A", "B")])


class WorkbookExtractionTests(unittest.TestCase):
    def test_extract_vendor_template_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_vendor_template(Path(tmpdir) / "vendors.xlsx")
            template = extract_template_file(path)

        self.assertEqual(template.name, "vendors")
        self.assertEqual(template.metadata["mainSheet"], "Vendors")
        self.assertEqual(template.metadata["sheetCount"], 2)
        self.assertIn("Country Codes", template.lookup_tables)

        country = template.column("Country")
        self.assertEqual(country.type, "list")
        self.assertEqual(country.allowed_values, ["US", "CA", "GB"])
        self.assertEqual(template.column("Employee Count").type, "integer")
        self.assertEqual(template.column("Notes").max_length, 10)
        self.assertEqual(template.column("Start Date").type, "date")
        self.assertEqual(template.columns[3].allowed_values, ["I", "B"])

        state = template.column("State")
        self.assertEqual([(c.field, c.value) for c in state.conditions], [("Country", "US")])
        self.assertEqual([rule.kind for rule in template.complex_rules], ["either_or"])

        summary = summarize_template(template)
        self.assertEqual(summary["totalColumns"], 10)
        self.assertEqual(summary["requiredColumns"], 3)
        self.assertEqual(summary["lookupTables"], 1)

    def test_extracted_template_survives_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            template = extract_template_file(write_vendor_template(Path(tmpdir) / "vendors.xlsx"))
        restored = template_from_json(template_to_json(template))
        self.assertEqual(restored.to_dict(), template.to_dict())

    def test_read_workbook_errors(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                read_workbook(Path(tmpdir) / "missing.xlsx")
            bogus = Path(tmpdir) / "bogus.xlsx"
            bogus.write_bytes(b"not a zip")
            with self.assertRaises(TemplateError):
                read_workbook(bogus)
            csv_path = Path(tmpdir) / "data.csv"
            csv_path.write_text("a,b\n", encoding="utf-8")
            with self.assertRaises(TemplateError):
                read_workbook(csv_path)

    def test_cell_text_renders_workbook_values(self):
        self.assertEqual(cell_text(date(2024, 1, 5)), "01/05/2024")
        self.assertEqual(cell_text(datetime(2024, 1, 5, 0, 0)), "01/05/2024")
        self.assertEqual(cell_text(3.0), "3")
        self.assertEqual(cell_text(2.5), "2.5")
        self.assertEqual(cell_text("  x "), "x")
        self.assertEqual(cell_text(None), "")


if __name__ == "__main__":
    unittest.main()
