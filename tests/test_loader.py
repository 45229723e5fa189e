from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from openpyxl import Workbook

from template_maestro.loader import (
    find_header_row,
    is_requirement_row,
    load_upload,
    looks_like_header,
    sanitize_headers,
    shape_grid,
)


class GridShapingTests(unittest.TestCase):
    def test_requirement_row_detection(self):
        self.assertTrue(is_requirement_row(["Required", "Optional", ""]))
        self.assertTrue(is_requirement_row(["Req", "x", "y"]))
        self.assertFalse(is_requirement_row(["1", "Ada", "Lovelace", "NY"]))
        self.assertFalse(is_requirement_row(["", None]))

    def test_sanitize_headers(self):
        self.assertEqual(sanitize_headers(["EmpID", "", None, " Name "]), ["EmpID", "Column 2", "Column 3", "Name"])

    def test_shape_grid_pads_truncates_and_drops_empty_rows(self):
        result = shape_grid(
            [
                ["", "", ""],
                ["A", "B", ""],
                ["1", None],
                ["", "  ", ""],
                ["1", "2", "3", "4"],
            ]
        )
        self.assertEqual(result["headers"], ["A", "B"])
        self.assertEqual(result["rows"], [["1", ""], ["1", "2"]])
        self.assertEqual(result["empty_rows_dropped"], 1)
        self.assertIsNone(result["requirement_row"])

    def test_title_line_above_header_is_skipped(self):
        result = shape_grid(
            [
                ["Vendor Export Q1", "", ""],
                ["EmpID", "Name", "Status"],
                ["1", "Ada", "A"],
            ]
        )
        self.assertEqual(result["title"], "Vendor Export Q1")
        self.assertEqual(result["headers"], ["EmpID", "Name", "Status"])
        self.assertEqual(result["rows"], [["1", "Ada", "A"]])
        self.assertEqual(result["overflow_rows"], 0)

    def test_header_detection(self):
        self.assertTrue(looks_like_header(["EmpID", "Name", "Hire Date"]))
        self.assertFalse(looks_like_header(["1", "01/05/2024", "Ada"]))
        self.assertEqual(find_header_row([["EmpID", "Name"], ["1", "Ada"]]), 0)
        self.assertEqual(find_header_row([["Report", ""], ["EmpID", "Name"]]), 1)

    def test_values_past_header_width_are_counted(self):
        result = shape_grid([["A", "B"], ["1", "2", "3"], ["4", "5"]])
        self.assertEqual(result["rows"], [["1", "2"], ["4", "5"]])
        self.assertEqual(result["overflow_rows"], 1)

    def test_shape_grid_without_header(self):
        with self.assertRaisesRegex(ValueError, "no header row"):
            shape_grid([["", ""], [None]])


class TextLoaderTests(unittest.TestCase):
    def test_csv_with_requirement_row_and_blank_lines(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.csv"
            path.write_text("EmpID,Name\nRequired,Optional\n1,Ada\n\n2,Bob\n", encoding="utf-8")
            result = load_upload(path)

        self.assertEqual(result["headers"], ["EmpID", "Name"])
        self.assertEqual(result["rows"], [["1", "Ada"], ["2", "Bob"]])
        self.assertEqual(result["requirement_row"], ["Required", "Optional"])
        self.assertEqual(result["detected_format"], "csv")
        self.assertEqual(result["delimiter"], ",")
        self.assertEqual(result["empty_rows_dropped"], 1)
        self.assertIn("Requirement row detected under the header and skipped.", result["warnings"])

    def test_csv_with_title_line(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.csv"
            path.write_text("Vendor Export Q1,,\nEmpID,Name,Status\n1,Ada,A\n", encoding="utf-8")
            result = load_upload(path)
        self.assertEqual(result["headers"], ["EmpID", "Name", "Status"])
        self.assertEqual(result["rows"], [["1", "Ada", "A"]])
        self.assertIn("Title line above the header skipped: 'Vendor Export Q1'", result["warnings"])

    def test_semicolon_file_with_bom(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.txt"
            path.write_bytes(b"\xef\xbb\xbfEmpID;Name\n1;Ada\n2;Bob\n")
            result = load_upload(path)
        self.assertEqual(result["headers"], ["EmpID", "Name"])
        self.assertEqual(result["delimiter"], ";")
        self.assertEqual(len(result["rows"]), 2)

    def test_tsv_keeps_commas_inside_values(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.tsv"
            path.write_text("Shares\tNotes\n1,000\ta, b\n", encoding="utf-8")
            result = load_upload(path)
        self.assertEqual(result["rows"], [["1,000", "a, b"]])

    def test_values_are_kept_as_text(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.csv"
            path.write_text("Zip,Flag\n00123,NA\n", encoding="utf-8")
            result = load_upload(path)
        self.assertEqual(result["rows"], [["00123", "NA"]])

    def test_latin1_bytes_are_decoded(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "upload.csv"
            path.write_bytes("Name,City\nJosé,Zürich\n".encode("latin-1"))
            result = load_upload(path)
        self.assertEqual(result["headers"], ["Name", "City"])
        self.assertEqual(len(result["rows"]), 1)

    def test_empty_file_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.csv"
            path.write_bytes(b"  \n")
            with self.assertRaisesRegex(ValueError, "File is empty"):
                load_upload(path)

    def test_missing_and_unsupported_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                load_upload(Path(tmpdir) / "missing.csv")
            path = Path(tmpdir) / "report.pdf"
            path.write_bytes(b"%PDF")
            with self.assertRaisesRegex(ValueError, "Unsupported format"):
                load_upload(path)


class WorkbookLoaderTests(unittest.TestCase):
    def _workbook(self, tmpdir: str) -> Path:
        path = Path(tmpdir) / "upload.xlsx"
        wb = Workbook()
        ws = wb.active
        ws.title = "Instructions"
        ws.append(["Fill in the Data sheet"])
        data = wb.create_sheet("Data")
        data.append(["EmpID", "Shares"])
        data.append([1, 1000])
        data.append([2, "1,200"])
        wb.save(path)
        return path

    def test_main_sheet_is_chosen_and_values_are_text(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = load_upload(self._workbook(tmpdir))
        self.assertEqual(result["sheet_name"], "Data")
        self.assertEqual(result["sheet_names"], ["Instructions", "Data"])
        self.assertEqual(result["headers"], ["EmpID", "Shares"])
        self.assertEqual(result["rows"], [["1", "1000"], ["2", "1,200"]])
        self.assertTrue(any("Multiple sheets" in w for w in result["warnings"]))

    def test_explicit_sheet_must_exist(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._workbook(tmpdir)
            with self.assertRaisesRegex(ValueError, "not found"):
                load_upload(path, sheet_name="Nope")

    def test_missing_xlrd_raises_clear_importerror(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "legacy.xls"
            path.write_bytes(b"not-a-real-xls")

            original_import = __import__

            def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
                if name == "xlrd":
                    raise ImportError("simulated missing xlrd")
                return original_import(name, globals, locals, fromlist, level)

            with mock.patch("builtins.__import__", side_effect=fake_import):
                with self.assertRaisesRegex(ImportError, r"\.xls files require xlrd"):
                    load_upload(path)

    def test_missing_odfpy_raises_clear_importerror(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sheet.ods"
            path.write_bytes(b"not-a-real-ods")

            original_import = __import__

            def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
                if name == "odf":
                    raise ImportError("simulated missing odf")
                return original_import(name, globals, locals, fromlist, level)

            with mock.patch("builtins.__import__", side_effect=fake_import):
                with self.assertRaisesRegex(ImportError, r"\.ods files require odfpy"):
                    load_upload(path)


if __name__ == "__main__":
    unittest.main()
