from __future__ import annotations

import importlib.util
import io
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook

from builders import make_template, write_vendor_template

from template_maestro.export import ERROR_REPORT_HEADERS, STATUS_COLUMN
from template_maestro.models import template_to_json
from template_maestro.session import Session

ROOT = Path(__file__).resolve().parents[1]
WEB_APP = ROOT / "web" / "app.py"


def load_module(module_path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    module = importlib.util.module_from_spec(spec)
    assert spec and spec.loader
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


WEB_APP_MODULE = load_module(WEB_APP, "template_maestro_web_app_tests")


class FakeUpload:
    def __init__(self, name: str, data: bytes) -> None:
        self.name = name
        self._data = data

    def getvalue(self) -> bytes:
        return self._data


class WebAppHelperTests(unittest.TestCase):
    def setUp(self):
        self.template = make_template(
            {"name": "EmpID", "requirement": "required"},
            {"name": "Status", "type": "list", "allowed_values": ["A", "I"]},
            name="Staff",
        )
        self.session = Session.from_grid(
            self.template,
            ["EmpID", "Status"],
            [["1", "A"], ["2", "a"], ["", "I"]],
        )
        self.session.validate()

    def test_rows_frame_filters_by_status(self):
        frame = WEB_APP_MODULE.rows_frame(self.session)
        self.assertEqual(list(frame.columns), ["Row", STATUS_COLUMN, "EmpID", "Status"])
        self.assertEqual(list(frame[STATUS_COLUMN]), ["valid", "warning", "error"])
        errors = WEB_APP_MODULE.rows_frame(self.session, "error")
        self.assertEqual(list(errors["Row"]), [3])

    def test_issues_frame_and_error_report_bytes(self):
        frame = WEB_APP_MODULE.issues_frame(self.session)
        self.assertEqual(list(frame.columns), ERROR_REPORT_HEADERS)
        self.assertEqual(len(frame), 2)
        text = WEB_APP_MODULE.error_report_bytes(self.session).decode("utf-8")
        self.assertTrue(text.startswith("Row #,Column #,Column Name"))
        self.assertEqual(len(text.strip().splitlines()), 3)

    def test_export_bytes_txt(self):
        data, name = WEB_APP_MODULE.export_bytes(self.session, "txt", "valid", False)
        self.assertTrue(name.startswith("Staff_") and name.endswith(".txt"))
        self.assertEqual(data.decode("utf-8"), "EmpID\tStatus\nRequired\tOptional\n1\tA")

    def test_export_bytes_xlsx_with_status(self):
        data, name = WEB_APP_MODULE.export_bytes(self.session, "xlsx", "all", True)
        self.assertTrue(name.endswith(".xlsx"))
        ws = load_workbook(io.BytesIO(data))["Data"]
        self.assertEqual(ws["A1"].value, STATUS_COLUMN)
        self.assertEqual(ws.max_row, 5)

    def test_load_template_from_json_upload(self):
        upload = FakeUpload("staff.json", template_to_json(self.template).encode("utf-8"))
        template = WEB_APP_MODULE.load_template_from_upload(upload)
        self.assertEqual(template.name, "Staff")
        self.assertEqual(template.field_names, ["EmpID", "Status"])

    def test_load_template_from_workbook_upload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            data = write_vendor_template(Path(tmpdir) / "vendors.xlsx").read_bytes()
        template = WEB_APP_MODULE.load_template_from_upload(FakeUpload("vendors.xlsx", data))
        self.assertEqual(template.name, "vendors")
        self.assertEqual(len(template.columns), 10)


if __name__ == "__main__":
    unittest.main()
