from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from builders import make_template, write_csv, write_vendor_template

from template_maestro import __version__
from template_maestro.models import template_to_json


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "template_maestro.cli"]
FIXED_STAMP = "20260301T010203Z"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["TEMPLATE_MAESTRO_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_template_json(folder: Path) -> Path:
    template = make_template(
        {"name": "EmpID", "requirement": "required"},
        {"name": "Status", "type": "list", "allowed_values": ["A", "I"]},
        {"name": "Shares", "type": "integer"},
        name="Staff",
    )
    path = folder / "staff.json"
    path.write_text(template_to_json(template), encoding="utf-8")
    return path


class TemplateMaestroCliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.template = write_template_json(self.tmp)

    def tearDown(self):
        self._tmp.cleanup()

    def data(self, *rows: list[str]) -> Path:
        return write_csv(self.tmp / "upload.csv", [["EmpID", "Status", "Shares"], *rows])

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), __version__)

    def test_extract_writes_template_json(self):
        workbook = write_vendor_template(self.tmp / "vendors.xlsx")
        output = self.tmp / "vendors.json"
        proc = run_cli("extract", str(workbook), "--output", str(output))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Template written:", proc.stderr)
        self.assertIn("Columns: 10", proc.stderr)
        payload = json.loads(output.read_text(encoding="utf-8"))
        self.assertEqual(len(payload["columns"]), 10)

    def test_extract_json_to_stdout(self):
        workbook = write_vendor_template(self.tmp / "vendors.xlsx")
        proc = run_cli("extract", str(workbook), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["summary"]["complexRules"], 1)
        self.assertEqual(payload["contract"]["name"], "template_maestro.template")

    def test_extract_refuses_to_overwrite(self):
        workbook = write_vendor_template(self.tmp / "vendors.xlsx")
        output = self.tmp / "vendors.json"
        output.write_text("{}", encoding="utf-8")
        proc = run_cli("extract", str(workbook), "--output", str(output))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)

    def test_validate_clean_file_returns_exit_0(self):
        proc = run_cli("validate", str(self.data(["1", "A", "10"])), "--template", str(self.template), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["stats"]["validRows"], 1)
        self.assertEqual(payload["rows"], [])

    def test_validate_errors_return_exit_3_and_write_report(self):
        report = self.tmp / "validation.json"
        errors = self.tmp / "errors.csv"
        proc = run_cli(
            "validate",
            str(self.data(["", "A", "10"], ["2", "X", "ten"])),
            "--template",
            str(self.template),
            "--output",
            str(report),
            "--error-report",
            str(errors),
        )
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertIn("Validation report:", proc.stderr)
        payload = json.loads(report.read_text(encoding="utf-8"))
        self.assertEqual(payload["stats"]["errorRows"], 2)
        self.assertEqual(payload["run_summary"]["status"], "error")
        self.assertEqual(payload["run_summary"]["template"]["name"], "Staff")
        self.assertEqual(payload["run_summary"]["mapping"]["confidence"], 1.0)
        self.assertEqual(len(errors.read_text(encoding="utf-8").splitlines()), 4)

    def test_warnings_only_exit_code_depends_on_strict(self):
        data = self.data(["1", "a", "10"])
        relaxed = run_cli("validate", str(data), "--template", str(self.template))
        self.assertEqual(relaxed.returncode, 0, relaxed.stderr)
        strict = run_cli("validate", str(data), "--template", str(self.template), "--strict")
        self.assertEqual(strict.returncode, 4, strict.stderr)

    def test_fix_applies_settings_and_writes_change_log(self):
        settings = self.tmp / "settings.json"
        settings.write_text(json.dumps({"autoFixSettings": {"removeThousandSeparators": True}}), encoding="utf-8")
        output = self.tmp / "fixed.txt"
        proc = run_cli(
            "fix",
            str(self.data(["1", "A", "1,000"])),
            "--template",
            str(self.template),
            "--settings",
            str(settings),
            "--format",
            "txt",
            "--output",
            str(output),
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(
            output.read_text(encoding="utf-8"),
            "EmpID\tStatus\tShares\nRequired\tOptional\tOptional\n1\tA\t1000",
        )
        changes = json.loads((self.tmp / "fixed_changes.json").read_text(encoding="utf-8"))
        self.assertEqual(changes["changes"][0]["after"], "1000")
        self.assertTrue(changes["settings"]["removeThousandSeparators"])

    def test_fix_refuses_to_overwrite_change_log(self):
        data = self.data(["1", "A", "10"])
        output = self.tmp / "fixed.txt"
        (self.tmp / "fixed_changes.json").write_text("{}", encoding="utf-8")
        args = ("fix", str(data), "--template", str(self.template), "--format", "txt", "--output", str(output))

        proc = run_cli(*args)
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)
        self.assertFalse(output.exists())
        self.assertEqual((self.tmp / "fixed_changes.json").read_text(encoding="utf-8"), "{}")

        forced = run_cli(*args, "--force")
        self.assertEqual(forced.returncode, 0, forced.stderr)
        self.assertTrue(output.exists())

    def test_fix_dry_run_ignores_existing_outputs(self):
        output = self.tmp / "fixed.txt"
        output.write_text("keep", encoding="utf-8")
        proc = run_cli(
            "fix",
            str(self.data(["1", "A", "10"])),
            "--template",
            str(self.template),
            "--format",
            "txt",
            "--output",
            str(output),
            "--dry-run",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "keep")

    def test_export_with_empty_filter_returns_exit_6(self):
        proc = run_cli(
            "export",
            str(self.data(["1", "A", "10"])),
            "--template",
            str(self.template),
            "--filter",
            "error",
            "--output",
            str(self.tmp / "out.xlsx"),
        )
        self.assertEqual(proc.returncode, 6)
        self.assertIn("No rows match the export filter: error", proc.stderr)

    def test_export_xlsx(self):
        output = self.tmp / "out.xlsx"
        proc = run_cli(
            "export",
            str(self.data(["1", "A", "10"], ["", "A", "10"])),
            "--template",
            str(self.template),
            "--filter",
            "valid",
            "--include-status",
            "--output",
            str(output),
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertTrue(output.exists())
        self.assertIn("Exported 3 line(s)", proc.stderr)

    def test_bad_template_json_returns_exit_2(self):
        bad = self.tmp / "bad.json"
        bad.write_text("{not json", encoding="utf-8")
        proc = run_cli("validate", str(self.data(["1", "A", "10"])), "--template", str(bad))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Invalid template JSON", proc.stderr)

    def test_missing_input_returns_exit_1(self):
        proc = run_cli("validate", str(self.tmp / "missing.csv"), "--template", str(self.template))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_config_init_refuses_overwrite(self):
        path = self.tmp / "template-maestro.json"
        first = run_cli("config", "init", "--path", str(path))
        self.assertEqual(first.returncode, 0, first.stderr)
        payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertIn("autoFixSettings", payload)
        second = run_cli("config", "init", "--path", str(path))
        self.assertEqual(second.returncode, 1)

    def test_explain(self):
        proc = run_cli("explain", "case-mismatch")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Auto-fixable: yes", proc.stdout)
        unknown = run_cli("explain", "nope")
        self.assertEqual(unknown.returncode, 1)

    def test_usage_error_returns_exit_1(self):
        proc = run_cli("validate")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
