from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from template_maestro import __version__ as TOOL_VERSION
from template_maestro.contracts import build_contract, build_run_summary, status_from_stats
from template_maestro.export import EmptyExportError, ShaperConfig, generate_filename, write_csv, write_txt, write_xlsx
from template_maestro.extractor import extract_template_file, summarize_template
from template_maestro.models import AutoFixSettings, ExportSettings, Template, template_from_json, template_to_json
from template_maestro.session import Session
from template_maestro.taxonomy import EXPLAIN_RULES

TEMPLATE_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
TEMPLATE_JSON_FORMATS = {".json"}

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_VALIDATION_ERRORS = 3
EXIT_VALIDATION_WARNINGS = 4
EXIT_EXPORT_EMPTY = 6

DEFAULT_CONFIG_PATH = "template-maestro.json"

logger = logging.getLogger("template_maestro")


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class TemplateMaestroArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def timestamp_token() -> str:
    override = os.environ.get("TEMPLATE_MAESTRO_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "template-maestro-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path, *, force: bool = False) -> Path:
    if path.exists() and not force:
        raise CliError(f"Refusing to overwrite existing output: {path} (use --force)", EXIT_COMMAND_ERROR)
    return path


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, EmptyExportError):
        return EXIT_EXPORT_EMPTY
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════
# TEMPLATE + SETTINGS
# ══════════════════════════════════════════════════════════════════════════

def load_template(template_path: Path) -> Template:
    if not template_path.exists():
        raise CliError(f"Template not found: {template_path}", EXIT_COMMAND_ERROR)
    suffix = template_path.suffix.lower()
    if suffix in TEMPLATE_JSON_FORMATS:
        return template_from_json(template_path.read_text(encoding="utf-8"))
    if suffix in TEMPLATE_WORKBOOK_FORMATS:
        return extract_template_file(template_path)
    supported = ", ".join(sorted(TEMPLATE_JSON_FORMATS | TEMPLATE_WORKBOOK_FORMATS))
    raise CliError(f"Unsupported template type '{suffix or '[missing extension]'}'. Supported: {supported}")


def load_settings(settings_path: Path) -> dict[str, Any]:
    if not settings_path.exists():
        raise CliError(f"Settings not found: {settings_path}", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(settings_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CliError(f"Could not read settings: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError("Settings root must be a JSON object.", EXIT_COMMAND_ERROR)
    return payload


def apply_settings(template: Template, settings: dict[str, Any]) -> Template:
    if "autoFixSettings" in settings:
        merged = {**template.auto_fix_settings.to_dict(), **(settings.get("autoFixSettings") or {})}
        template.auto_fix_settings = AutoFixSettings.from_dict(merged)
    if "exportSettings" in settings:
        template.export_settings = ExportSettings.from_dict(settings.get("exportSettings"))
    return template


def prepare_template(args: argparse.Namespace) -> tuple[Template, Path]:
    template_path = Path(args.template)
    template = load_template(template_path)
    if getattr(args, "settings", None):
        apply_settings(template, load_settings(Path(args.settings)))
    return template, template_path


def open_session(args: argparse.Namespace) -> tuple[Session, Path, Path]:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    template, template_path = prepare_template(args)
    session = Session.from_file(template, input_path, mode=args.mapping, sheet_name=args.sheet_name)
    if getattr(args, "autofix", False):
        session.apply_auto_fixes()
    else:
        session.validate()
    return session, input_path, template_path


# ══════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════

def render_extract_text(template: Template, summary: dict[str, int]) -> str:
    lines = [
        "template-maestro extract",
        f"Template: {template.name}",
        f"Main sheet: {template.metadata.get('mainSheet', '[unknown]')}",
        f"Columns: {summary['totalColumns']} "
        f"(required {summary['requiredColumns']}, conditional {summary['conditionalColumns']}, "
        f"optional {summary['optionalColumns']})",
        f"List validations: {summary['listValidations']}",
        f"Date columns: {summary['dateValidations']}",
        f"Lookup tables: {summary['lookupTables']}",
        f"Complex rules: {summary['complexRules']}",
    ]
    unconditioned = [
        c.field_name for c in template.columns if c.requirement.value == "conditional" and not c.conditions
    ]
    if unconditioned:
        lines.append("Conditional columns without conditions: " + ", ".join(unconditioned))
    return "\n".join(lines) + "\n"


def render_validate_text(payload: dict[str, Any]) -> str:
    stats = payload["stats"]
    lines = [
        "template-maestro validate",
        f"Input: {payload['input']}",
        f"Template: {payload['template']}",
        f"Rows: {stats['totalRows']} (valid {stats['validRows']}, warning {stats['warningRows']}, error {stats['errorRows']})",
        f"Errors: {stats['totalErrors']}",
        f"Warnings: {stats['totalWarnings']}",
        f"Completion: {stats['completion']}%",
        f"Trust score: {stats['trustScore']}",
    ]
    if payload["mapping"]["unmapped"]:
        lines.append("Unmapped template columns: " + ", ".join(payload["mapping"]["unmapped"]))
    if payload["changes_count"]:
        lines.append(f"Auto-fix changes: {payload['changes_count']}")
    if stats["issueCounts"]:
        lines.append("Issues:")
        lines.extend(f"- {kind}: {count}" for kind, count in stats["issueCounts"].items())
    return "\n".join(lines) + "\n"


def validation_payload(session: Session, input_path: Path, template_path: Path, output_path: Path | None) -> dict[str, Any]:
    stats = session.stats.to_dict()
    warnings = list(session.upload_warnings) + [w.message for w in session.mapping.warnings]
    return {
        "tool": "template-maestro",
        "command": "validate",
        "version": TOOL_VERSION,
        "contract": build_contract("template_maestro.validation"),
        "run_summary": build_run_summary(
            command="validate",
            input_path=input_path,
            template_path=template_path,
            template_name=session.template.name,
            mapping=session.mapping,
            status=status_from_stats(stats),
            output_path=output_path,
            metrics={"rows": stats["totalRows"], "errors": stats["totalErrors"], "warnings": stats["totalWarnings"]},
            warnings=warnings,
        ),
        "input": str(input_path),
        "template": session.template.name,
        "mapping": session.mapping.to_dict(),
        "stats": stats,
        "changes_count": len(session.changes),
        "changes": [change.to_dict() for change in session.changes],
        "rows": [row.to_dict() for row in session.rows if row.row_status.value != "valid"],
    }


# ══════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════

def run_extract(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR
    try:
        template = load_template(input_path)
        if args.name:
            template.name = args.name
        summary = summarize_template(template)
        output_path = Path(args.output) if args.output else determine_output_dir(args, input_path) / "template.json"
        if not args.json or args.output or args.out_dir:
            safe_output_path(output_path, force=args.force)
            write_text(output_path, template_to_json(template))
            emit_human(f"Template written: {output_path}", quiet=args.quiet or args.json)
        if args.json:
            maybe_emit_json_stdout(
                {
                    "contract": build_contract("template_maestro.template"),
                    "summary": summary,
                    "template": template.to_dict(),
                },
                True,
            )
        else:
            emit_human(render_extract_text(template, summary).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_validate(args: argparse.Namespace) -> int:
    try:
        session, input_path, template_path = open_session(args)
        output_path = None
        if args.output or args.out_dir:
            output_path = Path(args.output) if args.output else determine_output_dir(args, input_path) / "validation.json"
            safe_output_path(output_path, force=args.force)
        payload = validation_payload(session, input_path, template_path, output_path)
        if output_path is not None:
            write_json(output_path, payload)
            emit_human(f"Validation report: {output_path}", quiet=args.quiet or args.json)
        if args.error_report:
            report_path = safe_output_path(Path(args.error_report), force=args.force)
            write_csv(session.error_report(), report_path)
            emit_human(f"Error report: {report_path}", quiet=args.quiet or args.json)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_validate_text(payload).rstrip(), quiet=args.quiet)
        stats = session.stats
        if stats.error_rows:
            return EXIT_VALIDATION_ERRORS
        if stats.warning_rows and args.strict:
            return EXIT_VALIDATION_WARNINGS
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def _write_export(grid: list[list[str]], path: Path, config: ShaperConfig) -> None:
    if config.format == "txt":
        write_txt(grid, path)
    else:
        write_xlsx(grid, path, include_header=config.include_header, include_status=config.include_status)


def _shaper_config(args: argparse.Namespace, template: Template) -> ShaperConfig:
    config = ShaperConfig.from_settings(template.export_settings, args.format, args.filter)
    if args.include_status:
        config.include_status = True
    if args.no_header:
        config.include_header = False
    if args.no_requirement_row:
        config.include_requirement_row = False
    return config


def _export_path(args: argparse.Namespace, input_path: Path, template: Template) -> Path:
    if args.output:
        return Path(args.output)
    pattern = template.export_settings.for_format(args.format).filename_pattern
    return determine_output_dir(args, input_path) / f"{generate_filename(pattern, template.name)}.{args.format}"


def run_fix(args: argparse.Namespace) -> int:
    args.autofix = True
    try:
        session, input_path, template_path = open_session(args)
        config = _shaper_config(args, session.template)
        output_path = _export_path(args, input_path, session.template)
        changes_path = output_path.with_name(output_path.stem + "_changes.json")
        if not args.dry_run:
            safe_output_path(output_path, force=args.force)
            safe_output_path(changes_path, force=args.force)
            _write_export(session.export_grid(config=config), output_path, config)
            write_json(
                changes_path,
                {
                    "contract": build_contract("template_maestro.autofix"),
                    "run_summary": build_run_summary(
                        command="fix",
                        input_path=input_path,
                        template_path=template_path,
                        template_name=session.template.name,
                        mapping=session.mapping,
                        output_path=output_path,
                        metrics={"changes": len(session.changes)},
                    ),
                    "settings": session.template.auto_fix_settings.to_dict(),
                    "changes": [change.to_dict() for change in session.changes],
                },
            )
        payload = {
            "tool": "template-maestro",
            "command": "fix",
            "input": str(input_path),
            "output": None if args.dry_run else str(output_path),
            "changes_count": len(session.changes),
            "changes": [change.to_dict() for change in session.changes],
            "stats": session.stats.to_dict(),
        }
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(f"Auto-fix changes: {len(session.changes)}", quiet=args.quiet)
            if not args.dry_run:
                emit_human(f"Fixed file: {output_path}", quiet=args.quiet)
                emit_human(f"Change log: {changes_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_export(args: argparse.Namespace) -> int:
    try:
        session, input_path, _ = open_session(args)
        config = _shaper_config(args, session.template)
        grid = session.export_grid(config=config)
        output_path = safe_output_path(_export_path(args, input_path, session.template), force=args.force)
        _write_export(grid, output_path, config)
        if args.json:
            maybe_emit_json_stdout(
                {
                    "contract": build_contract("template_maestro.export"),
                    "output": str(output_path),
                    "format": config.format,
                    "filter": config.filter,
                    "rows_written": len(grid),
                },
                True,
            )
        else:
            emit_human(f"Exported {len(grid)} line(s) to {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    payload = {
        "autoFixSettings": AutoFixSettings().to_dict(),
        "exportSettings": ExportSettings().to_dict(),
    }
    write_json(config_path, payload)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown issue kind: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {"rule_id": args.rule_id, **rule}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Issue: {args.rule_id}",
                    f"What it means: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Auto-fixable: {'yes' if payload['auto_fixable'] else 'no'}",
                    f"How to avoid it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


# ══════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════

def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def _add_data_inputs(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="Uploaded data file (.csv, .tsv, .txt, .xlsx, .xlsm, .xls, .ods)")
    parser.add_argument("-t", "--template", required=True, help="Template workbook (.xlsx/.xlsm) or template JSON")
    parser.add_argument("--settings", help="Settings JSON overlaid on the template (see 'config init')")
    parser.add_argument("--sheet", dest="sheet_name", help="Workbook sheet holding the data")
    parser.add_argument(
        "--mapping",
        choices=["named", "positional"],
        default="named",
        help="Match file columns to template columns by name or by position",
    )
    parser.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    parser.add_argument("--output", help="Explicit output path")
    parser.add_argument("--force", action="store_true", help="Overwrite existing outputs")


def _add_export_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--format", choices=["xlsx", "txt"], default="xlsx", help="Export format")
    parser.add_argument("--filter", choices=["all", "valid", "warning", "error"], default="all", help="Row status filter")
    parser.add_argument("--include-status", action="store_true", help="Prepend a Validation Status column")
    parser.add_argument("--no-header", action="store_true", help="Omit the header row")
    parser.add_argument("--no-requirement-row", action="store_true", help="Omit the requirement row")


def build_parser() -> argparse.ArgumentParser:
    parser = TemplateMaestroArgumentParser(
        prog="template-maestro",
        description="Template-driven validation, auto-fix and export for tabular uploads.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract template rules from a template workbook.")
    extract.add_argument("input", help="Template workbook (.xlsx/.xlsm) or template JSON")
    extract.add_argument("--name", help="Template name (defaults to the file name)")
    extract.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    extract.add_argument("--output", help="Explicit template JSON output path")
    extract.add_argument("--force", action="store_true", help="Overwrite existing outputs")
    _add_common(extract)

    validate = subparsers.add_parser("validate", help="Validate a data file against a template.")
    _add_data_inputs(validate)
    validate.add_argument("--autofix", action="store_true", help="Apply the template's auto-fixes before validating")
    validate.add_argument("--error-report", dest="error_report", help="Write a CSV error report to this path")
    validate.add_argument("--strict", action="store_true", help="Return exit code 4 when only warnings remain")
    _add_common(validate)

    fix = subparsers.add_parser("fix", help="Apply auto-fixes and write the fixed data.")
    _add_data_inputs(fix)
    _add_export_options(fix)
    fix.add_argument("--dry-run", action="store_true", help="Report changes without writing outputs")
    _add_common(fix)

    export = subparsers.add_parser("export", help="Export validated rows, filtered by status.")
    _add_data_inputs(export)
    _add_export_options(export)
    export.add_argument("--autofix", action="store_true", help="Apply the template's auto-fixes before exporting")
    _add_common(export)

    config = subparsers.add_parser("config", help="Settings helpers.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter settings JSON.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_PATH, help="Settings path")

    explain = subparsers.add_parser("explain", help="Explain a validation issue kind.")
    explain.add_argument("rule_id", help="Issue kind, e.g. required-missing")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print the tool version.")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "extract":
            return run_extract(args)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "fix":
            return run_fix(args)
        if args.command == "export":
            return run_export(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
