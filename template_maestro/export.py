"""
export.py — Shape validated rows into a flat export grid and write it out.

Public API:
    grid = shape_export(rows, template, ShaperConfig(format="txt", filter="valid"))
    text = to_tab_delimited(grid)
    name = generate_filename("{template}_{date}", template.name)
    write_xlsx(grid, path) / write_txt(grid, path)
    report = build_error_report(rows, template)
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from template_maestro.dates import format_date, parse_date
from template_maestro.models import DATE_TYPES, ExportSettings, Row, Status, Template, canonical_name

EXPORT_FORMATS = ("xlsx", "txt")
EXPORT_FILTERS = ("all", "valid", "warning", "error")
STATUS_COLUMN = "Validation Status"
ERROR_REPORT_HEADERS = [
    "Row #",
    "Column #",
    "Column Name",
    "Field Value",
    "Error Type",
    "Message",
    "Auto-Fix Available",
    "Suggested Fix",
]

TAB_ESCAPE_RE = re.compile(r"[\t\n\r]")
FILENAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")

STATUS_FILLS = {
    Status.VALID.value: PatternFill("solid", fgColor="C6EFCE"),
    Status.WARNING.value: PatternFill("solid", fgColor="FFEB9C"),
    Status.ERROR.value: PatternFill("solid", fgColor="FFC7CE"),
}


class ExportError(ValueError):
    """Raised when an export cannot be shaped: no rows match, or an unknown format/filter."""


class EmptyExportError(ExportError):
    """No rows survive the status filter."""


@dataclass
class ShaperConfig:
    format: str = "xlsx"
    filter: str = "all"
    include_header: bool = True
    include_requirement_row: bool = True
    include_status: bool = False

    def __post_init__(self) -> None:
        if self.format not in EXPORT_FORMATS:
            raise ExportError(f"Unknown export format {self.format!r}. Expected one of: {', '.join(EXPORT_FORMATS)}")
        if self.filter not in EXPORT_FILTERS:
            raise ExportError(f"Unknown export filter {self.filter!r}. Expected one of: {', '.join(EXPORT_FILTERS)}")

    @classmethod
    def from_settings(cls, settings: ExportSettings, fmt: str = "xlsx", status_filter: str = "all") -> "ShaperConfig":
        per_format = settings.for_format(fmt)
        return cls(
            format=fmt,
            filter=status_filter,
            include_header=per_format.include_header,
            include_requirement_row=per_format.include_requirement,
            include_status=settings.include_status,
        )


# ══════════════════════════════════════════════════════════════════════════
# SHAPING
# ══════════════════════════════════════════════════════════════════════════

def filter_rows(rows: list[Row], status_filter: str) -> list[Row]:
    if status_filter not in EXPORT_FILTERS:
        raise ExportError(f"Unknown export filter {status_filter!r}. Expected one of: {', '.join(EXPORT_FILTERS)}")
    if status_filter == "all":
        return list(rows)
    return [row for row in rows if row.row_status.value == status_filter]


def _export_value(row: Row, field_name: str, keys: dict[str, str], is_date: bool) -> str:
    value = row.data.get(keys.get(canonical_name(field_name), field_name))
    text = "" if value is None else str(value)
    if is_date and text.strip():
        parsed = parse_date(text)
        if parsed is not None:
            return format_date(parsed)
    return text


def shape_export(rows: list[Row], template: Template, config: ShaperConfig) -> list[list[str]]:
    selected = filter_rows(rows, config.filter)
    if not selected:
        raise EmptyExportError(f"No rows match the export filter: {config.filter}")

    headers = template.field_names
    grid: list[list[str]] = []
    if config.include_header:
        grid.append(([STATUS_COLUMN] if config.include_status else []) + list(headers))
    if config.include_requirement_row:
        labels = [column.requirement.label for column in template.columns]
        grid.append(([""] if config.include_status else []) + labels)

    date_flags = [column.type in DATE_TYPES for column in template.columns]
    for row in selected:
        keys = {canonical_name(name): name for name in row.data}
        values = [_export_value(row, name, keys, is_date) for name, is_date in zip(headers, date_flags)]
        if config.include_status:
            values.insert(0, row.row_status.value)
        grid.append(values)
    return grid


def to_tab_delimited(grid: list[list[object]]) -> str:
    return "\n".join("\t".join(TAB_ESCAPE_RE.sub(" ", "" if cell is None else str(cell)) for cell in row) for row in grid)


def generate_filename(pattern: str, template_name: str | None, now: datetime | None = None) -> str:
    now = now or datetime.now()
    clean_name = FILENAME_UNSAFE_RE.sub("_", template_name or "Export")
    replacements = {
        "template": clean_name,
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H-%M-%S"),
        "timestamp": str(int(now.timestamp() * 1000)),
    }
    return re.sub(
        r"\{(template|date|time|timestamp)\}",
        lambda m: replacements[m.group(1).lower()],
        pattern or "{template}_{date}",
        flags=re.IGNORECASE,
    )


# ══════════════════════════════════════════════════════════════════════════
# ERROR REPORT
# ══════════════════════════════════════════════════════════════════════════

def build_error_report(rows: list[Row], template: Template) -> list[list[str]]:
    """One line per non-valid cell, header included."""
    columns = template.columns_by_key()
    report = [list(ERROR_REPORT_HEADERS)]
    for row in rows:
        for position, (name, meta) in enumerate(row.metadata.items(), start=1):
            if meta.validation_status not in (Status.WARNING, Status.ERROR):
                continue
            column = columns.get(canonical_name(name))
            is_error = meta.validation_status is Status.ERROR
            messages = meta.errors if is_error else meta.warnings
            report.append(
                [
                    str(row.row_index + 1),
                    str(column.index if column else position),
                    column.field_name if column else name,
                    meta.current_value,
                    "Critical" if is_error else "Warning",
                    "; ".join(messages),
                    "Y" if meta.suggested_fix is not None else "N",
                    meta.suggested_fix or "",
                ]
            )
    return report


# ══════════════════════════════════════════════════════════════════════════
# WRITERS
# ══════════════════════════════════════════════════════════════════════════

def _infer_col_widths(grid: list[list[object]], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    widths: list[int] = []
    for row in grid[: sample + 1]:
        for i, value in enumerate(row):
            width = max(min_width, min(max_width, len(str(value)) + 2))
            if i < len(widths):
                widths[i] = max(widths[i], width)
            else:
                widths.append(width)
    return widths


def write_xlsx(grid: list[list[object]], path: Path, *, include_header: bool = True, include_status: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Data"
    for row in grid:
        ws.append(list(row))
    if include_header and grid:
        for cell in ws[1]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = PatternFill("solid", fgColor="1565C0")
            cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.freeze_panes = "A2"
    if include_status:
        for (cell,) in ws.iter_rows(min_col=1, max_col=1):
            fill = STATUS_FILLS.get(str(cell.value))
            if fill is not None:
                cell.fill = fill
    for i, width in enumerate(_infer_col_widths(grid), start=1):
        ws.column_dimensions[get_column_letter(i)].width = width
    wb.save(path)


def write_txt(grid: list[list[object]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_tab_delimited(grid), encoding="utf-8")


def write_csv(grid: list[list[object]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        csv.writer(handle).writerows(grid)
