"""Decode a template workbook with openpyxl into plain sheet grids plus validation metadata."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from pathlib import Path

from openpyxl import load_workbook

from template_maestro.models import (
    ConditionalFormatSpec,
    DataValidationSpec,
    SheetData,
    TemplateError,
    WorkbookData,
)

logger = logging.getLogger(__name__)

WORKBOOK_FORMATS = {".xlsx", ".xlsm"}


def cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.strftime("%m/%d/%Y")
        return value.strftime("%m/%d/%Y %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _color(obj) -> str | None:
    rgb = getattr(obj, "rgb", None)
    return rgb if isinstance(rgb, str) else None


def _rule_style(rule) -> dict:
    dxf = getattr(rule, "dxf", None)
    if dxf is None:
        return {"fillColor": None, "fontColor": None}
    fill = getattr(dxf, "fill", None)
    font = getattr(dxf, "font", None)
    fill_color = None
    if fill is not None:
        fill_color = _color(getattr(fill, "fgColor", None)) or _color(getattr(fill, "bgColor", None))
    font_color = _color(getattr(font, "color", None)) if font is not None else None
    return {"fillColor": fill_color, "fontColor": font_color}


def _data_validations(ws) -> list[DataValidationSpec]:
    specs = []
    for dv in ws.data_validations.dataValidation:
        specs.append(
            DataValidationSpec(
                sqref=str(dv.sqref),
                kind=dv.type,
                formula1=dv.formula1,
                formula2=dv.formula2,
                allow_blank=bool(dv.allow_blank),
                operator=dv.operator,
                error=dv.error,
                error_title=dv.errorTitle,
                prompt=dv.prompt,
                prompt_title=dv.promptTitle,
            )
        )
    return specs


def _conditional_formats(ws) -> list[ConditionalFormatSpec]:
    specs = []
    for cf in ws.conditional_formatting:
        for rule in cf.rules:
            specs.append(
                ConditionalFormatSpec(
                    sqref=str(cf.sqref),
                    formulas=[str(f) for f in (rule.formula or [])],
                    kind=rule.type,
                    priority=rule.priority,
                    style=_rule_style(rule),
                )
            )
    return specs


def sheet_from_worksheet(ws) -> SheetData:
    grid = [list(row) for row in ws.iter_rows(values_only=True)]
    return SheetData(
        name=ws.title,
        grid=grid,
        data_validations=_data_validations(ws),
        conditional_formats=_conditional_formats(ws),
    )


def read_workbook(path: "str | Path") -> WorkbookData:
    """
    Read every sheet of an .xlsx/.xlsm template workbook.

    Raises:
        FileNotFoundError  if the file does not exist.
        TemplateError      if the workbook cannot be opened or has no sheets.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in WORKBOOK_FORMATS:
        raise TemplateError(
            f"Unsupported template format '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(WORKBOOK_FORMATS))}"
        )
    try:
        wb = load_workbook(path, data_only=True, keep_vba=suffix == ".xlsm")
    except Exception as exc:
        raise TemplateError(f"Could not read workbook: {exc}") from exc
    try:
        sheets = [sheet_from_worksheet(ws) for ws in wb.worksheets]
    finally:
        wb.close()
    if not sheets:
        raise TemplateError(f"Workbook has no sheets: {path}")
    logger.debug("Read %d sheet(s) from %s", len(sheets), path)
    return WorkbookData(sheets=sheets)
