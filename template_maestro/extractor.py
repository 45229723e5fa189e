"""
extractor.py — Build a Template from a provider-supplied template workbook.

Public API:
    template = extract_template(workbook_data, name="Vendor Import")
    template = extract_template_file("path/to/template.xlsx")
    summary  = summarize_template(template)

The main sheet supplies the columns: row 1 holds the headers (optionally
"FieldName<3+ spaces>Description"), row 2 the requirement markers. Data
validations overlay column types and allowed values, conditional formats
supply conditional requirements, and lookup-like sheets become lookup tables.
Extraction is best effort: anything not understood is logged and skipped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from openpyxl.utils import column_index_from_string, get_column_letter, range_boundaries

from template_maestro.contracts import utc_now_iso
from template_maestro.formulas import interpret_formulas
from template_maestro.models import (
    ColumnRule,
    Condition,
    ConditionalFormatSpec,
    ConditionalRequirement,
    CrossFieldRule,
    DataValidationSpec,
    LookupTable,
    Requirement,
    SheetData,
    Template,
    TemplateError,
    ValidationDescriptor,
    WorkbookData,
    canonical_name,
)
from template_maestro.workbook import cell_text, read_workbook

logger = logging.getLogger(__name__)

MAIN_SHEET_SKIP = ("help", "table", "lookup", "codes", "list", "reference", "instructions")
LOOKUP_SHEET_HINTS = ("table", "lookup", "codes", "list")

HEADER_SPLIT_RE = re.compile(r"\s{3,}|\t")
CODE_RE = re.compile(r"([A-Z0-9]+)\s*=")
DATE_HINT_RE = re.compile(r"mm/dd/yyyy|mm-dd-yyyy|dd/mm/yyyy|yyyy-mm-dd|\bdate\b", re.IGNORECASE)
QUOTED_LIST_RE = re.compile(r'^"(.*)"$', re.DOTALL)
RANGE_REFERENCE_RE = re.compile(
    r"^(?:'((?:[^']|'')+)'|([^!'\"]+))!\$?([A-Z]{1,3})\$?\d*(?::\$?([A-Z]{1,3})\$?\d*)?$"
)

VALIDATION_KINDS = {
    "list": "list",
    "whole": "integer",
    "decimal": "decimal",
    "date": "date",
    "textLength": "text",
    "time": "time",
    "custom": "custom",
}

PLAIN_REQUIREMENT_TOKENS = {"", "required", "optional", "conditional"}

EITHER_OR_NAME = "Name Requirement"
EITHER_OR_DESCRIPTION = "Either (First Name + Last Name) OR Owner Name is required"
DEPENDENT_NAME = "Country/State Dependency"
DEPENDENT_DESCRIPTION = "Country is required when State/Province is provided"


# ══════════════════════════════════════════════════════════════════════════
# SHEETS
# ══════════════════════════════════════════════════════════════════════════

def find_main_sheet(sheet_names: list[str]) -> str:
    if not sheet_names:
        raise TemplateError("Workbook has no sheets.")
    for name in sheet_names:
        lower = name.lower()
        if not any(hint in lower for hint in MAIN_SHEET_SKIP):
            return name
    return sheet_names[0]


def is_lookup_sheet(sheet_name: str) -> bool:
    lower = sheet_name.lower()
    return any(hint in lower for hint in LOOKUP_SHEET_HINTS)


def parse_lookup_table(sheet: SheetData) -> LookupTable:
    rows = [[cell_text(value) for value in row] for row in sheet.grid]
    if len(rows) < 2:
        return LookupTable(headers=rows[0] if rows else [])
    headers = rows[0]
    values = [row for row in rows[1:] if any(cell for cell in row)]
    key_to_value: dict[str, str] = {}
    if len(headers) >= 2:
        for row in values:
            key = row[0] if row else ""
            if key:
                label = row[1] if len(row) > 1 and row[1] else key
                key_to_value[key.upper()] = label
    return LookupTable(headers=headers, rows=values, key_to_value=key_to_value)


# ══════════════════════════════════════════════════════════════════════════
# COLUMNS
# ══════════════════════════════════════════════════════════════════════════

def split_header(header: str) -> tuple[str, str]:
    """Return ``(field_name, description)``; enumeration headers are kept whole."""
    text = header.strip()
    if "=" in text:
        return text, ""
    parts = [part.strip() for part in HEADER_SPLIT_RE.split(text) if part.strip()]
    if len(parts) >= 2:
        return parts[0], " ".join(parts[1:])
    return text, ""


def extract_codes(text: str) -> list[str]:
    codes: list[str] = []
    for code in CODE_RE.findall(text):
        if code not in codes:
            codes.append(code)
    return codes


def detect_date_format(text: str) -> tuple[bool, str | None]:
    match = DATE_HINT_RE.search(text)
    if not match:
        return False, None
    token = match.group(0)
    if token.lower() == "date":
        return True, None
    return True, token.upper()


def parse_requirement(text: str) -> tuple[Requirement, str]:
    raw = text.strip()
    lower = raw.lower()
    note = "" if lower in PLAIN_REQUIREMENT_TOKENS else raw
    # "required" wins unless the text also says "conditional"; "optional"
    # wins over "one of"/"either".
    if "conditional" in lower:
        return Requirement.CONDITIONAL, note
    if "required" in lower or "mandatory" in lower:
        return Requirement.REQUIRED, note
    if "optional" in lower or not lower:
        return Requirement.OPTIONAL, note
    if "one of" in lower or "either" in lower:
        return Requirement.CONDITIONAL, note
    return Requirement.OPTIONAL, note


def parse_columns(sheet: SheetData) -> list[ColumnRule]:
    columns: list[ColumnRule] = []
    header_row = sheet.grid[0] if sheet.grid else []
    for col_idx in range(len(header_row)):
        header = cell_text(header_row[col_idx])
        if not header:
            continue
        field_name, description = split_header(header)
        requirement, note = parse_requirement(cell_text(sheet.cell(1, col_idx)))
        column = ColumnRule(
            index=col_idx + 1,
            column_letter=get_column_letter(col_idx + 1),
            field_name=field_name,
            description=description,
            requirement=requirement,
            full_header=header,
            requirement_note=note,
        )
        codes = extract_codes(header) if "=" in header else []
        if codes:
            column.type = "list"
            column.allowed_values = codes
        else:
            is_date, date_format = detect_date_format(f"{field_name} {description}")
            if is_date:
                column.type = "date"
                column.date_format = date_format
        columns.append(column)
    if not columns:
        raise TemplateError(f"Sheet '{sheet.name}' has no header cells in row 1.")
    return columns


# ══════════════════════════════════════════════════════════════════════════
# DATA VALIDATION OVERLAY
# ══════════════════════════════════════════════════════════════════════════

def sqref_columns(sqref: str) -> list[str]:
    """Column letters touched by a space-separated range list such as ``"A2:B50 D2"``."""
    letters: list[str] = []
    for token in str(sqref or "").split():
        try:
            min_col, _, max_col, _ = range_boundaries(token)
        except (TypeError, ValueError):
            logger.warning("Skipping unreadable range %r", token)
            continue
        if min_col is None:
            continue
        for col_idx in range(min_col, (max_col or min_col) + 1):
            letter = get_column_letter(col_idx)
            if letter not in letters:
                letters.append(letter)
    return letters


def parse_list_formula(formula: str | None) -> list[str] | None:
    if not formula:
        return None
    match = QUOTED_LIST_RE.match(formula.strip())
    if not match:
        return None
    return [value.strip() for value in match.group(1).split(",")]


def resolve_list_reference(formula: str | None, lookup_tables: dict[str, LookupTable]) -> list[str] | None:
    """Read list values from a ``Sheet!$A$2:$A$50`` reference when that sheet is a parsed lookup table."""
    if not formula:
        return None
    text = formula.strip().lstrip("=")
    match = RANGE_REFERENCE_RE.match(text)
    if not match:
        logger.info("List validation source %r is not a sheet range reference; kept verbatim", formula)
        return None
    sheet_name = (match.group(1) or match.group(2)).replace("''", "'").strip()
    table = lookup_tables.get(sheet_name)
    if table is None:
        logger.info("List validation source %r references an unparsed sheet; kept verbatim", formula)
        return None
    column = column_index_from_string(match.group(3)) - 1
    values = table.column_values(column)
    return values or None


def max_length_from(spec: DataValidationSpec) -> int | None:
    try:
        first = int(float(spec.formula1)) if spec.formula1 else None
        second = int(float(spec.formula2)) if spec.formula2 else None
    except ValueError:
        return None
    operator = spec.operator or "between"
    if operator == "between":
        return second
    if operator == "lessThanOrEqual":
        return first
    if operator == "lessThan" and first is not None:
        return first - 1
    return None


def validation_record(spec: DataValidationSpec, allowed: list[str] | None) -> dict:
    return {
        "ranges": str(spec.sqref).split(),
        "columns": sqref_columns(spec.sqref),
        "type": spec.kind or "any",
        "allowBlank": spec.allow_blank,
        "operator": spec.operator,
        "formula1": spec.formula1,
        "formula2": spec.formula2,
        "allowedValues": allowed,
        "errorTitle": spec.error_title,
        "errorMessage": spec.error,
        "promptTitle": spec.prompt_title,
        "promptMessage": spec.prompt,
    }


def apply_data_validations(
    columns: list[ColumnRule],
    validations: list[DataValidationSpec],
    lookup_tables: dict[str, LookupTable],
) -> list[dict]:
    by_letter = {column.column_letter: column for column in columns}
    records = []
    for spec in validations:
        kind = spec.kind or "any"
        column_type = VALIDATION_KINDS.get(kind)
        if column_type is None:
            if kind != "any":
                logger.warning("Unknown data-validation kind %r on %s; treating as text", kind, spec.sqref)
            column_type = "text"

        allowed = None
        if kind == "list":
            allowed = parse_list_formula(spec.formula1)
            if allowed is None:
                allowed = resolve_list_reference(spec.formula1, lookup_tables)
        records.append(validation_record(spec, allowed))

        for letter in sqref_columns(spec.sqref):
            column = by_letter.get(letter)
            if column is None:
                continue
            column.type = column_type
            if allowed is not None:
                column.allowed_values = list(allowed)
            if kind == "textLength":
                length = max_length_from(spec)
                if length is not None and length > 0:
                    column.max_length = length
            column.validation = ValidationDescriptor(
                kind=kind,
                operator=spec.operator,
                formula1=spec.formula1,
                formula2=spec.formula2,
                allow_blank=spec.allow_blank,
                error_title=spec.error_title,
            )
    return records


# ══════════════════════════════════════════════════════════════════════════
# CONDITIONAL FORMAT OVERLAY
# ══════════════════════════════════════════════════════════════════════════

def apply_conditional_formats(columns: list[ColumnRule], formats: list[ConditionalFormatSpec]) -> list[dict]:
    by_letter = {column.column_letter: column for column in columns}
    records = []
    for spec in formats:
        interpretation = interpret_formulas(spec.formulas)
        records.append(
            {
                "range": spec.sqref,
                "type": spec.kind,
                "priority": spec.priority,
                "formulas": list(spec.formulas),
                "style": dict(spec.style),
                "interpretation": interpretation.to_dict() if interpretation else None,
            }
        )
        if interpretation is None:
            continue
        for letter in sqref_columns(spec.sqref):
            column = by_letter.get(letter)
            if column is None or column.requirement is not Requirement.CONDITIONAL:
                continue
            conditions = []
            for item in interpretation.conditions:
                if item.column == letter:
                    continue
                trigger = by_letter.get(item.column)
                if trigger is None:
                    logger.info("Condition on %s references column %s outside the template", letter, item.column)
                    continue
                conditions.append(Condition(field=trigger.field_name, operator=item.operator, value=item.value))
            if not conditions:
                continue
            if column.conditional_requirement is not None:
                logger.debug("Column %s already has a conditional requirement; ignoring %s", letter, spec.formulas)
                continue
            column.conditional_requirement = ConditionalRequirement(
                operator=interpretation.operator,
                conditions=conditions,
            )
    return records


# ══════════════════════════════════════════════════════════════════════════
# CROSS-FIELD RULES
# ══════════════════════════════════════════════════════════════════════════

def detect_complex_rules(columns: list[ColumnRule]) -> list[CrossFieldRule]:
    rules: list[CrossFieldRule] = []

    person = [c for c in columns if "firstname" in c.key or "lastname" in c.key]
    owner = [c for c in columns if "ownername" in c.key]
    if len(person) >= 2 and owner:
        if any(c.requirement is Requirement.CONDITIONAL for c in person + owner):
            rules.append(
                CrossFieldRule(
                    kind="either_or",
                    name=EITHER_OR_NAME,
                    description=EITHER_OR_DESCRIPTION,
                    groups=[[c.column_letter for c in person], [c.column_letter for c in owner]],
                )
            )

    state = next((c for c in columns if "state" in c.key or "province" in c.key), None)
    country = next((c for c in columns if "country" in c.key and "citizenship" not in c.key), None)
    if state and country and state is not country and country.requirement is Requirement.CONDITIONAL:
        rules.append(
            CrossFieldRule(
                kind="dependent",
                name=DEPENDENT_NAME,
                description=DEPENDENT_DESCRIPTION,
                trigger=state.column_letter,
                dependent=country.column_letter,
                condition="not_empty",
                severity="error",
            )
        )
    return rules


# ══════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════

def extract_template(workbook: WorkbookData, name: str | None = None) -> Template:
    if not workbook.sheets:
        raise TemplateError("Workbook has no sheets.")
    main_name = find_main_sheet(workbook.sheet_names)
    main = workbook.sheet(main_name)
    if main is None or not main.grid:
        raise TemplateError(f"Main sheet '{main_name}' is empty.")

    columns = parse_columns(main)
    lookup_tables = {
        sheet.name: parse_lookup_table(sheet)
        for sheet in workbook.sheets
        if sheet.name != main_name and is_lookup_sheet(sheet.name)
    }
    validations = apply_data_validations(columns, main.data_validations, lookup_tables)
    conditional_rules = apply_conditional_formats(columns, main.conditional_formats)

    for column in columns:
        if column.requirement is Requirement.CONDITIONAL and column.conditional_requirement is None:
            logger.info("Conditional column '%s' has no machine-checkable conditions", column.field_name)

    template = Template(
        name=name or main_name,
        columns=columns,
        lookup_tables=lookup_tables,
        complex_rules=detect_complex_rules(columns),
        metadata={
            "extractedAt": utc_now_iso(),
            "sheetCount": len(workbook.sheets),
            "sheets": workbook.sheet_names,
            "mainSheet": main_name,
        },
        data_validations=validations,
        conditional_rules=conditional_rules,
    )
    logger.debug(
        "Extracted %d column(s), %d lookup table(s), %d complex rule(s) from '%s'",
        len(template.columns),
        len(template.lookup_tables),
        len(template.complex_rules),
        main_name,
    )
    return template


def extract_template_file(path: "str | Path", name: str | None = None) -> Template:
    path = Path(path)
    return extract_template(read_workbook(path), name=name or path.stem)


def summarize_template(template: Template) -> dict[str, int]:
    columns = template.columns
    return {
        "totalColumns": len(columns),
        "requiredColumns": sum(1 for c in columns if c.requirement is Requirement.REQUIRED),
        "conditionalColumns": sum(1 for c in columns if c.requirement is Requirement.CONDITIONAL),
        "optionalColumns": sum(1 for c in columns if c.requirement is Requirement.OPTIONAL),
        "columnsWithValidation": sum(1 for c in columns if c.validation is not None),
        "listValidations": sum(1 for c in columns if c.type == "list"),
        "dateValidations": sum(1 for c in columns if c.type == "date"),
        "lookupTables": len(template.lookup_tables),
        "complexRules": len(template.complex_rules),
    }
