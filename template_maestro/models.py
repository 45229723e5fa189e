"""Template, dataset, and workbook data structures shared by every engine.

The persisted Template JSON keeps camelCase keys so that an extracted template
can be edited elsewhere and imported back without loss.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__all__ = [
    "AutoFixSettings",
    "CellIssue",
    "CellMeta",
    "ColumnRule",
    "Condition",
    "ConditionOperator",
    "ConditionalFormatSpec",
    "ConditionalRequirement",
    "CrossFieldRule",
    "DataValidationSpec",
    "ExportSettings",
    "FormatExportSettings",
    "LookupTable",
    "Requirement",
    "Row",
    "SheetData",
    "Status",
    "Template",
    "TemplateError",
    "ValidationDescriptor",
    "WorkbookData",
    "canonical_name",
    "is_empty",
    "template_from_json",
    "template_to_json",
]

COLUMN_TYPES = (
    "text",
    "list",
    "integer",
    "whole",
    "decimal",
    "number",
    "date",
    "datetime",
    "currency",
    "time",
    "custom",
)
NUMERIC_TYPES = frozenset({"number", "decimal", "integer", "whole", "currency"})
INTEGER_TYPES = frozenset({"integer", "whole"})
REAL_TYPES = frozenset({"decimal", "number"})
DATE_TYPES = frozenset({"date", "datetime"})

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


class TemplateError(ValueError):
    """Raised for malformed template input: empty workbook, no headers, bad JSON."""


def canonical_name(name: object) -> str:
    return _NON_ALNUM_RE.sub("", str(name or "").lower())


def is_empty(value: object) -> bool:
    return value is None or str(value).strip() == ""


class Requirement(str, Enum):
    REQUIRED = "required"
    CONDITIONAL = "conditional"
    OPTIONAL = "optional"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ConditionOperator(str, Enum):
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"

    @property
    def needs_value(self) -> bool:
        return self not in (ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY)


class Status(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def worst(cls, statuses) -> "Status":
        result = cls.PENDING
        for status in statuses:
            if status.severity > result.severity:
                result = status
        return result


_SEVERITY = {Status.PENDING: 0, Status.VALID: 1, Status.WARNING: 2, Status.ERROR: 3}


# ══════════════════════════════════════════════════════════════════════════
# RULE MODEL
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class Condition:
    field: str
    operator: ConditionOperator
    value: str | None = None

    def __post_init__(self) -> None:
        self.operator = ConditionOperator(self.operator)
        if self.operator.needs_value and self.value is None:
            raise TemplateError(f"Condition on '{self.field}' with operator {self.operator.value} needs a value")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"field": self.field, "operator": self.operator.value}
        if self.value is not None:
            payload["value"] = self.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Condition":
        try:
            return cls(field=str(payload["field"]), operator=payload["operator"], value=payload.get("value"))
        except (KeyError, ValueError) as exc:
            raise TemplateError(f"Invalid condition {payload!r}: {exc}") from exc


@dataclass
class ConditionalRequirement:
    operator: str = "AND"
    conditions: list[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.operator = str(self.operator or "AND").upper()
        if self.operator not in ("AND", "OR"):
            raise TemplateError(f"Conditional requirement operator must be AND or OR, got {self.operator!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"operator": self.operator, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ConditionalRequirement":
        return cls(
            operator=payload.get("operator") or "AND",
            conditions=[Condition.from_dict(item) for item in payload.get("conditions") or []],
        )


@dataclass
class ValidationDescriptor:
    """The data-validation overlay that last touched a column."""

    kind: str
    operator: str | None = None
    formula1: str | None = None
    formula2: str | None = None
    allow_blank: bool = True
    error_title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "operator": self.operator,
            "formula1": self.formula1,
            "formula2": self.formula2,
            "allowBlank": self.allow_blank,
            "errorTitle": self.error_title,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ValidationDescriptor":
        return cls(
            kind=payload.get("type") or "any",
            operator=payload.get("operator"),
            formula1=payload.get("formula1"),
            formula2=payload.get("formula2"),
            allow_blank=payload.get("allowBlank", True) is not False,
            error_title=payload.get("errorTitle"),
        )


@dataclass
class ColumnRule:
    index: int
    column_letter: str
    field_name: str
    description: str = ""
    type: str = "text"
    requirement: Requirement = Requirement.OPTIONAL
    allowed_values: list[str] | None = None
    max_length: int | None = None
    date_format: str | None = None
    alternative_labels: dict[str, str] = field(default_factory=dict)
    conditional_requirement: ConditionalRequirement | None = None
    full_header: str = ""
    requirement_note: str = ""
    validation: ValidationDescriptor | None = None

    def __post_init__(self) -> None:
        self.requirement = Requirement(self.requirement)
        if self.type not in COLUMN_TYPES:
            raise TemplateError(f"Unknown column type {self.type!r} for '{self.field_name}'")
        if self.max_length is not None and int(self.max_length) <= 0:
            raise TemplateError(f"maxLength must be positive for '{self.field_name}'")

    @property
    def key(self) -> str:
        return canonical_name(self.field_name)

    @property
    def conditions(self) -> list[Condition]:
        if self.conditional_requirement is None:
            return []
        return self.conditional_requirement.conditions

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "columnLetter": self.column_letter,
            "fieldName": self.field_name,
            "description": self.description,
            "fullHeader": self.full_header,
            "type": self.type,
            "requirement": self.requirement.value,
            "requirementNote": self.requirement_note,
            "allowedValues": list(self.allowed_values) if self.allowed_values is not None else None,
            "maxLength": self.max_length,
            "dateFormat": self.date_format,
            "alternativeLabels": dict(self.alternative_labels),
            "conditionalRequirement": (
                self.conditional_requirement.to_dict() if self.conditional_requirement else None
            ),
            "validation": self.validation.to_dict() if self.validation else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ColumnRule":
        try:
            conditional = payload.get("conditionalRequirement")
            validation = payload.get("validation")
            allowed = payload.get("allowedValues")
            return cls(
                index=int(payload["index"]),
                column_letter=str(payload["columnLetter"]),
                field_name=str(payload["fieldName"]),
                description=payload.get("description") or "",
                type=payload.get("type") or "text",
                requirement=payload.get("requirement") or "optional",
                allowed_values=[str(v) for v in allowed] if isinstance(allowed, list) else None,
                max_length=payload.get("maxLength"),
                date_format=payload.get("dateFormat"),
                alternative_labels={str(k): str(v) for k, v in (payload.get("alternativeLabels") or {}).items()},
                conditional_requirement=ConditionalRequirement.from_dict(conditional) if conditional else None,
                full_header=payload.get("fullHeader") or "",
                requirement_note=payload.get("requirementNote") or "",
                validation=ValidationDescriptor.from_dict(validation) if validation else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, TemplateError):
                raise
            raise TemplateError(f"Invalid column rule {payload.get('fieldName', payload)!r}: {exc}") from exc


@dataclass
class LookupTable:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    key_to_value: dict[str, str] = field(default_factory=dict)

    def column_values(self, column: int) -> list[str]:
        return [row[column] for row in self.rows if column < len(row) and not is_empty(row[column])]

    def to_dict(self) -> dict[str, Any]:
        return {"headers": list(self.headers), "rows": [list(r) for r in self.rows], "keyToValue": dict(self.key_to_value)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LookupTable":
        return cls(
            headers=[str(h) for h in payload.get("headers") or []],
            rows=[[str(c) for c in row] for row in payload.get("rows") or []],
            key_to_value={str(k): str(v) for k, v in (payload.get("keyToValue") or {}).items()},
        )


@dataclass
class CrossFieldRule:
    kind: str
    name: str = ""
    description: str = ""
    groups: list[list[str]] = field(default_factory=list)
    trigger: str | None = None
    dependent: str | None = None
    condition: str = "not_empty"
    severity: str = "error"

    def __post_init__(self) -> None:
        if self.kind not in ("either_or", "dependent"):
            raise TemplateError(f"Unknown complex rule type {self.kind!r}")
        if self.severity not in ("error", "warning"):
            raise TemplateError(f"Complex rule severity must be error or warning, got {self.severity!r}")
        if self.kind == "dependent" and (not self.trigger or not self.dependent):
            raise TemplateError("Dependent rule needs both trigger and dependent columns")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.kind,
            "name": self.name,
            "description": self.description,
            "severity": self.severity,
        }
        if self.kind == "either_or":
            payload["groups"] = [list(g) for g in self.groups]
        else:
            payload.update({"trigger": self.trigger, "dependent": self.dependent, "condition": self.condition})
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CrossFieldRule":
        return cls(
            kind=payload.get("type") or "",
            name=payload.get("name") or "",
            description=payload.get("description") or "",
            groups=[[str(c) for c in group] for group in payload.get("groups") or []],
            trigger=payload.get("trigger"),
            dependent=payload.get("dependent"),
            condition=payload.get("condition") or "not_empty",
            severity=payload.get("severity") or "error",
        )


# ══════════════════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════════════════

_AUTO_FIX_KEYS = {
    "trim_whitespace": "trimWhitespace",
    "normalize_line_breaks": "normalizeLineBreaks",
    "remove_special_chars": "removeSpecialChars",
    "uppercase_country_codes": "uppercaseCountryCodes",
    "title_case_names": "titleCaseNames",
    "remove_currency_symbols": "removeCurrencySymbols",
    "standardize_dates": "standardizeDates",
    "remove_thousand_separators": "removeThousandSeparators",
}


@dataclass
class AutoFixSettings:
    trim_whitespace: bool = True
    normalize_line_breaks: bool = False
    remove_special_chars: bool = True
    uppercase_country_codes: bool = False
    title_case_names: bool = False
    remove_currency_symbols: bool = False
    standardize_dates: bool = False
    remove_thousand_separators: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {camel: bool(getattr(self, attr)) for attr, camel in _AUTO_FIX_KEYS.items()}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "AutoFixSettings":
        settings = cls()
        for attr, camel in _AUTO_FIX_KEYS.items():
            for key in (camel, attr):
                if payload and key in payload:
                    setattr(settings, attr, bool(payload[key]))
                    break
        return settings


@dataclass
class FormatExportSettings:
    filename_pattern: str = "{template}_{date}"
    include_header: bool = True
    include_requirement: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "filenamePattern": self.filename_pattern,
            "includeHeader": self.include_header,
            "includeRequirement": self.include_requirement,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "FormatExportSettings":
        payload = payload or {}
        return cls(
            filename_pattern=payload.get("filenamePattern") or "{template}_{date}",
            include_header=payload.get("includeHeader", True) is not False,
            include_requirement=payload.get("includeRequirement", True) is not False,
        )


@dataclass
class ExportSettings:
    xlsx: FormatExportSettings = field(default_factory=FormatExportSettings)
    txt: FormatExportSettings = field(default_factory=FormatExportSettings)
    include_status: bool = False

    def for_format(self, fmt: str) -> FormatExportSettings:
        return self.txt if fmt == "txt" else self.xlsx

    def to_dict(self) -> dict[str, Any]:
        return {"xlsx": self.xlsx.to_dict(), "txt": self.txt.to_dict(), "includeStatus": self.include_status}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ExportSettings":
        payload = payload or {}
        return cls(
            xlsx=FormatExportSettings.from_dict(payload.get("xlsx")),
            txt=FormatExportSettings.from_dict(payload.get("txt")),
            include_status=bool(payload.get("includeStatus", False)),
        )


# ══════════════════════════════════════════════════════════════════════════
# TEMPLATE
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class Template:
    name: str = "Template"
    columns: list[ColumnRule] = field(default_factory=list)
    lookup_tables: dict[str, LookupTable] = field(default_factory=dict)
    complex_rules: list[CrossFieldRule] = field(default_factory=list)
    auto_fix_settings: AutoFixSettings = field(default_factory=AutoFixSettings)
    export_settings: ExportSettings = field(default_factory=ExportSettings)
    metadata: dict[str, Any] = field(default_factory=dict)
    data_validations: list[dict[str, Any]] = field(default_factory=list)
    conditional_rules: list[dict[str, Any]] = field(default_factory=list)

    @property
    def field_names(self) -> list[str]:
        return [column.field_name for column in self.columns]

    def columns_by_key(self) -> dict[str, ColumnRule]:
        index: dict[str, ColumnRule] = {}
        for column in self.columns:
            index.setdefault(column.key, column)
        return index

    def columns_by_letter(self) -> dict[str, ColumnRule]:
        return {column.column_letter: column for column in self.columns}

    def column(self, name: str) -> ColumnRule | None:
        return self.columns_by_key().get(canonical_name(name))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": [column.to_dict() for column in self.columns],
            "lookupTables": {name: table.to_dict() for name, table in self.lookup_tables.items()},
            "complexRules": [rule.to_dict() for rule in self.complex_rules],
            "autoFixSettings": self.auto_fix_settings.to_dict(),
            "exportSettings": self.export_settings.to_dict(),
            "metadata": dict(self.metadata),
            "dataValidations": list(self.data_validations),
            "conditionalRules": list(self.conditional_rules),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Template":
        if not isinstance(payload, dict):
            raise TemplateError("Template root must be a JSON object.")
        columns = payload.get("columns")
        if not isinstance(columns, list):
            raise TemplateError("Template must define a 'columns' list.")
        return cls(
            name=payload.get("name") or "Template",
            columns=[ColumnRule.from_dict(item) for item in columns],
            lookup_tables={
                str(name): LookupTable.from_dict(table)
                for name, table in (payload.get("lookupTables") or {}).items()
            },
            complex_rules=[CrossFieldRule.from_dict(item) for item in payload.get("complexRules") or []],
            auto_fix_settings=AutoFixSettings.from_dict(payload.get("autoFixSettings")),
            export_settings=ExportSettings.from_dict(payload.get("exportSettings")),
            metadata=dict(payload.get("metadata") or {}),
            data_validations=list(payload.get("dataValidations") or []),
            conditional_rules=list(payload.get("conditionalRules") or []),
        )


def template_to_json(template: Template) -> str:
    return json.dumps(template.to_dict(), indent=2, ensure_ascii=False)


def template_from_json(text: str) -> Template:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TemplateError(f"Invalid template JSON: {exc}") from exc
    return Template.from_dict(payload)


# ══════════════════════════════════════════════════════════════════════════
# DATASET
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class CellIssue:
    kind: str
    severity: str
    message: str


@dataclass
class CellMeta:
    original_value: str = ""
    current_value: str = ""
    is_modified: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    validation_status: Status = Status.PENDING
    can_auto_fix: bool = False
    conditional_triggered: bool = False
    suggested_fix: str | None = None
    issues: list[CellIssue] = field(default_factory=list)

    def reset(self) -> None:
        self.errors = []
        self.warnings = []
        self.issues = []
        self.validation_status = Status.PENDING
        self.can_auto_fix = False
        self.conditional_triggered = False
        self.suggested_fix = None

    def add_error(self, kind: str, message: str) -> None:
        self.errors.append(message)
        self.issues.append(CellIssue(kind, "error", message))
        self.validation_status = Status.ERROR

    def add_note(self, kind: str, message: str) -> None:
        """Record an informational finding; the cell status is left as it is."""
        self.warnings.append(message)
        self.issues.append(CellIssue(kind, "info", message))

    def add_warning(self, kind: str, message: str, suggested_fix: str | None = None) -> None:
        self.warnings.append(message)
        self.issues.append(CellIssue(kind, "warning", message))
        if suggested_fix is not None:
            self.can_auto_fix = True
            if self.suggested_fix is None:
                self.suggested_fix = suggested_fix
        if self.validation_status is not Status.ERROR:
            self.validation_status = Status.WARNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalValue": self.original_value,
            "currentValue": self.current_value,
            "isModified": self.is_modified,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "validationStatus": self.validation_status.value,
            "canAutoFix": self.can_auto_fix,
            "conditionalTriggered": self.conditional_triggered,
            "suggestedFix": self.suggested_fix,
        }


@dataclass
class Row:
    row_index: int
    data: dict[str, str]
    metadata: dict[str, CellMeta] = field(default_factory=dict)
    row_status: Status = Status.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "rowIndex": self.row_index,
            "data": dict(self.data),
            "metadata": {name: meta.to_dict() for name, meta in self.metadata.items()},
            "rowStatus": self.row_status.value,
        }


# ══════════════════════════════════════════════════════════════════════════
# WORKBOOK INPUT (decoded by template_maestro.workbook)
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class DataValidationSpec:
    sqref: str
    kind: str | None = None
    formula1: str | None = None
    formula2: str | None = None
    allow_blank: bool = True
    operator: str | None = None
    error: str | None = None
    error_title: str | None = None
    prompt: str | None = None
    prompt_title: str | None = None


@dataclass
class ConditionalFormatSpec:
    sqref: str
    formulas: list[str] = field(default_factory=list)
    kind: str | None = "expression"
    priority: int | None = None
    style: dict[str, Any] = field(default_factory=dict)


@dataclass
class SheetData:
    name: str
    grid: list[list[Any]] = field(default_factory=list)
    data_validations: list[DataValidationSpec] = field(default_factory=list)
    conditional_formats: list[ConditionalFormatSpec] = field(default_factory=list)

    def cell(self, row: int, column: int) -> Any:
        """Zero-based cell access that tolerates ragged grids."""
        if row >= len(self.grid):
            return None
        values = self.grid[row]
        if column >= len(values):
            return None
        return values[column]

    @property
    def width(self) -> int:
        return max((len(r) for r in self.grid), default=0)


@dataclass
class WorkbookData:
    sheets: list[SheetData] = field(default_factory=list)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    def sheet(self, name: str) -> SheetData | None:
        return next((sheet for sheet in self.sheets if sheet.name == name), None)
