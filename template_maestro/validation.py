"""
validation.py — Cell- and row-level validation of a dataset against a Template.

Public API:
    stats = validate_dataset(rows, template)
    hit   = evaluate_requirement(column.conditional_requirement, row.data)

Every pass rewrites each CellMeta in full; nothing from an earlier pass
survives except the value itself. Findings are messages on CellMeta, never
exceptions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from template_maestro import taxonomy
from template_maestro.autofix import (
    check_fixability,
    is_country_code_column,
    is_integer,
    is_number,
    is_valid_for_type,
    normalize_line_breaks,
    suggest_list_value,
)
from template_maestro.contracts import utc_now_iso
from template_maestro.dates import parse_date
from template_maestro.models import (
    DATE_TYPES,
    INTEGER_TYPES,
    NUMERIC_TYPES,
    CellMeta,
    ColumnRule,
    Condition,
    ConditionalRequirement,
    ConditionOperator,
    CrossFieldRule,
    Requirement,
    Row,
    Status,
    Template,
    canonical_name,
    is_empty,
)

logger = logging.getLogger(__name__)

INNER_WHITESPACE_RE = re.compile(r"\s{2,}")


@dataclass
class ValidationStats:
    total_rows: int = 0
    valid_rows: int = 0
    warning_rows: int = 0
    error_rows: int = 0
    pending_rows: int = 0
    total_cells: int = 0
    valid_cells: int = 0
    warning_cells: int = 0
    error_cells: int = 0
    total_errors: int = 0
    total_warnings: int = 0
    required_cells: int = 0
    required_filled: int = 0
    completion: float = 100.0
    trust_score: float = 0.0
    validated_at: str = ""
    issue_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "warningRows": self.warning_rows,
            "errorRows": self.error_rows,
            "pendingRows": self.pending_rows,
            "totalCells": self.total_cells,
            "validCells": self.valid_cells,
            "warningCells": self.warning_cells,
            "errorCells": self.error_cells,
            "totalErrors": self.total_errors,
            "totalWarnings": self.total_warnings,
            "requiredCells": self.required_cells,
            "requiredFilled": self.required_filled,
            "completion": self.completion,
            "trustScore": self.trust_score,
            "validatedAt": self.validated_at,
            "issueCounts": dict(self.issue_counts),
        }


# ══════════════════════════════════════════════════════════════════════════
# CONDITIONS
# ══════════════════════════════════════════════════════════════════════════

class CanonicalKeys(dict):
    """Field name -> canonical key, computed once per distinct name."""

    def __missing__(self, name: str) -> str:
        key = canonical_name(name)
        self[name] = key
        return key


def _text(value: object) -> str:
    return "" if value is None else str(value).strip()


def evaluate_condition(condition: Condition, values: dict[str, Any], keys: CanonicalKeys | None = None) -> bool:
    """``values`` is keyed by canonical field name."""
    field_key = keys[condition.field] if keys is not None else canonical_name(condition.field)
    actual = _text(values.get(field_key))
    expected = _text(condition.value)
    operator = condition.operator
    if operator is ConditionOperator.IS_EMPTY:
        return actual == ""
    if operator is ConditionOperator.IS_NOT_EMPTY:
        return actual != ""
    if operator is ConditionOperator.EQUALS:
        return actual.lower() == expected.lower()
    if operator is ConditionOperator.NOT_EQUALS:
        return actual.lower() != expected.lower()
    if operator is ConditionOperator.CONTAINS:
        return actual != "" and expected.lower() in actual.lower()
    raise ValueError(f"Unhandled condition operator: {operator}")


def evaluate_requirement(requirement: ConditionalRequirement | None, data: dict[str, Any]) -> bool:
    if requirement is None or not requirement.conditions:
        return False
    values = {canonical_name(name): value for name, value in data.items()}
    return _evaluate(requirement, values)


def _evaluate(requirement: ConditionalRequirement, values: dict[str, Any], keys: CanonicalKeys | None = None) -> bool:
    results = (evaluate_condition(condition, values, keys) for condition in requirement.conditions)
    if requirement.operator == "OR":
        return any(results)
    return all(results)


# ══════════════════════════════════════════════════════════════════════════
# CELL CHECKS
# ══════════════════════════════════════════════════════════════════════════

def _type_message(column_type: str) -> str:
    if column_type in DATE_TYPES:
        return taxonomy.MSG_INVALID_DATE
    if column_type in INTEGER_TYPES:
        return taxonomy.MSG_INVALID_INTEGER
    return taxonomy.MSG_INVALID_NUMBER


def _type_ok(value: str, column_type: str) -> bool:
    if column_type in DATE_TYPES:
        return parse_date(value) is not None
    if column_type in INTEGER_TYPES:
        return is_integer(value)
    if column_type in NUMERIC_TYPES:
        return is_number(value)
    return True


def check_type(meta: CellMeta, value: str, column: ColumnRule) -> None:
    if _type_ok(value, column.type):
        return
    message = _type_message(column.type)
    fixability = check_fixability(value, column)
    if fixability.can_fix and is_valid_for_type(fixability.fixed_value, column.type):
        meta.add_warning(taxonomy.AUTO_FIXABLE_TYPE, taxonomy.auto_fix_message(message), fixability.fixed_value)
    else:
        meta.add_error(taxonomy.INVALID_TYPE, message)


def check_list(meta: CellMeta, value: str, column: ColumnRule) -> None:
    allowed = column.allowed_values
    if column.type != "list" or not allowed:
        return
    trimmed = value.strip()
    if trimmed in allowed:
        return
    folded = trimmed.lower()
    match = next((candidate for candidate in allowed if candidate.strip().lower() == folded), None)
    if match is not None:
        if match == trimmed.upper() and is_country_code_column(column):
            message = taxonomy.auto_fix_message(taxonomy.case_mismatch_message(match))
            meta.add_warning(taxonomy.AUTO_FIXABLE_CASE, message, match)
        else:
            meta.add_warning(taxonomy.CASE_MISMATCH, taxonomy.case_mismatch_message(match), match)
        return
    suggestion = suggest_list_value(trimmed, column)
    if suggestion is not None:
        meta.add_warning(taxonomy.FUZZY_SUGGESTION, taxonomy.suggestion_message(suggestion), suggestion)
        return
    meta.add_error(taxonomy.INVALID_LIST_VALUE, taxonomy.MSG_INVALID_LIST_VALUE)


def check_max_length(meta: CellMeta, value: str, column: ColumnRule) -> None:
    if column.max_length is not None and len(value) > column.max_length:
        meta.add_error(taxonomy.EXCEEDS_MAX_LENGTH, taxonomy.exceeds_max_length_message(column.max_length))


def check_whitespace(meta: CellMeta, value: str) -> None:
    if value.strip() != value or INNER_WHITESPACE_RE.search(value):
        meta.add_warning(
            taxonomy.AUTO_FIXABLE_WHITESPACE,
            taxonomy.auto_fix_message(taxonomy.MSG_WHITESPACE),
            normalize_line_breaks(value),
        )


# ══════════════════════════════════════════════════════════════════════════
# PASS
# ══════════════════════════════════════════════════════════════════════════

class _Pass:
    """Per-pass working state: column index, once-only log guard, and row key lookup."""

    def __init__(self, template: Template, missing_columns: Iterable[str]) -> None:
        self.template = template
        self.keys = CanonicalKeys()
        self.columns = template.columns_by_key()
        self.column_keys = [(column, self.keys[column.field_name]) for column in template.columns]
        self.letters = template.columns_by_letter()
        self.missing = {self.keys[name] for name in missing_columns}
        self.logged_without_conditions: set[str] = set()

    def prepare_row(self, row: Row) -> dict[str, str]:
        """Make sure every template field has a data value and a CellMeta; return canonical key -> row key."""
        keys = {self.keys[name]: name for name in row.data}
        for column, key in self.column_keys:
            if key not in keys:
                row.data[column.field_name] = ""
                keys[key] = column.field_name
        for name, value in row.data.items():
            text = "" if value is None else str(value)
            meta = row.metadata.get(name)
            if meta is None:
                meta = CellMeta(original_value=text)
                row.metadata[name] = meta
            meta.reset()
            meta.current_value = text
            meta.is_modified = text != meta.original_value
        return keys

    def validate_cell(self, row: Row, name: str, values: dict[str, Any]) -> None:
        meta = row.metadata[name]
        value = meta.current_value
        key = self.keys[name]
        column = self.columns.get(key)
        if column is None:
            meta.validation_status = Status.VALID
            return

        if key in self.missing:
            meta.add_note(taxonomy.COLUMN_NOT_FOUND, taxonomy.MSG_COLUMN_NOT_FOUND)

        empty = is_empty(value)
        if column.requirement is Requirement.REQUIRED:
            if empty:
                meta.add_error(taxonomy.REQUIRED_MISSING, taxonomy.MSG_REQUIRED_MISSING)
        elif column.requirement is Requirement.CONDITIONAL:
            requirement = column.conditional_requirement
            if requirement is not None and requirement.conditions:
                triggered = _evaluate(requirement, values, self.keys)
                meta.conditional_triggered = triggered
                if triggered and empty:
                    meta.add_error(
                        taxonomy.CONDITIONALLY_REQUIRED_MISSING,
                        taxonomy.MSG_CONDITIONALLY_REQUIRED_MISSING,
                    )
            elif key not in self.logged_without_conditions:
                self.logged_without_conditions.add(key)
                logger.debug("Conditional column '%s' has no conditions defined; skipping", column.field_name)

        if not empty:
            for check in (check_type, check_list, check_max_length):
                if meta.validation_status is Status.ERROR:
                    break
                check(meta, value, column)
            check_whitespace(meta, value)

        if meta.validation_status is Status.PENDING:
            meta.validation_status = Status.VALID

    def apply_complex_rule(self, rule: CrossFieldRule, row: Row, keys: dict[str, str]) -> None:
        def field_of(letter: str | None) -> str | None:
            column = self.letters.get(letter or "")
            return keys.get(column.key) if column else None

        message = rule.description or rule.name
        if rule.kind == "either_or":
            groups = [[f for f in (field_of(letter) for letter in group) if f] for group in rule.groups]
            groups = [group for group in groups if group]
            if not groups:
                return
            satisfied = any(all(not is_empty(row.data.get(name)) for name in group) for group in groups)
            if satisfied:
                return
            for group in groups:
                for name in group:
                    row.metadata[name].add_error(taxonomy.COMPLEX_RULE_VIOLATED, message)
            return

        trigger = field_of(rule.trigger)
        dependent = field_of(rule.dependent)
        if trigger is None or dependent is None:
            return
        if not is_empty(row.data.get(trigger)) and is_empty(row.data.get(dependent)):
            meta = row.metadata[dependent]
            if rule.severity == "warning":
                meta.add_warning(taxonomy.COMPLEX_RULE_VIOLATED, message)
            else:
                meta.add_error(taxonomy.COMPLEX_RULE_VIOLATED, message)


def validate_row(row: Row, template: Template, missing_columns: Iterable[str] = ()) -> Row:
    run = _Pass(template, missing_columns)
    _validate_row(run, row)
    return row


def _validate_row(run: _Pass, row: Row) -> None:
    keys = run.prepare_row(row)
    values = {run.keys[name]: value for name, value in row.data.items()}
    for name in row.data:
        run.validate_cell(row, name, values)
    for rule in run.template.complex_rules:
        run.apply_complex_rule(rule, row, keys)
    if row.metadata:
        row.row_status = Status.worst(meta.validation_status for meta in row.metadata.values())
    else:
        row.row_status = Status.PENDING


def validate_dataset(rows: list[Row], template: Template, missing_columns: Iterable[str] = ()) -> ValidationStats:
    """
    Validate every row in place and return the derived stats.

    ``missing_columns`` names template fields the upload did not contain; those
    cells carry an informational note in their warnings.
    """
    run = _Pass(template, missing_columns)
    for row in rows:
        _validate_row(run, row)
    stats = compute_stats(rows, template, run.keys)
    logger.debug(
        "Validated %d row(s): %d valid, %d warning, %d error",
        stats.total_rows,
        stats.valid_rows,
        stats.warning_rows,
        stats.error_rows,
    )
    return stats


def compute_stats(rows: list[Row], template: Template, keys: CanonicalKeys | None = None) -> ValidationStats:
    keys = keys if keys is not None else CanonicalKeys()
    columns = template.columns_by_key()
    stats = ValidationStats(total_rows=len(rows), validated_at=utc_now_iso())
    issues = []
    for row in rows:
        if row.row_status is Status.VALID:
            stats.valid_rows += 1
        elif row.row_status is Status.WARNING:
            stats.warning_rows += 1
        elif row.row_status is Status.ERROR:
            stats.error_rows += 1
        else:
            stats.pending_rows += 1
        for name, meta in row.metadata.items():
            stats.total_cells += 1
            stats.total_errors += len(meta.errors)
            stats.total_warnings += len(meta.warnings)
            issues.extend(meta.issues)
            if meta.validation_status is Status.VALID:
                stats.valid_cells += 1
            elif meta.validation_status is Status.WARNING:
                stats.warning_cells += 1
            elif meta.validation_status is Status.ERROR:
                stats.error_cells += 1
            column = columns.get(keys[name])
            if column is None:
                continue
            if column.requirement is Requirement.REQUIRED or meta.conditional_triggered:
                stats.required_cells += 1
                if not is_empty(meta.current_value):
                    stats.required_filled += 1

    if stats.required_cells:
        stats.completion = round(stats.required_filled / stats.required_cells * 100, 1)
    if stats.total_cells and stats.required_cells:
        stats.trust_score = round(
            stats.valid_cells / stats.total_cells * stats.required_filled / stats.required_cells * 100,
            1,
        )
    stats.issue_counts = taxonomy.count_issue_kinds(issues)
    return stats
