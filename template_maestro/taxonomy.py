"""
Shared issue taxonomy for cell-level validation findings.

Keeps kinds, severities, user-facing messages and the explain catalogue in one
place so validation, reports and the CLI do not drift.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

REQUIRED_MISSING = "required-missing"
CONDITIONALLY_REQUIRED_MISSING = "conditionally-required-missing"
INVALID_TYPE = "invalid-type"
INVALID_LIST_VALUE = "invalid-list-value"
EXCEEDS_MAX_LENGTH = "exceeds-max-length"
COMPLEX_RULE_VIOLATED = "complex-rule-violated"

AUTO_FIXABLE_CASE = "auto-fixable-case"
AUTO_FIXABLE_WHITESPACE = "auto-fixable-whitespace"
AUTO_FIXABLE_TYPE = "auto-fixable-type"
CASE_MISMATCH = "case-mismatch"
FUZZY_SUGGESTION = "fuzzy-suggestion"
COLUMN_NOT_FOUND = "column-not-found"

MISSING_COLUMN = "missing_column"
EXTRA_COLUMNS = "extra_columns"

ISSUE_DEFINITIONS = {
    REQUIRED_MISSING: {"severity": "error"},
    CONDITIONALLY_REQUIRED_MISSING: {"severity": "error"},
    INVALID_TYPE: {"severity": "error"},
    INVALID_LIST_VALUE: {"severity": "error"},
    EXCEEDS_MAX_LENGTH: {"severity": "error"},
    COMPLEX_RULE_VIOLATED: {"severity": "error"},
    AUTO_FIXABLE_CASE: {"severity": "warning"},
    AUTO_FIXABLE_WHITESPACE: {"severity": "warning"},
    AUTO_FIXABLE_TYPE: {"severity": "warning"},
    CASE_MISMATCH: {"severity": "warning"},
    FUZZY_SUGGESTION: {"severity": "warning"},
    COLUMN_NOT_FOUND: {"severity": "info"},
}

MSG_REQUIRED_MISSING = "Required field is missing"
MSG_CONDITIONALLY_REQUIRED_MISSING = "Conditionally required field is missing"
MSG_INVALID_DATE = "Invalid date format"
MSG_INVALID_INTEGER = "Must be a whole number"
MSG_INVALID_NUMBER = "Must be a number"
MSG_INVALID_LIST_VALUE = "Value not in allowed list"
MSG_AUTO_FIX_AVAILABLE = "Auto-fix available"
MSG_COLUMN_NOT_FOUND = "Column not found in client file"
MSG_WHITESPACE = "Extra whitespace"


def exceeds_max_length_message(max_length: int) -> str:
    return f"Exceeds max length of {max_length}"


def auto_fix_message(message: str) -> str:
    return f"{message} ({MSG_AUTO_FIX_AVAILABLE})"


def case_mismatch_message(canonical: str) -> str:
    return f"Case mismatch: should be '{canonical}'"


def suggestion_message(candidate: str) -> str:
    return f"Did you mean '{candidate}'?"


EXPLAIN_RULES = {
    REQUIRED_MISSING: {
        "description": "A required column is empty in this row.",
        "evidence": "Row 2 of the template marks the column as Required and the cell is blank or whitespace-only.",
        "auto_fixable": False,
        "disable_hint": "Change the column requirement to Optional in the template if the value is not mandatory.",
    },
    CONDITIONALLY_REQUIRED_MISSING: {
        "description": "A conditional column is empty while its trigger condition holds for this row.",
        "evidence": "The column's conditional requirement evaluated true against sibling cells in the same row.",
        "auto_fixable": False,
        "disable_hint": "Edit or remove the column's conditional requirement in the template.",
    },
    INVALID_TYPE: {
        "description": "The value does not parse as the column's declared type.",
        "evidence": "Date, whole-number or number parsing failed and no deterministic clean-up makes it valid.",
        "auto_fixable": False,
        "disable_hint": "Set the column type to text if free-form values are acceptable.",
    },
    INVALID_LIST_VALUE: {
        "description": "The value is not one of the column's allowed values.",
        "evidence": "No case-insensitive match, alternative label or close spelling was found in the allowed list.",
        "auto_fixable": False,
        "disable_hint": "Add the value (or a synonym via alternativeLabels) to the template.",
    },
    EXCEEDS_MAX_LENGTH: {
        "description": "The value is longer than the column allows.",
        "evidence": "String length is greater than the column's maxLength.",
        "auto_fixable": False,
        "disable_hint": "Raise or clear maxLength on the column.",
    },
    COMPLEX_RULE_VIOLATED: {
        "description": "A rule spanning several columns of the row is not satisfied.",
        "evidence": "An either-or group or a dependent-field rule failed for this row.",
        "auto_fixable": False,
        "disable_hint": "Remove the rule from the template's complexRules.",
    },
    AUTO_FIXABLE_CASE: {
        "description": "A country code differs from the allowed code only by case.",
        "evidence": "Uppercasing the value yields an allowed value of a country-code column.",
        "auto_fixable": True,
        "disable_hint": "Turn on uppercaseCountryCodes to correct these before validation.",
    },
    AUTO_FIXABLE_WHITESPACE: {
        "description": "The value has leading, trailing or repeated whitespace.",
        "evidence": "Trimming and collapsing whitespace changes the value.",
        "auto_fixable": True,
        "disable_hint": "Turn on trimWhitespace/normalizeLineBreaks to clean these before validation.",
    },
    AUTO_FIXABLE_TYPE: {
        "description": "The value fails its type check but a deterministic clean-up makes it valid.",
        "evidence": "Stripping currency symbols or thousand separators, or standardising the date, yields a valid value.",
        "auto_fixable": True,
        "disable_hint": "Turn on the matching auto-fix toggle to apply the clean-up automatically.",
    },
    CASE_MISMATCH: {
        "description": "A list value differs from the allowed value only by case.",
        "evidence": "Exact comparison failed, case-insensitive comparison succeeded.",
        "auto_fixable": True,
        "disable_hint": "Apply the suggested fix or correct the case in the source file.",
    },
    FUZZY_SUGGESTION: {
        "description": "A list value is close to an allowed value.",
        "evidence": "An alternative label matched, or Levenshtein similarity is at least 0.8.",
        "auto_fixable": True,
        "disable_hint": "Review the suggestion before applying; add alternativeLabels for known synonyms.",
    },
    COLUMN_NOT_FOUND: {
        "description": "The template column has no matching column in the uploaded file.",
        "evidence": "Column mapping found neither a position, exact name, close name nor containing name.",
        "auto_fixable": False,
        "disable_hint": "Rename the upload header to match the template field name.",
    },
}


def severity_of(kind: str) -> str:
    return ISSUE_DEFINITIONS[kind]["severity"]


def count_issue_kinds(issues: Iterable[Any]) -> dict[str, int]:
    """Count ``CellIssue``-like objects by kind, sorted by kind."""
    counts = Counter(issue.kind for issue in issues)
    return dict(sorted(counts.items()))
