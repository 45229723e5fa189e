"""
autofix.py — Deterministic value clean-up driven by per-template toggles.

Public API:
    rows, changes = apply_auto_fixes(rows, template)
    value, steps  = fix_value(" 1,000 ", column, settings)
    fixability    = check_fixability(value, column)

Every change is recorded as a ``Change`` so the caller can show an audit log.
A second application with the same settings produces no further changes.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from template_maestro.dates import is_canonical_date, parse_date, standardize_date
from template_maestro.models import (
    DATE_TYPES,
    INTEGER_TYPES,
    NUMERIC_TYPES,
    AutoFixSettings,
    ColumnRule,
    Row,
    Template,
    canonical_name,
)

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.8
MAX_PASSES = 5

CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
LINE_BREAK_RE = re.compile(r"\s+")
CURRENCY_RE = re.compile(r"[$€£¥₹₽¢₱₩₦₴₿]")
THOUSANDS_RE = re.compile(r"^-?[\d,]+\.?\d*$")
NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
NUMERIC_NOISE_RE = re.compile(r"[$€£¥₹₽¢₱₩₦₴₿,%\s]")
DOTTED_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2,4})$")
WORD_RE = re.compile(r"\S+")

COUNTRY_HINTS = ("country", "nation", "region")
NAME_HINTS = ("name", "first", "last", "middle")
NAME_EXACT = {"fname", "lname", "mname"}


@dataclass
class Change:
    row: int
    column: str
    before: str
    after: str
    actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "column": self.column,
            "before": self.before,
            "after": self.after,
            "actions": list(self.actions),
        }


@dataclass
class FixResult:
    can_fix: bool = False
    fixed_value: str = ""
    fix_type: str | None = None
    message: str | None = None


# ══════════════════════════════════════════════════════════════════════════
# VALUE TRANSFORMS
# ══════════════════════════════════════════════════════════════════════════

def trim_whitespace(value: str) -> str:
    return value.strip()


def normalize_line_breaks(value: str) -> str:
    return LINE_BREAK_RE.sub(" ", value).strip()


def remove_special_chars(value: str) -> str:
    return CONTROL_CHARS_RE.sub("", value)


def title_case(value: str) -> str:
    return WORD_RE.sub(lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), value.lower())


def remove_currency_symbols(value: str) -> str:
    return CURRENCY_RE.sub("", value).strip()


def remove_thousand_separators(value: str) -> str:
    if THOUSANDS_RE.match(value):
        return value.replace(",", "")
    return value


def apply_alternative_labels(value: str, labels: dict[str, str]) -> str:
    """Replace a known synonym with its canonical value; canonical values are never remapped."""
    if value.strip() in labels.values():
        return value
    needle = value.strip().lower()
    for synonym, canonical in labels.items():
        if needle == synonym.strip().lower():
            return canonical
    return value


# ══════════════════════════════════════════════════════════════════════════
# COLUMN CLASSIFICATION
# ══════════════════════════════════════════════════════════════════════════

def is_country_code_column(column: ColumnRule) -> bool:
    name = column.field_name.lower()
    if any(hint in name for hint in COUNTRY_HINTS) or column.key in ("cc", "iso"):
        return True
    allowed = column.allowed_values or []
    return column.type == "list" and bool(allowed) and all(len(v) in (2, 3) for v in allowed)


def is_name_column(column: ColumnRule) -> bool:
    name = column.field_name.lower()
    return any(hint in name for hint in NAME_HINTS) or name.strip() in NAME_EXACT


def is_numeric_column(column: ColumnRule) -> bool:
    return column.type in NUMERIC_TYPES


def is_date_column(column: ColumnRule) -> bool:
    return column.type in DATE_TYPES


# ══════════════════════════════════════════════════════════════════════════
# PIPELINE
# ══════════════════════════════════════════════════════════════════════════

def _pipeline_once(value: str, column: ColumnRule | None, settings: AutoFixSettings) -> tuple[str, list[str]]:
    steps: list[str] = []

    def step(name: str, enabled: bool, transform) -> None:
        nonlocal value
        if not enabled:
            return
        updated = transform(value)
        if updated != value:
            steps.append(name)
            value = updated

    step("trim_whitespace", settings.trim_whitespace, trim_whitespace)
    step("normalize_line_breaks", settings.normalize_line_breaks, normalize_line_breaks)
    step("remove_special_chars", settings.remove_special_chars, remove_special_chars)
    if column is not None:
        step(
            "uppercase_country_codes",
            settings.uppercase_country_codes and is_country_code_column(column),
            str.upper,
        )
        step("title_case_names", settings.title_case_names and is_name_column(column), title_case)
        step(
            "remove_currency_symbols",
            settings.remove_currency_symbols and is_numeric_column(column),
            remove_currency_symbols,
        )
        step("standardize_dates", settings.standardize_dates and is_date_column(column), standardize_date)
        step(
            "remove_thousand_separators",
            settings.remove_thousand_separators and is_numeric_column(column),
            remove_thousand_separators,
        )
        step(
            "alternative_labels",
            bool(column.alternative_labels),
            lambda v: apply_alternative_labels(v, column.alternative_labels),
        )
    return value, steps


def fix_value(value: str, column: ColumnRule | None, settings: AutoFixSettings) -> tuple[str, list[str]]:
    """Run the fixed-order pipeline until the value stops changing."""
    applied: list[str] = []
    for _ in range(MAX_PASSES):
        updated, steps = _pipeline_once(value, column, settings)
        for name in steps:
            if name not in applied:
                applied.append(name)
        if updated == value:
            break
        value = updated
    return value, applied


def apply_auto_fixes(rows: list[Row], template: Template) -> tuple[list[Row], list[Change]]:
    """Return fixed copies of ``rows`` plus the ordered change log; the input rows are not touched."""
    settings = template.auto_fix_settings
    columns = template.columns_by_key()
    fixed_rows = copy.deepcopy(rows)
    changes: list[Change] = []
    for row in fixed_rows:
        for name, original in list(row.data.items()):
            if original is None:
                continue
            before = str(original)
            after, steps = fix_value(before, columns.get(canonical_name(name)), settings)
            if after == before:
                continue
            row.data[name] = after
            meta = row.metadata.get(name)
            if meta is not None:
                meta.current_value = after
                meta.is_modified = after != meta.original_value
            changes.append(Change(row=row.row_index, column=name, before=before, after=after, actions=steps))
    logger.debug("Auto-fix applied %d correction(s) across %d row(s)", len(changes), len(fixed_rows))
    return fixed_rows, changes


# ══════════════════════════════════════════════════════════════════════════
# FIXABILITY CHECK
# ══════════════════════════════════════════════════════════════════════════

def is_number(value: str) -> bool:
    if not NUMBER_RE.match(value.strip()):
        return False
    number = float(value)
    return number == number and number not in (float("inf"), float("-inf"))


def is_integer(value: str) -> bool:
    return is_number(value) and float(value).is_integer()


def is_valid_for_type(value: str, column_type: str) -> bool:
    if column_type in INTEGER_TYPES:
        return is_integer(value)
    if column_type in NUMERIC_TYPES:
        return is_number(value)
    if column_type in DATE_TYPES:
        return parse_date(value) is not None
    return True


def clean_number(value: str) -> str:
    return NUMERIC_NOISE_RE.sub("", value)


def clean_date(value: str) -> str:
    """Best deterministic rewrite of a date string to ``MM/DD/YYYY``; unchanged when nothing parses."""
    text = normalize_line_breaks(value)
    dotted = DOTTED_DATE_RE.match(text)
    if dotted:
        text = "/".join(dotted.groups())
    parsed = parse_date(text)
    if parsed is None:
        return value
    return standardize_date(text)


def suggest_list_value(value: str, column: ColumnRule) -> str | None:
    """Alternative-label hit first, then the closest allowed value at or above the fuzzy threshold."""
    allowed = column.allowed_values or []
    if not allowed:
        return None
    needle = value.strip().lower()
    if column.alternative_labels:
        labelled = apply_alternative_labels(value, column.alternative_labels)
        if labelled != value:
            return labelled
    best: str | None = None
    best_score = 0.0
    for candidate in allowed:
        score = Levenshtein.normalized_similarity(needle, candidate.strip().lower())
        if score >= FUZZY_THRESHOLD and score > best_score:
            best, best_score = candidate, score
    return best


def check_fixability(value: object, column: ColumnRule) -> FixResult:
    """
    Check whether a deterministic clean-up would make ``value`` acceptable.

    Checks run in order (whitespace, then the type-specific fix) and each
    later check works on the output of the earlier one.
    """
    result = FixResult(fixed_value="" if value is None else str(value))
    text = result.fixed_value
    if text == "":
        return result

    if text.strip() != text or "  " in text:
        result.fixed_value = normalize_line_breaks(text)
        result.can_fix = True
        result.fix_type = "whitespace"
        result.message = "Whitespace will be trimmed"

    current = result.fixed_value
    if column.type in NUMERIC_TYPES:
        cleaned = clean_number(current)
        if cleaned != current and is_valid_for_type(cleaned, column.type):
            result.fixed_value = cleaned
            result.can_fix = True
            result.fix_type = "numeric_format"
            result.message = "Format will be standardized"
    elif column.type in DATE_TYPES:
        cleaned = clean_date(current)
        if cleaned != current and is_canonical_date(cleaned):
            result.fixed_value = cleaned
            result.can_fix = True
            result.fix_type = "date_format"
            result.message = "Date format will be standardized"
    elif column.type == "list" and column.allowed_values:
        exact = next((v for v in column.allowed_values if v.strip().lower() == current.strip().lower()), None)
        if exact is not None:
            if exact != current:
                result.fixed_value = exact
                result.can_fix = True
                result.fix_type = "case_sensitivity"
                result.message = "Case will be corrected"
        else:
            suggestion = suggest_list_value(current, column)
            if suggestion is not None:
                result.fixed_value = suggestion
                result.can_fix = True
                result.fix_type = "list_suggestion"
                result.message = f"Did you mean '{suggestion}'?"
    return result
