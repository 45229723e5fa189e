"""
Date parsing and formatting for template validation.

Heterogeneous date strings are parsed into a ``datetime.date`` and rendered in
the canonical ``MM/DD/YYYY`` form. Patterns are tried in a fixed order and the
first pattern that matches decides the reading of the string.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from email.utils import parsedate_to_datetime

MONTH_NAMES = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

CANONICAL_FORMAT = "MM/DD/YYYY"

ISO_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
RFC_RE = re.compile(r"^(?:[A-Za-z]{3},\s*)?\d{1,2}\s+[A-Za-z]{3}\s+\d{4}(?:\s+\d{2}:\d{2}(?::\d{2})?)?(?:\s+.*)?$")
US_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
YEAR_FIRST_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")
DAY_MONTH_NAME_RE = re.compile(r"^(\d{1,2})-([A-Za-z]+)-(\d{4})$")
MONTH_NAME_DAY_RE = re.compile(r"^([A-Za-z]+)\.?\s+(\d{1,2}),?\s+(\d{4})$")
US_DASH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
SHORT_YEAR_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2})$")


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_two_digit_year(year: int) -> int:
    return 1900 + year if year > 50 else 2000 + year


def month_number(name: str) -> int | None:
    return MONTH_NAMES.get(name.strip().lower())


def _parse_iso(text: str) -> date | None:
    m = ISO_RE.match(text)
    if not m:
        return None
    return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def _parse_rfc(text: str) -> date | None:
    try:
        return parsedate_to_datetime(text).date()
    except (TypeError, ValueError, IndexError):
        pass
    # parsedate rejects a bare "15 Jan 2024" without a time part.
    m = re.search(r"(\d{1,2})\s+([A-Za-z]{3})\s+(\d{4})", text)
    if not m:
        return None
    month = month_number(m.group(2))
    if month is None:
        return None
    return _safe_date(int(m.group(3)), month, int(m.group(1)))


def _parse_us_slash(text: str) -> date | None:
    m = US_SLASH_RE.match(text)
    if not m:
        return None
    first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    # MM/DD unless the first component can only be a day.
    if first > 12:
        return _safe_date(year, second, first)
    return _safe_date(year, first, second)


def _parse_year_first(text: str) -> date | None:
    m = YEAR_FIRST_RE.match(text)
    if not m:
        return None
    return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def _parse_day_month_name(text: str) -> date | None:
    m = DAY_MONTH_NAME_RE.match(text)
    if not m:
        return None
    month = month_number(m.group(2))
    if month is None:
        return None
    return _safe_date(int(m.group(3)), month, int(m.group(1)))


def _parse_month_name_day(text: str) -> date | None:
    m = MONTH_NAME_DAY_RE.match(text)
    if not m:
        return None
    month = month_number(m.group(1))
    if month is None:
        return None
    return _safe_date(int(m.group(3)), month, int(m.group(2)))


def _parse_us_dash(text: str) -> date | None:
    m = US_DASH_RE.match(text)
    if not m:
        return None
    return _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))


def _parse_short_year(text: str) -> date | None:
    m = SHORT_YEAR_RE.match(text)
    if not m:
        return None
    year = _expand_two_digit_year(int(m.group(3)))
    return _safe_date(year, int(m.group(1)), int(m.group(2)))


PARSERS = (
    (ISO_RE, _parse_iso),
    (RFC_RE, _parse_rfc),
    (US_SLASH_RE, _parse_us_slash),
    (YEAR_FIRST_RE, _parse_year_first),
    (DAY_MONTH_NAME_RE, _parse_day_month_name),
    (MONTH_NAME_DAY_RE, _parse_month_name_day),
    (US_DASH_RE, _parse_us_dash),
    (SHORT_YEAR_RE, _parse_short_year),
)


def parse_date(value: object) -> date | None:
    """
    Parse a date string into a ``date``.

    The first pattern whose shape matches decides the outcome: a string that
    looks like ``MM/DD/YYYY`` but names an impossible day is rejected rather
    than retried under a later pattern. ``datetime``/``date`` objects coming
    straight from a workbook codec are accepted as-is.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    for pattern, parser in PARSERS:
        if pattern.match(text):
            return parser(text)
    return None


def format_date(value: date | datetime | None) -> str:
    if value is None:
        return ""
    return f"{value.month:02d}/{value.day:02d}/{value.year:04d}"


def standardize_date(value: str) -> str:
    """Rewrite ``value`` to ``MM/DD/YYYY``; unparseable input comes back unchanged."""
    parsed = parse_date(value)
    if parsed is None:
        return value
    return format_date(parsed)


def is_valid_date(value: object) -> bool:
    return parse_date(value) is not None


def is_canonical_date(value: str) -> bool:
    return bool(re.match(r"^\d{2}/\d{2}/\d{4}$", value)) and parse_date(value) is not None
