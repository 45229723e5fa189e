"""
loader.py — Load an uploaded data file into a header row plus data rows.

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods

Public API:
    result  = load_upload("path/to/file.csv")
    headers = result["headers"]
    rows    = result["rows"]

Result dict keys:
    headers           — header names; blank headers become "Column N"
    rows              — data rows as lists of strings, padded/truncated to the header width
    title             — a title line found above the header row, or None
    requirement_row   — the detected requirement markers under the header, or None
    detected_format   — "csv", "xlsx", ...
    detected_encoding — encoding name for text files; None for workbooks
    delimiter         — delimiter for text files; None otherwise
    sheet_name        — sheet used for workbooks; None otherwise
    sheet_names       — all sheet names for workbooks; None otherwise
    empty_rows_dropped — count of completely empty data rows removed
    overflow_rows     — count of rows with values past the last header column
    warnings          — list of warning strings
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Any, Optional

import chardet
import pandas as pd

from template_maestro.extractor import find_main_sheet

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
ODS_FORMATS   = {".ods"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS

REQUIREMENT_KEYWORDS = ("required", "optional", "conditional", "req", "opt", "cond", "mandatory")
REQUIREMENT_ROW_RATIO = 0.3
HEADER_TEXT_RATIO = 0.7
NUMBER_CELL_RE = re.compile(r"^-?\d+\.?\d*$")
DATE_CELL_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw)
    return result.get("encoding") or "utf-8"


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line: UTF-8, then the detected encoding, then latin-1, then
    CP1252 with replacement. Embedded null bytes are stripped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    text = "\n".join(decoded_lines)
    return text[1:] if text.startswith("\ufeff") else text


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_delimiter(text: str) -> str:
    """Sniff the delimiter; fall back to scoring candidates by column-count consistency."""
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])
    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim, best_score = ",", float("-inf")
    for delim in (",", ";", "\t", "|"):
        rows = [row for row in csv.reader(io.StringIO(sample), delimiter=delim) if any(c.strip() for c in row)]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_delim, best_score = delim, score
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# GRID SHAPING
# ══════════════════════════════════════════════════════════════════════════════

def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    return str(value)


def is_requirement_row(values: list[Any]) -> bool:
    """True when at least 30% of the non-empty cells carry a requirement keyword."""
    cells = [_cell(v).strip().lower() for v in values]
    non_empty = [c for c in cells if c]
    if not non_empty:
        return False
    hits = sum(1 for c in non_empty if any(keyword in c for keyword in REQUIREMENT_KEYWORDS))
    return hits / len(non_empty) >= REQUIREMENT_ROW_RATIO


def sanitize_headers(values: list[Any]) -> list[str]:
    headers = []
    for index, value in enumerate(values):
        text = _cell(value).strip()
        headers.append(text or f"Column {index + 1}")
    return headers


def _filled(values: list[str]) -> int:
    return sum(1 for c in values if c.strip())


def looks_like_header(values: list[Any]) -> bool:
    """True when at least 70% of the non-empty cells are text rather than numbers or dates."""
    cells = [c for c in (_cell(v).strip() for v in values) if c]
    if not cells:
        return False
    text = sum(1 for c in cells if not NUMBER_CELL_RE.match(c) and not DATE_CELL_RE.match(c))
    return text / len(cells) >= HEADER_TEXT_RATIO


def find_header_row(grid: list[list[str]]) -> int:
    """Row 0 unless it reads like a title line above a fuller header row."""
    if len(grid) < 2:
        return 0
    first, second = grid[0], grid[1]
    if _filled(first) >= _filled(second) and looks_like_header(first):
        return 0
    if _filled(second) > _filled(first) or looks_like_header(second):
        return 1
    return 0


def shape_grid(grid: list[list[Any]]) -> dict[str, Any]:
    """Split a raw grid into title, headers, optional requirement row and fitted data rows."""
    grid = [[_cell(v) for v in row] for row in grid]
    while grid and not any(c.strip() for c in grid[0]):
        grid.pop(0)
    if not grid:
        raise ValueError("File contains no header row.")

    title = None
    if find_header_row(grid) == 1:
        title = " ".join(c.strip() for c in grid[0] if c.strip())
        grid = grid[1:]

    header_values = list(grid[0])
    while header_values and not header_values[-1].strip():
        header_values.pop()
    if not header_values:
        raise ValueError("File contains no header row.")
    headers = sanitize_headers(header_values)
    width = len(headers)

    body = grid[1:]
    requirement_row = None
    if body and is_requirement_row(body[0]):
        requirement_row = (body[0] + [""] * width)[:width]
        body = body[1:]

    rows: list[list[str]] = []
    dropped = 0
    overflow = 0
    for values in body:
        if not any(c.strip() for c in values):
            dropped += 1
            continue
        if any(c.strip() for c in values[width:]):
            overflow += 1
        rows.append((values + [""] * width)[:width])
    return {
        "headers": headers,
        "rows": rows,
        "title": title,
        "requirement_row": requirement_row,
        "empty_rows_dropped": dropped,
        "overflow_rows": overflow,
    }


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_text(path: Path, suffix: str) -> dict:
    raw = path.read_bytes()
    if not raw.strip():
        raise ValueError(f"File is empty: {path.name}")
    enc = _detect_encoding(raw)
    text = _read_text_safely(raw, enc)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)

    width = max((len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)), default=0)
    if width == 0:
        raise ValueError(f"File is empty: {path.name}")
    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=sep,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            engine="python",
        )
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    result = shape_grid(df.values.tolist())
    result.update(
        {
            "detected_format": suffix.lstrip("."),
            "detected_encoding": enc,
            "delimiter": delimiter,
            "sheet_name": None,
            "sheet_names": None,
            "warnings": [],
        }
    )
    return result


def _choose_sheet(all_sheets: list[str], sheet_name: Optional[str]) -> str:
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        return sheet_name
    return find_main_sheet(all_sheets)


def _load_workbook_sheet(path: Path, suffix: str, sheet_name: Optional[str], engine: Optional[str]) -> dict:
    warnings: list[str] = []
    try:
        with pd.ExcelFile(path, engine=engine) as xf:
            all_sheets = list(xf.sheet_names)
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc
    if not all_sheets:
        raise ValueError("Workbook has no sheets.")

    chosen = _choose_sheet(all_sheets, sheet_name)
    try:
        df = pd.read_excel(path, sheet_name=chosen, header=None, dtype=str, keep_default_na=False, engine=engine)
    except Exception as exc:
        raise ValueError(f"Could not load sheet '{chosen}': {exc}") from exc
    if len(all_sheets) > 1:
        others = [s for s in all_sheets if s != chosen]
        warnings.append(f"Multiple sheets found ({len(all_sheets)} total); used '{chosen}'. Ignored: {others}")

    result = shape_grid(df.values.tolist())
    result.update(
        {
            "detected_format": suffix.lstrip("."),
            "detected_encoding": None,
            "delimiter": None,
            "sheet_name": chosen,
            "sheet_names": all_sheets,
            "warnings": warnings,
        }
    )
    return result


def _load_excel(path: Path, suffix: str, sheet_name: Optional[str]) -> dict:
    # .xls requires xlrd; give a clear error if missing.
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd — run: pip install xlrd")
    return _load_workbook_sheet(path, suffix, sheet_name, engine=None)


def _load_ods(path: Path, sheet_name: Optional[str]) -> dict:
    try:
        import odf  # noqa: F401
    except ImportError:
        raise ImportError(".ods files require odfpy — run: pip install odfpy")
    return _load_workbook_sheet(path, ".ods", sheet_name, engine="odf")


def load_upload(path: "str | Path", sheet_name: Optional[str] = None) -> dict:
    """
    Load an uploaded data file.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported, unreadable or has no header row.
        ImportError        if a required optional dependency is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix or '[missing extension]'}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        result = _load_text(path, suffix)
    elif suffix in EXCEL_FORMATS:
        result = _load_excel(path, suffix, sheet_name)
    else:
        result = _load_ods(path, sheet_name)

    if result["title"]:
        result["warnings"].append(f"Title line above the header skipped: '{result['title']}'")
    if result["requirement_row"] is not None:
        result["warnings"].append("Requirement row detected under the header and skipped.")
    if result["empty_rows_dropped"]:
        result["warnings"].append(f"Dropped {result['empty_rows_dropped']} completely empty row(s).")
    if result["overflow_rows"]:
        result["warnings"].append(
            f"{result['overflow_rows']} row(s) had values past the last header column; those values were dropped."
        )
    logger.debug(
        "Loaded %s: %d column(s), %d data row(s)", path.name, len(result["headers"]), len(result["rows"])
    )
    return result
