"""
mapper.py — Map uploaded-file columns onto template columns.

Public API:
    result = map_columns(headers, template, mode="named")
    rows   = apply_mapping(data_rows, result, template)

Positional mode pairs template column i with file column i. Named mode
compares normalised headers: exact match, then Levenshtein similarity, then
containment in either direction. Each file column is used at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from rapidfuzz.distance import Levenshtein

from template_maestro import taxonomy
from template_maestro.extractor import split_header
from template_maestro.models import CellMeta, Row, Template, canonical_name

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.8
CONTAINMENT_CONFIDENCE = 0.85
MAPPING_MODES = ("positional", "named")


@dataclass
class ColumnMatch:
    file_index: int
    file_header: str
    confidence: float
    method: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileColumnIndex": self.file_index,
            "fileColumnName": self.file_header,
            "confidence": self.confidence,
            "method": self.method,
        }


@dataclass
class MapperWarning:
    kind: str
    message: str
    columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "columns": list(self.columns)}


@dataclass
class MappingResult:
    mode: str
    mapping: dict[str, ColumnMatch] = field(default_factory=dict)
    unmapped: list[str] = field(default_factory=list)
    warnings: list[MapperWarning] = field(default_factory=list)
    total_columns: int = 0

    @property
    def mapped_count(self) -> int:
        return len(self.mapping)

    @property
    def confidence(self) -> float:
        if not self.total_columns:
            return 0.0
        return round(self.mapped_count / self.total_columns, 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "mapping": {name: match.to_dict() for name, match in self.mapping.items()},
            "unmapped": list(self.unmapped),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "mappedCount": self.mapped_count,
            "totalColumns": self.total_columns,
            "confidence": self.confidence,
        }


def normalize_header(header: object) -> str:
    """Field-name part of a header, lowercased with non-alphanumerics stripped."""
    name, _ = split_header(str(header or ""))
    return canonical_name(name)


def similarity(a: str, b: str) -> float:
    """``1 - distance / max(len)`` over already normalised strings."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def _positional(headers: list[str], template: Template) -> MappingResult:
    result = MappingResult(mode="positional", total_columns=len(template.columns))
    for position, column in enumerate(template.columns):
        if position < len(headers):
            result.mapping[column.field_name] = ColumnMatch(position, headers[position], 1.0, "position")
        else:
            result.unmapped.append(column.field_name)
            result.warnings.append(
                MapperWarning(
                    taxonomy.MISSING_COLUMN,
                    f"Template column '{column.field_name}' has no column at position {position + 1}",
                    [column.field_name],
                )
            )
    extras = headers[len(template.columns):]
    if extras:
        result.warnings.append(
            MapperWarning(
                taxonomy.EXTRA_COLUMNS,
                f"{len(extras)} file column(s) beyond the template layout were ignored",
                [str(h) for h in extras],
            )
        )
    return result


def _named(headers: list[str], template: Template) -> MappingResult:
    result = MappingResult(mode="named", total_columns=len(template.columns))
    normalized = [normalize_header(h) for h in headers]
    used: set[int] = set()

    def free(index: int) -> bool:
        return index not in used and bool(normalized[index])

    pending = []
    for column in template.columns:
        target = normalize_header(column.field_name)
        index = next((i for i, name in enumerate(normalized) if free(i) and name == target), None)
        if index is not None:
            used.add(index)
            result.mapping[column.field_name] = ColumnMatch(index, headers[index], 1.0, "exact")
        else:
            pending.append((column, target))

    still_pending = []
    for column, target in pending:
        best_index, best_score = None, 0.0
        for i, name in enumerate(normalized):
            if not free(i):
                continue
            score = similarity(target, name)
            if score >= FUZZY_THRESHOLD and score > best_score:
                best_index, best_score = i, score
        if best_index is not None:
            used.add(best_index)
            result.mapping[column.field_name] = ColumnMatch(
                best_index, headers[best_index], round(best_score, 3), "fuzzy"
            )
        else:
            still_pending.append((column, target))

    for column, target in still_pending:
        index = next(
            (i for i, name in enumerate(normalized) if free(i) and target and (target in name or name in target)),
            None,
        )
        if index is not None:
            used.add(index)
            result.mapping[column.field_name] = ColumnMatch(index, headers[index], CONTAINMENT_CONFIDENCE, "contains")
            continue
        result.unmapped.append(column.field_name)
        result.warnings.append(
            MapperWarning(
                taxonomy.MISSING_COLUMN,
                f"Template column '{column.field_name}' was not found in the file",
                [column.field_name],
            )
        )

    extras = [headers[i] for i in range(len(headers)) if i not in used and normalized[i]]
    if extras:
        result.warnings.append(
            MapperWarning(
                taxonomy.EXTRA_COLUMNS,
                f"{len(extras)} file column(s) did not match any template column",
                [str(h) for h in extras],
            )
        )
    return result


def map_columns(headers: list[str], template: Template, mode: str = "named") -> MappingResult:
    if mode not in MAPPING_MODES:
        raise ValueError(f"Unknown mapping mode {mode!r}. Expected one of: {', '.join(MAPPING_MODES)}")
    headers = ["" if h is None else str(h) for h in headers]
    result = _positional(headers, template) if mode == "positional" else _named(headers, template)
    logger.debug(
        "Mapped %d of %d template column(s) in %s mode", result.mapped_count, result.total_columns, mode
    )
    return result


def apply_mapping(data_rows: list[list[Any]], mapping: MappingResult, template: Template) -> list[Row]:
    """Build Rows keyed by template field name; unmapped columns become empty cells with a note."""
    rows: list[Row] = []
    for row_index, values in enumerate(data_rows):
        data: dict[str, str] = {}
        metadata: dict[str, CellMeta] = {}
        for column in template.columns:
            match = mapping.mapping.get(column.field_name)
            if match is not None:
                raw = values[match.file_index] if match.file_index < len(values) else None
                value = "" if raw is None else str(raw)
                metadata[column.field_name] = CellMeta(original_value=value, current_value=value)
            else:
                value = ""
                meta = CellMeta()
                meta.add_note(taxonomy.COLUMN_NOT_FOUND, taxonomy.MSG_COLUMN_NOT_FOUND)
                metadata[column.field_name] = meta
            data[column.field_name] = value
        rows.append(Row(row_index=row_index, data=data, metadata=metadata))
    return rows
