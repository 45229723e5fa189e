"""The working state of one review: a template, the uploaded rows, and what has been done to them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from template_maestro.autofix import Change, apply_auto_fixes
from template_maestro.export import ShaperConfig, build_error_report, shape_export
from template_maestro.loader import load_upload
from template_maestro.mapper import MappingResult, apply_mapping, map_columns
from template_maestro.models import Row, Template, canonical_name
from template_maestro.validation import ValidationStats, validate_dataset

logger = logging.getLogger(__name__)


@dataclass
class Session:
    template: Template
    rows: list[Row] = field(default_factory=list)
    mapping: MappingResult | None = None
    stats: ValidationStats | None = None
    changes: list[Change] = field(default_factory=list)
    upload_warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_grid(
        cls,
        template: Template,
        headers: list[str],
        data_rows: list[list[Any]],
        mode: str = "named",
    ) -> "Session":
        mapping = map_columns(headers, template, mode=mode)
        return cls(template=template, rows=apply_mapping(data_rows, mapping, template), mapping=mapping)

    @classmethod
    def from_file(
        cls,
        template: Template,
        path: "str | Path",
        mode: str = "named",
        sheet_name: str | None = None,
    ) -> "Session":
        upload = load_upload(path, sheet_name=sheet_name)
        session = cls.from_grid(template, upload["headers"], upload["rows"], mode=mode)
        session.upload_warnings = list(upload["warnings"])
        return session

    @property
    def missing_columns(self) -> list[str]:
        return list(self.mapping.unmapped) if self.mapping else []

    def validate(self) -> ValidationStats:
        self.stats = validate_dataset(self.rows, self.template, self.missing_columns)
        return self.stats

    def apply_auto_fixes(self) -> list[Change]:
        self.rows, changes = apply_auto_fixes(self.rows, self.template)
        self.changes.extend(changes)
        self.validate()
        return changes

    def _row(self, row_index: int) -> Row:
        for row in self.rows:
            if row.row_index == row_index:
                return row
        raise IndexError(f"No row with index {row_index}")

    def _field(self, row: Row, field_name: str) -> str:
        wanted = canonical_name(field_name)
        for name in row.data:
            if canonical_name(name) == wanted:
                return name
        raise KeyError(f"Unknown field: {field_name}")

    def edit_cell(self, row_index: int, field_name: str, value: str) -> ValidationStats:
        """Write one cell and re-run validation over the whole dataset."""
        row = self._row(row_index)
        name = self._field(row, field_name)
        before = row.data.get(name)
        row.data[name] = value
        meta = row.metadata.get(name)
        if meta is not None:
            meta.current_value = value
            meta.is_modified = value != meta.original_value
        if before != value:
            self.changes.append(Change(row=row_index, column=name, before=before or "", after=value, actions=["edit"]))
        return self.validate()

    def apply_suggested_fixes(self) -> list[Change]:
        applied: list[Change] = []
        for row in self.rows:
            for name, meta in row.metadata.items():
                fix = meta.suggested_fix
                if fix is None or fix == row.data.get(name):
                    continue
                applied.append(
                    Change(row=row.row_index, column=name, before=row.data.get(name) or "", after=fix, actions=["suggested_fix"])
                )
                row.data[name] = fix
                meta.current_value = fix
                meta.is_modified = fix != meta.original_value
        self.changes.extend(applied)
        logger.debug("Applied %d suggested fix(es)", len(applied))
        self.validate()
        return applied

    def export_grid(self, fmt: str = "xlsx", status_filter: str = "all", config: ShaperConfig | None = None) -> list[list[str]]:
        config = config or ShaperConfig.from_settings(self.template.export_settings, fmt, status_filter)
        return shape_export(self.rows, self.template, config)

    def error_report(self) -> list[list[str]]:
        return build_error_report(self.rows, self.template)
