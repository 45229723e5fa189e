"""Versioned JSON contracts and run summaries for template-maestro outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

TOOL_NAME = "template-maestro"

CONTRACT_VERSIONS = {
    "template_maestro.template": "1.0.0",
    "template_maestro.validation": "1.1.0",
    "template_maestro.autofix": "1.1.0",
    "template_maestro.export": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    return {"name": name, "version": CONTRACT_VERSIONS[name]}


def status_from_stats(stats: dict[str, Any]) -> str:
    """Overall run status from camelCase validation stats: error, warning or ok."""
    if stats.get("errorRows"):
        return "error"
    if stats.get("warningRows"):
        return "warning"
    return "ok"


def mapping_summary(mapping: Any) -> dict[str, Any]:
    """Compact view of a column mapping for run summaries."""
    return {
        "mode": mapping.mode,
        "mapped": mapping.mapped_count,
        "total": mapping.total_columns,
        "confidence": mapping.confidence,
        "unmapped": list(mapping.unmapped),
    }


def build_run_summary(
    *,
    command: str,
    input_path: Path,
    template_path: Path | None = None,
    template_name: str | None = None,
    mapping: Any = None,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    warnings = list(warnings or [])
    return {
        "tool": TOOL_NAME,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path),
        "template": {
            "name": template_name,
            "file": str(template_path) if template_path else None,
        },
        "mapping": mapping_summary(mapping) if mapping is not None else None,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings),
        "warnings": warnings,
        "metrics": metrics or {},
    }
