#!/usr/bin/env python3
from __future__ import annotations

import io
import sys
import tempfile
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from template_maestro.export import EXPORT_FILTERS, STATUS_COLUMN, ExportError, ShaperConfig, generate_filename, to_tab_delimited, write_xlsx  # noqa: E402
from template_maestro.extractor import extract_template_file, summarize_template  # noqa: E402
from template_maestro.models import AutoFixSettings, Template, TemplateError, template_from_json, template_to_json  # noqa: E402
from template_maestro.session import Session  # noqa: E402

TEMPLATE_EXTS = {".xlsx", ".xlsm", ".json"}
DATA_EXTS = {".csv", ".tsv", ".txt", ".xlsx", ".xlsm", ".xls", ".ods"}
STATUS_COLOURS = {"valid": "#C6EFCE", "warning": "#FFEB9C", "error": "#FFC7CE"}
AUTO_FIX_LABELS = {
    "trim_whitespace": "Trim whitespace",
    "normalize_line_breaks": "Normalize line breaks",
    "remove_special_chars": "Remove special characters",
    "uppercase_country_codes": "Uppercase country codes",
    "title_case_names": "Title-case names",
    "remove_currency_symbols": "Remove currency symbols",
    "standardize_dates": "Standardize dates",
    "remove_thousand_separators": "Remove thousand separators",
}


def ensure_state() -> None:
    st.session_state.setdefault("template", None)
    st.session_state.setdefault("session", None)
    st.session_state.setdefault("messages", [])


def _save_upload(upload, folder: Path) -> Path:
    path = folder / Path(upload.name).name
    path.write_bytes(upload.getvalue())
    return path


def load_template_from_upload(upload) -> Template:
    suffix = Path(upload.name).suffix.lower()
    if suffix == ".json":
        return template_from_json(upload.getvalue().decode("utf-8"))
    with tempfile.TemporaryDirectory() as tmp:
        return extract_template_file(_save_upload(upload, Path(tmp)), name=Path(upload.name).stem)


def run_review(template: Template, upload, mode: str, sheet_name: Optional[str] = None) -> Session:
    with tempfile.TemporaryDirectory() as tmp:
        session = Session.from_file(template, _save_upload(upload, Path(tmp)), mode=mode, sheet_name=sheet_name)
    session.validate()
    return session


def stats_frame(session: Session) -> pd.DataFrame:
    stats = session.stats.to_dict()
    keys = ["totalRows", "validRows", "warningRows", "errorRows", "totalErrors", "totalWarnings", "completion", "trustScore"]
    return pd.DataFrame([{"Metric": key, "Value": stats[key]} for key in keys])


def rows_frame(session: Session, status_filter: str = "all") -> pd.DataFrame:
    records = []
    for row in session.rows:
        if status_filter != "all" and row.row_status.value != status_filter:
            continue
        record = {"Row": row.row_index + 1, STATUS_COLUMN: row.row_status.value}
        record.update({name: row.data.get(name, "") for name in session.template.field_names})
        records.append(record)
    return pd.DataFrame(records, columns=["Row", STATUS_COLUMN, *session.template.field_names])


def issues_frame(session: Session) -> pd.DataFrame:
    report = session.error_report()
    return pd.DataFrame(report[1:], columns=report[0])


def export_bytes(session: Session, fmt: str, status_filter: str, include_status: bool) -> tuple[bytes, str]:
    config = ShaperConfig.from_settings(session.template.export_settings, fmt, status_filter)
    config.include_status = include_status or config.include_status
    grid = session.export_grid(config=config)
    pattern = session.template.export_settings.for_format(fmt).filename_pattern
    name = f"{generate_filename(pattern, session.template.name)}.{fmt}"
    if fmt == "txt":
        return to_tab_delimited(grid).encode("utf-8"), name
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / name
        write_xlsx(grid, path, include_header=config.include_header, include_status=config.include_status)
        return path.read_bytes(), name


def error_report_bytes(session: Session) -> bytes:
    buffer = io.StringIO()
    issues_frame(session).to_csv(buffer, index=False)
    return buffer.getvalue().encode("utf-8")


def _status_style(value: object) -> str:
    colour = STATUS_COLOURS.get(str(value))
    return f"background-color: {colour}" if colour else ""


# ══════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════

def render_template_summary(template: Template) -> None:
    summary = summarize_template(template)
    cols = st.columns(4)
    cols[0].metric("Columns", summary["totalColumns"])
    cols[1].metric("Required", summary["requiredColumns"])
    cols[2].metric("Conditional", summary["conditionalColumns"])
    cols[3].metric("Complex rules", summary["complexRules"])
    with st.expander("Column rules"):
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "Column": column.column_letter,
                        "Field": column.field_name,
                        "Type": column.type,
                        "Requirement": column.requirement.label,
                        "Allowed values": ", ".join(column.allowed_values or []),
                        "Conditions": len(column.conditions),
                    }
                    for column in template.columns
                ]
            ),
            width="stretch",
            hide_index=True,
        )
    st.download_button(
        "Download template JSON",
        data=template_to_json(template).encode("utf-8"),
        file_name=f"{template.name}.json",
        mime="application/json",
    )


def render_auto_fix_settings(template: Template) -> None:
    st.sidebar.subheader("Auto-fix")
    current = template.auto_fix_settings
    values = {
        attr: st.sidebar.checkbox(label, value=getattr(current, attr), key=f"autofix_{attr}")
        for attr, label in AUTO_FIX_LABELS.items()
    }
    template.auto_fix_settings = AutoFixSettings(**values)


def render_review(session: Session) -> None:
    stats = session.stats
    cols = st.columns(5)
    cols[0].metric("Rows", stats.total_rows)
    cols[1].metric("Valid", stats.valid_rows)
    cols[2].metric("Warnings", stats.warning_rows)
    cols[3].metric("Errors", stats.error_rows)
    cols[4].metric("Trust score", stats.trust_score)
    st.progress(min(stats.completion / 100.0, 1.0), text=f"Required fields completed: {stats.completion}%")

    for warning in session.upload_warnings:
        st.info(warning)
    for warning in session.mapping.warnings:
        st.warning(warning.message)

    status_filter = st.radio("Show rows", options=list(EXPORT_FILTERS), horizontal=True, key="row_filter")
    frame = rows_frame(session, status_filter)
    st.dataframe(frame.style.map(_status_style, subset=[STATUS_COLUMN]), width="stretch", hide_index=True)

    issues = issues_frame(session)
    if not issues.empty:
        with st.expander(f"Issues ({len(issues)})", expanded=stats.error_rows > 0):
            st.dataframe(issues, width="stretch", hide_index=True)


def render_editor(session: Session) -> None:
    with st.form("edit_cell"):
        cols = st.columns(3)
        row_number = cols[0].number_input("Row", min_value=1, max_value=max(len(session.rows), 1), step=1)
        field_name = cols[1].selectbox("Field", options=session.template.field_names)
        value = cols[2].text_input("New value")
        if st.form_submit_button("Apply edit"):
            session.edit_cell(int(row_number) - 1, field_name, value)
            st.rerun()


def render_actions(session: Session) -> None:
    cols = st.columns(2)
    if cols[0].button("Apply auto-fixes", width="stretch"):
        changes = session.apply_auto_fixes()
        st.session_state["messages"] = [f"Auto-fix changed {len(changes)} cell(s)."]
        st.rerun()
    if cols[1].button("Accept suggested fixes", width="stretch"):
        applied = session.apply_suggested_fixes()
        st.session_state["messages"] = [f"Applied {len(applied)} suggested fix(es)."]
        st.rerun()
    for message in st.session_state.get("messages", []):
        st.success(message)


def render_exports(session: Session) -> None:
    st.subheader("Export")
    cols = st.columns(3)
    fmt = cols[0].selectbox("Format", options=["xlsx", "txt"])
    status_filter = cols[1].selectbox("Rows", options=list(EXPORT_FILTERS))
    include_status = cols[2].checkbox("Include status column", value=session.template.export_settings.include_status)
    try:
        payload, name = export_bytes(session, fmt, status_filter, include_status)
    except ExportError as exc:
        st.warning(str(exc))
    else:
        st.download_button("Download export", data=payload, file_name=name, width="stretch")
    st.download_button(
        "Download error report (CSV)",
        data=error_report_bytes(session),
        file_name=f"{session.template.name}_errors.csv",
        mime="text/csv",
        width="stretch",
    )


def set_visuals() -> None:
    st.set_page_config(page_title="template-maestro", layout="wide", initial_sidebar_state="expanded")


def main() -> None:
    set_visuals()
    ensure_state()

    st.title("template-maestro")
    st.caption("Upload a template workbook and a data file, review every cell against the template, fix and export.")

    template_upload = st.file_uploader(
        "Template workbook or template JSON",
        type=[ext.lstrip(".") for ext in sorted(TEMPLATE_EXTS)],
        key="template_input",
    )
    if template_upload is not None:
        try:
            st.session_state["template"] = load_template_from_upload(template_upload)
        except (TemplateError, ValueError) as exc:
            st.error(str(exc))
            return

    template: Optional[Template] = st.session_state.get("template")
    if template is None:
        st.info("Start by uploading a template (.xlsx, .xlsm or an extracted .json).")
        return

    render_template_summary(template)
    render_auto_fix_settings(template)

    data_upload = st.file_uploader(
        "Data file",
        type=[ext.lstrip(".") for ext in sorted(DATA_EXTS)],
        key="data_input",
    )
    mode = st.radio("Column mapping", options=["named", "positional"], horizontal=True, key="mapping_mode")
    if st.button("Validate", type="primary", disabled=data_upload is None):
        try:
            st.session_state["session"] = run_review(template, data_upload, mode)
            st.session_state["messages"] = []
        except (ImportError, ValueError) as exc:
            st.error(str(exc))
            return

    session: Optional[Session] = st.session_state.get("session")
    if session is None:
        return
    session.template = template
    render_actions(session)
    render_review(session)
    render_editor(session)
    render_exports(session)


if __name__ == "__main__":
    main()
