from __future__ import annotations
import json
from io import BytesIO
from typing import Any, Dict, List

import pandas as pd


def _summary_df(result: Any) -> pd.DataFrame:
    items: Dict[str, Any] = {"Source format": result.source_format.value}
    summary = getattr(result, "summary", None)
    if summary is None:
        summary = result.counts
    for k, v in summary.items():
        if isinstance(v, dict):
            v = json.dumps(v, ensure_ascii=False)
        items[k.replace("_", " ").capitalize()] = v
    return pd.DataFrame({"Metric": list(items.keys()), "Value": list(items.values())})


def _validation_df(result: Any) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for e in result.structure.errors:
        rows.append({"Row": "", "Source row": "", "Key": "", "Level": "error", "Message": e.message})
    for e in result.structure.warnings:
        rows.append({"Row": "", "Source row": "", "Key": "", "Level": "warning", "Message": e.message})
    for r in result.rows:
        for m in r.errors:
            rows.append({"Row": r.row, "Source row": r.origin_row, "Key": r.key, "Level": "error", "Message": m})
        for m in r.warnings:
            rows.append({"Row": r.row, "Source row": r.origin_row, "Key": r.key, "Level": "warning", "Message": m})
    return pd.DataFrame(rows, columns=["Row", "Source row", "Key", "Level", "Message"])


def _reconciliation_df(result: Any) -> pd.DataFrame:
    bulk = getattr(result, "reconciliation", None)
    rows = []
    if bulk is not None:
        for i, res in enumerate(bulk.outcomes):
            rows.append({
                "Batch row": i + 1,
                "Operation": res.operation.value,
                "Success": res.success,
                "Student ID": res.student_id or "",
                "Skip reason": res.skip_reason.value if res.skip_reason else "",
                "Changed fields": ", ".join(res.changed_fields),
                "Error": res.error or "",
                "Warnings": "; ".join(res.warnings),
            })
    return pd.DataFrame(rows, columns=[
        "Batch row", "Operation", "Success", "Student ID", "Skip reason", "Changed fields", "Error", "Warnings",
    ])


def _mappings_df(result: Any) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "Source field": m.source_field,
            "Target field": m.target_field,
            "Required": m.required,
            "Default value": m.default_value or "",
            "Similarity": "" if m.similarity is None else m.similarity,
            "Description": m.description,
        }
        for m in result.mappings
    ], columns=["Source field", "Target field", "Required", "Default value", "Similarity", "Description"])


def _records_df(result: Any) -> pd.DataFrame:
    rows = []
    for rec in result.records:
        d = rec.to_dict()
        for k in ("subscores", "special_needs"):
            if k in d:
                d[k] = json.dumps(d[k], ensure_ascii=False) if d[k] else ""
        rows.append(d)
    return pd.DataFrame(rows)


def export_report_bytes(result: Any) -> bytes:
    """
    Operator report for an import result as an .xlsx workbook:
    Summary, Validation, Reconciliation (rosters), Mappings, Records.
    """
    summary_df = _summary_df(result)
    validation_df = _validation_df(result)
    recon_df = _reconciliation_df(result) if hasattr(result, "reconciliation") else None
    mappings_df = _mappings_df(result)
    records_df = _records_df(result)

    bio = BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        summary_df.to_excel(writer, index=False, sheet_name="Summary")
        validation_df.to_excel(writer, index=False, sheet_name="Validation")
        if recon_df is not None:
            recon_df.to_excel(writer, index=False, sheet_name="Reconciliation")
        mappings_df.to_excel(writer, index=False, sheet_name="Mappings")
        if not records_df.empty:
            records_df.to_excel(writer, index=False, sheet_name="Records")

        wb = writer.book
        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})
        fmt_lvl_err = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FCE8E6"})
        fmt_lvl_warn = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FEF7E0"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 18, max_width: int = 60):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 6))
                ws.set_column(col, col, max(default_width, w))

        format_df_sheet("Summary", summary_df, default_width=28, max_width=80)
        format_df_sheet("Validation", validation_df, default_width=14, max_width=70)
        if recon_df is not None:
            format_df_sheet("Reconciliation", recon_df)
        format_df_sheet("Mappings", mappings_df, default_width=24)
        if not records_df.empty:
            format_df_sheet("Records", records_df, default_width=14, max_width=40)

        wsv = writer.sheets.get("Validation")
        if wsv is not None and not validation_df.empty:
            jlvl = list(validation_df.columns).index("Level")
            last_row = len(validation_df)
            wsv.set_column(jlvl + 1, jlvl + 1, 70)
            wsv.conditional_format(1, jlvl, last_row, jlvl, {
                "type": "text",
                "criteria": "containing",
                "value": "error",
                "format": fmt_lvl_err
            })
            wsv.conditional_format(1, jlvl, last_row, jlvl, {
                "type": "text",
                "criteria": "containing",
                "value": "warning",
                "format": fmt_lvl_warn
            })

    return bio.getvalue()
