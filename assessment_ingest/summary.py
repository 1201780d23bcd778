from __future__ import annotations
from typing import Any, Dict, Iterable

import numpy as np
import pandas as pd

from .scoring import record_level


def _records_frame(records: Iterable[Any]) -> pd.DataFrame:
    rows = [r.to_dict() if hasattr(r, "to_dict") else dict(r) for r in records]
    return pd.DataFrame(rows)


def _distribution(levels: pd.Series) -> Dict[str, int]:
    dist = levels.dropna().astype(int).value_counts().sort_index()
    return {str(k): int(v) for k, v in dist.items()}


def summarize_assessments(records: Iterable[Any]) -> Dict[str, Any]:
    """
    Totals for a set of canonical assessment records.

    Only base records (question_id "overall") that are not placeholders count
    as assessments; subscore siblings are reported separately. Levels come from
    the scoring registry (score cut points, else level text).
    """
    df = _records_frame(records)
    empty = {
        "total_students": 0,
        "total_assessments": 0,
        "total_subscores": 0,
        "placeholders": 0,
        "average_scale_score": 0.0,
        "performance_level_distribution": {},
        "subject_breakdown": {},
        "grade_breakdown": {},
    }
    if df.empty:
        return empty

    is_base = df["question_id"] == "overall"
    placeholders = df["is_placeholder"].astype(bool)
    base = df[is_base & ~placeholders].copy()

    out = dict(empty)
    out["total_students"] = int(df["student_id"].replace("", np.nan).dropna().nunique())
    out["total_assessments"] = int(len(base))
    out["total_subscores"] = int((~is_base).sum())
    out["placeholders"] = int(placeholders.sum())
    if base.empty:
        return out

    scored = pd.to_numeric(base["scale_score"], errors="coerce")
    scored = scored[scored > 0]
    out["average_scale_score"] = round(float(scored.mean()), 2) if not scored.empty else 0.0

    base["level_num"] = [record_level(r) for r in base.to_dict("records")]
    out["performance_level_distribution"] = _distribution(base["level_num"])

    base["scale_num"] = pd.to_numeric(base["scale_score"], errors="coerce").replace(0, np.nan)

    def _breakdown(col: str) -> Dict[str, Dict[str, Any]]:
        g = base.groupby(col, dropna=False).agg(
            count=("assessment_type", "count"),
            students=("student_id", "nunique"),
            average_scale_score=("scale_num", "mean"),
        )
        res = {}
        for key, r in g.iterrows():
            avg = r["average_scale_score"]
            res[str(key)] = {
                "count": int(r["count"]),
                "students": int(r["students"]),
                "average_scale_score": 0.0 if pd.isna(avg) else round(float(avg), 2),
                "performance_level_distribution": _distribution(base.loc[base[col] == key, "level_num"]),
            }
        return res

    out["subject_breakdown"] = _breakdown("subject")
    out["grade_breakdown"] = _breakdown("grade")
    return out
