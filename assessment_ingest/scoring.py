"""
Score ranges and performance-level cut points per assessment program, subject
and grade.

The registry lives in data/scoring.json, keyed like "NJSLA_ELA_4",
"LINKIT_NJSLS_MATH_5_FORM_B" or "START_STRONG_ELA_4". A record's level comes
from its score when the score falls inside one of the config's bands, otherwise
from its level text (the config's vendor wording first, then generic keywords).
Start Strong reads the text first, since its exports report bands rather than
comparable scores.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .utils import load_json, norm_text, parse_number, scoring_path

logger = logging.getLogger(__name__)

# fallback (min, max) per program prefix; None = not scored numerically
SCORE_RANGES = {
    "NJSLA_": (650, 850),
    "LINKIT_NJSLS_": (0, 100),
    "START_STRONG_": (None, None),
}
UNSCORED_PREFIX = "START_STRONG_"

# generic level wording; order matters: "partially meeting" before "meeting"
LEVEL_KEYWORDS = [
    ("exceed", 5),
    ("partially", 2),
    ("approach", 3),
    ("not yet", 1),
    ("did not", 1),
    ("below", 1),
    ("meeting", 4),
    ("meets", 4),
    ("met", 4),
]


@dataclass(frozen=True)
class PerformanceBand:
    level: int
    min_score: float
    max_score: float
    description: str
    vendor_text: Tuple[str, ...] = ()

    def contains(self, score: float) -> bool:
        return self.min_score <= score <= self.max_score


@dataclass(frozen=True)
class AssessmentConfig:
    key: str
    assessment_type: str
    display_name: str
    subject: str
    grade: str
    program: str
    scoring_method: str
    level_source: str
    min_score: float
    max_score: float
    bands: Tuple[PerformanceBand, ...] = ()

    def band_for_score(self, score: Any) -> Optional[PerformanceBand]:
        n = parse_number(score)
        if n is None:
            return None
        for band in self.bands:
            if band.contains(n):
                return band
        return None

    def level_from_text(self, text: Any) -> Optional[int]:
        t = norm_text(text)
        if not t:
            return None
        for band in self.bands:
            if any(t == norm_text(v) for v in band.vendor_text):
                return band.level
        for band in self.bands:
            if any(norm_text(v) in t for v in band.vendor_text):
                return band.level
        return None


def _parse_config(key: str, d: Dict[str, Any]) -> AssessmentConfig:
    lo, hi = d.get("score_range", [0, 0])
    bands = tuple(
        PerformanceBand(
            level=int(b["level"]),
            min_score=float(b["min"]),
            max_score=float(b["max"]),
            description=str(b.get("description", "")),
            vendor_text=tuple(b.get("vendor_text", [])),
        )
        for b in d.get("levels", [])
    )
    return AssessmentConfig(
        key=key,
        assessment_type=d["assessment_type"],
        display_name=d.get("display_name", key),
        subject=d.get("subject", ""),
        grade=str(d.get("grade", "")),
        program=d.get("program", ""),
        scoring_method=d.get("scoring_method", "scale_score"),
        level_source=d.get("level_source", "score"),
        min_score=float(lo),
        max_score=float(hi),
        bands=bands,
    )


def load_configs(raw: Optional[Mapping[str, Any]] = None) -> Dict[str, AssessmentConfig]:
    raw = raw if raw is not None else load_json(scoring_path(), {})
    out: Dict[str, AssessmentConfig] = {}
    for key, d in raw.items():
        if not isinstance(d, dict):
            continue
        try:
            out[key] = _parse_config(key, d)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping scoring config %s: %s", key, e)
    return out


ASSESSMENT_CONFIGS: Dict[str, AssessmentConfig] = load_configs()


def _grade_key(grade: Any) -> str:
    g = str(grade or "").strip()
    return str(int(g)) if g.isdigit() else g.upper()


def config_key(assessment_type: str, grade: Any, form: Optional[str] = None) -> str:
    key = f"{assessment_type}_{_grade_key(grade)}"
    if assessment_type.startswith("LINKIT_NJSLS_"):
        key = f"{key}_{form or 'FORM_A'}"
    return key


def find_config(
    assessment_type: str,
    grade: Any,
    form: Optional[str] = None,
    configs: Optional[Mapping[str, AssessmentConfig]] = None,
) -> Optional[AssessmentConfig]:
    configs = configs if configs is not None else ASSESSMENT_CONFIGS
    return configs.get(config_key(assessment_type, grade, form))


def _int_if_whole(x: float):
    return int(x) if float(x).is_integer() else x


def score_range(
    assessment_type: str,
    grade: Any = None,
    form: Optional[str] = None,
) -> Tuple[Optional[float], Optional[float]]:
    """(min, max) possible score; (None, None) for programs reported in bands only."""
    if assessment_type.startswith(UNSCORED_PREFIX):
        return None, None
    cfg = find_config(assessment_type, grade, form) if grade not in (None, "") else None
    if cfg is not None:
        return _int_if_whole(cfg.min_score), _int_if_whole(cfg.max_score)
    for prefix, rng in SCORE_RANGES.items():
        if assessment_type.startswith(prefix):
            return rng
    return None, None


def level_number_from_text(text: Any) -> Optional[int]:
    t = norm_text(text)
    if not t:
        return None
    m = parse_number(t)
    if m is not None and 1 <= m <= 5:
        return int(m)
    for kw, n in LEVEL_KEYWORDS:
        if kw in t:
            return n
    return None


def performance_level(score: Any, level_text: Any, config: Optional[AssessmentConfig]) -> Optional[int]:
    if config is None:
        return level_number_from_text(level_text)

    n = parse_number(score)
    # 0 is how a missing score reads after coercion
    scored = n is not None and n > 0
    by_score = config.band_for_score(n) if scored else None
    by_text = config.level_from_text(level_text)

    if config.level_source == "text":
        found = by_text or (by_score.level if by_score else None)
    else:
        found = (by_score.level if by_score else None) or by_text
    return found if found is not None else level_number_from_text(level_text)


def record_level(record: Mapping[str, Any]) -> Optional[int]:
    """Level for a canonical assessment record (or its dict form)."""
    stored = record.get("performance_level")
    if stored is not None and stored == stored:  # NaN from a DataFrame row
        return int(stored)
    atype = str(record.get("assessment_type") or "")
    grade = record.get("grade") or record.get("grade_level")
    cfg = find_config(atype, grade, record.get("assessment_form")) if atype else None
    return performance_level(record.get("scale_score"), record.get("performance_level_text"), cfg)
