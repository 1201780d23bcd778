import os
import re
import json
import hashlib
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional
from dateutil import parser as dtparser
from rapidfuzz import fuzz

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = PACKAGE_DIR / "data"

_DATA_DIR_ENV = os.environ.get("ASSESSMENT_INGEST_DATA_DIR")
APPDATA = os.environ.get("APPDATA")
if _DATA_DIR_ENV:
    USER_DATA_DIR = Path(_DATA_DIR_ENV)
elif APPDATA:
    USER_DATA_DIR = Path(APPDATA) / "AssessmentIngest" / "data"
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

BLANK_TOKENS = ("", "nan", "none", "null", "nat")


def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default


def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)


_DASH_CHARS_RE = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2212]")
_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP variants
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def norm_text(s: Any) -> str:
    """
    Text normalization used by every header/token comparison:
    - lower
    - BOM and non-breaking spaces
    - outer quotes
    - every dash variant -> '-'
    - collapsed whitespace
    """
    if s is None:
        return ""

    s = str(s)

    # invisible characters that CSV/Excel exports like to carry
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    s = s.lower()
    s = _DASH_CHARS_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def norm_column_name(name: Any) -> str:
    # "Student ID #" -> "student_id"
    s = norm_text(name)
    s = _NON_ALNUM_RE.sub("_", s)
    return s.strip("_")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    return norm_text(value) in BLANK_TOKENS


def clean_cell(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        if v != v:  # NaN
            return ""
        if v.is_integer():
            return str(int(v))
    if isinstance(v, datetime):
        if v.hour == 0 and v.minute == 0 and v.second == 0:
            return v.strftime("%Y-%m-%d")
        return v.isoformat()
    if isinstance(v, date):
        return v.isoformat()
    s = str(v).replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    return s.strip()


def try_parse_date(s: Any) -> Optional[str]:
    # returns YYYY-MM-DD or None; US exports are month-first
    if s is None:
        return None

    if hasattr(s, "year") and hasattr(s, "month") and hasattr(s, "day"):
        return f"{int(s.year):04d}-{int(s.month):02d}-{int(s.day):02d}"

    txt = norm_text(s)
    if txt in BLANK_TOKENS:
        return None

    # yyyy-mm-dd[Thh:mm...]
    if re.match(r"^\d{4}[./-]\d{1,2}[./-]\d{1,2}([t ].*)?$", txt):
        try:
            return dtparser.parse(txt, dayfirst=False).strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    # mm/dd/yyyy, mm-dd-yy
    if re.match(r"^\d{1,2}[./-]\d{1,2}[./-]\d{2,4}$", txt):
        try:
            return dtparser.parse(txt, dayfirst=False).strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    # "May 1, 2024", "1 May 2024"
    if re.search(r"[a-z]{3,}", txt) and re.search(r"\d{4}", txt):
        try:
            return dtparser.parse(txt, dayfirst=False).strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    return None


_NUM_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")


def parse_number(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return None if x != x else float(x)
    s = str(x).strip().replace(",", "")
    if not s:
        return None
    m = _NUM_RE.fullmatch(s)
    if not m:
        return None
    return float(s)


def parse_int_or_zero(x: Any) -> int:
    # missing or unparseable scores are 0, never an error
    v = parse_number(x)
    if v is None:
        return 0
    return int(v)


def similarity(a: Any, b: Any) -> float:
    # normalized edit similarity in 0..1
    a = norm_text(a)
    b = norm_text(b)
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return fuzz.ratio(a, b) / 100.0


def column_signature(columns) -> str:
    # header-set fingerprint used to key mapping profiles
    joined = "||".join([norm_text(c) for c in columns])
    return hashlib.md5(joined.encode("utf-8")).hexdigest()


def rules_path() -> Path:
    override = os.environ.get("ASSESSMENT_INGEST_RULES")
    if override:
        return Path(override)
    return DEFAULT_DATA_DIR / "rules.json"


def scoring_path() -> Path:
    override = os.environ.get("ASSESSMENT_INGEST_SCORING")
    if override:
        return Path(override)
    return DEFAULT_DATA_DIR / "scoring.json"


def snapshots_dir() -> Path:
    p = USER_DATA_DIR / "snapshots"
    p.mkdir(parents=True, exist_ok=True)
    return p


RULES = load_json(rules_path(), {})


def rule(section: str, key: str, default: Any) -> Any:
    return RULES.get(section, {}).get(key, default)
