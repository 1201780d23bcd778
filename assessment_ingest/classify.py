from __future__ import annotations
import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from .header_detect import detect_header_row
from .models import SourceFormat
from .utils import norm_text, parse_number, rule, try_parse_date

logger = logging.getLogger(__name__)

BRANDING_RE = re.compile(r"link\s?it")

# letter lookarounds so that "relationship" or "analysis" do not count
DEMOGRAPHIC_RES = (
    re.compile(r"student"),
    re.compile(r"(?<![a-z])id(?![a-z])"),
    re.compile(r"grade"),
)
SUBJECT_RE = re.compile(r"(?<![a-z])(ela|math\w*|njsla|njsls)(?![a-z])")

SCHOOL_YEAR_RE = re.compile(r"\b\d{4}-\d{2}(?![\d-])")
STANDARDS_CODE_RE = re.compile(r"\b[a-z]{1,2}\.[a-z]{2}\.\d")
FINGERPRINT_KWS = [
    "scale score",
    "scaled",
    "performance level",
    "result date",
    "selected tests",
    "percent",
    "form a",
    "form b",
    "start strong",
    "startstrong",
    "dok",
]

COMPETING_SYSTEM_RE = re.compile(r"genesis|(?<![a-z])sis(?![a-z])")
DIRECT_RE = re.compile(r"njsla")
SCALE_RE = re.compile(r"scale")


def _row_text(row: Sequence[str]) -> str:
    return " | ".join(t for t in (norm_text(v) for v in row) if t)


def _is_sub_label_row(row: Sequence[str]) -> bool:
    if not row or str(row[0]).strip():
        return False
    cells = [str(v).strip() for v in row[1:] if str(v).strip()]
    return bool(cells) and not any(parse_number(c) is not None or try_parse_date(c) for c in cells)


def header_window(rows: Sequence[Sequence[str]], scan_rows: Optional[int] = None) -> List[Sequence[str]]:
    """
    Metadata rows plus the header row; rows below the header are data and are
    never classified.

    The header is the first row carrying student/id/grade tokens, else the most
    header-like row; with neither, only the first row is used. A split header's
    sub-label row (blank under the first column) belongs to the header.
    """
    n = scan_rows if scan_rows is not None else int(rule("classifier", "scan_rows", 8))
    window = list(rows)[:n]
    header_idx = next((i for i, row in enumerate(window) if has_demographics(_row_text(row))), None)
    if header_idx is None:
        header_idx = detect_header_row(window, n)
    if header_idx is None:
        header_idx = 0
    end = header_idx + 1
    if end < len(window) and _is_sub_label_row(window[end]):
        end += 1
    return window[:end]


def _scan_text(rows: Sequence[Sequence[str]], scan_rows: Optional[int] = None) -> str:
    return " | ".join(t for t in (_row_text(r) for r in header_window(rows, scan_rows)) if t)


def has_demographics(text: str) -> bool:
    return all(r.search(text) for r in DEMOGRAPHIC_RES)


def has_fingerprint(text: str) -> bool:
    if SCHOOL_YEAR_RE.search(text) or STANDARDS_CODE_RE.search(text):
        return True
    return any(k in text for k in FINGERPRINT_KWS)


def detect_linkit(text: str) -> bool:
    if BRANDING_RE.search(text):
        return True
    if not has_demographics(text):
        return False
    return bool(SUBJECT_RE.search(text)) or has_fingerprint(text)


def detect_genesis(text: str) -> bool:
    return bool(COMPETING_SYSTEM_RE.search(text))


def detect_njsla_direct(text: str) -> bool:
    return bool(DIRECT_RE.search(text) and SCALE_RE.search(text))


# first match wins
DETECTORS: List[Tuple[SourceFormat, Callable[[str], bool]]] = [
    (SourceFormat.LINKIT, detect_linkit),
    (SourceFormat.GENESIS, detect_genesis),
    (SourceFormat.NJSLA_DIRECT, detect_njsla_direct),
]


def classify(rows: Sequence[Sequence[str]], scan_rows: Optional[int] = None) -> SourceFormat:
    """
    Assign a SourceFormat from the first few rows of a raw table.

    Header rows of vendor exports often sit below a metadata block, so the
    metadata rows and the header row are consulted as one text blob. Data rows
    are not, so a student named "Ela" or a school called "Genesis Academy" never
    changes the format. Order of checks:
      1. vendor branding
      2. demographic tokens + a subject/program token
      3. demographic tokens + a vendor column fingerprint
      4. a competing SIS token
      5. a direct-assessment token + "scale"
      6. generic
    """
    text = _scan_text(rows, scan_rows)
    for fmt, detect in DETECTORS:
        if detect(text):
            logger.info("Classified source as %s", fmt.value)
            return fmt
    logger.info("Classified source as %s", SourceFormat.GENERIC.value)
    return SourceFormat.GENERIC
