from __future__ import annotations
import logging
import re
from typing import Dict, List, Optional, Sequence

from .errors import HeaderResolutionError
from .models import ParsedTable
from .utils import norm_text, rule

logger = logging.getLogger(__name__)

NUMERIC_RE = re.compile(r"^\s*[-+]?\d+([.,]\d+)?\s*$")
DATE_LIKE_RE = re.compile(
    r"^\s*\d{1,2}[./-]\d{1,2}([./-]\d{2,4})?\s*$|^\s*\d{4}[./-]\d{1,2}[./-]\d{1,2}\s*$"
)

# first main-header label matching this starts the assessment columns
ASSESSMENT_BOUNDARY_RE = re.compile(r"njsla|njsls|assessment|\d{4}-\d{2}|(?<![a-z])(ela|math\w*|science|subject|standards?)(?![a-z])")

DEMOGRAPHIC_TOKENS = ("student", "id", "grade")

# Keywords typical for roster / gradebook header rows
HEADER_KWS = [
    "student", "first name", "last name", "name", "id", "grade", "dob", "birth",
    "gender", "school", "enroll", "graduation", "gpa", "status", "phone",
    "contact", "guardian", "parent", "email", "address", "homeroom", "teacher",
    "score", "level", "date", "subject",
]


def _cell(row: Sequence[str], i: int) -> str:
    if i < len(row):
        return str(row[i] if row[i] is not None else "").strip()
    return ""


def _make_unique(cols: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out = []
    for c in cols:
        base = str(c).strip()
        if base == "" or base.lower() == "nan":
            base = "col"
        n = seen.get(base, 0) + 1
        seen[base] = n
        out.append(base if n == 1 else f"{base}__{n}")
    return out


def _row_tokens(row: Sequence[str]) -> List[str]:
    return [norm_text(v) for v in row]


def _is_main_header(row: Sequence[str]) -> bool:
    # every demographic token must be present as a whole cell or a word inside one
    cells = _row_tokens(row)
    words = set()
    for c in cells:
        words.update(re.split(r"[^a-z0-9]+", c))
    return all(t in words for t in DEMOGRAPHIC_TOKENS)


def _is_blank_row(row: Sequence[str]) -> bool:
    return all(str(v if v is not None else "").strip() == "" for v in row)


def _extract_metadata(rows: Sequence[Sequence[str]], n: int) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for row in list(rows)[:n]:
        cells = [str(v).strip() for v in row]
        if len(cells) < 2 or not cells[0]:
            continue
        key = cells[0].rstrip(":").strip()
        meta[key] = cells[1]
    return meta


def _find_boundary(main: List[str]) -> int:
    for i, label in enumerate(main):
        if ASSESSMENT_BOUNDARY_RE.search(norm_text(label)):
            return i
    return len(main)


def _data_rows(rows, start: int, headers: List[str]):
    data: List[Dict[str, str]] = []
    origin: List[int] = []
    for idx in range(start, len(rows)):
        row = rows[idx]
        if _is_blank_row(row):
            continue
        data.append({h: _cell(row, i) for i, h in enumerate(headers)})
        origin.append(idx + 1)
    return data, origin


def resolve_multi_header(
    rows: Sequence[Sequence[str]],
    *,
    min_rows: Optional[int] = None,
    scan_start: Optional[int] = None,
    scan_end: Optional[int] = None,
    metadata_rows: Optional[int] = None,
) -> ParsedTable:
    """
    Merge a split vendor header (main row + sub-attribute row) into composite names.

    Layout:
      rows[0..k]    metadata block (key, value)
      rows[m]       main header: Student | ID | Grade | <assessment> | <assessment> ...
      rows[m+1]     sub header:           |    |       | Result Date  | Scaled ...
      rows[m+2..]   data

    Columns before the first assessment-looking label keep the main label,
    later columns become "<main> - <sub>" (or main alone when sub is blank/equal).
    Raises HeaderResolutionError when the table is too short or no main header is found.
    """
    min_rows = int(min_rows if min_rows is not None else rule("headers", "min_rows", 6))
    scan_start = int(scan_start if scan_start is not None else rule("headers", "scan_start", 3))
    scan_end = int(scan_end if scan_end is not None else rule("headers", "scan_end", 6))
    metadata_rows = int(metadata_rows if metadata_rows is not None else rule("headers", "metadata_rows", 4))

    rows = list(rows)
    if len(rows) < min_rows:
        raise HeaderResolutionError(f"Need at least {min_rows} rows for a split header, got {len(rows)}")

    main_idx = None
    for i in range(scan_start, min(scan_end, len(rows) - 1)):
        if _is_main_header(rows[i]):
            main_idx = i
            break
    if main_idx is None:
        raise HeaderResolutionError(
            f"No row in {scan_start + 1}..{scan_end} carries student/id/grade columns"
        )

    main_row = rows[main_idx]
    sub_row = rows[main_idx + 1]
    width = max(len(main_row), len(sub_row))
    main = [_cell(main_row, i) for i in range(width)]
    sub = [_cell(sub_row, i) for i in range(width)]

    boundary = _find_boundary(main)

    headers: List[str] = []
    last_main = ""
    for i in range(width):
        m = main[i]
        s = sub[i]
        if i < boundary:
            headers.append(m or f"col_{i + 1}")
            continue
        # merged block headers leave the label only on the first column
        if not m:
            m = last_main
        last_main = m or last_main
        if not m:
            headers.append(s or f"col_{i + 1}")
        elif s and s != m:
            headers.append(f"{m} - {s}")
        else:
            headers.append(m)

    headers = _make_unique(headers)
    data_start = main_idx + 2
    data, origin = _data_rows(rows, data_start, headers)
    logger.info(
        "Split header found at row %d (assessment columns from %d), %d data rows",
        main_idx + 1, boundary + 1, len(data),
    )
    return ParsedTable(
        headers=headers,
        rows=data,
        origin_rows=origin,
        metadata=_extract_metadata(rows, min(metadata_rows, main_idx)),
        header_row=main_idx + 1,
        data_start_row=data_start + 1,
    )
# =========================

# Single header row: keyword / header-likeness scoring
# =========================
def _row_headerish_score(row: Sequence[str]) -> float:
    # non-empty, short, mostly not numeric
    vals = [str(v).strip() for v in row]
    nonnull = sum(1 for v in vals if v)
    shortish = sum(1 for v in vals if 2 <= len(v) <= 80)
    not_numeric = sum(1 for v in vals if v and not NUMERIC_RE.match(v) and not DATE_LIKE_RE.match(v))
    return float(nonnull) * 0.2 + 0.3 * float(shortish) + 0.5 * float(not_numeric)


def _row_keyword_score(row: Sequence[str]) -> float:
    score = 0.0
    for v in row:
        s = norm_text(v)
        if not s:
            continue
        for k in HEADER_KWS:
            if re.search(rf"(?<![a-z]){re.escape(k)}", s):
                score += 1.0
                break
    return score


def _row_dataish_score(row: Sequence[str]) -> float:
    hits = 0
    for v in row:
        s = str(v).strip()
        if NUMERIC_RE.match(s) or DATE_LIKE_RE.match(s):
            hits += 1
    return float(hits)


def detect_header_row(rows: Sequence[Sequence[str]], max_scan_rows: Optional[int] = None) -> Optional[int]:
    """Index of the most header-like row among the first rows, or None."""
    n = min(int(max_scan_rows if max_scan_rows is not None else rule("headers", "single_scan_rows", 10)), len(rows))
    best = None
    best_score = 0.0
    for i in range(n):
        row = rows[i]
        nonempty = sum(1 for v in row if str(v).strip())
        if nonempty < 2 and not (nonempty == 1 and len(row) == 1):
            continue
        kw = _row_keyword_score(row)
        if kw == 0:
            continue
        score = 2.2 * kw + 1.1 * _row_headerish_score(row) - 1.5 * _row_dataish_score(row)
        # earlier rows preferred
        score -= 0.65 * i
        if score > best_score:
            best_score = score
            best = i
    return best


def resolve_single_header(rows: Sequence[Sequence[str]], max_scan_rows: Optional[int] = None) -> ParsedTable:
    rows = list(rows)
    width = max((len(r) for r in rows), default=0)
    idx = detect_header_row(rows, max_scan_rows)

    if idx is None:
        # nothing header-like: synthetic names, every row is data
        headers = [f"Column_{i + 1}" for i in range(width)]
        data, origin = _data_rows(rows, 0, headers)
        logger.info("No header row found; using %d synthetic column names", width)
        return ParsedTable(headers=headers, rows=data, origin_rows=origin, header_row=0, data_start_row=1)

    header_row = rows[idx]
    headers = _make_unique([_cell(header_row, i) or f"col_{i + 1}" for i in range(width)])
    data, origin = _data_rows(rows, idx + 1, headers)
    logger.info("Header row found at row %d, %d data rows", idx + 1, len(data))
    return ParsedTable(
        headers=headers,
        rows=data,
        origin_rows=origin,
        metadata=_extract_metadata(rows, idx),
        header_row=idx + 1,
        data_start_row=idx + 2,
    )
