from __future__ import annotations
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .models import CanonicalAssessmentRecord, CanonicalStudentRecord, FieldMapping
from .scoring import find_config, performance_level, score_range
from .utils import (
    clean_cell,
    is_blank,
    norm_column_name,
    norm_text,
    parse_int_or_zero,
    parse_number,
    try_parse_date,
)

logger = logging.getLogger(__name__)

ASSESSMENT_TOKEN_RE = re.compile(
    r"(?<![a-z])(ela|english|math\w*|science|njsla|njsls|assessment|start\s?strong)(?![a-z])"
)
SCHOOL_YEAR_RE = re.compile(r"(\d{4}-\d{2})(?![\d-])")
BLOCK_GRADE_RE = re.compile(r"(?<![a-z])gr(?:ade)?\.?\s*(\d{1,2}|k)(?![a-z0-9])")
UNIQUE_SUFFIX_RE = re.compile(r"__\d+$")
COMPOSITE_SEP = " - "

DEMOGRAPHIC_COLUMNS = ("Student", "ID", "Grade")

SUBSCORE_DIMENSIONS = [
    "Reading - Literary Text",
    "Reading - Informational Text",
    "Reading - Vocabulary",
    "Writing - Expression",
    "Writing - Conventions",
]

FORM_A = "FORM_A"
FORM_B = "FORM_B"
# =========================

# Assessment blocks / type inference
# =========================
def has_assessment_token(name: Any) -> bool:
    return bool(ASSESSMENT_TOKEN_RE.search(norm_text(name)))


def find_assessment_blocks(headers: Sequence[str]) -> List[str]:
    """
    Distinct assessment block names, first-seen order.

    A block is either a bare column carrying an assessment/subject token, or the
    prefix of a composite "<block> - <attribute>" column when that prefix carries one.
    """
    blocks: List[str] = []
    for h in headers:
        name = str(h)
        if name in DEMOGRAPHIC_COLUMNS or name.startswith("_"):
            continue
        if COMPOSITE_SEP in name:
            base = name.split(COMPOSITE_SEP)[0].strip()
        else:
            base = UNIQUE_SUFFIX_RE.sub("", name).strip()
        if base and has_assessment_token(base) and base not in blocks:
            blocks.append(base)
    return blocks


def _subject_tag(t: str) -> Optional[str]:
    if re.search(r"(?<![a-z])(ela|english)(?![a-z])", t):
        return "ELA"
    if re.search(r"(?<![a-z])math", t):
        return "MATH"
    if "science" in t:
        return "SCIENCE"
    return None


def infer_subject(name: Any) -> str:
    t = norm_text(name)
    if re.search(r"(?<![a-z])ela(?![a-z])", t):
        return "ELA"
    if re.search(r"(?<![a-z])math", t):
        return "Mathematics"
    return "ELA"


def infer_assessment_type(name: Any) -> Tuple[str, Optional[str]]:
    """
    (assessment_type, assessment_form) from a block name.

    start strong > njsls (form a / form b, Form A when unspecified) > njsla > subject only.
    """
    t = norm_text(name)
    tag = _subject_tag(t)
    if re.search(r"start\s?strong|start_strong", t):
        return f"START_STRONG_{tag or 'ELA'}", None
    if "njsls" in t:
        form = FORM_B if "form b" in t else FORM_A
        return f"LINKIT_NJSLS_{tag or 'ELA'}", form
    if "njsla" in t:
        return f"NJSLA_{tag or 'ELA'}", None
    return f"NJSLA_{tag or 'ELA'}", None


def extract_school_year(name: Any) -> Optional[str]:
    m = SCHOOL_YEAR_RE.search(str(name or ""))
    return m.group(1) if m else None


def split_student_name(full_name: Any) -> Tuple[str, str]:
    """'Doe, Jane' -> ('Jane', 'Doe'); 'Jane Q Doe' -> ('Jane Q', 'Doe')."""
    s = " ".join(str(full_name or "").split())
    if not s:
        return "", ""
    if "," in s:
        last, first = s.split(",", 1)
        return first.strip(), last.strip()
    parts = s.split(" ")
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]
# =========================

# Row -> assessment records (fan-out)
# =========================
def _value(row: Dict[str, Any], block: str, attr: str, allow_bare: bool) -> Optional[str]:
    v = row.get(f"{block}{COMPOSITE_SEP}{attr}")
    if is_blank(v) and allow_bare:
        v = row.get(attr)
    if is_blank(v):
        return None
    return clean_cell(v)


def _block_grade(block: str, fallback: str) -> str:
    m = BLOCK_GRADE_RE.search(norm_text(block))
    if m:
        return m.group(1).upper() if m.group(1) == "k" else m.group(1)
    return fallback


def transform_assessment_row(row: Dict[str, Any]) -> Iterator[CanonicalAssessmentRecord]:
    """
    Expand one vendor row into canonical assessment records.

    Yields, per assessment block, a base record followed by one sibling record per
    subscore dimension present. A row without blocks yields a single placeholder.
    """
    headers = list(row.keys())
    blocks = find_assessment_blocks(headers)

    student_id = clean_cell(row.get("_student_uuid")) or clean_cell(row.get("ID"))
    school_student_id = clean_cell(row.get("_school_student_id")) or clean_cell(row.get("ID"))
    student_name = clean_cell(row.get("Student"))
    grade = clean_cell(row.get("Grade"))

    if not blocks:
        yield CanonicalAssessmentRecord(
            student_id=student_id,
            student_name=student_name,
            assessment_name="No assessment data",
            subject="ELA",
            grade=grade,
            scale_score=0,
            grade_level=grade,
            assessment_type="NJSLA_ELA",
            school_student_id=school_student_id,
            question_id="overall",
            raw_score=0,
            is_placeholder=True,
        )
        return

    # bare "Level"/"Scaled" columns only make sense for a single-block file
    allow_bare = len(blocks) == 1

    for block in blocks:
        atype, form = infer_assessment_type(block)
        subject = infer_subject(block)

        date_txt = _value(row, block, "Result Date", allow_bare)
        test_date = try_parse_date(date_txt) or date_txt

        level = _value(row, block, "Level", allow_bare) or _value(row, block, "Average", allow_bare) or ""

        scaled = _value(row, block, "Scaled", allow_bare)
        percent = _value(row, block, "Percent", allow_bare)
        raw = _value(row, block, "Raw", allow_bare) or _value(row, block, "Raw Score", allow_bare)

        raw_score = parse_int_or_zero(raw) if raw is not None else None
        percent_score = parse_int_or_zero(percent) if percent is not None else None
        if scaled is not None:
            scale, score_type = parse_int_or_zero(scaled), "scale_score"
        elif percent is not None:
            scale, score_type = percent_score, "percent_score"
        elif raw is not None:
            scale, score_type = raw_score, "raw_score"
        else:
            scale, score_type = 0, "scale_score"

        block_grade = _block_grade(block, grade)
        school_year = extract_school_year(block)
        config = find_config(atype, block_grade, form)
        min_s, max_s = score_range(atype, block_grade, form)

        dims: Dict[str, Dict[str, Any]] = {}
        for dim in SUBSCORE_DIMENSIONS:
            d_level = _value(row, block, f"{dim} (Level)", False)
            d_scaled = _value(row, block, f"{dim} (Scaled)", False)
            if d_level is None and d_scaled is None:
                continue
            dims[dim] = {
                "question_id": norm_column_name(dim),
                "performance_level_text": d_level or "",
                "scale_score": parse_int_or_zero(d_scaled),
            }

        common = dict(
            student_id=student_id,
            student_name=student_name,
            assessment_date=test_date,
            subject=subject,
            grade=block_grade,
            test_date=test_date,
            grade_level=grade,
            assessment_type=atype,
            school_student_id=school_student_id,
            school_year=school_year,
            min_possible_score=min_s,
            max_possible_score=max_s,
            assessment_form=form,
        )

        yield CanonicalAssessmentRecord(
            assessment_name=block,
            scale_score=scale,
            performance_level_text=level,
            performance_level=performance_level(scale, level, config),
            subscores={d["question_id"]: {"level": d["performance_level_text"], "scaled": d["scale_score"]}
                       for d in dims.values()},
            question_id="overall",
            raw_score=raw_score,
            percent_score=percent_score,
            score_type=score_type,
            **common,
        )

        for dim, d in dims.items():
            yield CanonicalAssessmentRecord(
                assessment_name=f"{block}{COMPOSITE_SEP}{dim}",
                scale_score=d["scale_score"],
                performance_level_text=d["performance_level_text"],
                subscores={"dimension": dim, "parent_question_id": "overall"},
                question_id=d["question_id"],
                score_type="scale_score",
                **common,
            )
# =========================

# Roster row -> student record
# =========================
STUDENT_FIELD_TYPES = {
    "school_student_id": "text",
    "first_name": "text",
    "last_name": "text",
    "full_name": "text",
    "dob": "date",
    "grade_level": "integer",
    "enrollment_date": "date",
    "graduation_year": "integer",
    "current_gpa": "numeric",
    "academic_status": "text",
    "emergency_contact_name": "text",
    "emergency_contact_phone": "text",
    "emergency_contact_relationship": "text",
    "school_id": "text",
}

GRADE_WORDS = {"k": 0, "kg": 0, "kindergarten": 0, "pk": -1, "pre-k": -1, "prek": -1, "pre k": -1}


def _coerce(value: Any, kind: str) -> Any:
    s = clean_cell(value)
    if kind == "integer":
        t = norm_text(s)
        if t in GRADE_WORDS:
            return GRADE_WORDS[t]
        n = parse_number(s)
        # unparseable values are kept so the validator can report them
        return int(n) if n is not None and float(n).is_integer() else (n if n is not None else s)
    if kind == "numeric":
        n = parse_number(s)
        return n if n is not None else s
    if kind == "date":
        return try_parse_date(s) or s
    return s


def transform_student_row(
    row: Dict[str, Any],
    mappings: Sequence[FieldMapping],
    *,
    school_id: Optional[str] = None,
) -> CanonicalStudentRecord:
    values: Dict[str, Any] = {}
    mapped_sources = set()

    for m in mappings:
        kind = STUDENT_FIELD_TYPES.get(m.target_field)
        if kind is None:
            continue
        mapped_sources.add(m.source_field)
        raw = row.get(m.source_field)
        if is_blank(raw) and m.default_value not in (None, ""):
            raw = m.default_value
        if is_blank(raw) or m.target_field in values:
            continue
        values[m.target_field] = _coerce(raw, kind)

    if values.get("full_name") and not (values.get("first_name") and values.get("last_name")):
        first, last = split_student_name(values["full_name"])
        values.setdefault("first_name", first)
        values.setdefault("last_name", last)

    special_needs = {}
    for col, v in row.items():
        if col in mapped_sources or str(col).startswith("_") or is_blank(v):
            continue
        special_needs[str(col)] = clean_cell(v)

    status = norm_text(values.get("academic_status")) or "active"

    return CanonicalStudentRecord(
        school_student_id=str(values.get("school_student_id", "") or ""),
        first_name=str(values.get("first_name", "") or ""),
        last_name=str(values.get("last_name", "") or ""),
        dob=values.get("dob"),
        grade_level=values.get("grade_level"),
        enrollment_date=values.get("enrollment_date"),
        graduation_year=values.get("graduation_year"),
        current_gpa=values.get("current_gpa"),
        academic_status=status,
        special_needs=special_needs,
        school_id=school_id if school_id is not None else values.get("school_id"),
        emergency_contact_name=values.get("emergency_contact_name"),
        emergency_contact_phone=values.get("emergency_contact_phone"),
        emergency_contact_relationship=values.get("emergency_contact_relationship"),
    )
