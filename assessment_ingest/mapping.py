from __future__ import annotations
import logging
import re
from typing import Callable, Collection, Dict, List, Optional, Sequence, Set, Tuple

from .models import FieldMapping, SourceFormat
from .snapshots import SnapshotStore
from .transform import (
    COMPOSITE_SEP,
    extract_school_year,
    find_assessment_blocks,
    infer_assessment_type,
)
from .utils import column_signature, norm_column_name, norm_text, rule, similarity

logger = logging.getLogger(__name__)

PROFILE_NAMESPACE = "mapping_profiles"
# =========================

# LinkIt rule tables
# =========================
LINKIT_DEMOGRAPHIC_RULES = [
    ("Student", "student_name"),
    ("ID", "student_id"),
    ("Grade", "grade_level"),
]

LINKIT_ATTRIBUTE_RULES = [
    ("Result Date", "test_date"),
    ("Level", "performance_level_text"),
    ("Scaled", "scale_score"),
    ("Raw Score", "raw_score"),
]

LINKIT_ADDITIONAL_RULES = [
    ("Performance Level", "performance_level"),
    ("Min Score", "min_possible_score"),
    ("Max Score", "max_possible_score"),
    ("Growth Percentile", "student_growth_percentile"),
]
# =========================

# Roster (generic) targets and aliases
# =========================
STUDENT_TARGETS: Dict[str, List[str]] = {
    "school_student_id": ["student id", "id", "student number", "student no", "local id", "sid",
                          "school student id", "state id"],
    "first_name": ["first name", "first", "given name", "fname"],
    "last_name": ["last name", "last", "surname", "family name", "lname"],
    "full_name": ["name", "student name", "full name", "student"],
    "dob": ["dob", "date of birth", "birth date", "birthdate", "birthday"],
    "grade_level": ["grade", "grade level", "gr", "current grade"],
    "enrollment_date": ["enrollment date", "enroll date", "entry date", "admission date"],
    "graduation_year": ["graduation year", "grad year", "class of", "cohort year"],
    "current_gpa": ["gpa", "current gpa", "grade point average"],
    "academic_status": ["status", "academic status", "enrollment status"],
    "emergency_contact_name": ["emergency contact", "emergency contact name", "guardian name", "parent name",
                               "contact name"],
    "emergency_contact_phone": ["emergency phone", "emergency contact phone", "guardian phone", "parent phone",
                                "contact phone", "phone"],
    "emergency_contact_relationship": ["relationship", "emergency contact relationship", "guardian relationship",
                                       "contact relationship"],
    "school_id": ["school", "school id", "school code", "school name", "building"],
}

REQUIRED_STUDENT_TARGETS = ("school_student_id", "first_name", "last_name")
# filled from one column at most
UNIQUE_STUDENT_TARGETS = ("school_student_id",)

SCHOOL_COLUMN_RE = re.compile(r"(?<![a-z])school(?![a-z])")

_ALIAS_INDEX = {
    norm_column_name(alias): target
    for target, aliases in STUDENT_TARGETS.items()
    for alias in [target] + aliases
}
# =========================

# Mapping generators
# =========================
def _describe(source: str, target: str) -> str:
    return f"Maps {source} to {target}"


def linkit_mappings(headers: Sequence[str], threshold: Optional[float] = None) -> List[FieldMapping]:
    """
    Independent rule families; a header may satisfy several of them.

    - demographics (exact, required)
    - per-block attributes (exact name, else every "... - <attr>" suffix)
    - derived school_year / assessment_type per assessment block
    - subject detections
    - additional exact columns
    """
    headers = [str(h) for h in headers]
    present = set(headers)
    out: List[FieldMapping] = []

    for src, tgt in LINKIT_DEMOGRAPHIC_RULES:
        if src in present:
            out.append(FieldMapping(src, tgt, required=True, similarity=1.0, description=_describe(src, tgt)))

    for attr, tgt in LINKIT_ATTRIBUTE_RULES:
        if attr in present:
            out.append(FieldMapping(attr, tgt, required=False, similarity=1.0, description=_describe(attr, tgt)))
            continue
        for h in headers:
            if h.endswith(f"{COMPOSITE_SEP}{attr}"):
                out.append(FieldMapping(h, tgt, required=False, similarity=1.0, description=_describe(h, tgt)))

    for block in find_assessment_blocks(headers):
        year = extract_school_year(block)
        if year:
            out.append(FieldMapping(
                block, "school_year", default_value=year,
                description=f"Extracts school year {year} from {block}",
            ))
        atype, _form = infer_assessment_type(block)
        out.append(FieldMapping(
            block, "assessment_type", default_value=atype,
            description=f"Maps {block} to assessment type {atype}",
        ))

    texts = [norm_text(h) for h in headers]
    if any(re.search(r"(?<![a-z])ela(?![a-z])", t) for t in texts):
        out.append(FieldMapping("ELA_DETECTED", "subject", default_value="ELA",
                                description="Detected ELA subject from headers"))
    if any(re.search(r"(?<![a-z])math", t) for t in texts):
        out.append(FieldMapping("MATH_DETECTED", "subject", default_value="Mathematics",
                                description="Detected Math subject from headers"))

    for src, tgt in LINKIT_ADDITIONAL_RULES:
        if src in present:
            out.append(FieldMapping(src, tgt, similarity=1.0, description=_describe(src, tgt)))

    return out


def _best_fuzzy_target(header: str, exclude: Collection[str] = ()):
    n = norm_column_name(header)
    best_target, best_score = None, 0.0
    for alias_norm, target in _ALIAS_INDEX.items():
        if target in exclude:
            continue
        s = similarity(n, alias_norm)
        if s > best_score:
            best_target, best_score = target, s
    return best_target, best_score


def _structural_target(header: str) -> Optional[str]:
    n = norm_column_name(header)
    target = _ALIAS_INDEX.get(n)
    if target is not None:
        return target
    # "Home School", "School of Record" and similar
    if SCHOOL_COLUMN_RE.search(norm_text(header)) and "student" not in n:
        return "school_id"
    return None


def generic_mappings(headers: Sequence[str], threshold: Optional[float] = None) -> List[FieldMapping]:
    """
    Roster mappings in two passes.

    1. alias/exact and school-column rules claim their targets. The natural key
       (school_student_id) is claimed by the first such column only; later
       ID-like columns stay unmapped.
    2. remaining headers are fuzzy-matched against unclaimed targets only, best
       score first, one header per target, accepted when similarity >= threshold.

    Output keeps header order.
    """
    thr = float(threshold if threshold is not None else rule("mapping", "similarity_threshold", 0.4))
    found: Dict[int, FieldMapping] = {}
    claimed: Set[str] = set()
    leftovers: List[Tuple[int, str]] = []

    for i, h in enumerate(str(h) for h in headers):
        if not norm_column_name(h) or h.startswith("_"):
            continue
        target = _structural_target(h)
        if target is None:
            leftovers.append((i, h))
            continue
        if target in UNIQUE_STUDENT_TARGETS and target in claimed:
            logger.info("Column %r left unmapped; %s already comes from another column", h, target)
            continue
        claimed.add(target)
        found[i] = FieldMapping(h, target, required=target in REQUIRED_STUDENT_TARGETS, similarity=1.0,
                                description=_describe(h, target))

    candidates = []
    for i, h in leftovers:
        target, score = _best_fuzzy_target(h, exclude=claimed)
        if target is not None and score >= thr:
            candidates.append((score, i, h, target))
        else:
            logger.debug("No mapping for column %r (best %.2f)", h, score)

    for score, i, h, target in sorted(candidates, key=lambda c: (-c[0], c[1])):
        if target in claimed:
            logger.debug("No mapping for column %r; %s already taken", h, target)
            continue
        claimed.add(target)
        found[i] = FieldMapping(
            h, target, required=target in REQUIRED_STUDENT_TARGETS, similarity=round(score, 4),
            description=f"Fuzzy match {h} -> {target} ({score:.2f})",
        )

    return [found[i] for i in sorted(found)]



def _not_supported(fmt: SourceFormat) -> Callable[..., List[FieldMapping]]:
    def _mapper(headers: Sequence[str], threshold: Optional[float] = None) -> List[FieldMapping]:
        logger.warning("%s mappings not yet supported", fmt.value)
        return []
    return _mapper


MAPPERS: Dict[SourceFormat, Callable[..., List[FieldMapping]]] = {
    SourceFormat.LINKIT: linkit_mappings,
    SourceFormat.GENERIC: generic_mappings,
    SourceFormat.GENESIS: _not_supported(SourceFormat.GENESIS),
    SourceFormat.NJSLA_DIRECT: _not_supported(SourceFormat.NJSLA_DIRECT),
}
# =========================

# Profiles: operator-confirmed mappings per header set
# =========================
def _profiles(store: Optional[SnapshotStore] = None) -> SnapshotStore:
    return store if store is not None else SnapshotStore(PROFILE_NAMESPACE)


def persist_mapping_profile(
    headers: Sequence[str],
    mappings: Sequence[FieldMapping],
    *,
    store: Optional[SnapshotStore] = None,
) -> str:
    sig = column_signature(headers)
    _profiles(store).save(sig, {
        "columns": [str(h) for h in headers],
        "mappings": [m.to_dict() for m in mappings],
    })
    logger.info("Mapping profile saved for %d columns", len(headers))
    return sig


def load_mapping_profile(
    headers: Sequence[str],
    *,
    store: Optional[SnapshotStore] = None,
) -> Optional[List[FieldMapping]]:
    prof = _profiles(store).load(column_signature(headers))
    if not isinstance(prof, dict):
        return None
    return [FieldMapping.from_dict(d) for d in prof.get("mappings", []) if isinstance(d, dict)]


def generate_mappings(
    headers: Sequence[str],
    fmt: SourceFormat,
    *,
    threshold: Optional[float] = None,
    use_profile: bool = False,
    store: Optional[SnapshotStore] = None,
) -> List[FieldMapping]:
    if use_profile:
        stored = load_mapping_profile(headers, store=store)
        if stored is not None:
            logger.info("Using stored mapping profile")
            return stored
    return MAPPERS[SourceFormat(fmt)](headers, threshold)
