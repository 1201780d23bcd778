from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class RawTable:
    """
    Header-less matrix of string cells, exactly as read from the source file.
    Row numbers reported downstream are 1-based positions in `rows`.
    """
    rows: Tuple[Tuple[str, ...], ...]
    source_name: str = ""
    sheet_name: str = ""

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Tuple[str, ...]]:
        return iter(self.rows)

    def head(self, n: int) -> List[List[str]]:
        return [list(r) for r in self.rows[:n]]


class SourceFormat(str, Enum):
    LINKIT = "linkit"
    GENESIS = "genesis"
    NJSLA_DIRECT = "njsla_direct"
    GENERIC = "generic"


@dataclass
class FieldMapping:
    source_field: str
    target_field: str
    required: bool = False
    default_value: Optional[str] = None
    similarity: Optional[float] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FieldMapping":
        return cls(
            source_field=str(d.get("source_field", "")),
            target_field=str(d.get("target_field", "")),
            required=bool(d.get("required", False)),
            default_value=d.get("default_value"),
            similarity=d.get("similarity"),
            description=str(d.get("description", "") or ""),
        )


@dataclass
class ParsedTable:
    headers: List[str]
    rows: List[Dict[str, str]]
    origin_rows: List[int] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    header_row: int = 1  # 1-based row of the (main) header
    data_start_row: int = 2

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class CanonicalAssessmentRecord:
    student_id: str
    student_name: str = ""
    assessment_name: str = ""
    assessment_date: Optional[str] = None
    subject: str = "ELA"
    grade: str = ""
    scale_score: int = 0
    performance_level_text: str = ""
    performance_level: Optional[int] = None
    test_date: Optional[str] = None
    grade_level: str = ""
    assessment_type: str = "NJSLA_ELA"
    subscores: Dict[str, Any] = field(default_factory=dict)

    school_student_id: str = ""
    question_id: str = "overall"
    school_year: Optional[str] = None
    raw_score: Optional[int] = None
    percent_score: Optional[int] = None
    score_type: str = "scale_score"
    min_possible_score: Optional[int] = None
    max_possible_score: Optional[int] = None
    assessment_form: Optional[str] = None
    is_placeholder: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CanonicalStudentRecord:
    school_student_id: str
    first_name: str = ""
    last_name: str = ""
    dob: Optional[str] = None
    grade_level: Optional[int] = None
    enrollment_date: Optional[str] = None
    graduation_year: Optional[int] = None
    current_gpa: Optional[float] = None
    academic_status: str = "active"
    special_needs: Dict[str, Any] = field(default_factory=dict)
    school_id: Optional[str] = None
    student_id: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CanonicalStudentRecord":
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in d.items() if k in known}
        kwargs.setdefault("school_student_id", "")
        kwargs["special_needs"] = dict(kwargs.get("special_needs") or {})
        return cls(**kwargs)


@dataclass
class ValidationIssue:
    field: str
    message: str
    value: Any = None


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


class SkipReason(str, Enum):
    NO_CHANGES = "no_changes"
    MISSING_REQUIRED = "missing_required"
    FAILED = "failed"


@dataclass
class UpsertResult:
    success: bool
    operation: Operation
    student_id: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    changed_fields: List[str] = field(default_factory=list)
    skip_reason: Optional[SkipReason] = None


@dataclass
class BulkUpsertResult:
    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    outcomes: List[UpsertResult] = field(default_factory=list)


@dataclass
class DuplicateCandidate:
    student_id: Optional[str]
    school_student_id: str
    first_name: str
    last_name: str
    dob: Optional[str] = None
    match_reasons: List[str] = field(default_factory=list)

    @property
    def match_reason(self) -> str:
        return ", ".join(self.match_reasons)
