from __future__ import annotations
import logging
import re
from dataclasses import dataclass, is_dataclass, asdict
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import ValidationIssue, ValidationResult
from .transform import COMPOSITE_SEP, find_assessment_blocks
from .utils import parse_number, try_parse_date

logger = logging.getLogger(__name__)

REQUIRED = "required"
FORMAT = "format"
RANGE = "range"
CUSTOM = "custom"

ACADEMIC_STATUSES = ("active", "inactive", "graduated", "transferred", "withdrawn", "archived")

PHONE_RE = re.compile(r"^[\+]?[1-9][\d]{0,15}$")
PHONE_PUNCT_RE = re.compile(r"[\s().\-]")


@dataclass
class ValidationRule:
    field: str
    kind: str
    message: str
    validator: Optional[Callable[[Any], bool]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[re.Pattern] = None


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and value.strip() == "":
        return False
    return True


def _valid_date(value: Any) -> bool:
    return try_parse_date(value) is not None


def _phone_ok(value: Any) -> bool:
    return bool(PHONE_RE.match(PHONE_PUNCT_RE.sub("", str(value))))


def _status_ok(value: Any) -> bool:
    return str(value).strip().lower() in ACADEMIC_STATUSES


def _as_date(value: Any) -> Optional[date]:
    iso = try_parse_date(value)
    if iso is None:
        return None
    return date.fromisoformat(iso)


def not_future_date(today: Callable[[], date] = date.today) -> Callable[[Any], bool]:
    def _check(value: Any) -> bool:
        d = _as_date(value)
        return d is not None and d <= today()
    return _check


def student_validation_rules(today: Callable[[], date] = date.today) -> List[ValidationRule]:
    return [
        ValidationRule("school_student_id", REQUIRED, "School Student ID is required"),
        ValidationRule("first_name", REQUIRED, "First name is required"),
        ValidationRule("last_name", REQUIRED, "Last name is required"),
        ValidationRule("grade_level", RANGE, "Grade level must be between -1 and 13", min=-1, max=13),
        ValidationRule("current_gpa", RANGE, "GPA must be between 0.00 and 4.00", min=0.0, max=4.0),
        ValidationRule("graduation_year", RANGE, "Graduation year must be between 1900 and 2100", min=1900, max=2100),
        ValidationRule(
            "dob", CUSTOM, "Date of birth must be a valid date and not in the future",
            validator=not_future_date(today),
        ),
        ValidationRule("enrollment_date", CUSTOM, "Enrollment date must be a valid date", validator=_valid_date),
        ValidationRule("emergency_contact_phone", FORMAT, "Phone number format is invalid", validator=_phone_ok),
        ValidationRule(
            "academic_status", CUSTOM,
            "Academic status must be one of: " + ", ".join(ACADEMIC_STATUSES),
            validator=_status_ok,
        ),
    ]


STUDENT_VALIDATION_RULES: List[ValidationRule] = student_validation_rules()

ASSESSMENT_VALIDATION_RULES: List[ValidationRule] = [
    ValidationRule("student_id", REQUIRED, "Student ID is required"),
    ValidationRule("assessment_type", REQUIRED, "Assessment type is required"),
    ValidationRule("scale_score", RANGE, "Scale score must be between 0 and 1000", min=0, max=1000),
    ValidationRule("test_date", CUSTOM, "Test date must be a valid date", validator=_valid_date),
]


def _as_dict(record: Any) -> Dict[str, Any]:
    if is_dataclass(record):
        return asdict(record)
    return dict(record or {})


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:  # Feb 29
        return d.replace(year=d.year + years, day=28)


class StudentDataValidator:
    """
    Rule-table validator.

    Errors block persistence of a record, warnings never do. `required` rules fire
    on absent/empty values; every other kind only checks values that are present.
    """

    def __init__(
        self,
        rules: Optional[Sequence[ValidationRule]] = None,
        *,
        business_rules: bool = True,
        today: Optional[date] = None,
    ):
        if rules is None:
            rules = student_validation_rules(lambda: self.today)
        self._rules: List[ValidationRule] = list(rules)
        self.business_rules = business_rules
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    @property
    def rules(self) -> List[ValidationRule]:
        return list(self._rules)

    def add_rule(self, rule: ValidationRule) -> None:
        self._rules.append(rule)

    def remove_rule(self, field: str, kind: str) -> None:
        self._rules = [r for r in self._rules if not (r.field == field and r.kind == kind)]

    def _check(self, value: Any, rule: ValidationRule) -> bool:
        if rule.kind == REQUIRED:
            return _present(value)
        if not _present(value):
            return True
        if rule.kind == FORMAT:
            if rule.pattern is not None:
                return bool(rule.pattern.match(str(value)))
            if rule.validator is not None:
                return bool(rule.validator(value))
            return True
        if rule.kind == RANGE:
            n = value if isinstance(value, (int, float)) and not isinstance(value, bool) else parse_number(value)
            if n is None:
                return False
            if rule.min is not None and n < rule.min:
                return False
            if rule.max is not None and n > rule.max:
                return False
            return True
        if rule.kind == CUSTOM:
            if rule.validator is not None:
                return bool(rule.validator(value))
            return True
        return True

    def _business_warnings(self, data: Dict[str, Any]) -> List[ValidationIssue]:
        warnings: List[ValidationIssue] = []
        today = self.today
        grade = parse_number(data.get("grade_level")) if _present(data.get("grade_level")) else None
        grad_year = parse_number(data.get("graduation_year")) if _present(data.get("graduation_year")) else None

        if grade is not None and grad_year is not None:
            expected = today.year + (12 - grade)
            if abs(grad_year - expected) > 2:
                warnings.append(ValidationIssue(
                    "graduation_year",
                    f"Graduation year {int(grad_year)} seems inconsistent with grade level {int(grade)}",
                    data.get("graduation_year"),
                ))

        enroll = _as_date(data.get("enrollment_date")) if _present(data.get("enrollment_date")) else None
        if enroll is not None and (enroll < _add_years(today, -1) or enroll > _add_years(today, 1)):
            warnings.append(ValidationIssue(
                "enrollment_date",
                "Enrollment date is more than a year in the past or future",
                data.get("enrollment_date"),
            ))

        dob = _as_date(data.get("dob")) if _present(data.get("dob")) else None
        if dob is not None and grade is not None:
            age = (today - dob).days / 365.25
            expected_age = 5 if grade <= 0 else grade + 5
            if abs(age - expected_age) > 3:
                warnings.append(ValidationIssue(
                    "dob",
                    f"Age ({round(age)}) seems inconsistent with grade level {int(grade)}",
                    data.get("dob"),
                ))

        name = _present(data.get("emergency_contact_name"))
        phone = _present(data.get("emergency_contact_phone"))
        rel = _present(data.get("emergency_contact_relationship"))
        if (name or phone or rel) and not (name and (phone or rel)):
            warnings.append(ValidationIssue(
                "emergency_contact_name",
                "Incomplete emergency contact information",
                data.get("emergency_contact_name"),
            ))
        return warnings

    def validate(self, record: Any) -> ValidationResult:
        data = _as_dict(record)
        errors: List[ValidationIssue] = []
        for r in self._rules:
            value = data.get(r.field)
            if not self._check(value, r):
                errors.append(ValidationIssue(r.field, r.message, value))

        warnings = self._business_warnings(data) if self.business_rules else []
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_many(self, records: Sequence[Any]) -> Dict[str, Any]:
        results = []
        for i, rec in enumerate(records):
            results.append({"row_index": i + 1, "result": self.validate(rec)})

        valid = sum(1 for r in results if r["result"].is_valid)
        return {
            "overall_valid": valid == len(results),
            "results": results,
            "summary": {
                "total_rows": len(results),
                "valid_rows": valid,
                "invalid_rows": len(results) - valid,
                "total_errors": sum(len(r["result"].errors) for r in results),
                "total_warnings": sum(len(r["result"].warnings) for r in results),
            },
        }


def assessment_validator() -> StudentDataValidator:
    return StudentDataValidator(ASSESSMENT_VALIDATION_RULES, business_rules=False)


RESULT_ATTRIBUTES = ("Result Date", "Level", "Average", "Scaled", "Percent", "Raw", "Raw Score")


def validate_linkit_structure(headers: Sequence[str]) -> ValidationResult:
    headers = [str(h) for h in headers]
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    for col in ("Student", "ID", "Grade"):
        if col not in headers:
            errors.append(ValidationIssue(col, f"Missing required column: {col}"))

    blocks = find_assessment_blocks(headers)
    if not blocks:
        errors.append(ValidationIssue("headers", "No assessment columns detected"))

    for block in blocks:
        attrs = [h[len(block) + len(COMPOSITE_SEP):] for h in headers if h.startswith(f"{block}{COMPOSITE_SEP}")]
        if not any(a in RESULT_ATTRIBUTES for a in attrs):
            warnings.append(ValidationIssue(block, f"No result columns found for {block}"))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
