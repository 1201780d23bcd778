from __future__ import annotations
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .classify import classify
from .errors import ParseError, UnsupportedFormatError
from .formats import get_handler
from .ingest import read_table
from .mapping import generate_mappings
from .models import (
    BulkUpsertResult,
    CanonicalAssessmentRecord,
    CanonicalStudentRecord,
    FieldMapping,
    ParsedTable,
    SourceFormat,
    ValidationResult,
)
from .reconcile import StudentStore, bulk_upsert_students, find_potential_duplicates
from .summary import summarize_assessments
from .validate import StudentDataValidator, assessment_validator

logger = logging.getLogger(__name__)

StudentResolver = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


@dataclass
class RowOutcome:
    row: int  # 1-based data row
    origin_row: int  # 1-based row in the source file
    key: str = ""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    records: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class AssessmentImportResult:
    source_format: SourceFormat
    table: ParsedTable
    mappings: List[FieldMapping]
    structure: ValidationResult
    records: List[CanonicalAssessmentRecord] = field(default_factory=list)
    rows: List[RowOutcome] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RosterImportResult:
    source_format: SourceFormat
    table: ParsedTable
    mappings: List[FieldMapping]
    structure: ValidationResult
    records: List[CanonicalStudentRecord] = field(default_factory=list)
    rows: List[RowOutcome] = field(default_factory=list)
    reconciliation: BulkUpsertResult = field(default_factory=BulkUpsertResult)
    duplicates: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "total_rows": len(self.rows),
            "invalid": sum(1 for r in self.rows if r.validation is not None and not r.validation.is_valid),
            "inserted": self.reconciliation.inserted,
            "updated": self.reconciliation.updated,
            "skipped": self.reconciliation.skipped,
            "errored": len(self.reconciliation.errors),
        }


def parse_file(data: bytes, filename: str) -> Tuple[SourceFormat, ParsedTable]:
    """Read, classify and header-resolve one file."""
    raw = read_table(data, filename)
    fmt = classify(raw.rows)
    table = get_handler(fmt).parse(raw.rows)
    logger.info("%s: %s, %d columns, %d data rows", filename, fmt.value, len(table.headers), len(table.rows))
    return fmt, table


def _structure_or_fail(structure: ValidationResult, filename: str) -> None:
    if not structure.is_valid:
        msgs = "; ".join(e.message for e in structure.errors)
        raise ParseError(f"{filename}: unreadable header structure: {msgs}")


async def _resolve(resolver: StudentResolver, key: str) -> Optional[str]:
    res = resolver(key)
    if inspect.isawaitable(res):
        res = await res
    return res or None


async def import_assessments(
    data: bytes,
    filename: str,
    *,
    resolve_student_id: Optional[StudentResolver] = None,
) -> AssessmentImportResult:
    """
    Assessment export -> validated canonical records.

    With a resolver, rows whose natural key does not resolve are rejected; without
    one, records carry the natural key and the row gets a warning. Persisting the
    records is left to the caller.
    """
    fmt, table = parse_file(data, filename)
    handler = get_handler(fmt)
    if fmt != SourceFormat.LINKIT:
        if handler.supported:
            raise UnsupportedFormatError(fmt, f"{fmt.value} files are not assessment exports")
        raise UnsupportedFormatError(fmt)

    structure = handler.validate_structure(table.headers)
    _structure_or_fail(structure, filename)
    mappings = handler.map(table.headers)
    validator = assessment_validator()

    result = AssessmentImportResult(source_format=fmt, table=table, mappings=mappings, structure=structure)
    for i, row in enumerate(table.rows):
        origin = table.origin_rows[i] if i < len(table.origin_rows) else i + 1
        key = str(row.get("ID", "") or "").strip()
        outcome = RowOutcome(row=i + 1, origin_row=origin, key=key)
        result.rows.append(outcome)

        if resolve_student_id is not None:
            resolved = await _resolve(resolve_student_id, key) if key else None
            if resolved is None:
                outcome.errors.append(f"Student not found for ID {key!r}")
                continue
            row = dict(row, _student_uuid=resolved, _school_student_id=key)
        else:
            outcome.warnings.append("Student ID not resolved; natural key used")

        for rec in handler.transform(row, mappings):
            v = validator.validate(rec)
            outcome.warnings.extend(w.message for w in v.warnings)
            if v.is_valid:
                result.records.append(rec)
                outcome.records += 1
            else:
                outcome.errors.extend(f"{rec.question_id}: {e.message}" for e in v.errors)

    result.summary = summarize_assessments(result.records)
    result.summary.update({
        "rows": len(result.rows),
        "rows_with_errors": sum(1 for r in result.rows if not r.ok),
        "records_accepted": len(result.records),
    })
    logger.info("%s: %d assessment records accepted", filename, len(result.records))
    return result


async def import_roster(
    data: bytes,
    filename: str,
    store: StudentStore,
    *,
    school_id: Optional[str] = None,
    mappings: Optional[Sequence[FieldMapping]] = None,
    threshold: Optional[float] = None,
    use_profile: bool = False,
    validator: Optional[StudentDataValidator] = None,
    batch_size: Optional[int] = None,
    pause: Optional[float] = None,
    continue_on_error: bool = True,
    on_progress: Optional[Callable[[int, int], None]] = None,
    check_duplicates: bool = False,
) -> RosterImportResult:
    """
    Roster file -> mapped, validated student records reconciled into `store`.

    Invalid rows never reach the store. With check_duplicates, records whose
    natural key is new are also checked for near-duplicate names (advisory only).
    """
    fmt, table = parse_file(data, filename)
    if fmt != SourceFormat.GENERIC:
        handler = get_handler(fmt)
        if handler.supported:
            raise UnsupportedFormatError(fmt, f"{fmt.value} files are not roster exports")
        raise UnsupportedFormatError(fmt)
    handler = get_handler(fmt)

    if mappings is None:
        mappings = generate_mappings(table.headers, fmt, threshold=threshold, use_profile=use_profile)
    mappings = list(mappings)
    structure = handler.validate_structure(table.headers, mappings)
    _structure_or_fail(structure, filename)

    validator = validator or StudentDataValidator()
    result = RosterImportResult(source_format=fmt, table=table, mappings=mappings, structure=structure)

    accepted: List[CanonicalStudentRecord] = []
    accepted_rows: List[RowOutcome] = []
    for i, row in enumerate(table.rows):
        origin = table.origin_rows[i] if i < len(table.origin_rows) else i + 1
        for rec in handler.transform(row, mappings, school_id=school_id):
            v = validator.validate(rec)
            outcome = RowOutcome(
                row=i + 1, origin_row=origin, key=rec.school_student_id, validation=v,
                errors=[e.message for e in v.errors], warnings=[w.message for w in v.warnings],
            )
            result.rows.append(outcome)
            result.records.append(rec)
            if v.is_valid:
                accepted.append(rec)
                accepted_rows.append(outcome)

    if check_duplicates:
        for rec in accepted:
            if await store.find_by_key(rec.school_student_id) is not None:
                continue
            found = await find_potential_duplicates(store, rec.first_name, rec.last_name, rec.dob, rec.school_id)
            if found:
                result.duplicates[rec.school_student_id] = found

    bulk = await bulk_upsert_students(
        store, accepted,
        batch_size=batch_size, pause=pause,
        continue_on_error=continue_on_error, on_progress=on_progress,
    )
    # batch rows index the accepted list; point them back at the source file
    for entry in bulk.errors + bulk.warnings:
        src = accepted_rows[entry["row"] - 1]
        entry["source_row"] = src.origin_row
    for outcome, res in zip(accepted_rows, bulk.outcomes):
        if not res.success and res.error:
            outcome.errors.append(res.error)
        outcome.warnings.extend(res.warnings)
    result.reconciliation = bulk

    logger.info("%s: %s", filename, result.counts)
    return result
