from __future__ import annotations
import asyncio
import copy
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .errors import BatchAbortedError, StoreError
from .models import (
    BulkUpsertResult,
    DuplicateCandidate,
    Operation,
    SkipReason,
    UpsertResult,
)
from .utils import rule, similarity, try_parse_date

logger = logging.getLogger(__name__)

KEY_FIELD = "school_student_id"
REQUIRED_FIELDS = ("school_student_id", "first_name", "last_name")

# attributes compared field-by-field on update
MUTABLE_FIELDS = [
    "first_name",
    "last_name",
    "dob",
    "grade_level",
    "enrollment_date",
    "graduation_year",
    "emergency_contact_name",
    "emergency_contact_phone",
    "emergency_contact_relationship",
    "current_gpa",
    "academic_status",
]

NO_CHANGES_WARNING = "No changes detected, record was not updated"
ARCHIVED_STATUS = "archived"
# =========================

# Store interface
# =========================
class StudentStore(Protocol):
    async def find_by_key(self, school_student_id: str) -> Optional[Dict[str, Any]]: ...

    async def insert(self, record: Dict[str, Any]) -> str: ...

    async def update(self, student_id: str, partial: Dict[str, Any]) -> bool: ...

    async def find_all(self, **equals: Any) -> List[Dict[str, Any]]: ...


class InMemoryStudentStore:
    """
    Reference store: dict of student_id -> record.

    Enforces a unique school_student_id and has no delete operation. Records
    handed out are copies, so callers cannot mutate stored state.
    """

    def __init__(self, records: Optional[Sequence[Dict[str, Any]]] = None):
        self._records: Dict[str, Dict[str, Any]] = {}
        for r in records or []:
            r = dict(r)
            r.setdefault("student_id", str(uuid.uuid4()))
            self._check_unique(r.get(KEY_FIELD), r["student_id"])
            self._records[r["student_id"]] = r

    def __len__(self) -> int:
        return len(self._records)

    def _check_unique(self, key: Any, student_id: str) -> None:
        if key in (None, ""):
            return
        for sid, rec in self._records.items():
            if sid != student_id and rec.get(KEY_FIELD) == key:
                raise StoreError(f"Duplicate school_student_id: {key}")

    def get(self, student_id: str) -> Optional[Dict[str, Any]]:
        rec = self._records.get(student_id)
        return copy.deepcopy(rec) if rec is not None else None

    async def find_by_key(self, school_student_id: str) -> Optional[Dict[str, Any]]:
        for rec in self._records.values():
            if rec.get(KEY_FIELD) == school_student_id:
                return copy.deepcopy(rec)
        return None

    async def insert(self, record: Dict[str, Any]) -> str:
        sid = record.get("student_id")
        if not sid:
            raise StoreError("Record has no student_id")
        if sid in self._records:
            raise StoreError(f"student_id already exists: {sid}")
        self._check_unique(record.get(KEY_FIELD), sid)
        self._records[sid] = copy.deepcopy(dict(record))
        return sid

    async def update(self, student_id: str, partial: Dict[str, Any]) -> bool:
        if student_id not in self._records:
            raise StoreError(f"Unknown student_id: {student_id}")
        if "student_id" in partial and partial["student_id"] != student_id:
            raise StoreError("student_id cannot be changed")
        if KEY_FIELD in partial:
            self._check_unique(partial[KEY_FIELD], student_id)
        self._records[student_id].update(copy.deepcopy(dict(partial)))
        return True

    async def find_all(self, **equals: Any) -> List[Dict[str, Any]]:
        out = []
        for rec in self._records.values():
            if all(rec.get(k) == v for k, v in equals.items()):
                out.append(copy.deepcopy(rec))
        return out
# =========================

# Upsert
# =========================
def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _record_dict(record: Any) -> Dict[str, Any]:
    if is_dataclass(record):
        return asdict(record)
    return dict(record or {})


def _has_value(v: Any) -> bool:
    return v is not None and v != ""


def _missing_required(data: Dict[str, Any]) -> List[str]:
    return [f for f in REQUIRED_FIELDS if not _has_value(data.get(f))]


def _failed(operation: Operation, message: str, student_id: Optional[str] = None) -> UpsertResult:
    return UpsertResult(
        success=False,
        operation=operation,
        student_id=student_id,
        error=message,
        skip_reason=SkipReason.FAILED if operation == Operation.SKIP else None,
    )


async def _insert(store: StudentStore, data: Dict[str, Any]) -> UpsertResult:
    missing = _missing_required(data)
    if missing:
        return UpsertResult(
            success=False,
            operation=Operation.SKIP,
            error="Missing required fields: " + ", ".join(missing),
            skip_reason=SkipReason.MISSING_REQUIRED,
        )

    now = _now()
    insert_data = {
        "student_id": str(uuid.uuid4()),
        "school_student_id": data["school_student_id"],
        "first_name": data["first_name"],
        "last_name": data["last_name"],
        "academic_status": data.get("academic_status") or "active",
        "special_needs": dict(data.get("special_needs") or {}),
        "school_id": data.get("school_id") if _has_value(data.get("school_id")) else None,
        "created_at": now,
        "updated_at": now,
    }
    for f in MUTABLE_FIELDS:
        if f not in insert_data:
            insert_data[f] = data.get(f) if _has_value(data.get(f)) else None

    try:
        new_id = await store.insert(insert_data)
    except StoreError as e:
        logger.warning("Insert failed for %s: %s", data.get(KEY_FIELD), e)
        return _failed(Operation.INSERT, f"Insert failed: {e}")
    except Exception as e:
        logger.exception("Unexpected store error on insert for %s", data.get(KEY_FIELD))
        return _failed(Operation.INSERT, f"Insert failed: {e}")

    return UpsertResult(
        success=True,
        operation=Operation.INSERT,
        student_id=new_id,
        changed_fields=sorted(k for k, v in insert_data.items() if _has_value(v) and k not in ("created_at", "updated_at")),
    )


def diff_student(
    incoming: Dict[str, Any],
    existing: Dict[str, Any],
    *,
    allow_partial_updates: bool = True,
    merge_special_needs: bool = True,
):
    """
    (update_data, warnings) for an incoming record against its stored version.

    Empty incoming values never overwrite stored ones unless partial updates are
    disabled, in which case they clear the field and a warning is recorded.
    """
    update_data: Dict[str, Any] = {}
    warnings: List[str] = []

    for f in MUTABLE_FIELDS:
        new = incoming.get(f)
        old = existing.get(f)
        if _has_value(new):
            if new != old:
                update_data[f] = new
        elif not allow_partial_updates and old is not None:
            update_data[f] = None
            warnings.append(f"Field {f} was cleared (set to null)")

    new_sn = incoming.get("special_needs") or {}
    old_sn = existing.get("special_needs") or {}
    if new_sn:
        merged = {**old_sn, **new_sn} if merge_special_needs else dict(new_sn)
        if merged != old_sn:
            update_data["special_needs"] = merged

    school_id = incoming.get("school_id")
    if _has_value(school_id) and school_id != existing.get("school_id"):
        update_data["school_id"] = school_id

    return update_data, warnings


async def upsert_student(
    store: StudentStore,
    record: Any,
    *,
    allow_partial_updates: Optional[bool] = None,
    merge_special_needs: Optional[bool] = None,
) -> UpsertResult:
    """
    Insert, update or skip one student record, matched by exact school_student_id.

    Never raises for store failures; they come back as success=False results.
    """
    if allow_partial_updates is None:
        allow_partial_updates = bool(rule("reconcile", "allow_partial_updates", True))
    if merge_special_needs is None:
        merge_special_needs = bool(rule("reconcile", "merge_special_needs", True))

    data = _record_dict(record)
    key = data.get(KEY_FIELD)

    existing = None
    if _has_value(key):
        try:
            existing = await store.find_by_key(key)
        except Exception as e:
            logger.exception("Lookup failed for %s", key)
            return _failed(Operation.SKIP, f"Failed to check student existence: {e}")

    if existing is None:
        return await _insert(store, data)

    student_id = existing["student_id"]
    update_data, warnings = diff_student(
        data, existing,
        allow_partial_updates=allow_partial_updates,
        merge_special_needs=merge_special_needs,
    )

    if not update_data:
        return UpsertResult(
            success=True,
            operation=Operation.SKIP,
            student_id=student_id,
            warnings=[NO_CHANGES_WARNING],
            skip_reason=SkipReason.NO_CHANGES,
        )

    changed = sorted(update_data.keys())
    update_data["updated_at"] = _now()
    try:
        await store.update(student_id, update_data)
    except StoreError as e:
        logger.warning("Update failed for %s: %s", key, e)
        return _failed(Operation.UPDATE, f"Update failed: {e}", student_id)
    except Exception as e:
        logger.exception("Unexpected store error on update for %s", key)
        return _failed(Operation.UPDATE, f"Update failed: {e}", student_id)

    for w in warnings:
        logger.warning("%s: %s", key, w)
    return UpsertResult(
        success=True,
        operation=Operation.UPDATE,
        student_id=student_id,
        warnings=warnings,
        changed_fields=changed,
    )


async def bulk_upsert_students(
    store: StudentStore,
    records: Sequence[Any],
    *,
    batch_size: Optional[int] = None,
    pause: Optional[float] = None,
    continue_on_error: bool = True,
    on_progress: Optional[Callable[[int, int], None]] = None,
    allow_partial_updates: Optional[bool] = None,
    merge_special_needs: Optional[bool] = None,
) -> BulkUpsertResult:
    """
    Upsert records in fixed-size batches, one record at a time, pausing between batches.

    Errors and warnings are row-indexed (1-based) and echo the input data. With
    continue_on_error=False the first failure raises BatchAbortedError carrying the
    partial result.
    """
    batch_size = max(1, int(batch_size if batch_size is not None else rule("reconcile", "batch_size", 25)))
    pause = float(pause if pause is not None else rule("reconcile", "batch_pause_seconds", 0.1))

    records = list(records)
    total = len(records)
    result = BulkUpsertResult()

    for start in range(0, total, batch_size):
        batch = records[start:start + batch_size]
        for offset, rec in enumerate(batch):
            row = start + offset + 1
            data = _record_dict(rec)
            try:
                res = await upsert_student(
                    store, rec,
                    allow_partial_updates=allow_partial_updates,
                    merge_special_needs=merge_special_needs,
                )
            except Exception as e:
                logger.exception("Row %d: upsert raised", row)
                res = _failed(Operation.SKIP, str(e))

            result.outcomes.append(res)
            result.total_processed += 1

            if res.success:
                if res.operation == Operation.INSERT:
                    result.inserted += 1
                elif res.operation == Operation.UPDATE:
                    result.updated += 1
                else:
                    result.skipped += 1
                if res.warnings:
                    result.warnings.append({"row": row, "warning": "; ".join(res.warnings), "data": data})
            else:
                logger.warning("Row %d: %s", row, res.error)
                result.errors.append({"row": row, "error": res.error or "Unknown error", "data": data})
                if not continue_on_error:
                    raise BatchAbortedError(
                        f"Processing stopped at row {row}: {res.error}", row=row, partial_result=result,
                    )

            if on_progress is not None:
                on_progress(result.total_processed, total)

        if pause > 0 and start + batch_size < total:
            await asyncio.sleep(pause)

    logger.info(
        "Upserted %d records: %d inserted, %d updated, %d skipped, %d errors",
        result.total_processed, result.inserted, result.updated, result.skipped, len(result.errors),
    )
    return result
# =========================

# Duplicates / archive
# =========================
async def find_potential_duplicates(
    store: StudentStore,
    first_name: str,
    last_name: str,
    dob: Optional[str] = None,
    school_id: Optional[str] = None,
    threshold: Optional[float] = None,
) -> List[DuplicateCandidate]:
    """
    Advisory near-duplicate search; never merges anything.

    Reasons are independent: exact (case-insensitive) name, equal birth date, and
    both name parts at or above the similarity threshold.
    """
    thr = float(threshold if threshold is not None else rule("duplicates", "name_similarity_threshold", 0.8))
    filters = {"school_id": school_id} if school_id else {}
    students = await store.find_all(**filters)

    first = str(first_name or "").strip()
    last = str(last_name or "").strip()
    want_dob = try_parse_date(dob) if dob else None

    out: List[DuplicateCandidate] = []
    for s in students:
        s_first = str(s.get("first_name") or "").strip()
        s_last = str(s.get("last_name") or "").strip()
        reasons: List[str] = []

        if s_first.lower() == first.lower() and s_last.lower() == last.lower():
            reasons.append("Exact name match")

        if want_dob and s.get("dob") and try_parse_date(s.get("dob")) == want_dob:
            reasons.append("Date of birth match")

        if similarity(s_first, first) >= thr and similarity(s_last, last) >= thr:
            reasons.append("Similar name match")

        if reasons:
            out.append(DuplicateCandidate(
                student_id=s.get("student_id"),
                school_student_id=str(s.get(KEY_FIELD) or ""),
                first_name=s_first,
                last_name=s_last,
                dob=s.get("dob"),
                match_reasons=reasons,
            ))
    return out


async def _get(store: StudentStore, student_id: str) -> Dict[str, Any]:
    found = await store.find_all(student_id=student_id)
    if not found:
        raise StoreError(f"Unknown student_id: {student_id}")
    return found[0]


async def archive_student(store: StudentStore, student_id: str, reason: Optional[str] = None) -> UpsertResult:
    """Soft archive: status 'archived' plus archive facts merged into special_needs."""
    try:
        existing = await _get(store, student_id)
        special = dict(existing.get("special_needs") or {})
        now = _now()
        special.update({"archived_at": now, "archive_reason": reason or "Manual archive"})
        await store.update(student_id, {
            "academic_status": ARCHIVED_STATUS,
            "special_needs": special,
            "updated_at": now,
        })
    except StoreError as e:
        logger.warning("Archive failed for %s: %s", student_id, e)
        return _failed(Operation.UPDATE, str(e), student_id)
    return UpsertResult(True, Operation.UPDATE, student_id, changed_fields=["academic_status", "special_needs"])


async def restore_student(store: StudentStore, student_id: str, status: str = "active") -> UpsertResult:
    try:
        existing = await _get(store, student_id)
        special = {k: v for k, v in (existing.get("special_needs") or {}).items()
                   if k not in ("archived_at", "archive_reason")}
        await store.update(student_id, {
            "academic_status": status,
            "special_needs": special,
            "updated_at": _now(),
        })
    except StoreError as e:
        logger.warning("Restore failed for %s: %s", student_id, e)
        return _failed(Operation.UPDATE, str(e), student_id)
    return UpsertResult(True, Operation.UPDATE, student_id, changed_fields=["academic_status", "special_needs"])
