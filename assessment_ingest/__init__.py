"""
This package contains:
- reading of vendor exports (CSV/TXT/XLSX/XLS) into raw tables
- source-format classification
- split-header resolution for vendor layouts
- field mapping (rule tables + fuzzy fallback, saved mapping profiles)
- transformation into canonical assessment and student records
- validation (rule tables + business-rule warnings)
- reconciliation of student records against a keyed store
- summaries and Excel reports of an import
"""
from .errors import (
    BatchAbortedError,
    HeaderResolutionError,
    IngestError,
    ParseError,
    StoreError,
    UnsupportedFormatError,
)
from .models import (
    BulkUpsertResult,
    CanonicalAssessmentRecord,
    CanonicalStudentRecord,
    DuplicateCandidate,
    FieldMapping,
    Operation,
    ParsedTable,
    RawTable,
    SkipReason,
    SourceFormat,
    UpsertResult,
    ValidationIssue,
    ValidationResult,
)
from .ingest import read_table, load_table_from_path
from .classify import classify
from .header_detect import resolve_multi_header, resolve_single_header
from .mapping import generate_mappings, persist_mapping_profile
from .transform import (
    infer_assessment_type,
    split_student_name,
    transform_assessment_row,
    transform_student_row,
)
from .validate import (
    ASSESSMENT_VALIDATION_RULES,
    StudentDataValidator,
    ValidationRule,
    validate_linkit_structure,
)
from .reconcile import (
    InMemoryStudentStore,
    StudentStore,
    archive_student,
    bulk_upsert_students,
    find_potential_duplicates,
    restore_student,
    upsert_student,
)
from .pipeline import import_assessments, import_roster, parse_file
from .summary import summarize_assessments
from .export import export_report_bytes
from .snapshots import SnapshotStore

__all__ = [
    "BatchAbortedError",
    "HeaderResolutionError",
    "IngestError",
    "ParseError",
    "StoreError",
    "UnsupportedFormatError",
    "BulkUpsertResult",
    "CanonicalAssessmentRecord",
    "CanonicalStudentRecord",
    "DuplicateCandidate",
    "FieldMapping",
    "Operation",
    "ParsedTable",
    "RawTable",
    "SkipReason",
    "SourceFormat",
    "UpsertResult",
    "ValidationIssue",
    "ValidationResult",
    "read_table",
    "load_table_from_path",
    "classify",
    "resolve_multi_header",
    "resolve_single_header",
    "generate_mappings",
    "persist_mapping_profile",
    "infer_assessment_type",
    "split_student_name",
    "transform_assessment_row",
    "transform_student_row",
    "ASSESSMENT_VALIDATION_RULES",
    "StudentDataValidator",
    "ValidationRule",
    "validate_linkit_structure",
    "InMemoryStudentStore",
    "StudentStore",
    "archive_student",
    "bulk_upsert_students",
    "find_potential_duplicates",
    "restore_student",
    "upsert_student",
    "import_assessments",
    "import_roster",
    "parse_file",
    "summarize_assessments",
    "export_report_bytes",
    "SnapshotStore",
]
