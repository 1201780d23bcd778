"""
Per-format handlers: one object per SourceFormat bundling header parsing,
mapping, structural validation and row transformation. Detection lives in
classify.DETECTORS, keyed by the same SourceFormat values.

Adding a format means adding a handler here and registering it in HANDLERS.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import HeaderResolutionError, UnsupportedFormatError
from .header_detect import resolve_multi_header, resolve_single_header
from .mapping import REQUIRED_STUDENT_TARGETS, generate_mappings
from .models import FieldMapping, ParsedTable, SourceFormat, ValidationIssue, ValidationResult
from .transform import transform_assessment_row, transform_student_row
from .validate import validate_linkit_structure

logger = logging.getLogger(__name__)


class FormatHandler:
    format: SourceFormat = SourceFormat.GENERIC
    supported: bool = True

    def parse(self, rows: Sequence[Sequence[str]]) -> ParsedTable:
        return resolve_single_header(rows)

    def map(self, headers: Sequence[str], threshold: Optional[float] = None) -> List[FieldMapping]:
        return generate_mappings(headers, self.format, threshold=threshold)

    def validate_structure(
        self, headers: Sequence[str], mappings: Optional[Sequence[FieldMapping]] = None
    ) -> ValidationResult:
        return ValidationResult()

    def transform(self, row: Dict[str, Any], mappings: Sequence[FieldMapping], **kwargs) -> Iterator[Any]:
        raise UnsupportedFormatError(self.format)


class LinkItHandler(FormatHandler):
    format = SourceFormat.LINKIT

    def parse(self, rows):
        try:
            return resolve_multi_header(rows)
        except HeaderResolutionError as e:
            logger.info("Split header not found (%s); falling back to a single header row", e)
            return resolve_single_header(rows)

    def validate_structure(self, headers, mappings=None):
        return validate_linkit_structure(headers)

    def transform(self, row, mappings, **kwargs):
        return transform_assessment_row(row)


class GenericHandler(FormatHandler):
    format = SourceFormat.GENERIC

    def validate_structure(self, headers, mappings=None):
        if mappings is None:
            mappings = self.map(headers)
        targets = {m.target_field for m in mappings}
        if "full_name" in targets:
            targets.update({"first_name", "last_name"})
        errors = [
            ValidationIssue(t, f"No column maps to required field {t}")
            for t in REQUIRED_STUDENT_TARGETS if t not in targets
        ]
        return ValidationResult(is_valid=not errors, errors=errors)

    def transform(self, row, mappings, **kwargs):
        yield transform_student_row(row, mappings, school_id=kwargs.get("school_id"))


class GenesisHandler(FormatHandler):
    format = SourceFormat.GENESIS
    supported = False


class NjslaDirectHandler(FormatHandler):
    format = SourceFormat.NJSLA_DIRECT
    supported = False


HANDLERS: Dict[SourceFormat, FormatHandler] = {
    h.format: h for h in (LinkItHandler(), GenesisHandler(), NjslaDirectHandler(), GenericHandler())
}


def get_handler(fmt: SourceFormat) -> FormatHandler:
    return HANDLERS[SourceFormat(fmt)]
