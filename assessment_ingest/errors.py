from __future__ import annotations

from typing import Any, Optional


class IngestError(Exception):
    """Base class for everything this package raises on purpose."""


class ParseError(IngestError):
    """The file cannot be read as the declared format, or holds no rows. Fatal for the file."""


class HeaderResolutionError(IngestError):
    """Split main/sub header rows could not be located; callers fall back to a single header row."""


class UnsupportedFormatError(IngestError):
    def __init__(self, source_format: Any, message: Optional[str] = None):
        self.source_format = source_format
        super().__init__(message or f"{getattr(source_format, 'value', source_format)} imports are not yet supported")


class StoreError(IngestError):
    """The record store rejected a lookup, insert or update."""


class BatchAbortedError(IngestError):
    def __init__(self, message: str, *, row: int, partial_result: Any = None):
        self.row = row
        self.partial_result = partial_result
        super().__init__(message)
