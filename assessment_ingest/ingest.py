from __future__ import annotations
import csv
import logging
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union
from zipfile import BadZipFile

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ParseError
from .models import RawTable
from .utils import clean_cell

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".csv", ".txt")
EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
LEGACY_EXCEL_EXTENSIONS = (".xls",)
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS + EXCEL_EXTENSIONS + LEGACY_EXCEL_EXTENSIONS

ENCODINGS = ["utf-8-sig", "cp1252"]
DELIMITERS = [",", ";", "\t", "|"]
# =========================

# Excel: first sheet as a matrix, merged cells unrolled
# =========================
def _sheet_to_matrix_with_merged(wb_bytes: bytes) -> Tuple[str, List[List[Any]]]:
    wb = load_workbook(BytesIO(wb_bytes), read_only=False, data_only=True)
    ws = wb.worksheets[0]
    merged_map = {}
    for r in ws.merged_cells.ranges:
        min_col, min_row, max_col, max_row = r.bounds
        top_val = ws.cell(min_row, min_col).value
        for rr in range(min_row, max_row + 1):
            for cc in range(min_col, max_col + 1):
                merged_map[(rr, cc)] = top_val

    rows = []
    for r in range(1, ws.max_row + 1):
        row_vals = []
        for c in range(1, ws.max_column + 1):
            v = ws.cell(r, c).value
            if (r, c) in merged_map and (v is None or str(v).strip() == ""):
                v = merged_map[(r, c)]
            row_vals.append(v)
        rows.append(row_vals)
    return ws.title, rows


def _read_xlsx_bytes(data: bytes) -> Tuple[str, List[List[str]]]:
    try:
        title, matrix = _sheet_to_matrix_with_merged(data)
    except (BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as e:
        raise ParseError(f"Cannot read spreadsheet: {e}") from e
    return title, [[clean_cell(v) for v in row] for row in matrix]


def _read_xls_bytes(data: bytes) -> List[List[str]]:
    # legacy .xls goes through pandas/xlrd
    try:
        df = pd.read_excel(BytesIO(data), sheet_name=0, header=None, dtype=object)
    except Exception as e:
        raise ParseError(f"Cannot read legacy spreadsheet: {e}") from e
    return [[clean_cell(v) for v in row] for row in df.itertuples(index=False, name=None)]
# =========================

# CSV: tolerant reading of vendor exports
# =========================
def _decode(data: bytes) -> str:
    if b"\x00" in data:
        raise ParseError("File contains NUL bytes; not a delimited text file")
    last_err: Optional[Exception] = None
    for enc in ENCODINGS:
        try:
            return data.decode(enc)
        except UnicodeDecodeError as e:
            last_err = e
    raise ParseError(f"Cannot decode text file: {last_err}")


def _guess_delimiter(sample_text: str) -> str:
    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters="".join(DELIMITERS))
        if dialect.delimiter:
            return dialect.delimiter
    except csv.Error:
        pass

    # fallback: average count per line
    lines = [ln for ln in sample_text.splitlines() if ln.strip()][:20]
    if not lines:
        return ","

    scores = {}
    for d in DELIMITERS:
        cnts = [ln.count(d) for ln in lines]
        scores[d] = sum(cnts) / max(1, len(cnts))

    best = max(scores.items(), key=lambda x: x[1])[0]
    return best if scores.get(best, 0) > 0 else ","


def _read_text_bytes(data: bytes) -> List[List[str]]:
    text = _decode(data)
    delim = _guess_delimiter(text[:65536])
    logger.debug("Delimiter guessed: %r", delim)
    try:
        reader = csv.reader(StringIO(text, newline=""), delimiter=delim)
        # an empty line gives []; a line of bare delimiters is kept to keep row positions
        return [[clean_cell(v) for v in row] for row in reader if row]
    except csv.Error as e:
        raise ParseError(f"Malformed delimited text: {e}") from e
# =========================

# Main: bytes -> RawTable
# =========================
def _extension(filename_or_extension: str) -> str:
    s = str(filename_or_extension or "").strip().lower()
    suffix = Path(s).suffix
    if suffix:
        return suffix
    return s if s.startswith(".") else f".{s}"


def _trim_trailing_blank_rows(rows: List[List[str]]) -> List[List[str]]:
    end = len(rows)
    while end > 0 and all(c == "" for c in rows[end - 1]):
        end -= 1
    return rows[:end]


def read_table(data: bytes, filename_or_extension: str) -> RawTable:
    """
    Parse a byte buffer into a RawTable.

    - CSV/TXT: no header assumption, delimiter sniffed, encodings utf-8-sig then cp1252
    - XLSX: first sheet only, merged ranges unrolled to their top-left value
    - XLS: first sheet via pandas

    Raises ParseError when the buffer cannot be read as its declared format
    or yields zero rows.
    """
    ext = _extension(filename_or_extension)
    if ext in TEXT_EXTENSIONS:
        rows = _read_text_bytes(data)
        sheet = "CSV"
    elif ext in EXCEL_EXTENSIONS:
        sheet, rows = _read_xlsx_bytes(data)
    elif ext in LEGACY_EXCEL_EXTENSIONS:
        rows = _read_xls_bytes(data)
        sheet = "Sheet1"
    else:
        raise ParseError(f"Unsupported file type {ext!r}; expected one of {', '.join(SUPPORTED_EXTENSIONS)}")

    rows = _trim_trailing_blank_rows(rows)
    if not rows:
        raise ParseError("File contains no rows")

    name = str(filename_or_extension) if Path(str(filename_or_extension)).suffix else ""
    logger.info("Read %d rows from %s", len(rows), name or ext)
    return RawTable(rows=tuple(tuple(r) for r in rows), source_name=name, sheet_name=sheet)


def load_table_from_path(path: Union[str, Path]) -> RawTable:
    p = Path(path)
    return read_table(p.read_bytes(), p.name)
