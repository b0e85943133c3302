import csv
import io
import os
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Tuple

import openpyxl
import xlrd

from master_import.bulk.columns import TemplateColumn, label_for_key, make_header_map, normalize_header
from master_import.bulk.errors import (
    FileTooLargeError,
    MissingColumnsError,
    RowLimitExceededError,
    UnsupportedFormatError,
)

INSTRUCTION_PREFIXES = ("required", "optional")
INSTRUCTION_KEYWORDS = ["string", "number", "boolean", "date"]


@dataclass
class ParsedFile:
    file_type: str
    headers: List[str]
    rows: List[List[str]]


def detect_format(file_name: str, supported_formats: Iterable[str] = ("csv", "xlsx", "xls")) -> str:
    ext = os.path.splitext(file_name or "")[1].lower().lstrip(".")
    if not ext or ext not in set(supported_formats):
        allowed = ", ".join(fmt.upper() for fmt in supported_formats)
        raise UnsupportedFormatError(f"Unsupported file format. Use {allowed}.", details={"file_name": file_name})
    return ext


def parse_upload(
    content: bytes,
    file_name: str,
    max_rows: int,
    max_bytes: int | None = None,
    supported_formats: Iterable[str] = ("csv", "xlsx", "xls"),
) -> ParsedFile:
    file_type = detect_format(file_name, supported_formats)
    if max_bytes is not None and len(content) > max_bytes:
        raise FileTooLargeError(
            f"File exceeds the maximum size of {max_bytes} bytes.",
            details={"size": len(content), "max_bytes": max_bytes},
        )
    if not content:
        raise UnsupportedFormatError("File is empty.")

    if file_type == "xlsx":
        header, rows = _iter_xlsx(content)
    elif file_type == "xls":
        header, rows = _iter_xls(content)
    else:
        header, rows = _iter_csv(content)

    data: List[List[str]] = []
    for row in rows:
        if not any(cell for cell in row):
            continue
        if len(data) >= max_rows:
            raise RowLimitExceededError(
                f"File exceeds the row limit of {max_rows}.",
                details={"max_rows": max_rows},
            )
        data.append(row)
    return ParsedFile(file_type=file_type, headers=header, rows=data)


def to_records(parsed: ParsedFile, columns: List[TemplateColumn]) -> List[Dict[str, str]]:
    """Key every data row by template column name.

    Headers are matched on the column name or its display name. Unknown
    headers are ignored; missing required headers are fatal.
    """
    header_map = make_header_map(columns)
    canonical = [header_map.get(normalize_header(h), "") for h in parsed.headers]

    missing = [col.name for col in columns if col.required and col.name not in canonical]
    if missing:
        raise MissingColumnsError(
            "Missing required column(s): " + ", ".join(label_for_key(columns, name) for name in missing),
            details={"missing": missing},
        )

    records = []
    for row in parsed.rows:
        record = {col.name: "" for col in columns}
        for key, value in zip(canonical, row):
            if key:
                record[key] = value
        records.append(record)
    return records


def _cell_to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _is_instruction_row(row: List[str]) -> bool:
    cells = [(cell or "").strip().lower() for cell in row]
    cells = [cell for cell in cells if cell]
    if not cells:
        return False
    hits = 0
    for raw in cells:
        if raw.startswith(INSTRUCTION_PREFIXES) and any(key in raw for key in INSTRUCTION_KEYWORDS):
            hits += 1
    return hits >= max(1, int(len(cells) * 0.6))


def _skip_instruction(rows: Iterable[List[str]]) -> Iterable[List[str]]:
    iterator = iter(rows)
    first = next(iterator, None)
    if first is not None and not _is_instruction_row(first):
        yield first
    for row in iterator:
        yield row


def _iter_xlsx(content: bytes) -> Tuple[List[str], Iterable[List[str]]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise UnsupportedFormatError(f"Could not read XLSX file: {exc}") from exc
    ws = wb.active
    rows = ws.iter_rows(values_only=True)
    first = next(rows, None)
    if first is None:
        raise MissingColumnsError("XLSX header row is missing.")
    header = [_cell_to_text(c) for c in first]
    body = [[_cell_to_text(c) for c in row] for row in rows]
    wb.close()
    return header, _skip_instruction(body)


def _iter_csv(content: bytes) -> Tuple[List[str], Iterable[List[str]]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    reader = csv.reader(io.StringIO(text, newline=""))
    header = next(reader, None)
    if not header:
        raise MissingColumnsError("CSV header row is missing.")
    body = [[cell.strip() for cell in row] for row in reader]
    return [h.strip() for h in header], _skip_instruction(body)


def _iter_xls(content: bytes) -> Tuple[List[str], Iterable[List[str]]]:
    try:
        book = xlrd.open_workbook(file_contents=content)
    except Exception as exc:
        raise UnsupportedFormatError(f"Could not read XLS file: {exc}") from exc
    sheet = book.sheet_by_index(0)
    if sheet.nrows == 0:
        raise MissingColumnsError("XLS header row is missing.")

    def _value(row_idx: int, col: int) -> str:
        cell = sheet.cell(row_idx, col)
        if cell.ctype == xlrd.XL_CELL_DATE:
            return _cell_to_text(xlrd.xldate_as_datetime(cell.value, book.datemode))
        return _cell_to_text(cell.value)

    header = [_value(0, col) for col in range(sheet.ncols)]
    body = [[_value(row_idx, col) for col in range(sheet.ncols)] for row_idx in range(1, sheet.nrows)]
    return header, _skip_instruction(body)
