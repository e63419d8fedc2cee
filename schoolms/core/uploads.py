"""
Spreadsheet uploads used by the bulk registration endpoints: CSV / XLSX reading and header mapping.

Row numbers are spreadsheet rows (header is row 1, first data row is row 2).
"""

import csv
import io
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl import load_workbook
from pydantic import EmailStr, TypeAdapter, ValidationError

from schoolms.core.config import settings


class BulkUploadFileError(ValueError):
    """The file itself cannot be processed (type, size, headers, row limit)."""


def cell_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def is_blank(values) -> bool:
    return all(cell_str(v) == "" for v in values)


def _rows_from_csv(content: bytes) -> Tuple[List[str], List[Tuple[int, List]]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise BulkUploadFileError("CSV file must be UTF-8 encoded") from e
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if not header:
        raise BulkUploadFileError("File has no header row")
    return header, [(row_num, row) for row_num, row in enumerate(reader, start=2)]


def _rows_from_xlsx(content: bytes) -> Tuple[List[str], List[Tuple[int, List]]]:
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise BulkUploadFileError(f"Invalid Excel file: {e}") from e
    try:
        ws = wb.active
        if ws is None:
            raise BulkUploadFileError("Excel file has no active sheet")
        rows_iter = ws.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            raise BulkUploadFileError("File has no header row")
        rows = [(row_num, list(row)) for row_num, row in enumerate(rows_iter, start=2)]
    finally:
        wb.close()
    return list(header), rows


def normalize_header(header, aliases: Dict[str, str]) -> str:
    raw = str(header).strip() if header is not None else ""
    return aliases.get(raw.lower(), raw)


def read_upload(
    filename: Optional[str],
    content: bytes,
    *,
    fields: List[str],
    required: Iterable[str],
    aliases: Dict[str, str],
    noun: str,
) -> List[Tuple[int, Dict[str, str]]]:
    """Return (row number, {canonical field: cell text}) for every non-empty data row."""
    if not content:
        raise BulkUploadFileError("File is empty")
    if len(content) > settings.bulk_upload_max_bytes:
        raise BulkUploadFileError(
            f"File exceeds the maximum size of {settings.bulk_upload_max_bytes // (1024 * 1024)} MB"
        )
    name = (filename or "").lower()
    if name.endswith(".csv"):
        header, raw_rows = _rows_from_csv(content)
    elif name.endswith(".xlsx"):
        header, raw_rows = _rows_from_xlsx(content)
    else:
        raise BulkUploadFileError("File must be a CSV (.csv) or Excel (.xlsx) file")

    columns = [normalize_header(h, aliases) for h in header]
    missing = [f for f in required if f not in columns]
    if missing:
        raise BulkUploadFileError(f"Missing required column(s): {', '.join(missing)}")

    rows: List[Tuple[int, Dict[str, str]]] = []
    for row_num, values in raw_rows:
        if not values or is_blank(values):
            continue
        record = {}
        for idx, field in enumerate(columns):
            if field in fields:
                record[field] = cell_str(values[idx]) if idx < len(values) else ""
        rows.append((row_num, record))

    if not rows:
        raise BulkUploadFileError(f"File contains no {noun} rows")
    if len(rows) > settings.bulk_upload_max_rows:
        raise BulkUploadFileError(f"Maximum {settings.bulk_upload_max_rows} {noun} rows allowed per upload")
    return rows


def error_messages(e: ValidationError) -> List[Tuple[str, str]]:
    """(field, message) pairs of a row validation failure, without pydantic's 'Value error, ' prefix."""
    out = []
    for err in e.errors():
        field = ".".join(str(p) for p in err["loc"])
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        out.append((field, message))
    return out


NAME_RE = re.compile(r"^[A-Za-z\s'-]+$")

_email_adapter = TypeAdapter(EmailStr)


def clean_name(value: str, field_label: str, required: bool = True) -> str:
    value = value.strip()
    if not value:
        if required:
            raise ValueError(f"{field_label} is required")
        return value
    if len(value) > 100:
        raise ValueError(f"{field_label} must not exceed 100 characters")
    if not NAME_RE.match(value):
        raise ValueError(f"{field_label} can only contain letters, spaces, hyphens, and apostrophes")
    return value


def clean_email(value: str) -> str:
    value = value.strip().lower()
    if not value:
        raise ValueError("Email is required")
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        raise ValueError("Invalid email format")
    return value
