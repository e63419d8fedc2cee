"""
Bulk student upload: student template, header aliases and per-row validation.

File reading is shared with the teacher upload in schoolms.core.uploads.
"""

import csv
import io
import re
from datetime import date
from typing import Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.worksheet.datavalidation import DataValidation
from pydantic import BaseModel, ValidationError, field_validator

from schoolms.core.uploads import (
    BulkUploadFileError,
    cell_str,
    clean_email,
    clean_name,
    error_messages,
    normalize_header as _normalize_header,
    read_upload,
)

from .schemas import BulkUploadError

# Canonical field order of the upload template
TEMPLATE_HEADERS = [
    "first_name",
    "middle_name",
    "last_name",
    "email",
    "gender",
    "date_of_birth",
    "student_id",
    "student_type",
    "class_name",
    "guardian_email",
    "address",
    "phone_number",
]

# Common header variations -> canonical field
HEADER_ALIASES: Dict[str, str] = {
    "first name": "first_name",
    "firstname": "first_name",
    "first_name": "first_name",
    "middle name": "middle_name",
    "middlename": "middle_name",
    "middle_name": "middle_name",
    "last name": "last_name",
    "lastname": "last_name",
    "last_name": "last_name",
    "surname": "last_name",
    "email": "email",
    "email address": "email",
    "gender": "gender",
    "sex": "gender",
    "date of birth": "date_of_birth",
    "dob": "date_of_birth",
    "birth date": "date_of_birth",
    "birthdate": "date_of_birth",
    "date_of_birth": "date_of_birth",
    "student id": "student_id",
    "studentid": "student_id",
    "student_id": "student_id",
    "id": "student_id",
    "student type": "student_type",
    "studenttype": "student_type",
    "student_type": "student_type",
    "type": "student_type",
    "class": "class_name",
    "class name": "class_name",
    "classname": "class_name",
    "class_name": "class_name",
    "form": "class_name",
    "guardian email": "guardian_email",
    "guardianemail": "guardian_email",
    "guardian_email": "guardian_email",
    "parent email": "guardian_email",
    "address": "address",
    "phone": "phone_number",
    "phone number": "phone_number",
    "phonenumber": "phone_number",
    "phone_number": "phone_number",
    "contact": "phone_number",
}

SAMPLE_ROWS = [
    ["John", "Banda", "Phiri", "john.phiri@school.mw", "male", "2008-05-15", "STU2024001",
     "internal", "Form 1A", "parent.phiri@school.mw", "Area 47, Lilongwe", "+265999123456"],
    ["Grace", "", "Mwale", "grace.mwale@school.mw", "female", "2009-08-22", "STU2024002",
     "external", "Form 2B", "parent.mwale@school.mw", "Kawale, Lilongwe", "0888765432"],
]

STUDENT_ID_RE = re.compile(r"^[A-Za-z0-9]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PHONE_RE = re.compile(r"^(\+265|0)?[1-9]\d{8}$")

OPTIONAL_FIELDS = ("middle_name", "address", "phone_number")


def normalize_header(header) -> str:
    return _normalize_header(header, HEADER_ALIASES)


class BulkStudentRow(BaseModel):
    """One validated upload row. All inputs arrive as strings."""

    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    email: str
    gender: str
    date_of_birth: date
    student_id: str
    student_type: str
    class_name: str
    guardian_email: str
    address: Optional[str] = None
    phone_number: Optional[str] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _required_name(cls, v):
        return clean_name(str(v or ""), "Name")

    @field_validator("middle_name", mode="before")
    @classmethod
    def _optional_name(cls, v):
        return clean_name(str(v or ""), "Name", required=False) or None

    @field_validator("email", "guardian_email", mode="before")
    @classmethod
    def _emails(cls, v):
        return clean_email(str(v or ""))

    @field_validator("gender", mode="before")
    @classmethod
    def _gender(cls, v):
        v = str(v or "").strip().lower()
        if v not in ("male", "female"):
            raise ValueError('Gender must be either "male" or "female"')
        return v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _dob(cls, v):
        v = cell_str(v)
        if not DATE_RE.match(v):
            raise ValueError("Date must be in YYYY-MM-DD format")
        try:
            parsed = date.fromisoformat(v)
        except ValueError:
            raise ValueError("Invalid date or future date not allowed")
        if parsed >= date.today():
            raise ValueError("Invalid date or future date not allowed")
        return parsed

    @field_validator("student_id", mode="before")
    @classmethod
    def _student_id(cls, v):
        v = str(v or "").strip()
        if len(v) < 6:
            raise ValueError("Student ID must be at least 6 characters")
        if len(v) > 20:
            raise ValueError("Student ID must not exceed 20 characters")
        if not STUDENT_ID_RE.match(v):
            raise ValueError("Student ID must be alphanumeric")
        return v

    @field_validator("student_type", mode="before")
    @classmethod
    def _student_type(cls, v):
        v = str(v or "").strip().lower()
        if v not in ("internal", "external"):
            raise ValueError('Student type must be either "internal" or "external"')
        return v

    @field_validator("class_name", mode="before")
    @classmethod
    def _class_name(cls, v):
        v = str(v or "").strip()
        if not v:
            raise ValueError("Class name is required")
        if len(v) > 50:
            raise ValueError("Class name must not exceed 50 characters")
        return v

    @field_validator("address", mode="before")
    @classmethod
    def _address(cls, v):
        v = str(v or "").strip()
        if len(v) > 500:
            raise ValueError("Address must not exceed 500 characters")
        return v or None

    @field_validator("phone_number", mode="before")
    @classmethod
    def _phone(cls, v):
        v = cell_str(v).replace(" ", "")
        if not v:
            return None
        if not PHONE_RE.match(v):
            raise ValueError("Invalid phone number format (use Malawi format: +265XXXXXXXXX or 0XXXXXXXXX)")
        return v


def parse_upload(filename: Optional[str], content: bytes) -> List[Tuple[int, Dict[str, str]]]:
    """Return (row number, {canonical field: cell text}) for every non-empty data row."""
    return read_upload(
        filename,
        content,
        fields=TEMPLATE_HEADERS,
        required=[f for f in TEMPLATE_HEADERS if f not in OPTIONAL_FIELDS],
        aliases=HEADER_ALIASES,
        noun="student",
    )


def validate_rows(
    rows: List[Tuple[int, Dict[str, str]]],
) -> Tuple[List[Tuple[int, BulkStudentRow]], List[BulkUploadError]]:
    valid: List[Tuple[int, BulkStudentRow]] = []
    errors: List[BulkUploadError] = []
    for row_num, record in rows:
        try:
            valid.append((row_num, BulkStudentRow(**record)))
        except ValidationError as e:
            for field, message in error_messages(e):
                errors.append(BulkUploadError(row=row_num, field=field, value=record.get(field, ""), message=message))
    return valid, errors


def build_template(fmt: str = "csv", include_samples: bool = True) -> bytes:
    """Upload template with header row (and sample rows). fmt: csv | xlsx."""
    rows = SAMPLE_ROWS if include_samples else []
    if fmt == "xlsx":
        wb = Workbook()
        ws = wb.active
        ws.title = "Students"
        ws.append(TEMPLATE_HEADERS)
        for row in rows:
            ws.append(row)
        gender_dv = DataValidation(type="list", formula1='"male,female"', allow_blank=False)
        gender_dv.error = 'Please select either "male" or "female"'
        type_dv = DataValidation(type="list", formula1='"internal,external"', allow_blank=False)
        type_dv.error = 'Please select either "internal" or "external"'
        ws.add_data_validation(gender_dv)
        ws.add_data_validation(type_dv)
        gender_dv.add("E2:E1000")
        type_dv.add("H2:H1000")
        bio = io.BytesIO()
        wb.save(bio)
        return bio.getvalue()

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(rows)
    return out.getvalue().encode("utf-8")
