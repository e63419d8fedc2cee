"""
Bulk teacher upload: teacher template, header aliases and per-row validation.

Spreadsheet values are forgiving: "Mr.", "M", "Head Teacher", "Deputy" or "Contract" are normalized
before validation. Subjects and classes are comma-separated names.
"""

import csv
import io
import re
from typing import Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.worksheet.datavalidation import DataValidation
from pydantic import BaseModel, ValidationError, field_validator

from schoolms.api.v1.students.schemas import BulkUploadError
from schoolms.core.uploads import (
    cell_str,
    clean_email,
    clean_name,
    error_messages,
    normalize_header as _normalize_header,
    read_upload,
)

TEMPLATE_HEADERS = [
    "title",
    "first_name",
    "middle_name",
    "last_name",
    "email",
    "gender",
    "employee_id",
    "department",
    "role",
    "teacher_type",
    "qualification",
    "phone_number",
    "subjects",
    "classes",
]

REQUIRED_FIELDS = ["first_name", "last_name", "email", "gender", "employee_id", "department", "role"]

HEADER_ALIASES: Dict[str, str] = {
    "title": "title",
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
    "employee id": "employee_id",
    "employeeid": "employee_id",
    "employee_id": "employee_id",
    "employee number": "employee_id",
    "staff id": "employee_id",
    "department": "department",
    "dept": "department",
    "role": "role",
    "position": "role",
    "teacher type": "teacher_type",
    "teachertype": "teacher_type",
    "teacher_type": "teacher_type",
    "employment type": "teacher_type",
    "qualification": "qualification",
    "phone": "phone_number",
    "phone number": "phone_number",
    "phonenumber": "phone_number",
    "phone_number": "phone_number",
    "subjects": "subjects",
    "subject": "subjects",
    "classes": "classes",
    "class": "classes",
}

SAMPLE_ROWS = [
    ["Mr", "James", "", "Banda", "james.banda@school.mw", "male", "EMP001", "Sciences", "teacher",
     "permanent", "BSc Education", "0888123456", "Mathematics, Physics", "Form 1A, Form 2A"],
    ["Mrs", "Ruth", "Tiwonge", "Mwale", "ruth.mwale@school.mw", "female", "EMP002", "Languages",
     "deputy_headteacher", "permanent", "BA Education", "0999123456", "English", "Form 3A"],
]

TITLES = ("mr", "mrs", "ms", "miss", "dr", "prof", "rev")
ROLES = ("teacher", "headteacher", "deputy_headteacher")
EMPLOYEE_ID_RE = re.compile(r"^[A-Za-z0-9/-]+$")

GENDER_ALIASES = {"m": "male", "male": "male", "boy": "male", "man": "male",
                  "f": "female", "female": "female", "girl": "female", "woman": "female"}
ROLE_ALIASES = {
    "teacher": "teacher",
    "headteacher": "headteacher",
    "head": "headteacher",
    "principal": "headteacher",
    "deputy": "deputy_headteacher",
    "deputyhead": "deputy_headteacher",
    "deputyheadteacher": "deputy_headteacher",
}
TEACHER_TYPE_ALIASES = {
    "": "permanent",
    "perm": "permanent",
    "permanent": "permanent",
    "temp": "temporary",
    "temporary": "temporary",
    "contract": "temporary",
    "tp": "tp",
    "teachingpractice": "tp",
}


def normalize_header(header) -> str:
    return _normalize_header(header, HEADER_ALIASES)


def _squash(value: str) -> str:
    return re.sub(r"[\s_-]+", "", value.strip().lower())


def split_names(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class BulkTeacherRow(BaseModel):
    """One validated upload row. All inputs arrive as strings."""

    title: Optional[str] = None
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    email: str
    gender: str
    employee_id: str
    department: str
    role: str
    teacher_type: str = "permanent"
    qualification: Optional[str] = None
    phone_number: Optional[str] = None
    subjects: List[str] = []
    classes: List[str] = []

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        v = str(v or "").strip().lower().rstrip(".")
        if not v:
            return None
        if v not in TITLES:
            raise ValueError(f"Title must be one of {', '.join(TITLES)}")
        return v

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _required_name(cls, v):
        return clean_name(str(v or ""), "Name")

    @field_validator("middle_name", mode="before")
    @classmethod
    def _optional_name(cls, v):
        return clean_name(str(v or ""), "Name", required=False) or None

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v):
        return clean_email(str(v or ""))

    @field_validator("gender", mode="before")
    @classmethod
    def _gender(cls, v):
        gender = GENDER_ALIASES.get(str(v or "").strip().lower())
        if not gender:
            raise ValueError('Gender must be either "male" or "female"')
        return gender

    @field_validator("employee_id", mode="before")
    @classmethod
    def _employee_id(cls, v):
        v = cell_str(v)
        if not v:
            raise ValueError("Employee ID is required")
        if len(v) > 30:
            raise ValueError("Employee ID must not exceed 30 characters")
        if not EMPLOYEE_ID_RE.match(v):
            raise ValueError("Employee ID may only contain letters, digits, '-' and '/'")
        return v

    @field_validator("department", mode="before")
    @classmethod
    def _department(cls, v):
        v = str(v or "").strip()
        if not v:
            raise ValueError("Department is required")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v):
        role = ROLE_ALIASES.get(_squash(str(v or "")))
        if not role:
            raise ValueError(f"Role must be one of {', '.join(ROLES)}")
        return role

    @field_validator("teacher_type", mode="before")
    @classmethod
    def _teacher_type(cls, v):
        teacher_type = TEACHER_TYPE_ALIASES.get(_squash(str(v or "")))
        if not teacher_type:
            raise ValueError("Teacher type must be one of permanent, temporary, tp")
        return teacher_type

    @field_validator("qualification", "phone_number", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return cell_str(v) or None

    @field_validator("subjects", "classes", mode="before")
    @classmethod
    def _names(cls, v):
        return split_names(str(v or ""))


def parse_upload(filename: Optional[str], content: bytes) -> List[Tuple[int, Dict[str, str]]]:
    """Return (row number, {canonical field: cell text}) for every non-empty data row."""
    return read_upload(
        filename,
        content,
        fields=TEMPLATE_HEADERS,
        required=REQUIRED_FIELDS,
        aliases=HEADER_ALIASES,
        noun="teacher",
    )


def validate_rows(
    rows: List[Tuple[int, Dict[str, str]]],
) -> Tuple[List[Tuple[int, BulkTeacherRow]], List[BulkUploadError]]:
    valid: List[Tuple[int, BulkTeacherRow]] = []
    errors: List[BulkUploadError] = []
    for row_num, record in rows:
        try:
            valid.append((row_num, BulkTeacherRow(**record)))
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
        ws.title = "Teachers"
        ws.append(TEMPLATE_HEADERS)
        for row in rows:
            ws.append(row)
        gender_dv = DataValidation(type="list", formula1='"male,female"', allow_blank=False)
        role_dv = DataValidation(type="list", formula1=f'"{",".join(ROLES)}"', allow_blank=False)
        type_dv = DataValidation(type="list", formula1='"permanent,temporary,tp"', allow_blank=True)
        for dv, cells in ((gender_dv, "F2:F1000"), (role_dv, "I2:I1000"), (type_dv, "J2:J1000")):
            ws.add_data_validation(dv)
            dv.add(cells)
        bio = io.BytesIO()
        wb.save(bio)
        return bio.getvalue()

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(rows)
    return out.getvalue().encode("utf-8")
