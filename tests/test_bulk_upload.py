import io

import pytest
from openpyxl import load_workbook

from schoolms.api.v1.students.bulk_upload import (
    TEMPLATE_HEADERS,
    BulkUploadFileError,
    build_template,
    normalize_header,
    parse_upload,
    validate_rows,
)

HEADER = "First Name,Last Name,Email,Gender,DOB,Student ID,Type,Class,Parent Email,Phone\n"


def test_normalize_header_aliases() -> None:
    assert normalize_header("First Name") == "first_name"
    assert normalize_header(" Surname ") == "last_name"
    assert normalize_header("Parent Email") == "guardian_email"
    assert normalize_header("favourite colour") == "favourite colour"


def test_parse_and_validate_csv() -> None:
    content = (
        HEADER
        + "John,Phiri,john@school.mw,Male,2008-05-15,STU2024001,internal,Form 1A,parent@school.mw,0888765432\n"
        + ",,,,,,,,,\n"
        + "Mary,Banda,not-an-email,other,2008-13-01,ST1,day,Form 1A,parent@school.mw,12345\n"
    ).encode("utf-8")
    rows = parse_upload("students.csv", content)
    assert [row_num for row_num, _ in rows] == [2, 4]

    valid, errors = validate_rows(rows)
    assert len(valid) == 1
    assert valid[0][1].gender == "male"
    assert valid[0][1].student_id == "STU2024001"

    bad_fields = {e.field for e in errors if e.row == 4}
    assert {"email", "gender", "date_of_birth", "student_id", "student_type", "phone_number"} <= bad_fields
    assert all(not e.message.startswith("Value error") for e in errors)


def test_missing_required_column() -> None:
    with pytest.raises(BulkUploadFileError, match="Missing required column"):
        parse_upload("students.csv", b"first_name,last_name\nJohn,Phiri\n")


def test_rejects_unknown_file_type() -> None:
    with pytest.raises(BulkUploadFileError, match="CSV"):
        parse_upload("students.txt", b"anything")


def test_rejects_empty_file() -> None:
    with pytest.raises(BulkUploadFileError, match="empty"):
        parse_upload("students.csv", b"")


def test_xlsx_template_round_trips_through_parser() -> None:
    content = build_template("xlsx")
    wb = load_workbook(io.BytesIO(content))
    assert [c.value for c in wb.active[1]] == TEMPLATE_HEADERS

    rows = parse_upload("template.xlsx", content)
    valid, errors = validate_rows(rows)
    assert errors == []
    assert len(valid) == 2


def test_csv_template_header() -> None:
    first_line = build_template("csv", include_samples=False).decode("utf-8").splitlines()[0]
    assert first_line.split(",") == TEMPLATE_HEADERS
