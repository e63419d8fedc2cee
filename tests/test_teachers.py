import io

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook

from schoolms.api.v1.teachers.bulk_upload import TEMPLATE_HEADERS, parse_upload, validate_rows


def _teacher_payload(staffroom, **overrides) -> dict:
    payload = {
        "title": "mr",
        "first_name": "James",
        "last_name": "Banda",
        "email": "james.banda@school.mw",
        "gender": "male",
        "employee_number": "EMP001",
        "department_id": staffroom.department_id,
        "subject_ids": list(staffroom.subjects.values()),
        "class_ids": [staffroom.class_id],
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_register_teacher(client: AsyncClient, make_user, headers_for, staffroom) -> None:
    headteacher = headers_for(await make_user("headteacher"))
    response = await client.post("/api/v1/teachers", json=_teacher_payload(staffroom), headers=headteacher)
    assert response.status_code == 201, response.text
    data = response.json()
    assert data["temporary_password"]
    teacher = data["teacher"]
    assert teacher["full_name"] == "James Banda"
    assert teacher["role"] == "teacher"
    assert teacher["teacher_type"] == "permanent"
    assert teacher["department_name"] == "Sciences"
    assert teacher["subjects"] == ["Mathematics", "Physics"]
    assert teacher["classes"] == ["Form 1A"]

    same_employee = await client.post(
        "/api/v1/teachers",
        json=_teacher_payload(staffroom, email="other@school.mw"),
        headers=headteacher,
    )
    assert same_employee.status_code == 409
    assert same_employee.json()["detail"] == "Employee ID is already in use"

    no_subjects = await client.post(
        "/api/v1/teachers",
        json=_teacher_payload(staffroom, email="new@school.mw", employee_number="EMP002", subject_ids=[]),
        headers=headteacher,
    )
    assert no_subjects.status_code == 422

    bursar = headers_for(await make_user("staff"))
    forbidden = await client.post(
        "/api/v1/teachers",
        json=_teacher_payload(staffroom, email="new@school.mw", employee_number="EMP002"),
        headers=bursar,
    )
    assert forbidden.status_code == 403

    listed = await client.get("/api/v1/teachers", params={"search": "emp001"}, headers=bursar)
    assert [t["id"] for t in listed.json()] == [teacher["id"]]

    department = await client.get(f"/api/v1/departments/{staffroom.department_id}", headers=bursar)
    assert department.json()["teacher_count"] == 1


TEACHER_CSV = (
    "Title,First Name,Middle Name,Last Name,Email,Gender,Employee ID,Department,Role,Teacher Type,"
    "Qualification,Phone,Subjects,Classes\n"
    'Mr.,James,,Banda,james@school.mw,M,EMP001,Sciences,Head Teacher,perm,,,"Mathematics, Physics",Form 1A\n'
    "Ms,Ruth,,Mwale,ruth@school.mw,female,EMP002,sci,teacher,contract,BEd,,Mathematics,\n"
    "Mr,Again,,Banda,james@school.mw,male,EMP003,Sciences,teacher,,,,,\n"
    "Mr,Lost,,Phiri,lost@school.mw,male,EMP004,History,teacher,,,,,\n"
    "Mrs,Latin,,Tembo,latin@school.mw,female,EMP005,Sciences,teacher,,,,Latin,\n"
    "Mr,Wrong,,Role,wrong@school.mw,male,EMP006,Sciences,janitor,,,,,\n"
)


def test_teacher_rows_are_normalized() -> None:
    rows = parse_upload("teachers.csv", TEACHER_CSV.encode("utf-8"))
    valid, errors = validate_rows(rows)
    assert [row_num for row_num, _ in valid] == [2, 3, 4, 5, 6]

    james = valid[0][1]
    assert (james.title, james.gender, james.role, james.teacher_type) == ("mr", "male", "headteacher", "permanent")
    assert james.subjects == ["Mathematics", "Physics"]
    ruth = valid[1][1]
    assert (ruth.teacher_type, ruth.classes) == ("temporary", [])

    assert [(e.row, e.field) for e in errors] == [(7, "role")]
    assert errors[0].message == "Role must be one of teacher, headteacher, deputy_headteacher"


@pytest.mark.asyncio
async def test_bulk_upload_teachers(client: AsyncClient, admin_headers: dict, staffroom) -> None:
    preview = await client.post(
        "/api/v1/teachers/bulk-upload/preview",
        files={"file": ("teachers.csv", TEACHER_CSV.encode("utf-8"), "text/csv")},
        headers=admin_headers,
    )
    assert preview.status_code == 200
    assert (preview.json()["valid_count"], preview.json()["invalid_count"]) == (5, 1)

    response = await client.post(
        "/api/v1/teachers/bulk-upload",
        files={"file": ("teachers.csv", TEACHER_CSV.encode("utf-8"), "text/csv")},
        headers=admin_headers,
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert (data["success_count"], data["failure_count"], data["skipped_count"]) == (2, 3, 1)
    assert data["message"] == "Registered 2 out of 6 teachers. 3 failed, 1 skipped."
    assert {e["row"]: e["field"] for e in data["errors"]} == {4: "email", 5: "department", 6: "subjects", 7: "role"}

    teachers = await client.get("/api/v1/teachers", headers=admin_headers)
    by_number = {t["employee_number"]: t for t in teachers.json()}
    assert sorted(by_number) == ["EMP001", "EMP002"]
    assert by_number["EMP001"]["role"] == "headteacher"
    assert by_number["EMP001"]["classes"] == ["Form 1A"]
    assert by_number["EMP002"]["teacher_type"] == "temporary"
    assert by_number["EMP002"]["department_name"] == "Sciences"
    assert by_number["EMP002"]["subjects"] == ["Mathematics"]


@pytest.mark.asyncio
async def test_bulk_upload_all_registered(client: AsyncClient, admin_headers: dict, staffroom) -> None:
    content = (
        "first_name,last_name,email,gender,employee_id,department,role\n"
        "Ruth,Mwale,ruth@school.mw,f,EMP010,Sciences,deputy\n"
    ).encode("utf-8")
    response = await client.post(
        "/api/v1/teachers/bulk-upload",
        files={"file": ("teachers.csv", content, "text/csv")},
        headers=admin_headers,
    )
    assert response.json()["message"] == "Successfully registered all 1 teachers!"

    missing_column = await client.post(
        "/api/v1/teachers/bulk-upload",
        files={"file": ("teachers.csv", b"first_name,last_name,email\nA,B,a@school.mw\n", "text/csv")},
        headers=admin_headers,
    )
    assert missing_column.status_code == 400
    assert missing_column.json()["detail"].startswith("Missing required column(s): gender")


@pytest.mark.asyncio
async def test_teacher_template(client: AsyncClient, admin_headers: dict) -> None:
    response = await client.get(
        "/api/v1/teachers/bulk-upload/template", params={"format": "xlsx"}, headers=admin_headers
    )
    assert response.status_code == 200
    ws = load_workbook(io.BytesIO(response.content)).active
    assert [c.value for c in ws[1]] == TEMPLATE_HEADERS

    rows = parse_upload("template.xlsx", response.content)
    valid, errors = validate_rows(rows)
    assert errors == []
    assert [row.role for _, row in valid] == ["teacher", "deputy_headteacher"]
