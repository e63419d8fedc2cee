from datetime import date
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.models import User
from schoolms.core.models import Invoice, StudentFee


def _as_user(student: dict) -> SimpleNamespace:
    return SimpleNamespace(id=student["user_id"], role="student")


@pytest.mark.asyncio
async def test_register_student_assigns_fees_and_invoice(
    client: AsyncClient,
    db_session: AsyncSession,
    admin_headers: dict,
    school,
) -> None:
    response = await client.post(
        "/api/v1/students",
        json={
            "first_name": "John",
            "last_name": "Phiri",
            "email": "John.Phiri@school.mw",
            "student_number": "STU2024001",
            "student_type": "internal",
            "class_id": school.class_id,
            "gender": "male",
            "guardian_email": "parent.phiri@school.mw",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    data = response.json()

    assert data["student"]["full_name"] == "John Phiri"
    assert data["student"]["email"] == "john.phiri@school.mw"
    assert data["student"]["class_name"] == "Form 1A"
    assert len(data["temporary_password"]) == 12
    assert data["fee_assignment_error"] is None

    fee = data["fee_assignment"]
    assert fee["status"] == "assigned"
    assert fee["fee_assigned"] is True
    assert float(fee["amount"]) == 150000
    assert fee["invoice_number"] == f"INV-{date.today().year}-00001"

    user = (await db_session.execute(select(User).where(User.email == "john.phiri@school.mw"))).scalar_one()
    assert user.role == "student"
    assert user.must_change_password is True

    student_fee = (await db_session.execute(select(StudentFee))).scalar_one()
    assert float(student_fee.balance) == 150000
    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    assert invoice.student_fee_id == student_fee.id
    assert invoice.status == "unpaid"


@pytest.mark.asyncio
async def test_register_external_student_gets_external_structure(register_student) -> None:
    data = await register_student("EXT000001", student_type="external")
    assert float(data["fee_assignment"]["amount"]) == 100000


@pytest.mark.asyncio
async def test_register_without_structure_skips_fees(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    deactivate = await client.post(
        f"/api/v1/fees/structures/{school.structures['external']}/deactivate", headers=admin_headers
    )
    assert deactivate.status_code == 200

    data = await register_student("EXT000002", student_type="external")
    assert data["fee_assignment"]["status"] == "skipped"
    assert data["fee_assignment"]["fee_assigned"] is False


@pytest.mark.asyncio
async def test_duplicate_student_number_and_email(client: AsyncClient, admin_headers: dict, register_student) -> None:
    await register_student("STU000001")

    availability = await client.get(
        "/api/v1/students/check-student-number", params={"student_number": "stu000001"}, headers=admin_headers
    )
    assert availability.json()["available"] is False

    dup_number = await client.post(
        "/api/v1/students",
        json={
            "first_name": "A",
            "last_name": "B",
            "email": "other@school.mw",
            "student_number": "STU000001",
            "gender": "male",
        },
        headers=admin_headers,
    )
    assert dup_number.status_code == 409

    dup_email = await client.post(
        "/api/v1/students",
        json={
            "first_name": "A",
            "last_name": "B",
            "email": "stu000001@school.mw",
            "student_number": "STU000002",
            "gender": "male",
        },
        headers=admin_headers,
    )
    assert dup_email.status_code == 409


@pytest.mark.asyncio
async def test_register_requires_admin(client: AsyncClient, make_user, headers_for, school) -> None:
    teacher = await make_user("teacher")
    response = await client.post(
        "/api/v1/students",
        json={"first_name": "A", "last_name": "B", "email": "a@school.mw", "student_number": "STU000009", "gender": "male"},
        headers=headers_for(teacher),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_and_search_students(client: AsyncClient, admin_headers: dict, register_student) -> None:
    await register_student("STU000001", first_name="Alinafe", last_name="Mwale")
    await register_student("STU000002", first_name="Kondwani", last_name="Banda", student_type="external")

    response = await client.get("/api/v1/students", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [s["last_name"] for s in data["items"]] == ["Banda", "Mwale"]

    response = await client.get("/api/v1/students", params={"search": "alina"}, headers=admin_headers)
    assert [s["student_number"] for s in response.json()["items"]] == ["STU000001"]

    response = await client.get("/api/v1/students", params={"student_type": "external"}, headers=admin_headers)
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_update_student(client: AsyncClient, admin_headers: dict, register_student) -> None:
    student = (await register_student("STU000001"))["student"]
    response = await client.patch(
        f"/api/v1/students/{student['id']}",
        json={"phone_number": "0888123456", "is_active": False},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["phone_number"] == "0888123456"
    assert response.json()["is_active"] is False


@pytest.mark.asyncio
async def test_student_reads_own_record_only(
    client: AsyncClient,
    headers_for,
    register_student,
) -> None:
    mine = (await register_student("STU000001"))["student"]
    other = (await register_student("STU000002"))["student"]
    headers = headers_for(_as_user(mine))

    me = await client.get("/api/v1/students/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["student_number"] == "STU000001"

    own = await client.get(f"/api/v1/fees/students/{mine['id']}", headers=headers)
    assert own.status_code == 200
    assert len(own.json()) == 1

    forbidden = await client.get(f"/api/v1/fees/students/{other['id']}", headers=headers)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_link_guardian_and_list_children(
    client: AsyncClient,
    admin_headers: dict,
    make_user,
    headers_for,
    register_student,
) -> None:
    student = (await register_student("STU000001"))["student"]
    guardian = await make_user("guardian", email="parent@school.mw", first_name="Esther", last_name="Phiri")
    second = await make_user("guardian", email="uncle@school.mw", first_name="James", last_name="Phiri")

    link = await client.post(
        f"/api/v1/students/{student['id']}/guardians",
        json={"guardian_email": "parent@school.mw", "relationship": "mother", "is_primary": True},
        headers=admin_headers,
    )
    assert link.status_code == 201
    assert link.json()["is_primary"] is True

    duplicate = await client.post(
        f"/api/v1/students/{student['id']}/guardians",
        json={"guardian_id": str(guardian.id)},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    new_primary = await client.post(
        f"/api/v1/students/{student['id']}/guardians",
        json={"guardian_id": str(second.id), "relationship": "uncle", "is_primary": True},
        headers=admin_headers,
    )
    assert new_primary.status_code == 201

    guardians = await client.get(f"/api/v1/students/{student['id']}/guardians", headers=admin_headers)
    primaries = [g["email"] for g in guardians.json() if g["is_primary"]]
    assert primaries == ["uncle@school.mw"]

    children = await client.get("/api/v1/students/my-children", headers=headers_for(guardian))
    assert children.status_code == 200
    assert [c["student_number"] for c in children.json()] == ["STU000001"]


@pytest.mark.asyncio
async def test_link_non_guardian_account_rejected(
    client: AsyncClient,
    admin_headers: dict,
    make_user,
    register_student,
) -> None:
    student = (await register_student("STU000001"))["student"]
    await make_user("teacher", email="teacher@school.mw")
    response = await client.post(
        f"/api/v1/students/{student['id']}/guardians",
        json={"guardian_email": "teacher@school.mw"},
        headers=admin_headers,
    )
    assert response.status_code == 400


BULK_CSV = (
    "first_name,last_name,email,gender,date_of_birth,student_id,student_type,class_name,guardian_email\n"
    "John,Phiri,john@school.mw,male,2008-05-15,STU2024001,internal,Form 1A,p1@school.mw\n"
    "Grace,Mwale,grace@school.mw,female,2009-08-22,STU2024002,external,form 1a,p2@school.mw\n"
    "Dup,Email,john@school.mw,male,2008-05-15,STU2024003,internal,Form 1A,p3@school.mw\n"
    "Lost,Class,lost@school.mw,male,2008-05-15,STU2024004,internal,Form 9Z,p4@school.mw\n"
    "Bad,Row,bad@school.mw,unknown,2008-05-15,STU2024005,internal,Form 1A,p5@school.mw\n"
)


@pytest.mark.asyncio
async def test_bulk_upload_preview(client: AsyncClient, admin_headers: dict, school) -> None:
    response = await client.post(
        "/api/v1/students/bulk-upload/preview",
        files={"file": ("students.csv", BULK_CSV.encode("utf-8"), "text/csv")},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_rows"] == 5
    assert data["valid_count"] == 4
    assert data["invalid_count"] == 1
    assert data["errors"][0]["row"] == 6
    assert data["errors"][0]["field"] == "gender"


@pytest.mark.asyncio
async def test_bulk_upload_registers_valid_rows(
    client: AsyncClient,
    db_session: AsyncSession,
    admin_headers: dict,
    school,
) -> None:
    response = await client.post(
        "/api/v1/students/bulk-upload",
        files={"file": ("students.csv", BULK_CSV.encode("utf-8"), "text/csv")},
        headers=admin_headers,
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["total_processed"] == 5
    assert data["success_count"] == 2
    assert data["skipped_count"] == 1
    assert data["failure_count"] == 2
    assert data["message"] == "Successfully registered 2 student(s). 2 failed. 1 skipped (duplicates)."
    assert [r["fee_status"] for r in data["registered"]] == ["assigned", "assigned"]
    assert {e["row"] for e in data["errors"]} == {4, 5, 6}

    fees = (await db_session.execute(select(StudentFee))).scalars().all()
    assert len(fees) == 2


@pytest.mark.asyncio
async def test_bulk_upload_rejects_bad_file(client: AsyncClient, admin_headers: dict) -> None:
    response = await client.post(
        "/api/v1/students/bulk-upload",
        files={"file": ("students.pdf", b"%PDF", "application/pdf")},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_bulk_upload_template(client: AsyncClient, admin_headers: dict) -> None:
    response = await client.get("/api/v1/students/bulk-upload/template", headers=admin_headers)
    assert response.status_code == 200
    assert response.text.splitlines()[0].startswith("first_name,middle_name,last_name,email")

    response = await client.get(
        "/api/v1/students/bulk-upload/template", params={"format": "xlsx"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.content[:2] == b"PK"
