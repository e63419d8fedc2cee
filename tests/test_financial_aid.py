from datetime import date, timedelta
from types import SimpleNamespace
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.models import FeeAuditLog


async def _sponsor(client: AsyncClient, headers: dict, name: str = "Malawi Education Trust") -> str:
    resp = await client.post("/api/v1/sponsors", json={"name": name, "sponsor_type": "ngo"}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


async def _aid_type(client: AsyncClient, headers: dict, sponsor_id: str, **coverage) -> str:
    payload = {"sponsor_id": sponsor_id, "name": "Bursary", "coverage_type": "percentage", "coverage_percentage": "50"}
    payload.update(coverage)
    resp = await client.post("/api/v1/financial-aid/types", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


async def _assign(client: AsyncClient, headers: dict, student_id: str, aid_type_id: str, school, **extra):
    payload = {
        "student_id": student_id,
        "aid_type_id": aid_type_id,
        "academic_year_id": school.academic_year_id,
        "term_id": school.term_id,
    }
    payload.update(extra)
    return await client.post("/api/v1/financial-aid/awards", json=payload, headers=headers)


async def _apply(client: AsyncClient, headers: dict, student_id: str, school):
    return await client.post(
        "/api/v1/financial-aid/apply",
        json={"student_id": student_id, "academic_year_id": school.academic_year_id, "term_id": school.term_id},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_aid_type_validation(client: AsyncClient, admin_headers: dict) -> None:
    sponsor_id = await _sponsor(client, admin_headers)
    await _aid_type(client, admin_headers, sponsor_id)

    types = await client.get("/api/v1/financial-aid/types", headers=admin_headers)
    assert types.status_code == 200
    assert [(t["name"], t["sponsor_name"]) for t in types.json()] == [("Bursary", "Malawi Education Trust")]

    too_much = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor_id, "name": "X", "coverage_type": "percentage", "coverage_percentage": "150"},
        headers=admin_headers,
    )
    assert too_much.status_code == 422

    no_amount = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor_id, "name": "X", "coverage_type": "fixed_amount"},
        headers=admin_headers,
    )
    assert no_amount.status_code == 422

    no_items = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor_id, "name": "X", "coverage_type": "specific_items", "covered_items": []},
        headers=admin_headers,
    )
    assert no_items.status_code == 422


@pytest.mark.asyncio
async def test_aid_type_needs_active_sponsor(client: AsyncClient, admin_headers: dict) -> None:
    sponsor_id = await _sponsor(client, admin_headers)
    toggle = await client.post(
        f"/api/v1/sponsors/{sponsor_id}/toggle", params={"is_active": False}, headers=admin_headers
    )
    assert toggle.status_code == 200

    response = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor_id, "name": "Full", "coverage_type": "full"},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_only_aid_managers_handle_aid(client: AsyncClient, make_user, headers_for) -> None:
    staff = await make_user("staff")
    response = await client.get("/api/v1/financial-aid/types", headers=headers_for(staff))
    assert response.status_code == 403

    headteacher = await make_user("headteacher")
    response = await client.get("/api/v1/financial-aid/types", headers=headers_for(headteacher))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_assign_then_apply_aid(
    client: AsyncClient,
    db_session: AsyncSession,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    sponsor_id = await _sponsor(client, admin_headers)
    aid_type_id = await _aid_type(client, admin_headers, sponsor_id)

    assigned = await _assign(client, admin_headers, student["id"], aid_type_id, school, notes="Orphan support")
    assert assigned.status_code == 201, assigned.text
    award = assigned.json()
    assert award["status"] == "approved"
    assert award["coverage_type"] == "percentage"
    assert float(award["coverage_percentage"]) == 50
    assert award["sponsor_name"] == "Malawi Education Trust"
    assert award["approved_at"] is not None

    # Assigning alone leaves the invoice untouched
    assert float((await student_invoice(student["id"]))["balance"]) == 150000

    duplicate = await _assign(client, admin_headers, student["id"], aid_type_id, school)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Student already has active aid from this sponsor for this period"

    applied = await _apply(client, admin_headers, student["id"], school)
    assert applied.status_code == 200, applied.text
    assert float(applied.json()["aid_amount"]) == 75000
    assert float(applied.json()["new_balance"]) == 75000

    invoice = await student_invoice(student["id"])
    assert float(invoice["aid_amount"]) == 75000
    assert float(invoice["balance"]) == 75000
    assert invoice["status"] == "partial"
    assert "Financial aid applied" in invoice["notes"]

    fees = await client.get(f"/api/v1/fees/students/{student['id']}", headers=admin_headers)
    fee = fees.json()[0]
    assert float(fee["discount_amount"]) == 75000
    assert fee["discount_reason"] == "Financial Aid: Malawi Education Trust"

    awards = await client.get(f"/api/v1/financial-aid/students/{student['id']}", headers=admin_headers)
    assert [float(a["calculated_aid_amount"]) for a in awards.json()] == [75000]

    audit = (
        await db_session.execute(
            select(FeeAuditLog.action_type).where(
                FeeAuditLog.reference_table == "student_fees",
                FeeAuditLog.reference_id == UUID(fee["id"]),
            )
        )
    ).scalars().all()
    assert sorted(audit) == ["APPLY_AID", "CREATE"]


@pytest.mark.asyncio
async def test_apply_without_aid(client: AsyncClient, admin_headers: dict, register_student, school) -> None:
    student = (await register_student("STU000001"))["student"]
    response = await _apply(client, admin_headers, student["id"], school)
    assert response.status_code == 400
    assert response.json()["detail"] == "No active financial aid found for this student"


@pytest.mark.asyncio
async def test_specific_items_override(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    sponsor_id = await _sponsor(client, admin_headers)
    aid_type_id = await _aid_type(client, admin_headers, sponsor_id)

    assigned = await _assign(
        client, admin_headers, student["id"], aid_type_id, school,
        coverage_type="specific_items", covered_items=["boarding"],
    )
    assert assigned.status_code == 201, assigned.text
    assert assigned.json()["covered_items"] == ["boarding"]

    applied = await _apply(client, admin_headers, student["id"], school)
    assert float(applied.json()["aid_amount"]) == 50000
    assert float((await student_invoice(student["id"]))["balance"]) == 100000


@pytest.mark.asyncio
async def test_combined_awards_capped_at_fee_total(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    full_type = await _aid_type(
        client, admin_headers, await _sponsor(client, admin_headers, "Government Bursary"), coverage_type="full"
    )
    fixed_type = await _aid_type(
        client, admin_headers, await _sponsor(client, admin_headers, "Rotary Club"),
        coverage_type="fixed_amount", coverage_amount="50000",
    )
    assert (await _assign(client, admin_headers, student["id"], full_type, school)).status_code == 201
    assert (await _assign(client, admin_headers, student["id"], fixed_type, school)).status_code == 201

    applied = await _apply(client, admin_headers, student["id"], school)
    assert float(applied.json()["aid_amount"]) == 150000
    assert float(applied.json()["new_balance"]) == 0

    awards = await client.get(f"/api/v1/financial-aid/students/{student['id']}", headers=admin_headers)
    assert [float(a["calculated_aid_amount"]) for a in awards.json()] == [75000, 75000]
    assert float((await student_invoice(student["id"]))["balance"]) == 0


@pytest.mark.asyncio
async def test_expired_award_is_ignored(client: AsyncClient, admin_headers: dict, register_student, school) -> None:
    student = (await register_student("STU000001"))["student"]
    aid_type_id = await _aid_type(client, admin_headers, await _sponsor(client, admin_headers))
    yesterday = date.today() - timedelta(days=1)
    assigned = await _assign(
        client, admin_headers, student["id"], aid_type_id, school,
        valid_from=(yesterday - timedelta(days=30)).isoformat(), valid_until=yesterday.isoformat(),
    )
    assert assigned.status_code == 201

    response = await _apply(client, admin_headers, student["id"], school)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_revoke_restores_balance(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    aid_type_id = await _aid_type(client, admin_headers, await _sponsor(client, admin_headers))
    award_id = (await _assign(client, admin_headers, student["id"], aid_type_id, school)).json()["id"]
    await _apply(client, admin_headers, student["id"], school)

    refused = await client.post(
        f"/api/v1/financial-aid/types/{aid_type_id}/toggle", params={"is_active": False}, headers=admin_headers
    )
    assert refused.status_code == 400

    revoked = await client.post(
        f"/api/v1/financial-aid/awards/{award_id}/revoke", json={"reason": "Left the programme"}, headers=admin_headers
    )
    assert revoked.status_code == 200
    assert revoked.json()["status"] == "suspended"
    assert "Revoked: Left the programme" in revoked.json()["notes"]

    invoice = await student_invoice(student["id"])
    assert float(invoice["aid_amount"]) == 0
    assert float(invoice["balance"]) == 150000
    assert invoice["status"] == "unpaid"

    again = await client.post(
        f"/api/v1/financial-aid/awards/{award_id}/revoke", json={"reason": "Again"}, headers=admin_headers
    )
    assert again.status_code == 400

    allowed = await client.post(
        f"/api/v1/financial-aid/types/{aid_type_id}/toggle", params={"is_active": False}, headers=admin_headers
    )
    assert allowed.status_code == 200
    assert allowed.json()["is_active"] is False


@pytest.mark.asyncio
async def test_status_change_reapplies_aid(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    aid_type_id = await _aid_type(client, admin_headers, await _sponsor(client, admin_headers))
    award_id = (await _assign(client, admin_headers, student["id"], aid_type_id, school)).json()["id"]
    url = f"/api/v1/financial-aid/awards/{award_id}/status"

    no_reason = await client.post(url, json={"status": "rejected"}, headers=admin_headers)
    assert no_reason.status_code == 422

    back_to_pending = await client.post(url, json={"status": "pending"}, headers=admin_headers)
    assert back_to_pending.status_code == 422

    active = await client.post(url, json={"status": "active"}, headers=admin_headers)
    assert active.status_code == 200
    assert active.json()["status"] == "active"
    assert float(active.json()["calculated_aid_amount"]) == 75000
    assert float((await student_invoice(student["id"]))["aid_amount"]) == 75000

    completed = await client.post(url, json={"status": "completed"}, headers=admin_headers)
    assert completed.json()["status"] == "completed"
    assert float(completed.json()["calculated_aid_amount"]) == 0
    assert float((await student_invoice(student["id"]))["balance"]) == 150000

    listed = await client.get("/api/v1/financial-aid/awards", params={"status": "completed"}, headers=admin_headers)
    assert [a["id"] for a in listed.json()] == [award_id]


@pytest.mark.asyncio
async def test_bulk_assign_and_recalculate(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
    school,
) -> None:
    first = (await register_student("STU000001"))["student"]
    second = (await register_student("STU000002"))["student"]
    aid_type_id = await _aid_type(client, admin_headers, await _sponsor(client, admin_headers))
    payload = {
        "student_ids": [first["id"], second["id"], "00000000-0000-0000-0000-000000000000"],
        "aid_type_id": aid_type_id,
        "academic_year_id": school.academic_year_id,
        "term_id": school.term_id,
    }

    result = await client.post("/api/v1/financial-aid/awards/bulk", json=payload, headers=admin_headers)
    assert result.status_code == 200, result.text
    assert result.json()["assigned_count"] == 2
    assert result.json()["failed_count"] == 1
    assert result.json()["message"] == "Successfully assigned aid to 2 student(s). 1 failed."

    repeat = await client.post("/api/v1/financial-aid/awards/bulk", json=payload, headers=admin_headers)
    assert repeat.json()["assigned_count"] == 0

    recalculated = await client.post(
        "/api/v1/financial-aid/recalculate",
        json={"academic_year_id": school.academic_year_id},
        headers=admin_headers,
    )
    assert recalculated.status_code == 200
    assert recalculated.json()["students_updated"] == 2
    assert float(recalculated.json()["total_aid_applied"]) == 150000

    for student in (first, second):
        assert float((await student_invoice(student["id"]))["balance"]) == 75000

    unchanged = await client.post("/api/v1/financial-aid/recalculate", json={}, headers=admin_headers)
    assert unchanged.json()["students_updated"] == 0


@pytest.mark.asyncio
async def test_invoice_generation_applies_aid(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    student = (await register_student("STU000001"))["student"]
    term = await client.post(
        f"/api/v1/academic-years/{school.academic_year_id}/terms",
        json={"name": "Term 2", "term_number": 2},
        headers=admin_headers,
    )
    term_id = term.json()["id"]
    structure = await client.post(
        "/api/v1/fees/structures",
        json={
            "academic_year_id": school.academic_year_id,
            "term_id": term_id,
            "student_type": "internal",
            "due_date": (date.today() + timedelta(days=120)).isoformat(),
            "items": [{"item_name": "Tuition", "amount": "120000"}],
        },
        headers=admin_headers,
    )
    assert structure.status_code == 201, structure.text
    period = {"academic_year_id": school.academic_year_id, "term_id": term_id}
    assert (await client.post("/api/v1/fees/bulk-assign", json=period, headers=admin_headers)).status_code == 200

    aid_type_id = await _aid_type(client, admin_headers, await _sponsor(client, admin_headers))
    term_two = SimpleNamespace(academic_year_id=school.academic_year_id, term_id=term_id)
    assert (await _assign(client, admin_headers, student["id"], aid_type_id, term_two)).status_code == 201

    generated = await client.post("/api/v1/invoices/generate", json=period, headers=admin_headers)
    assert generated.status_code == 201, generated.text
    assert float(generated.json()["total_aid_amount"]) == 60000

    invoices = await client.get(f"/api/v1/invoices/student/{student['id']}", headers=admin_headers)
    term_two_invoice = next(i for i in invoices.json() if i["term_id"] == term_id)
    assert float(term_two_invoice["aid_amount"]) == 60000
    assert float(term_two_invoice["balance"]) == 60000
    assert term_two_invoice["notes"].startswith("Financial aid applied")


@pytest.mark.asyncio
async def test_student_sees_only_own_aid(client: AsyncClient, headers_for, register_student) -> None:
    mine = (await register_student("STU000001"))["student"]
    other = (await register_student("STU000002"))["student"]
    headers = headers_for(SimpleNamespace(id=mine["user_id"], role="student"))

    own = await client.get(f"/api/v1/financial-aid/students/{mine['id']}", headers=headers)
    assert own.status_code == 200
    assert own.json() == []

    forbidden = await client.get(f"/api/v1/financial-aid/students/{other['id']}", headers=headers)
    assert forbidden.status_code == 403
