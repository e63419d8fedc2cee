from datetime import date, timedelta

import pytest
from httpx import AsyncClient


async def _create_sponsor(client: AsyncClient, headers: dict, name: str, sponsor_type: str = "ngo", **extra) -> dict:
    resp = await client.post(
        "/api/v1/sponsors", json={"name": name, "sponsor_type": sponsor_type, **extra}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _funded_student(client: AsyncClient, headers: dict, register_student, school, sponsor_id: str) -> dict:
    """Student with a 50% award from the sponsor, applied to the Term 1 invoice (75,000 of 150,000)."""
    student = (await register_student("STU000001"))["student"]
    aid_type = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor_id, "name": "Half bursary", "coverage_type": "percentage", "coverage_percentage": "50"},
        headers=headers,
    )
    assert aid_type.status_code == 201, aid_type.text
    award = await client.post(
        "/api/v1/financial-aid/awards",
        json={
            "student_id": student["id"],
            "aid_type_id": aid_type.json()["id"],
            "academic_year_id": school.academic_year_id,
            "term_id": school.term_id,
        },
        headers=headers,
    )
    assert award.status_code == 201, award.text
    applied = await client.post(
        "/api/v1/financial-aid/apply",
        json={"student_id": student["id"], "academic_year_id": school.academic_year_id, "term_id": school.term_id},
        headers=headers,
    )
    assert applied.status_code == 200, applied.text
    return {"student": student, "award_id": award.json()["id"], "student_fee_id": applied.json()["student_fee_id"]}


async def _record_payment(client: AsyncClient, headers: dict, sponsor_id: str, amount: str, **extra):
    payload = {
        "sponsor_id": sponsor_id,
        "amount": amount,
        "payment_date": date.today().isoformat(),
        "payment_method": "bank_transfer",
        "reference_number": "NBM-0001",
    }
    payload.update(extra)
    return await client.post("/api/v1/sponsors/payments", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_create_and_list_sponsors(client: AsyncClient, admin_headers: dict) -> None:
    created = await _create_sponsor(
        client, admin_headers, "Malawi Government", "government", contact_person="Ministry of Education"
    )
    assert created["is_active"] is True
    await _create_sponsor(client, admin_headers, "Airtel Foundation", "foundation", email="csr@airtel.mw")

    duplicate = await client.post(
        "/api/v1/sponsors", json={"name": "malawi government", "sponsor_type": "ngo"}, headers=admin_headers
    )
    assert duplicate.status_code == 409

    bad_type = await client.post(
        "/api/v1/sponsors", json={"name": "Nobody", "sponsor_type": "church"}, headers=admin_headers
    )
    assert bad_type.status_code == 422

    listed = await client.get("/api/v1/sponsors", headers=admin_headers)
    assert [s["name"] for s in listed.json()] == ["Airtel Foundation", "Malawi Government"]

    by_type = await client.get("/api/v1/sponsors", params={"sponsor_type": "government"}, headers=admin_headers)
    assert [s["name"] for s in by_type.json()] == ["Malawi Government"]

    search = await client.get("/api/v1/sponsors", params={"search": "ministry"}, headers=admin_headers)
    assert [s["id"] for s in search.json()] == [created["id"]]


@pytest.mark.asyncio
async def test_update_and_toggle_sponsor(client: AsyncClient, admin_headers: dict) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Rotary Club")
    await _create_sponsor(client, admin_headers, "Lions Club")

    updated = await client.patch(
        f"/api/v1/sponsors/{sponsor['id']}", json={"phone": "0999111222"}, headers=admin_headers
    )
    assert updated.status_code == 200
    assert updated.json()["phone"] == "0999111222"

    clash = await client.patch(f"/api/v1/sponsors/{sponsor['id']}", json={"name": "LIONS CLUB"}, headers=admin_headers)
    assert clash.status_code == 409

    toggled = await client.post(
        f"/api/v1/sponsors/{sponsor['id']}/toggle", params={"is_active": False}, headers=admin_headers
    )
    assert toggled.json()["is_active"] is False

    active = await client.get("/api/v1/sponsors", params={"is_active": True}, headers=admin_headers)
    assert [s["name"] for s in active.json()] == ["Lions Club"]


@pytest.mark.asyncio
async def test_sponsor_management_roles(client: AsyncClient, make_user, headers_for) -> None:
    teacher = await make_user("teacher")
    response = await client.get("/api/v1/sponsors", headers=headers_for(teacher))
    assert response.status_code == 403

    headteacher = await make_user("headteacher")
    created = await client.post(
        "/api/v1/sponsors", json={"name": "Rotary Club", "sponsor_type": "ngo"}, headers=headers_for(headteacher)
    )
    assert created.status_code == 201

    payment = await _record_payment(client, headers_for(headteacher), created.json()["id"], "1000")
    assert payment.status_code == 403


@pytest.mark.asyncio
async def test_payment_auto_allocation(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Malawi Education Trust")
    funded = await _funded_student(client, admin_headers, register_student, school, sponsor["id"])

    recorded = await _record_payment(
        client, admin_headers, sponsor["id"], "100000", academic_year_id=school.academic_year_id, auto_allocate=True
    )
    assert recorded.status_code == 201, recorded.text
    data = recorded.json()
    assert float(data["payment"]["allocated_amount"]) == 75000
    assert float(data["payment"]["unallocated_amount"]) == 25000
    assert data["payment"]["sponsor_name"] == "Malawi Education Trust"
    assert data["message"].endswith("Allocated to 1 student(s).")
    assert len(data["allocations"]) == 1
    allocation = data["allocations"][0]
    assert float(allocation["amount"]) == 75000
    assert allocation["student_aid_id"] == funded["award_id"]
    assert allocation["student_fee_id"] == funded["student_fee_id"]
    assert allocation["student_number"] == "STU000001"

    # The award's share is settled, so a second payment stays unallocated
    second = await _record_payment(client, admin_headers, sponsor["id"], "50000", auto_allocate=True)
    assert second.json()["allocations"] == []
    assert float(second.json()["payment"]["unallocated_amount"]) == 50000


@pytest.mark.asyncio
async def test_manual_allocation(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Malawi Education Trust")
    funded = await _funded_student(client, admin_headers, register_student, school, sponsor["id"])
    payment = (await _record_payment(client, admin_headers, sponsor["id"], "30000")).json()["payment"]
    assert float(payment["allocated_amount"]) == 0
    url = f"/api/v1/sponsors/payments/{payment['id']}/allocations"
    item = {
        "student_id": funded["student"]["id"],
        "student_fee_id": funded["student_fee_id"],
        "student_aid_id": funded["award_id"],
    }

    too_much = await client.post(url, json={"allocations": [{**item, "amount": "30000.01"}]}, headers=admin_headers)
    assert too_much.status_code == 400
    assert "exceeds unallocated amount" in too_much.json()["detail"]

    other = (await register_student("STU000002"))["student"]
    wrong_student = await client.post(
        url, json={"allocations": [{**item, "student_id": other["id"], "amount": "100"}]}, headers=admin_headers
    )
    assert wrong_student.status_code == 400

    allocated = await client.post(url, json={"allocations": [{**item, "amount": "20000"}]}, headers=admin_headers)
    assert allocated.status_code == 201, allocated.text
    assert [float(a["amount"]) for a in allocated.json()] == [20000]

    listed = await client.get(url, headers=admin_headers)
    assert [a["student_name"] for a in listed.json()] == ["Chikondi Phiri"]

    payments = await client.get("/api/v1/sponsors/payments", params={"sponsor_id": sponsor["id"]}, headers=admin_headers)
    assert float(payments.json()[0]["unallocated_amount"]) == 10000


@pytest.mark.asyncio
async def test_sponsor_stats_and_delete(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Malawi Education Trust")
    funded = await _funded_student(client, admin_headers, register_student, school, sponsor["id"])
    await _record_payment(
        client, admin_headers, sponsor["id"], "100000", academic_year_id=school.academic_year_id, auto_allocate=True
    )
    await _record_payment(client, admin_headers, sponsor["id"], "20000", payment_method="cheque")

    detail = await client.get(f"/api/v1/sponsors/{sponsor['id']}", headers=admin_headers)
    assert detail.status_code == 200
    stats = detail.json()["stats"]
    assert float(stats["total_paid"]) == 120000
    assert float(stats["total_allocated"]) == 75000
    assert float(stats["total_unallocated"]) == 45000
    assert stats["payment_count"] == 2
    assert stats["students_helped"] == 1
    assert stats["active_awards"] == 1

    refused = await client.delete(f"/api/v1/sponsors/{sponsor['id']}", headers=admin_headers)
    assert refused.status_code == 400

    await client.post(
        f"/api/v1/financial-aid/awards/{funded['award_id']}/revoke", json={"reason": "Programme ended"}, headers=admin_headers
    )
    deleted = await client.delete(f"/api/v1/sponsors/{sponsor['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False


@pytest.mark.asyncio
async def test_sponsor_payment_validation(client: AsyncClient, admin_headers: dict) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Rotary Club")

    mobile = await _record_payment(client, admin_headers, sponsor["id"], "1000", payment_method="mobile_money")
    assert mobile.status_code == 422

    negative = await _record_payment(client, admin_headers, sponsor["id"], "-5")
    assert negative.status_code == 422

    unknown = await _record_payment(client, admin_headers, "00000000-0000-0000-0000-000000000000", "1000")
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_whole_year_award_settles_each_term(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    sponsor = await _create_sponsor(client, admin_headers, "Malawi Education Trust")
    student = (await register_student("STU000001"))["student"]

    term = await client.post(
        f"/api/v1/academic-years/{school.academic_year_id}/terms",
        json={"name": "Term 2", "term_number": 2},
        headers=admin_headers,
    )
    term_two_id = term.json()["id"]
    structure = await client.post(
        "/api/v1/fees/structures",
        json={
            "academic_year_id": school.academic_year_id,
            "term_id": term_two_id,
            "student_type": "internal",
            "due_date": (date.today() + timedelta(days=120)).isoformat(),
            "items": [{"item_name": "Tuition", "amount": "150000"}],
        },
        headers=admin_headers,
    )
    assert structure.status_code == 201, structure.text
    assigned = await client.post(
        "/api/v1/fees/bulk-assign",
        json={"academic_year_id": school.academic_year_id, "term_id": term_two_id},
        headers=admin_headers,
    )
    assert assigned.status_code == 200, assigned.text

    aid_type = await client.post(
        "/api/v1/financial-aid/types",
        json={"sponsor_id": sponsor["id"], "name": "Half bursary", "coverage_type": "percentage", "coverage_percentage": "50"},
        headers=admin_headers,
    )
    award = await client.post(
        "/api/v1/financial-aid/awards",
        json={"student_id": student["id"], "aid_type_id": aid_type.json()["id"], "academic_year_id": school.academic_year_id},
        headers=admin_headers,
    )
    assert award.status_code == 201, award.text
    assert award.json()["term_id"] is None
    recalculated = await client.post(
        "/api/v1/financial-aid/recalculate", json={"academic_year_id": school.academic_year_id}, headers=admin_headers
    )
    assert float(recalculated.json()["total_aid_applied"]) == 150000

    fees = await client.get(f"/api/v1/fees/students/{student['id']}", headers=admin_headers)
    fee_ids = {f["term_id"]: f["id"] for f in fees.json()}

    # Without a term the payment covers Term 1 first, then Term 2
    first = await _record_payment(client, admin_headers, sponsor["id"], "100000", auto_allocate=True)
    assert first.status_code == 201, first.text
    spread = [(a["student_fee_id"], float(a["amount"])) for a in first.json()["allocations"]]
    assert spread == [(fee_ids[school.term_id], 75000), (fee_ids[term_two_id], 25000)]

    second = await _record_payment(
        client, admin_headers, sponsor["id"], "100000", term_id=term_two_id, auto_allocate=True
    )
    allocations = second.json()["allocations"]
    assert [(a["student_fee_id"], float(a["amount"])) for a in allocations] == [(fee_ids[term_two_id], 50000)]
    assert float(second.json()["payment"]["unallocated_amount"]) == 50000

    settled = await _record_payment(
        client, admin_headers, sponsor["id"], "10000", term_id=school.term_id, auto_allocate=True
    )
    assert settled.json()["allocations"] == []
