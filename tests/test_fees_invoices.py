from datetime import date, timedelta
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.models import FeeAuditLog, Invoice, InvoiceItem


async def _second_term(client: AsyncClient, headers: dict, school) -> str:
    """Inactive Term 2 with an internal structure only, so registration does not touch it."""
    resp = await client.post(
        f"/api/v1/academic-years/{school.academic_year_id}/terms",
        json={"name": "Term 2", "term_number": 2},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    term_id = resp.json()["id"]
    resp = await client.post(
        "/api/v1/fees/structures",
        json={
            "academic_year_id": school.academic_year_id,
            "term_id": term_id,
            "student_type": "internal",
            "due_date": (date.today() + timedelta(days=120)).isoformat(),
            "items": [{"item_name": "Tuition", "amount": "120000"}],
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return term_id


@pytest.mark.asyncio
async def test_fee_structure_total_and_name(client: AsyncClient, admin_headers: dict, school) -> None:
    response = await client.get(f"/api/v1/fees/structures/{school.structures['internal']}", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert float(data["total_amount"]) == 150000
    assert data["name"].startswith("Internal Students - Term 1")
    assert [i["item_name"] for i in data["items"]] == ["Tuition", "Boarding"]
    assert [i["display_order"] for i in data["items"]] == [1, 2]


@pytest.mark.asyncio
async def test_duplicate_fee_structure_conflicts(client: AsyncClient, admin_headers: dict, school) -> None:
    response = await client.post(
        "/api/v1/fees/structures",
        json={
            "academic_year_id": school.academic_year_id,
            "term_id": school.term_id,
            "student_type": "internal",
            "due_date": date.today().isoformat(),
            "items": [{"item_name": "Tuition", "amount": "1"}],
        },
        headers=admin_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_fee_structure_needs_items(client: AsyncClient, admin_headers: dict, school) -> None:
    response = await client.post(
        "/api/v1/fees/structures",
        json={
            "academic_year_id": school.academic_year_id,
            "term_id": school.term_id,
            "student_type": "external",
            "due_date": date.today().isoformat(),
            "items": [],
        },
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_assign_is_idempotent(client: AsyncClient, admin_headers: dict, register_student) -> None:
    student = (await register_student("STU000001"))["student"]
    response = await client.post("/api/v1/fees/assign", json={"student_id": student["id"]}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "existing"
    assert response.json()["fee_assigned"] is False


@pytest.mark.asyncio
async def test_invoice_items_copied_from_structure(
    db_session: AsyncSession,
    register_student,
    student_invoice,
) -> None:
    student = (await register_student("STU000001"))["student"]
    invoice = await student_invoice(student["id"])
    assert float(invoice["balance"]) == 150000
    assert invoice["class_name"] == "Form 1A"

    items = (
        await db_session.execute(select(InvoiceItem).where(InvoiceItem.invoice_id == UUID(invoice["id"])))
    ).scalars().all()
    assert sorted(i.item_name for i in items) == ["Boarding", "Tuition"]

    audit = (
        await db_session.execute(select(FeeAuditLog).where(FeeAuditLog.reference_table == "invoices"))
    ).scalars().all()
    assert [a.action_type for a in audit] == ["CREATE"]


@pytest.mark.asyncio
async def test_bulk_assign_then_generate_invoices(
    client: AsyncClient,
    db_session: AsyncSession,
    admin_headers: dict,
    register_student,
    school,
) -> None:
    await register_student("STU000001")
    await register_student("STU000002")
    await register_student("EXT000001", student_type="external")
    term_id = await _second_term(client, admin_headers, school)
    period = {"academic_year_id": school.academic_year_id, "term_id": term_id}

    preview = await client.get("/api/v1/fees/bulk-assign/preview", params=period, headers=admin_headers)
    assert preview.status_code == 200
    assert preview.json()["internal"]["count"] == 2
    assert preview.json()["external"]["structure_name"] == "Not created"
    assert float(preview.json()["total_expected_revenue"]) == 240000

    result = await client.post("/api/v1/fees/bulk-assign", json=period, headers=admin_headers)
    assert result.status_code == 200, result.text
    data = result.json()
    assert data["internal_count"] == 2
    assert data["external_count"] == 0
    assert float(data["total_amount"]) == 240000

    again = await client.post("/api/v1/fees/bulk-assign", json=period, headers=admin_headers)
    assert again.status_code == 400

    invoice_preview = await client.get("/api/v1/invoices/generate/preview", params=period, headers=admin_headers)
    assert invoice_preview.json()["total_invoices"] == 2

    generated = await client.post("/api/v1/invoices/generate", json=period, headers=admin_headers)
    assert generated.status_code == 201, generated.text
    generated_data = generated.json()
    assert generated_data["invoice_count"] == 2
    year = date.today().year
    # Three invoices already exist from registration in Term 1
    assert sorted(i["invoice_number"] for i in generated_data["invoices"]) == [
        f"INV-{year}-00004",
        f"INV-{year}-00005",
    ]

    second_run = await client.post("/api/v1/invoices/generate", json=period, headers=admin_headers)
    assert second_run.status_code == 400

    count = (await db_session.execute(select(Invoice).where(Invoice.term_id == UUID(term_id)))).scalars().all()
    assert len(count) == 2


@pytest.mark.asyncio
async def test_generate_without_fees(client: AsyncClient, admin_headers: dict, school) -> None:
    response = await client.post(
        "/api/v1/invoices/generate",
        json={"academic_year_id": school.academic_year_id, "term_id": school.term_id},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert "assign fees first" in response.json()["detail"]


@pytest.mark.asyncio
async def test_cancel_unpaid_invoice(
    client: AsyncClient,
    admin_headers: dict,
    db_session: AsyncSession,
    register_student,
    student_invoice,
) -> None:
    student = (await register_student("STU000001"))["student"]
    invoice = await student_invoice(student["id"])

    response = await client.post(
        f"/api/v1/invoices/{invoice['id']}/cancel", json={"reason": "Student withdrew"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert "Cancelled: Student withdrew" in response.json()["notes"]

    fees = await client.get(f"/api/v1/fees/students/{student['id']}", headers=admin_headers)
    assert [(f["status"], float(f["balance"])) for f in fees.json()] == [("waived", 0)]

    overview = await client.get("/api/v1/reports/financial-overview", headers=admin_headers)
    assert float(overview.json()["outstanding_balance"]) == 0
    assert float(overview.json()["total_fees_assigned"]) == 0

    recalculated = await client.post("/api/v1/financial-aid/recalculate", json={}, headers=admin_headers)
    assert recalculated.json()["students_updated"] == 0

    audit = await db_session.execute(
        select(FeeAuditLog.action_type).where(FeeAuditLog.reference_id == UUID(fees.json()[0]["id"]))
    )
    assert "WAIVE" in audit.scalars().all()

    twice = await client.post(f"/api/v1/invoices/{invoice['id']}/cancel", json={}, headers=admin_headers)
    assert twice.status_code == 400


@pytest.mark.asyncio
async def test_list_invoices_with_search(client: AsyncClient, admin_headers: dict, register_student) -> None:
    await register_student("STU000001", last_name="Mwale")
    await register_student("STU000002", last_name="Banda")

    response = await client.get("/api/v1/invoices", params={"search": "mwale"}, headers=admin_headers)
    assert response.status_code == 200
    assert [i["student_number"] for i in response.json()] == ["STU000001"]

    response = await client.get("/api/v1/invoices", params={"status": "unpaid"}, headers=admin_headers)
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_invoice_detail_and_pdf(
    client: AsyncClient,
    admin_headers: dict,
    register_student,
    student_invoice,
) -> None:
    student = (await register_student("STU000001"))["student"]
    invoice = await student_invoice(student["id"])

    detail = await client.get(f"/api/v1/invoices/{invoice['id']}", headers=admin_headers)
    assert detail.status_code == 200
    assert len(detail.json()["items"]) == 2
    assert detail.json()["payments"] == []

    pdf = await client.get(f"/api/v1/invoices/{invoice['id']}/pdf", headers=admin_headers)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_fee_audit_log_endpoint(client: AsyncClient, admin_headers: dict, register_student) -> None:
    await register_student("STU000001")
    response = await client.get(
        "/api/v1/fees/audit-logs", params={"reference_table": "student_fees"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert [log["action_type"] for log in response.json()] == ["CREATE"]
