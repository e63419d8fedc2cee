import io
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook


async def _pay(client: AsyncClient, headers: dict, invoice_id: str, amount: str, method: str) -> None:
    resp = await client.post(
        "/api/v1/payments",
        json={"invoice_id": invoice_id, "amount": amount, "payment_method": method},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text


@pytest.fixture()
async def ledger(client: AsyncClient, admin_headers: dict, register_student, student_invoice) -> dict:
    """One fully paid internal student, one unpaid internal student and one unpaid external student."""
    paid = (await register_student("STU000001", last_name="Banda"))["student"]
    owing = (await register_student("STU000002", last_name="Mwale"))["student"]
    external = (await register_student("EXT000001", student_type="external", last_name="Phiri"))["student"]
    invoice = await student_invoice(paid["id"])
    await _pay(client, admin_headers, invoice["id"], "50000", "cash")
    await _pay(client, admin_headers, invoice["id"], "100000", "mobile_money")
    return {"paid": paid, "owing": owing, "external": external}


@pytest.mark.asyncio
async def test_financial_overview(client: AsyncClient, admin_headers: dict, ledger: dict) -> None:
    response = await client.get("/api/v1/reports/financial-overview", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert float(data["total_fees_assigned"]) == 400000
    assert float(data["total_collected"]) == 150000
    assert float(data["total_aid"]) == 0
    assert float(data["outstanding_balance"]) == 250000
    assert float(data["collection_rate"]) == 37.5
    assert data["total_students"] == 3
    assert data["total_invoices"] == 3
    assert data["total_payments"] == 2

    assert len(data["breakdown_by_term"]) == 1
    term = data["breakdown_by_term"][0]
    assert term["term"] == "Term 1"
    assert float(term["total_fees"]) == 400000
    assert float(term["collection_rate"]) == 37.5

    methods = [(m["method"], m["count"], float(m["total_amount"])) for m in data["payment_methods"]]
    assert methods == [("mobile_money", 1, 100000), ("cash", 1, 50000)]


@pytest.mark.asyncio
async def test_financial_overview_empty(client: AsyncClient, admin_headers: dict) -> None:
    response = await client.get("/api/v1/reports/financial-overview", headers=admin_headers)
    assert response.status_code == 200
    assert float(response.json()["collection_rate"]) == 0
    assert response.json()["breakdown_by_term"] == []


@pytest.mark.asyncio
async def test_outstanding_fees(
    client: AsyncClient,
    admin_headers: dict,
    make_user,
    ledger: dict,
) -> None:
    await make_user("guardian", email="mother@school.mw", phone_number="0888000111")
    link = await client.post(
        f"/api/v1/students/{ledger['owing']['id']}/guardians",
        json={"guardian_email": "mother@school.mw", "is_primary": True},
        headers=admin_headers,
    )
    assert link.status_code == 201

    response = await client.get("/api/v1/reports/outstanding-fees", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert float(data["total_outstanding"]) == 250000
    assert data["student_count"] == 2
    assert [s["student_number"] for s in data["students"]] == ["STU000002", "EXT000001"]
    first = data["students"][0]
    assert first["student_name"] == "Chikondi Mwale"
    assert first["guardian_phone"] == "0888000111"
    assert first["open_invoices"] == 1
    assert first["days_overdue"] == 0
    assert data["students"][1]["guardian_phone"] is None


@pytest.mark.asyncio
async def test_outstanding_fees_roles(client: AsyncClient, make_user, headers_for, ledger: dict) -> None:
    bursar = await make_user("staff")
    response = await client.get("/api/v1/reports/outstanding-fees", headers=headers_for(bursar))
    assert response.status_code == 200

    teacher = await make_user("teacher")
    response = await client.get("/api/v1/reports/outstanding-fees", headers=headers_for(teacher))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_outstanding_fees_export(client: AsyncClient, admin_headers: dict, ledger: dict) -> None:
    response = await client.get("/api/v1/reports/outstanding-fees/export", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-disposition"].startswith('attachment; filename="outstanding_fees_')

    ws = load_workbook(io.BytesIO(response.content)).active
    rows = [row for row in ws.iter_rows(values_only=True) if any(v not in (None, "") for v in row)]
    assert rows[0][0] == "Student ID"
    assert [r[0] for r in rows[1:3]] == ["STU000002", "EXT000001"]
    assert rows[-1][1] == "Total"
    assert rows[-1][6] == 250000


@pytest.mark.asyncio
async def test_students_export(
    client: AsyncClient,
    make_user,
    headers_for,
    ledger: dict,
) -> None:
    teacher = await make_user("teacher")
    response = await client.get(
        "/api/v1/reports/students/export", params={"student_type": "internal"}, headers=headers_for(teacher)
    )
    assert response.status_code == 200

    ws = load_workbook(io.BytesIO(response.content)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][:3] == ("Student ID", "First Name", "Last Name")
    assert sorted(r[0] for r in rows[1:]) == ["STU000001", "STU000002"]

    student = SimpleNamespace(id=ledger["paid"]["user_id"], role="student")
    forbidden = await client.get("/api/v1/reports/students/export", headers=headers_for(student))
    assert forbidden.status_code == 403
