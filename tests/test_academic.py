import pytest
from httpx import AsyncClient


async def _year(client: AsyncClient, headers: dict, name: str, start: str, end: str, is_active: bool = False):
    return await client.post(
        "/api/v1/academic-years",
        json={"name": name, "start_date": start, "end_date": end, "is_active": is_active},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_academic_year_validation(client: AsyncClient, admin_headers: dict) -> None:
    backwards = await _year(client, admin_headers, "2030/2031", "2031-07-01", "2030-09-01")
    assert backwards.status_code == 400

    created = await _year(client, admin_headers, "2030/2031", "2030-09-01", "2031-07-01")
    assert created.status_code == 201
    assert created.json()["is_active"] is False

    duplicate = await _year(client, admin_headers, " 2030/2031 ", "2030-09-01", "2031-07-01")
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_single_active_year_and_term(client: AsyncClient, admin_headers: dict) -> None:
    first = (await _year(client, admin_headers, "2030/2031", "2030-09-01", "2031-07-01", True)).json()
    second = (await _year(client, admin_headers, "2031/2032", "2031-09-01", "2032-07-01", True)).json()

    years = await client.get("/api/v1/academic-years", headers=admin_headers)
    assert [(y["name"], y["is_active"]) for y in years.json()] == [("2031/2032", True), ("2030/2031", False)]

    term_url = f"/api/v1/academic-years/{first['id']}/terms"
    term_two = await client.post(term_url, json={"name": "Term 2", "term_number": 2}, headers=admin_headers)
    term_one = await client.post(term_url, json={"name": "Term 1", "term_number": 1}, headers=admin_headers)
    assert term_one.status_code == 201
    duplicate = await client.post(term_url, json={"name": "Term 1"}, headers=admin_headers)
    assert duplicate.status_code == 409

    terms = await client.get(term_url, headers=admin_headers)
    assert [t["name"] for t in terms.json()] == ["Term 1", "Term 2"]

    activated = await client.post(
        f"/api/v1/academic-years/terms/{term_two.json()['id']}/activate", headers=admin_headers
    )
    assert activated.status_code == 200
    assert activated.json()["is_active"] is True

    active = await client.get("/api/v1/academic-years/active", headers=admin_headers)
    assert active.json()["academic_year"]["id"] == first["id"]
    assert active.json()["term"]["name"] == "Term 2"

    reactivated = await client.post(f"/api/v1/academic-years/{second['id']}/activate", headers=admin_headers)
    assert reactivated.json()["is_active"] is True
    active = await client.get("/api/v1/academic-years/active", headers=admin_headers)
    assert active.json()["academic_year"]["id"] == second["id"]
    assert active.json()["term"] is None

    detail = await client.get(f"/api/v1/academic-years/{first['id']}", headers=admin_headers)
    assert len(detail.json()["terms"]) == 2


@pytest.mark.asyncio
async def test_classes_with_student_counts(client: AsyncClient, admin_headers: dict, register_student) -> None:
    await register_student("STU000001")
    await register_student("STU000002")

    created = await client.post("/api/v1/classes", json={"name": "Form 2B", "level": 2}, headers=admin_headers)
    assert created.status_code == 201
    duplicate = await client.post("/api/v1/classes", json={"name": "Form 2B"}, headers=admin_headers)
    assert duplicate.status_code == 409

    classes = await client.get("/api/v1/classes", headers=admin_headers)
    assert [(c["name"], c["student_count"]) for c in classes.json()] == [("Form 1A", 2), ("Form 2B", 0)]


@pytest.mark.asyncio
async def test_calendar_changes_need_admin(client: AsyncClient, make_user, headers_for) -> None:
    teacher = await make_user("teacher")
    response = await _year(client, headers_for(teacher), "2030/2031", "2030-09-01", "2031-07-01")
    assert response.status_code == 403
