import uuid
from types import SimpleNamespace

import pytest
from httpx import AsyncClient


async def _subject(client: AsyncClient, headers: dict, code: str, name: str, **extra) -> str:
    payload = {"code": code, "name": name}
    payload.update(extra)
    resp = await client.post("/api/v1/subjects", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_department_crud(client: AsyncClient, admin_headers: dict, admin, make_user, headers_for) -> None:
    created = await client.post(
        "/api/v1/departments",
        json={"code": "lang", "name": "Languages", "budget": "250000"},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    dept = created.json()
    assert dept["code"] == "LANG"
    assert float(dept["budget"]) == 250000
    assert dept["teacher_count"] == 0

    duplicate = await client.post("/api/v1/departments", json={"code": "LANG", "name": "Other"}, headers=admin_headers)
    assert duplicate.status_code == 409
    negative = await client.post(
        "/api/v1/departments", json={"code": "ART", "name": "Arts", "budget": "-1"}, headers=admin_headers
    )
    assert negative.status_code == 422

    url = f"/api/v1/departments/{dept['id']}"
    not_a_teacher = await client.patch(url, json={"head_of_department_id": str(admin.id)}, headers=admin_headers)
    assert not_a_teacher.status_code == 400
    assert not_a_teacher.json()["detail"] == "Head of department must be a teacher"

    teacher = await make_user("teacher", first_name="Kondwani", last_name="Zulu")
    updated = await client.patch(
        url, json={"head_of_department_id": str(teacher.id), "description": "English and Chichewa"}, headers=admin_headers
    )
    assert updated.status_code == 200
    assert updated.json()["head_of_department_name"] == "Kondwani Zulu"
    assert updated.json()["code"] == "LANG"

    forbidden = await client.post(
        "/api/v1/departments", json={"code": "HUM", "name": "Humanities"}, headers=headers_for(teacher)
    )
    assert forbidden.status_code == 403

    deleted = await client.delete(url, headers=admin_headers)
    assert deleted.status_code == 204
    active = await client.get("/api/v1/departments", headers=admin_headers)
    assert active.json() == []
    everything = await client.get("/api/v1/departments", params={"active_only": False}, headers=admin_headers)
    assert [d["is_active"] for d in everything.json()] == [False]

    missing = await client.get(f"/api/v1/departments/{uuid.uuid4()}", headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_subject_catalogue(client: AsyncClient, admin_headers: dict, staffroom) -> None:
    await _subject(client, admin_headers, "eng", "English", curriculum_level="senior")

    duplicate = await client.post("/api/v1/subjects", json={"code": "MAT", "name": "Maths"}, headers=admin_headers)
    assert duplicate.status_code == 409
    unknown_department = await client.post(
        "/api/v1/subjects",
        json={"code": "GEO", "name": "Geography", "department_id": str(uuid.uuid4())},
        headers=admin_headers,
    )
    assert unknown_department.status_code == 404
    bad_level = await client.post(
        "/api/v1/subjects", json={"code": "GEO", "name": "Geography", "curriculum_level": "primary"}, headers=admin_headers
    )
    assert bad_level.status_code == 422

    junior = await client.get("/api/v1/subjects", params={"curriculum_level": "junior"}, headers=admin_headers)
    assert [(s["code"], s["department_name"]) for s in junior.json()] == [("MAT", "Sciences"), ("PHY", "Sciences")]

    physics_url = f"/api/v1/subjects/{staffroom.subjects['Physics']}"
    updated = await client.patch(physics_url, json={"is_compulsory": False, "stream": " A "}, headers=admin_headers)
    assert updated.status_code == 200
    assert updated.json()["stream"] == "A"
    assert updated.json()["is_compulsory"] is False

    assert (await client.delete(physics_url, headers=admin_headers)).status_code == 204
    remaining = await client.get("/api/v1/subjects", headers=admin_headers)
    assert [s["code"] for s in remaining.json()] == ["MAT", "ENG"]

    department = await client.get(f"/api/v1/departments/{staffroom.department_id}", headers=admin_headers)
    assert department.json()["subject_count"] == 1


@pytest.mark.asyncio
async def test_registration_enrols_default_subjects(
    client: AsyncClient,
    admin_headers: dict,
    staffroom,
    register_student,
    school,
) -> None:
    await _subject(client, admin_headers, "BIO", "Biology", stream="A", is_compulsory=False)
    await _subject(client, admin_headers, "CHE", "Chemistry", stream="B")
    await _subject(client, admin_headers, "ENG", "English", curriculum_level="senior")
    await _subject(client, admin_headers, "AGR", "Agriculture", is_compulsory=False)

    registered = await register_student("STU000001")
    assert registered["subjects_enrolled"] == 3

    student_id = registered["student"]["id"]
    period = {"academic_year_id": school.academic_year_id, "term_id": school.term_id}
    subjects = await client.get(f"/api/v1/subjects/students/{student_id}", params=period, headers=admin_headers)
    assert subjects.status_code == 200
    assert [(s["name"], s["is_optional"]) for s in subjects.json()] == [
        ("Mathematics", False),
        ("Physics", False),
        ("Biology", True),
    ]

    sync = await client.post(f"/api/v1/subjects/students/{student_id}/sync", json=period, headers=admin_headers)
    assert sync.json() == {"enrolled": 0, "total": 3, "curriculum_level": "junior"}

    await _subject(client, admin_headers, "CHI", "Chichewa")
    sync = await client.post(f"/api/v1/subjects/students/{student_id}/sync", json=period, headers=admin_headers)
    assert sync.json()["enrolled"] == 1
    assert sync.json()["total"] == 4


@pytest.mark.asyncio
async def test_add_and_remove_optional_subject(
    client: AsyncClient,
    admin_headers: dict,
    make_user,
    headers_for,
    staffroom,
    register_student,
    school,
) -> None:
    agriculture = await _subject(client, admin_headers, "AGR", "Agriculture", is_compulsory=False)
    student = (await register_student("STU000001"))["student"]
    period = {"academic_year_id": school.academic_year_id, "term_id": school.term_id}
    url = f"/api/v1/subjects/students/{student['id']}"

    added = await client.post(url, json={"subject_id": agriculture, **period}, headers=admin_headers)
    assert added.status_code == 201, added.text
    assert added.json()["is_optional"] is True
    again = await client.post(url, json={"subject_id": agriculture, **period}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["detail"] == "Student is already enrolled in this subject."

    teacher = await make_user("teacher")
    not_allowed = await client.delete(f"{url}/{agriculture}", params=period, headers=headers_for(teacher))
    assert not_allowed.status_code == 403

    history = await client.get(f"{url}/history", headers=admin_headers)
    assert sorted(h["code"] for h in history.json()) == ["AGR", "MAT", "PHY"]
    assert {h["term"] for h in history.json()} == {"Term 1"}

    removed = await client.delete(f"{url}/{agriculture}", params=period, headers=admin_headers)
    assert removed.status_code == 204
    gone = await client.delete(f"{url}/{agriculture}", params=period, headers=admin_headers)
    assert gone.status_code == 404

    wrong_term = await client.post(
        url,
        json={"subject_id": agriculture, "academic_year_id": school.academic_year_id, "term_id": str(uuid.uuid4())},
        headers=admin_headers,
    )
    assert wrong_term.status_code == 404


@pytest.mark.asyncio
async def test_students_see_only_their_own_subjects(
    client: AsyncClient,
    headers_for,
    staffroom,
    register_student,
    school,
) -> None:
    mine = (await register_student("STU000001"))["student"]
    other = (await register_student("STU000002"))["student"]
    headers = headers_for(SimpleNamespace(id=mine["user_id"], role="student"))
    period = {"academic_year_id": school.academic_year_id, "term_id": school.term_id}

    own = await client.get(f"/api/v1/subjects/students/{mine['id']}", params=period, headers=headers)
    assert [s["code"] for s in own.json()] == ["MAT", "PHY"]
    forbidden = await client.get(f"/api/v1/subjects/students/{other['id']}", params=period, headers=headers)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_sync_needs_a_class(client: AsyncClient, admin_headers: dict, staffroom, register_student, school) -> None:
    registered = await register_student("STU000001", class_id=None)
    assert registered["subjects_enrolled"] == 0

    sync = await client.post(
        f"/api/v1/subjects/students/{registered['student']['id']}/sync",
        json={"academic_year_id": school.academic_year_id, "term_id": school.term_id},
        headers=admin_headers,
    )
    assert sync.status_code == 400
    assert sync.json()["detail"] == "Student has no class assigned"
