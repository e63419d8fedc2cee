from types import SimpleNamespace

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_dashboard_stats(
    client: AsyncClient,
    admin_headers: dict,
    make_user,
    headers_for,
    staffroom,
    register_student,
) -> None:
    student = (await register_student("STU000001"))["student"]
    await register_student("STU000002", gender="male")
    inactive = (await register_student("STU000003", gender="male"))["student"]
    await client.patch(f"/api/v1/students/{inactive['id']}", json={"is_active": False}, headers=admin_headers)

    registered = await client.post(
        "/api/v1/teachers",
        json={
            "first_name": "Ruth",
            "last_name": "Mwale",
            "email": "ruth@school.mw",
            "gender": "female",
            "employee_number": "EMP001",
            "department_id": staffroom.department_id,
            "subject_ids": [staffroom.subjects["Mathematics"]],
            "class_ids": [staffroom.class_id],
        },
        headers=admin_headers,
    )
    assert registered.status_code == 201, registered.text

    teacher = await make_user("teacher")
    response = await client.get("/api/v1/dashboard/stats", headers=headers_for(teacher))
    assert response.status_code == 200
    assert response.json() == {
        "student_count": 2,
        "teacher_count": 1,
        "class_count": 1,
        "subject_count": 2,
        "department_count": 1,
        "student_gender": {"male": 1, "female": 1},
        "teacher_gender": {"male": 0, "female": 1},
    }

    own = headers_for(SimpleNamespace(id=student["user_id"], role="student"))
    forbidden = await client.get("/api/v1/dashboard/stats", headers=own)
    assert forbidden.status_code == 403
