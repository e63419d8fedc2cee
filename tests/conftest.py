import os
from datetime import date, timedelta
from types import SimpleNamespace
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schoolms.auth.models import User
from schoolms.auth.security import create_access_token, hash_password
from schoolms.db.session import Base, get_db
from schoolms.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "Password123"


@pytest.fixture()
async def engine():
    """Fresh in-memory database per test. StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and asserting. Requests get their own session, like in production."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_header(user: User) -> dict:
    token = create_access_token(subject={"sub": str(user.id), "user_id": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_user(db_session: AsyncSession):
    """Factory for users with a known password (TEST_PASSWORD)."""

    async def _make_user(role: str, email: str = None, first_name: str = "Test", last_name: str = "User", **kwargs):
        kwargs.setdefault("is_active", True)
        user = User(
            email=email or f"{role}@school.mw",
            first_name=first_name,
            last_name=last_name,
            password_hash=hash_password(TEST_PASSWORD),
            role=role,
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture()
async def admin(make_user) -> User:
    return await make_user("admin", first_name="Grace", last_name="Banda")


@pytest.fixture()
def admin_headers(admin: User) -> dict:
    return auth_header(admin)


@pytest.fixture()
def headers_for():
    return auth_header


@pytest.fixture()
async def school(client: AsyncClient, admin_headers: dict) -> SimpleNamespace:
    """
    Active academic year and term, one class and fee structures for both student types:
    internal = Tuition 100,000 + Boarding 50,000; external = Tuition 100,000.
    """
    today = date.today()
    resp = await client.post(
        "/api/v1/academic-years",
        json={
            "name": f"{today.year}/{today.year + 1}",
            "start_date": (today - timedelta(days=60)).isoformat(),
            "end_date": (today + timedelta(days=300)).isoformat(),
            "is_active": True,
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    academic_year_id = resp.json()["id"]

    resp = await client.post(
        f"/api/v1/academic-years/{academic_year_id}/terms",
        json={"name": "Term 1", "term_number": 1, "is_active": True},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    term_id = resp.json()["id"]

    resp = await client.post(
        "/api/v1/classes", json={"name": "Form 1A", "level": 1, "stream": "A"}, headers=admin_headers
    )
    assert resp.status_code == 201, resp.text
    class_id = resp.json()["id"]

    due_date = (today + timedelta(days=30)).isoformat()
    structures = {}
    for student_type, items in (
        ("internal", [{"item_name": "Tuition", "amount": "100000"}, {"item_name": "Boarding", "amount": "50000"}]),
        ("external", [{"item_name": "Tuition", "amount": "100000"}]),
    ):
        resp = await client.post(
            "/api/v1/fees/structures",
            json={
                "academic_year_id": academic_year_id,
                "term_id": term_id,
                "student_type": student_type,
                "due_date": due_date,
                "items": items,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        structures[student_type] = resp.json()["id"]

    return SimpleNamespace(
        academic_year_id=academic_year_id,
        term_id=term_id,
        class_id=class_id,
        structures=structures,
    )


@pytest.fixture()
def register_student(client: AsyncClient, admin_headers: dict, school: SimpleNamespace):
    """Register a student through the API; fees for the active term are assigned automatically."""

    async def _register(student_number: str, student_type: str = "internal", **overrides) -> dict:
        payload = {
            "first_name": "Chikondi",
            "last_name": "Phiri",
            "email": f"{student_number.lower()}@school.mw",
            "student_number": student_number,
            "student_type": student_type,
            "class_id": school.class_id,
            "gender": "female",
        }
        payload.update(overrides)
        resp = await client.post("/api/v1/students", json=payload, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture()
def student_invoice(client: AsyncClient, admin_headers: dict):
    """The single invoice of a student."""

    async def _get(student_id: str) -> dict:
        resp = await client.get(f"/api/v1/invoices/student/{student_id}", headers=admin_headers)
        assert resp.status_code == 200, resp.text
        invoices = resp.json()
        assert len(invoices) == 1
        return invoices[0]

    return _get


@pytest.fixture()
async def staffroom(client: AsyncClient, admin_headers: dict, school: SimpleNamespace) -> SimpleNamespace:
    """Sciences department with two compulsory junior subjects: Mathematics and Physics."""
    resp = await client.post("/api/v1/departments", json={"code": "sci", "name": "Sciences"}, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    department_id = resp.json()["id"]

    subjects = {}
    for code, name in (("MAT", "Mathematics"), ("PHY", "Physics")):
        resp = await client.post(
            "/api/v1/subjects",
            json={"code": code, "name": name, "department_id": department_id},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        subjects[name] = resp.json()["id"]

    return SimpleNamespace(department_id=department_id, subjects=subjects, class_id=school.class_id)
