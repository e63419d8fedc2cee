from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.models import User
from schoolms.auth.rbac import TEACHING_ROLES
from schoolms.core.exceptions import ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import Department, Subject, Teacher

from .schemas import DepartmentCreate, DepartmentResponse, DepartmentUpdate

logger = get_logger("departments")


async def _to_response(db: AsyncSession, dept: Department) -> DepartmentResponse:
    head_name = None
    if dept.head_of_department_id:
        head = await db.get(User, dept.head_of_department_id)
        head_name = head.full_name if head else None
    teachers = await db.execute(
        select(func.count(Teacher.id)).where(Teacher.department_id == dept.id, Teacher.is_active.is_(True))
    )
    subjects = await db.execute(
        select(func.count(Subject.id)).where(Subject.department_id == dept.id, Subject.is_active.is_(True))
    )
    return DepartmentResponse(
        id=dept.id,
        code=dept.code,
        name=dept.name,
        description=dept.description,
        budget=dept.budget,
        head_of_department_id=dept.head_of_department_id,
        head_of_department_name=head_name,
        teacher_count=teachers.scalar_one(),
        subject_count=subjects.scalar_one(),
        is_active=dept.is_active,
        created_at=dept.created_at,
        updated_at=dept.updated_at,
    )


async def _check_head(db: AsyncSession, user_id: Optional[UUID]) -> None:
    if user_id is None:
        return
    user = await db.get(User, user_id)
    if not user or user.role not in TEACHING_ROLES:
        raise ServiceError("Head of department must be a teacher", status.HTTP_400_BAD_REQUEST)


async def create_department(db: AsyncSession, payload: DepartmentCreate) -> DepartmentResponse:
    code = payload.code.strip().upper()
    name = payload.name.strip()
    existing = await db.execute(
        select(Department.id).where(or_(Department.code == code, func.lower(Department.name) == name.lower()))
    )
    if existing.first():
        raise ServiceError("Department code or name already exists", status.HTTP_409_CONFLICT)
    await _check_head(db, payload.head_of_department_id)
    dept = Department(
        code=code,
        name=name,
        description=payload.description.strip() if payload.description else None,
        budget=payload.budget,
        head_of_department_id=payload.head_of_department_id,
        is_active=True,
    )
    db.add(dept)
    try:
        await db.commit()
        await db.refresh(dept)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Department code or name already exists", status.HTTP_409_CONFLICT)
    logger.info("Created department %s", code)
    return await _to_response(db, dept)


async def list_departments(db: AsyncSession, active_only: bool = True) -> List[DepartmentResponse]:
    stmt = select(Department).order_by(Department.name)
    if active_only:
        stmt = stmt.where(Department.is_active.is_(True))
    result = await db.execute(stmt)
    return [await _to_response(db, d) for d in result.scalars().all()]


async def get_department(db: AsyncSession, department_id: UUID) -> Optional[DepartmentResponse]:
    dept = await db.get(Department, department_id)
    if not dept:
        return None
    return await _to_response(db, dept)


async def update_department(
    db: AsyncSession,
    department_id: UUID,
    payload: DepartmentUpdate,
) -> Optional[DepartmentResponse]:
    dept = await db.get(Department, department_id)
    if not dept:
        return None
    data = payload.model_dump(exclude_unset=True)
    if "head_of_department_id" in data:
        await _check_head(db, data["head_of_department_id"])
        dept.head_of_department_id = data["head_of_department_id"]
    if data.get("name") is not None:
        dept.name = data["name"].strip()
    if "description" in data:
        dept.description = (data["description"] or "").strip() or None
    if "budget" in data:
        dept.budget = data["budget"]
    if data.get("is_active") is not None:
        dept.is_active = data["is_active"]
    try:
        await db.commit()
        await db.refresh(dept)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Department name already exists", status.HTTP_409_CONFLICT)
    return await _to_response(db, dept)


async def delete_department(db: AsyncSession, department_id: UUID) -> bool:
    """Soft delete. Refused while active teachers still belong to the department."""
    dept = await db.get(Department, department_id)
    if not dept:
        return False
    used = await db.execute(
        select(Teacher.id).where(Teacher.department_id == department_id, Teacher.is_active.is_(True)).limit(1)
    )
    if used.scalar_one_or_none() is not None:
        raise ServiceError("Cannot delete department: it still has teachers", status.HTTP_400_BAD_REQUEST)
    dept.is_active = False
    await db.commit()
    logger.info("Deactivated department %s", dept.code)
    return True


async def get_department_by_name(db: AsyncSession, name: str) -> Optional[Department]:
    """Case-insensitive lookup by name or code, active departments only. Used by teacher registration."""
    key = name.strip().lower()
    result = await db.execute(
        select(Department).where(
            Department.is_active.is_(True),
            or_(func.lower(Department.name) == key, func.lower(Department.code) == key),
        )
    )
    return result.scalars().first()
