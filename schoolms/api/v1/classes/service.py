from typing import List, Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.exceptions import ServiceError
from schoolms.core.models import SchoolClass, Student

from .schemas import ClassCreate, ClassResponse


def _to_response(c: SchoolClass, student_count: int = 0) -> ClassResponse:
    return ClassResponse(
        id=c.id,
        name=c.name,
        level=c.level,
        stream=c.stream,
        is_active=c.is_active,
        student_count=student_count,
        created_at=c.created_at,
    )


async def create_class(db: AsyncSession, payload: ClassCreate) -> ClassResponse:
    name = payload.name.strip()
    existing = await db.execute(select(SchoolClass).where(func.lower(SchoolClass.name) == name.lower()))
    if existing.scalar_one_or_none():
        raise ServiceError(f"Class '{name}' already exists", status.HTTP_409_CONFLICT)
    c = SchoolClass(name=name, level=payload.level, stream=payload.stream)
    db.add(c)
    try:
        await db.commit()
        await db.refresh(c)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"Class '{name}' already exists", status.HTTP_409_CONFLICT)
    return _to_response(c)


async def list_classes(db: AsyncSession, active_only: bool = True) -> List[ClassResponse]:
    """Classes with their number of active students."""
    count_subq = (
        select(Student.class_id, func.count(Student.id).label("cnt"))
        .where(Student.is_active.is_(True))
        .group_by(Student.class_id)
        .subquery()
    )
    stmt = (
        select(SchoolClass, func.coalesce(count_subq.c.cnt, 0))
        .outerjoin(count_subq, count_subq.c.class_id == SchoolClass.id)
        .order_by(SchoolClass.level.asc(), SchoolClass.name.asc())
    )
    if active_only:
        stmt = stmt.where(SchoolClass.is_active.is_(True))
    result = await db.execute(stmt)
    return [_to_response(c, int(cnt or 0)) for c, cnt in result.all()]


async def get_class_by_name(db: AsyncSession, name: str) -> Optional[SchoolClass]:
    """Case-insensitive lookup used by registration and bulk upload."""
    result = await db.execute(
        select(SchoolClass).where(func.lower(SchoolClass.name) == name.strip().lower())
    )
    return result.scalars().first()
