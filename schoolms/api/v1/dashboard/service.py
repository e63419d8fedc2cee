"""Headcounts for the staff dashboard. Only active records are counted."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.models import Department, SchoolClass, Student, Subject, Teacher

from .schemas import DashboardStats, GenderBreakdown


async def _count(db: AsyncSession, model) -> int:
    result = await db.execute(select(func.count(model.id)).where(model.is_active.is_(True)))
    return result.scalar_one()


async def _gender_breakdown(db: AsyncSession, model) -> GenderBreakdown:
    result = await db.execute(
        select(model.gender, func.count(model.id)).where(model.is_active.is_(True)).group_by(model.gender)
    )
    return GenderBreakdown(**{gender: int(cnt) for gender, cnt in result.all()})


async def get_dashboard_stats(db: AsyncSession) -> DashboardStats:
    return DashboardStats(
        student_count=await _count(db, Student),
        teacher_count=await _count(db, Teacher),
        class_count=await _count(db, SchoolClass),
        subject_count=await _count(db, Subject),
        department_count=await _count(db, Department),
        student_gender=await _gender_breakdown(db, Student),
        teacher_gender=await _gender_breakdown(db, Teacher),
    )
