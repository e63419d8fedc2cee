from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import AcademicYear, Term

from .schemas import (
    AcademicYearCreate,
    AcademicYearResponse,
    AcademicYearWithTerms,
    ActivePeriodResponse,
    TermCreate,
    TermResponse,
)

logger = get_logger("academic_years")


def _validate_dates(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date and end_date and end_date <= start_date:
        raise ServiceError("end_date must be after start_date", status.HTTP_400_BAD_REQUEST)


async def create_academic_year(db: AsyncSession, payload: AcademicYearCreate) -> AcademicYearResponse:
    """Create academic year. If is_active=true, deactivate all other years in the same transaction."""
    _validate_dates(payload.start_date, payload.end_date)
    name = payload.name.strip()
    existing = await db.execute(select(AcademicYear).where(AcademicYear.name == name))
    if existing.scalar_one_or_none():
        raise ServiceError(f"Academic year with name '{name}' already exists", status.HTTP_409_CONFLICT)

    if payload.is_active:
        await db.execute(update(AcademicYear).values(is_active=False))
    ay = AcademicYear(
        name=name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    db.add(ay)
    try:
        await db.commit()
        await db.refresh(ay)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Academic year name conflict", status.HTTP_409_CONFLICT)
    logger.info("Created academic year %s (active=%s)", ay.name, ay.is_active)
    return AcademicYearResponse.model_validate(ay)


async def list_academic_years(db: AsyncSession) -> List[AcademicYearResponse]:
    result = await db.execute(select(AcademicYear).order_by(AcademicYear.start_date.desc()))
    return [AcademicYearResponse.model_validate(ay) for ay in result.scalars().all()]


async def get_academic_year_model(db: AsyncSession, academic_year_id: UUID) -> AcademicYear:
    ay = await db.get(AcademicYear, academic_year_id)
    if not ay:
        raise NotFoundError("Academic year not found")
    return ay


async def get_academic_year(db: AsyncSession, academic_year_id: UUID) -> AcademicYearWithTerms:
    ay = await get_academic_year_model(db, academic_year_id)
    terms = await list_terms(db, academic_year_id)
    base = AcademicYearResponse.model_validate(ay)
    return AcademicYearWithTerms(**base.model_dump(), terms=terms)


async def set_active_academic_year(db: AsyncSession, academic_year_id: UUID) -> AcademicYearResponse:
    ay = await get_academic_year_model(db, academic_year_id)
    await db.execute(update(AcademicYear).where(AcademicYear.id != ay.id).values(is_active=False))
    ay.is_active = True
    await db.commit()
    await db.refresh(ay)
    logger.info("Academic year %s is now active", ay.name)
    return AcademicYearResponse.model_validate(ay)


# --- Terms ---
async def create_term(db: AsyncSession, academic_year_id: UUID, payload: TermCreate) -> TermResponse:
    await get_academic_year_model(db, academic_year_id)
    _validate_dates(payload.start_date, payload.end_date)
    name = payload.name.strip()
    existing = await db.execute(
        select(Term).where(Term.academic_year_id == academic_year_id, Term.name == name)
    )
    if existing.scalar_one_or_none():
        raise ServiceError(f"Term '{name}' already exists for this academic year", status.HTTP_409_CONFLICT)

    if payload.is_active:
        await db.execute(update(Term).values(is_active=False))
    term = Term(
        academic_year_id=academic_year_id,
        name=name,
        term_number=payload.term_number,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    db.add(term)
    try:
        await db.commit()
        await db.refresh(term)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Term name conflict", status.HTTP_409_CONFLICT)
    return TermResponse.model_validate(term)


async def list_terms(db: AsyncSession, academic_year_id: UUID) -> List[TermResponse]:
    result = await db.execute(
        select(Term)
        .where(Term.academic_year_id == academic_year_id)
        .order_by(Term.term_number.asc(), Term.name.asc())
    )
    return [TermResponse.model_validate(t) for t in result.scalars().all()]


async def get_term_model(db: AsyncSession, term_id: UUID) -> Term:
    term = await db.get(Term, term_id)
    if not term:
        raise NotFoundError("Term not found")
    return term


async def set_active_term(db: AsyncSession, term_id: UUID) -> TermResponse:
    """Exactly one active term across all years. Its academic year becomes active too."""
    term = await get_term_model(db, term_id)
    await db.execute(update(Term).where(Term.id != term.id).values(is_active=False))
    term.is_active = True
    await db.execute(
        update(AcademicYear).where(AcademicYear.id != term.academic_year_id).values(is_active=False)
    )
    await db.execute(
        update(AcademicYear).where(AcademicYear.id == term.academic_year_id).values(is_active=True)
    )
    await db.commit()
    await db.refresh(term)
    logger.info("Term %s is now active", term.name)
    return TermResponse.model_validate(term)


async def get_active_period(db: AsyncSession) -> Tuple[Optional[AcademicYear], Optional[Term]]:
    """Active academic year and the active term inside it (either may be None)."""
    ay_result = await db.execute(select(AcademicYear).where(AcademicYear.is_active.is_(True)))
    ay = ay_result.scalars().first()
    if not ay:
        return None, None
    term_result = await db.execute(
        select(Term).where(Term.academic_year_id == ay.id, Term.is_active.is_(True))
    )
    return ay, term_result.scalars().first()


async def get_active_period_response(db: AsyncSession) -> ActivePeriodResponse:
    ay, term = await get_active_period(db)
    return ActivePeriodResponse(
        academic_year=AcademicYearResponse.model_validate(ay) if ay else None,
        term=TermResponse.model_validate(term) if term else None,
    )
