from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, require_roles
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    AcademicYearCreate,
    AcademicYearResponse,
    AcademicYearWithTerms,
    ActivePeriodResponse,
    TermCreate,
    TermResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/academic-years", tags=["academic-years"])


@router.post(
    "",
    response_model=AcademicYearResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_academic_year(
    payload: AcademicYearCreate,
    db: AsyncSession = Depends(get_db),
) -> AcademicYearResponse:
    try:
        return await service.create_academic_year(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[AcademicYearResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_academic_years(db: AsyncSession = Depends(get_db)) -> List[AcademicYearResponse]:
    return await service.list_academic_years(db)


@router.get(
    "/active",
    response_model=ActivePeriodResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_active_period(db: AsyncSession = Depends(get_db)) -> ActivePeriodResponse:
    """Active academic year and term. Default for fee, invoice and clearance operations."""
    return await service.get_active_period_response(db)


@router.get(
    "/{academic_year_id}",
    response_model=AcademicYearWithTerms,
    dependencies=[Depends(get_current_user)],
)
async def get_academic_year(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AcademicYearWithTerms:
    try:
        return await service.get_academic_year(db, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{academic_year_id}/activate",
    response_model=AcademicYearResponse,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def activate_academic_year(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AcademicYearResponse:
    try:
        return await service.set_active_academic_year(db, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{academic_year_id}/terms",
    response_model=TermResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_term(
    academic_year_id: UUID,
    payload: TermCreate,
    db: AsyncSession = Depends(get_db),
) -> TermResponse:
    try:
        return await service.create_term(db, academic_year_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{academic_year_id}/terms",
    response_model=List[TermResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_terms(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[TermResponse]:
    return await service.list_terms(db, academic_year_id)


@router.post(
    "/terms/{term_id}/activate",
    response_model=TermResponse,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def activate_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> TermResponse:
    try:
        return await service.set_active_term(db, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
