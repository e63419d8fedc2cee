from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, AID_MANAGER_ROLES, ensure_student_access, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    ApplyAidRequest,
    ApplyAidResult,
    AssignAidRequest,
    BulkAssignAidRequest,
    BulkAssignAidResult,
    FinancialAidTypeCreate,
    FinancialAidTypeResponse,
    FinancialAidTypeUpdate,
    RecalculateAidRequest,
    RecalculateAidResult,
    RevokeAidRequest,
    StudentAidResponse,
    UpdateAidStatusRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/financial-aid", tags=["financial-aid"])


# ----- Aid types -----
@router.post(
    "/types",
    response_model=FinancialAidTypeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def create_aid_type(
    payload: FinancialAidTypeCreate,
    db: AsyncSession = Depends(get_db),
) -> FinancialAidTypeResponse:
    try:
        return await service.create_aid_type(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/types",
    response_model=List[FinancialAidTypeResponse],
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def list_aid_types(
    sponsor_id: Optional[UUID] = Query(None),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[FinancialAidTypeResponse]:
    return await service.list_aid_types(db, sponsor_id=sponsor_id, is_active=is_active)


@router.get(
    "/types/{aid_type_id}",
    response_model=FinancialAidTypeResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def get_aid_type(aid_type_id: UUID, db: AsyncSession = Depends(get_db)) -> FinancialAidTypeResponse:
    try:
        return await service.get_aid_type(db, aid_type_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/types/{aid_type_id}",
    response_model=FinancialAidTypeResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def update_aid_type(
    aid_type_id: UUID,
    payload: FinancialAidTypeUpdate,
    db: AsyncSession = Depends(get_db),
) -> FinancialAidTypeResponse:
    try:
        return await service.update_aid_type(db, aid_type_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/types/{aid_type_id}/toggle",
    response_model=FinancialAidTypeResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def toggle_aid_type(
    aid_type_id: UUID,
    is_active: bool = Query(...),
    db: AsyncSession = Depends(get_db),
) -> FinancialAidTypeResponse:
    try:
        return await service.set_aid_type_active(db, aid_type_id, is_active)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Student aid -----
@router.post("/awards", response_model=StudentAidResponse, status_code=status.HTTP_201_CREATED)
async def assign_aid(
    payload: AssignAidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*AID_MANAGER_ROLES)),
) -> StudentAidResponse:
    try:
        return await service.assign_aid(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/awards/bulk", response_model=BulkAssignAidResult)
async def bulk_assign_aid(
    payload: BulkAssignAidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*AID_MANAGER_ROLES)),
) -> BulkAssignAidResult:
    try:
        return await service.bulk_assign_aid(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/awards",
    response_model=List[StudentAidResponse],
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def list_aid_awards(
    sponsor_id: Optional[UUID] = Query(None),
    aid_status: Optional[str] = Query(None, alias="status"),
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[StudentAidResponse]:
    return await service.list_aid_awards(
        db,
        sponsor_id=sponsor_id,
        aid_status=aid_status,
        academic_year_id=academic_year_id,
        term_id=term_id,
    )


@router.get("/students/{student_id}", response_model=List[StudentAidResponse])
async def list_student_aid(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentAidResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_aid(db, student_id, academic_year_id=academic_year_id, term_id=term_id)


@router.post("/awards/{aid_id}/status", response_model=StudentAidResponse)
async def update_aid_status(
    aid_id: UUID,
    payload: UpdateAidStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*AID_MANAGER_ROLES)),
) -> StudentAidResponse:
    try:
        return await service.update_aid_status(db, aid_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/awards/{aid_id}/revoke", response_model=StudentAidResponse)
async def revoke_aid(
    aid_id: UUID,
    payload: RevokeAidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*AID_MANAGER_ROLES)),
) -> StudentAidResponse:
    try:
        return await service.revoke_aid(db, aid_id, payload.reason, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Applying aid -----
@router.post("/apply", response_model=ApplyAidResult)
async def apply_aid(
    payload: ApplyAidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> ApplyAidResult:
    """Apply aid assigned after the student's invoice was generated."""
    try:
        return await service.apply_aid_for_student(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/recalculate", response_model=RecalculateAidResult)
async def recalculate_aid(
    payload: RecalculateAidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> RecalculateAidResult:
    return await service.recalculate_all_aid(db, payload.academic_year_id, payload.term_id, current_user.id)
