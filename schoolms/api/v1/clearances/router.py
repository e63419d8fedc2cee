from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import (
    ADMIN,
    CLEARANCE_APPROVER_ROLES,
    CLEARANCE_VIEWER_ROLES,
    GUARDIAN,
    STUDENT,
    TEACHER,
    ensure_student_access,
    require_roles,
)
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    BulkClearancePreview,
    BulkClearanceRequest,
    BulkClearanceResult,
    ClearanceDecisionRequest,
    ClearanceRequestCreate,
    ClearanceRequestResponse,
    ClearanceTypeCreate,
    ClearanceTypeResponse,
    EligibilityResponse,
    RequestClearanceResult,
    StudentClearanceStatus,
)
from . import service

router = APIRouter(prefix="/api/v1/clearances", tags=["clearances"])


# ----- Types -----
@router.post(
    "/types",
    response_model=ClearanceTypeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_clearance_type(
    payload: ClearanceTypeCreate,
    db: AsyncSession = Depends(get_db),
) -> ClearanceTypeResponse:
    try:
        return await service.create_clearance_type(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/types", response_model=List[ClearanceTypeResponse], dependencies=[Depends(get_current_user)])
async def list_clearance_types(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
) -> List[ClearanceTypeResponse]:
    return await service.list_clearance_types(db, active_only=active_only)


# ----- Eligibility and requests -----
@router.get("/eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    student_id: UUID = Query(...),
    clearance_type_id: UUID = Query(...),
    academic_year_id: UUID = Query(...),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> EligibilityResponse:
    try:
        await ensure_student_access(db, current_user, student_id)
        return await service.check_eligibility(db, student_id, clearance_type_id, academic_year_id, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/requests", response_model=RequestClearanceResult, status_code=status.HTTP_201_CREATED)
async def request_clearance(
    payload: ClearanceRequestCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN, TEACHER, STUDENT, GUARDIAN)),
) -> RequestClearanceResult:
    """Students request for themselves, guardians for linked children, admins and teachers for anyone."""
    try:
        await ensure_student_access(db, current_user, payload.student_id)
        return await service.request_clearance(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/requests/pending",
    response_model=List[ClearanceRequestResponse],
    dependencies=[Depends(require_roles(*CLEARANCE_VIEWER_ROLES))],
)
async def list_pending_clearances(
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    clearance_type_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[ClearanceRequestResponse]:
    return await service.list_pending_clearances(
        db,
        academic_year_id=academic_year_id,
        term_id=term_id,
        clearance_type_id=clearance_type_id,
        class_id=class_id,
    )


@router.post("/requests/{request_id}/decision", response_model=ClearanceRequestResponse)
async def decide_clearance(
    request_id: UUID,
    payload: ClearanceDecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*CLEARANCE_APPROVER_ROLES)),
) -> ClearanceRequestResponse:
    try:
        return await service.decide_clearance(db, request_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/students/{student_id}", response_model=StudentClearanceStatus)
async def get_student_clearance_status(
    student_id: UUID,
    academic_year_id: UUID = Query(...),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentClearanceStatus:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.get_student_clearance_status(db, student_id, academic_year_id, term_id)


# ----- Bulk -----
@router.post("/bulk", response_model=BulkClearanceResult)
async def bulk_approve_clearances(
    payload: BulkClearanceRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*CLEARANCE_APPROVER_ROLES)),
) -> BulkClearanceResult:
    try:
        return await service.bulk_approve_clearances(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/bulk/preview",
    response_model=BulkClearancePreview,
    dependencies=[Depends(require_roles(*CLEARANCE_APPROVER_ROLES))],
)
async def preview_bulk_clearance(
    payload: BulkClearanceRequest,
    db: AsyncSession = Depends(get_db),
) -> BulkClearancePreview:
    try:
        return await service.preview_bulk_clearance(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
