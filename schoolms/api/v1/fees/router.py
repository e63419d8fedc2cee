from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.academic_years.service import get_active_period
from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, FINANCE_ROLES, ensure_student_access, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    AssignStudentFeesRequest,
    AssignStudentFeesResult,
    BulkAssignFeesRequest,
    BulkAssignFeesResult,
    BulkAssignPreview,
    FeeAuditLogResponse,
    FeeStructureCreate,
    FeeStructureResponse,
    StudentFeeResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# ----- Fee Structure -----
@router.post(
    "/structures",
    response_model=FeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/structures",
    response_model=List[FeeStructureResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_fee_structures(
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> List[FeeStructureResponse]:
    return await service.list_fee_structures(
        db, academic_year_id=academic_year_id, term_id=term_id, active_only=active_only
    )


@router.get(
    "/structures/{fee_structure_id}",
    response_model=FeeStructureResponse,
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def get_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    try:
        return await service.get_fee_structure(db, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/structures/{fee_structure_id}/deactivate", response_model=FeeStructureResponse)
async def deactivate_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> FeeStructureResponse:
    try:
        return await service.deactivate_fee_structure(db, fee_structure_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Student Fees -----
@router.post("/assign", response_model=AssignStudentFeesResult)
async def assign_student_fees(
    payload: AssignStudentFeesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> AssignStudentFeesResult:
    """Assign fees to one student; defaults to the active academic year and term."""
    academic_year_id, term_id = payload.academic_year_id, payload.term_id
    if academic_year_id is None or term_id is None:
        ay, term = await get_active_period(db)
        if not ay or not term:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No active academic year and term")
        academic_year_id = academic_year_id or ay.id
        term_id = term_id or term.id
    try:
        return await service.assign_student_fees(db, payload.student_id, academic_year_id, term_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/bulk-assign", response_model=BulkAssignFeesResult)
async def bulk_assign_fees(
    payload: BulkAssignFeesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> BulkAssignFeesResult:
    try:
        return await service.bulk_assign_fees(db, payload.academic_year_id, payload.term_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/bulk-assign/preview",
    response_model=BulkAssignPreview,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def preview_bulk_assignment(
    academic_year_id: UUID = Query(...),
    term_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
) -> BulkAssignPreview:
    try:
        return await service.preview_bulk_assignment(db, academic_year_id, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/students/{student_id}", response_model=List[StudentFeeResponse])
async def list_student_fees(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentFeeResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_fees(db, student_id, academic_year_id=academic_year_id, term_id=term_id)


# ----- Audit -----
@router.get(
    "/audit-logs",
    response_model=List[FeeAuditLogResponse],
    dependencies=[Depends(require_roles(ADMIN))],
)
async def list_fee_audit_logs(
    reference_table: Optional[str] = Query(None),
    reference_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> List[FeeAuditLogResponse]:
    return await service.list_fee_audit_logs(
        db, reference_table=reference_table, reference_id=reference_id, limit=limit
    )
