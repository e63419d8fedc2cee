from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.rbac import ADMIN, AID_MANAGER_ROLES, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    AllocateSponsorPaymentRequest,
    RecordSponsorPaymentResult,
    SponsorCreate,
    SponsorDetailResponse,
    SponsorPaymentAllocationResponse,
    SponsorPaymentCreate,
    SponsorPaymentResponse,
    SponsorResponse,
    SponsorUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/sponsors", tags=["sponsors"])


@router.post("", response_model=SponsorResponse, status_code=status.HTTP_201_CREATED)
async def create_sponsor(
    payload: SponsorCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*AID_MANAGER_ROLES)),
) -> SponsorResponse:
    try:
        return await service.create_sponsor(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[SponsorResponse],
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def list_sponsors(
    sponsor_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
) -> List[SponsorResponse]:
    return await service.list_sponsors(db, sponsor_type=sponsor_type, is_active=is_active, search=search)


# ----- Sponsor payments -----
@router.post(
    "/payments",
    response_model=RecordSponsorPaymentResult,
    status_code=status.HTTP_201_CREATED,
)
async def record_sponsor_payment(
    payload: SponsorPaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> RecordSponsorPaymentResult:
    try:
        return await service.record_sponsor_payment(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/payments",
    response_model=List[SponsorPaymentResponse],
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def list_sponsor_payments(
    sponsor_id: Optional[UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[SponsorPaymentResponse]:
    return await service.list_sponsor_payments(db, sponsor_id=sponsor_id, from_date=from_date, to_date=to_date)


@router.post(
    "/payments/{sponsor_payment_id}/allocations",
    response_model=List[SponsorPaymentAllocationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def allocate_sponsor_payment(
    sponsor_payment_id: UUID,
    payload: AllocateSponsorPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> List[SponsorPaymentAllocationResponse]:
    try:
        return await service.allocate_sponsor_payment(db, sponsor_payment_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/payments/{sponsor_payment_id}/allocations",
    response_model=List[SponsorPaymentAllocationResponse],
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def list_payment_allocations(
    sponsor_payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[SponsorPaymentAllocationResponse]:
    try:
        return await service.list_payment_allocations(db, sponsor_payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Single sponsor -----
@router.get(
    "/{sponsor_id}",
    response_model=SponsorDetailResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def get_sponsor(
    sponsor_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SponsorDetailResponse:
    try:
        return await service.get_sponsor(db, sponsor_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{sponsor_id}",
    response_model=SponsorResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def update_sponsor(
    sponsor_id: UUID,
    payload: SponsorUpdate,
    db: AsyncSession = Depends(get_db),
) -> SponsorResponse:
    try:
        return await service.update_sponsor(db, sponsor_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{sponsor_id}/toggle",
    response_model=SponsorResponse,
    dependencies=[Depends(require_roles(*AID_MANAGER_ROLES))],
)
async def toggle_sponsor(
    sponsor_id: UUID,
    is_active: bool = Query(...),
    db: AsyncSession = Depends(get_db),
) -> SponsorResponse:
    try:
        return await service.set_sponsor_active(db, sponsor_id, is_active)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{sponsor_id}",
    response_model=SponsorResponse,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def delete_sponsor(
    sponsor_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SponsorResponse:
    """Deactivates the sponsor; refused while it has active aid awards."""
    try:
        return await service.delete_sponsor(db, sponsor_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
