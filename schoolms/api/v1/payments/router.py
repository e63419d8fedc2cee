from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.invoices.pdf import render_receipt_pdf
from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, FINANCE_ROLES, ensure_student_access, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    PaymentMethodCreate,
    PaymentMethodResponse,
    PaymentResponse,
    ReceiptResponse,
    RecordPaymentRequest,
    RecordPaymentResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post(
    "",
    response_model=RecordPaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    payload: RecordPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> RecordPaymentResponse:
    """Record a payment against an invoice and issue a receipt."""
    try:
        return await service.record_payment(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/student/{student_id}", response_model=List[PaymentResponse])
async def list_student_payments(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_payments(db, student_id, academic_year_id=academic_year_id, term_id=term_id)


# ----- Receipts -----
@router.get(
    "/receipts",
    response_model=List[ReceiptResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_receipts(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: Optional[str] = Query(None, description="Receipt or payment number"),
    db: AsyncSession = Depends(get_db),
) -> List[ReceiptResponse]:
    return await service.list_receipts(db, start_date=start_date, end_date=end_date, search=search)


@router.get("/receipts/student/{student_id}", response_model=List[ReceiptResponse])
async def list_student_receipts(
    student_id: UUID,
    recent: bool = Query(False, description="Only the last 5 receipts"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ReceiptResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if recent:
        return await service.list_recent_receipts(db, student_id)
    return await service.list_receipts(db, student_id=student_id)


@router.get("/receipts/{receipt_id}", response_model=ReceiptResponse)
async def get_receipt(
    receipt_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ReceiptResponse:
    try:
        receipt = await service.get_receipt(db, receipt_id)
        await ensure_student_access(db, current_user, receipt.student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return receipt


@router.get("/receipts/{receipt_id}/pdf")
async def download_receipt_pdf(
    receipt_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    try:
        receipt = await service.get_receipt(db, receipt_id)
        await ensure_student_access(db, current_user, receipt.student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(
        content=render_receipt_pdf(receipt),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{receipt.receipt_number}.pdf"'},
    )


# ----- Payment methods -----
@router.get(
    "/methods",
    response_model=List[PaymentMethodResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_payment_methods(db: AsyncSession = Depends(get_db)) -> List[PaymentMethodResponse]:
    return await service.list_payment_methods(db)


@router.post(
    "/methods",
    response_model=PaymentMethodResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_payment_method(
    payload: PaymentMethodCreate,
    db: AsyncSession = Depends(get_db),
) -> PaymentMethodResponse:
    try:
        return await service.create_payment_method(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
