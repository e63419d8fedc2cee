from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, FINANCE_ROLES, ensure_student_access, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .pdf import render_invoice_pdf
from .schemas import (
    CancelInvoiceRequest,
    GenerateInvoicesRequest,
    GenerateInvoicesResult,
    InvoiceDetailResponse,
    InvoicePreview,
    InvoiceResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/invoices", tags=["invoices"])


@router.post(
    "/generate",
    response_model=GenerateInvoicesResult,
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoices(
    payload: GenerateInvoicesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> GenerateInvoicesResult:
    """Generate invoices for every student fee of the term without one. Active financial aid is applied."""
    try:
        return await service.generate_invoices(db, payload.academic_year_id, payload.term_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/generate/preview",
    response_model=InvoicePreview,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def preview_invoice_generation(
    academic_year_id: UUID = Query(...),
    term_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
) -> InvoicePreview:
    try:
        return await service.preview_invoice_generation(db, academic_year_id, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[InvoiceResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_invoices(
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Invoice number, student number or name"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> List[InvoiceResponse]:
    return await service.list_invoices(
        db,
        academic_year_id=academic_year_id,
        term_id=term_id,
        status_filter=status_filter,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/student/{student_id}", response_model=List[InvoiceResponse])
async def list_student_invoices(
    student_id: UUID,
    status_filter: Optional[str] = Query(None, alias="status"),
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[InvoiceResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_invoices(
        db, student_id, status_filter=status_filter, academic_year_id=academic_year_id, term_id=term_id
    )


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> InvoiceDetailResponse:
    try:
        invoice = await service.get_invoice_detail(db, invoice_id)
        await ensure_student_access(db, current_user, invoice.student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return invoice


@router.post("/{invoice_id}/cancel", response_model=InvoiceDetailResponse)
async def cancel_invoice(
    invoice_id: UUID,
    payload: CancelInvoiceRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> InvoiceDetailResponse:
    """Cancel an invoice with no payments recorded."""
    try:
        return await service.cancel_invoice(db, invoice_id, payload.reason, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    try:
        invoice = await service.get_invoice_detail(db, invoice_id)
        await ensure_student_access(db, current_user, invoice.student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(
        content=render_invoice_pdf(invoice),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{invoice.invoice_number}.pdf"'},
    )
