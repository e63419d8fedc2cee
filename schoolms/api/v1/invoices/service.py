"""Invoices: generation per term (with financial aid), listing, detail, cancellation."""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import (
    ZERO,
    apply_to_invoice,
    apply_to_student_fee,
    fee_snapshot,
    invoice_snapshot,
    money,
    to_decimal,
)
from schoolms.api.v1.financial_aid.calculator import apply_aid_to_fee
from schoolms.auth.models import User
from schoolms.core.audit import log_fee_audit
from schoolms.core.config import settings
from schoolms.core.enums import FeeStatus, InvoiceStatus, StudentType
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import (
    AcademicYear,
    FeeStructure,
    FeeStructureItem,
    Invoice,
    InvoiceItem,
    Payment,
    SchoolClass,
    Student,
    StudentFee,
    Term,
)
from schoolms.core.numbering import INVOICE_PREFIX, NumberSequence

from .schemas import (
    GeneratedInvoiceRef,
    GenerateInvoicesResult,
    InvoiceDetailResponse,
    InvoiceItemResponse,
    InvoicePaymentSummary,
    InvoicePreview,
    InvoiceResponse,
)

logger = get_logger("invoices")


def format_money(amount) -> str:
    return f"{settings.currency_code} {to_decimal(amount):,.2f}"


async def create_invoice_for_fee(
    db: AsyncSession,
    fee: StudentFee,
    items: Sequence[FeeStructureItem],
    invoice_number: str,
    generated_by: Optional[UUID],
    notes: Optional[str] = None,
) -> Invoice:
    """Add an invoice mirroring the student fee (paid, aid) with items copied from the structure. Caller commits."""
    invoice = Invoice(
        invoice_number=invoice_number,
        student_fee_id=fee.id,
        student_id=fee.student_id,
        academic_year_id=fee.academic_year_id,
        term_id=fee.term_id,
        invoice_date=date.today(),
        due_date=fee.due_date,
        total_amount=fee.total_amount,
        amount_paid=to_decimal(fee.amount_paid),
        aid_amount=to_decimal(fee.discount_amount),
        status=InvoiceStatus.unpaid.value,
        notes=notes,
        generated_by=generated_by,
    )
    apply_to_invoice(invoice)
    db.add(invoice)
    await db.flush()

    for item in items:
        db.add(
            InvoiceItem(
                invoice_id=invoice.id,
                item_name=item.item_name,
                description=item.description,
                quantity=1,
                unit_price=item.amount,
                total_amount=item.amount,
            )
        )
    await log_fee_audit(db, "invoices", invoice.id, "CREATE", None, invoice_snapshot(invoice), generated_by)
    return invoice


async def _items_by_structure(db: AsyncSession, structure_ids) -> Dict[UUID, List[FeeStructureItem]]:
    grouped: Dict[UUID, List[FeeStructureItem]] = {}
    if not structure_ids:
        return grouped
    result = await db.execute(
        select(FeeStructureItem)
        .where(FeeStructureItem.fee_structure_id.in_(list(structure_ids)))
        .order_by(FeeStructureItem.display_order.asc())
    )
    for item in result.scalars().all():
        grouped.setdefault(item.fee_structure_id, []).append(item)
    return grouped


async def _uninvoiced_fees(db: AsyncSession, academic_year_id: UUID, term_id: UUID):
    """(all fees with structure student_type, fees without an invoice, number already invoiced)."""
    fees_result = await db.execute(
        select(StudentFee, FeeStructure.student_type)
        .join(FeeStructure, FeeStructure.id == StudentFee.fee_structure_id)
        .where(StudentFee.academic_year_id == academic_year_id, StudentFee.term_id == term_id)
        .order_by(StudentFee.created_at.asc())
    )
    all_fees = fees_result.all()
    invoiced_result = await db.execute(
        select(Invoice.student_fee_id).where(
            Invoice.academic_year_id == academic_year_id,
            Invoice.term_id == term_id,
        )
    )
    invoiced_ids = {row[0] for row in invoiced_result.all()}
    pending = [(fee, student_type) for fee, student_type in all_fees if fee.id not in invoiced_ids]
    return all_fees, pending, len(invoiced_ids)


async def generate_invoices(
    db: AsyncSession,
    academic_year_id: UUID,
    term_id: UUID,
    generated_by: Optional[UUID],
) -> GenerateInvoicesResult:
    """
    Invoice every student fee of the term that has none yet.
    Active financial aid is applied to each fee first; everything is committed in one transaction.
    """
    all_fees, pending, already = await _uninvoiced_fees(db, academic_year_id, term_id)
    if not all_fees:
        raise ServiceError(
            "No student fees found for this term. Please assign fees first.",
            status.HTTP_400_BAD_REQUEST,
        )
    if not pending:
        raise ServiceError(
            f"All {len(all_fees)} student fees already have invoices generated",
            status.HTTP_400_BAD_REQUEST,
        )

    items_map = await _items_by_structure(db, {fee.fee_structure_id for fee, _ in pending})
    seq = await NumberSequence.start(db, Invoice.invoice_number, INVOICE_PREFIX)

    refs: List[GeneratedInvoiceRef] = []
    total_amount = Decimal("0")
    total_aid = Decimal("0")
    try:
        for fee, _ in pending:
            aid_amount, _active = await apply_aid_to_fee(db, fee, None, generated_by)
            notes = f"Financial aid applied: {format_money(aid_amount)}" if aid_amount > ZERO else None
            invoice = await create_invoice_for_fee(
                db, fee, items_map.get(fee.fee_structure_id, []), seq.next(), generated_by, notes
            )
            refs.append(
                GeneratedInvoiceRef(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    student_fee_id=fee.id,
                )
            )
            total_amount += to_decimal(fee.total_amount)
            total_aid += aid_amount
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Invoices were generated concurrently for this term; please retry",
            status.HTTP_409_CONFLICT,
        )

    count = len(refs)
    logger.info(
        "Generated %d invoices for term %s (total %s, aid %s, skipped %d)",
        count, term_id, total_amount, total_aid, already,
    )
    message = f"Successfully generated {count} invoice{'s' if count != 1 else ''}"
    if already:
        message += f". Skipped {already} that already had invoices."
    return GenerateInvoicesResult(
        invoice_count=count,
        skipped_count=already,
        total_amount=money(total_amount),
        total_aid_amount=money(total_aid),
        invoices=refs,
        message=message,
    )


async def preview_invoice_generation(db: AsyncSession, academic_year_id: UUID, term_id: UUID) -> InvoicePreview:
    all_fees, pending, already = await _uninvoiced_fees(db, academic_year_id, term_id)
    if not all_fees:
        raise ServiceError("No student fees found for this term", status.HTTP_400_BAD_REQUEST)
    internal = sum(1 for _, t in pending if t == StudentType.INTERNAL.value)
    external = sum(1 for _, t in pending if t == StudentType.EXTERNAL.value)
    return InvoicePreview(
        total_invoices=len(pending),
        internal_count=internal,
        external_count=external,
        total_amount=money(sum((to_decimal(f.total_amount) for f, _ in pending), Decimal("0"))),
        already_generated=already,
    )


# --- Queries ---
def _invoice_select():
    return (
        select(
            Invoice,
            User.first_name,
            User.last_name,
            Student.student_number,
            SchoolClass.name,
            AcademicYear.name,
            Term.name,
        )
        .join(Student, Student.id == Invoice.student_id)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .join(AcademicYear, AcademicYear.id == Invoice.academic_year_id)
        .join(Term, Term.id == Invoice.term_id)
    )


def _row_to_response(row) -> InvoiceResponse:
    inv, first_name, last_name, student_number, class_name, year_name, term_name = row
    return InvoiceResponse(
        id=inv.id,
        invoice_number=inv.invoice_number,
        student_fee_id=inv.student_fee_id,
        student_id=inv.student_id,
        student_name=f"{first_name} {last_name}".strip(),
        student_number=student_number,
        class_name=class_name,
        academic_year_id=inv.academic_year_id,
        academic_year_name=year_name,
        term_id=inv.term_id,
        term_name=term_name,
        invoice_date=inv.invoice_date,
        due_date=inv.due_date,
        total_amount=inv.total_amount,
        amount_paid=inv.amount_paid,
        aid_amount=inv.aid_amount,
        balance=inv.balance,
        status=inv.status,
        notes=inv.notes,
        paid_at=inv.paid_at,
        cancelled_at=inv.cancelled_at,
        created_at=inv.created_at,
    )


async def list_student_invoices(
    db: AsyncSession,
    student_id: UUID,
    status_filter: Optional[str] = None,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
) -> List[InvoiceResponse]:
    stmt = _invoice_select().where(Invoice.student_id == student_id)
    if status_filter:
        stmt = stmt.where(Invoice.status == status_filter)
    if academic_year_id:
        stmt = stmt.where(Invoice.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(Invoice.term_id == term_id)
    result = await db.execute(stmt.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc()))
    return [_row_to_response(row) for row in result.all()]


async def list_invoices(
    db: AsyncSession,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[InvoiceResponse]:
    stmt = _invoice_select()
    if academic_year_id:
        stmt = stmt.where(Invoice.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(Invoice.term_id == term_id)
    if status_filter:
        stmt = stmt.where(Invoice.status == status_filter)
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Invoice.invoice_number).like(term),
                func.lower(Student.student_number).like(term),
                func.lower(User.first_name).like(term),
                func.lower(User.last_name).like(term),
            )
        )
    stmt = stmt.order_by(Invoice.invoice_number.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return [_row_to_response(row) for row in result.all()]


async def get_invoice_model(db: AsyncSession, invoice_id: UUID) -> Invoice:
    invoice = await db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


async def get_invoice_detail(db: AsyncSession, invoice_id: UUID) -> InvoiceDetailResponse:
    result = await db.execute(_invoice_select().where(Invoice.id == invoice_id))
    row = result.first()
    if not row:
        raise NotFoundError("Invoice not found")
    base = _row_to_response(row)

    items_result = await db.execute(
        select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.created_at.asc())
    )
    payments_result = await db.execute(
        select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.payment_date.asc())
    )
    return InvoiceDetailResponse(
        **base.model_dump(),
        items=[InvoiceItemResponse.model_validate(i) for i in items_result.scalars().all()],
        payments=[InvoicePaymentSummary.model_validate(p) for p in payments_result.scalars().all()],
    )


async def cancel_invoice(
    db: AsyncSession,
    invoice_id: UUID,
    reason: Optional[str],
    cancelled_by: Optional[UUID],
) -> InvoiceDetailResponse:
    invoice = await get_invoice_model(db, invoice_id)
    if invoice.status == InvoiceStatus.cancelled.value:
        raise ServiceError("Invoice is already cancelled", status.HTTP_400_BAD_REQUEST)
    if to_decimal(invoice.amount_paid) > ZERO:
        raise ServiceError(
            "Cannot cancel an invoice that has payments recorded against it",
            status.HTTP_400_BAD_REQUEST,
        )

    old = invoice_snapshot(invoice)
    invoice.status = InvoiceStatus.cancelled.value
    invoice.cancelled_at = datetime.utcnow()
    if reason:
        invoice.notes = f"{invoice.notes}\nCancelled: {reason}" if invoice.notes else f"Cancelled: {reason}"
    await log_fee_audit(db, "invoices", invoice.id, "CANCEL", old, invoice_snapshot(invoice), cancelled_by)

    # The fee behind a cancelled invoice is no longer owed
    fee = await db.get(StudentFee, invoice.student_fee_id)
    if fee is not None and fee.status != FeeStatus.waived.value:
        old_fee = fee_snapshot(fee)
        fee.status = FeeStatus.waived.value
        apply_to_student_fee(fee)
        await log_fee_audit(db, "student_fees", fee.id, "WAIVE", old_fee, fee_snapshot(fee), cancelled_by)
    await db.commit()
    logger.info("Invoice %s cancelled", invoice.invoice_number)
    return await get_invoice_detail(db, invoice_id)
