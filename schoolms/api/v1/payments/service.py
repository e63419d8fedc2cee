"""Student payments against invoices, receipts and payment method configuration."""

from datetime import date, datetime
from typing import List, Optional
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
from schoolms.auth.models import User
from schoolms.core.audit import log_fee_audit
from schoolms.core.enums import InvoiceStatus, PaymentStatus
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import (
    Invoice,
    Payment,
    PaymentMethodConfig,
    Receipt,
    Student,
    StudentFee,
)
from schoolms.core.numbering import PAYMENT_PREFIX, RECEIPT_PREFIX, next_number

from .schemas import (
    PaymentMethodCreate,
    PaymentMethodResponse,
    PaymentResponse,
    ReceiptResponse,
    RecordPaymentRequest,
    RecordPaymentResponse,
)

logger = get_logger("payments")

RECENT_RECEIPTS_LIMIT = 5


async def record_payment(
    db: AsyncSession,
    payload: RecordPaymentRequest,
    recorded_by: Optional[UUID],
) -> RecordPaymentResponse:
    """
    Record a verified payment: payment, invoice, student fee and receipt are written in one transaction.
    Amount must be positive and not exceed the invoice balance.
    """
    invoice = await db.get(Invoice, payload.invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if invoice.status == InvoiceStatus.cancelled.value:
        raise ServiceError("Cannot record payment against a cancelled invoice", status.HTTP_400_BAD_REQUEST)
    balance = to_decimal(invoice.balance)
    if invoice.status == InvoiceStatus.paid.value or balance <= ZERO:
        raise ServiceError("Invoice is already fully paid", status.HTTP_400_BAD_REQUEST)
    amount = money(payload.amount)
    if amount <= ZERO:
        raise ServiceError("Payment amount must be greater than zero", status.HTTP_400_BAD_REQUEST)
    if amount > balance:
        raise ServiceError(
            f"Payment amount ({amount}) exceeds outstanding balance ({balance})",
            status.HTTP_400_BAD_REQUEST,
        )

    fee = await db.get(StudentFee, invoice.student_fee_id)
    if not fee:
        raise NotFoundError("Student fee record not found for invoice")

    now = datetime.utcnow()
    payment_date = payload.payment_date or date.today()
    try:
        payment = Payment(
            payment_number=await next_number(db, Payment.payment_number, PAYMENT_PREFIX),
            invoice_id=invoice.id,
            student_fee_id=fee.id,
            student_id=invoice.student_id,
            academic_year_id=invoice.academic_year_id,
            term_id=invoice.term_id,
            amount=amount,
            payment_date=payment_date,
            payment_method=payload.payment_method.value,
            reference_number=payload.reference_number,
            notes=payload.notes,
            status=PaymentStatus.verified.value,
            recorded_by=recorded_by,
            verified_by=recorded_by,
            verified_at=now,
        )
        db.add(payment)
        await db.flush()

        old_invoice = invoice_snapshot(invoice)
        old_fee = fee_snapshot(fee)
        apply_to_invoice(invoice, amount_paid=to_decimal(invoice.amount_paid) + amount, now=now)
        apply_to_student_fee(fee, amount_paid=to_decimal(fee.amount_paid) + amount)

        receipt = Receipt(
            receipt_number=await next_number(db, Receipt.receipt_number, RECEIPT_PREFIX),
            payment_id=payment.id,
            invoice_id=invoice.id,
            student_id=invoice.student_id,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment.payment_method,
            generated_by=recorded_by,
            generated_at=now,
        )
        db.add(receipt)
        await db.flush()

        await log_fee_audit(
            db, "payments", payment.id, "CREATE", None,
            {"payment_number": payment.payment_number, "amount": str(amount), "method": payment.payment_method},
            recorded_by,
        )
        await log_fee_audit(db, "invoices", invoice.id, "PAYMENT", old_invoice, invoice_snapshot(invoice), recorded_by)
        await log_fee_audit(db, "student_fees", fee.id, "PAYMENT", old_fee, fee_snapshot(fee), recorded_by)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Payment could not be recorded due to a numbering conflict; please retry", status.HTTP_409_CONFLICT)

    logger.info(
        "Recorded payment %s of %s on invoice %s (balance %s)",
        payment.payment_number, amount, invoice.invoice_number, invoice.balance,
    )
    payment_resp = (await _payments_query(db, Payment.id == payment.id))[0]
    receipt_resp = await get_receipt(db, receipt.id)
    return RecordPaymentResponse(
        payment=payment_resp,
        receipt=receipt_resp,
        updated_balance=invoice.balance,
        invoice_status=invoice.status,
        message=f"Payment of {amount} recorded. Receipt {receipt.receipt_number} generated.",
    )


async def _payments_query(db: AsyncSession, *criteria) -> List[PaymentResponse]:
    stmt = (
        select(
            Payment,
            Invoice.invoice_number,
            Receipt.receipt_number,
            User.first_name,
            User.last_name,
            Student.student_number,
        )
        .join(Invoice, Invoice.id == Payment.invoice_id)
        .join(Student, Student.id == Payment.student_id)
        .join(User, User.id == Student.user_id)
        .outerjoin(Receipt, Receipt.payment_id == Payment.id)
        .where(*criteria)
        .order_by(Payment.payment_date.desc(), Payment.payment_number.desc())
    )
    result = await db.execute(stmt)
    return [
        PaymentResponse(
            id=p.id,
            payment_number=p.payment_number,
            invoice_id=p.invoice_id,
            invoice_number=invoice_number,
            student_fee_id=p.student_fee_id,
            student_id=p.student_id,
            student_name=f"{first_name} {last_name}".strip(),
            student_number=student_number,
            academic_year_id=p.academic_year_id,
            term_id=p.term_id,
            amount=p.amount,
            payment_date=p.payment_date,
            payment_method=p.payment_method,
            reference_number=p.reference_number,
            notes=p.notes,
            status=p.status,
            recorded_by=p.recorded_by,
            receipt_number=receipt_number,
            created_at=p.created_at,
        )
        for p, invoice_number, receipt_number, first_name, last_name, student_number in result.all()
    ]


async def list_student_payments(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
) -> List[PaymentResponse]:
    criteria = [Payment.student_id == student_id]
    if academic_year_id:
        criteria.append(Payment.academic_year_id == academic_year_id)
    if term_id:
        criteria.append(Payment.term_id == term_id)
    return await _payments_query(db, *criteria)


# --- Receipts ---
def _receipt_select():
    return (
        select(
            Receipt,
            Payment.payment_number,
            Payment.reference_number,
            Invoice.invoice_number,
            Invoice.balance,
            User.first_name,
            User.last_name,
            Student.student_number,
        )
        .join(Payment, Payment.id == Receipt.payment_id)
        .join(Invoice, Invoice.id == Receipt.invoice_id)
        .join(Student, Student.id == Receipt.student_id)
        .join(User, User.id == Student.user_id)
    )


def _receipt_row(row) -> ReceiptResponse:
    r, payment_number, reference_number, invoice_number, invoice_balance, first_name, last_name, student_number = row
    return ReceiptResponse(
        id=r.id,
        receipt_number=r.receipt_number,
        payment_id=r.payment_id,
        payment_number=payment_number,
        reference_number=reference_number,
        invoice_id=r.invoice_id,
        invoice_number=invoice_number,
        invoice_balance=invoice_balance,
        student_id=r.student_id,
        student_name=f"{first_name} {last_name}".strip(),
        student_number=student_number,
        amount=r.amount,
        payment_date=r.payment_date,
        payment_method=r.payment_method,
        generated_at=r.generated_at,
    )


async def get_receipt(db: AsyncSession, receipt_id: UUID) -> ReceiptResponse:
    result = await db.execute(_receipt_select().where(Receipt.id == receipt_id))
    row = result.first()
    if not row:
        raise NotFoundError("Receipt not found")
    return _receipt_row(row)


async def list_receipts(
    db: AsyncSession,
    student_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[ReceiptResponse]:
    """Receipts newest first. search matches the receipt number (case-insensitive)."""
    stmt = _receipt_select()
    if student_id:
        stmt = stmt.where(Receipt.student_id == student_id)
    if start_date:
        stmt = stmt.where(Receipt.payment_date >= start_date)
    if end_date:
        stmt = stmt.where(Receipt.payment_date <= end_date)
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(func.lower(Receipt.receipt_number).like(term), func.lower(Payment.payment_number).like(term))
        )
    stmt = stmt.order_by(Receipt.generated_at.desc(), Receipt.receipt_number.desc())
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [_receipt_row(row) for row in result.all()]


async def list_recent_receipts(db: AsyncSession, student_id: UUID) -> List[ReceiptResponse]:
    return await list_receipts(db, student_id=student_id, limit=RECENT_RECEIPTS_LIMIT)


# --- Payment methods ---
async def list_payment_methods(db: AsyncSession, active_only: bool = True) -> List[PaymentMethodResponse]:
    stmt = select(PaymentMethodConfig)
    if active_only:
        stmt = stmt.where(PaymentMethodConfig.is_active.is_(True))
    result = await db.execute(
        stmt.order_by(PaymentMethodConfig.display_order.asc(), PaymentMethodConfig.method_name.asc())
    )
    return [PaymentMethodResponse.model_validate(m) for m in result.scalars().all()]


async def create_payment_method(db: AsyncSession, payload: PaymentMethodCreate) -> PaymentMethodResponse:
    method = PaymentMethodConfig(
        method_name=payload.method_name.strip(),
        method_type=payload.method_type.value,
        account_number=payload.account_number,
        account_name=payload.account_name,
        instructions=payload.instructions,
        is_active=True,
        display_order=payload.display_order,
    )
    db.add(method)
    try:
        await db.commit()
        await db.refresh(method)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"Payment method '{payload.method_name}' already exists", status.HTTP_409_CONFLICT)
    return PaymentMethodResponse.model_validate(method)
