"""
Balance rules shared by student fees and invoices.

balance = total_amount - amount_paid - aid, never below zero.
Status: balance <= 0 -> paid, balance < total -> partial, otherwise unpaid. Cancelled invoices keep their status; waived fees owe nothing.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from schoolms.core.enums import FeeStatus, InvoiceStatus
from schoolms.core.models import Invoice, StudentFee

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def money(val) -> Decimal:
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_balance(total, paid, aid) -> Decimal:
    balance = money(to_decimal(total) - to_decimal(paid) - to_decimal(aid))
    return balance if balance > ZERO else money(ZERO)


def derive_status(total, balance) -> str:
    """Status value shared by FeeStatus and InvoiceStatus."""
    total = to_decimal(total)
    balance = to_decimal(balance)
    if balance <= ZERO:
        return FeeStatus.paid.value
    if balance < total:
        return FeeStatus.partial.value
    return FeeStatus.unpaid.value


def apply_to_student_fee(fee: StudentFee, *, amount_paid=None, aid_amount=None) -> None:
    """Set paid and/or aid on a student fee and recompute balance and status."""
    if amount_paid is not None:
        fee.amount_paid = money(amount_paid)
    if aid_amount is not None:
        fee.discount_amount = money(aid_amount)
    if fee.status == FeeStatus.waived.value:
        fee.balance = money(ZERO)
        return
    fee.balance = compute_balance(fee.total_amount, fee.amount_paid, fee.discount_amount)
    fee.status = derive_status(fee.total_amount, fee.balance)


def apply_to_invoice(
    invoice: Invoice,
    *,
    amount_paid=None,
    aid_amount=None,
    now: Optional[datetime] = None,
) -> None:
    """Set paid and/or aid on an invoice and recompute balance, status and paid_at."""
    if amount_paid is not None:
        invoice.amount_paid = money(amount_paid)
    if aid_amount is not None:
        invoice.aid_amount = money(aid_amount)
    invoice.balance = compute_balance(invoice.total_amount, invoice.amount_paid, invoice.aid_amount)
    if invoice.status == InvoiceStatus.cancelled.value:
        return
    invoice.status = derive_status(invoice.total_amount, invoice.balance)
    if invoice.status == InvoiceStatus.paid.value:
        if invoice.paid_at is None:
            invoice.paid_at = now or datetime.utcnow()
    else:
        invoice.paid_at = None


def fee_snapshot(fee: StudentFee) -> dict:
    return {
        "total_amount": str(fee.total_amount),
        "amount_paid": str(fee.amount_paid),
        "discount_amount": str(fee.discount_amount),
        "balance": str(fee.balance),
        "status": fee.status,
    }


def invoice_snapshot(invoice: Invoice) -> dict:
    return {
        "invoice_number": invoice.invoice_number,
        "total_amount": str(invoice.total_amount),
        "amount_paid": str(invoice.amount_paid),
        "aid_amount": str(invoice.aid_amount),
        "balance": str(invoice.balance),
        "status": invoice.status,
    }
