from decimal import Decimal

from schoolms.api.v1.fees.ledger import (
    apply_to_invoice,
    apply_to_student_fee,
    compute_balance,
    derive_status,
    money,
)
from schoolms.core.models import Invoice, StudentFee


def test_money_rounds_half_up_to_cents() -> None:
    assert money("10.005") == Decimal("10.01")
    assert money(None) == Decimal("0.00")
    assert money(7) == Decimal("7.00")


def test_balance_never_negative() -> None:
    assert compute_balance("1000", "400", "100") == Decimal("500.00")
    assert compute_balance("1000", "900", "300") == Decimal("0.00")


def test_derive_status() -> None:
    assert derive_status("1000", "1000") == "unpaid"
    assert derive_status("1000", "250") == "partial"
    assert derive_status("1000", "0") == "paid"


def test_apply_to_student_fee_counts_aid_as_discount() -> None:
    fee = StudentFee(
        total_amount=Decimal("150000"),
        amount_paid=Decimal("0"),
        discount_amount=Decimal("0"),
        balance=Decimal("150000"),
        status="unpaid",
    )
    apply_to_student_fee(fee, aid_amount=Decimal("75000"))
    assert fee.discount_amount == Decimal("75000.00")
    assert fee.balance == Decimal("75000.00")
    assert fee.status == "partial"

    apply_to_student_fee(fee, amount_paid=Decimal("75000"))
    assert fee.balance == Decimal("0.00")
    assert fee.status == "paid"


def test_waived_fee_owes_nothing() -> None:
    fee = StudentFee(
        total_amount=Decimal("100"),
        amount_paid=Decimal("0"),
        discount_amount=Decimal("0"),
        balance=Decimal("100"),
        status="waived",
    )
    apply_to_student_fee(fee, amount_paid=Decimal("10"))
    assert fee.status == "waived"
    assert fee.amount_paid == Decimal("10.00")
    assert fee.balance == Decimal("0.00")


def test_apply_to_invoice_sets_and_clears_paid_at() -> None:
    invoice = Invoice(
        total_amount=Decimal("100000"),
        amount_paid=Decimal("0"),
        aid_amount=Decimal("0"),
        balance=Decimal("100000"),
        status="unpaid",
    )
    apply_to_invoice(invoice, amount_paid=Decimal("100000"))
    assert invoice.status == "paid"
    assert invoice.paid_at is not None

    apply_to_invoice(invoice, amount_paid=Decimal("40000"))
    assert invoice.status == "partial"
    assert invoice.paid_at is None
    assert invoice.balance == Decimal("60000.00")


def test_cancelled_invoice_keeps_status() -> None:
    invoice = Invoice(
        total_amount=Decimal("100"),
        amount_paid=Decimal("0"),
        aid_amount=Decimal("0"),
        balance=Decimal("100"),
        status="cancelled",
    )
    apply_to_invoice(invoice, aid_amount=Decimal("100"))
    assert invoice.status == "cancelled"
    assert invoice.balance == Decimal("0.00")
