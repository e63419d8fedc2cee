"""
Clearance eligibility.

payment percentage = (paid + aid) / total * 100, or 100 when the student has no fees for the period.
Required percentage is 100 for types that need full payment, otherwise the type minimum
(or the threshold given for a bulk run). Full-payment types also need nothing outstanding.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import ZERO, money, to_decimal
from schoolms.core.enums import FeeStatus
from schoolms.core.models import StudentFee

HUNDRED = Decimal("100")


@dataclass
class FeeTotals:
    total_fees: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_aid: Decimal = ZERO
    outstanding_balance: Decimal = ZERO


@dataclass
class Eligibility:
    eligible: bool
    payment_percentage: Decimal
    required_percentage: Decimal
    totals: FeeTotals
    reason: str


def payment_percentage(totals: FeeTotals) -> Decimal:
    total = to_decimal(totals.total_fees)
    if total <= ZERO:
        return money(HUNDRED)
    pct = (to_decimal(totals.total_paid) + to_decimal(totals.total_aid)) / total * HUNDRED
    return money(min(pct, HUNDRED))


def evaluate(
    totals: FeeTotals,
    minimum_payment_percentage,
    requires_full_payment: bool,
    threshold_override=None,
) -> Eligibility:
    pct = payment_percentage(totals)
    if requires_full_payment:
        required = HUNDRED
    elif threshold_override is not None:
        required = to_decimal(threshold_override)
    else:
        required = to_decimal(minimum_payment_percentage)
    required = money(required)

    if pct < required:
        return Eligibility(False, pct, required, totals, f"Payment is {pct}% of fees; {required}% is required")
    if requires_full_payment and to_decimal(totals.outstanding_balance) > ZERO:
        return Eligibility(
            False, pct, required, totals, f"Full payment required; {money(totals.outstanding_balance)} outstanding"
        )
    return Eligibility(True, pct, required, totals, "Payment requirement met")


async def get_fee_totals(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
) -> FeeTotals:
    stmt = select(
        func.coalesce(func.sum(StudentFee.total_amount), 0),
        func.coalesce(func.sum(StudentFee.amount_paid), 0),
        func.coalesce(func.sum(StudentFee.discount_amount), 0),
        func.coalesce(func.sum(StudentFee.balance), 0),
    ).where(
        StudentFee.student_id == student_id,
        StudentFee.academic_year_id == academic_year_id,
        StudentFee.status != FeeStatus.waived.value,
    )
    if term_id:
        stmt = stmt.where(StudentFee.term_id == term_id)
    total, paid, aid, outstanding = (await db.execute(stmt)).one()
    return FeeTotals(money(total), money(paid), money(aid), money(outstanding))
