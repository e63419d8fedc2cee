"""
Financial aid amount calculation and application to student fees / invoices.

An award counts towards a fee when its status is approved or active, it belongs to the same
student and academic year, its term is the fee's term or NULL (whole year), and today falls
inside [valid_from, valid_until] when those are set.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import (
    ZERO,
    apply_to_invoice,
    apply_to_student_fee,
    fee_snapshot,
    money,
    to_decimal,
)
from schoolms.core.audit import log_fee_audit
from schoolms.core.enums import AID_EFFECTIVE_STATUSES, CoverageType, FeeStatus
from schoolms.core.models import (
    FeeStructureItem,
    Invoice,
    Sponsor,
    StudentFee,
    StudentFinancialAid,
)


def is_valid_on(award: StudentFinancialAid, today: date) -> bool:
    if award.valid_from and award.valid_from > today:
        return False
    if award.valid_until and award.valid_until < today:
        return False
    return True


def award_amount(
    award: StudentFinancialAid,
    total_fees: Decimal,
    items: Sequence[Tuple[str, Decimal]] = (),
) -> Decimal:
    """Amount a single award covers out of total_fees. items are (item_name, amount) of the fee structure."""
    total_fees = to_decimal(total_fees)
    coverage = award.coverage_type
    if coverage == CoverageType.FULL.value:
        return total_fees
    if coverage == CoverageType.PERCENTAGE.value:
        pct = to_decimal(award.coverage_percentage)
        return total_fees * pct / Decimal("100")
    if coverage == CoverageType.FIXED_AMOUNT.value:
        return min(to_decimal(award.coverage_amount), total_fees)
    if coverage == CoverageType.SPECIFIC_ITEMS.value:
        covered = {str(name).strip().lower() for name in (award.covered_items or [])}
        return sum(
            (to_decimal(amount) for name, amount in items if name.strip().lower() in covered),
            Decimal("0"),
        )
    return Decimal("0")


def calculate_aid_amount(
    awards: Iterable[StudentFinancialAid],
    total_fees,
    items: Sequence[Tuple[str, Decimal]] = (),
) -> Decimal:
    """Sum of all awards, capped at total_fees and rounded to cents."""
    total_fees = to_decimal(total_fees)
    total = sum((award_amount(a, total_fees, items) for a in awards), Decimal("0"))
    if total > total_fees:
        total = total_fees
    return money(total)


async def get_active_student_aid(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    today: Optional[date] = None,
) -> List[Tuple[StudentFinancialAid, str]]:
    """Awards (with sponsor name) that apply to the student's fee for the period, oldest first."""
    today = today or date.today()
    stmt = (
        select(StudentFinancialAid, Sponsor.name)
        .join(Sponsor, Sponsor.id == StudentFinancialAid.sponsor_id)
        .where(
            StudentFinancialAid.student_id == student_id,
            StudentFinancialAid.academic_year_id == academic_year_id,
            StudentFinancialAid.status.in_(AID_EFFECTIVE_STATUSES),
        )
        .order_by(StudentFinancialAid.created_at.asc())
    )
    if term_id is not None:
        stmt = stmt.where(
            or_(StudentFinancialAid.term_id == term_id, StudentFinancialAid.term_id.is_(None))
        )
    else:
        stmt = stmt.where(StudentFinancialAid.term_id.is_(None))
    result = await db.execute(stmt)
    return [(aid, name) for aid, name in result.all() if is_valid_on(aid, today)]


async def get_structure_items(db: AsyncSession, fee_structure_id: UUID) -> List[Tuple[str, Decimal]]:
    result = await db.execute(
        select(FeeStructureItem.item_name, FeeStructureItem.amount)
        .where(FeeStructureItem.fee_structure_id == fee_structure_id)
        .order_by(FeeStructureItem.display_order.asc())
    )
    return [(name, to_decimal(amount)) for name, amount in result.all()]


async def apply_aid_to_fee(
    db: AsyncSession,
    fee: StudentFee,
    invoice: Optional[Invoice],
    changed_by: Optional[UUID],
    today: Optional[date] = None,
) -> Tuple[Decimal, List[Tuple[StudentFinancialAid, str]]]:
    """
    Recompute aid for one student fee and write it to the fee, its invoice and the awards.
    calculated_aid_amount is split evenly across the active awards. Caller commits.
    Waived fees are left alone. Returns (aid amount, active awards).
    """
    if fee.status == FeeStatus.waived.value:
        return money(ZERO), []
    active = await get_active_student_aid(db, fee.student_id, fee.academic_year_id, fee.term_id, today)
    items = await get_structure_items(db, fee.fee_structure_id)
    aid_amount = calculate_aid_amount([a for a, _ in active], fee.total_amount, items)

    old = fee_snapshot(fee)
    apply_to_student_fee(fee, aid_amount=aid_amount)
    if aid_amount > ZERO:
        sponsors = ", ".join(dict.fromkeys(name for _, name in active))
        fee.discount_reason = f"Financial Aid: {sponsors}"
    else:
        fee.discount_reason = None
    if invoice is not None:
        apply_to_invoice(invoice, aid_amount=aid_amount)

    if active:
        share = money(aid_amount / len(active))
        for award, _ in active:
            award.calculated_aid_amount = share

    if old != fee_snapshot(fee):
        await log_fee_audit(db, "student_fees", fee.id, "APPLY_AID", old, fee_snapshot(fee), changed_by)
    return aid_amount, active


async def award_share_for_fee(
    db: AsyncSession,
    award: StudentFinancialAid,
    fee: StudentFee,
    today: Optional[date] = None,
) -> Decimal:
    """The award's even share of the aid applied to one student fee; 0 when the award does not count for it."""
    active = await get_active_student_aid(db, fee.student_id, fee.academic_year_id, fee.term_id, today)
    if award.id not in {a.id for a, _ in active}:
        return money(ZERO)
    return money(to_decimal(fee.discount_amount) / len(active))
