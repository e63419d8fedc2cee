"""Sponsors and sponsor payments. Allocations settle the sponsored share; student balances are untouched."""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import ZERO, money, to_decimal
from schoolms.api.v1.financial_aid.calculator import award_share_for_fee, is_valid_on
from schoolms.api.v1.invoices.service import format_money
from schoolms.auth.models import User
from schoolms.core.audit import log_fee_audit
from schoolms.core.enums import AID_EFFECTIVE_STATUSES
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import (
    Sponsor,
    SponsorPayment,
    SponsorPaymentAllocation,
    Student,
    StudentFee,
    StudentFinancialAid,
    Term,
)

from .schemas import (
    AllocateSponsorPaymentRequest,
    AllocationItem,
    RecordSponsorPaymentResult,
    SponsorCreate,
    SponsorDetailResponse,
    SponsorPaymentAllocationResponse,
    SponsorPaymentCreate,
    SponsorPaymentResponse,
    SponsorResponse,
    SponsorStats,
    SponsorUpdate,
)

logger = get_logger("sponsors")


async def _name_taken(db: AsyncSession, name: str, exclude_id: Optional[UUID] = None) -> bool:
    stmt = select(Sponsor.id).where(func.lower(Sponsor.name) == name.strip().lower())
    if exclude_id:
        stmt = stmt.where(Sponsor.id != exclude_id)
    result = await db.execute(stmt)
    return result.scalars().first() is not None


async def get_sponsor_model(db: AsyncSession, sponsor_id: UUID) -> Sponsor:
    sponsor = await db.get(Sponsor, sponsor_id)
    if not sponsor:
        raise NotFoundError("Sponsor not found")
    return sponsor


async def create_sponsor(db: AsyncSession, payload: SponsorCreate, created_by: Optional[UUID]) -> SponsorResponse:
    if await _name_taken(db, payload.name):
        raise ServiceError("A sponsor with this name already exists", status.HTTP_409_CONFLICT)
    data = payload.model_dump()
    data["name"] = payload.name.strip()
    data["sponsor_type"] = payload.sponsor_type.value
    sponsor = Sponsor(**data, is_active=True, created_by=created_by)
    db.add(sponsor)
    try:
        await db.commit()
        await db.refresh(sponsor)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("A sponsor with this name already exists", status.HTTP_409_CONFLICT)
    logger.info("Created sponsor %s (%s)", sponsor.name, sponsor.sponsor_type)
    return SponsorResponse.model_validate(sponsor)


async def update_sponsor(db: AsyncSession, sponsor_id: UUID, payload: SponsorUpdate) -> SponsorResponse:
    sponsor = await get_sponsor_model(db, sponsor_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("name"):
        if await _name_taken(db, data["name"], exclude_id=sponsor_id):
            raise ServiceError("A sponsor with this name already exists", status.HTTP_409_CONFLICT)
        data["name"] = data["name"].strip()
    if data.get("sponsor_type") is not None:
        data["sponsor_type"] = data["sponsor_type"].value
    for key, value in data.items():
        setattr(sponsor, key, value)
    try:
        await db.commit()
        await db.refresh(sponsor)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("A sponsor with this name already exists", status.HTTP_409_CONFLICT)
    return SponsorResponse.model_validate(sponsor)


async def list_sponsors(
    db: AsyncSession,
    sponsor_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
) -> List[SponsorResponse]:
    stmt = select(Sponsor).order_by(Sponsor.name.asc())
    if sponsor_type:
        stmt = stmt.where(Sponsor.sponsor_type == sponsor_type)
    if is_active is not None:
        stmt = stmt.where(Sponsor.is_active.is_(is_active))
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Sponsor.name).like(term),
                func.lower(Sponsor.contact_person).like(term),
                func.lower(Sponsor.email).like(term),
            )
        )
    result = await db.execute(stmt)
    return [SponsorResponse.model_validate(s) for s in result.scalars().all()]


async def get_sponsor_stats(db: AsyncSession, sponsor_id: UUID) -> SponsorStats:
    totals = await db.execute(
        select(
            func.coalesce(func.sum(SponsorPayment.amount), 0),
            func.coalesce(func.sum(SponsorPayment.allocated_amount), 0),
            func.coalesce(func.sum(SponsorPayment.unallocated_amount), 0),
            func.count(SponsorPayment.id),
        ).where(SponsorPayment.sponsor_id == sponsor_id)
    )
    total_paid, total_allocated, total_unallocated, payment_count = totals.one()
    helped = await db.execute(
        select(func.count(func.distinct(StudentFinancialAid.student_id))).where(
            StudentFinancialAid.sponsor_id == sponsor_id
        )
    )
    active = await db.execute(
        select(func.count(StudentFinancialAid.id)).where(
            StudentFinancialAid.sponsor_id == sponsor_id,
            StudentFinancialAid.status.in_(AID_EFFECTIVE_STATUSES),
        )
    )
    return SponsorStats(
        total_paid=money(total_paid),
        total_allocated=money(total_allocated),
        total_unallocated=money(total_unallocated),
        payment_count=int(payment_count or 0),
        students_helped=int(helped.scalar_one() or 0),
        active_awards=int(active.scalar_one() or 0),
    )


async def get_sponsor(db: AsyncSession, sponsor_id: UUID) -> SponsorDetailResponse:
    sponsor = await get_sponsor_model(db, sponsor_id)
    base = SponsorResponse.model_validate(sponsor)
    return SponsorDetailResponse(**base.model_dump(), stats=await get_sponsor_stats(db, sponsor_id))


async def set_sponsor_active(db: AsyncSession, sponsor_id: UUID, is_active: bool) -> SponsorResponse:
    sponsor = await get_sponsor_model(db, sponsor_id)
    sponsor.is_active = is_active
    await db.commit()
    await db.refresh(sponsor)
    logger.info("Sponsor %s %s", sponsor.name, "activated" if is_active else "deactivated")
    return SponsorResponse.model_validate(sponsor)


async def delete_sponsor(db: AsyncSession, sponsor_id: UUID) -> SponsorResponse:
    """Soft delete. Refused while the sponsor still funds approved or active awards."""
    await get_sponsor_model(db, sponsor_id)
    active = await db.execute(
        select(func.count(StudentFinancialAid.id)).where(
            StudentFinancialAid.sponsor_id == sponsor_id,
            StudentFinancialAid.status.in_(AID_EFFECTIVE_STATUSES),
        )
    )
    if active.scalar_one():
        raise ServiceError(
            "Cannot delete sponsor with active financial aid. Deactivate or complete the awards first.",
            status.HTTP_400_BAD_REQUEST,
        )
    return await set_sponsor_active(db, sponsor_id, False)


# --- Sponsor payments ---
def _payment_to_response(p: SponsorPayment, sponsor_name: Optional[str] = None) -> SponsorPaymentResponse:
    return SponsorPaymentResponse(
        id=p.id,
        sponsor_id=p.sponsor_id,
        sponsor_name=sponsor_name,
        amount=money(p.amount),
        payment_date=p.payment_date,
        payment_method=p.payment_method,
        reference_number=p.reference_number,
        academic_year_id=p.academic_year_id,
        term_id=p.term_id,
        allocated_amount=money(p.allocated_amount),
        unallocated_amount=money(p.unallocated_amount),
        notes=p.notes,
        created_at=p.created_at,
    )


def _allocation_to_response(
    a: SponsorPaymentAllocation,
    student_name: Optional[str] = None,
    student_number: Optional[str] = None,
) -> SponsorPaymentAllocationResponse:
    return SponsorPaymentAllocationResponse(
        id=a.id,
        sponsor_payment_id=a.sponsor_payment_id,
        student_id=a.student_id,
        student_name=student_name,
        student_number=student_number,
        student_fee_id=a.student_fee_id,
        student_aid_id=a.student_aid_id,
        amount=money(a.amount),
        allocated_at=a.allocated_at,
    )


async def _allocated_per_award_fee(
    db: AsyncSession, award_ids: List[UUID]
) -> Dict[Tuple[UUID, UUID], Decimal]:
    """Amount already allocated per (award, student fee)."""
    if not award_ids:
        return {}
    result = await db.execute(
        select(
            SponsorPaymentAllocation.student_aid_id,
            SponsorPaymentAllocation.student_fee_id,
            func.coalesce(func.sum(SponsorPaymentAllocation.amount), 0),
        )
        .where(SponsorPaymentAllocation.student_aid_id.in_(award_ids))
        .group_by(SponsorPaymentAllocation.student_aid_id, SponsorPaymentAllocation.student_fee_id)
    )
    return {(aid_id, fee_id): to_decimal(total) for aid_id, fee_id, total in result.all()}


async def _fees_for_award(
    db: AsyncSession,
    award: StudentFinancialAid,
    term_id: Optional[UUID],
) -> List[StudentFee]:
    """Fees an award covers, earliest term first. A whole-year award covers every term unless the payment names one."""
    stmt = (
        select(StudentFee)
        .outerjoin(Term, Term.id == StudentFee.term_id)
        .where(
            StudentFee.student_id == award.student_id,
            StudentFee.academic_year_id == award.academic_year_id,
        )
        .order_by(Term.term_number.asc(), StudentFee.created_at.asc())
    )
    term = award.term_id or term_id
    if term:
        stmt = stmt.where(StudentFee.term_id == term)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _auto_allocations(
    db: AsyncSession,
    payment: SponsorPayment,
    allocated_by: Optional[UUID],
    today: Optional[date] = None,
) -> List[SponsorPaymentAllocation]:
    """
    Spread the payment over the sponsor's current awards, oldest award first.
    Each allocation is the lesser of the award's outstanding share of one fee, the remaining payment and the
    fee total. The outstanding share only counts earlier allocations against that same fee.
    """
    today = today or date.today()
    stmt = (
        select(StudentFinancialAid)
        .where(
            StudentFinancialAid.sponsor_id == payment.sponsor_id,
            StudentFinancialAid.status.in_(AID_EFFECTIVE_STATUSES),
        )
        .order_by(StudentFinancialAid.created_at.asc())
    )
    if payment.academic_year_id:
        stmt = stmt.where(StudentFinancialAid.academic_year_id == payment.academic_year_id)
    result = await db.execute(stmt)
    awards = [a for a in result.scalars().all() if is_valid_on(a, today)]
    already = await _allocated_per_award_fee(db, [a.id for a in awards])

    remaining = money(payment.amount)
    allocations: List[SponsorPaymentAllocation] = []
    for award in awards:
        if remaining <= ZERO:
            break
        fees = await _fees_for_award(db, award, payment.term_id)
        if not fees:
            logger.warning("No student fee found for aid award %s; skipped in auto-allocation", award.id)
            continue
        for fee in fees:
            if remaining <= ZERO:
                break
            share = await award_share_for_fee(db, award, fee, today)
            outstanding_share = money(share - already.get((award.id, fee.id), ZERO))
            amount = min(outstanding_share, remaining, money(fee.total_amount))
            if amount <= ZERO:
                continue
            allocations.append(
                SponsorPaymentAllocation(
                    sponsor_payment_id=payment.id,
                    student_id=award.student_id,
                    student_fee_id=fee.id,
                    student_aid_id=award.id,
                    amount=amount,
                    allocated_by=allocated_by,
                )
            )
            remaining -= amount
    return allocations


def _apply_allocations(payment: SponsorPayment, allocations: List[SponsorPaymentAllocation]) -> Decimal:
    total = money(sum((to_decimal(a.amount) for a in allocations), Decimal("0")))
    payment.allocated_amount = money(to_decimal(payment.allocated_amount) + total)
    payment.unallocated_amount = money(to_decimal(payment.amount) - to_decimal(payment.allocated_amount))
    return total


def _payment_snapshot(p: SponsorPayment) -> dict:
    return {
        "amount": str(money(p.amount)),
        "allocated_amount": str(money(p.allocated_amount)),
        "unallocated_amount": str(money(p.unallocated_amount)),
    }


async def _allocation_responses(
    db: AsyncSession, allocations: List[SponsorPaymentAllocation]
) -> List[SponsorPaymentAllocationResponse]:
    if not allocations:
        return []
    result = await db.execute(
        select(Student.id, Student.student_number, User.first_name, User.last_name)
        .join(User, User.id == Student.user_id)
        .where(Student.id.in_({a.student_id for a in allocations}))
    )
    students = {sid: (f"{first} {last}", num) for sid, num, first, last in result.all()}
    responses = []
    for a in allocations:
        name, number = students.get(a.student_id, (None, None))
        responses.append(_allocation_to_response(a, name, number))
    return responses


async def record_sponsor_payment(
    db: AsyncSession,
    payload: SponsorPaymentCreate,
    recorded_by: Optional[UUID],
) -> RecordSponsorPaymentResult:
    sponsor = await get_sponsor_model(db, payload.sponsor_id)
    amount = money(payload.amount)
    if amount <= ZERO:
        raise ServiceError("Payment amount must be greater than zero", status.HTTP_400_BAD_REQUEST)

    payment = SponsorPayment(
        sponsor_id=sponsor.id,
        amount=amount,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method.value,
        reference_number=payload.reference_number,
        academic_year_id=payload.academic_year_id,
        term_id=payload.term_id,
        allocated_amount=money(ZERO),
        unallocated_amount=amount,
        notes=payload.notes,
        recorded_by=recorded_by,
    )
    db.add(payment)
    await db.flush()
    await log_fee_audit(db, "sponsor_payments", payment.id, "CREATE", None, _payment_snapshot(payment), recorded_by)

    allocations: List[SponsorPaymentAllocation] = []
    if payload.auto_allocate:
        allocations = await _auto_allocations(db, payment, recorded_by)
        if allocations:
            old = _payment_snapshot(payment)
            db.add_all(allocations)
            _apply_allocations(payment, allocations)
            await log_fee_audit(
                db, "sponsor_payments", payment.id, "ALLOCATE", old, _payment_snapshot(payment), recorded_by
            )
        else:
            logger.warning("Auto-allocation found no awards to settle for sponsor %s", sponsor.name)
    await db.commit()

    logger.info(
        "Recorded sponsor payment of %s from %s (%d allocations)",
        amount, sponsor.name, len(allocations),
    )
    message = f"Sponsor payment of {format_money(amount)} recorded successfully"
    if allocations:
        message += f". Allocated to {len(allocations)} student(s)."
    return RecordSponsorPaymentResult(
        payment=_payment_to_response(payment, sponsor.name),
        allocations=await _allocation_responses(db, allocations),
        message=message,
    )


async def allocate_sponsor_payment(
    db: AsyncSession,
    sponsor_payment_id: UUID,
    payload: AllocateSponsorPaymentRequest,
    allocated_by: Optional[UUID],
) -> List[SponsorPaymentAllocationResponse]:
    payment = await db.get(SponsorPayment, sponsor_payment_id)
    if not payment:
        raise NotFoundError("Sponsor payment not found")

    total = money(sum((item.amount for item in payload.allocations), Decimal("0")))
    unallocated = money(payment.unallocated_amount)
    if total > unallocated:
        raise ServiceError(
            f"Total allocation ({format_money(total)}) exceeds unallocated amount ({format_money(unallocated)})",
            status.HTTP_400_BAD_REQUEST,
        )

    allocations: List[SponsorPaymentAllocation] = []
    for item in payload.allocations:
        await _check_allocation_target(db, payment, item)
        allocations.append(
            SponsorPaymentAllocation(
                sponsor_payment_id=payment.id,
                student_id=item.student_id,
                student_fee_id=item.student_fee_id,
                student_aid_id=item.student_aid_id,
                amount=money(item.amount),
                allocated_by=allocated_by,
            )
        )
    old = _payment_snapshot(payment)
    db.add_all(allocations)
    _apply_allocations(payment, allocations)
    await log_fee_audit(db, "sponsor_payments", payment.id, "ALLOCATE", old, _payment_snapshot(payment), allocated_by)
    await db.commit()
    logger.info("Allocated %s of sponsor payment %s to %d student(s)", total, payment.id, len(allocations))
    return await _allocation_responses(db, allocations)


async def _check_allocation_target(db: AsyncSession, payment: SponsorPayment, item: AllocationItem) -> None:
    fee = await db.get(StudentFee, item.student_fee_id)
    if not fee or fee.student_id != item.student_id:
        raise ServiceError("Student fee not found for this student", status.HTTP_400_BAD_REQUEST)
    if item.student_aid_id:
        award = await db.get(StudentFinancialAid, item.student_aid_id)
        if not award or award.student_id != item.student_id or award.sponsor_id != payment.sponsor_id:
            raise ServiceError("Aid award does not belong to this student and sponsor", status.HTTP_400_BAD_REQUEST)


async def list_sponsor_payments(
    db: AsyncSession,
    sponsor_id: Optional[UUID] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> List[SponsorPaymentResponse]:
    stmt = (
        select(SponsorPayment, Sponsor.name)
        .join(Sponsor, Sponsor.id == SponsorPayment.sponsor_id)
        .order_by(SponsorPayment.payment_date.desc(), SponsorPayment.created_at.desc())
    )
    if sponsor_id:
        stmt = stmt.where(SponsorPayment.sponsor_id == sponsor_id)
    if from_date:
        stmt = stmt.where(SponsorPayment.payment_date >= from_date)
    if to_date:
        stmt = stmt.where(SponsorPayment.payment_date <= to_date)
    result = await db.execute(stmt)
    return [_payment_to_response(p, name) for p, name in result.all()]


async def list_payment_allocations(
    db: AsyncSession, sponsor_payment_id: UUID
) -> List[SponsorPaymentAllocationResponse]:
    if not await db.get(SponsorPayment, sponsor_payment_id):
        raise NotFoundError("Sponsor payment not found")
    result = await db.execute(
        select(SponsorPaymentAllocation, Student.student_number, User.first_name, User.last_name)
        .join(Student, Student.id == SponsorPaymentAllocation.student_id)
        .join(User, User.id == Student.user_id)
        .where(SponsorPaymentAllocation.sponsor_payment_id == sponsor_payment_id)
        .order_by(SponsorPaymentAllocation.allocated_at.desc())
    )
    return [
        _allocation_to_response(a, f"{first} {last}", number)
        for a, number, first, last in result.all()
    ]
