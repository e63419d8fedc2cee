"""Aid types, student aid awards and applying aid to fees and invoices."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import ZERO, money
from schoolms.api.v1.invoices.service import format_money
from schoolms.auth.models import User
from schoolms.core.audit import log_fee_audit
from schoolms.core.enums import AID_EFFECTIVE_STATUSES, AID_OPEN_STATUSES, AidStatus, CoverageType, FeeStatus
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import (
    AcademicYear,
    FinancialAidType,
    Invoice,
    Sponsor,
    Student,
    StudentFee,
    StudentFinancialAid,
    Term,
)

from .calculator import apply_aid_to_fee, get_active_student_aid
from .schemas import (
    ApplyAidRequest,
    ApplyAidResult,
    AssignAidRequest,
    BulkAssignAidRequest,
    BulkAssignAidResult,
    FinancialAidTypeCreate,
    FinancialAidTypeResponse,
    FinancialAidTypeUpdate,
    RecalculateAidResult,
    StudentAidResponse,
    UpdateAidStatusRequest,
    check_coverage,
)

logger = get_logger("financial_aid")


# --- Aid types ---
def _type_to_response(t: FinancialAidType, sponsor_name: Optional[str] = None) -> FinancialAidTypeResponse:
    return FinancialAidTypeResponse(
        id=t.id,
        sponsor_id=t.sponsor_id,
        sponsor_name=sponsor_name,
        name=t.name,
        description=t.description,
        coverage_type=t.coverage_type,
        coverage_percentage=t.coverage_percentage,
        coverage_amount=t.coverage_amount,
        covered_items=t.covered_items,
        is_active=t.is_active,
        created_at=t.created_at,
    )


async def get_aid_type_model(db: AsyncSession, aid_type_id: UUID) -> FinancialAidType:
    aid_type = await db.get(FinancialAidType, aid_type_id)
    if not aid_type:
        raise NotFoundError("Financial aid type not found")
    return aid_type


async def create_aid_type(db: AsyncSession, payload: FinancialAidTypeCreate) -> FinancialAidTypeResponse:
    sponsor = await db.get(Sponsor, payload.sponsor_id)
    if not sponsor:
        raise NotFoundError("Sponsor not found")
    if not sponsor.is_active:
        raise ServiceError("Cannot create aid types for an inactive sponsor", status.HTTP_400_BAD_REQUEST)

    aid_type = FinancialAidType(
        sponsor_id=sponsor.id,
        name=payload.name.strip(),
        description=payload.description,
        coverage_type=payload.coverage_type.value,
        coverage_percentage=payload.coverage_percentage,
        coverage_amount=payload.coverage_amount,
        covered_items=payload.covered_items,
        is_active=True,
    )
    db.add(aid_type)
    await db.commit()
    await db.refresh(aid_type)
    logger.info("Created aid type %s (%s) for sponsor %s", aid_type.name, aid_type.coverage_type, sponsor.name)
    return _type_to_response(aid_type, sponsor.name)


async def update_aid_type(
    db: AsyncSession, aid_type_id: UUID, payload: FinancialAidTypeUpdate
) -> FinancialAidTypeResponse:
    aid_type = await get_aid_type_model(db, aid_type_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("coverage_type") is not None:
        data["coverage_type"] = data["coverage_type"].value
    merged = {
        key: data.get(key, getattr(aid_type, key))
        for key in ("coverage_type", "coverage_percentage", "coverage_amount", "covered_items")
    }
    try:
        check_coverage(
            CoverageType(merged["coverage_type"]),
            merged["coverage_percentage"],
            merged["coverage_amount"],
            merged["covered_items"],
        )
    except ValueError as e:
        raise ServiceError(str(e), status.HTTP_400_BAD_REQUEST)
    for key, value in data.items():
        setattr(aid_type, key, value)
    await db.commit()
    return await get_aid_type(db, aid_type_id)


async def list_aid_types(
    db: AsyncSession,
    sponsor_id: Optional[UUID] = None,
    is_active: Optional[bool] = None,
) -> List[FinancialAidTypeResponse]:
    stmt = (
        select(FinancialAidType, Sponsor.name)
        .join(Sponsor, Sponsor.id == FinancialAidType.sponsor_id)
        .order_by(Sponsor.name.asc(), FinancialAidType.name.asc())
    )
    if sponsor_id:
        stmt = stmt.where(FinancialAidType.sponsor_id == sponsor_id)
    if is_active is not None:
        stmt = stmt.where(FinancialAidType.is_active.is_(is_active))
    result = await db.execute(stmt)
    return [_type_to_response(t, name) for t, name in result.all()]


async def get_aid_type(db: AsyncSession, aid_type_id: UUID) -> FinancialAidTypeResponse:
    result = await db.execute(
        select(FinancialAidType, Sponsor.name)
        .join(Sponsor, Sponsor.id == FinancialAidType.sponsor_id)
        .where(FinancialAidType.id == aid_type_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Financial aid type not found")
    return _type_to_response(*row)


async def set_aid_type_active(db: AsyncSession, aid_type_id: UUID, is_active: bool) -> FinancialAidTypeResponse:
    aid_type = await get_aid_type_model(db, aid_type_id)
    if not is_active:
        active = await db.execute(
            select(func.count(StudentFinancialAid.id)).where(
                StudentFinancialAid.aid_type_id == aid_type_id,
                StudentFinancialAid.status.in_(AID_EFFECTIVE_STATUSES),
            )
        )
        if active.scalar_one():
            raise ServiceError(
                "Cannot deactivate an aid type with active awards",
                status.HTTP_400_BAD_REQUEST,
            )
    aid_type.is_active = is_active
    await db.commit()
    return await get_aid_type(db, aid_type_id)


# --- Student aid ---
def _aid_select():
    return (
        select(
            StudentFinancialAid,
            User.first_name,
            User.last_name,
            Student.student_number,
            Sponsor.name,
            FinancialAidType.name,
        )
        .join(Student, Student.id == StudentFinancialAid.student_id)
        .join(User, User.id == Student.user_id)
        .join(Sponsor, Sponsor.id == StudentFinancialAid.sponsor_id)
        .join(FinancialAidType, FinancialAidType.id == StudentFinancialAid.aid_type_id)
    )


def _aid_row_to_response(row) -> StudentAidResponse:
    aid, first_name, last_name, student_number, sponsor_name, type_name = row
    return StudentAidResponse(
        id=aid.id,
        student_id=aid.student_id,
        student_name=f"{first_name} {last_name}",
        student_number=student_number,
        sponsor_id=aid.sponsor_id,
        sponsor_name=sponsor_name,
        aid_type_id=aid.aid_type_id,
        aid_type_name=type_name,
        academic_year_id=aid.academic_year_id,
        term_id=aid.term_id,
        coverage_type=aid.coverage_type,
        coverage_percentage=aid.coverage_percentage,
        coverage_amount=aid.coverage_amount,
        covered_items=aid.covered_items,
        calculated_aid_amount=money(aid.calculated_aid_amount),
        valid_from=aid.valid_from,
        valid_until=aid.valid_until,
        status=aid.status,
        conditions=aid.conditions,
        notes=aid.notes,
        rejection_reason=aid.rejection_reason,
        approved_at=aid.approved_at,
        created_at=aid.created_at,
    )


async def get_aid_award(db: AsyncSession, aid_id: UUID) -> StudentAidResponse:
    result = await db.execute(_aid_select().where(StudentFinancialAid.id == aid_id))
    row = result.first()
    if not row:
        raise NotFoundError("Financial aid award not found")
    return _aid_row_to_response(row)


async def _open_award_exists(
    db: AsyncSession,
    student_id: UUID,
    sponsor_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
) -> bool:
    stmt = select(StudentFinancialAid.id).where(
        StudentFinancialAid.student_id == student_id,
        StudentFinancialAid.sponsor_id == sponsor_id,
        StudentFinancialAid.academic_year_id == academic_year_id,
        StudentFinancialAid.status.in_(AID_OPEN_STATUSES),
    )
    if term_id is None:
        stmt = stmt.where(StudentFinancialAid.term_id.is_(None))
    else:
        stmt = stmt.where(StudentFinancialAid.term_id == term_id)
    result = await db.execute(stmt)
    return result.scalars().first() is not None


async def _active_aid_type(db: AsyncSession, aid_type_id: UUID) -> FinancialAidType:
    aid_type = await db.get(FinancialAidType, aid_type_id)
    if not aid_type or not aid_type.is_active:
        raise NotFoundError("Financial aid type not found or inactive")
    return aid_type


async def _check_period(db: AsyncSession, academic_year_id: UUID, term_id: Optional[UUID]) -> None:
    if not await db.get(AcademicYear, academic_year_id):
        raise NotFoundError("Academic year not found")
    if term_id:
        term = await db.get(Term, term_id)
        if not term or term.academic_year_id != academic_year_id:
            raise NotFoundError("Term not found for this academic year")


def _new_award(
    aid_type: FinancialAidType,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    assigned_by: Optional[UUID],
    **overrides,
) -> StudentFinancialAid:
    coverage_type = overrides.get("coverage_type")
    return StudentFinancialAid(
        student_id=student_id,
        sponsor_id=aid_type.sponsor_id,
        aid_type_id=aid_type.id,
        academic_year_id=academic_year_id,
        term_id=term_id,
        coverage_type=coverage_type.value if coverage_type else aid_type.coverage_type,
        coverage_percentage=overrides.get("coverage_percentage") or aid_type.coverage_percentage,
        coverage_amount=overrides.get("coverage_amount") or aid_type.coverage_amount,
        covered_items=overrides.get("covered_items") or aid_type.covered_items,
        calculated_aid_amount=Decimal("0"),
        valid_from=overrides.get("valid_from"),
        valid_until=overrides.get("valid_until"),
        conditions=overrides.get("conditions"),
        notes=overrides.get("notes"),
        status=AidStatus.approved.value,
        assigned_by=assigned_by,
        approved_by=assigned_by,
        approved_at=datetime.utcnow(),
    )


async def assign_aid(db: AsyncSession, payload: AssignAidRequest, assigned_by: Optional[UUID]) -> StudentAidResponse:
    student = await db.get(Student, payload.student_id)
    if not student:
        raise NotFoundError("Student not found")
    aid_type = await _active_aid_type(db, payload.aid_type_id)
    await _check_period(db, payload.academic_year_id, payload.term_id)

    if await _open_award_exists(db, student.id, aid_type.sponsor_id, payload.academic_year_id, payload.term_id):
        raise ServiceError(
            "Student already has active aid from this sponsor for this period",
            status.HTTP_409_CONFLICT,
        )

    award = _new_award(
        aid_type,
        student.id,
        payload.academic_year_id,
        payload.term_id,
        assigned_by,
        **payload.model_dump(
            include={
                "coverage_type",
                "coverage_percentage",
                "coverage_amount",
                "covered_items",
                "valid_from",
                "valid_until",
                "conditions",
                "notes",
            }
        ),
    )
    try:
        check_coverage(
            CoverageType(award.coverage_type),
            award.coverage_percentage,
            award.coverage_amount,
            award.covered_items,
        )
    except ValueError as e:
        raise ServiceError(str(e), status.HTTP_400_BAD_REQUEST)

    db.add(award)
    await db.flush()
    await log_fee_audit(
        db, "student_financial_aid", award.id, "CREATE", None,
        {"coverage_type": award.coverage_type, "status": award.status}, assigned_by,
    )
    await db.commit()
    logger.info("Assigned aid type %s to student %s", aid_type.name, student.student_number)
    return await get_aid_award(db, award.id)


async def bulk_assign_aid(
    db: AsyncSession, payload: BulkAssignAidRequest, assigned_by: Optional[UUID]
) -> BulkAssignAidResult:
    """Assign the aid type's default coverage to many students. Duplicates and unknown students count as failures."""
    aid_type = await _active_aid_type(db, payload.aid_type_id)
    await _check_period(db, payload.academic_year_id, payload.term_id)

    assigned = 0
    failed = 0
    for student_id in dict.fromkeys(payload.student_ids):
        if not await db.get(Student, student_id):
            failed += 1
            continue
        if await _open_award_exists(db, student_id, aid_type.sponsor_id, payload.academic_year_id, payload.term_id):
            failed += 1
            continue
        award = _new_award(
            aid_type,
            student_id,
            payload.academic_year_id,
            payload.term_id,
            assigned_by,
            valid_from=payload.valid_from,
            valid_until=payload.valid_until,
            conditions=payload.conditions,
            notes=payload.notes,
        )
        db.add(award)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await db.refresh(aid_type)
            failed += 1
            continue
        assigned += 1

    logger.info("Bulk aid assignment for %s: %d assigned, %d failed", aid_type.name, assigned, failed)
    message = f"Successfully assigned aid to {assigned} student(s)."
    if failed:
        message += f" {failed} failed."
    return BulkAssignAidResult(assigned_count=assigned, failed_count=failed, message=message)


async def list_student_aid(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
) -> List[StudentAidResponse]:
    stmt = _aid_select().where(StudentFinancialAid.student_id == student_id)
    if academic_year_id:
        stmt = stmt.where(StudentFinancialAid.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(StudentFinancialAid.term_id == term_id)
    result = await db.execute(stmt.order_by(StudentFinancialAid.created_at.desc()))
    return [_aid_row_to_response(row) for row in result.all()]


async def list_aid_awards(
    db: AsyncSession,
    sponsor_id: Optional[UUID] = None,
    aid_status: Optional[str] = None,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
) -> List[StudentAidResponse]:
    stmt = _aid_select()
    if sponsor_id:
        stmt = stmt.where(StudentFinancialAid.sponsor_id == sponsor_id)
    if aid_status:
        stmt = stmt.where(StudentFinancialAid.status == aid_status)
    if academic_year_id:
        stmt = stmt.where(StudentFinancialAid.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(StudentFinancialAid.term_id == term_id)
    result = await db.execute(stmt.order_by(StudentFinancialAid.created_at.desc()))
    return [_aid_row_to_response(row) for row in result.all()]


async def _reapply_for_award(db: AsyncSession, award: StudentFinancialAid, changed_by: Optional[UUID]) -> None:
    """Recompute the fees an award touches after its status changed. Caller commits."""
    stmt = select(StudentFee).where(
        StudentFee.student_id == award.student_id,
        StudentFee.academic_year_id == award.academic_year_id,
    )
    if award.term_id:
        stmt = stmt.where(StudentFee.term_id == award.term_id)
    result = await db.execute(stmt)
    for fee in result.scalars().all():
        invoice = await _invoice_for_fee(db, fee.id)
        await apply_aid_to_fee(db, fee, invoice, changed_by)
    if award.status not in AID_EFFECTIVE_STATUSES:
        award.calculated_aid_amount = money(ZERO)


async def update_aid_status(
    db: AsyncSession,
    aid_id: UUID,
    payload: UpdateAidStatusRequest,
    changed_by: Optional[UUID],
) -> StudentAidResponse:
    award = await db.get(StudentFinancialAid, aid_id)
    if not award:
        raise NotFoundError("Financial aid award not found")

    old = {"status": award.status}
    award.status = payload.status.value
    if payload.status.value in AID_EFFECTIVE_STATUSES and award.approved_at is None:
        award.approved_by = changed_by
        award.approved_at = datetime.utcnow()
    if payload.status == AidStatus.rejected:
        award.rejection_reason = payload.rejection_reason
    await log_fee_audit(
        db, "student_financial_aid", award.id, "UPDATE_STATUS", old, {"status": award.status}, changed_by
    )
    await _reapply_for_award(db, award, changed_by)
    await db.commit()
    logger.info("Aid award %s status %s -> %s", award.id, old["status"], award.status)
    return await get_aid_award(db, aid_id)


async def revoke_aid(db: AsyncSession, aid_id: UUID, reason: str, changed_by: Optional[UUID]) -> StudentAidResponse:
    """Suspend an award and record why. The student's fee loses the award's share immediately."""
    award = await db.get(StudentFinancialAid, aid_id)
    if not award:
        raise NotFoundError("Financial aid award not found")
    if award.status == AidStatus.suspended.value:
        raise ServiceError("Financial aid is already revoked", status.HTTP_400_BAD_REQUEST)

    old = {"status": award.status}
    award.status = AidStatus.suspended.value
    award.notes = f"{award.notes}\nRevoked: {reason}" if award.notes else f"Revoked: {reason}"
    await log_fee_audit(db, "student_financial_aid", award.id, "REVOKE", old, {"status": award.status}, changed_by)
    await _reapply_for_award(db, award, changed_by)
    await db.commit()
    logger.info("Aid award %s revoked", award.id)
    return await get_aid_award(db, aid_id)


# --- Applying aid ---
async def _invoice_for_fee(db: AsyncSession, student_fee_id: UUID) -> Optional[Invoice]:
    result = await db.execute(select(Invoice).where(Invoice.student_fee_id == student_fee_id))
    return result.scalar_one_or_none()


async def apply_aid_for_student(
    db: AsyncSession, payload: ApplyAidRequest, changed_by: Optional[UUID]
) -> ApplyAidResult:
    """Apply aid assigned after invoicing to the student's fee and invoice for the term."""
    active = await get_active_student_aid(db, payload.student_id, payload.academic_year_id, payload.term_id)
    if not active:
        raise ServiceError("No active financial aid found for this student", status.HTTP_400_BAD_REQUEST)

    result = await db.execute(
        select(StudentFee).where(
            StudentFee.student_id == payload.student_id,
            StudentFee.academic_year_id == payload.academic_year_id,
            StudentFee.term_id == payload.term_id,
        )
    )
    fee = result.scalar_one_or_none()
    if not fee:
        raise NotFoundError("Student fee record not found")

    invoice = await _invoice_for_fee(db, fee.id)
    aid_amount, _ = await apply_aid_to_fee(db, fee, invoice, changed_by)
    if aid_amount <= ZERO:
        await db.rollback()
        raise ServiceError("No aid amount to apply", status.HTTP_400_BAD_REQUEST)
    if invoice is not None:
        note = f"Financial aid applied: {format_money(aid_amount)} ({date.today().isoformat()})"
        invoice.notes = f"{invoice.notes}\n{note}" if invoice.notes else note
    await db.commit()

    logger.info("Applied %s aid to student fee %s", aid_amount, fee.id)
    return ApplyAidResult(
        student_fee_id=fee.id,
        invoice_id=invoice.id if invoice else None,
        aid_amount=aid_amount,
        new_balance=money(fee.balance),
        message=(
            f"Financial aid of {format_money(aid_amount)} applied successfully. "
            f"New balance: {format_money(fee.balance)}"
        ),
    )


async def recalculate_all_aid(
    db: AsyncSession,
    academic_year_id: Optional[UUID],
    term_id: Optional[UUID],
    changed_by: Optional[UUID],
) -> RecalculateAidResult:
    """Recompute aid for every matching student fee in one transaction."""
    stmt = (
        select(StudentFee)
        .where(StudentFee.status != FeeStatus.waived.value)
        .order_by(StudentFee.created_at.asc())
    )
    if academic_year_id:
        stmt = stmt.where(StudentFee.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(StudentFee.term_id == term_id)
    result = await db.execute(stmt)

    updated_students = set()
    total_applied = Decimal("0")
    for fee in result.scalars().all():
        before = money(fee.discount_amount)
        invoice = await _invoice_for_fee(db, fee.id)
        aid_amount, _ = await apply_aid_to_fee(db, fee, invoice, changed_by)
        total_applied += aid_amount
        if aid_amount != before:
            updated_students.add(fee.student_id)
    await db.commit()

    total_applied = money(total_applied)
    logger.info("Aid recalculated: %d student(s) updated, %s applied", len(updated_students), total_applied)
    return RecalculateAidResult(
        students_updated=len(updated_students),
        total_aid_applied=total_applied,
        message=(
            f"Aid recalculated for {len(updated_students)} student(s). "
            f"Total aid applied: {format_money(total_applied)}"
        ),
    )
