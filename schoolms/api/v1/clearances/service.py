"""Clearance requests gated on fee payment, with certificate numbers for approved requests."""

from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import money
from schoolms.auth.models import User
from schoolms.core.config import settings
from schoolms.core.enums import CLEARANCE_ACTIVE_STATUSES, ClearanceStatus
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import AcademicYear, ClearanceRequest, ClearanceType, SchoolClass, Student
from schoolms.core.numbering import CLEARANCE_PREFIX, NumberSequence, next_number

from . import eligibility
from .schemas import (
    BulkClearanceOutcome,
    BulkClearancePreview,
    BulkClearancePreviewStudent,
    BulkClearanceRequest,
    BulkClearanceResult,
    ClearanceDecisionRequest,
    ClearanceRequestCreate,
    ClearanceRequestResponse,
    ClearanceTypeCreate,
    ClearanceTypeResponse,
    EligibilityResponse,
    RequestClearanceResult,
    StudentClearanceStatus,
)

logger = get_logger("clearances")


# --- Clearance types ---
async def create_clearance_type(db: AsyncSession, payload: ClearanceTypeCreate) -> ClearanceTypeResponse:
    clearance_type = ClearanceType(**payload.model_dump(), is_active=True)
    db.add(clearance_type)
    try:
        await db.commit()
        await db.refresh(clearance_type)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"Clearance type '{payload.name}' already exists", status.HTTP_409_CONFLICT)
    return ClearanceTypeResponse.model_validate(clearance_type)


async def list_clearance_types(db: AsyncSession, active_only: bool = True) -> List[ClearanceTypeResponse]:
    stmt = select(ClearanceType).order_by(ClearanceType.display_order.asc(), ClearanceType.name.asc())
    if active_only:
        stmt = stmt.where(ClearanceType.is_active.is_(True))
    result = await db.execute(stmt)
    return [ClearanceTypeResponse.model_validate(t) for t in result.scalars().all()]


async def get_clearance_type_model(db: AsyncSession, clearance_type_id: UUID) -> ClearanceType:
    clearance_type = await db.get(ClearanceType, clearance_type_id)
    if not clearance_type:
        raise NotFoundError("Clearance type not found")
    return clearance_type


# --- Eligibility ---
def _eligibility_response(result: eligibility.Eligibility) -> EligibilityResponse:
    return EligibilityResponse(
        eligible=result.eligible,
        payment_percentage=result.payment_percentage,
        required_percentage=result.required_percentage,
        total_fees=result.totals.total_fees,
        total_paid=result.totals.total_paid,
        total_aid=result.totals.total_aid,
        outstanding_balance=result.totals.outstanding_balance,
        reason=result.reason,
    )


async def _evaluate(
    db: AsyncSession,
    student_id: UUID,
    clearance_type: ClearanceType,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    threshold_override=None,
) -> eligibility.Eligibility:
    totals = await eligibility.get_fee_totals(db, student_id, academic_year_id, term_id)
    return eligibility.evaluate(
        totals,
        clearance_type.minimum_payment_percentage,
        clearance_type.requires_full_payment,
        threshold_override,
    )


async def check_eligibility(
    db: AsyncSession,
    student_id: UUID,
    clearance_type_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
) -> EligibilityResponse:
    if not await db.get(Student, student_id):
        raise NotFoundError("Student not found")
    clearance_type = await get_clearance_type_model(db, clearance_type_id)
    result = await _evaluate(db, student_id, clearance_type, academic_year_id, term_id)
    return _eligibility_response(result)


# --- Requests ---
def _request_select():
    return (
        select(ClearanceRequest, User.first_name, User.last_name, Student.student_number, SchoolClass.name, ClearanceType.display_name)
        .join(Student, Student.id == ClearanceRequest.student_id)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .join(ClearanceType, ClearanceType.id == ClearanceRequest.clearance_type_id)
    )


def _row_to_response(row) -> ClearanceRequestResponse:
    req, first_name, last_name, student_number, class_name, type_name = row
    return ClearanceRequestResponse(
        id=req.id,
        student_id=req.student_id,
        student_name=f"{first_name} {last_name}",
        student_number=student_number,
        class_name=class_name,
        clearance_type_id=req.clearance_type_id,
        clearance_type_name=type_name,
        academic_year_id=req.academic_year_id,
        term_id=req.term_id,
        status=req.status,
        total_fees=money(req.total_fees),
        total_paid=money(req.total_paid),
        total_aid=money(req.total_aid),
        outstanding_balance=money(req.outstanding_balance),
        payment_percentage=money(req.payment_percentage),
        required_percentage=money(req.required_percentage),
        certificate_number=req.certificate_number,
        valid_from=req.valid_from,
        valid_until=req.valid_until,
        request_notes=req.request_notes,
        override_reason=req.override_reason,
        rejection_reason=req.rejection_reason,
        approved_at=req.approved_at,
        created_at=req.created_at,
    )


async def get_clearance_request(db: AsyncSession, request_id: UUID) -> ClearanceRequestResponse:
    result = await db.execute(_request_select().where(ClearanceRequest.id == request_id))
    row = result.first()
    if not row:
        raise NotFoundError("Clearance request not found")
    return _row_to_response(row)


async def _active_request(
    db: AsyncSession,
    student_id: UUID,
    clearance_type_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
) -> Optional[ClearanceRequest]:
    stmt = select(ClearanceRequest).where(
        ClearanceRequest.student_id == student_id,
        ClearanceRequest.clearance_type_id == clearance_type_id,
        ClearanceRequest.academic_year_id == academic_year_id,
        ClearanceRequest.status.in_(CLEARANCE_ACTIVE_STATUSES),
    )
    if term_id is None:
        stmt = stmt.where(ClearanceRequest.term_id.is_(None))
    else:
        stmt = stmt.where(ClearanceRequest.term_id == term_id)
    result = await db.execute(stmt)
    return result.scalars().first()


def _approve(
    req: ClearanceRequest,
    new_status: str,
    certificate_number: str,
    approved_by: Optional[UUID],
    today: Optional[date] = None,
) -> None:
    today = today or date.today()
    req.status = new_status
    req.certificate_number = certificate_number
    req.valid_from = today
    req.valid_until = today + timedelta(days=settings.clearance_validity_days)
    req.approved_by = approved_by
    req.approved_at = datetime.utcnow()


def _new_request(
    student_id: UUID,
    clearance_type_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    result: eligibility.Eligibility,
    requested_by: Optional[UUID],
    notes: Optional[str] = None,
) -> ClearanceRequest:
    return ClearanceRequest(
        student_id=student_id,
        clearance_type_id=clearance_type_id,
        academic_year_id=academic_year_id,
        term_id=term_id,
        status=ClearanceStatus.pending.value,
        total_fees=result.totals.total_fees,
        total_paid=result.totals.total_paid,
        total_aid=result.totals.total_aid,
        outstanding_balance=result.totals.outstanding_balance,
        payment_percentage=result.payment_percentage,
        required_percentage=result.required_percentage,
        request_notes=notes,
        requested_by=requested_by,
    )


async def request_clearance(
    db: AsyncSession,
    payload: ClearanceRequestCreate,
    requested_by: Optional[UUID],
) -> RequestClearanceResult:
    """Create a request; it is auto-approved with a certificate when the student is eligible, else left pending."""
    if not await db.get(Student, payload.student_id):
        raise NotFoundError("Student not found")
    if not await db.get(AcademicYear, payload.academic_year_id):
        raise NotFoundError("Academic year not found")
    clearance_type = await get_clearance_type_model(db, payload.clearance_type_id)
    if not clearance_type.is_active:
        raise ServiceError("Clearance type is not active", status.HTTP_400_BAD_REQUEST)

    existing = await _active_request(
        db, payload.student_id, clearance_type.id, payload.academic_year_id, payload.term_id
    )
    if existing:
        suffix = f" ({existing.certificate_number})" if existing.certificate_number else ""
        raise ServiceError(f"An active clearance request already exists{suffix}", status.HTTP_409_CONFLICT)

    result = await _evaluate(db, payload.student_id, clearance_type, payload.academic_year_id, payload.term_id)
    req = _new_request(
        payload.student_id,
        clearance_type.id,
        payload.academic_year_id,
        payload.term_id,
        result,
        requested_by,
        payload.notes,
    )
    if result.eligible:
        certificate_number = await next_number(db, ClearanceRequest.certificate_number, CLEARANCE_PREFIX)
        _approve(req, ClearanceStatus.auto_approved.value, certificate_number, requested_by)
    db.add(req)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Could not create clearance request, please retry", status.HTTP_409_CONFLICT)

    display_name = clearance_type.display_name
    if result.eligible:
        logger.info("Clearance %s auto-approved for student %s", req.certificate_number, payload.student_id)
        message = f"{display_name} automatically approved! Certificate: {req.certificate_number}"
    else:
        message = (
            f"{display_name} request submitted for approval. "
            f"Payment: {round(result.payment_percentage)}% (Required: {result.required_percentage}%)"
        )
    return RequestClearanceResult(
        clearance=await get_clearance_request(db, req.id),
        auto_approved=result.eligible,
        message=message,
    )


async def decide_clearance(
    db: AsyncSession,
    request_id: UUID,
    payload: ClearanceDecisionRequest,
    decided_by: Optional[UUID],
) -> ClearanceRequestResponse:
    req = await db.get(ClearanceRequest, request_id)
    if not req:
        raise NotFoundError("Clearance request not found")
    if req.status != ClearanceStatus.pending.value:
        raise ServiceError(f"Clearance already {req.status}", status.HTTP_400_BAD_REQUEST)
    clearance_type = await get_clearance_type_model(db, req.clearance_type_id)

    if payload.action == "reject":
        req.status = ClearanceStatus.rejected.value
        req.rejection_reason = payload.reason
        req.approved_by = decided_by
        req.approved_at = datetime.utcnow()
        await db.commit()
        logger.info("Clearance request %s rejected", req.id)
        return await get_clearance_request(db, request_id)

    # Re-check against current balances; the snapshot is refreshed on approval
    result = await _evaluate(db, req.student_id, clearance_type, req.academic_year_id, req.term_id)
    needs_override = not result.eligible
    if needs_override and not clearance_type.allows_override:
        raise ServiceError(
            f"{clearance_type.display_name} does not allow override. Student must meet payment requirement.",
            status.HTTP_400_BAD_REQUEST,
        )
    if needs_override and not (payload.reason or "").strip():
        raise ServiceError(
            "Override reason is required when approving below payment threshold",
            status.HTTP_400_BAD_REQUEST,
        )

    req.total_fees = result.totals.total_fees
    req.total_paid = result.totals.total_paid
    req.total_aid = result.totals.total_aid
    req.outstanding_balance = result.totals.outstanding_balance
    req.payment_percentage = result.payment_percentage
    req.required_percentage = result.required_percentage
    req.override_reason = payload.reason if needs_override else None
    certificate_number = await next_number(db, ClearanceRequest.certificate_number, CLEARANCE_PREFIX)
    _approve(req, ClearanceStatus.manually_approved.value, certificate_number, decided_by)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Could not approve clearance request, please retry", status.HTTP_409_CONFLICT)
    logger.info(
        "Clearance request %s approved%s, certificate %s",
        req.id, " with override" if needs_override else "", req.certificate_number,
    )
    return await get_clearance_request(db, request_id)


async def get_student_clearance_status(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
) -> StudentClearanceStatus:
    stmt = _request_select().where(
        ClearanceRequest.student_id == student_id,
        ClearanceRequest.academic_year_id == academic_year_id,
    )
    if term_id is None:
        stmt = stmt.where(ClearanceRequest.term_id.is_(None))
    else:
        stmt = stmt.where(ClearanceRequest.term_id == term_id)
    result = await db.execute(stmt.order_by(ClearanceRequest.created_at.desc()))
    return StudentClearanceStatus(
        clearances=[_row_to_response(row) for row in result.all()],
        available_types=await list_clearance_types(db),
    )


async def list_pending_clearances(
    db: AsyncSession,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    clearance_type_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
) -> List[ClearanceRequestResponse]:
    stmt = _request_select().where(ClearanceRequest.status == ClearanceStatus.pending.value)
    if academic_year_id:
        stmt = stmt.where(ClearanceRequest.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(ClearanceRequest.term_id == term_id)
    if clearance_type_id:
        stmt = stmt.where(ClearanceRequest.clearance_type_id == clearance_type_id)
    if class_id:
        stmt = stmt.where(Student.class_id == class_id)
    result = await db.execute(stmt.order_by(ClearanceRequest.created_at.asc()))
    return [_row_to_response(row) for row in result.all()]


# --- Bulk ---
async def _bulk_students(db: AsyncSession, class_id: Optional[UUID]) -> List[Tuple]:
    stmt = (
        select(Student.id, Student.student_number, User.first_name, User.last_name, SchoolClass.name)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .where(Student.is_active.is_(True))
        .order_by(User.last_name.asc(), User.first_name.asc())
    )
    if class_id:
        stmt = stmt.where(Student.class_id == class_id)
    result = await db.execute(stmt)
    students = result.all()
    if not students:
        raise NotFoundError("No students found matching criteria")
    return students


async def bulk_approve_clearances(
    db: AsyncSession,
    payload: BulkClearanceRequest,
    requested_by: Optional[UUID],
) -> BulkClearanceResult:
    """
    Create a clearance request for every active student (optionally one class).
    Students meeting the threshold are auto-approved; the rest stay pending. Each student commits separately.
    """
    clearance_type = await get_clearance_type_model(db, payload.clearance_type_id)
    type_id = clearance_type.id
    minimum = clearance_type.minimum_payment_percentage
    full_payment = clearance_type.requires_full_payment
    students = await _bulk_students(db, payload.class_id)
    certificates = await NumberSequence.start(db, ClearanceRequest.certificate_number, CLEARANCE_PREFIX)

    outcome = BulkClearanceOutcome()
    for student_id, _number, first_name, last_name, _class_name in students:
        name = f"{first_name} {last_name}"
        if await _active_request(db, student_id, type_id, payload.academic_year_id, payload.term_id):
            outcome.existing.append(name)
            continue
        totals = await eligibility.get_fee_totals(db, student_id, payload.academic_year_id, payload.term_id)
        result = eligibility.evaluate(totals, minimum, full_payment, payload.minimum_payment_percentage)
        req = _new_request(student_id, type_id, payload.academic_year_id, payload.term_id, result, requested_by)
        if result.eligible:
            _approve(req, ClearanceStatus.auto_approved.value, certificates.next(), requested_by)
        db.add(req)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning("Bulk clearance failed for student %s", student_id)
            outcome.failed.append(name)
            continue
        if result.eligible:
            outcome.approved.append(name)
        else:
            outcome.pending.append(name)

    summary = {
        "total": len(students),
        "approved": len(outcome.approved),
        "pending": len(outcome.pending),
        "existing": len(outcome.existing),
        "failed": len(outcome.failed),
    }
    logger.info("Bulk clearance for type %s: %s", type_id, summary)
    return BulkClearanceResult(
        results=outcome,
        summary=summary,
        message=(
            f"Bulk clearance complete: {summary['approved']} approved, {summary['pending']} pending review, "
            f"{summary['existing']} already cleared, {summary['failed']} failed"
        ),
    )


async def preview_bulk_clearance(db: AsyncSession, payload: BulkClearanceRequest) -> BulkClearancePreview:
    clearance_type = await get_clearance_type_model(db, payload.clearance_type_id)
    students = await _bulk_students(db, payload.class_id)

    eligible: List[BulkClearancePreviewStudent] = []
    ineligible: List[BulkClearancePreviewStudent] = []
    threshold = None
    for student_id, number, first_name, last_name, class_name in students:
        totals = await eligibility.get_fee_totals(db, student_id, payload.academic_year_id, payload.term_id)
        result = eligibility.evaluate(
            totals,
            clearance_type.minimum_payment_percentage,
            clearance_type.requires_full_payment,
            payload.minimum_payment_percentage,
        )
        threshold = result.required_percentage
        entry = BulkClearancePreviewStudent(
            student_id=student_id,
            student_number=number,
            name=f"{first_name} {last_name}",
            class_name=class_name,
            payment_percentage=result.payment_percentage,
            total_fees=totals.total_fees,
            total_paid=totals.total_paid,
            outstanding_balance=totals.outstanding_balance,
        )
        (eligible if result.eligible else ineligible).append(entry)

    return BulkClearancePreview(
        clearance_type=clearance_type.display_name,
        threshold=threshold,
        eligible=eligible,
        ineligible=ineligible,
    )
