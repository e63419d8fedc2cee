"""Fees service: fee structures, student fee assignment (single and bulk), audit trail. Financial logic with audit."""

from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.invoices.service import create_invoice_for_fee
from schoolms.core.audit import log_fee_audit
from schoolms.core.enums import FeeStatus, StudentType
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import (
    AcademicYear,
    FeeAuditLog,
    FeeStructure,
    FeeStructureItem,
    Invoice,
    Student,
    StudentFee,
    Term,
)
from schoolms.core.numbering import INVOICE_PREFIX, next_number

from .ledger import fee_snapshot, money, to_decimal
from .schemas import (
    AssignStudentFeesResult,
    BulkAssignFeesResult,
    BulkAssignPreview,
    BulkAssignTypePreview,
    FeeAuditLogResponse,
    FeeStructureCreate,
    FeeStructureItemResponse,
    FeeStructureResponse,
    StudentFeeResponse,
)

logger = get_logger("fees")


def structure_name(student_type: str, term_name: str, year_name: str) -> str:
    label = "Internal Students" if student_type == StudentType.INTERNAL.value else "External Students"
    return f"{label} - {term_name} {year_name}"


async def _get_period(db: AsyncSession, academic_year_id: UUID, term_id: UUID) -> Tuple[AcademicYear, Term]:
    ay = await db.get(AcademicYear, academic_year_id)
    term = await db.get(Term, term_id)
    if not ay or not term or term.academic_year_id != ay.id:
        raise ServiceError("Invalid academic year or term", status.HTTP_400_BAD_REQUEST)
    return ay, term


# --- Fee Structure ---
async def _structure_to_response(db: AsyncSession, fs: FeeStructure) -> FeeStructureResponse:
    items_result = await db.execute(
        select(FeeStructureItem)
        .where(FeeStructureItem.fee_structure_id == fs.id)
        .order_by(FeeStructureItem.display_order.asc())
    )
    ay = await db.get(AcademicYear, fs.academic_year_id)
    term = await db.get(Term, fs.term_id)
    return FeeStructureResponse(
        id=fs.id,
        name=fs.name,
        academic_year_id=fs.academic_year_id,
        academic_year_name=ay.name if ay else None,
        term_id=fs.term_id,
        term_name=term.name if term else None,
        student_type=fs.student_type,
        total_amount=fs.total_amount,
        due_date=fs.due_date,
        is_active=fs.is_active,
        notes=fs.notes,
        created_at=fs.created_at,
        items=[FeeStructureItemResponse.model_validate(i) for i in items_result.scalars().all()],
    )


async def create_fee_structure(
    db: AsyncSession,
    payload: FeeStructureCreate,
    created_by: Optional[UUID],
) -> FeeStructureResponse:
    """Create the structure for one (year, term, student type). total_amount = sum of items."""
    ay, term = await _get_period(db, payload.academic_year_id, payload.term_id)
    student_type = payload.student_type.value
    name = structure_name(student_type, term.name, ay.name)

    existing = await db.execute(
        select(FeeStructure.id).where(
            FeeStructure.academic_year_id == ay.id,
            FeeStructure.term_id == term.id,
            FeeStructure.student_type == student_type,
        )
    )
    if existing.scalar_one_or_none():
        raise ServiceError(f"Fee structure '{name}' already exists", status.HTTP_409_CONFLICT)

    total = money(sum((to_decimal(i.amount) for i in payload.items), Decimal("0")))
    try:
        fs = FeeStructure(
            name=name,
            academic_year_id=ay.id,
            term_id=term.id,
            student_type=student_type,
            total_amount=total,
            due_date=payload.due_date,
            is_active=True,
            notes=payload.notes,
            created_by=created_by,
        )
        db.add(fs)
        await db.flush()
        for index, item in enumerate(payload.items, start=1):
            db.add(
                FeeStructureItem(
                    fee_structure_id=fs.id,
                    item_name=item.item_name.strip(),
                    description=item.description,
                    amount=money(item.amount),
                    is_mandatory=item.is_mandatory,
                    display_order=item.display_order or index,
                )
            )
        await log_fee_audit(
            db, "fee_structures", fs.id, "CREATE", None,
            {"name": name, "total_amount": str(total), "items": len(payload.items)},
            created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"Fee structure '{name}' already exists", status.HTTP_409_CONFLICT)

    logger.info("Created fee structure %s (%s)", name, total)
    return await _structure_to_response(db, fs)


async def list_fee_structures(
    db: AsyncSession,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    active_only: bool = False,
) -> List[FeeStructureResponse]:
    stmt = select(FeeStructure)
    if academic_year_id:
        stmt = stmt.where(FeeStructure.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(FeeStructure.term_id == term_id)
    if active_only:
        stmt = stmt.where(FeeStructure.is_active.is_(True))
    result = await db.execute(stmt.order_by(FeeStructure.created_at.desc()))
    return [await _structure_to_response(db, fs) for fs in result.scalars().all()]


async def get_fee_structure(db: AsyncSession, fee_structure_id: UUID) -> FeeStructureResponse:
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    return await _structure_to_response(db, fs)


async def deactivate_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    changed_by: Optional[UUID],
) -> FeeStructureResponse:
    """Soft delete. Existing student fees keep their snapshot amounts."""
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    if fs.is_active:
        fs.is_active = False
        await log_fee_audit(
            db, "fee_structures", fs.id, "DEACTIVATE",
            {"is_active": True}, {"is_active": False}, changed_by,
        )
        await db.commit()
    return await _structure_to_response(db, fs)


async def get_active_structure(
    db: AsyncSession,
    academic_year_id: UUID,
    term_id: UUID,
    student_type: str,
) -> Optional[FeeStructure]:
    result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.academic_year_id == academic_year_id,
            FeeStructure.term_id == term_id,
            FeeStructure.student_type == student_type,
            FeeStructure.is_active.is_(True),
        )
    )
    return result.scalars().first()


def _new_student_fee(student: Student, fs: FeeStructure, assigned_by: Optional[UUID]) -> StudentFee:
    return StudentFee(
        student_id=student.id,
        fee_structure_id=fs.id,
        academic_year_id=fs.academic_year_id,
        term_id=fs.term_id,
        total_amount=fs.total_amount,
        amount_paid=Decimal("0"),
        balance=fs.total_amount,
        discount_amount=Decimal("0"),
        status=FeeStatus.unpaid.value,
        due_date=fs.due_date,
        assigned_by=assigned_by,
    )


# --- Student fee assignment ---
async def assign_student_fees(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: UUID,
    assigned_by: Optional[UUID],
) -> AssignStudentFeesResult:
    """
    Assign the active structure for the student's type and invoice it immediately.
    Idempotent per (student, year, term); a missing structure skips without error.
    """
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")

    existing = await db.execute(
        select(StudentFee.id).where(
            StudentFee.student_id == student_id,
            StudentFee.academic_year_id == academic_year_id,
            StudentFee.term_id == term_id,
        )
    )
    existing_id = existing.scalar_one_or_none()
    if existing_id:
        return AssignStudentFeesResult(
            fee_assigned=False,
            status="existing",
            student_fee_id=existing_id,
            message="Student already has fees assigned for this term",
        )

    fs = await get_active_structure(db, academic_year_id, term_id, student.student_type)
    if not fs:
        logger.warning(
            "No active fee structure for %s students in term %s; fee assignment skipped",
            student.student_type, term_id,
        )
        return AssignStudentFeesResult(
            fee_assigned=False,
            status="skipped",
            message=f"No active fee structure found for {student.student_type} students. Fee assignment skipped.",
        )

    items_result = await db.execute(
        select(FeeStructureItem)
        .where(FeeStructureItem.fee_structure_id == fs.id)
        .order_by(FeeStructureItem.display_order.asc())
    )
    try:
        fee = _new_student_fee(student, fs, assigned_by)
        db.add(fee)
        await db.flush()
        await log_fee_audit(db, "student_fees", fee.id, "CREATE", None, fee_snapshot(fee), assigned_by)
        invoice_number = await next_number(db, Invoice.invoice_number, INVOICE_PREFIX)
        invoice = await create_invoice_for_fee(
            db, fee, items_result.scalars().all(), invoice_number, assigned_by
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Fees were already assigned to this student for this term", status.HTTP_409_CONFLICT)

    logger.info(
        "Assigned %s in fees to student %s (%s), invoice %s",
        fs.total_amount, student.student_number, student.student_type, invoice.invoice_number,
    )
    return AssignStudentFeesResult(
        fee_assigned=True,
        status="assigned",
        amount=fs.total_amount,
        student_fee_id=fee.id,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        message=f"Successfully assigned {fs.total_amount} in fees and generated invoice {invoice.invoice_number}",
    )


async def _bulk_candidates(db: AsyncSession, academic_year_id: UUID, term_id: UUID):
    structures_result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.academic_year_id == academic_year_id,
            FeeStructure.term_id == term_id,
            FeeStructure.is_active.is_(True),
        )
    )
    structures = {fs.student_type: fs for fs in structures_result.scalars().all()}

    students_result = await db.execute(select(Student).where(Student.is_active.is_(True)))
    students = students_result.scalars().all()

    assigned_result = await db.execute(
        select(StudentFee.student_id).where(
            StudentFee.academic_year_id == academic_year_id,
            StudentFee.term_id == term_id,
        )
    )
    assigned_ids = {row[0] for row in assigned_result.all()}
    return structures, students, assigned_ids


async def bulk_assign_fees(
    db: AsyncSession,
    academic_year_id: UUID,
    term_id: UUID,
    assigned_by: Optional[UUID],
) -> BulkAssignFeesResult:
    """Assign the matching structure to every active student without a fee record for the term. Invoices are generated separately."""
    await _get_period(db, academic_year_id, term_id)
    structures, students, assigned_ids = await _bulk_candidates(db, academic_year_id, term_id)
    if not structures:
        raise ServiceError(
            "No fee structures found. Please create at least one fee structure.",
            status.HTTP_400_BAD_REQUEST,
        )
    if not students:
        raise ServiceError("No students found in the system", status.HTTP_400_BAD_REQUEST)

    counts = {StudentType.INTERNAL.value: 0, StudentType.EXTERNAL.value: 0}
    skipped = 0
    total = Decimal("0")
    new_fees: List[StudentFee] = []
    for student in students:
        if student.id in assigned_ids:
            skipped += 1
            continue
        fs = structures.get(student.student_type)
        if not fs:
            continue
        fee = _new_student_fee(student, fs, assigned_by)
        db.add(fee)
        new_fees.append(fee)
        counts[student.student_type] += 1
        total += to_decimal(fs.total_amount)

    if not new_fees:
        if skipped:
            raise ServiceError(
                f"All {skipped} students already have fees assigned for this term",
                status.HTTP_400_BAD_REQUEST,
            )
        raise ServiceError("No students to assign fees to", status.HTTP_400_BAD_REQUEST)

    try:
        await db.flush()
        for fee in new_fees:
            await log_fee_audit(db, "student_fees", fee.id, "CREATE", None, fee_snapshot(fee), assigned_by)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Fees were assigned concurrently for this term; please retry", status.HTTP_409_CONFLICT)

    internal = counts[StudentType.INTERNAL.value]
    external = counts[StudentType.EXTERNAL.value]
    logger.info(
        "Bulk assigned fees for term %s: %d internal, %d external, %d skipped",
        term_id, internal, external, skipped,
    )
    message = f"Successfully assigned fees to {internal + external} students ({internal} internal, {external} external)"
    if skipped:
        message += f". Skipped {skipped} students who already have fees assigned."
    return BulkAssignFeesResult(
        internal_count=internal,
        external_count=external,
        total_count=internal + external,
        skipped_count=skipped,
        total_amount=money(total),
        message=message,
    )


async def preview_bulk_assignment(db: AsyncSession, academic_year_id: UUID, term_id: UUID) -> BulkAssignPreview:
    structures, students, assigned_ids = await _bulk_candidates(db, academic_year_id, term_id)
    if not structures:
        raise ServiceError("No active fee structures found for this term", status.HTTP_400_BAD_REQUEST)

    def _type_preview(student_type: str) -> BulkAssignTypePreview:
        fs = structures.get(student_type)
        count = sum(1 for s in students if s.student_type == student_type and s.id not in assigned_ids)
        amount = money(fs.total_amount) if fs else money(0)
        return BulkAssignTypePreview(
            count=count,
            amount_per_student=amount,
            total=money(amount * count),
            structure_name=fs.name if fs else "Not created",
        )

    internal = _type_preview(StudentType.INTERNAL.value)
    external = _type_preview(StudentType.EXTERNAL.value)
    return BulkAssignPreview(
        internal=internal,
        external=external,
        total_students=internal.count + external.count,
        total_expected_revenue=money(internal.total + external.total),
        already_assigned=len(assigned_ids),
    )


async def list_student_fees(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
) -> List[StudentFeeResponse]:
    stmt = (
        select(StudentFee, FeeStructure.name, AcademicYear.name, Term.name)
        .join(FeeStructure, FeeStructure.id == StudentFee.fee_structure_id)
        .join(AcademicYear, AcademicYear.id == StudentFee.academic_year_id)
        .join(Term, Term.id == StudentFee.term_id)
        .where(StudentFee.student_id == student_id)
    )
    if academic_year_id:
        stmt = stmt.where(StudentFee.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(StudentFee.term_id == term_id)
    result = await db.execute(stmt.order_by(StudentFee.created_at.desc()))
    return [
        StudentFeeResponse(
            id=fee.id,
            student_id=fee.student_id,
            fee_structure_id=fee.fee_structure_id,
            fee_structure_name=fs_name,
            academic_year_id=fee.academic_year_id,
            academic_year_name=year_name,
            term_id=fee.term_id,
            term_name=term_name,
            total_amount=fee.total_amount,
            amount_paid=fee.amount_paid,
            discount_amount=fee.discount_amount,
            discount_reason=fee.discount_reason,
            balance=fee.balance,
            status=fee.status,
            due_date=fee.due_date,
            assigned_at=fee.assigned_at,
        )
        for fee, fs_name, year_name, term_name in result.all()
    ]


# --- Audit ---
async def list_fee_audit_logs(
    db: AsyncSession,
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
    limit: int = 100,
) -> List[FeeAuditLogResponse]:
    stmt = select(FeeAuditLog)
    if reference_table:
        stmt = stmt.where(FeeAuditLog.reference_table == reference_table)
    if reference_id:
        stmt = stmt.where(FeeAuditLog.reference_id == reference_id)
    result = await db.execute(stmt.order_by(FeeAuditLog.created_at.desc()).limit(limit))
    return [FeeAuditLogResponse.model_validate(log) for log in result.scalars().all()]
