"""Students: registration (single and bulk), listing, guardians. Registration assigns term fees when a period is active."""

from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.academic_years.service import get_active_period
from schoolms.api.v1.classes.service import get_class_by_name
from schoolms.api.v1.fees.schemas import AssignStudentFeesResult
from schoolms.api.v1.fees.service import assign_student_fees
from schoolms.api.v1.subjects.service import enrol_default_subjects
from schoolms.auth.models import User
from schoolms.auth.services import create_account, get_user_by_email
from schoolms.core.enums import UserRole
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import SchoolClass, Student, StudentGuardian

from . import bulk_upload
from .schemas import (
    BulkRegisteredStudent,
    BulkUploadError,
    BulkUploadPreview,
    BulkUploadResult,
    GuardianChildResponse,
    GuardianLinkCreate,
    GuardianResponse,
    StudentCreate,
    StudentDetailResponse,
    StudentListResponse,
    StudentRegistrationResult,
    StudentResponse,
    StudentUpdate,
)

logger = get_logger("students")


def _to_response(student: Student, user: User, class_name: Optional[str]) -> StudentResponse:
    return StudentResponse(
        id=student.id,
        user_id=user.id,
        student_number=student.student_number,
        first_name=user.first_name,
        middle_name=user.middle_name,
        last_name=user.last_name,
        full_name=user.full_name,
        email=user.email,
        class_id=student.class_id,
        class_name=class_name,
        student_type=student.student_type,
        gender=student.gender,
        date_of_birth=student.date_of_birth,
        guardian_email=student.guardian_email,
        phone_number=student.phone_number,
        address=student.address,
        is_active=student.is_active,
        created_at=student.created_at,
    )


def _student_select():
    return (
        select(Student, User, SchoolClass.name)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
    )


async def student_number_exists(db: AsyncSession, student_number: str) -> bool:
    result = await db.execute(
        select(Student.id).where(func.lower(Student.student_number) == student_number.strip().lower())
    )
    return result.scalar_one_or_none() is not None


async def _auto_assign_fees(
    db: AsyncSession,
    student_id: UUID,
    assigned_by: Optional[UUID],
) -> Tuple[Optional[AssignStudentFeesResult], Optional[str]]:
    """Assign fees for the active period. Failures are reported, never raised."""
    ay, term = await get_active_period(db)
    if not ay or not term:
        return None, None
    try:
        return await assign_student_fees(db, student_id, ay.id, term.id, assigned_by), None
    except ServiceError as e:
        await db.rollback()
        logger.warning("Fee assignment failed for student %s: %s", student_id, e.message)
        return None, e.message


async def _auto_enrol_subjects(db: AsyncSession, student_id: UUID) -> int:
    """Enrol in the class's default subjects for the active period. Failures are logged, never raised."""
    ay, term = await get_active_period(db)
    if not ay or not term:
        return 0
    try:
        result = await enrol_default_subjects(db, student_id, ay.id, term.id)
    except ServiceError as e:
        await db.rollback()
        logger.warning("Subject enrolment failed for student %s: %s", student_id, e.message)
        return 0
    return result.enrolled


async def _create_student(
    db: AsyncSession,
    *,
    first_name: str,
    middle_name: Optional[str],
    last_name: str,
    email: str,
    student_number: str,
    student_type: str,
    class_id: Optional[UUID],
    gender: str,
    date_of_birth,
    guardian_email: Optional[str],
    phone_number: Optional[str],
    address: Optional[str],
) -> Tuple[Student, User, str]:
    """Add user + student to the session. Caller commits."""
    if await student_number_exists(db, student_number):
        raise ServiceError(f'Student ID "{student_number}" already exists', status.HTTP_409_CONFLICT)
    user, temporary_password = await create_account(
        db,
        email=email,
        first_name=first_name,
        middle_name=middle_name,
        last_name=last_name,
        phone_number=phone_number,
        role=UserRole.STUDENT.value,
    )
    student = Student(
        user_id=user.id,
        student_number=student_number.strip(),
        class_id=class_id,
        student_type=student_type,
        gender=gender,
        date_of_birth=date_of_birth,
        guardian_email=guardian_email.lower() if guardian_email else None,
        phone_number=phone_number,
        address=address,
        is_active=True,
    )
    db.add(student)
    await db.flush()
    return student, user, temporary_password


async def register_student(
    db: AsyncSession,
    payload: StudentCreate,
    registered_by: Optional[UUID],
) -> StudentRegistrationResult:
    class_name = None
    if payload.class_id:
        school_class = await db.get(SchoolClass, payload.class_id)
        if not school_class:
            raise NotFoundError("Class not found")
        class_name = school_class.name

    try:
        student, user, temporary_password = await _create_student(
            db,
            first_name=payload.first_name,
            middle_name=payload.middle_name,
            last_name=payload.last_name,
            email=payload.email,
            student_number=payload.student_number,
            student_type=payload.student_type.value,
            class_id=payload.class_id,
            gender=payload.gender.value,
            date_of_birth=payload.date_of_birth,
            guardian_email=payload.guardian_email,
            phone_number=payload.phone_number,
            address=payload.address,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Student with this email or student ID already exists", status.HTTP_409_CONFLICT)

    logger.info("Registered student %s (%s)", student.student_number, student.student_type)
    # Built before fee assignment: a rollback there expires loaded instances
    response = _to_response(student, user, class_name)
    new_student_id = student.id
    fee_result, fee_error = await _auto_assign_fees(db, new_student_id, registered_by)
    subjects_enrolled = await _auto_enrol_subjects(db, new_student_id) if payload.class_id else 0
    return StudentRegistrationResult(
        student=response,
        temporary_password=temporary_password,
        fee_assignment=fee_result,
        fee_assignment_error=fee_error,
        subjects_enrolled=subjects_enrolled,
    )


async def list_students(
    db: AsyncSession,
    class_id: Optional[UUID] = None,
    student_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> StudentListResponse:
    stmt = _student_select()
    count_stmt = select(func.count(Student.id)).join(User, User.id == Student.user_id)
    filters = []
    if class_id:
        filters.append(Student.class_id == class_id)
    if student_type:
        filters.append(Student.student_type == student_type)
    if is_active is not None:
        filters.append(Student.is_active.is_(is_active))
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(User.first_name).like(term),
                func.lower(User.last_name).like(term),
                func.lower(User.email).like(term),
                func.lower(Student.student_number).like(term),
            )
        )
    if filters:
        stmt = stmt.where(*filters)
        count_stmt = count_stmt.where(*filters)

    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        stmt.order_by(User.last_name.asc(), User.first_name.asc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    result = await db.execute(stmt)
    return StudentListResponse(
        items=[_to_response(s, u, cname) for s, u, cname in result.all()],
        total=total,
        page=page,
        page_size=page_size,
    )


async def list_student_guardians(db: AsyncSession, student_id: UUID) -> List[GuardianResponse]:
    result = await db.execute(
        select(StudentGuardian, User)
        .join(User, User.id == StudentGuardian.guardian_id)
        .where(StudentGuardian.student_id == student_id)
        .order_by(StudentGuardian.is_primary.desc(), User.last_name.asc())
    )
    return [
        GuardianResponse(
            link_id=link.id,
            guardian_id=user.id,
            full_name=user.full_name,
            email=user.email,
            phone_number=user.phone_number,
            relationship=link.relationship,
            is_primary=link.is_primary,
        )
        for link, user in result.all()
    ]


async def get_student(db: AsyncSession, student_id: UUID) -> StudentDetailResponse:
    result = await db.execute(_student_select().where(Student.id == student_id))
    row = result.first()
    if not row:
        raise NotFoundError("Student not found")
    student, user, class_name = row
    base = _to_response(student, user, class_name)
    return StudentDetailResponse(**base.model_dump(), guardians=await list_student_guardians(db, student_id))


async def get_student_for_user(db: AsyncSession, user_id: UUID) -> StudentDetailResponse:
    result = await db.execute(select(Student.id).where(Student.user_id == user_id))
    student_id = result.scalar_one_or_none()
    if not student_id:
        raise NotFoundError("No student record for this account")
    return await get_student(db, student_id)


async def update_student(db: AsyncSession, student_id: UUID, payload: StudentUpdate) -> StudentDetailResponse:
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    data = payload.model_dump(exclude_unset=True)
    if data.get("class_id"):
        if not await db.get(SchoolClass, data["class_id"]):
            raise NotFoundError("Class not found")
    for key, value in data.items():
        if key == "student_type" and value is not None:
            value = value.value if hasattr(value, "value") else value
        if key == "guardian_email" and value:
            value = str(value).lower()
        setattr(student, key, value)
    await db.commit()
    return await get_student(db, student_id)


# --- Guardians ---
async def link_guardian(db: AsyncSession, student_id: UUID, payload: GuardianLinkCreate) -> GuardianResponse:
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")

    guardian = None
    if payload.guardian_id:
        guardian = await db.get(User, payload.guardian_id)
    elif payload.guardian_email:
        guardian = await get_user_by_email(db, payload.guardian_email)
    if not guardian:
        raise NotFoundError("Guardian account not found")
    if guardian.role != UserRole.GUARDIAN.value:
        raise ServiceError("User is not a guardian account", status.HTTP_400_BAD_REQUEST)

    existing = await db.execute(
        select(StudentGuardian).where(
            StudentGuardian.student_id == student_id,
            StudentGuardian.guardian_id == guardian.id,
        )
    )
    if existing.scalars().first():
        raise ServiceError("Guardian is already linked to this student", status.HTTP_409_CONFLICT)

    if payload.is_primary:
        current_primary = await db.execute(
            select(StudentGuardian).where(
                StudentGuardian.student_id == student_id,
                StudentGuardian.is_primary.is_(True),
            )
        )
        for link in current_primary.scalars().all():
            link.is_primary = False

    link = StudentGuardian(
        student_id=student_id,
        guardian_id=guardian.id,
        relationship=payload.relationship,
        is_primary=payload.is_primary,
    )
    db.add(link)
    try:
        await db.commit()
        await db.refresh(link)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Guardian is already linked to this student", status.HTTP_409_CONFLICT)
    return GuardianResponse(
        link_id=link.id,
        guardian_id=guardian.id,
        full_name=guardian.full_name,
        email=guardian.email,
        phone_number=guardian.phone_number,
        relationship=link.relationship,
        is_primary=link.is_primary,
    )


async def list_guardian_children(db: AsyncSession, guardian_id: UUID) -> List[GuardianChildResponse]:
    result = await db.execute(
        select(StudentGuardian, Student, User, SchoolClass.name)
        .join(Student, Student.id == StudentGuardian.student_id)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .where(StudentGuardian.guardian_id == guardian_id)
        .order_by(User.first_name.asc())
    )
    return [
        GuardianChildResponse(
            student_id=student.id,
            student_number=student.student_number,
            full_name=user.full_name,
            class_name=class_name,
            student_type=student.student_type,
            relationship=link.relationship,
            is_primary=link.is_primary,
        )
        for link, student, user, class_name in result.all()
    ]


# --- Bulk upload ---
def preview_bulk_upload(filename: Optional[str], content: bytes) -> BulkUploadPreview:
    """Parse and validate only. Raises bulk_upload.BulkUploadFileError for unusable files."""
    rows = bulk_upload.parse_upload(filename, content)
    valid, errors = bulk_upload.validate_rows(rows)
    return BulkUploadPreview(
        total_rows=len(rows),
        valid_count=len(valid),
        invalid_count=len(rows) - len(valid),
        errors=errors,
    )


async def bulk_register_students(
    db: AsyncSession,
    filename: Optional[str],
    content: bytes,
    registered_by: Optional[UUID],
) -> BulkUploadResult:
    """
    Register every valid row. Each row is its own transaction: a failing row never undoes earlier ones.
    Duplicates (email / student ID) are skipped; unknown classes and invalid rows are failures.
    """
    rows = bulk_upload.parse_upload(filename, content)
    valid, errors = bulk_upload.validate_rows(rows)
    invalid_rows = {e.row for e in errors}

    success = 0
    skipped = 0
    failed = len(invalid_rows)
    registered: List[BulkRegisteredStudent] = []
    seen_emails: set = set()
    seen_ids: set = set()

    for row_num, row in valid:
        email_key = row.email.lower()
        id_key = row.student_id.lower()
        if email_key in seen_emails or await get_user_by_email(db, row.email):
            skipped += 1
            errors.append(BulkUploadError(row=row_num, field="email", value=row.email, message="Email already exists in the system"))
            continue
        if id_key in seen_ids or await student_number_exists(db, row.student_id):
            skipped += 1
            errors.append(
                BulkUploadError(
                    row=row_num,
                    field="student_id",
                    value=row.student_id,
                    message=f'Student ID "{row.student_id}" already exists in the system',
                )
            )
            continue
        school_class = await get_class_by_name(db, row.class_name)
        if not school_class:
            failed += 1
            errors.append(
                BulkUploadError(
                    row=row_num,
                    field="class_name",
                    value=row.class_name,
                    message=f'Class "{row.class_name}" not found in the system',
                )
            )
            continue

        try:
            student, user, temporary_password = await _create_student(
                db,
                first_name=row.first_name,
                middle_name=row.middle_name,
                last_name=row.last_name,
                email=row.email,
                student_number=row.student_id,
                student_type=row.student_type,
                class_id=school_class.id,
                gender=row.gender,
                date_of_birth=row.date_of_birth,
                guardian_email=row.guardian_email,
                phone_number=row.phone_number,
                address=row.address,
            )
            await db.commit()
        except (ServiceError, IntegrityError) as e:
            await db.rollback()
            failed += 1
            message = e.message if isinstance(e, ServiceError) else "Database constraint violation"
            errors.append(BulkUploadError(row=row_num, field="row", value=row.email, message=message))
            continue

        seen_emails.add(email_key)
        seen_ids.add(id_key)
        success += 1
        new_student_id, student_number, email = student.id, student.student_number, user.email
        fee_result, fee_error = await _auto_assign_fees(db, new_student_id, registered_by)
        await _auto_enrol_subjects(db, new_student_id)
        if fee_error:
            errors.append(
                BulkUploadError(
                    row=row_num,
                    field="fees",
                    value=row.student_id,
                    message=f"Registered but fee assignment failed: {fee_error}",
                )
            )
        registered.append(
            BulkRegisteredStudent(
                row=row_num,
                student_id=new_student_id,
                student_number=student_number,
                email=email,
                temporary_password=temporary_password,
                fee_status=fee_result.status if fee_result else None,
            )
        )

    errors.sort(key=lambda e: e.row)
    logger.info(
        "Bulk upload processed %d rows: %d registered, %d failed, %d skipped",
        len(rows), success, failed, skipped,
    )
    message = f"Successfully registered {success} student(s)."
    if failed:
        message += f" {failed} failed."
    if skipped:
        message += f" {skipped} skipped (duplicates)."
    return BulkUploadResult(
        total_processed=len(rows),
        success_count=success,
        failure_count=failed,
        skipped_count=skipped,
        registered=registered,
        errors=errors,
        message=message,
    )
