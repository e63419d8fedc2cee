"""Teachers: registration (single and bulk) and listing. A teacher is a user plus the subjects and classes they teach."""

from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.classes.service import get_class_by_name
from schoolms.api.v1.departments.service import get_department_by_name
from schoolms.api.v1.students.schemas import BulkUploadError, BulkUploadPreview
from schoolms.api.v1.subjects.service import get_subject_by_name
from schoolms.auth.models import User
from schoolms.auth.services import create_account, get_user_by_email
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import Department, SchoolClass, Subject, Teacher, TeacherClass, TeacherSubject

from . import bulk_upload
from .schemas import (
    BulkRegisteredTeacher,
    TeacherBulkUploadResult,
    TeacherCreate,
    TeacherRegistrationResult,
    TeacherResponse,
)

logger = get_logger("teachers")


async def _assignments(db: AsyncSession, teacher_ids: Sequence[UUID]) -> Tuple[Dict[UUID, List[str]], Dict[UUID, List[str]]]:
    """Subject and class names per teacher."""
    subjects: Dict[UUID, List[str]] = {tid: [] for tid in teacher_ids}
    classes: Dict[UUID, List[str]] = {tid: [] for tid in teacher_ids}
    if not teacher_ids:
        return subjects, classes
    result = await db.execute(
        select(TeacherSubject.teacher_id, Subject.name)
        .join(Subject, Subject.id == TeacherSubject.subject_id)
        .where(TeacherSubject.teacher_id.in_(teacher_ids))
        .order_by(Subject.name)
    )
    for tid, name in result.all():
        subjects[tid].append(name)
    result = await db.execute(
        select(TeacherClass.teacher_id, SchoolClass.name)
        .join(SchoolClass, SchoolClass.id == TeacherClass.class_id)
        .where(TeacherClass.teacher_id.in_(teacher_ids), TeacherClass.status == "active")
        .order_by(SchoolClass.name)
    )
    for tid, name in result.all():
        classes[tid].append(name)
    return subjects, classes


def _to_response(
    teacher: Teacher,
    user: User,
    department_name: Optional[str],
    subjects: List[str],
    classes: List[str],
) -> TeacherResponse:
    return TeacherResponse(
        id=teacher.id,
        user_id=user.id,
        employee_number=teacher.employee_number,
        title=teacher.title,
        first_name=user.first_name,
        middle_name=user.middle_name,
        last_name=user.last_name,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        gender=teacher.gender,
        teacher_type=teacher.teacher_type,
        qualification=teacher.qualification,
        phone_number=user.phone_number,
        department_id=teacher.department_id,
        department_name=department_name,
        subjects=subjects,
        classes=classes,
        is_active=teacher.is_active,
        created_at=teacher.created_at,
    )


def _teacher_select():
    return (
        select(Teacher, User, Department.name)
        .join(User, User.id == Teacher.user_id)
        .outerjoin(Department, Department.id == Teacher.department_id)
    )


async def employee_number_exists(db: AsyncSession, employee_number: str) -> bool:
    result = await db.execute(
        select(Teacher.id).where(func.lower(Teacher.employee_number) == employee_number.strip().lower())
    )
    return result.scalar_one_or_none() is not None


async def _create_teacher(
    db: AsyncSession,
    *,
    title: Optional[str],
    first_name: str,
    middle_name: Optional[str],
    last_name: str,
    email: str,
    gender: str,
    employee_number: str,
    role: str,
    teacher_type: str,
    department_id: Optional[UUID],
    qualification: Optional[str],
    phone_number: Optional[str],
    subject_ids: Sequence[UUID],
    class_ids: Sequence[UUID],
) -> Tuple[Teacher, User, str]:
    """Add user + teacher + subject and class links to the session. Caller commits."""
    if await employee_number_exists(db, employee_number):
        raise ServiceError("Employee ID is already in use", status.HTTP_409_CONFLICT)
    user, temporary_password = await create_account(
        db,
        email=email,
        first_name=first_name,
        middle_name=middle_name,
        last_name=last_name,
        phone_number=phone_number,
        role=role,
    )
    teacher = Teacher(
        user_id=user.id,
        employee_number=employee_number.strip(),
        title=title,
        gender=gender,
        department_id=department_id,
        teacher_type=teacher_type,
        qualification=qualification,
        is_active=True,
    )
    db.add(teacher)
    await db.flush()
    for subject_id in dict.fromkeys(subject_ids):
        db.add(TeacherSubject(teacher_id=teacher.id, subject_id=subject_id))
    for class_id in dict.fromkeys(class_ids):
        db.add(TeacherClass(teacher_id=teacher.id, class_id=class_id, role="subject_teacher", status="active"))
    await db.flush()
    return teacher, user, temporary_password


async def register_teacher(db: AsyncSession, payload: TeacherCreate) -> TeacherRegistrationResult:
    if payload.department_id:
        dept = await db.get(Department, payload.department_id)
        if not dept or not dept.is_active:
            raise NotFoundError("Department not found")
    for subject_id in payload.subject_ids:
        subject = await db.get(Subject, subject_id)
        if not subject or not subject.is_active:
            raise NotFoundError(f"Subject {subject_id} not found")
    for class_id in payload.class_ids:
        if not await db.get(SchoolClass, class_id):
            raise NotFoundError(f"Class {class_id} not found")

    try:
        teacher, user, temporary_password = await _create_teacher(
            db,
            title=payload.title,
            first_name=payload.first_name,
            middle_name=payload.middle_name,
            last_name=payload.last_name,
            email=payload.email,
            gender=payload.gender.value,
            employee_number=payload.employee_number,
            role=payload.role,
            teacher_type=payload.teacher_type.value,
            department_id=payload.department_id,
            qualification=payload.qualification,
            phone_number=payload.phone_number,
            subject_ids=payload.subject_ids,
            class_ids=payload.class_ids,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Teacher with this email or employee ID already exists", status.HTTP_409_CONFLICT)

    logger.info("Registered teacher %s (%s)", teacher.employee_number, user.role)
    return TeacherRegistrationResult(teacher=await get_teacher(db, teacher.id), temporary_password=temporary_password)


async def list_teachers(
    db: AsyncSession,
    department_id: Optional[UUID] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
) -> List[TeacherResponse]:
    stmt = _teacher_select()
    if department_id:
        stmt = stmt.where(Teacher.department_id == department_id)
    if role:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(Teacher.is_active.is_(is_active))
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(User.first_name).like(term),
                func.lower(User.last_name).like(term),
                func.lower(User.email).like(term),
                func.lower(Teacher.employee_number).like(term),
            )
        )
    result = await db.execute(stmt.order_by(User.last_name.asc(), User.first_name.asc()))
    rows = result.all()
    subjects, classes = await _assignments(db, [t.id for t, _, _ in rows])
    return [_to_response(t, u, dname, subjects[t.id], classes[t.id]) for t, u, dname in rows]


async def get_teacher(db: AsyncSession, teacher_id: UUID) -> TeacherResponse:
    result = await db.execute(_teacher_select().where(Teacher.id == teacher_id))
    row = result.first()
    if not row:
        raise NotFoundError("Teacher not found")
    teacher, user, department_name = row
    subjects, classes = await _assignments(db, [teacher.id])
    return _to_response(teacher, user, department_name, subjects[teacher.id], classes[teacher.id])


# --- Bulk upload ---
def preview_bulk_upload(filename: Optional[str], content: bytes) -> BulkUploadPreview:
    """Parse and validate only. Raises BulkUploadFileError for unusable files."""
    rows = bulk_upload.parse_upload(filename, content)
    valid, errors = bulk_upload.validate_rows(rows)
    return BulkUploadPreview(
        total_rows=len(rows),
        valid_count=len(valid),
        invalid_count=len(rows) - len(valid),
        errors=errors,
    )


async def _lookup_names(db: AsyncSession, names: List[str], lookup) -> Tuple[List[UUID], List[str]]:
    """Resolve names to ids. Returns (ids found, names not found)."""
    found, missing = [], []
    for name in names:
        record = await lookup(db, name)
        if record:
            found.append(record.id)
        else:
            missing.append(name)
    return found, missing


async def bulk_register_teachers(
    db: AsyncSession,
    filename: Optional[str],
    content: bytes,
) -> TeacherBulkUploadResult:
    """
    Register every valid row, each in its own transaction.
    Duplicates (email / employee ID) are skipped; unknown departments, subjects or classes are failures.
    """
    rows = bulk_upload.parse_upload(filename, content)
    valid, errors = bulk_upload.validate_rows(rows)
    failed = len({e.row for e in errors})

    success = 0
    skipped = 0
    registered: List[BulkRegisteredTeacher] = []
    seen_emails: set = set()
    seen_ids: set = set()

    def fail(row_num: int, field: str, value: str, message: str) -> None:
        errors.append(BulkUploadError(row=row_num, field=field, value=value, message=message))

    for row_num, row in valid:
        email_key = row.email.lower()
        id_key = row.employee_id.lower()
        if email_key in seen_emails or await get_user_by_email(db, row.email):
            skipped += 1
            fail(row_num, "email", row.email, "Email already exists in the system")
            continue
        if id_key in seen_ids or await employee_number_exists(db, row.employee_id):
            skipped += 1
            fail(row_num, "employee_id", row.employee_id, f'Employee ID "{row.employee_id}" already exists in the system')
            continue

        department = await get_department_by_name(db, row.department)
        if not department:
            failed += 1
            fail(row_num, "department", row.department, f'Department "{row.department}" not found in the system')
            continue
        subject_ids, missing_subjects = await _lookup_names(db, row.subjects, get_subject_by_name)
        if missing_subjects:
            failed += 1
            fail(row_num, "subjects", ", ".join(missing_subjects), f"Subject(s) not found: {', '.join(missing_subjects)}")
            continue
        class_ids, missing_classes = await _lookup_names(db, row.classes, get_class_by_name)
        if missing_classes:
            failed += 1
            fail(row_num, "classes", ", ".join(missing_classes), f"Class(es) not found: {', '.join(missing_classes)}")
            continue

        try:
            teacher, user, temporary_password = await _create_teacher(
                db,
                title=row.title,
                first_name=row.first_name,
                middle_name=row.middle_name,
                last_name=row.last_name,
                email=row.email,
                gender=row.gender,
                employee_number=row.employee_id,
                role=row.role,
                teacher_type=row.teacher_type,
                department_id=department.id,
                qualification=row.qualification,
                phone_number=row.phone_number,
                subject_ids=subject_ids,
                class_ids=class_ids,
            )
            await db.commit()
        except (ServiceError, IntegrityError) as e:
            await db.rollback()
            failed += 1
            fail(row_num, "row", row.email, e.message if isinstance(e, ServiceError) else "Database constraint violation")
            continue

        seen_emails.add(email_key)
        seen_ids.add(id_key)
        success += 1
        registered.append(
            BulkRegisteredTeacher(
                row=row_num,
                teacher_id=teacher.id,
                employee_number=teacher.employee_number,
                email=user.email,
                temporary_password=temporary_password,
            )
        )

    errors.sort(key=lambda e: e.row)
    total = len(rows)
    logger.info("Teacher upload processed %d rows: %d registered, %d failed, %d skipped", total, success, failed, skipped)
    if success == total:
        message = f"Successfully registered all {total} teachers!"
    else:
        message = f"Registered {success} out of {total} teachers. {failed} failed, {skipped} skipped."
    return TeacherBulkUploadResult(
        total_processed=total,
        success_count=success,
        failure_count=failed,
        skipped_count=skipped,
        registered=registered,
        errors=errors,
        message=message,
    )
