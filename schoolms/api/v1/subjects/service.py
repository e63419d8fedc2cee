"""
Subjects and student subject enrolment.

Forms 1-2 follow the junior curriculum and Forms 3-4 the senior one. A student's default subjects are
the compulsory, unstreamed subjects of their level plus every subject of their class stream.
"""

from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger
from schoolms.core.models import AcademicYear, Department, SchoolClass, Student, StudentSubject, Subject, Term

from .schemas import (
    EnrolmentCreate,
    EnrolmentSyncResult,
    StudentSubjectHistoryItem,
    StudentSubjectResponse,
    SubjectCreate,
    SubjectResponse,
    SubjectUpdate,
)

logger = get_logger("subjects")

JUNIOR_MAX_LEVEL = 2


def _to_response(subject: Subject, department_name: Optional[str] = None) -> SubjectResponse:
    return SubjectResponse(
        id=subject.id,
        code=subject.code,
        name=subject.name,
        department_id=subject.department_id,
        department_name=department_name,
        description=subject.description,
        curriculum_level=subject.curriculum_level,
        stream=subject.stream,
        is_compulsory=subject.is_compulsory,
        is_active=subject.is_active,
        created_at=subject.created_at,
    )


async def _check_department(db: AsyncSession, department_id: Optional[UUID]) -> Optional[str]:
    if department_id is None:
        return None
    dept = await db.get(Department, department_id)
    if not dept or not dept.is_active:
        raise NotFoundError("Department not found")
    return dept.name


async def create_subject(db: AsyncSession, payload: SubjectCreate) -> SubjectResponse:
    code = payload.code.strip().upper()
    existing = await db.execute(select(Subject.id).where(Subject.code == code))
    if existing.first():
        raise ServiceError(f"Subject code '{code}' already exists", status.HTTP_409_CONFLICT)
    department_name = await _check_department(db, payload.department_id)
    subject = Subject(
        code=code,
        name=payload.name.strip(),
        department_id=payload.department_id,
        description=payload.description,
        curriculum_level=payload.curriculum_level,
        stream=payload.stream.strip() if payload.stream else None,
        is_compulsory=payload.is_compulsory,
        is_active=True,
    )
    db.add(subject)
    try:
        await db.commit()
        await db.refresh(subject)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"Subject code '{code}' already exists", status.HTTP_409_CONFLICT)
    logger.info("Created subject %s (%s)", code, subject.curriculum_level)
    return _to_response(subject, department_name)


async def list_subjects(
    db: AsyncSession,
    active_only: bool = True,
    curriculum_level: Optional[str] = None,
    department_id: Optional[UUID] = None,
) -> List[SubjectResponse]:
    stmt = (
        select(Subject, Department.name)
        .outerjoin(Department, Department.id == Subject.department_id)
        .order_by(Subject.curriculum_level, Subject.name)
    )
    if active_only:
        stmt = stmt.where(Subject.is_active.is_(True))
    if curriculum_level:
        stmt = stmt.where(Subject.curriculum_level == curriculum_level)
    if department_id:
        stmt = stmt.where(Subject.department_id == department_id)
    result = await db.execute(stmt)
    return [_to_response(s, dname) for s, dname in result.all()]


async def get_subject(db: AsyncSession, subject_id: UUID) -> SubjectResponse:
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    department = await db.get(Department, subject.department_id) if subject.department_id else None
    return _to_response(subject, department.name if department else None)


async def update_subject(db: AsyncSession, subject_id: UUID, payload: SubjectUpdate) -> SubjectResponse:
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    data = payload.model_dump(exclude_unset=True)
    if data.get("department_id"):
        await _check_department(db, data["department_id"])
    for key, value in data.items():
        if value is None and key in ("name", "curriculum_level", "is_compulsory", "is_active"):
            continue
        if key == "name":
            value = value.strip()
        if key == "stream":
            value = value.strip() if value else None
        setattr(subject, key, value)
    await db.commit()
    return await get_subject(db, subject_id)


async def delete_subject(db: AsyncSession, subject_id: UUID) -> None:
    """Soft delete. Existing enrolments are kept as history."""
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    subject.is_active = False
    await db.commit()


async def get_subject_by_name(db: AsyncSession, name: str) -> Optional[Subject]:
    """Case-insensitive lookup by name or code, active subjects only."""
    key = name.strip().lower()
    result = await db.execute(
        select(Subject).where(
            Subject.is_active.is_(True),
            or_(func.lower(Subject.name) == key, func.lower(Subject.code) == key),
        )
    )
    return result.scalars().first()


# --- Enrolment ---
def curriculum_level_for(class_level: Optional[int]) -> str:
    if class_level is not None and class_level > JUNIOR_MAX_LEVEL:
        return "senior"
    return "junior"


async def default_subjects_for_class(db: AsyncSession, school_class: SchoolClass) -> List[Tuple[Subject, bool]]:
    """(subject, is_optional) pairs a student of this class takes by default."""
    level = curriculum_level_for(school_class.level)
    offered = [and_(Subject.stream.is_(None), Subject.is_compulsory.is_(True))]
    if school_class.stream:
        offered.append(func.lower(Subject.stream) == school_class.stream.strip().lower())
    result = await db.execute(
        select(Subject)
        .where(Subject.is_active.is_(True), Subject.curriculum_level == level, or_(*offered))
        .order_by(Subject.name)
    )
    return [(s, not s.is_compulsory) for s in result.scalars().all()]


async def _check_period(db: AsyncSession, academic_year_id: UUID, term_id: UUID) -> None:
    term = await db.get(Term, term_id)
    if not term or term.academic_year_id != academic_year_id:
        raise NotFoundError("Term not found in this academic year")


async def _enrolled_subject_ids(db: AsyncSession, student_id: UUID, academic_year_id: UUID, term_id: UUID) -> set:
    result = await db.execute(
        select(StudentSubject.subject_id).where(
            StudentSubject.student_id == student_id,
            StudentSubject.academic_year_id == academic_year_id,
            StudentSubject.term_id == term_id,
        )
    )
    return set(result.scalars().all())


async def enrol_default_subjects(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: UUID,
) -> EnrolmentSyncResult:
    """Enrol a student in the default subjects of their class. Existing enrolments are kept. Commits."""
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    if not student.class_id:
        raise ServiceError("Student has no class assigned", status.HTTP_400_BAD_REQUEST)
    school_class = await db.get(SchoolClass, student.class_id)
    await _check_period(db, academic_year_id, term_id)

    already = await _enrolled_subject_ids(db, student_id, academic_year_id, term_id)
    added = 0
    for subject, is_optional in await default_subjects_for_class(db, school_class):
        if subject.id in already:
            continue
        db.add(
            StudentSubject(
                student_id=student_id,
                subject_id=subject.id,
                academic_year_id=academic_year_id,
                term_id=term_id,
                is_optional=is_optional,
            )
        )
        already.add(subject.id)
        added += 1
    await db.commit()
    if added:
        logger.info("Enrolled student %s in %d subject(s)", student.student_number, added)
    return EnrolmentSyncResult(
        enrolled=added,
        total=len(already),
        curriculum_level=curriculum_level_for(school_class.level),
    )


def _enrolment_select():
    return select(StudentSubject, Subject).join(Subject, Subject.id == StudentSubject.subject_id)


def _enrolment_response(link: StudentSubject, subject: Subject) -> StudentSubjectResponse:
    return StudentSubjectResponse(
        id=link.id,
        subject_id=subject.id,
        code=subject.code,
        name=subject.name,
        is_optional=link.is_optional,
        academic_year_id=link.academic_year_id,
        term_id=link.term_id,
        enrolled_at=link.enrolled_at,
    )


async def list_student_subjects(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: UUID,
) -> List[StudentSubjectResponse]:
    result = await db.execute(
        _enrolment_select()
        .where(
            StudentSubject.student_id == student_id,
            StudentSubject.academic_year_id == academic_year_id,
            StudentSubject.term_id == term_id,
        )
        .order_by(StudentSubject.is_optional, Subject.name)
    )
    return [_enrolment_response(link, subject) for link, subject in result.all()]


async def add_student_subject(db: AsyncSession, student_id: UUID, payload: EnrolmentCreate) -> StudentSubjectResponse:
    """Enrol a student in one extra subject. Subjects added by hand are optional."""
    if not await db.get(Student, student_id):
        raise NotFoundError("Student not found")
    subject = await db.get(Subject, payload.subject_id)
    if not subject or not subject.is_active:
        raise NotFoundError("Subject not found")
    await _check_period(db, payload.academic_year_id, payload.term_id)
    if payload.subject_id in await _enrolled_subject_ids(db, student_id, payload.academic_year_id, payload.term_id):
        raise ServiceError("Student is already enrolled in this subject.", status.HTTP_409_CONFLICT)
    link = StudentSubject(
        student_id=student_id,
        subject_id=subject.id,
        academic_year_id=payload.academic_year_id,
        term_id=payload.term_id,
        is_optional=True,
    )
    db.add(link)
    try:
        await db.commit()
        await db.refresh(link)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Student is already enrolled in this subject.", status.HTTP_409_CONFLICT)
    return _enrolment_response(link, subject)


async def remove_student_subject(
    db: AsyncSession,
    student_id: UUID,
    subject_id: UUID,
    academic_year_id: UUID,
    term_id: UUID,
) -> None:
    result = await db.execute(
        select(StudentSubject).where(
            StudentSubject.student_id == student_id,
            StudentSubject.subject_id == subject_id,
            StudentSubject.academic_year_id == academic_year_id,
            StudentSubject.term_id == term_id,
        )
    )
    link = result.scalars().first()
    if not link:
        raise NotFoundError("Student is not enrolled in this subject")
    await db.delete(link)
    await db.commit()


async def student_subject_history(db: AsyncSession, student_id: UUID) -> List[StudentSubjectHistoryItem]:
    """Every enrolment of a student, newest year first."""
    result = await db.execute(
        select(StudentSubject, Subject, AcademicYear.name, Term.name)
        .join(Subject, Subject.id == StudentSubject.subject_id)
        .join(AcademicYear, AcademicYear.id == StudentSubject.academic_year_id)
        .join(Term, Term.id == StudentSubject.term_id)
        .where(StudentSubject.student_id == student_id)
        .order_by(AcademicYear.start_date.desc(), Term.term_number, Subject.name)
    )
    return [
        StudentSubjectHistoryItem(
            **_enrolment_response(link, subject).model_dump(),
            academic_year=year_name,
            term=term_name,
        )
        for link, subject, year_name, term_name in result.all()
    ]
