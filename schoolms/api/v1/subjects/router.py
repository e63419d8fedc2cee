from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, SCHOOL_LEADER_ROLES, ensure_student_access, require_roles
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import (
    EnrolmentCreate,
    EnrolmentPeriod,
    EnrolmentSyncResult,
    StudentSubjectHistoryItem,
    StudentSubjectResponse,
    SubjectCreate,
    SubjectResponse,
    SubjectUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/subjects", tags=["subjects"])


@router.post(
    "",
    response_model=SubjectResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_subject(
    payload: SubjectCreate,
    db: AsyncSession = Depends(get_db),
) -> SubjectResponse:
    try:
        return await service.create_subject(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[SubjectResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_subjects(
    active_only: bool = Query(True),
    curriculum_level: Optional[str] = Query(None, pattern="^(junior|senior)$"),
    department_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[SubjectResponse]:
    return await service.list_subjects(
        db, active_only=active_only, curriculum_level=curriculum_level, department_id=department_id
    )


# ----- Student enrolment -----
@router.get("/students/{student_id}", response_model=List[StudentSubjectResponse])
async def list_student_subjects(
    student_id: UUID,
    academic_year_id: UUID = Query(...),
    term_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentSubjectResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_subjects(db, student_id, academic_year_id, term_id)


@router.get("/students/{student_id}/history", response_model=List[StudentSubjectHistoryItem])
async def student_subject_history(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentSubjectHistoryItem]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.student_subject_history(db, student_id)


@router.post(
    "/students/{student_id}",
    response_model=StudentSubjectResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def add_student_subject(
    student_id: UUID,
    payload: EnrolmentCreate,
    db: AsyncSession = Depends(get_db),
) -> StudentSubjectResponse:
    try:
        return await service.add_student_subject(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/students/{student_id}/{subject_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def remove_student_subject(
    student_id: UUID,
    subject_id: UUID,
    academic_year_id: UUID = Query(...),
    term_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.remove_student_subject(db, student_id, subject_id, academic_year_id, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/students/{student_id}/sync",
    response_model=EnrolmentSyncResult,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def sync_student_subjects(
    student_id: UUID,
    payload: EnrolmentPeriod,
    db: AsyncSession = Depends(get_db),
) -> EnrolmentSyncResult:
    """Enrol the student in any default subject of their class they are missing."""
    try:
        return await service.enrol_default_subjects(db, student_id, payload.academic_year_id, payload.term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Single subject -----
@router.get(
    "/{subject_id}",
    response_model=SubjectResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_subject(
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SubjectResponse:
    try:
        return await service.get_subject(db, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{subject_id}",
    response_model=SubjectResponse,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def update_subject(
    subject_id: UUID,
    payload: SubjectUpdate,
    db: AsyncSession = Depends(get_db),
) -> SubjectResponse:
    try:
        return await service.update_subject(db, subject_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{subject_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def delete_subject(
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_subject(db, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
