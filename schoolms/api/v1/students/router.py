from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import (
    ADMIN,
    GUARDIAN,
    SCHOOL_STAFF_ROLES,
    STUDENT,
    ensure_student_access,
    require_roles,
)
from schoolms.auth.schemas import CurrentUser
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .bulk_upload import BulkUploadFileError, build_template
from .schemas import (
    BulkUploadPreview,
    BulkUploadResult,
    GuardianChildResponse,
    GuardianLinkCreate,
    GuardianResponse,
    StudentCreate,
    StudentDetailResponse,
    StudentListResponse,
    StudentNumberAvailability,
    StudentRegistrationResult,
    StudentUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.post(
    "",
    response_model=StudentRegistrationResult,
    status_code=status.HTTP_201_CREATED,
)
async def register_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> StudentRegistrationResult:
    """Register a student account. Fees for the active term are assigned automatically."""
    try:
        return await service.register_student(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=StudentListResponse,
    dependencies=[Depends(require_roles(*SCHOOL_STAFF_ROLES))],
)
async def list_students(
    class_id: Optional[UUID] = Query(None),
    student_type: Optional[str] = Query(None, pattern="^(internal|external)$"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> StudentListResponse:
    return await service.list_students(
        db,
        class_id=class_id,
        student_type=student_type,
        is_active=is_active,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/check-student-number",
    response_model=StudentNumberAvailability,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def check_student_number(
    student_number: str = Query(..., min_length=1, max_length=20),
    db: AsyncSession = Depends(get_db),
) -> StudentNumberAvailability:
    exists = await service.student_number_exists(db, student_number)
    return StudentNumberAvailability(student_number=student_number, available=not exists)


@router.get("/me", response_model=StudentDetailResponse)
async def get_my_student_record(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(STUDENT)),
) -> StudentDetailResponse:
    try:
        return await service.get_student_for_user(db, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/my-children", response_model=List[GuardianChildResponse])
async def list_my_children(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(GUARDIAN)),
) -> List[GuardianChildResponse]:
    return await service.list_guardian_children(db, current_user.id)


# ----- Bulk upload -----
@router.get("/bulk-upload/template", dependencies=[Depends(require_roles(ADMIN))])
async def download_bulk_template(
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
) -> Response:
    if format == "xlsx":
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        media_type = "text/csv"
    return Response(
        content=build_template(format),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="student_upload_template.{format}"'},
    )


@router.post(
    "/bulk-upload/preview",
    response_model=BulkUploadPreview,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def preview_bulk_upload(file: UploadFile = File(...)) -> BulkUploadPreview:
    """Validate an upload without registering anyone."""
    content = await file.read()
    try:
        return service.preview_bulk_upload(file.filename, content)
    except BulkUploadFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/bulk-upload", response_model=BulkUploadResult)
async def bulk_upload_students(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ADMIN)),
) -> BulkUploadResult:
    content = await file.read()
    try:
        return await service.bulk_register_students(db, file.filename, content, current_user.id)
    except BulkUploadFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ----- Single student -----
@router.get("/{student_id}", response_model=StudentDetailResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentDetailResponse:
    try:
        await ensure_student_access(db, current_user, student_id)
        return await service.get_student(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{student_id}",
    response_model=StudentDetailResponse,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
) -> StudentDetailResponse:
    try:
        return await service.update_student(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{student_id}/guardians", response_model=List[GuardianResponse])
async def list_student_guardians(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[GuardianResponse]:
    try:
        await ensure_student_access(db, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.list_student_guardians(db, student_id)


@router.post(
    "/{student_id}/guardians",
    response_model=GuardianResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def link_guardian(
    student_id: UUID,
    payload: GuardianLinkCreate,
    db: AsyncSession = Depends(get_db),
) -> GuardianResponse:
    try:
        return await service.link_guardian(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
