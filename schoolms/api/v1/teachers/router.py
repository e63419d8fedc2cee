from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.students.schemas import BulkUploadPreview
from schoolms.auth.rbac import SCHOOL_LEADER_ROLES, SCHOOL_STAFF_ROLES, require_roles
from schoolms.core.exceptions import ServiceError
from schoolms.core.uploads import BulkUploadFileError
from schoolms.db.session import get_db

from .bulk_upload import build_template
from .schemas import TeacherBulkUploadResult, TeacherCreate, TeacherRegistrationResult, TeacherResponse
from . import service

router = APIRouter(prefix="/api/v1/teachers", tags=["teachers"])


@router.post(
    "",
    response_model=TeacherRegistrationResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def register_teacher(
    payload: TeacherCreate,
    db: AsyncSession = Depends(get_db),
) -> TeacherRegistrationResult:
    """Register a teacher account with the subjects and classes they teach."""
    try:
        return await service.register_teacher(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[TeacherResponse],
    dependencies=[Depends(require_roles(*SCHOOL_STAFF_ROLES))],
)
async def list_teachers(
    department_id: Optional[UUID] = Query(None),
    role: Optional[str] = Query(None, pattern="^(teacher|headteacher|deputy_headteacher)$"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
) -> List[TeacherResponse]:
    return await service.list_teachers(db, department_id=department_id, role=role, is_active=is_active, search=search)


# ----- Bulk upload -----
@router.get("/bulk-upload/template", dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))])
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
        headers={"Content-Disposition": f'attachment; filename="teacher_upload_template.{format}"'},
    )


@router.post(
    "/bulk-upload/preview",
    response_model=BulkUploadPreview,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def preview_bulk_upload(file: UploadFile = File(...)) -> BulkUploadPreview:
    content = await file.read()
    try:
        return service.preview_bulk_upload(file.filename, content)
    except BulkUploadFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post(
    "/bulk-upload",
    response_model=TeacherBulkUploadResult,
    dependencies=[Depends(require_roles(*SCHOOL_LEADER_ROLES))],
)
async def bulk_upload_teachers(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
) -> TeacherBulkUploadResult:
    content = await file.read()
    try:
        return await service.bulk_register_teachers(db, file.filename, content)
    except BulkUploadFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get(
    "/{teacher_id}",
    response_model=TeacherResponse,
    dependencies=[Depends(require_roles(*SCHOOL_STAFF_ROLES))],
)
async def get_teacher(
    teacher_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> TeacherResponse:
    try:
        return await service.get_teacher(db, teacher_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
