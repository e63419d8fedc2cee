from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.students import service as students_service
from schoolms.auth.rbac import FINANCE_ROLES, SCHOOL_STAFF_ROLES, require_roles
from schoolms.db.session import get_db

from .excel import outstanding_fees_workbook, students_workbook
from .schemas import FinancialOverview, OutstandingFeesReport
from . import service

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Upper bound on rows pulled into a single student export
EXPORT_PAGE_SIZE = 10000


def _xlsx_response(content: bytes, prefix: str) -> Response:
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{prefix}_{stamp}.xlsx"'},
    )


@router.get(
    "/financial-overview",
    response_model=FinancialOverview,
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def financial_overview(db: AsyncSession = Depends(get_db)) -> FinancialOverview:
    return await service.get_financial_overview(db)


@router.get(
    "/outstanding-fees",
    response_model=OutstandingFeesReport,
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def outstanding_fees(
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> OutstandingFeesReport:
    return await service.get_outstanding_fees(
        db, academic_year_id=academic_year_id, term_id=term_id, class_id=class_id
    )


@router.get("/outstanding-fees/export", dependencies=[Depends(require_roles(*FINANCE_ROLES))])
async def export_outstanding_fees(
    academic_year_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> Response:
    report = await service.get_outstanding_fees(
        db, academic_year_id=academic_year_id, term_id=term_id, class_id=class_id
    )
    return _xlsx_response(outstanding_fees_workbook(report), "outstanding_fees")


@router.get("/students/export", dependencies=[Depends(require_roles(*SCHOOL_STAFF_ROLES))])
async def export_students(
    class_id: Optional[UUID] = Query(None),
    student_type: Optional[str] = Query(None, pattern="^(internal|external)$"),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> Response:
    students = await students_service.list_students(
        db,
        class_id=class_id,
        student_type=student_type,
        is_active=is_active,
        page=1,
        page_size=EXPORT_PAGE_SIZE,
    )
    return _xlsx_response(students_workbook(students.items), "students")
