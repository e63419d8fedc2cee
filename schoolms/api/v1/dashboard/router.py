from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.rbac import SCHOOL_STAFF_ROLES, require_roles
from schoolms.db.session import get_db

from .schemas import DashboardStats
from . import service

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get(
    "/stats",
    response_model=DashboardStats,
    dependencies=[Depends(require_roles(*SCHOOL_STAFF_ROLES))],
)
async def dashboard_stats(db: AsyncSession = Depends(get_db)) -> DashboardStats:
    return await service.get_dashboard_stats(db)
