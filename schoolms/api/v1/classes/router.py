from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, require_roles
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

from .schemas import ClassCreate, ClassResponse
from . import service

router = APIRouter(prefix="/api/v1/classes", tags=["classes"])


@router.post(
    "",
    response_model=ClassResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_class(
    payload: ClassCreate,
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    try:
        return await service.create_class(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[ClassResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_classes(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
) -> List[ClassResponse]:
    return await service.list_classes(db, active_only=active_only)
