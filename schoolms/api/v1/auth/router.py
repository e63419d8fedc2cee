from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.rbac import ADMIN, require_roles
from schoolms.auth.schemas import (
    ChangePasswordRequest,
    CurrentUser,
    LoginRequest,
    LoginResponse,
    UserCreate,
    UserCreatedResponse,
    UserResponse,
)
from schoolms.auth.services import change_password, get_user, login_user, register_user
from schoolms.core.exceptions import ServiceError
from schoolms.db.session import get_db

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    try:
        return await login_user(db, payload)
    except ServiceError as e:
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/login-oauth")
async def login_oauth(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    payload = LoginRequest(
        email=form_data.username.strip(),
        password=form_data.password,
    )
    try:
        result = await login_user(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
    }


@router.get("/me", response_model=UserResponse)
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UserResponse:
    try:
        user = await get_user(db, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return UserResponse.model_validate(user)


@router.post("/change-password", status_code=http_status.HTTP_204_NO_CONTENT)
async def change_own_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await change_password(db, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/users",
    response_model=UserCreatedResponse,
    status_code=http_status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ADMIN))],
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> UserCreatedResponse:
    """Create a staff or guardian account with a temporary password (admin only)."""
    try:
        return await register_user(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
