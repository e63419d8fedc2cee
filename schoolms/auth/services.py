from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.models import User
from schoolms.auth.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    UserCreate,
    UserCreatedResponse,
    UserInfo,
)
from schoolms.auth.security import (
    create_access_token,
    generate_temporary_password,
    hash_password,
    verify_password,
)
from schoolms.core.exceptions import NotFoundError, ServiceError
from schoolms.core.logging import get_logger

logger = get_logger("auth")


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    user = await get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login attempt for %s", payload.email)
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    if not user.is_active:
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)

    issued_at = datetime.now(timezone.utc)
    access_token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "role": user.role,
            "iat": int(issued_at.timestamp()),
        }
    )

    return LoginResponse(
        access_token=access_token,
        user=UserInfo(id=user.id, name=user.full_name, email=user.email, role=user.role),
        must_change_password=bool(user.must_change_password),
        issued_at=issued_at,
    )


async def get_user(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def change_password(db: AsyncSession, user_id: UUID, payload: ChangePasswordRequest) -> None:
    user = await get_user(db, user_id)
    if not verify_password(payload.current_password, user.password_hash):
        raise ServiceError("Current password is incorrect", status.HTTP_400_BAD_REQUEST)

    user.password_hash = hash_password(payload.new_password)
    user.must_change_password = False
    await db.commit()
    logger.info("Password changed for user %s", user.id)


async def create_account(
    db: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    role: str,
    middle_name: Optional[str] = None,
    phone_number: Optional[str] = None,
    password: Optional[str] = None,
) -> tuple[User, str]:
    """
    Add a user with a temporary password (must_change_password=True) to the session.
    Caller commits. Returns (user, plain temporary password).
    """
    if await get_user_by_email(db, email):
        raise ServiceError("A user with this email already exists", status.HTTP_409_CONFLICT)

    temporary_password = password or generate_temporary_password()
    user = User(
        email=email.strip().lower(),
        first_name=first_name.strip(),
        middle_name=middle_name.strip() if middle_name else None,
        last_name=last_name.strip(),
        phone_number=phone_number,
        password_hash=hash_password(temporary_password),
        role=role,
        is_active=True,
        must_change_password=password is None,
    )
    db.add(user)
    await db.flush()
    return user, temporary_password


async def register_user(db: AsyncSession, payload: UserCreate) -> UserCreatedResponse:
    try:
        user, temporary_password = await create_account(
            db,
            email=payload.email,
            first_name=payload.first_name,
            middle_name=payload.middle_name,
            last_name=payload.last_name,
            phone_number=payload.phone_number,
            role=payload.role.value,
        )
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ServiceError("A user with this email already exists", status.HTTP_409_CONFLICT) from e

    logger.info("Created %s account %s", user.role, user.email)
    return UserCreatedResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        temporary_password=temporary_password,
    )
