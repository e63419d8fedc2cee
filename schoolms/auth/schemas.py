from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator

from schoolms.core.enums import UserRole


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserInfo(BaseModel):
    id: UUID
    name: str
    email: EmailStr
    role: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo
    must_change_password: bool = False
    issued_at: datetime


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., min_length=8)

    @model_validator(mode="after")
    def validate_passwords(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("new_password and confirm_password do not match")
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from the current password")
        return self


class UserCreate(BaseModel):
    """Admin-created staff / guardian account. Students are registered through /students."""

    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=30)
    role: UserRole

    @model_validator(mode="after")
    def validate_role(self) -> "UserCreate":
        if self.role == UserRole.STUDENT:
            raise ValueError("Student accounts are created through student registration")
        return self


class UserCreatedResponse(BaseModel):
    id: UUID
    email: EmailStr
    full_name: str
    role: str
    temporary_password: str
    must_change_password: bool = True


class UserResponse(BaseModel):
    id: UUID
    email: EmailStr
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    phone_number: Optional[str] = None
    role: str
    is_active: bool
    must_change_password: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for role checks."""

    id: UUID
    role: str
    email: str
