from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DepartmentCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    head_of_department_id: Optional[UUID] = None


class DepartmentUpdate(BaseModel):
    """code is not editable after creation."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    head_of_department_id: Optional[UUID] = None
    is_active: Optional[bool] = None


class DepartmentResponse(BaseModel):
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    budget: Optional[Decimal] = None
    head_of_department_id: Optional[UUID] = None
    head_of_department_name: Optional[str] = None
    teacher_count: int = 0
    subject_count: int = 0
    is_active: bool
    created_at: datetime
    updated_at: datetime
