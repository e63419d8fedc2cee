from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="e.g. Form 1A")
    level: Optional[int] = Field(None, ge=1, le=12)
    stream: Optional[str] = Field(None, max_length=50)


class ClassResponse(BaseModel):
    id: UUID
    name: str
    level: Optional[int] = None
    stream: Optional[str] = None
    is_active: bool
    student_count: int = 0
    created_at: datetime
