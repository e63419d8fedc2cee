from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AcademicYearCreate(BaseModel):
    """Create academic year. name must be unique."""

    name: str = Field(..., min_length=1, max_length=50, description="e.g. 2025/2026")
    start_date: date = Field(..., description="Academic year start date")
    end_date: date = Field(..., description="Academic year end date (must be after start_date)")
    is_active: bool = Field(False, description="Make this the active year; all other years become inactive.")


class AcademicYearResponse(BaseModel):
    id: UUID
    name: str
    start_date: date
    end_date: date
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TermCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="e.g. Term 1")
    term_number: Optional[int] = Field(None, ge=1, le=4)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = False


class TermResponse(BaseModel):
    id: UUID
    academic_year_id: UUID
    name: str
    term_number: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ActivePeriodResponse(BaseModel):
    """Active academic year and term used as defaults for fee and clearance operations."""

    academic_year: Optional[AcademicYearResponse] = None
    term: Optional[TermResponse] = None


class AcademicYearWithTerms(AcademicYearResponse):
    terms: List[TermResponse] = Field(default_factory=list)
