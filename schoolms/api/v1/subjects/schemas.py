from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

CurriculumLevel = Literal["junior", "senior"]


class SubjectCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    department_id: Optional[UUID] = None
    description: Optional[str] = None
    curriculum_level: CurriculumLevel = "junior"
    stream: Optional[str] = Field(None, max_length=50, description="Only classes of this stream take the subject")
    is_compulsory: bool = True


class SubjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    department_id: Optional[UUID] = None
    description: Optional[str] = None
    curriculum_level: Optional[CurriculumLevel] = None
    stream: Optional[str] = Field(None, max_length=50)
    is_compulsory: Optional[bool] = None
    is_active: Optional[bool] = None


class SubjectResponse(BaseModel):
    id: UUID
    code: str
    name: str
    department_id: Optional[UUID] = None
    department_name: Optional[str] = None
    description: Optional[str] = None
    curriculum_level: str
    stream: Optional[str] = None
    is_compulsory: bool
    is_active: bool
    created_at: datetime


class EnrolmentPeriod(BaseModel):
    academic_year_id: UUID
    term_id: UUID


class EnrolmentCreate(EnrolmentPeriod):
    subject_id: UUID


class StudentSubjectResponse(BaseModel):
    id: UUID
    subject_id: UUID
    code: str
    name: str
    is_optional: bool
    academic_year_id: UUID
    term_id: UUID
    enrolled_at: datetime


class StudentSubjectHistoryItem(StudentSubjectResponse):
    academic_year: str
    term: str


class EnrolmentSyncResult(BaseModel):
    enrolled: int = Field(..., description="Subjects added by this run")
    total: int = Field(..., description="Subjects the student now takes in the term")
    curriculum_level: str
