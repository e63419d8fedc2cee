from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from schoolms.api.v1.students.schemas import BulkUploadError
from schoolms.core.enums import Gender, TeacherType

TeacherRole = Literal["teacher", "headteacher", "deputy_headteacher"]
Title = Literal["mr", "mrs", "ms", "miss", "dr", "prof", "rev"]


class TeacherCreate(BaseModel):
    title: Optional[Title] = None
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    gender: Gender
    employee_number: str = Field(..., min_length=1, max_length=30)
    role: TeacherRole = "teacher"
    teacher_type: TeacherType = TeacherType.PERMANENT
    department_id: Optional[UUID] = None
    qualification: Optional[str] = Field(None, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=30)
    subject_ids: List[UUID] = Field(..., min_length=1, description="At least one subject")
    class_ids: List[UUID] = Field(..., min_length=1, description="At least one class")


class TeacherResponse(BaseModel):
    id: UUID
    user_id: UUID
    employee_number: str
    title: Optional[str] = None
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    full_name: str
    email: str
    role: str
    gender: str
    teacher_type: str
    qualification: Optional[str] = None
    phone_number: Optional[str] = None
    department_id: Optional[UUID] = None
    department_name: Optional[str] = None
    subjects: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)
    is_active: bool
    created_at: datetime


class TeacherRegistrationResult(BaseModel):
    teacher: TeacherResponse
    temporary_password: str


class BulkRegisteredTeacher(BaseModel):
    row: int
    teacher_id: UUID
    employee_number: str
    email: str
    temporary_password: str


class TeacherBulkUploadResult(BaseModel):
    total_processed: int
    success_count: int
    failure_count: int
    skipped_count: int
    registered: List[BulkRegisteredTeacher] = Field(default_factory=list)
    errors: List[BulkUploadError] = Field(default_factory=list)
    message: str
