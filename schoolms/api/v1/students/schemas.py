from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from schoolms.api.v1.fees.schemas import AssignStudentFeesResult
from schoolms.core.enums import Gender, StudentType


class StudentCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    student_number: str = Field(..., min_length=6, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    student_type: StudentType = StudentType.INTERNAL
    class_id: Optional[UUID] = None
    gender: Gender
    date_of_birth: Optional[date] = None
    guardian_email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)

    @field_validator("date_of_birth")
    @classmethod
    def validate_dob(cls, v: Optional[date]) -> Optional[date]:
        if v and v >= date.today():
            raise ValueError("date_of_birth must be in the past")
        return v


class StudentUpdate(BaseModel):
    class_id: Optional[UUID] = None
    student_type: Optional[StudentType] = None
    phone_number: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)
    guardian_email: Optional[EmailStr] = None
    is_active: Optional[bool] = None


class StudentResponse(BaseModel):
    id: UUID
    user_id: UUID
    student_number: str
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    full_name: str
    email: str
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None
    student_type: str
    gender: str
    date_of_birth: Optional[date] = None
    guardian_email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    created_at: datetime


class StudentRegistrationResult(BaseModel):
    student: StudentResponse
    temporary_password: str
    fee_assignment: Optional[AssignStudentFeesResult] = None
    fee_assignment_error: Optional[str] = None
    subjects_enrolled: int = 0


class StudentListResponse(BaseModel):
    items: List[StudentResponse]
    total: int
    page: int
    page_size: int


class GuardianLinkCreate(BaseModel):
    """Link an existing guardian account by id or email."""

    guardian_id: Optional[UUID] = None
    guardian_email: Optional[EmailStr] = None
    relationship: Optional[str] = Field(None, max_length=50)
    is_primary: bool = False

    @model_validator(mode="after")
    def validate_guardian_ref(self) -> "GuardianLinkCreate":
        if not self.guardian_id and not self.guardian_email:
            raise ValueError("guardian_id or guardian_email is required")
        return self


class GuardianResponse(BaseModel):
    link_id: UUID
    guardian_id: UUID
    full_name: str
    email: str
    phone_number: Optional[str] = None
    relationship: Optional[str] = None
    is_primary: bool


class GuardianChildResponse(BaseModel):
    student_id: UUID
    student_number: str
    full_name: str
    class_name: Optional[str] = None
    student_type: str
    relationship: Optional[str] = None
    is_primary: bool


class StudentDetailResponse(StudentResponse):
    guardians: List[GuardianResponse] = Field(default_factory=list)


class StudentNumberAvailability(BaseModel):
    student_number: str
    available: bool


# --- Bulk upload ---
class BulkUploadError(BaseModel):
    row: int
    field: str
    value: Optional[str] = None
    message: str


class BulkUploadPreview(BaseModel):
    total_rows: int
    valid_count: int
    invalid_count: int
    errors: List[BulkUploadError] = Field(default_factory=list)


class BulkRegisteredStudent(BaseModel):
    row: int
    student_id: UUID
    student_number: str
    email: str
    temporary_password: str
    fee_status: Optional[str] = None


class BulkUploadResult(BaseModel):
    total_processed: int
    success_count: int
    failure_count: int
    skipped_count: int
    registered: List[BulkRegisteredStudent] = Field(default_factory=list)
    errors: List[BulkUploadError] = Field(default_factory=list)
    message: str
