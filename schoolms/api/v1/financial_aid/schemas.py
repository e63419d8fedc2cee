from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from schoolms.core.enums import AidStatus, CoverageType


def check_coverage(
    coverage_type: Optional[CoverageType],
    percentage: Optional[Decimal],
    amount: Optional[Decimal],
    items: Optional[List[str]],
) -> None:
    if coverage_type == CoverageType.PERCENTAGE:
        if percentage is None or percentage <= 0 or percentage > 100:
            raise ValueError("coverage_percentage must be greater than 0 and at most 100")
    elif coverage_type == CoverageType.FIXED_AMOUNT:
        if amount is None or amount <= 0:
            raise ValueError("coverage_amount must be greater than 0")
    elif coverage_type == CoverageType.SPECIFIC_ITEMS:
        if not items:
            raise ValueError("covered_items must list at least one fee item")


# --- Aid types ---
class FinancialAidTypeCreate(BaseModel):
    sponsor_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    coverage_type: CoverageType
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None

    @model_validator(mode="after")
    def validate_coverage(self) -> "FinancialAidTypeCreate":
        check_coverage(self.coverage_type, self.coverage_percentage, self.coverage_amount, self.covered_items)
        return self


class FinancialAidTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    coverage_type: Optional[CoverageType] = None
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None


class FinancialAidTypeResponse(BaseModel):
    id: UUID
    sponsor_id: UUID
    sponsor_name: Optional[str] = None
    name: str
    description: Optional[str] = None
    coverage_type: str
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None
    is_active: bool
    created_at: datetime


# --- Student aid ---
class AssignAidRequest(BaseModel):
    """Coverage fields left empty are copied from the aid type."""

    student_id: UUID
    aid_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    coverage_type: Optional[CoverageType] = None
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "AssignAidRequest":
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("valid_until must be on or after valid_from")
        return self


class BulkAssignAidRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    aid_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None


class BulkAssignAidResult(BaseModel):
    assigned_count: int
    failed_count: int
    message: str


class UpdateAidStatusRequest(BaseModel):
    status: AidStatus
    rejection_reason: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: AidStatus) -> AidStatus:
        if v == AidStatus.pending:
            raise ValueError("status must be one of approved, active, suspended, completed, rejected")
        return v

    @model_validator(mode="after")
    def validate_reason(self) -> "UpdateAidStatusRequest":
        if self.status == AidStatus.rejected and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when rejecting aid")
        return self


class RevokeAidRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class StudentAidResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    sponsor_id: UUID
    sponsor_name: Optional[str] = None
    aid_type_id: UUID
    aid_type_name: Optional[str] = None
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    coverage_type: str
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None
    calculated_aid_amount: Decimal
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    status: str
    conditions: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


# --- Applying aid ---
class ApplyAidRequest(BaseModel):
    student_id: UUID
    academic_year_id: UUID
    term_id: UUID


class ApplyAidResult(BaseModel):
    student_fee_id: UUID
    invoice_id: Optional[UUID] = None
    aid_amount: Decimal
    new_balance: Decimal
    message: str


class RecalculateAidRequest(BaseModel):
    academic_year_id: Optional[UUID] = None
    term_id: Optional[UUID] = None


class RecalculateAidResult(BaseModel):
    students_updated: int
    total_aid_applied: Decimal
    message: str
