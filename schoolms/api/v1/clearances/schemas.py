from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ClearanceTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_]+$")
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    minimum_payment_percentage: Decimal = Field(Decimal("100"), ge=0, le=100)
    requires_full_payment: bool = False
    allows_override: bool = True
    display_order: int = 0


class ClearanceTypeResponse(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    minimum_payment_percentage: Decimal
    requires_full_payment: bool
    allows_override: bool
    is_active: bool
    display_order: int

    class Config:
        from_attributes = True


class EligibilityResponse(BaseModel):
    eligible: bool
    payment_percentage: Decimal
    required_percentage: Decimal
    total_fees: Decimal
    total_paid: Decimal
    total_aid: Decimal
    outstanding_balance: Decimal
    reason: str


class ClearanceRequestCreate(BaseModel):
    student_id: UUID
    clearance_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    notes: Optional[str] = None


class ClearanceRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    class_name: Optional[str] = None
    clearance_type_id: UUID
    clearance_type_name: Optional[str] = None
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    status: str
    total_fees: Decimal
    total_paid: Decimal
    total_aid: Decimal
    outstanding_balance: Decimal
    payment_percentage: Decimal
    required_percentage: Decimal
    certificate_number: Optional[str] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    request_notes: Optional[str] = None
    override_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


class RequestClearanceResult(BaseModel):
    clearance: ClearanceRequestResponse
    auto_approved: bool
    message: str


class ClearanceDecisionRequest(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_reason(self) -> "ClearanceDecisionRequest":
        if self.action == "reject" and not (self.reason or "").strip():
            raise ValueError("Rejection reason is required")
        return self


class StudentClearanceStatus(BaseModel):
    clearances: List[ClearanceRequestResponse]
    available_types: List[ClearanceTypeResponse]


class BulkClearanceRequest(BaseModel):
    clearance_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    class_id: Optional[UUID] = None
    minimum_payment_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class BulkClearanceOutcome(BaseModel):
    approved: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)
    existing: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class BulkClearanceResult(BaseModel):
    results: BulkClearanceOutcome
    summary: Dict[str, int]
    message: str


class BulkClearancePreviewStudent(BaseModel):
    student_id: UUID
    student_number: str
    name: str
    class_name: Optional[str] = None
    payment_percentage: Decimal
    total_fees: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal


class BulkClearancePreview(BaseModel):
    clearance_type: str
    threshold: Decimal
    eligible: List[BulkClearancePreviewStudent]
    ineligible: List[BulkClearancePreviewStudent]
