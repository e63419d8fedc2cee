from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolms.core.enums import StudentType


# --- Fee Structure ---
class FeeStructureItemCreate(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=255, description="e.g. Tuition, Boarding, Exam fee")
    description: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    is_mandatory: bool = True
    display_order: Optional[int] = Field(None, ge=1, description="Defaults to the item's position (1-based)")


class FeeStructureCreate(BaseModel):
    academic_year_id: UUID
    term_id: UUID
    student_type: StudentType
    due_date: date
    notes: Optional[str] = None
    items: List[FeeStructureItemCreate] = Field(..., min_length=1)


class FeeStructureItemResponse(BaseModel):
    id: UUID
    item_name: str
    description: Optional[str] = None
    amount: Decimal
    is_mandatory: bool
    display_order: int

    class Config:
        from_attributes = True


class FeeStructureResponse(BaseModel):
    id: UUID
    name: str
    academic_year_id: UUID
    academic_year_name: Optional[str] = None
    term_id: UUID
    term_name: Optional[str] = None
    student_type: str
    total_amount: Decimal
    due_date: date
    is_active: bool
    notes: Optional[str] = None
    created_at: datetime
    items: List[FeeStructureItemResponse] = Field(default_factory=list)


# --- Student fee assignment ---
class AssignStudentFeesRequest(BaseModel):
    """Omit academic_year_id / term_id to use the active period."""

    student_id: UUID
    academic_year_id: Optional[UUID] = None
    term_id: Optional[UUID] = None


class AssignStudentFeesResult(BaseModel):
    """status: assigned | existing | skipped"""

    fee_assigned: bool
    status: str
    amount: Decimal = Decimal("0")
    student_fee_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None
    invoice_number: Optional[str] = None
    message: str


class BulkAssignFeesRequest(BaseModel):
    academic_year_id: UUID
    term_id: UUID


class BulkAssignFeesResult(BaseModel):
    internal_count: int
    external_count: int
    total_count: int
    skipped_count: int
    total_amount: Decimal
    message: str


class BulkAssignTypePreview(BaseModel):
    count: int
    amount_per_student: Decimal
    total: Decimal
    structure_name: str


class BulkAssignPreview(BaseModel):
    internal: BulkAssignTypePreview
    external: BulkAssignTypePreview
    total_students: int
    total_expected_revenue: Decimal
    already_assigned: int


class StudentFeeResponse(BaseModel):
    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    fee_structure_name: Optional[str] = None
    academic_year_id: UUID
    academic_year_name: Optional[str] = None
    term_id: UUID
    term_name: Optional[str] = None
    total_amount: Decimal
    amount_paid: Decimal
    discount_amount: Decimal
    discount_reason: Optional[str] = None
    balance: Decimal
    status: str
    due_date: date
    assigned_at: datetime


# --- Audit ---
class FeeAuditLogResponse(BaseModel):
    id: UUID
    reference_table: str
    reference_id: UUID
    action_type: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    changed_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True
