from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from schoolms.core.enums import SponsorPaymentMethod, SponsorType


class SponsorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sponsor_type: SponsorType
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = None
    billing_email: Optional[EmailStr] = None
    payment_terms: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class SponsorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sponsor_type: Optional[SponsorType] = None
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = None
    billing_email: Optional[EmailStr] = None
    payment_terms: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class SponsorResponse(BaseModel):
    id: UUID
    name: str
    sponsor_type: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    billing_email: Optional[str] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SponsorStats(BaseModel):
    total_paid: Decimal
    total_allocated: Decimal
    total_unallocated: Decimal
    payment_count: int
    students_helped: int
    active_awards: int


class SponsorDetailResponse(SponsorResponse):
    stats: SponsorStats


# --- Sponsor payments ---
class SponsorPaymentCreate(BaseModel):
    sponsor_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    payment_method: SponsorPaymentMethod
    reference_number: Optional[str] = Field(None, max_length=100)
    academic_year_id: Optional[UUID] = None
    term_id: Optional[UUID] = None
    notes: Optional[str] = None
    auto_allocate: bool = False


class AllocationItem(BaseModel):
    student_id: UUID
    student_fee_id: UUID
    amount: Decimal = Field(..., gt=0)
    student_aid_id: Optional[UUID] = None


class AllocateSponsorPaymentRequest(BaseModel):
    allocations: List[AllocationItem] = Field(..., min_length=1)


class SponsorPaymentAllocationResponse(BaseModel):
    id: UUID
    sponsor_payment_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    student_fee_id: UUID
    student_aid_id: Optional[UUID] = None
    amount: Decimal
    allocated_at: datetime


class SponsorPaymentResponse(BaseModel):
    id: UUID
    sponsor_id: UUID
    sponsor_name: Optional[str] = None
    amount: Decimal
    payment_date: date
    payment_method: str
    reference_number: Optional[str] = None
    academic_year_id: Optional[UUID] = None
    term_id: Optional[UUID] = None
    allocated_amount: Decimal
    unallocated_amount: Decimal
    notes: Optional[str] = None
    created_at: datetime


class RecordSponsorPaymentResult(BaseModel):
    payment: SponsorPaymentResponse
    allocations: List[SponsorPaymentAllocationResponse] = Field(default_factory=list)
    message: str
