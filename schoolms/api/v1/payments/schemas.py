from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolms.core.enums import PaymentMethod, PaymentMethodType


class RecordPaymentRequest(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[date] = Field(None, description="Defaults to today")
    payment_method: PaymentMethod
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    payment_number: str
    invoice_id: UUID
    invoice_number: Optional[str] = None
    student_fee_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    academic_year_id: UUID
    term_id: UUID
    amount: Decimal
    payment_date: date
    payment_method: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: str
    recorded_by: Optional[UUID] = None
    receipt_number: Optional[str] = None
    created_at: datetime


class ReceiptResponse(BaseModel):
    id: UUID
    receipt_number: str
    payment_id: UUID
    payment_number: Optional[str] = None
    reference_number: Optional[str] = None
    invoice_id: UUID
    invoice_number: Optional[str] = None
    invoice_balance: Optional[Decimal] = None
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    amount: Decimal
    payment_date: date
    payment_method: str
    generated_at: datetime


class RecordPaymentResponse(BaseModel):
    payment: PaymentResponse
    receipt: ReceiptResponse
    updated_balance: Decimal
    invoice_status: str
    message: str


class PaymentMethodCreate(BaseModel):
    method_name: str = Field(..., min_length=1, max_length=100, description="e.g. Airtel Money, National Bank")
    method_type: PaymentMethodType
    account_number: Optional[str] = Field(None, max_length=100)
    account_name: Optional[str] = Field(None, max_length=255)
    instructions: Optional[str] = None
    display_order: int = Field(0, ge=0)


class PaymentMethodResponse(BaseModel):
    id: UUID
    method_name: str
    method_type: str
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    instructions: Optional[str] = None
    is_active: bool
    display_order: int

    class Config:
        from_attributes = True
