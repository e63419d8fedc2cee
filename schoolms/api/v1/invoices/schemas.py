from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GenerateInvoicesRequest(BaseModel):
    academic_year_id: UUID
    term_id: UUID


class GeneratedInvoiceRef(BaseModel):
    invoice_id: UUID
    invoice_number: str
    student_fee_id: UUID


class GenerateInvoicesResult(BaseModel):
    invoice_count: int
    skipped_count: int
    total_amount: Decimal
    total_aid_amount: Decimal
    invoices: List[GeneratedInvoiceRef] = Field(default_factory=list)
    message: str


class InvoicePreview(BaseModel):
    total_invoices: int
    internal_count: int
    external_count: int
    total_amount: Decimal
    already_generated: int


class InvoiceItemResponse(BaseModel):
    id: UUID
    item_name: str
    description: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_amount: Decimal

    class Config:
        from_attributes = True


class InvoicePaymentSummary(BaseModel):
    id: UUID
    payment_number: str
    amount: Decimal
    payment_date: date
    payment_method: str
    reference_number: Optional[str] = None
    status: str

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    student_fee_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    class_name: Optional[str] = None
    academic_year_id: UUID
    academic_year_name: Optional[str] = None
    term_id: UUID
    term_name: Optional[str] = None
    invoice_date: date
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal
    aid_amount: Decimal
    balance: Decimal
    status: str
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class InvoiceDetailResponse(InvoiceResponse):
    items: List[InvoiceItemResponse] = Field(default_factory=list)
    payments: List[InvoicePaymentSummary] = Field(default_factory=list)


class CancelInvoiceRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
