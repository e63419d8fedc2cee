from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class TermBreakdown(BaseModel):
    academic_year: str
    term: str
    total_fees: Decimal
    collected: Decimal
    outstanding: Decimal
    collection_rate: Decimal


class PaymentMethodBreakdown(BaseModel):
    method: str
    count: int
    total_amount: Decimal


class FinancialOverview(BaseModel):
    total_fees_assigned: Decimal
    total_collected: Decimal
    total_aid: Decimal
    outstanding_balance: Decimal
    collection_rate: Decimal
    total_students: int
    total_invoices: int
    total_payments: int
    breakdown_by_term: List[TermBreakdown]
    payment_methods: List[PaymentMethodBreakdown]


class OutstandingFeeRow(BaseModel):
    student_id: UUID
    student_number: str
    student_name: str
    class_name: Optional[str] = None
    phone_number: Optional[str] = None
    guardian_phone: Optional[str] = None
    open_invoices: int
    total_outstanding: Decimal
    oldest_invoice_date: date
    days_overdue: int


class OutstandingFeesReport(BaseModel):
    total_outstanding: Decimal
    student_count: int
    students: List[OutstandingFeeRow]
