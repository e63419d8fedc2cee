"""Student payments against invoices, their receipts, and configured payment channels."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid

from schoolms.core.enums import PaymentStatus
from schoolms.db.session import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_number = Column(String(30), nullable=False, unique=True, index=True)  # PAY-2025-00001
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_fee_id = Column(Uuid(as_uuid=True), ForeignKey("student_fees.id", ondelete="RESTRICT"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(String(30), nullable=False)  # cash, bank_transfer, mobile_money, cheque, card
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.verified.value)
    recorded_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Receipt(Base):
    """Receipt issued for exactly one verified payment."""

    __tablename__ = "receipts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    receipt_number = Column(String(30), nullable=False, unique=True, index=True)  # RCP-2025-00001
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, unique=True)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(String(30), nullable=False)
    generated_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    generated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class PaymentMethodConfig(Base):
    """Payment channels shown to cashiers (bank accounts, mobile money numbers)."""

    __tablename__ = "payment_methods"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    method_name = Column(String(100), nullable=False, unique=True)
    method_type = Column(String(30), nullable=False)  # mobile_money, bank, cash, card
    account_number = Column(String(100), nullable=True)
    account_name = Column(String(255), nullable=True)
    instructions = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
