import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)

from schoolms.core.enums import InvoiceStatus
from schoolms.db.session import Base


class Invoice(Base):
    """
    Invoice issued for a student fee. One invoice per student fee.
    balance = total_amount - amount_paid - aid_amount, never below zero.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint(
            "status IN ('unpaid','partial','paid','cancelled','overdue')",
            name="chk_invoice_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(30), nullable=False, unique=True, index=True)  # INV-2025-00001
    student_fee_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_fees.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    aid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.unpaid.value)
    notes = Column(Text, nullable=True)
    generated_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
