"""Sponsors and the money they send to the school."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    Uuid,
)

from schoolms.db.session import Base


class Sponsor(Base):
    __tablename__ = "sponsors"
    __table_args__ = (
        CheckConstraint(
            "sponsor_type IN ('government','ngo','corporate','foundation','individual')",
            name="chk_sponsor_type",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    sponsor_type = Column(String(30), nullable=False)
    contact_person = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)
    billing_email = Column(String(255), nullable=True)
    payment_terms = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SponsorPayment(Base):
    """
    Lump sum received from a sponsor.
    allocated_amount + unallocated_amount == amount at all times.
    """

    __tablename__ = "sponsor_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sponsor_id = Column(Uuid(as_uuid=True), ForeignKey("sponsors.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(String(30), nullable=False)  # cash, bank_transfer, cheque, wire_transfer
    reference_number = Column(String(100), nullable=True)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="SET NULL"), nullable=True)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="SET NULL"), nullable=True)
    allocated_amount = Column(Numeric(12, 2), nullable=False, default=0)
    unallocated_amount = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SponsorPaymentAllocation(Base):
    __tablename__ = "sponsor_payment_allocations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sponsor_payment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("sponsor_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    student_fee_id = Column(Uuid(as_uuid=True), ForeignKey("student_fees.id", ondelete="CASCADE"), nullable=False)
    student_aid_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_financial_aid.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    allocated_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    allocated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
