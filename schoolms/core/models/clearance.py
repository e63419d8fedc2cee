"""Clearance types and clearance requests (exam clearance, transcripts, leaving certificates)."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
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

from schoolms.db.session import Base


class ClearanceType(Base):
    __tablename__ = "clearance_types"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)  # exam_clearance, transcript, leaving_certificate
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    minimum_payment_percentage = Column(Numeric(5, 2), nullable=False, default=100)
    requires_full_payment = Column(Boolean, nullable=False, default=False)
    allows_override = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class ClearanceRequest(Base):
    """
    Financial snapshot taken when the request was made or decided.
    certificate_number is set only for approved requests.
    """

    __tablename__ = "clearance_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','auto_approved','manually_approved','rejected')",
            name="chk_clearance_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    clearance_type_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("clearance_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(30), nullable=False, default="pending")
    total_fees = Column(Numeric(12, 2), nullable=False, default=0)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)
    total_aid = Column(Numeric(12, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(12, 2), nullable=False, default=0)
    payment_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    required_percentage = Column(Numeric(5, 2), nullable=False, default=100)
    certificate_number = Column(String(30), nullable=True, unique=True)  # CLR-2025-00001
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    request_notes = Column(Text, nullable=True)
    override_reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    requested_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
