"""Student fee: the per-term financial obligation of one student."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from schoolms.core.enums import FeeStatus
from schoolms.db.session import Base


class StudentFee(Base):
    """
    Snapshot of the fee structure assigned to a student for a term.
    balance = total_amount - amount_paid - discount_amount (discount_amount is financial aid).
    """

    __tablename__ = "student_fees"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_year_id", "term_id", name="uq_student_fee_period"),
        CheckConstraint(
            "status IN ('unpaid','partial','paid','waived','overdue')",
            name="chk_student_fee_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid(as_uuid=True), ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=FeeStatus.unpaid.value)
    due_date = Column(Date, nullable=False)
    assigned_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
