import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
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


class FinancialAidType(Base):
    """
    Coverage rule offered by a sponsor.
    coverage_type: full | percentage | fixed_amount | specific_items
    """

    __tablename__ = "financial_aid_types"
    __table_args__ = (
        CheckConstraint(
            "coverage_type IN ('full','percentage','fixed_amount','specific_items')",
            name="chk_aid_type_coverage",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sponsor_id = Column(Uuid(as_uuid=True), ForeignKey("sponsors.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    coverage_type = Column(String(30), nullable=False)
    coverage_percentage = Column(Numeric(5, 2), nullable=True)
    coverage_amount = Column(Numeric(12, 2), nullable=True)
    covered_items = Column(JSON, nullable=True)  # list of fee structure item names
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class StudentFinancialAid(Base):
    """
    Aid award for a student in an academic year. term_id NULL means the whole year.
    Coverage columns copy the aid type at assignment and may be overridden per student.
    """

    __tablename__ = "student_financial_aid"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','active','suspended','completed','rejected')",
            name="chk_student_aid_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    sponsor_id = Column(Uuid(as_uuid=True), ForeignKey("sponsors.id", ondelete="RESTRICT"), nullable=False, index=True)
    aid_type_id = Column(Uuid(as_uuid=True), ForeignKey("financial_aid_types.id", ondelete="RESTRICT"), nullable=False)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="SET NULL"), nullable=True)
    coverage_type = Column(String(30), nullable=False)
    coverage_percentage = Column(Numeric(5, 2), nullable=True)
    coverage_amount = Column(Numeric(12, 2), nullable=True)
    covered_items = Column(JSON, nullable=True)
    # Amount written to the student fee when aid was last applied
    calculated_aid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="approved")
    conditions = Column(Text, nullable=True)  # e.g. "maintain 60% average"
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    assigned_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
