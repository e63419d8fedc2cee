"""Fee structure per academic year, term and student type, with line items."""

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
    UniqueConstraint,
    Uuid,
)

from schoolms.db.session import Base


class FeeStructure(Base):
    """One structure per (academic_year, term, student_type). total_amount = sum of item amounts."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint("academic_year_id", "term_id", "student_type", name="uq_fee_structure_period_type"),
        CheckConstraint("student_type IN ('internal','external')", name="chk_fee_structure_student_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    student_type = Column(String(20), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class FeeStructureItem(Base):
    __tablename__ = "fee_structure_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    fee_structure_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    is_mandatory = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
