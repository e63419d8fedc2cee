import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from schoolms.db.session import Base


class Department(Base):
    """Academic department (Sciences, Languages ...). Soft delete only (is_active)."""

    __tablename__ = "departments"
    __table_args__ = (CheckConstraint("budget >= 0", name="chk_department_budget"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), nullable=False, unique=True)  # Uppercased; not editable after creation
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    budget = Column(Numeric(12, 2), nullable=True)
    head_of_department_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
