import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, String, Uuid

from schoolms.db.session import Base


class AcademicYear(Base):
    """School academic year (e.g. "2025/2026"). Exactly one may be active."""

    __tablename__ = "academic_years"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
