"""School classes (Form 1 .. Form 4). Model named SchoolClass to avoid Python 'class' keyword."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid

from schoolms.db.session import Base


class SchoolClass(Base):
    """Class master. Soft delete via is_active."""

    __tablename__ = "classes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    level = Column(Integer, nullable=True)
    stream = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
