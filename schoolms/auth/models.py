import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid

from schoolms.db.session import Base


class User(Base):
    """Login account. `role` is one of UserRole; students and guardians also have a domain record."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(30), nullable=True)
    password_hash = Column(Text, nullable=False)
    # admin, headteacher, deputy_headteacher, teacher, staff, student, guardian
    role = Column(String(30), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    # Set for accounts created by an admin with a temporary password
    must_change_password = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
