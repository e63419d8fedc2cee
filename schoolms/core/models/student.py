import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from schoolms.db.session import Base


class Student(Base):
    """
    Student record attached to a `student` user.
    student_type decides which fee structure applies (internal boarders vs external day scholars).
    """

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint("student_type IN ('internal','external')", name="chk_student_type"),
        CheckConstraint("gender IN ('male','female')", name="chk_student_gender"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    student_number = Column(String(20), nullable=False, unique=True, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="SET NULL"), nullable=True, index=True)
    student_type = Column(String(20), nullable=False, default="internal")
    gender = Column(String(10), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    guardian_email = Column(String(255), nullable=True)
    phone_number = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class StudentGuardian(Base):
    """Link between a student and a guardian user. At most one primary guardian is expected."""

    __tablename__ = "student_guardians"
    __table_args__ = (UniqueConstraint("student_id", "guardian_id", name="uq_student_guardian"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    guardian_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship = Column(String(50), nullable=True)  # mother, father, uncle ...
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
