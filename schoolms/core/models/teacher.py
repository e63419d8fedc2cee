"""Teaching staff: teacher record attached to a user, with the subjects and classes they teach."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    Uuid,
)

from schoolms.db.session import Base


class Teacher(Base):
    """
    Teacher record. The user's role is teacher, headteacher or deputy_headteacher.
    teacher_type: permanent | temporary | tp (teaching practice)
    """

    __tablename__ = "teachers"
    __table_args__ = (
        CheckConstraint("gender IN ('male','female')", name="chk_teacher_gender"),
        CheckConstraint("teacher_type IN ('permanent','temporary','tp')", name="chk_teacher_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    employee_number = Column(String(30), nullable=False, unique=True, index=True)
    title = Column(String(10), nullable=True)  # mr, mrs, ms, miss, dr, prof, rev
    gender = Column(String(10), nullable=False)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    teacher_type = Column(String(20), nullable=False, default="permanent")
    qualification = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TeacherSubject(Base):
    __tablename__ = "teacher_subjects"
    __table_args__ = (UniqueConstraint("teacher_id", "subject_id", name="uq_teacher_subject"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Uuid(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class TeacherClass(Base):
    """Class a teacher is assigned to. role: subject_teacher | class_teacher"""

    __tablename__ = "teacher_classes"
    __table_args__ = (UniqueConstraint("teacher_id", "class_id", name="uq_teacher_class"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(30), nullable=False, default="subject_teacher")
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
