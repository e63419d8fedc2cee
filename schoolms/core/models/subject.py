"""Subjects and the per-term subject enrolment of students."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid

from schoolms.db.session import Base


class Subject(Base):
    """
    Subject taught at one curriculum level (junior = Forms 1-2, senior = Forms 3-4).
    Subjects without a stream are offered to every class of the level; streamed subjects only to that stream.
    """

    __tablename__ = "subjects"
    __table_args__ = (
        CheckConstraint("curriculum_level IN ('junior','senior')", name="chk_subject_level"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    description = Column(Text, nullable=True)
    curriculum_level = Column(String(10), nullable=False, default="junior")
    stream = Column(String(50), nullable=True)
    is_compulsory = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class StudentSubject(Base):
    """A student taking a subject in one term."""

    __tablename__ = "student_subjects"
    __table_args__ = (
        UniqueConstraint("student_id", "subject_id", "academic_year_id", "term_id", name="uq_student_subject_term"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Uuid(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(Uuid(as_uuid=True), ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id", ondelete="CASCADE"), nullable=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    enrolled_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
