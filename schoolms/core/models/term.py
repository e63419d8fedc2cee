import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid

from schoolms.db.session import Base


class Term(Base):
    """Term within an academic year. Fees, invoices and clearances are issued per term."""

    __tablename__ = "terms"
    __table_args__ = (UniqueConstraint("academic_year_id", "name", name="uq_term_year_name"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    academic_year_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("academic_years.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(50), nullable=False)  # e.g. "Term 1"
    term_number = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
