import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Uuid

from schoolms.db.session import Base


class FeeAuditLog(Base):
    """Immutable audit trail for fee-related financial changes."""

    __tablename__ = "fee_audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference_table = Column(String(50), nullable=False)
    reference_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    action_type = Column(String(30), nullable=False)  # CREATE, UPDATE, CANCEL, WAIVE, PAYMENT, ALLOCATE, DEACTIVATE
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
