"""AuditLog model: append-only record of consequential actions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import JSONType, UTCDateTime


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(String(255), nullable=True)  # admin id, participant id, or null for system
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)  # "Deal", "Contribution"
    resource_id = Column(String(255), nullable=False, index=True)
    detail = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    # NO updated_at -- audit rows are immutable (append-only)
