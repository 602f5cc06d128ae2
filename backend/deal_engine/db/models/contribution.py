"""Contribution model: capital committed by a participant to a deal."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, ForeignKey, String, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import Money, UTCDateTime


class ContributionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REFUNDED = "refunded"


class Contribution(Base):
    __tablename__ = "contributions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(Uuid(as_uuid=True), ForeignKey("participants.id"), nullable=False, index=True)
    deal_id = Column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default=ContributionStatus.PENDING.value)

    # Filled when a refund is computed (oversubscription or cancellation)
    refund_amount = Column(Money, nullable=True)
    refunded_at = Column(UTCDateTime, nullable=True)

    # Arrival order for FCFS
    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
