"""Allocation model: one row per (participant, deal).

Once is_finalized is set the row is immutable: final_amount,
allocation_method and commitment_proof are never written again.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import Money, UTCDateTime


class Allocation(Base):
    __tablename__ = "allocations"
    __table_args__ = (UniqueConstraint("participant_id", "deal_id", name="uq_allocations_participant_deal"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(Uuid(as_uuid=True), ForeignKey("participants.id"), nullable=False, index=True)
    deal_id = Column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True)

    guaranteed_amount = Column(Money, nullable=False, default=Decimal(0))
    requested_amount = Column(Money, nullable=False, default=Decimal(0))
    final_amount = Column(Money, nullable=False, default=Decimal(0))
    allocation_method = Column(String(20), nullable=True)  # AllocationMethod values; null = registered only

    lottery_tickets = Column(Integer, nullable=False, default=0)
    lottery_won = Column(Boolean, nullable=True)

    # Set by close_contributions: allocation round is over, awaiting finalization
    finalization_eligible = Column(Boolean, nullable=False, default=False)

    is_finalized = Column(Boolean, nullable=False, default=False, index=True)
    finalized_at = Column(UTCDateTime, nullable=True)
    commitment_proof = Column(Text, nullable=True)  # JSON list of 0x sibling hashes

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
