"""Participant model: onboarded investors. Read-only to the engine."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, String, Text, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import UTCDateTime


class KycStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_address = Column(String(42), nullable=True, index=True)  # 0x-prefixed, 20 bytes

    tier_level = Column(String(20), nullable=False, default="bronze")  # TierLevel values

    # Compliance
    kyc_status = Column(String(20), nullable=False, default=KycStatus.PENDING.value)
    kyc_expires_at = Column(UTCDateTime, nullable=True)
    is_banned = Column(Boolean, nullable=False, default=False)
    ban_reason = Column(Text, nullable=True)
    country = Column(String(2), nullable=True)  # ISO 3166-1 alpha-2
    is_accredited_us = Column(Boolean, nullable=False, default=False)
    investor_classification = Column(String(50), nullable=True)  # accredited, qualified_purchaser, sophisticated

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
