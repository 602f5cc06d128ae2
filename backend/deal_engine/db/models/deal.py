"""Deal model: token sale deals.

Created by the deal-creation flow. The engine owns status, the aggregate
counters, the schedule timestamps it stamps on transitions, and the
commitment root.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Column, Integer, String, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import JSONType, Money, UTCDateTime


class Deal(Base):
    __tablename__ = "deals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True, unique=True)

    status = Column(String(50), nullable=False, default="draft", index=True)  # DealStatus values

    # Caps and limits
    hard_cap = Column(Money, nullable=False)
    soft_cap = Column(Money, nullable=True)
    min_contribution = Column(Money, nullable=False, default=Decimal(0))
    max_contribution = Column(Money, nullable=False, default=Decimal(0))  # 0 = no per-participant cap

    # Eligibility requirements
    min_tier_required = Column(String(20), nullable=True)  # TierLevel values
    requires_kyc = Column(Boolean, nullable=False, default=True)
    requires_accreditation = Column(Boolean, nullable=False, default=False)
    allowed_countries = Column(JSONType, nullable=False, default=list)
    blocked_countries = Column(JSONType, nullable=False, default=list)

    # Schedule
    registration_open_at = Column(UTCDateTime, nullable=True)
    registration_close_at = Column(UTCDateTime, nullable=True)
    contribution_open_at = Column(UTCDateTime, nullable=True)
    contribution_close_at = Column(UTCDateTime, nullable=True)
    distribution_at = Column(UTCDateTime, nullable=True)
    vesting_start_at = Column(UTCDateTime, nullable=True)

    # Set once by finalization
    commitment_root = Column(String(66), nullable=True)

    # Aggregates maintained by the contribution flow
    total_raised = Column(Money, nullable=False, default=Decimal(0))
    contributor_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
