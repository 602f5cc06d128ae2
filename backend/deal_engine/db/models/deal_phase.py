"""DealPhase model: named, time-bounded segments of a deal's timeline."""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint, Uuid

from deal_engine.db.base import Base
from deal_engine.db.types import UTCDateTime


class DealPhase(Base):
    __tablename__ = "deal_phases"
    __table_args__ = (UniqueConstraint("deal_id", "phase_name", name="uq_deal_phases_deal_name"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_id = Column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True)

    phase_name = Column(String(50), nullable=False)  # PhaseName values
    phase_order = Column(Integer, nullable=False)
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
