"""Re-export all models so Base.metadata sees them."""

from deal_engine.db.models.allocation import Allocation
from deal_engine.db.models.audit_log import AuditLog
from deal_engine.db.models.contribution import Contribution, ContributionStatus
from deal_engine.db.models.deal import Deal
from deal_engine.db.models.deal_phase import DealPhase
from deal_engine.db.models.participant import KycStatus, Participant

__all__ = [
    "Allocation",
    "AuditLog",
    "Contribution",
    "ContributionStatus",
    "Deal",
    "DealPhase",
    "KycStatus",
    "Participant",
]
