"""EligibilityService: runs every contribution eligibility check for a participant."""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deal_engine.db.models import Allocation, Contribution, ContributionStatus, Deal, Participant
from deal_engine.domain.deal_status import DealStatus
from deal_engine.domain.eligibility import (
    EligibilityResult,
    build_result,
    check_contribution_limits,
    check_deal_status,
    check_geo,
    check_hard_cap,
    check_kyc,
    check_not_banned,
    check_registered,
    check_tier,
    check_wallet_connected,
    missing_resource,
)
from deal_engine.domain.money import total
from deal_engine.domain.tiers import TierLevel

logger = structlog.get_logger(__name__)


class EligibilityService:
    """Read-only eligibility evaluation. No check ever short-circuits another."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def check_eligibility(
        self,
        participant_id: uuid.UUID,
        deal_id: uuid.UUID,
        amount: Decimal | None = None,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Evaluate whether a participant may contribute `amount` to a deal.

        Args:
            participant_id: Participant UUID
            deal_id: Deal UUID
            amount: Optional proposed contribution, checked against hard cap and limits
            now: Current time (injectable for testing)

        Returns:
            EligibilityResult with every check, passed or not. A missing
            participant or deal yields a single failed existence check.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            participant = await session.get(Participant, participant_id)
            deal = await session.get(Deal, deal_id)

        if participant is None:
            return missing_resource("participant_exists", "Participant not found.")
        if deal is None:
            return missing_resource("deal_exists", "Deal not found.")

        # Separate sessions: one AsyncSession cannot run queries concurrently
        existing_total, has_allocation = await asyncio.gather(
            self._existing_contributions(participant_id, deal_id),
            self._has_allocation(participant_id, deal_id),
        )

        min_tier = TierLevel(deal.min_tier_required) if deal.min_tier_required else None
        checks = [
            check_wallet_connected(participant.wallet_address),
            check_not_banned(participant.is_banned, participant.ban_reason),
            check_kyc(
                requires_kyc=deal.requires_kyc,
                requires_accreditation=deal.requires_accreditation,
                kyc_status=participant.kyc_status,
                kyc_expires_at=participant.kyc_expires_at,
                is_accredited_us=participant.is_accredited_us,
                investor_classification=participant.investor_classification,
                now=now,
            ),
            check_tier(TierLevel(participant.tier_level), min_tier),
            check_deal_status(DealStatus(deal.status), deal.contribution_open_at, deal.contribution_close_at, now=now),
            check_hard_cap(deal.total_raised, deal.hard_cap, amount),
            check_geo(participant.country, deal.allowed_countries or [], deal.blocked_countries or []),
            check_contribution_limits(existing_total, deal.min_contribution, deal.max_contribution, amount),
            check_registered(has_allocation),
        ]

        result = build_result(checks)
        logger.info(
            "eligibility_checked",
            deal_id=str(deal_id),
            participant_id=str(participant_id),
            eligible=result.eligible,
            failed=[check.name for check in result.failed_checks],
        )
        return result

    async def _existing_contributions(self, participant_id: uuid.UUID, deal_id: uuid.UUID) -> Decimal:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Contribution.amount).where(
                    Contribution.participant_id == participant_id,
                    Contribution.deal_id == deal_id,
                    Contribution.status.in_([ContributionStatus.PENDING.value, ContributionStatus.CONFIRMED.value]),
                )
            )
            return total(result.scalars().all())

    async def _has_allocation(self, participant_id: uuid.UUID, deal_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Allocation.id).where(
                    Allocation.participant_id == participant_id,
                    Allocation.deal_id == deal_id,
                )
            )
            return result.scalar_one_or_none() is not None
