"""AllocationService: computes and persists per-participant allocations for a deal."""

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deal_engine.core.exceptions import AlreadyFinalizedError, NotFoundError
from deal_engine.db.models import Allocation, Contribution, ContributionStatus, Deal, KycStatus, Participant
from deal_engine.domain.allocation_strategies import (
    AllocationResult,
    ContributionEntry,
    DealTerms,
    EligibleParticipant,
    run_strategy,
)
from deal_engine.domain.money import ZERO, total
from deal_engine.domain.refunds import RefundSummary
from deal_engine.domain.tiers import TierLevel
from deal_engine.schemas.allocations import AllocationMethod, parse_allocation_config
from deal_engine.services.refund_service import RefundService

logger = structlog.get_logger(__name__)


class AllocationService:
    """Runs an allocation strategy over a deal's eligible population.

    Strategy config is validated before any database access. Reads and the
    allocation upsert share one transaction, so a failure leaves no
    partial allocation rows behind.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def calculate_allocations(
        self,
        deal_id: uuid.UUID,
        method: AllocationMethod | str,
        config: Any = None,
    ) -> list[AllocationResult]:
        """Compute allocations with the given strategy and upsert them.

        Args:
            deal_id: Deal UUID
            method: Allocation method name
            config: Method-specific config (dict or config model); required
                for lottery and hybrid

        Returns:
            The persisted allocation results

        Raises:
            AllocationValidationError: Malformed or missing config (nothing persisted)
            NotFoundError: Deal does not exist
            AlreadyFinalizedError: The deal's allocations are already finalized
        """
        parsed = parse_allocation_config(method, config)

        async with self.session_factory() as session:
            async with session.begin():
                deal = await session.get(Deal, deal_id)
                if deal is None:
                    raise NotFoundError("Deal", deal_id)

                await self._ensure_not_finalized(session, deal_id)

                terms = DealTerms(
                    hard_cap=deal.hard_cap,
                    max_contribution=deal.max_contribution,
                    min_tier_required=TierLevel(deal.min_tier_required) if deal.min_tier_required else None,
                )
                rows = await self._confirmed_contributions(session, deal_id)
                participants, contributions = _select_population(rows, terms.min_tier_required)

                results = run_strategy(parsed, terms, participants, contributions)

                await self._persist(session, deal_id, results, rows)

        logger.info(
            "allocations_calculated",
            deal_id=str(deal_id),
            method=parsed.method,
            eligible_participants=len(participants),
            allocation_count=len(results),
            total_allocated=str(total(r.amount for r in results)),
        )
        return results

    async def get_allocation(self, deal_id: uuid.UUID, participant_id: uuid.UUID) -> Allocation:
        """Read one participant's allocation row.

        Raises:
            NotFoundError: No allocation row for this (participant, deal)
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Allocation).where(
                    Allocation.deal_id == deal_id,
                    Allocation.participant_id == participant_id,
                )
            )
            allocation = result.scalar_one_or_none()
            if allocation is None:
                raise NotFoundError("Allocation", f"{deal_id}/{participant_id}")
            return allocation

    async def calculate_oversubscription_refunds(self, deal_id: uuid.UUID) -> RefundSummary:
        """Refunds owed to participants whose contributions exceed their final allocation."""
        return await RefundService(self.session_factory).calculate_refunds(deal_id)

    async def _ensure_not_finalized(self, session: AsyncSession, deal_id: uuid.UUID) -> None:
        result = await session.execute(
            select(func.count())
            .select_from(Allocation)
            .where(Allocation.deal_id == deal_id, Allocation.is_finalized.is_(True))
        )
        if result.scalar_one() > 0:
            raise AlreadyFinalizedError(deal_id)

    async def _confirmed_contributions(
        self, session: AsyncSession, deal_id: uuid.UUID
    ) -> list[tuple[Contribution, Participant]]:
        result = await session.execute(
            select(Contribution, Participant)
            .join(Participant, Contribution.participant_id == Participant.id)
            .where(
                Contribution.deal_id == deal_id,
                Contribution.status == ContributionStatus.CONFIRMED.value,
            )
            .order_by(Contribution.created_at, Contribution.id)
        )
        return [(contribution, participant) for contribution, participant in result.all()]

    async def _persist(
        self,
        session: AsyncSession,
        deal_id: uuid.UUID,
        results: list[AllocationResult],
        rows: list[tuple[Contribution, Participant]],
    ) -> None:
        """Upsert one allocation row per result, keyed by (participant, deal).

        Rows of participants missing from this run (banned, KYC revoked,
        contributions refunded since the last run) are zeroed so a stale
        amount can never reach finalization.
        """
        requested: dict[uuid.UUID, list] = {}
        for contribution, _ in rows:
            requested.setdefault(contribution.participant_id, []).append(contribution.amount)

        existing_result = await session.execute(select(Allocation).where(Allocation.deal_id == deal_id))
        existing = {allocation.participant_id: allocation for allocation in existing_result.scalars().all()}

        for result in results:
            allocation = existing.pop(result.participant_id, None)
            if allocation is None:
                allocation = Allocation(participant_id=result.participant_id, deal_id=deal_id, guaranteed_amount=ZERO)
                session.add(allocation)

            if result.method == AllocationMethod.GUARANTEED:
                allocation.guaranteed_amount = result.amount
            allocation.requested_amount = total(requested.get(result.participant_id, []))
            allocation.final_amount = result.amount
            allocation.allocation_method = result.method.value
            allocation.lottery_tickets = result.lottery_tickets
            allocation.lottery_won = result.lottery_won

        for participant_id, allocation in existing.items():
            allocation.requested_amount = total(requested.get(participant_id, []))
            allocation.guaranteed_amount = ZERO
            allocation.final_amount = ZERO
            allocation.allocation_method = None
            allocation.lottery_tickets = 0
            allocation.lottery_won = None

        if existing:
            logger.info("stale_allocations_cleared", deal_id=str(deal_id), cleared=len(existing))


def _select_population(
    rows: list[tuple[Contribution, Participant]],
    min_tier: TierLevel | None,
) -> tuple[list[EligibleParticipant], list[ContributionEntry]]:
    """Split confirmed contributions into the strategies' two inputs.

    Banned, non-KYC-approved and wallet-less participants are excluded from
    both, since a finalized allocation must be claimable by a wallet. The
    participant list is also tier-filtered; the contribution list keeps
    every tier because FCFS skips tier-ineligible contributions itself.
    """
    selected: dict[uuid.UUID, Participant] = {}
    amounts: dict[uuid.UUID, list] = {}
    contributions: list[ContributionEntry] = []

    for contribution, participant in rows:
        if (
            participant.is_banned
            or participant.kyc_status != KycStatus.APPROVED.value
            or not participant.wallet_address
        ):
            continue

        tier = TierLevel(participant.tier_level)
        contributions.append(
            ContributionEntry(
                participant_id=participant.id,
                tier_level=tier,
                amount=contribution.amount,
                created_at=contribution.created_at,
            )
        )
        if not tier.at_least(min_tier):
            continue

        selected.setdefault(participant.id, participant)
        amounts.setdefault(participant.id, []).append(contribution.amount)

    eligible = [
        EligibleParticipant(
            participant_id=participant_id,
            wallet_address=participant.wallet_address,
            tier_level=TierLevel(participant.tier_level),
            total_contributed=total(amounts[participant_id]),
        )
        for participant_id, participant in selected.items()
    ]
    return eligible, contributions
