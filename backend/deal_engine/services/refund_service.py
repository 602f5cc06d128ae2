"""RefundService: computes and records oversubscription refunds."""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deal_engine.core.exceptions import NotFoundError
from deal_engine.db.models import Allocation, Contribution, ContributionStatus, Deal
from deal_engine.domain.money import ZERO, total
from deal_engine.domain.refunds import ContributionRecord, RefundSummary, compute_refunds
from deal_engine.services.audit import record_audit

logger = structlog.get_logger(__name__)


class RefundService:
    """Refunds never initiate transfers; they mark contributions for a payout process."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def calculate_refunds(self, deal_id: uuid.UUID) -> RefundSummary:
        """Compare each participant's contributions with their finalized allocation.

        Raises:
            NotFoundError: Deal does not exist
        """
        async with self.session_factory() as session:
            return await self._calculate(session, deal_id)

    async def process_refunds(self, deal_id: uuid.UUID, now: datetime | None = None) -> RefundSummary:
        """Record computed refunds on contributions, with audit entries.

        No-op returning an empty summary when nothing is owed.

        Raises:
            NotFoundError: Deal does not exist
        """
        if now is None:
            now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            async with session.begin():
                summary = await self._calculate(session, deal_id)
                if not summary.entries:
                    logger.info("refunds_processed", deal_id=str(deal_id), refund_count=0)
                    return summary

                for entry in summary.entries:
                    contribution = await session.get(Contribution, entry.contribution_id)
                    contribution.refund_amount = total([contribution.refund_amount or ZERO, entry.refund_amount])
                    contribution.status = ContributionStatus.REFUNDED.value
                    contribution.refunded_at = now

                    record_audit(
                        session,
                        action="REFUND_CALCULATED",
                        resource_type="Contribution",
                        resource_id=entry.contribution_id,
                        actor_id=str(entry.participant_id),
                        detail={
                            "deal_id": str(deal_id),
                            "contributed_amount": str(entry.contributed_amount),
                            "allocated_amount": str(entry.allocated_amount),
                            "refund_amount": str(entry.refund_amount),
                        },
                    )

                record_audit(
                    session,
                    action="DEAL_REFUNDS_PROCESSED",
                    resource_type="Deal",
                    resource_id=deal_id,
                    detail={
                        "total_contributed": str(summary.total_contributed),
                        "total_allocated": str(summary.total_allocated),
                        "total_refunds": str(summary.total_refunds),
                        "refund_count": summary.refund_count,
                    },
                )

        logger.info(
            "refunds_processed",
            deal_id=str(deal_id),
            refund_count=summary.refund_count,
            total_refunds=str(summary.total_refunds),
        )
        return summary

    async def _calculate(self, session: AsyncSession, deal_id: uuid.UUID) -> RefundSummary:
        deal = await session.get(Deal, deal_id)
        if deal is None:
            raise NotFoundError("Deal", deal_id)

        result = await session.execute(
            select(Allocation.participant_id, Allocation.final_amount).where(
                Allocation.deal_id == deal_id,
                Allocation.is_finalized.is_(True),
            )
        )
        allocated = {participant_id: amount for participant_id, amount in result.all()}

        # Refunded contributions stay in the totals so a second run nets them out
        result = await session.execute(
            select(Contribution)
            .where(
                Contribution.deal_id == deal_id,
                Contribution.status.in_([ContributionStatus.CONFIRMED.value, ContributionStatus.REFUNDED.value]),
            )
            .order_by(Contribution.created_at, Contribution.id)
        )
        records = [
            ContributionRecord(
                id=c.id,
                participant_id=c.participant_id,
                amount=c.amount,
                refunded_amount=c.refund_amount or ZERO,
            )
            for c in result.scalars().all()
        ]

        return compute_refunds(deal_id, allocated, records)
