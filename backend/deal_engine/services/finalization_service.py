"""FinalizationService: locks allocations and commits them to a hash tree."""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deal_engine.core.config import get_settings
from deal_engine.core.exceptions import (
    AlreadyFinalizedError,
    NoPendingAllocationsError,
    NotFoundError,
    UnclaimableAllocationError,
)
from deal_engine.crypto.merkle import AllocationLeaf, build_tree, is_claimable_address, verify_proof
from deal_engine.db.models import Allocation, Deal, Participant
from deal_engine.domain.money import to_base_units
from deal_engine.services.audit import record_audit
from deal_engine.services.refund_service import RefundService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FinalizationResult:
    deal_id: uuid.UUID
    commitment_root: str
    allocations_finalized: int
    non_zero_allocations: int


class FinalizationService:
    """One-time, irreversible finalization of a deal's allocations.

    The "not already finalized" guard is enforced inside the write
    transaction by a conditional update of deals.commitment_root, so two
    racing calls cannot both commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def finalize_allocations(self, deal_id: uuid.UUID, now: datetime | None = None) -> FinalizationResult:
        """Finalize every pending allocation, store proofs and the root, then process refunds.

        Zero-amount allocations are finalized but left out of the tree.

        Raises:
            NotFoundError: Deal does not exist
            AlreadyFinalizedError: The deal was finalized before (or concurrently)
            NoPendingAllocationsError: No allocation rows to finalize
            UnclaimableAllocationError: A non-zero allocation has no valid wallet, or
                shares its wallet with another participant
        """
        if now is None:
            now = datetime.now(timezone.utc)
        decimals = get_settings().commitment_decimals

        async with self.session_factory() as session:
            async with session.begin():
                deal = await session.get(Deal, deal_id)
                if deal is None:
                    raise NotFoundError("Deal", deal_id)

                finalized_count = await session.execute(
                    select(func.count())
                    .select_from(Allocation)
                    .where(Allocation.deal_id == deal_id, Allocation.is_finalized.is_(True))
                )
                if deal.commitment_root is not None or finalized_count.scalar_one() > 0:
                    raise AlreadyFinalizedError(deal_id)

                result = await session.execute(
                    select(Allocation, Participant.wallet_address)
                    .join(Participant, Allocation.participant_id == Participant.id)
                    .where(Allocation.deal_id == deal_id, Allocation.is_finalized.is_(False))
                    .order_by(Allocation.created_at, Allocation.id)
                )
                pending = result.all()
                if not pending:
                    raise NoPendingAllocationsError(deal_id)

                claimable = [(allocation, wallet) for allocation, wallet in pending if allocation.final_amount > 0]
                _ensure_claimable(deal_id, claimable)
                tree = build_tree(
                    [AllocationLeaf(wallet, to_base_units(a.final_amount, decimals)) for a, wallet in claimable]
                )
                root = tree.root

                # Guard: only the first writer sets the root
                claimed = await session.execute(
                    update(Deal)
                    .where(Deal.id == deal_id, Deal.commitment_root.is_(None))
                    .values(commitment_root=root, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    raise AlreadyFinalizedError(deal_id)

                for allocation, wallet in pending:
                    allocation.is_finalized = True
                    allocation.finalized_at = now
                    if allocation.final_amount > 0:
                        allocation.commitment_proof = json.dumps(tree.proof_for(wallet))

                record_audit(
                    session,
                    action="ALLOCATIONS_FINALIZED",
                    resource_type="Deal",
                    resource_id=deal_id,
                    detail={
                        "commitment_root": root,
                        "allocations_finalized": len(pending),
                        "non_zero_allocations": len(claimable),
                    },
                )

        logger.info(
            "allocations_finalized",
            deal_id=str(deal_id),
            commitment_root=root,
            allocations_finalized=len(pending),
            non_zero_allocations=len(claimable),
        )

        await RefundService(self.session_factory).process_refunds(deal_id, now=now)

        return FinalizationResult(
            deal_id=deal_id,
            commitment_root=root,
            allocations_finalized=len(pending),
            non_zero_allocations=len(claimable),
        )

    async def verify_allocation(self, deal_id: uuid.UUID, participant_id: uuid.UUID) -> bool:
        """Recompute a participant's inclusion check from the stored proof and root.

        Returns False for unfinalized, zero-amount, or tampered allocations.

        Raises:
            NotFoundError: Deal or allocation does not exist
        """
        decimals = get_settings().commitment_decimals

        async with self.session_factory() as session:
            deal = await session.get(Deal, deal_id)
            if deal is None:
                raise NotFoundError("Deal", deal_id)

            result = await session.execute(
                select(Allocation, Participant.wallet_address)
                .join(Participant, Allocation.participant_id == Participant.id)
                .where(Allocation.deal_id == deal_id, Allocation.participant_id == participant_id)
            )
            row = result.one_or_none()
            if row is None:
                raise NotFoundError("Allocation", f"{deal_id}/{participant_id}")
            allocation, wallet = row

        if not allocation.is_finalized or allocation.commitment_proof is None or deal.commitment_root is None:
            return False

        return verify_proof(
            deal.commitment_root,
            wallet,
            to_base_units(allocation.final_amount, decimals),
            json.loads(allocation.commitment_proof),
        )


def _ensure_claimable(deal_id: uuid.UUID, claimable: list[tuple[Allocation, str | None]]) -> None:
    invalid = [a.participant_id for a, wallet in claimable if not wallet or not is_claimable_address(wallet)]
    if invalid:
        raise UnclaimableAllocationError(deal_id, invalid, "missing or invalid wallet address")

    holders: dict[str, list[uuid.UUID]] = {}
    for allocation, wallet in claimable:
        holders.setdefault(wallet.lower(), []).append(allocation.participant_id)
    shared = [pid for pids in holders.values() if len(pids) > 1 for pid in pids]
    if shared:
        raise UnclaimableAllocationError(deal_id, shared, "wallet address shared by several participants")
