"""Tests for FinalizationService: commitment root, proofs, and the one-time guard."""

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from deal_engine.core.exceptions import (
    AlreadyFinalizedError,
    NoPendingAllocationsError,
    NotFoundError,
    UnclaimableAllocationError,
)
from deal_engine.crypto.merkle import verify_proof
from deal_engine.db.models import Allocation, AuditLog, Contribution, Deal, Participant
from deal_engine.domain.money import to_base_units
from deal_engine.services.allocation_service import AllocationService
from deal_engine.services.finalization_service import FinalizationService

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

pytestmark = pytest.mark.integration


@pytest.fixture
async def allocated_deal(session_factory, create_deal, create_participant, add_contribution):
    """FCFS over a 300 cap: 100 and 200 fill it, the third contributor gets zero."""
    deal = await create_deal(hard_cap=Decimal("300"))
    participants = [await create_participant() for _ in range(3)]
    for minutes, (participant, amount) in enumerate(zip(participants, ["100", "200", "300"])):
        await add_contribution(deal, participant, amount, minutes=minutes)

    await AllocationService(session_factory).calculate_allocations(deal.id, "fcfs")
    return deal, participants


async def _rows(session_factory, deal_id):
    async with session_factory() as session:
        deal = await session.get(Deal, deal_id)
        result = await session.execute(select(Allocation).where(Allocation.deal_id == deal_id))
        return deal, {a.participant_id: a for a in result.scalars().all()}


async def test_finalize_sets_root_and_locks_every_row(session_factory, allocated_deal):
    deal, participants = allocated_deal

    result = await FinalizationService(session_factory).finalize_allocations(deal.id, now=NOW)

    assert result.allocations_finalized == 3
    assert result.non_zero_allocations == 2
    assert result.commitment_root.startswith("0x") and len(result.commitment_root) == 66

    stored_deal, rows = await _rows(session_factory, deal.id)
    assert stored_deal.commitment_root == result.commitment_root
    assert all(row.is_finalized for row in rows.values())
    assert all(row.finalized_at == NOW for row in rows.values())


async def test_stored_proofs_verify_against_root(session_factory, allocated_deal):
    deal, participants = allocated_deal
    result = await FinalizationService(session_factory).finalize_allocations(deal.id)

    _, rows = await _rows(session_factory, deal.id)
    for participant in participants[:2]:
        row = rows[participant.id]
        proof = json.loads(row.commitment_proof)
        assert verify_proof(
            result.commitment_root, participant.wallet_address, to_base_units(row.final_amount), proof
        )


async def test_zero_allocation_finalized_without_proof(session_factory, allocated_deal):
    deal, participants = allocated_deal
    service = FinalizationService(session_factory)
    await service.finalize_allocations(deal.id)

    _, rows = await _rows(session_factory, deal.id)
    zero = rows[participants[2].id]
    assert zero.final_amount == Decimal("0")
    assert zero.is_finalized
    assert zero.commitment_proof is None
    assert await service.verify_allocation(deal.id, participants[2].id) is False


async def test_verify_allocation(session_factory, allocated_deal):
    deal, participants = allocated_deal
    service = FinalizationService(session_factory)
    await service.finalize_allocations(deal.id)

    assert await service.verify_allocation(deal.id, participants[0].id) is True

    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Allocation)
                .where(Allocation.deal_id == deal.id, Allocation.participant_id == participants[0].id)
                .values(final_amount=Decimal("101"))
            )

    assert await service.verify_allocation(deal.id, participants[0].id) is False


async def test_verify_before_finalization_is_false(session_factory, allocated_deal):
    deal, participants = allocated_deal
    assert await FinalizationService(session_factory).verify_allocation(deal.id, participants[0].id) is False


async def test_verify_unknown_allocation_raises(session_factory, allocated_deal):
    deal, _ = allocated_deal
    with pytest.raises(NotFoundError):
        await FinalizationService(session_factory).verify_allocation(deal.id, uuid.uuid4())


# ============================================================================
# One-time guard
# ============================================================================


async def test_second_finalize_raises_and_changes_nothing(session_factory, allocated_deal):
    deal, _ = allocated_deal
    service = FinalizationService(session_factory)
    first = await service.finalize_allocations(deal.id)

    with pytest.raises(AlreadyFinalizedError):
        await service.finalize_allocations(deal.id)

    stored_deal, _ = await _rows(session_factory, deal.id)
    assert stored_deal.commitment_root == first.commitment_root


async def test_existing_root_blocks_finalization(session_factory, allocated_deal):
    deal, _ = allocated_deal
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(Deal).where(Deal.id == deal.id).values(commitment_root="0x" + "ab" * 32))

    with pytest.raises(AlreadyFinalizedError):
        await FinalizationService(session_factory).finalize_allocations(deal.id)

    _, rows = await _rows(session_factory, deal.id)
    assert not any(row.is_finalized for row in rows.values())


async def test_no_pending_allocations(session_factory, create_deal):
    deal = await create_deal()
    with pytest.raises(NoPendingAllocationsError):
        await FinalizationService(session_factory).finalize_allocations(deal.id)


async def test_unknown_deal(session_factory):
    with pytest.raises(NotFoundError):
        await FinalizationService(session_factory).finalize_allocations(uuid.uuid4())


# ============================================================================
# Unclaimable allocations
# ============================================================================


async def test_shared_wallet_blocks_finalization(session_factory, create_deal, create_participant, add_contribution):
    deal = await create_deal(hard_cap=Decimal("1000"))
    shared = "0x" + "ab" * 20
    first = await create_participant(wallet_address=shared)
    second = await create_participant(wallet_address=shared.upper().replace("0X", "0x"))
    await add_contribution(deal, first, "100")
    await add_contribution(deal, second, "100", minutes=1)
    await AllocationService(session_factory).calculate_allocations(deal.id, "fcfs")

    with pytest.raises(UnclaimableAllocationError) as exc_info:
        await FinalizationService(session_factory).finalize_allocations(deal.id)

    assert set(exc_info.value.participant_ids) == {first.id, second.id}
    stored_deal, rows = await _rows(session_factory, deal.id)
    assert stored_deal.commitment_root is None
    assert not any(row.is_finalized for row in rows.values())


async def test_wallet_removed_after_allocation_blocks_finalization(session_factory, allocated_deal):
    deal, participants = allocated_deal
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Participant).where(Participant.id == participants[0].id).values(wallet_address=None)
            )

    with pytest.raises(UnclaimableAllocationError) as exc_info:
        await FinalizationService(session_factory).finalize_allocations(deal.id)

    assert exc_info.value.participant_ids == [participants[0].id]
    stored_deal, _ = await _rows(session_factory, deal.id)
    assert stored_deal.commitment_root is None


async def test_shared_wallet_with_zero_allocation_is_finalized(
    session_factory, create_deal, create_participant, add_contribution
):
    deal = await create_deal(hard_cap=Decimal("100"))
    shared = "0x" + "cd" * 20
    funded = await create_participant(wallet_address=shared)
    unfunded = await create_participant(wallet_address=shared)
    await add_contribution(deal, funded, "100")
    await add_contribution(deal, unfunded, "100", minutes=1)
    await AllocationService(session_factory).calculate_allocations(deal.id, "fcfs")

    result = await FinalizationService(session_factory).finalize_allocations(deal.id)

    assert result.allocations_finalized == 2
    assert result.non_zero_allocations == 1


# ============================================================================
# Follow-on refunds and audit
# ============================================================================


async def test_refunds_processed_after_finalization(session_factory, allocated_deal):
    deal, participants = allocated_deal
    await FinalizationService(session_factory).finalize_allocations(deal.id, now=NOW)

    async with session_factory() as session:
        result = await session.execute(select(Contribution).where(Contribution.deal_id == deal.id))
        contributions = {c.participant_id: c for c in result.scalars().all()}

    refunded = contributions[participants[2].id]
    assert refunded.status == "refunded"
    assert refunded.refund_amount == Decimal("300")
    assert refunded.refunded_at == NOW
    assert contributions[participants[0].id].status == "confirmed"
    assert contributions[participants[0].id].refund_amount is None


async def test_finalization_is_audited(session_factory, allocated_deal):
    deal, _ = allocated_deal
    result = await FinalizationService(session_factory).finalize_allocations(deal.id)

    async with session_factory() as session:
        audit = await session.execute(
            select(AuditLog).where(AuditLog.action == "ALLOCATIONS_FINALIZED", AuditLog.resource_id == str(deal.id))
        )
        entry = audit.scalar_one()

    assert entry.detail["commitment_root"] == result.commitment_root
    assert entry.detail["allocations_finalized"] == 3
