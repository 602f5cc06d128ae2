"""Allocation API routes: calculate, read, finalize, verify, settle.

Every write holds the per-deal lock (require_deal_lock).
"""

import json
import uuid

from fastapi import APIRouter, Depends

from deal_engine.api.dependencies import require_deal_lock
from deal_engine.db.base import get_session_factory
from deal_engine.domain.allocation_strategies import AllocationResult
from deal_engine.domain.money import total
from deal_engine.schemas.allocations import (
    AllocationResponse,
    AllocationResultResponse,
    CalculateAllocationsRequest,
    CalculateAllocationsResponse,
    FinalizeResponse,
    SettleResponse,
    VerifyAllocationResponse,
)
from deal_engine.services.allocation_service import AllocationService
from deal_engine.services.finalization_service import FinalizationService
from deal_engine.services.lifecycle_service import LifecycleService

router = APIRouter()


def _result_response(result: AllocationResult) -> AllocationResultResponse:
    return AllocationResultResponse(
        participant_id=str(result.participant_id),
        amount=result.amount,
        method=result.method,
        lottery_tickets=result.lottery_tickets,
        lottery_won=result.lottery_won,
    )


@router.post("/{deal_id}/allocations", response_model=CalculateAllocationsResponse)
async def calculate_allocations(
    deal_id: uuid.UUID,
    request: CalculateAllocationsRequest,
    _lock: str = Depends(require_deal_lock),
):
    """Compute and persist allocations with the requested strategy.

    Raises:
        AllocationValidationError (422): Malformed or missing strategy config
        NotFoundError (404): Deal not found
        AlreadyFinalizedError (409): Allocations already finalized
    """
    service = AllocationService(get_session_factory())
    results = await service.calculate_allocations(deal_id, request.method, request.config)

    return CalculateAllocationsResponse(
        deal_id=str(deal_id),
        method=request.method,
        total_allocated=total(r.amount for r in results),
        allocations=[_result_response(r) for r in results],
    )


@router.post("/{deal_id}/allocations/finalize", response_model=FinalizeResponse)
async def finalize_allocations(deal_id: uuid.UUID, _lock: str = Depends(require_deal_lock)):
    """Lock allocations, commit them to the claim tree, and process refunds.

    Raises:
        NotFoundError (404): Deal not found
        AlreadyFinalizedError (409): Deal already finalized
        NoPendingAllocationsError (409): Nothing to finalize
    """
    service = FinalizationService(get_session_factory())
    result = await service.finalize_allocations(deal_id)

    return FinalizeResponse(
        deal_id=str(deal_id),
        commitment_root=result.commitment_root,
        allocations_finalized=result.allocations_finalized,
    )


@router.post("/{deal_id}/settle", response_model=SettleResponse)
async def settle_deal(
    deal_id: uuid.UUID,
    request: CalculateAllocationsRequest,
    _lock: str = Depends(require_deal_lock),
):
    """Allocate and finalize in one call. The deal must be in Settlement."""
    service = LifecycleService(get_session_factory())
    settlement = await service.settle_deal(deal_id, request.method, request.config)

    return SettleResponse(
        deal_id=str(deal_id),
        method=request.method,
        total_allocated=total(r.amount for r in settlement.allocations),
        allocations=[_result_response(r) for r in settlement.allocations],
        commitment_root=settlement.finalization.commitment_root,
        allocations_finalized=settlement.finalization.allocations_finalized,
    )


@router.get("/{deal_id}/allocations/{participant_id}", response_model=AllocationResponse)
async def get_allocation(deal_id: uuid.UUID, participant_id: uuid.UUID):
    """Read a participant's allocation, including the inclusion proof once finalized."""
    service = AllocationService(get_session_factory())
    allocation = await service.get_allocation(deal_id, participant_id)

    return AllocationResponse(
        participant_id=str(allocation.participant_id),
        deal_id=str(allocation.deal_id),
        guaranteed_amount=allocation.guaranteed_amount,
        requested_amount=allocation.requested_amount,
        final_amount=allocation.final_amount,
        allocation_method=allocation.allocation_method,
        lottery_tickets=allocation.lottery_tickets,
        lottery_won=allocation.lottery_won,
        is_finalized=allocation.is_finalized,
        finalized_at=allocation.finalized_at,
        commitment_proof=json.loads(allocation.commitment_proof) if allocation.commitment_proof else None,
    )


@router.get("/{deal_id}/allocations/{participant_id}/verify", response_model=VerifyAllocationResponse)
async def verify_allocation(deal_id: uuid.UUID, participant_id: uuid.UUID):
    """Check a finalized allocation's stored proof against the deal's commitment root."""
    service = FinalizationService(get_session_factory())
    verified = await service.verify_allocation(deal_id, participant_id)
    return VerifyAllocationResponse(deal_id=str(deal_id), participant_id=str(participant_id), verified=verified)
