"""Refund API routes."""

import uuid

from fastapi import APIRouter, Depends

from deal_engine.api.dependencies import require_deal_lock
from deal_engine.db.base import get_session_factory
from deal_engine.domain.refunds import RefundSummary
from deal_engine.schemas.refunds import RefundEntryResponse, RefundSummaryResponse
from deal_engine.services.refund_service import RefundService

router = APIRouter()


def _summary_response(summary: RefundSummary) -> RefundSummaryResponse:
    return RefundSummaryResponse(
        deal_id=str(summary.deal_id),
        total_contributed=summary.total_contributed,
        total_allocated=summary.total_allocated,
        total_refunds=summary.total_refunds,
        refund_count=summary.refund_count,
        entries=[
            RefundEntryResponse(
                participant_id=str(entry.participant_id),
                contribution_id=str(entry.contribution_id),
                contributed_amount=entry.contributed_amount,
                allocated_amount=entry.allocated_amount,
                refund_amount=entry.refund_amount,
            )
            for entry in summary.entries
        ],
    )


@router.get("/{deal_id}/refunds", response_model=RefundSummaryResponse)
async def calculate_refunds(deal_id: uuid.UUID):
    """Refunds owed to over-contributors. Read-only."""
    service = RefundService(get_session_factory())
    return _summary_response(await service.calculate_refunds(deal_id))


@router.post("/{deal_id}/refunds/process", response_model=RefundSummaryResponse)
async def process_refunds(deal_id: uuid.UUID, _lock: str = Depends(require_deal_lock)):
    """Record refunds on contributions. Returns an empty summary when nothing is owed."""
    service = RefundService(get_session_factory())
    return _summary_response(await service.process_refunds(deal_id))
