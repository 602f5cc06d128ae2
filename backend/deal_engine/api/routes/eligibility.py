"""Contribution eligibility API routes."""

import uuid
from decimal import Decimal

from fastapi import APIRouter, Query

from deal_engine.db.base import get_session_factory
from deal_engine.schemas.eligibility import CheckResultResponse, EligibilityResponse
from deal_engine.services.eligibility_service import EligibilityService

router = APIRouter()


@router.get("/{deal_id}/eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    deal_id: uuid.UUID,
    participant_id: uuid.UUID,
    amount: Decimal | None = Query(default=None, gt=0),
):
    """Run every eligibility check for a participant and optional contribution amount.

    Ineligibility is not an error: the response lists each failing check.
    """
    service = EligibilityService(get_session_factory())
    result = await service.check_eligibility(participant_id, deal_id, amount)

    return EligibilityResponse(
        participant_id=str(participant_id),
        deal_id=str(deal_id),
        eligible=result.eligible,
        checks=[CheckResultResponse(name=c.name, passed=c.passed, reason=c.reason) for c in result.checks],
        failed_checks=[CheckResultResponse(name=c.name, passed=c.passed, reason=c.reason) for c in result.failed_checks],
    )
