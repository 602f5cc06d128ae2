"""Deal lifecycle API routes."""

import uuid

from fastapi import APIRouter, Depends

from deal_engine.api.dependencies import require_deal_lock
from deal_engine.db.base import get_session_factory
from deal_engine.schemas.lifecycle import (
    AutoTransitionResponse,
    DealPhaseResponse,
    LifecycleActionRequest,
    PhaseResponse,
    TransitionResponse,
)
from deal_engine.services.lifecycle_service import LifecycleService, PhaseSnapshot, TransitionResult

router = APIRouter()


def _phase_response(phase: PhaseSnapshot | None) -> PhaseResponse | None:
    if phase is None:
        return None
    return PhaseResponse(
        phase_name=phase.phase_name,
        phase_order=phase.phase_order,
        starts_at=phase.starts_at,
        ends_at=phase.ends_at,
        is_active=phase.is_active,
    )


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        deal_id=str(result.deal_id),
        previous_status=result.previous_status,
        new_status=result.new_status,
        message=result.message,
        active_phase=result.active_phase.value if result.active_phase else None,
    )


@router.get("/{deal_id}/phase", response_model=DealPhaseResponse)
async def get_deal_phase(deal_id: uuid.UUID):
    """Current status, current/next phase, and window flags."""
    service = LifecycleService(get_session_factory())
    info = await service.get_deal_current_phase(deal_id)

    return DealPhaseResponse(
        deal_id=str(info.deal_id),
        status=info.status,
        current_phase=_phase_response(info.current_phase),
        next_phase=_phase_response(info.next_phase),
        phases=[_phase_response(p) for p in info.phases],
        is_within_registration_window=info.is_within_registration_window,
        is_within_contribution_window=info.is_within_contribution_window,
    )


@router.post("/{deal_id}/phase", response_model=TransitionResponse)
async def perform_lifecycle_action(
    deal_id: uuid.UUID,
    request: LifecycleActionRequest,
    _lock: str = Depends(require_deal_lock),
):
    """Apply a manual lifecycle action.

    Raises:
        NotFoundError (404): Deal not found
        IllegalTransitionError (409): Action not legal from the current status
    """
    service = LifecycleService(get_session_factory())
    result = await service.perform_action(deal_id, request.action, actor_id=request.actor_id)
    return _transition_response(result)


@router.post("/{deal_id}/phase/auto", response_model=AutoTransitionResponse)
async def auto_transition(deal_id: uuid.UUID, _lock: str = Depends(require_deal_lock)):
    """Advance the deal one step if a scheduled timestamp has passed. Safe to call repeatedly."""
    service = LifecycleService(get_session_factory())
    result = await service.transition_deal_phase(deal_id)

    return AutoTransitionResponse(
        deal_id=str(deal_id),
        transitioned=result is not None,
        transition=_transition_response(result) if result else None,
    )
