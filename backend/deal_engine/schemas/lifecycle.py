"""Deal lifecycle Pydantic schemas for API requests and responses."""

from datetime import datetime

from pydantic import BaseModel, Field

from deal_engine.domain.deal_status import DealStatus, LifecycleAction


class LifecycleActionRequest(BaseModel):
    """Manual lifecycle action performed by an administrator."""

    action: LifecycleAction
    actor_id: str | None = Field(default=None, max_length=255)


class TransitionResponse(BaseModel):
    deal_id: str
    previous_status: DealStatus
    new_status: DealStatus
    message: str
    active_phase: str | None = None


class AutoTransitionResponse(BaseModel):
    """Result of a time-based check. `transitioned` is False when nothing was due."""

    deal_id: str
    transitioned: bool
    transition: TransitionResponse | None = None


class PhaseResponse(BaseModel):
    phase_name: str
    phase_order: int
    starts_at: datetime
    ends_at: datetime
    is_active: bool


class DealPhaseResponse(BaseModel):
    deal_id: str
    status: DealStatus
    current_phase: PhaseResponse | None
    next_phase: PhaseResponse | None
    phases: list[PhaseResponse]
    is_within_registration_window: bool
    is_within_contribution_window: bool
