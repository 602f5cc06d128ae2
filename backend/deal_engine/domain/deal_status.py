"""Deal status enum, transition table, and phase naming.

Pure domain logic with no external dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType


class DealStatus(str, Enum):
    """Deal lifecycle status."""

    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REGISTRATION_OPEN = "registration_open"
    GUARANTEED_ALLOCATION = "guaranteed_allocation"
    FCFS = "fcfs"
    SETTLEMENT = "settlement"
    DISTRIBUTING = "distributing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Legal edges. COMPLETED and CANCELLED are terminal.
TRANSITIONS = MappingProxyType({
    DealStatus.DRAFT: frozenset({DealStatus.UNDER_REVIEW, DealStatus.CANCELLED}),
    DealStatus.UNDER_REVIEW: frozenset({DealStatus.APPROVED, DealStatus.CANCELLED}),
    DealStatus.APPROVED: frozenset({DealStatus.REGISTRATION_OPEN, DealStatus.CANCELLED}),
    DealStatus.REGISTRATION_OPEN: frozenset({DealStatus.GUARANTEED_ALLOCATION, DealStatus.CANCELLED}),
    DealStatus.GUARANTEED_ALLOCATION: frozenset(
        {DealStatus.FCFS, DealStatus.SETTLEMENT, DealStatus.CANCELLED}
    ),
    DealStatus.FCFS: frozenset({DealStatus.SETTLEMENT, DealStatus.CANCELLED}),
    DealStatus.SETTLEMENT: frozenset({DealStatus.DISTRIBUTING, DealStatus.CANCELLED}),
    DealStatus.DISTRIBUTING: frozenset({DealStatus.COMPLETED, DealStatus.CANCELLED}),
    DealStatus.COMPLETED: frozenset(),
    DealStatus.CANCELLED: frozenset(),
})

TERMINAL_STATUSES = frozenset({DealStatus.COMPLETED, DealStatus.CANCELLED})

# Statuses during which contributions are accepted
CONTRIBUTION_STATUSES = frozenset({DealStatus.GUARANTEED_ALLOCATION, DealStatus.FCFS})


class PhaseName(str, Enum):
    """Named DealPhase records, in timeline order."""

    REGISTRATION = "Registration"
    GUARANTEED_ALLOCATION = "Guaranteed Allocation"
    FCFS_OVERFLOW = "FCFS Overflow"
    SETTLEMENT = "Settlement"
    DISTRIBUTION = "Distribution"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {phase: index for index, phase in enumerate(PhaseName, start=1)}

STATUS_PHASE = MappingProxyType({
    DealStatus.REGISTRATION_OPEN: PhaseName.REGISTRATION,
    DealStatus.GUARANTEED_ALLOCATION: PhaseName.GUARANTEED_ALLOCATION,
    DealStatus.FCFS: PhaseName.FCFS_OVERFLOW,
    DealStatus.SETTLEMENT: PhaseName.SETTLEMENT,
    DealStatus.DISTRIBUTING: PhaseName.DISTRIBUTION,
})


class LifecycleAction(str, Enum):
    """Manual lifecycle actions exposed to administrators."""

    SUBMIT_FOR_REVIEW = "submit_for_review"
    APPROVE = "approve"
    OPEN_REGISTRATION = "open_registration"
    CLOSE_REGISTRATION = "close_registration"
    OPEN_CONTRIBUTIONS = "open_contributions"
    CLOSE_CONTRIBUTIONS = "close_contributions"
    START_DISTRIBUTION = "start_distribution"
    COMPLETE = "complete"
    CANCEL = "cancel"


ACTION_TARGET = MappingProxyType({
    LifecycleAction.SUBMIT_FOR_REVIEW: DealStatus.UNDER_REVIEW,
    LifecycleAction.APPROVE: DealStatus.APPROVED,
    LifecycleAction.OPEN_REGISTRATION: DealStatus.REGISTRATION_OPEN,
    LifecycleAction.CLOSE_REGISTRATION: DealStatus.GUARANTEED_ALLOCATION,
    LifecycleAction.OPEN_CONTRIBUTIONS: DealStatus.GUARANTEED_ALLOCATION,
    LifecycleAction.CLOSE_CONTRIBUTIONS: DealStatus.SETTLEMENT,
    LifecycleAction.START_DISTRIBUTION: DealStatus.DISTRIBUTING,
    LifecycleAction.COMPLETE: DealStatus.COMPLETED,
    LifecycleAction.CANCEL: DealStatus.CANCELLED,
})

# Source statuses each action accepts. open_contributions may re-assert
# GUARANTEED_ALLOCATION, which is not an edge in TRANSITIONS.
ACTION_SOURCES = MappingProxyType({
    LifecycleAction.OPEN_CONTRIBUTIONS: frozenset(
        {DealStatus.REGISTRATION_OPEN, DealStatus.GUARANTEED_ALLOCATION}
    ),
    LifecycleAction.CLOSE_CONTRIBUTIONS: frozenset({DealStatus.GUARANTEED_ALLOCATION, DealStatus.FCFS}),
})


def can_transition_to(current: DealStatus, target: DealStatus) -> bool:
    """Pure membership check against the transition table."""
    return DealStatus(target) in TRANSITIONS[DealStatus(current)]


def action_allowed(action: LifecycleAction, current: DealStatus) -> bool:
    """Whether a manual action may run from `current`."""
    sources = ACTION_SOURCES.get(action)
    if sources is not None:
        return current in sources
    return can_transition_to(current, ACTION_TARGET[action])


@dataclass(frozen=True)
class DealSchedule:
    """The scheduled timestamps the auto-transition looks at."""

    registration_open_at: datetime | None = None
    registration_close_at: datetime | None = None
    contribution_close_at: datetime | None = None
    distribution_at: datetime | None = None


def due_transition(
    status: DealStatus,
    schedule: DealSchedule,
    now: datetime,
    has_fcfs_phase: bool = False,
) -> DealStatus | None:
    """Return the one-step target status whose timestamp has passed, if any.

    Pure function: no DB access. Returns None when nothing is due or the
    edge would be illegal.
    """
    target: DealStatus | None = None

    if status == DealStatus.APPROVED and _passed(schedule.registration_open_at, now):
        target = DealStatus.REGISTRATION_OPEN
    elif status == DealStatus.REGISTRATION_OPEN and _passed(schedule.registration_close_at, now):
        target = DealStatus.GUARANTEED_ALLOCATION
    elif status == DealStatus.GUARANTEED_ALLOCATION and _passed(schedule.contribution_close_at, now):
        target = DealStatus.FCFS if has_fcfs_phase else DealStatus.SETTLEMENT
    elif status == DealStatus.FCFS and _passed(schedule.contribution_close_at, now):
        target = DealStatus.SETTLEMENT
    elif status == DealStatus.SETTLEMENT and _passed(schedule.distribution_at, now):
        target = DealStatus.DISTRIBUTING

    if target is None or not can_transition_to(status, target):
        return None
    return target


def _passed(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and now >= moment
