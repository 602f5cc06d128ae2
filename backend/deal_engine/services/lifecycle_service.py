"""LifecycleService: drives a deal through its status state machine.

Every status write is a conditional update on the previously read status,
inside the same transaction as the phase bookkeeping, side effects and
audit entry. A concurrent writer that changed the status first makes the
update match no row and the whole action rolls back.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deal_engine.core.config import get_settings
from deal_engine.core.exceptions import IllegalTransitionError, NotFoundError
from deal_engine.db.models import Allocation, Contribution, ContributionStatus, Deal, DealPhase
from deal_engine.domain.allocation_strategies import AllocationResult
from deal_engine.domain.deal_status import (
    ACTION_TARGET,
    STATUS_PHASE,
    DealSchedule,
    DealStatus,
    LifecycleAction,
    PhaseName,
    action_allowed,
    can_transition_to,
    due_transition,
)
from deal_engine.domain.money import total
from deal_engine.schemas.allocations import AllocationMethod
from deal_engine.services.allocation_service import AllocationService
from deal_engine.services.audit import record_audit
from deal_engine.services.finalization_service import FinalizationResult, FinalizationService

logger = structlog.get_logger(__name__)

ACTION_AUDIT = {
    LifecycleAction.SUBMIT_FOR_REVIEW: "DEAL_SUBMITTED_FOR_REVIEW",
    LifecycleAction.APPROVE: "DEAL_APPROVED",
    LifecycleAction.OPEN_REGISTRATION: "DEAL_OPEN_REGISTRATION",
    LifecycleAction.CLOSE_REGISTRATION: "DEAL_CLOSE_REGISTRATION",
    LifecycleAction.OPEN_CONTRIBUTIONS: "DEAL_OPEN_CONTRIBUTIONS",
    LifecycleAction.CLOSE_CONTRIBUTIONS: "DEAL_CLOSE_CONTRIBUTIONS",
    LifecycleAction.START_DISTRIBUTION: "DEAL_START_DISTRIBUTION",
    LifecycleAction.COMPLETE: "DEAL_COMPLETED",
    LifecycleAction.CANCEL: "DEAL_CANCELLED",
}

ACTION_MESSAGES = {
    LifecycleAction.SUBMIT_FOR_REVIEW: "Deal submitted for review.",
    LifecycleAction.APPROVE: "Deal approved.",
    LifecycleAction.OPEN_REGISTRATION: "Registration opened successfully.",
    LifecycleAction.CLOSE_REGISTRATION: "Registration closed. Guaranteed allocation phase started.",
    LifecycleAction.OPEN_CONTRIBUTIONS: "Contribution window opened. Guaranteed allocation phase is active.",
    LifecycleAction.CLOSE_CONTRIBUTIONS: "Contributions closed. Settlement phase started.",
    LifecycleAction.START_DISTRIBUTION: "Token distribution phase started.",
    LifecycleAction.COMPLETE: "Deal completed successfully.",
    LifecycleAction.CANCEL: "Deal cancelled. Refund process initiated for all contributions.",
}


@dataclass(frozen=True)
class TransitionResult:
    deal_id: uuid.UUID
    previous_status: DealStatus
    new_status: DealStatus
    message: str
    active_phase: PhaseName | None = None


@dataclass(frozen=True)
class PhaseSnapshot:
    phase_name: str
    phase_order: int
    starts_at: datetime
    ends_at: datetime
    is_active: bool


@dataclass(frozen=True)
class DealPhaseInfo:
    deal_id: uuid.UUID
    status: DealStatus
    current_phase: PhaseSnapshot | None
    next_phase: PhaseSnapshot | None
    phases: list[PhaseSnapshot] = field(default_factory=list)
    is_within_registration_window: bool = False
    is_within_contribution_window: bool = False


@dataclass(frozen=True)
class SettlementResult:
    allocations: list[AllocationResult]
    finalization: FinalizationResult


class LifecycleService:
    """Manual lifecycle actions, time-based auto-transition, and phase reads."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.settings = get_settings()

    # ──────────────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────────────

    async def can_transition_to(self, deal_id: uuid.UUID, target: DealStatus) -> bool:
        """Whether the deal's current status has a legal edge to `target`."""
        async with self.session_factory() as session:
            deal = await self._get_deal(session, deal_id)
            return can_transition_to(DealStatus(deal.status), target)

    async def get_deal_current_phase(self, deal_id: uuid.UUID, now: datetime | None = None) -> DealPhaseInfo:
        """Current and next phase by timestamp, plus registration/contribution window flags.

        Raises:
            NotFoundError: Deal does not exist
        """
        if now is None:
            now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            deal = await self._get_deal(session, deal_id)
            result = await session.execute(
                select(DealPhase).where(DealPhase.deal_id == deal_id).order_by(DealPhase.phase_order)
            )
            phases = [
                PhaseSnapshot(p.phase_name, p.phase_order, p.starts_at, p.ends_at, p.is_active)
                for p in result.scalars().all()
            ]

        current: PhaseSnapshot | None = None
        upcoming: PhaseSnapshot | None = None
        for index, phase in enumerate(phases):
            if phase.starts_at <= now <= phase.ends_at:
                current = phase
                upcoming = phases[index + 1] if index + 1 < len(phases) else None
                break
            if now < phase.starts_at:
                upcoming = phase
                break

        return DealPhaseInfo(
            deal_id=deal_id,
            status=DealStatus(deal.status),
            current_phase=current,
            next_phase=upcoming,
            phases=phases,
            is_within_registration_window=_within(deal.registration_open_at, deal.registration_close_at, now),
            is_within_contribution_window=_within(deal.contribution_open_at, deal.contribution_close_at, now),
        )

    # ──────────────────────────────────────────────────────────────────────
    # Time-based auto-transition
    # ──────────────────────────────────────────────────────────────────────

    async def transition_deal_phase(self, deal_id: uuid.UUID, now: datetime | None = None) -> TransitionResult | None:
        """Advance the deal one step if a scheduled timestamp has passed.

        Idempotent: returns None when nothing is due, the edge is illegal,
        or another writer moved the deal first.

        Raises:
            NotFoundError: Deal does not exist
        """
        if now is None:
            now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            async with session.begin():
                deal = await self._get_deal(session, deal_id)
                previous = DealStatus(deal.status)

                fcfs_phase = await session.execute(
                    select(DealPhase.id).where(
                        DealPhase.deal_id == deal_id,
                        DealPhase.phase_name == PhaseName.FCFS_OVERFLOW.value,
                    )
                )
                schedule = DealSchedule(
                    registration_open_at=deal.registration_open_at,
                    registration_close_at=deal.registration_close_at,
                    contribution_close_at=deal.contribution_close_at,
                    distribution_at=deal.distribution_at,
                )
                target = due_transition(previous, schedule, now, has_fcfs_phase=fcfs_phase.first() is not None)
                if target is None:
                    return None

                ends_at = self._phase_end(target, deal, now)
                if not await self._write_status(session, deal_id, previous, target, {}, now):
                    return None
                active = await self._advance_phases(session, deal_id, target, now, ends_at)

                record_audit(
                    session,
                    action="DEAL_AUTO_TRANSITION",
                    resource_type="Deal",
                    resource_id=deal_id,
                    detail={
                        "previous_status": previous.value,
                        "new_status": target.value,
                        "triggered_at": now.isoformat(),
                    },
                )

        logger.info(
            "deal_auto_transitioned",
            deal_id=str(deal_id),
            previous_status=previous.value,
            new_status=target.value,
        )
        return TransitionResult(
            deal_id=deal_id,
            previous_status=previous,
            new_status=target,
            message=f"Deal auto-transitioned from {previous.value} to {target.value}",
            active_phase=active,
        )

    # ──────────────────────────────────────────────────────────────────────
    # Manual actions
    # ──────────────────────────────────────────────────────────────────────

    async def submit_for_review(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.SUBMIT_FOR_REVIEW, actor_id, now)

    async def approve_deal(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.APPROVE, actor_id, now)

    async def open_registration(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.OPEN_REGISTRATION, actor_id, now)

    async def close_registration(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.CLOSE_REGISTRATION, actor_id, now)

    async def open_contributions(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.OPEN_CONTRIBUTIONS, actor_id, now)

    async def close_contributions(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.CLOSE_CONTRIBUTIONS, actor_id, now)

    async def start_distribution(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.START_DISTRIBUTION, actor_id, now)

    async def complete_deal(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.COMPLETE, actor_id, now)

    async def cancel_deal(
        self, deal_id: uuid.UUID, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        return await self.perform_action(deal_id, LifecycleAction.CANCEL, actor_id, now)

    async def perform_action(
        self,
        deal_id: uuid.UUID,
        action: LifecycleAction | str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Validate and apply a manual lifecycle action atomically.

        Args:
            deal_id: Deal UUID
            action: The lifecycle action to perform
            actor_id: Administrator performing the action (audit trail)
            now: Current time (injectable for testing)

        Returns:
            TransitionResult with previous/new status

        Raises:
            NotFoundError: Deal does not exist
            IllegalTransitionError: Action not legal from the current status
                (nothing is written)
        """
        action = LifecycleAction(action)
        target = ACTION_TARGET[action]
        if now is None:
            now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            async with session.begin():
                deal = await self._get_deal(session, deal_id)
                previous = DealStatus(deal.status)
                if not action_allowed(action, previous):
                    raise IllegalTransitionError(previous.value, target.value, action.value)

                values = _stamped_timestamps(action, deal, now)
                ends_at = self._phase_end(target, deal, now)
                audit_detail: dict[str, Any] = {"previous_status": previous.value, "new_status": target.value}

                if action == LifecycleAction.CLOSE_CONTRIBUTIONS:
                    audit_detail["total_raised"] = str(deal.total_raised)
                    audit_detail["contributor_count"] = deal.contributor_count

                if not await self._write_status(session, deal_id, previous, target, values, now):
                    raise IllegalTransitionError(previous.value, target.value, action.value)

                active = await self._advance_phases(session, deal_id, target, now, ends_at)
                await self._apply_side_effects(session, action, deal_id, actor_id, now, audit_detail)

                record_audit(
                    session,
                    action=ACTION_AUDIT[action],
                    resource_type="Deal",
                    resource_id=deal_id,
                    actor_id=actor_id,
                    detail=audit_detail,
                )

        logger.info(
            "deal_transitioned",
            deal_id=str(deal_id),
            action=action.value,
            previous_status=previous.value,
            new_status=target.value,
            actor_id=actor_id,
        )
        return TransitionResult(
            deal_id=deal_id,
            previous_status=previous,
            new_status=target,
            message=ACTION_MESSAGES[action],
            active_phase=active,
        )

    async def settle_deal(
        self,
        deal_id: uuid.UUID,
        method: AllocationMethod | str,
        config: Any = None,
        now: datetime | None = None,
    ) -> SettlementResult:
        """Run allocation then finalization for a deal in Settlement.

        Raises:
            NotFoundError: Deal does not exist
            IllegalTransitionError: Deal is not in Settlement
            AllocationValidationError: Malformed strategy config
            AlreadyFinalizedError: Deal was already finalized
        """
        async with self.session_factory() as session:
            deal = await self._get_deal(session, deal_id)
            status = DealStatus(deal.status)

        if status != DealStatus.SETTLEMENT:
            raise IllegalTransitionError(status.value, DealStatus.SETTLEMENT.value, "settle")

        allocations = await AllocationService(self.session_factory).calculate_allocations(deal_id, method, config)
        finalization = await FinalizationService(self.session_factory).finalize_allocations(deal_id, now=now)
        return SettlementResult(allocations=allocations, finalization=finalization)

    # ──────────────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────────────

    async def _get_deal(self, session: AsyncSession, deal_id: uuid.UUID) -> Deal:
        deal = await session.get(Deal, deal_id)
        if deal is None:
            raise NotFoundError("Deal", deal_id)
        return deal

    async def _write_status(
        self,
        session: AsyncSession,
        deal_id: uuid.UUID,
        previous: DealStatus,
        target: DealStatus,
        values: dict,
        now: datetime,
    ) -> bool:
        """Conditional status write. False if the status changed underneath us."""
        result = await session.execute(
            update(Deal)
            .where(Deal.id == deal_id, Deal.status == previous.value)
            .values(status=target.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _advance_phases(
        self,
        session: AsyncSession,
        deal_id: uuid.UUID,
        target: DealStatus,
        now: datetime,
        ends_at: datetime | None,
    ) -> PhaseName | None:
        """End the active phase and activate the one matching `target`, if any.

        Leaves at most one active phase per deal.
        """
        await session.execute(
            update(DealPhase)
            .where(DealPhase.deal_id == deal_id, DealPhase.is_active.is_(True))
            .values(is_active=False, ends_at=now)
            .execution_options(synchronize_session=False)
        )

        phase_name = STATUS_PHASE.get(target)
        if phase_name is None:
            return None

        result = await session.execute(
            select(DealPhase).where(DealPhase.deal_id == deal_id, DealPhase.phase_name == phase_name.value)
        )
        phase = result.scalar_one_or_none()
        if phase is None:
            phase = DealPhase(deal_id=deal_id, phase_name=phase_name.value, phase_order=phase_name.order)
            session.add(phase)

        phase.starts_at = now
        phase.ends_at = ends_at
        phase.is_active = True
        return phase_name

    def _phase_end(self, target: DealStatus, deal: Deal, now: datetime) -> datetime | None:
        """Scheduled end of the phase entered at `target`, else the default window."""
        if target == DealStatus.REGISTRATION_OPEN:
            scheduled, days = deal.registration_close_at, self.settings.default_phase_days
        elif target in (DealStatus.GUARANTEED_ALLOCATION, DealStatus.FCFS):
            scheduled, days = deal.contribution_close_at, self.settings.default_phase_days
        elif target == DealStatus.SETTLEMENT:
            scheduled, days = deal.distribution_at, self.settings.settlement_window_days
        elif target == DealStatus.DISTRIBUTING:
            scheduled, days = None, self.settings.distribution_window_days
        else:
            return None

        if scheduled is not None and scheduled > now:
            return scheduled
        return now + timedelta(days=days)

    async def _apply_side_effects(
        self,
        session: AsyncSession,
        action: LifecycleAction,
        deal_id: uuid.UUID,
        actor_id: str | None,
        now: datetime,
        audit_detail: dict,
    ) -> None:
        if action == LifecycleAction.CLOSE_REGISTRATION:
            registered = await session.execute(
                select(func.count()).select_from(Allocation).where(Allocation.deal_id == deal_id)
            )
            registered_count = registered.scalar_one()
            record_audit(
                session,
                action="DEAL_REGISTRATION_SNAPSHOT",
                resource_type="Deal",
                resource_id=deal_id,
                actor_id=actor_id,
                detail={"registered_count": registered_count, "snapshot_at": now.isoformat()},
            )

        elif action == LifecycleAction.CLOSE_CONTRIBUTIONS:
            # Finalization remains the one-time finalizer; this only marks rows ready for it
            marked = await session.execute(
                update(Allocation)
                .where(Allocation.deal_id == deal_id, Allocation.is_finalized.is_(False))
                .values(finalization_eligible=True, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            audit_detail["allocations_marked"] = marked.rowcount

        elif action == LifecycleAction.CANCEL:
            await self._flag_refunds(session, deal_id, actor_id, now)

    async def _flag_refunds(
        self, session: AsyncSession, deal_id: uuid.UUID, actor_id: str | None, now: datetime
    ) -> None:
        """Mark every Pending/Confirmed contribution refunded in full."""
        result = await session.execute(
            select(Contribution).where(
                Contribution.deal_id == deal_id,
                Contribution.status.in_([ContributionStatus.PENDING.value, ContributionStatus.CONFIRMED.value]),
            )
        )
        contributions = result.scalars().all()

        for contribution in contributions:
            contribution.status = ContributionStatus.REFUNDED.value
            contribution.refund_amount = contribution.amount
            contribution.refunded_at = now

        refund_total = total(c.amount for c in contributions)
        record_audit(
            session,
            action="DEAL_CANCEL_REFUNDS_TRIGGERED",
            resource_type="Deal",
            resource_id=deal_id,
            actor_id=actor_id,
            detail={"contributions_to_refund": len(contributions), "total_refund_amount": str(refund_total)},
        )
        logger.info(
            "deal_cancelled",
            deal_id=str(deal_id),
            contributions_to_refund=len(contributions),
            total_refund_amount=str(refund_total),
        )


def _stamped_timestamps(action: LifecycleAction, deal: Deal, now: datetime) -> dict:
    """Schedule fields an action fills in when they were not set in advance."""
    fields: tuple[str, ...] = ()
    if action == LifecycleAction.OPEN_REGISTRATION:
        fields = ("registration_open_at",)
    elif action == LifecycleAction.CLOSE_REGISTRATION:
        fields = ("registration_close_at", "contribution_open_at")
    elif action == LifecycleAction.OPEN_CONTRIBUTIONS:
        fields = ("contribution_open_at",)
    elif action == LifecycleAction.CLOSE_CONTRIBUTIONS:
        fields = ("contribution_close_at",)
    elif action == LifecycleAction.START_DISTRIBUTION:
        fields = ("distribution_at", "vesting_start_at")
    return {name: now for name in fields if getattr(deal, name) is None}


def _within(opens_at: datetime | None, closes_at: datetime | None, now: datetime) -> bool:
    return opens_at is not None and closes_at is not None and opens_at <= now <= closes_at
