class DealEngineError(Exception):
    """Base exception for the deal engine."""

    pass


class NotFoundError(DealEngineError):
    """Raised when a deal or participant does not exist."""

    def __init__(self, resource: str, resource_id: object):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class AllocationValidationError(DealEngineError):
    """Raised when allocation strategy configuration is malformed."""

    pass


class IllegalTransitionError(DealEngineError):
    """Raised when a lifecycle action is not legal from the deal's current status."""

    def __init__(self, current: str, target: str, action: str | None = None):
        self.current = current
        self.target = target
        self.action = action
        prefix = f"Cannot {action.replace('_', ' ')}: " if action else ""
        super().__init__(f"{prefix}illegal transition from {current} to {target}")


class AlreadyFinalizedError(DealEngineError):
    """Raised when a deal's allocations have already been finalized. Not retryable."""

    def __init__(self, deal_id: object):
        self.deal_id = deal_id
        super().__init__(f"Deal {deal_id} already has finalized allocations. Cannot re-finalize.")


class NoPendingAllocationsError(DealEngineError):
    """Raised when finalization finds nothing to finalize."""

    def __init__(self, deal_id: object):
        self.deal_id = deal_id
        super().__init__(f"No pending allocations found for deal {deal_id}")


class DealLockedError(DealEngineError):
    """Raised when another writer holds the per-deal lock."""

    def __init__(self, deal_id: object):
        self.deal_id = deal_id
        super().__init__(f"Deal {deal_id} is locked by another operation")


class UnclaimableAllocationError(DealEngineError):
    """Raised when a non-zero allocation cannot be committed to a wallet.

    The wallet is missing or malformed, or is shared with another
    participant of the same deal. Nothing is finalized; fix the participant
    records and recalculate.
    """

    def __init__(self, deal_id: object, participant_ids: list[object], reason: str):
        self.deal_id = deal_id
        self.participant_ids = participant_ids
        self.reason = reason
        ids = ", ".join(str(pid) for pid in participant_ids)
        super().__init__(f"Deal {deal_id} cannot be finalized: {reason} (participants: {ids})")
