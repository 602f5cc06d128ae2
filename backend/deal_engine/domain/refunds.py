"""Oversubscription refund computation.

Pure domain logic: takes finalized allocation amounts and the deal's
contributions, returns what each participant is owed back.
"""

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, localcontext

from deal_engine.domain.money import MONEY_CONTEXT, ZERO


@dataclass(frozen=True)
class ContributionRecord:
    id: uuid.UUID
    participant_id: uuid.UUID
    amount: Decimal
    refunded_amount: Decimal = ZERO  # refund already recorded on this contribution


@dataclass(frozen=True)
class RefundEntry:
    participant_id: uuid.UUID
    deal_id: uuid.UUID
    contribution_id: uuid.UUID  # latest contribution; the refund is recorded there
    contributed_amount: Decimal
    allocated_amount: Decimal
    refund_amount: Decimal


@dataclass
class RefundSummary:
    deal_id: uuid.UUID
    total_contributed: Decimal = ZERO
    total_allocated: Decimal = ZERO
    total_refunds: Decimal = ZERO
    entries: list[RefundEntry] = field(default_factory=list)

    @property
    def refund_count(self) -> int:
        return len(self.entries)


def compute_refunds(
    deal_id: uuid.UUID,
    allocated: Mapping[uuid.UUID, Decimal],
    contributions: Sequence[ContributionRecord],
) -> RefundSummary:
    """refund = contributed - allocated - already refunded, when positive.

    Args:
        deal_id: The deal being settled
        allocated: Finalized final_amount per participant; absent means zero
        contributions: Contributions in ascending creation order

    Returns:
        RefundSummary with one entry per participant still owed money
    """
    per_participant: dict[uuid.UUID, list[ContributionRecord]] = {}
    for contribution in contributions:
        per_participant.setdefault(contribution.participant_id, []).append(contribution)

    summary = RefundSummary(deal_id=deal_id)

    with localcontext(MONEY_CONTEXT):
        for participant_id, records in per_participant.items():
            contributed = sum((r.amount for r in records), ZERO)
            already_refunded = sum((r.refunded_amount for r in records), ZERO)
            allocation = allocated.get(participant_id, ZERO)

            summary.total_contributed += contributed
            summary.total_allocated += allocation

            owed = contributed - allocation - already_refunded
            if owed <= 0:
                continue

            summary.total_refunds += owed
            summary.entries.append(
                RefundEntry(
                    participant_id=participant_id,
                    deal_id=deal_id,
                    contribution_id=records[-1].id,
                    contributed_amount=contributed,
                    allocated_amount=allocation,
                    refund_amount=owed,
                )
            )

    return summary
