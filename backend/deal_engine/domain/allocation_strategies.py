"""Allocation strategies.

Pure functions: each takes the deal's terms and the already-loaded
population, and returns one AllocationResult per participant. No DB
access. All arithmetic runs in the money context; every output amount is
truncated to 18 fractional digits so a strategy never hands out more than
its pool.
"""

import random
import secrets
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Protocol

from deal_engine.domain.money import MONEY_CONTEXT, ZERO, quantize_amount
from deal_engine.domain.tiers import GUARANTEED_AMOUNTS, TierLevel, get_tier_config
from deal_engine.schemas.allocations import (
    AllocationConfig,
    AllocationMethod,
    FCFSConfig,
    GuaranteedConfig,
    HybridConfig,
    LotteryConfig,
    ProRataConfig,
)


@dataclass(frozen=True)
class DealTerms:
    """The deal fields every strategy reads."""

    hard_cap: Decimal
    max_contribution: Decimal  # 0 = no per-participant cap
    min_tier_required: TierLevel | None = None


@dataclass(frozen=True)
class EligibleParticipant:
    """A participant with confirmed contributions who passed population selection."""

    participant_id: uuid.UUID
    wallet_address: str | None
    tier_level: TierLevel
    total_contributed: Decimal


@dataclass(frozen=True)
class ContributionEntry:
    """A confirmed contribution, for arrival-order strategies."""

    participant_id: uuid.UUID
    tier_level: TierLevel
    amount: Decimal
    created_at: datetime


@dataclass(frozen=True)
class AllocationResult:
    participant_id: uuid.UUID
    amount: Decimal
    method: AllocationMethod
    lottery_tickets: int = 0
    lottery_won: bool | None = None


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


# ──────────────────────────────────────────────────────────────────────────────
# Guaranteed
# ──────────────────────────────────────────────────────────────────────────────


def guaranteed_allocations(
    terms: DealTerms,
    participants: Sequence[EligibleParticipant],
    config: GuaranteedConfig,
) -> list[AllocationResult]:
    """Fixed per-tier amount, scaled by hard_cap / raw_total when oversubscribed."""
    amounts = dict(GUARANTEED_AMOUNTS)
    if config.guaranteed_amounts:
        amounts.update(config.guaranteed_amounts)

    raw = [(p.participant_id, amounts[p.tier_level]) for p in participants]

    with localcontext(MONEY_CONTEXT):
        raw_total = sum((amount for _, amount in raw), ZERO)
        if raw_total > terms.hard_cap:
            raw = [
                (participant_id, quantize_amount(amount * terms.hard_cap / raw_total))
                for participant_id, amount in raw
            ]

    return [AllocationResult(participant_id, amount, AllocationMethod.GUARANTEED) for participant_id, amount in raw]


# ──────────────────────────────────────────────────────────────────────────────
# Pro-rata
# ──────────────────────────────────────────────────────────────────────────────


def pro_rata_allocations(
    terms: DealTerms,
    participants: Sequence[EligibleParticipant],
    config: ProRataConfig,
) -> list[AllocationResult]:
    """hard_cap * weight / total_weight, capped at the per-participant maximum.

    Weight is the confirmed contribution, times the tier multiplier in
    weighted mode. Zero total weight yields no allocations.
    """
    with localcontext(MONEY_CONTEXT):
        weights = []
        for p in participants:
            multiplier = get_tier_config(p.tier_level).allocation_multiplier if config.weighted else Decimal(1)
            weights.append((p.participant_id, p.total_contributed * multiplier))

        total_weight = sum((weight for _, weight in weights), ZERO)
        if total_weight <= 0:
            return []

        results = []
        for participant_id, weight in weights:
            amount = quantize_amount(terms.hard_cap * weight / total_weight)
            if terms.max_contribution > 0 and amount > terms.max_contribution:
                amount = terms.max_contribution
            results.append(AllocationResult(participant_id, amount, AllocationMethod.PRO_RATA))

    return results


# ──────────────────────────────────────────────────────────────────────────────
# Lottery
# ──────────────────────────────────────────────────────────────────────────────


def lottery_rng(seed: str | None) -> RandomSource:
    """Seeded, reproducible generator for audited draws; OS CSPRNG otherwise."""
    if seed is None:
        return secrets.SystemRandom()
    return random.Random(seed)


def shuffle_tickets(tickets: list, rng: RandomSource) -> None:
    """In-place Fisher-Yates shuffle."""
    for i in range(len(tickets) - 1, 0, -1):
        j = rng.randrange(i + 1)
        tickets[i], tickets[j] = tickets[j], tickets[i]


def lottery_allocations(
    terms: DealTerms,
    participants: Sequence[EligibleParticipant],
    config: LotteryConfig,
    rng: RandomSource | None = None,
) -> list[AllocationResult]:
    """Tier-weighted raffle with a fixed prize per winner.

    Every eligible participant appears exactly once in the result, winners
    with winner_allocation and losers with zero.
    """
    if not participants:
        return []

    # Canonical order so the draw depends only on the seed and the eligible set
    ordered = sorted(participants, key=lambda p: str(p.participant_id))

    with localcontext(MONEY_CONTEXT):
        by_pool = int(terms.hard_cap // config.winner_allocation)
    max_winners = min(config.max_winners, by_pool) if config.max_winners else by_pool

    tickets: list[uuid.UUID] = []
    for p in ordered:
        tickets.extend([p.participant_id] * get_tier_config(p.tier_level).lottery_tickets)

    shuffle_tickets(tickets, rng or lottery_rng(config.seed))

    winners: set[uuid.UUID] = set()
    for participant_id in tickets:
        if len(winners) >= max_winners:
            break
        winners.add(participant_id)

    results = []
    for p in ordered:
        won = p.participant_id in winners
        results.append(
            AllocationResult(
                participant_id=p.participant_id,
                amount=config.winner_allocation if won else ZERO,
                method=AllocationMethod.LOTTERY,
                lottery_tickets=get_tier_config(p.tier_level).lottery_tickets,
                lottery_won=won,
            )
        )
    return results


# ──────────────────────────────────────────────────────────────────────────────
# FCFS
# ──────────────────────────────────────────────────────────────────────────────


def fcfs_allocations(
    terms: DealTerms,
    contributions: Sequence[ContributionEntry],
    config: FCFSConfig,
) -> list[AllocationResult]:
    """Fill in strict arrival order until the hard cap is reached.

    Contributions below the deal's minimum tier are skipped. Once the pool
    is exhausted processing stops; tier-eligible contributors reached after
    that point get a zero allocation.
    """
    per_user_cap = config.max_per_user if config.max_per_user is not None else terms.max_contribution
    ordered = sorted(contributions, key=lambda c: c.created_at)

    allocated = ZERO
    per_user: dict[uuid.UUID, Decimal] = {}

    with localcontext(MONEY_CONTEXT):
        for contribution in ordered:
            if not contribution.tier_level.at_least(terms.min_tier_required):
                continue

            current = per_user.setdefault(contribution.participant_id, ZERO)
            if allocated >= terms.hard_cap:
                break

            if per_user_cap > 0:
                remaining_for_user = per_user_cap - current
                if remaining_for_user <= 0:
                    continue
            else:
                remaining_for_user = contribution.amount

            share = min(contribution.amount, remaining_for_user, terms.hard_cap - allocated)
            per_user[contribution.participant_id] = current + share
            allocated += share

        # Later tier-eligible contributors still get a (zero) row
        for contribution in ordered:
            if contribution.tier_level.at_least(terms.min_tier_required):
                per_user.setdefault(contribution.participant_id, ZERO)

    return [
        AllocationResult(participant_id, amount, AllocationMethod.FCFS) for participant_id, amount in per_user.items()
    ]


# ──────────────────────────────────────────────────────────────────────────────
# Hybrid
# ──────────────────────────────────────────────────────────────────────────────


def hybrid_allocations(
    terms: DealTerms,
    participants: Sequence[EligibleParticipant],
    contributions: Sequence[ContributionEntry],
    config: HybridConfig,
) -> list[AllocationResult]:
    """Split the hard cap by percentage and merge the sub-strategy results.

    Each sub-strategy runs against the deal's full terms; its raw results
    are then scaled down (never up) to fit its sub-pool. Per-participant
    amounts are summed across splits, and lottery fields are kept from the
    split that produced them.
    """
    merged: dict[uuid.UUID, AllocationResult] = {}

    with localcontext(MONEY_CONTEXT):
        for split in config.splits:
            split_pool = terms.hard_cap * split.percent / 100
            sub_results = run_strategy(split.strategy, terms, participants, contributions)

            sub_total = sum((r.amount for r in sub_results), ZERO)
            scale = split_pool / sub_total if sub_total > split_pool else None

            for result in sub_results:
                amount = quantize_amount(result.amount * scale) if scale is not None else result.amount
                existing = merged.get(result.participant_id)
                if existing is None:
                    merged[result.participant_id] = AllocationResult(
                        participant_id=result.participant_id,
                        amount=amount,
                        method=AllocationMethod.HYBRID,
                        lottery_tickets=result.lottery_tickets,
                        lottery_won=result.lottery_won,
                    )
                    continue

                merged[result.participant_id] = replace(
                    existing,
                    amount=existing.amount + amount,
                    lottery_tickets=result.lottery_tickets or existing.lottery_tickets,
                    lottery_won=result.lottery_won if result.lottery_won is not None else existing.lottery_won,
                )

    return list(merged.values())


def run_strategy(
    config: AllocationConfig,
    terms: DealTerms,
    participants: Sequence[EligibleParticipant],
    contributions: Sequence[ContributionEntry],
) -> list[AllocationResult]:
    """Dispatch a validated config to its strategy."""
    if isinstance(config, GuaranteedConfig):
        return guaranteed_allocations(terms, participants, config)
    if isinstance(config, ProRataConfig):
        return pro_rata_allocations(terms, participants, config)
    if isinstance(config, LotteryConfig):
        return lottery_allocations(terms, participants, config)
    if isinstance(config, FCFSConfig):
        return fcfs_allocations(terms, contributions, config)
    if isinstance(config, HybridConfig):
        return hybrid_allocations(terms, participants, contributions, config)
    raise TypeError(f"Unsupported allocation config: {type(config).__name__}")
