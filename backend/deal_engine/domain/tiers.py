"""Participant tiers and their static configuration.

Pure domain logic with no external dependencies. The table is built once
at import time and is read-only thereafter.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from types import MappingProxyType


class TierLevel(str, Enum):
    """Staking tiers, lowest to highest."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def at_least(self, minimum: "TierLevel | None") -> bool:
        """True if this tier is at or above `minimum` (None means no minimum)."""
        return minimum is None or self.rank >= minimum.rank


_TIER_RANK = {level: index for index, level in enumerate(TierLevel, start=1)}

TOKEN_DECIMALS = 18


@dataclass(frozen=True)
class TierConfig:
    """Static configuration for one tier."""

    level: TierLevel
    name: str
    min_stake: int  # base units (18 decimals)
    lock_days: int
    allocation_multiplier: Decimal
    lottery_tickets: int


def _stake(tokens: int) -> int:
    return tokens * 10**TOKEN_DECIMALS


TIER_CONFIG: tuple[TierConfig, ...] = (
    TierConfig(TierLevel.BRONZE, "Bronze", _stake(1_000), 30, Decimal(1), 1),
    TierConfig(TierLevel.SILVER, "Silver", _stake(5_000), 30, Decimal(2), 3),
    TierConfig(TierLevel.GOLD, "Gold", _stake(25_000), 90, Decimal(5), 8),
    TierConfig(TierLevel.PLATINUM, "Platinum", _stake(100_000), 90, Decimal(12), 20),
    TierConfig(TierLevel.DIAMOND, "Diamond", _stake(500_000), 180, Decimal(25), 50),
)

_BY_LEVEL = MappingProxyType({tier.level: tier for tier in TIER_CONFIG})

# Default per-tier amount for the guaranteed strategy
GUARANTEED_AMOUNTS = MappingProxyType({
    TierLevel.BRONZE: Decimal("200"),
    TierLevel.SILVER: Decimal("500"),
    TierLevel.GOLD: Decimal("1000"),
    TierLevel.PLATINUM: Decimal("3000"),
    TierLevel.DIAMOND: Decimal("5000"),
})


def get_tier_config(level: TierLevel) -> TierConfig:
    """Return the configuration for a tier level."""
    return _BY_LEVEL[TierLevel(level)]


def tiers_at_or_above(minimum: TierLevel | None) -> list[TierLevel]:
    """All tier levels that satisfy a deal's minimum tier requirement."""
    return [tier.level for tier in TIER_CONFIG if tier.level.at_least(minimum)]


def tier_by_stake(amount: int, lock_days: int) -> TierConfig | None:
    """Highest tier whose stake and lock requirements are both met.

    Args:
        amount: Staked amount in base units
        lock_days: Lock period of the stake in days

    Returns:
        The qualifying TierConfig, or None below Bronze
    """
    for tier in reversed(TIER_CONFIG):
        if amount >= tier.min_stake and lock_days >= tier.lock_days:
            return tier
    return None


def next_tier(level: TierLevel) -> TierConfig | None:
    """The tier above `level`, or None at Diamond."""
    index = TierLevel(level).rank  # rank is 1-based, so it indexes the next tier
    if index >= len(TIER_CONFIG):
        return None
    return TIER_CONFIG[index]
