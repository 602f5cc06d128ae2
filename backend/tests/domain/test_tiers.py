"""Tests for the static tier table."""

from decimal import Decimal

import pytest

from deal_engine.domain.tiers import (
    GUARANTEED_AMOUNTS,
    TIER_CONFIG,
    TierLevel,
    get_tier_config,
    next_tier,
    tier_by_stake,
    tiers_at_or_above,
)

pytestmark = pytest.mark.unit

TOKEN = 10**18


def test_tiers_are_ordered_bronze_to_diamond():
    ranks = [level.rank for level in TierLevel]
    assert ranks == [1, 2, 3, 4, 5]
    assert [tier.level for tier in TIER_CONFIG] == list(TierLevel)


def test_at_least_compares_by_rank():
    assert TierLevel.GOLD.at_least(TierLevel.SILVER)
    assert TierLevel.GOLD.at_least(TierLevel.GOLD)
    assert not TierLevel.BRONZE.at_least(TierLevel.SILVER)
    assert TierLevel.BRONZE.at_least(None)


def test_get_tier_config_accepts_string_values():
    config = get_tier_config("platinum")
    assert config.level == TierLevel.PLATINUM
    assert config.allocation_multiplier == Decimal(12)
    assert config.lottery_tickets == 20
    assert config.lock_days == 90


def test_tiers_at_or_above():
    assert tiers_at_or_above(TierLevel.PLATINUM) == [TierLevel.PLATINUM, TierLevel.DIAMOND]
    assert tiers_at_or_above(None) == list(TierLevel)


@pytest.mark.parametrize(
    "stake_tokens,lock_days,expected",
    [
        (999, 365, None),
        (1_000, 30, TierLevel.BRONZE),
        (25_000, 30, TierLevel.SILVER),  # gold stake but gold needs a 90-day lock
        (25_000, 90, TierLevel.GOLD),
        (500_000, 180, TierLevel.DIAMOND),
    ],
)
def test_tier_by_stake(stake_tokens, lock_days, expected):
    tier = tier_by_stake(stake_tokens * TOKEN, lock_days)
    assert (tier.level if tier else None) == expected


def test_next_tier():
    assert next_tier(TierLevel.BRONZE).level == TierLevel.SILVER
    assert next_tier(TierLevel.DIAMOND) is None


def test_guaranteed_amounts_table_is_read_only():
    with pytest.raises(TypeError):
        GUARANTEED_AMOUNTS[TierLevel.BRONZE] = Decimal("1")
