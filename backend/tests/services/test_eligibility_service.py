"""Tests for EligibilityService: loads state and reports every check."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from deal_engine.db.models import Allocation, ContributionStatus
from deal_engine.services.eligibility_service import EligibilityService

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

ALL_CHECKS = {
    "wallet_connected",
    "user_not_banned",
    "kyc_status",
    "tier_requirement",
    "deal_status",
    "hard_cap",
    "geo_restriction",
    "contribution_limits",
    "user_registered",
}


@pytest.fixture
def register(session_factory):
    async def _register(deal, participant) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(Allocation(participant_id=participant.id, deal_id=deal.id))

    return _register


async def test_eligible_participant_passes_every_check(session_factory, create_deal, create_participant, register):
    deal = await create_deal()
    participant = await create_participant()
    await register(deal, participant)

    result = await EligibilityService(session_factory).check_eligibility(
        participant.id, deal.id, amount=Decimal("100"), now=NOW
    )

    assert result.eligible
    assert {check.name for check in result.checks} == ALL_CHECKS
    assert result.failed_checks == []


async def test_unregistered_participant_fails_registration_only(session_factory, create_deal, create_participant):
    deal = await create_deal()
    participant = await create_participant()

    result = await EligibilityService(session_factory).check_eligibility(participant.id, deal.id, now=NOW)

    assert not result.eligible
    assert [check.name for check in result.failed_checks] == ["user_registered"]


async def test_every_failure_is_reported(session_factory, create_deal, create_participant, register):
    deal = await create_deal(blocked_countries=["US"], min_tier_required="gold")
    participant = await create_participant(is_banned=True, kyc_status="pending", country="US")
    await register(deal, participant)

    result = await EligibilityService(session_factory).check_eligibility(participant.id, deal.id, now=NOW)

    assert {check.name for check in result.failed_checks} == {
        "user_not_banned",
        "kyc_status",
        "tier_requirement",
        "geo_restriction",
    }
    assert len(result.checks) == len(ALL_CHECKS)


async def test_contribution_limits_count_pending_and_confirmed(
    session_factory, create_deal, create_participant, add_contribution, register
):
    deal = await create_deal(max_contribution=Decimal("500"))
    participant = await create_participant()
    await register(deal, participant)
    await add_contribution(deal, participant, "300", status=ContributionStatus.PENDING)
    await add_contribution(deal, participant, "150", minutes=1)
    await add_contribution(deal, participant, "1000", status=ContributionStatus.REFUNDED, minutes=2)
    service = EligibilityService(session_factory)

    within = await service.check_eligibility(participant.id, deal.id, amount=Decimal("50"), now=NOW)
    over = await service.check_eligibility(participant.id, deal.id, amount=Decimal("51"), now=NOW)

    assert within.eligible
    assert [check.name for check in over.failed_checks] == ["contribution_limits"]


async def test_closed_deal_fails_status_check(session_factory, create_deal, create_participant, register):
    deal = await create_deal(status="settlement")
    participant = await create_participant()
    await register(deal, participant)

    result = await EligibilityService(session_factory).check_eligibility(participant.id, deal.id, now=NOW)

    assert [check.name for check in result.failed_checks] == ["deal_status"]


async def test_missing_participant(session_factory, create_deal):
    deal = await create_deal()

    result = await EligibilityService(session_factory).check_eligibility(uuid.uuid4(), deal.id, now=NOW)

    assert not result.eligible
    assert [check.name for check in result.checks] == ["participant_exists"]


async def test_missing_deal(session_factory, create_participant):
    participant = await create_participant()

    result = await EligibilityService(session_factory).check_eligibility(participant.id, uuid.uuid4(), now=NOW)

    assert [check.name for check in result.checks] == ["deal_exists"]
