"""Tests for lifecycle endpoints."""

from datetime import datetime, timedelta, timezone

import pytest

pytestmark = pytest.mark.integration


async def test_action_transitions_deal(client, create_deal):
    deal = await create_deal(status="draft")

    response = await client.post(
        f"/api/deals/{deal.id}/phase", json={"action": "submit_for_review", "actor_id": "admin-1"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["previous_status"] == "draft"
    assert body["new_status"] == "under_review"


async def test_illegal_action_returns_409(client, create_deal):
    deal = await create_deal(status="draft")

    response = await client.post(f"/api/deals/{deal.id}/phase", json={"action": "close_contributions"})

    assert response.status_code == 409
    assert response.json()["code"] == "ILLEGAL_TRANSITION"


async def test_unknown_action_rejected(client, create_deal):
    deal = await create_deal(status="draft")

    response = await client.post(f"/api/deals/{deal.id}/phase", json={"action": "launch"})

    assert response.status_code == 422


async def test_get_phase(client, create_deal):
    deal = await create_deal(status="approved", registration_close_at=datetime.now(timezone.utc) + timedelta(days=1))
    await client.post(f"/api/deals/{deal.id}/phase", json={"action": "open_registration"})

    response = await client.get(f"/api/deals/{deal.id}/phase")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "registration_open"
    assert body["current_phase"]["phase_name"] == "Registration"
    assert body["is_within_registration_window"] is True


async def test_auto_transition(client, create_deal):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    deal = await create_deal(status="approved", registration_open_at=past, registration_close_at=None)

    first = await client.post(f"/api/deals/{deal.id}/phase/auto")
    second = await client.post(f"/api/deals/{deal.id}/phase/auto")

    assert first.json()["transitioned"] is True
    assert first.json()["transition"]["new_status"] == "registration_open"
    assert second.json() == {"deal_id": str(deal.id), "transitioned": False, "transition": None}
