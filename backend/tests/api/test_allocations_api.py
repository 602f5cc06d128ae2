"""Tests for allocation, finalization, verification and settlement endpoints."""

import uuid
from decimal import Decimal

import pytest

pytestmark = pytest.mark.integration


@pytest.fixture
async def funded_deal(create_deal, create_participant, add_contribution):
    deal = await create_deal(hard_cap=Decimal("300"))
    participants = [await create_participant() for _ in range(2)]
    await add_contribution(deal, participants[0], "200")
    await add_contribution(deal, participants[1], "200", minutes=1)
    return deal, participants


async def test_calculate_allocations(client, funded_deal):
    deal, participants = funded_deal

    response = await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})

    assert response.status_code == 200
    body = response.json()
    assert body["method"] == "fcfs"
    assert Decimal(body["total_allocated"]) == Decimal("300")
    amounts = {a["participant_id"]: Decimal(a["amount"]) for a in body["allocations"]}
    assert amounts == {str(participants[0].id): Decimal("200"), str(participants[1].id): Decimal("100")}


async def test_invalid_config_returns_422(client, funded_deal):
    deal, _ = funded_deal
    splits = [{"percent": "60", "strategy": {"method": "pro_rata"}}, {"percent": "41", "strategy": {"method": "fcfs"}}]

    response = await client.post(
        f"/api/deals/{deal.id}/allocations", json={"method": "hybrid", "config": {"splits": splits}}
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_ALLOCATION_CONFIG"
    assert "debug_id" in response.json()


async def test_unknown_deal_returns_404(client):
    response = await client.post(f"/api/deals/{uuid.uuid4()}/allocations", json={"method": "pro_rata"})

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


async def test_finalize_twice_returns_409(client, funded_deal):
    deal, _ = funded_deal
    await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})

    first = await client.post(f"/api/deals/{deal.id}/allocations/finalize")
    second = await client.post(f"/api/deals/{deal.id}/allocations/finalize")

    assert first.status_code == 200
    assert first.json()["allocations_finalized"] == 2
    assert second.status_code == 409
    assert second.json()["code"] == "ALREADY_FINALIZED"


async def test_finalize_without_allocations_returns_409(client, create_deal):
    deal = await create_deal()

    response = await client.post(f"/api/deals/{deal.id}/allocations/finalize")

    assert response.status_code == 409
    assert response.json()["code"] == "NO_PENDING_ALLOCATIONS"


async def test_get_and_verify_finalized_allocation(client, funded_deal):
    deal, participants = funded_deal
    await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})
    finalized = await client.post(f"/api/deals/{deal.id}/allocations/finalize")

    allocation = await client.get(f"/api/deals/{deal.id}/allocations/{participants[0].id}")
    verify = await client.get(f"/api/deals/{deal.id}/allocations/{participants[0].id}/verify")

    assert allocation.status_code == 200
    body = allocation.json()
    assert body["is_finalized"] is True
    assert Decimal(body["requested_amount"]) == Decimal("200")
    assert isinstance(body["commitment_proof"], list)
    assert finalized.json()["commitment_root"].startswith("0x")
    assert verify.json()["verified"] is True


async def test_missing_allocation_returns_404(client, create_deal):
    deal = await create_deal()

    response = await client.get(f"/api/deals/{deal.id}/allocations/{uuid.uuid4()}")

    assert response.status_code == 404


async def test_locked_deal_returns_423(client, deal_lock, funded_deal):
    deal, _ = funded_deal
    await deal_lock.acquire(str(deal.id), "another-request")

    response = await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})

    assert response.status_code == 423
    assert response.json()["code"] == "DEAL_LOCKED"


async def test_lock_released_after_request(client, deal_lock, funded_deal):
    deal, _ = funded_deal

    await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})

    assert await deal_lock.is_locked(str(deal.id)) is None


async def test_reused_request_id_does_not_share_lock(client, deal_lock, funded_deal):
    deal, _ = funded_deal
    request_id = "5b0f7c2e-8a41-4d3b-9f6e-2c7a1d9e4b10"
    await deal_lock.acquire(str(deal.id), request_id)

    response = await client.post(
        f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"}, headers={"X-Request-ID": request_id}
    )

    assert response.status_code == 423
    assert response.headers["X-Request-ID"] == request_id


async def test_finalize_shared_wallet_returns_409(client, create_deal, create_participant, add_contribution):
    deal = await create_deal(hard_cap=Decimal("1000"))
    shared = "0x" + "ef" * 20
    for minutes in range(2):
        participant = await create_participant(wallet_address=shared)
        await add_contribution(deal, participant, "100", minutes=minutes)
    await client.post(f"/api/deals/{deal.id}/allocations", json={"method": "fcfs"})

    response = await client.post(f"/api/deals/{deal.id}/allocations/finalize")

    assert response.status_code == 409
    assert response.json()["code"] == "UNCLAIMABLE_ALLOCATION"


async def test_settle_outside_settlement_returns_409(client, funded_deal):
    deal, _ = funded_deal

    response = await client.post(f"/api/deals/{deal.id}/settle", json={"method": "fcfs"})

    assert response.status_code == 409
    assert response.json()["code"] == "ILLEGAL_TRANSITION"


async def test_settle(client, create_deal, create_participant, add_contribution):
    deal = await create_deal(status="settlement", hard_cap=Decimal("150"))
    participant = await create_participant()
    await add_contribution(deal, participant, "200")

    response = await client.post(f"/api/deals/{deal.id}/settle", json={"method": "pro_rata"})

    assert response.status_code == 200
    body = response.json()
    assert body["allocations_finalized"] == 1
    assert Decimal(body["total_allocated"]) == Decimal("150")

    refunds = await client.get(f"/api/deals/{deal.id}/refunds")
    # Refunded contributions are netted out once processed
    assert refunds.json()["entries"] == []
