import pytest

from config import settings

WEBHOOK_TOKEN = "billing-webhook-token-for-tests"


@pytest.fixture(autouse=True)
def billing_secret(monkeypatch):
    monkeypatch.setattr(settings, "BILLING_WEBHOOK_SECRET", WEBHOOK_TOKEN)


@pytest.fixture
def create_plan(api_client, create_account, headers_for):
    async def _create(name: str, price_cents: int, credits: int) -> str:
        await create_account("plan-admin", role="admin")
        response = await api_client.post(
            "/admin/plans",
            json={"name": name, "price_cents": price_cents, "credits": credits},
            headers=headers_for("plan-admin"),
        )
        assert response.status_code == 201
        return response.json()["plan"]["id"]

    return _create


async def _notify(api_client, subscription_id: str, payment_id: str, status: str, token: str = WEBHOOK_TOKEN):
    return await api_client.post(
        "/billing/payments",
        json={"payment_id": payment_id, "subscription_id": subscription_id, "status": status, "amount_cents": 4990},
        headers={"X-Billing-Token": token},
    )


@pytest.mark.asyncio
async def test_free_plan_grants_credits_from_billing(api_client, create_account, create_plan, headers_for):
    await create_account("starter")
    plan_id = await create_plan("Free", 0, 20)
    headers = headers_for("starter")

    response = await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["is_free"] is True
    assert payload["payment_required"] is False
    assert payload["credits_granted"] == 20
    assert payload["subscription"]["status"] == "active"

    balance = await api_client.get("/credits/balance?history=true", headers=headers)
    assert balance.json()["credits"] == 20
    assert [entry["source"] for entry in balance.json()["history"]] == ["billing"]

    again = await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_paid_plan_waits_for_approved_payment(api_client, create_account, create_plan, headers_for):
    await create_account("buyer")
    plan_id = await create_plan("Pro", 4990, 500)
    headers = headers_for("buyer")

    pending = await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers)
    assert pending.status_code == 200
    assert pending.json()["payment_required"] is True
    assert pending.json()["subscription"]["status"] == "pending"
    reference = pending.json()["external_reference"]

    balance = await api_client.get("/credits/balance", headers=headers)
    assert balance.json()["credits"] == 0

    approved = await _notify(api_client, reference, "pay-1", "approved")
    assert approved.status_code == 200
    assert approved.json()["processed"] is True
    assert approved.json()["credits_granted"] == 500
    assert approved.json()["subscription"]["status"] == "active"
    assert approved.json()["subscription"]["renewal_date"] is not None

    replay = await _notify(api_client, reference, "pay-1", "approved")
    assert replay.status_code == 200
    assert replay.json()["processed"] is False

    balance = await api_client.get("/credits/balance?history=true", headers=headers)
    assert balance.json()["credits"] == 500
    assert [entry["source"] for entry in balance.json()["history"]] == ["billing"]

    current = await api_client.get("/billing/subscription", headers=headers)
    assert current.json()["has_subscription"] is True
    assert current.json()["plan"]["id"] == plan_id


@pytest.mark.asyncio
async def test_rejected_payment_cancels_subscription(api_client, create_account, create_plan, headers_for):
    await create_account("buyer")
    plan_id = await create_plan("Pro", 4990, 500)
    headers = headers_for("buyer")

    pending = await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers)
    reference = pending.json()["external_reference"]

    rejected = await _notify(api_client, reference, "pay-2", "rejected")
    assert rejected.status_code == 200
    assert rejected.json()["credits_granted"] == 0
    assert rejected.json()["subscription"]["status"] == "cancelled"

    balance = await api_client.get("/credits/balance", headers=headers)
    assert balance.json()["credits"] == 0


@pytest.mark.asyncio
async def test_payment_notifications_require_the_billing_token(api_client, create_account, create_plan, headers_for, monkeypatch):
    await create_account("buyer")
    plan_id = await create_plan("Pro", 4990, 500)
    pending = await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers_for("buyer"))
    reference = pending.json()["external_reference"]

    forged = await _notify(api_client, reference, "pay-3", "approved", token="guessed")
    assert forged.status_code == 401

    monkeypatch.setattr(settings, "BILLING_WEBHOOK_SECRET", "")
    unconfigured = await _notify(api_client, reference, "pay-3", "approved")
    assert unconfigured.status_code == 503

    balance = await api_client.get("/credits/balance", headers=headers_for("buyer"))
    assert balance.json()["credits"] == 0


@pytest.mark.asyncio
async def test_unknown_subscription_payment_is_404(api_client):
    response = await _notify(api_client, "missing-subscription", "pay-4", "approved")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancel_subscription(api_client, create_account, create_plan, headers_for):
    await create_account("leaver")
    plan_id = await create_plan("Free", 0, 0)
    headers = headers_for("leaver")

    no_subscription = await api_client.post("/billing/subscription/cancel", headers=headers)
    assert no_subscription.status_code == 404

    await api_client.post("/billing/subscribe", json={"plan_id": plan_id}, headers=headers)
    cancelled = await api_client.post("/billing/subscription/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["subscription"]["status"] == "cancelled"
    assert cancelled.json()["subscription"]["end_date"] is not None

    twice = await api_client.post("/billing/subscription/cancel", headers=headers)
    assert twice.status_code == 409


@pytest.mark.asyncio
async def test_subscribe_to_unknown_plan_is_404(api_client, create_account, headers_for):
    await create_account("buyer")
    response = await api_client.post("/billing/subscribe", json={"plan_id": "nope"}, headers=headers_for("buyer"))
    assert response.status_code == 404
