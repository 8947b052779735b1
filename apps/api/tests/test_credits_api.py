import pytest


@pytest.mark.asyncio
async def test_balance_requires_session(api_client):
    response = await api_client.get("/credits/balance")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_balance_for_unknown_account_token_is_unauthorized(api_client, headers_for):
    response = await api_client.get("/credits/balance", headers=headers_for("deleted-user"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_balance_with_history(api_client, create_account, create_feature, headers_for):
    await create_account("reader", credits=20)
    await create_feature("hashtags", 2)
    headers = headers_for("reader")

    consume = await api_client.post("/credits/consume", json={"feature_id": "hashtags"}, headers=headers)
    assert consume.status_code == 200

    response = await api_client.get("/credits/balance?history=true&limit=5", headers=headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["credits"] == 18
    assert len(payload["history"]) == 2
    assert {entry["operation"] for entry in payload["history"]} == {"add", "use"}
    assert payload["pagination"] == {"page": 1, "limit": 5, "skip": 0}


@pytest.mark.asyncio
async def test_verify_does_not_charge(api_client, create_account, create_feature, headers_for):
    await create_account("checker", credits=4)
    await create_feature("copywriting", 5)
    headers = headers_for("checker")

    response = await api_client.get("/credits/verify?feature_id=copywriting", headers=headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["has_enough"] is False
    assert payload["required"] == 5
    assert payload["available"] == 4
    assert payload["metered"] is True

    balance = await api_client.get("/credits/balance", headers=headers)
    assert balance.json()["credits"] == 4


@pytest.mark.asyncio
async def test_verify_unknown_feature_is_404(api_client, create_account, headers_for):
    await create_account("checker")
    response = await api_client.get("/credits/verify?feature_id=teleport", headers=headers_for("checker"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_consume_charges_then_returns_402(api_client, create_account, create_feature, headers_for):
    await create_account("spender", credits=100)
    await create_feature("copywriting", 30)
    await create_feature("offers", 80)
    headers = headers_for("spender")

    first = await api_client.post(
        "/credits/consume",
        json={"feature_id": "copywriting", "description": "Landing page copy"},
        headers=headers,
    )
    assert first.status_code == 200
    assert first.json()["consumed"] == 30
    assert first.json()["remaining_credits"] == 70
    assert first.json()["decision"] == "allowed"

    second = await api_client.post("/credits/consume", json={"feature_id": "offers"}, headers=headers)
    assert second.status_code == 402
    detail = second.json()["detail"]
    assert detail["required"] == 80
    assert detail["available"] == 70
    assert detail["feature_id"] == "offers"

    balance = await api_client.get("/credits/balance", headers=headers)
    assert balance.json()["credits"] == 70


@pytest.mark.asyncio
async def test_consume_inactive_feature_is_free(api_client, create_account, create_feature, headers_for):
    await create_account("lucky", credits=1)
    await create_feature("legacy", 10, active=False)

    response = await api_client.post("/credits/consume", json={"feature_id": "legacy"}, headers=headers_for("lucky"))
    assert response.status_code == 200
    assert response.json()["consumed"] == 0
    assert response.json()["decision"] == "allowed_free"


@pytest.mark.asyncio
async def test_consume_without_session_is_401(api_client, create_feature):
    await create_feature("copywriting", 5)
    response = await api_client.post("/credits/consume", json={"feature_id": "copywriting"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_consume_rejects_unknown_fields(api_client, create_account, headers_for):
    await create_account("strict")
    response = await api_client.post(
        "/credits/consume",
        json={"feature_id": "copywriting", "credits": 1},
        headers=headers_for("strict"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_me_reports_role_and_balance(api_client, create_account, headers_for):
    await create_account("boss", credits=12, role="admin")

    response = await api_client.get("/auth/me", headers=headers_for("boss"))
    assert response.status_code == 200
    payload = response.json()
    assert payload["user_id"] == "boss"
    assert payload["is_admin"] is True
    assert payload["credits"] == 12
