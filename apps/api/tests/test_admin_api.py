import pytest


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(api_client, create_account, headers_for):
    await create_account("member")

    anonymous = await api_client.get("/admin/credit-settings")
    assert anonymous.status_code == 401

    member = await api_client.get("/admin/credit-settings", headers=headers_for("member"))
    assert member.status_code == 403


@pytest.mark.asyncio
async def test_feature_cost_crud(api_client, create_account, headers_for):
    await create_account("root", role="admin")
    headers = headers_for("root")

    created = await api_client.post(
        "/admin/credit-settings",
        json={"feature_id": "offers", "feature_name": "Offer Builder", "credit_cost": 8},
        headers=headers,
    )
    assert created.status_code == 200
    assert created.json()["setting"]["credit_cost"] == 8

    duplicate = await api_client.post(
        "/admin/credit-settings",
        json={"feature_id": "offers", "feature_name": "Offer Builder", "credit_cost": 9},
        headers=headers,
    )
    assert duplicate.status_code == 409

    patched = await api_client.patch("/admin/credit-settings/offers", json={"credit_cost": 12}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["setting"]["credit_cost"] == 12
    assert patched.json()["setting"]["feature_name"] == "Offer Builder"

    empty_patch = await api_client.patch("/admin/credit-settings/offers", json={}, headers=headers)
    assert empty_patch.status_code == 422

    missing = await api_client.patch("/admin/credit-settings/ghost", json={"active": True}, headers=headers)
    assert missing.status_code == 404

    upserted = await api_client.put(
        "/admin/credit-settings/scripts",
        json={"credit_cost": 4, "active": True, "feature_name": "Script Writer"},
        headers=headers,
    )
    assert upserted.status_code == 200
    assert upserted.json()["setting"]["feature_id"] == "scripts"

    deleted = await api_client.delete("/admin/credit-settings/offers", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["setting"]["active"] is False

    listing = await api_client.get("/admin/credit-settings", headers=headers)
    assert [item["feature_id"] for item in listing.json()["settings"]] == ["offers", "scripts"]

    active_only = await api_client.get("/admin/credit-settings?active_only=true", headers=headers)
    assert [item["feature_id"] for item in active_only.json()["settings"]] == ["scripts"]


@pytest.mark.asyncio
async def test_create_feature_cost_validates_payload(api_client, create_account, headers_for):
    await create_account("root", role="admin")
    response = await api_client.post(
        "/admin/credit-settings",
        json={"feature_id": "Bad Id", "feature_name": "Bad", "credit_cost": -1},
        headers=headers_for("root"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_deactivated_feature_stops_charging(api_client, create_account, create_feature, headers_for):
    await create_account("root", role="admin")
    await create_account("member", credits=10)
    await create_feature("copywriting", 5)

    await api_client.delete("/admin/credit-settings/copywriting", headers=headers_for("root"))
    response = await api_client.post(
        "/credits/consume",
        json={"feature_id": "copywriting"},
        headers=headers_for("member"),
    )
    assert response.status_code == 200
    assert response.json()["consumed"] == 0


@pytest.mark.asyncio
async def test_grant_credits_and_reconcile(api_client, create_account, headers_for):
    await create_account("root", role="admin")
    await create_account("member", credits=5)
    headers = headers_for("root")

    granted = await api_client.post(
        "/admin/users/credits",
        json={"user_id": "member", "credits": 200, "reason": "promo"},
        headers=headers,
    )
    assert granted.status_code == 200
    assert granted.json()["balance_after"] == 205

    unknown = await api_client.post("/admin/users/credits", json={"user_id": "ghost", "credits": 5}, headers=headers)
    assert unknown.status_code == 404

    zero = await api_client.post("/admin/users/credits", json={"user_id": "member", "credits": 0}, headers=headers)
    assert zero.status_code == 422

    reconciled = await api_client.get("/admin/users/member/reconcile", headers=headers)
    assert reconciled.status_code == 200
    assert reconciled.json()["balance"] == 205
    assert reconciled.json()["granted"] == 205
    assert reconciled.json()["consistent"] is True


@pytest.mark.asyncio
async def test_credit_usage_statistics(api_client, create_account, create_feature, headers_for):
    await create_account("root", role="admin")
    await create_account("member", credits=50)
    await create_feature("copywriting", 5, name="AI Copywriting")
    await create_feature("hashtags", 2, name="Hashtag Generator")
    member = headers_for("member")

    for feature_id in ("copywriting", "copywriting", "hashtags"):
        response = await api_client.post("/credits/consume", json={"feature_id": feature_id}, headers=member)
        assert response.status_code == 200

    stats = await api_client.get("/admin/credit-usage", headers=headers_for("root"))
    assert stats.status_code == 200
    payload = stats.json()
    assert payload["total_usage"] == 12
    first = payload["usage_stats"][0]
    assert first["feature_id"] == "copywriting"
    assert first["feature_name"] == "AI Copywriting"
    assert first["uses"] == 2


@pytest.mark.asyncio
async def test_list_users_filters_and_paginates(api_client, create_account, headers_for):
    await create_account("root", role="admin", email="root@studio.io")
    await create_account("alice", email="alice@studio.io")
    await create_account("bob", email="bob@elsewhere.com")

    headers = headers_for("root")
    everyone = await api_client.get("/admin/users?limit=2", headers=headers)
    assert everyone.status_code == 200
    assert everyone.json()["pagination"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}
    assert len(everyone.json()["users"]) == 2

    admins = await api_client.get("/admin/users?role=admin", headers=headers)
    assert [user["id"] for user in admins.json()["users"]] == ["root"]

    studio = await api_client.get("/admin/users?email=studio", headers=headers)
    assert sorted(user["id"] for user in studio.json()["users"]) == ["alice", "root"]


@pytest.mark.asyncio
async def test_feature_id_path_must_be_a_slug(api_client, create_account, headers_for):
    await create_account("root", role="admin")
    headers = headers_for("root")

    bad = await api_client.put(
        "/admin/credit-settings/Bad%20Id",
        json={"credit_cost": 4, "active": True},
        headers=headers,
    )
    assert bad.status_code == 422

    too_long = await api_client.put(
        f"/admin/credit-settings/{'a' * 65}",
        json={"credit_cost": 4, "active": True},
        headers=headers,
    )
    assert too_long.status_code == 422

    listed = await api_client.get("/admin/credit-settings", headers=headers)
    assert listed.json()["settings"] == []


@pytest.mark.asyncio
async def test_plan_crud(api_client, create_account, headers_for):
    await create_account("root", role="admin")
    await create_account("member")
    headers = headers_for("root")

    forbidden = await api_client.post(
        "/admin/plans",
        json={"name": "Pro", "price_cents": 4990, "credits": 500},
        headers=headers_for("member"),
    )
    assert forbidden.status_code == 403

    created = await api_client.post(
        "/admin/plans",
        json={"name": "Pro", "price_cents": 4990, "credits": 500, "currency": "brl", "features": ["consultant"]},
        headers=headers,
    )
    assert created.status_code == 201
    plan = created.json()["plan"]
    assert plan["currency"] == "BRL"
    assert plan["is_free"] is False

    negative = await api_client.post(
        "/admin/plans",
        json={"name": "Broken", "price_cents": -1, "credits": 10},
        headers=headers,
    )
    assert negative.status_code == 422

    patched = await api_client.patch(f"/admin/plans/{plan['id']}", json={"credits": 600}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["plan"]["credits"] == 600
    assert patched.json()["plan"]["name"] == "Pro"

    empty_patch = await api_client.patch(f"/admin/plans/{plan['id']}", json={}, headers=headers)
    assert empty_patch.status_code == 422

    missing = await api_client.get("/admin/plans/no-such-plan", headers=headers)
    assert missing.status_code == 404

    deleted = await api_client.delete(f"/admin/plans/{plan['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["plan"]["active"] is False

    admin_list = await api_client.get("/admin/plans", headers=headers)
    assert [item["id"] for item in admin_list.json()["plans"]] == [plan["id"]]

    public_list = await api_client.get("/billing/plans")
    assert public_list.json()["plans"] == []
