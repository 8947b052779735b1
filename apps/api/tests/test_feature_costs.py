import pytest

from services.errors import FeatureAlreadyExistsError, FeatureNotFoundError, InvalidCreditAmountError
from services.feature_costs import DEFAULT_FEATURE_COSTS, FeatureCostRegistry, serialize_feature_cost


@pytest.mark.asyncio
async def test_get_cost_returns_quote(session_maker, create_feature):
    await create_feature("copywriting", 5, name="AI Copywriting")

    async with session_maker() as session:
        quote = await FeatureCostRegistry(session).get_cost("copywriting")

    assert quote.cost == 5
    assert quote.active is True
    assert quote.feature_name == "AI Copywriting"


@pytest.mark.asyncio
async def test_get_cost_unknown_feature_raises(session_maker):
    async with session_maker() as session:
        with pytest.raises(FeatureNotFoundError):
            await FeatureCostRegistry(session).get_cost("teleport")


@pytest.mark.asyncio
async def test_upsert_creates_then_updates(session_maker):
    async with session_maker() as session:
        registry = FeatureCostRegistry(session)
        created = await registry.upsert("offers", 7, True, feature_name="Offer Builder")
        assert created.credit_cost == 7

        updated = await registry.upsert("offers", 9, False)
        assert updated.credit_cost == 9
        assert updated.active is False
        assert updated.feature_name == "Offer Builder"

        quote = await registry.get_cost("offers")
    assert quote.cost == 9
    assert quote.active is False


@pytest.mark.asyncio
async def test_upsert_rejects_negative_cost(session_maker):
    async with session_maker() as session:
        with pytest.raises(InvalidCreditAmountError):
            await FeatureCostRegistry(session).upsert("offers", -1, True)


@pytest.mark.asyncio
async def test_create_rejects_duplicate(session_maker, create_feature):
    await create_feature("hashtags", 2)
    async with session_maker() as session:
        with pytest.raises(FeatureAlreadyExistsError):
            await FeatureCostRegistry(session).create("hashtags", feature_name="Hashtags", cost=3)


@pytest.mark.asyncio
async def test_update_unknown_feature_raises(session_maker):
    async with session_maker() as session:
        with pytest.raises(FeatureNotFoundError):
            await FeatureCostRegistry(session).update("ghost-feature", cost=4)


@pytest.mark.asyncio
async def test_list_filters_inactive(session_maker, create_feature):
    await create_feature("captions", 2)
    await create_feature("legacy", 1, active=False)

    async with session_maker() as session:
        registry = FeatureCostRegistry(session)
        everything = await registry.list()
        active = await registry.list(active_only=True)

    assert [row.feature_id for row in everything] == ["captions", "legacy"]
    assert [row.feature_id for row in active] == ["captions"]
    payload = serialize_feature_cost(everything[1])
    assert payload["active"] is False
    assert payload["credit_cost"] == 1


@pytest.mark.asyncio
async def test_seed_defaults_is_idempotent(session_maker, create_feature):
    await create_feature("copywriting", 50)

    async with session_maker() as session:
        registry = FeatureCostRegistry(session)
        added = await registry.seed_defaults()
        second_pass = await registry.seed_defaults()
        names = await registry.names()
        copywriting = await registry.get_cost("copywriting")

    assert "copywriting" not in added
    assert set(added) == set(DEFAULT_FEATURE_COSTS) - {"copywriting"}
    assert second_pass == []
    assert set(names) == set(DEFAULT_FEATURE_COSTS)
    assert copywriting.cost == 50
