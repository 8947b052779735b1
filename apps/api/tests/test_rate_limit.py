import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from routers import rate_limit as rate_limit_module
from routers.auth_scope import get_optional_principal
from routers.rate_limit import FixedWindowCounter, Window, rate_limit


@pytest.fixture
def limited_app(monkeypatch):
    async def redis_down(key, window, window_seconds):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(rate_limit_module, "_redis_hit", redis_down)

    app = FastAPI()
    app.dependency_overrides[get_optional_principal] = lambda: None

    @app.get("/limited", dependencies=[Depends(rate_limit("test", limit=2, window_seconds=60))])
    async def limited():
        return {"ok": True}

    return app


@pytest.mark.asyncio
async def test_local_fallback_enforces_limit_when_redis_is_down(limited_app):
    async with AsyncClient(transport=ASGITransport(app=limited_app), base_url="http://test") as client:
        first = await client.get("/limited")
        second = await client.get("/limited")
        third = await client.get("/limited")

    assert [first.status_code, second.status_code] == [200, 200]
    assert third.status_code == 429
    assert third.headers["x-ratelimit-limit"] == "2"
    assert 1 <= int(third.headers["retry-after"]) <= 60


@pytest.mark.asyncio
async def test_disabled_rate_limits_skip_counting(limited_app):
    limited_app.state.disable_rate_limits = True
    async with AsyncClient(transport=ASGITransport(app=limited_app), base_url="http://test") as client:
        statuses = [(await client.get("/limited")).status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 200]


@pytest.mark.asyncio
async def test_counter_restarts_in_the_next_window():
    counter = FixedWindowCounter()
    first_window = Window.current(60, now=120.0)
    next_window = Window.current(60, now=185.0)

    assert await counter.hit("k", first_window) == 1
    assert await counter.hit("k", first_window) == 2
    assert await counter.hit("k", next_window) == 1
    assert next_window.seconds_left(now=185.0) == 55
