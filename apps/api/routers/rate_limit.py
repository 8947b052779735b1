"""Per-account request quotas over clock-aligned windows.

Counts live in Redis when it is reachable. Each process keeps its own
``FixedWindowCounter`` for the periods when it is not, so a Redis outage
loosens the limit to per-process instead of disabling it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from routers.auth_scope import get_optional_principal
from services.access_guard import Principal

logger = logging.getLogger(__name__)

KEY_PREFIX = "cc:quota"


@dataclass(frozen=True)
class Window:
    index: int
    closes_at: float

    @classmethod
    def current(cls, window_seconds: int, now: Optional[float] = None) -> "Window":
        now = time.time() if now is None else now
        index = int(now // window_seconds)
        return cls(index=index, closes_at=(index + 1) * window_seconds)

    def seconds_left(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(math.ceil(self.closes_at - now), 1)


class FixedWindowCounter:
    """In-process hit counter keyed by quota key and window index."""

    def __init__(self) -> None:
        self._hits: Dict[str, Tuple[int, int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, window: Window) -> int:
        async with self._lock:
            index, count = self._hits.get(key, (window.index, 0))
            if index != window.index:
                count = 0
            count += 1
            self._hits[key] = (window.index, count)
            return count

    def clear(self) -> None:
        self._hits.clear()


local_counter = FixedWindowCounter()


def quota_key(prefix: str, request: Request, principal: Optional[Principal]) -> str:
    if principal is not None:
        subject = f"account:{principal.account_id}"
    else:
        forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        subject = forwarded or (request.client.host if request.client else "") or "unknown"
    return f"{KEY_PREFIX}:{prefix}:{subject}"


async def _redis_hit(key: str, window: Window, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        pipe = client.pipeline(transaction=True)
        pipe.incr(f"{key}:{window.index}")
        pipe.expire(f"{key}:{window.index}", window_seconds)
        count, _ = await pipe.execute()
    finally:
        await client.aclose()
    return int(count)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[..., Awaitable[None]]:
    """Build a dependency allowing ``limit`` requests per ``window_seconds`` window."""

    async def _enforce(
        request: Request,
        principal: Optional[Principal] = Depends(get_optional_principal),
    ) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = quota_key(prefix, request, principal)
        window = Window.current(window_seconds)
        try:
            count = await _redis_hit(key, window, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("rate_limit_local_fallback key=%s: %s", key, exc)
            count = await local_counter.hit(key, window)

        if count > limit:
            logger.info("rate_limit_exceeded key=%s count=%s limit=%s", key, count, limit)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
                headers={
                    "Retry-After": str(window.seconds_left()),
                    "X-RateLimit-Limit": str(limit),
                },
            )

    return _enforce
