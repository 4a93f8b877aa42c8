"""Sliding-window rate limiting for upload credential issuance.

Counters are injected through ``get_rate_counter`` so the window state can
live in process memory (single instance, tests) or in Redis (shared across
instances).
"""

import asyncio
import time
import uuid
from collections import deque
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, Request

from dealroom.core.config import settings
from dealroom.core.errors import RateLimited

logger = structlog.get_logger()


class RateCounter(Protocol):
    window: int

    async def increment(self, key: str) -> int:
        """Record one hit for ``key`` and return the hits inside the current window."""
        ...


class InMemoryRateCounter:
    def __init__(self, window: int) -> None:
        self.window = window
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        """Drop keys with no hits inside the window."""
        cutoff = now - self.window
        for key in [k for k, hits in self._hits.items() if hits[-1] <= cutoff]:
            del self._hits[key]
        self._next_sweep = now + self.window

    async def increment(self, key: str) -> int:
        now = time.monotonic()
        async with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window:
                hits.popleft()
            hits.append(now)
            return len(hits)

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()
        self._next_sweep = 0.0


class RedisRateCounter:
    """Sorted-set sliding window. Fails open when Redis is unavailable."""

    def __init__(self, redis_url: str, window: int, prefix: str = "rl:dataroom-upload") -> None:
        self.window = window
        self._redis_url = redis_url
        self._prefix = prefix
        self._redis: aioredis.Redis | None = None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=0.5,
                socket_timeout=0.5,
            )
        return self._redis

    async def increment(self, key: str) -> int:
        now = time.time()
        redis_key = f"{self._prefix}:{key}"
        try:
            pipe = self._client().pipeline()
            pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex}": now})
            pipe.zremrangebyscore(redis_key, 0, now - self.window)
            pipe.zcard(redis_key)
            pipe.expire(redis_key, self.window + 1)
            results = await pipe.execute()
        except Exception as exc:  # noqa: BLE001
            logger.warning("rate_limit.redis_error", error=str(exc))
            return 0
        return int(results[2])


_counter: RateCounter | None = None


def get_rate_counter() -> RateCounter:
    global _counter
    if _counter is None:
        window = settings.UPLOAD_RATE_WINDOW_SECONDS
        if settings.RATE_LIMIT_BACKEND == "redis":
            _counter = RedisRateCounter(settings.REDIS_URL, window)
        else:
            _counter = InMemoryRateCounter(window)
    return _counter


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    xff = request.headers.get("x-forwarded-for", "")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_upload_rate_limit(
    request: Request,
    counter: RateCounter = Depends(get_rate_counter),
) -> None:
    """Dependency: reject the request with 429 once the per-IP window is full."""
    limit = settings.UPLOAD_RATE_LIMIT
    ip = client_ip(request)
    count = await counter.increment(f"ip:{ip}")
    if count > limit:
        logger.warning("dataroom_upload_rate_limited", ip=ip, count=count, limit=limit)
        raise RateLimited(limit=limit, window=counter.window)
