"""Tests for the upload rate limiter."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from starlette.requests import Request

from dealroom.core.config import settings
from dealroom.core.errors import RateLimited
from dealroom.modules.dataroom.rate_limit import (
    InMemoryRateCounter,
    RedisRateCounter,
    client_ip,
    enforce_upload_rate_limit,
)

pytestmark = pytest.mark.anyio


def _request(headers: dict[str, str] | None = None, peer: str = "192.0.2.10") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/v1/dataroom/upload-url",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (peer, 51000),
    }
    return Request(scope)


class TestInMemoryRateCounter:
    async def test_counts_per_key(self):
        counter = InMemoryRateCounter(window=60)
        assert await counter.increment("ip:a") == 1
        assert await counter.increment("ip:a") == 2
        assert await counter.increment("ip:b") == 1

    async def test_window_slides(self):
        counter = InMemoryRateCounter(window=60)
        with patch("dealroom.modules.dataroom.rate_limit.time.monotonic", side_effect=[100.0, 130.0, 161.0]):
            await counter.increment("ip:a")
            await counter.increment("ip:a")
            assert await counter.increment("ip:a") == 2

    async def test_idle_keys_are_dropped(self):
        counter = InMemoryRateCounter(window=60)
        with patch("dealroom.modules.dataroom.rate_limit.time.monotonic", side_effect=[100.0, 110.0, 200.0]):
            await counter.increment("ip:a")
            await counter.increment("ip:b")
            assert len(counter) == 2
            assert await counter.increment("ip:c") == 1
        assert len(counter) == 1

    async def test_reset(self):
        counter = InMemoryRateCounter(window=60)
        await counter.increment("ip:a")
        counter.reset()
        assert await counter.increment("ip:a") == 1


class TestRedisRateCounter:
    async def test_uses_sorted_set_count(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, 0, 7, True])
        redis = MagicMock()
        redis.pipeline.return_value = pipe

        counter = RedisRateCounter("redis://localhost:6379/0", window=60)
        with patch("dealroom.modules.dataroom.rate_limit.aioredis.from_url", return_value=redis):
            assert await counter.increment("ip:a") == 7
        pipe.zremrangebyscore.assert_called_once()
        pipe.expire.assert_called_once_with("rl:dataroom-upload:ip:a", 61)

    async def test_fails_open(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=ConnectionError("redis down"))
        redis = MagicMock()
        redis.pipeline.return_value = pipe

        counter = RedisRateCounter("redis://localhost:6379/0", window=60)
        with patch("dealroom.modules.dataroom.rate_limit.aioredis.from_url", return_value=redis):
            assert await counter.increment("ip:a") == 0


class TestClientIp:
    def test_peer_address(self):
        assert client_ip(_request()) == "192.0.2.10"

    def test_first_forwarded_hop(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert client_ip(request) == "203.0.113.7"


class TestEnforceUploadRateLimit:
    async def test_allows_up_to_limit_then_rejects(self, monkeypatch):
        monkeypatch.setattr(settings, "UPLOAD_RATE_LIMIT", 3)
        counter = InMemoryRateCounter(window=60)
        request = _request()
        for _ in range(3):
            await enforce_upload_rate_limit(request, counter)

        with pytest.raises(RateLimited) as exc_info:
            await enforce_upload_rate_limit(request, counter)
        assert exc_info.value.headers["retry-after"] == "60"
        assert exc_info.value.detail == {"limit": 3, "window": 60}
