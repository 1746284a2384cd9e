"""
Unit tests for the fixed-window rate limiter and its counter stores.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from service_qr_gateway.app.ratelimit import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitRule,
    RedisRateLimitStore,
    get_client_id,
)
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock

RULES = {
    "validate": RateLimitRule(max_requests=10, window_ms=60_000),
    "request": RateLimitRule(max_requests=3, window_ms=60_000),
}


def _request(headers=None, client=("10.0.0.9", 52100)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return InMemoryRateLimitStore()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("test-limiter")

    @pytest.fixture
    def limiter(self, store, clock, metrics):
        return FixedWindowRateLimiter(store, RULES, default_class="request", clock=clock, metrics=metrics)

    def test_default_class_must_have_rule(self, store):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(store, RULES, default_class="payment")

    @pytest.mark.asyncio
    async def test_admits_ceiling_then_rejects(self, limiter, clock):
        decisions = [await limiter.check("203.0.113.7", "validate") for _ in range(10)]

        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == list(range(9, -1, -1))
        assert {d.reset_at for d in decisions} == {int(clock.now * 1000) + 60_000}

        rejected = await limiter.check("203.0.113.7", "validate")
        assert rejected.allowed is False
        assert rejected.remaining == 0
        assert rejected.reset_at == decisions[0].reset_at
        assert rejected.limit == 10

    @pytest.mark.asyncio
    async def test_rejections_are_not_counted(self, limiter, store, clock):
        for _ in range(3):
            await limiter.check("client", "request")
        for _ in range(5):
            assert (await limiter.check("client", "request")).allowed is False

        window = store._windows[limiter.make_key("client", "request")]
        assert window.count == 3

    @pytest.mark.asyncio
    async def test_window_boundary_is_inclusive(self, limiter, clock):
        first = await limiter.check("client", "request")
        for _ in range(2):
            await limiter.check("client", "request")

        clock.advance(60)
        assert int(clock.now * 1000) == first.reset_at
        assert (await limiter.check("client", "request")).allowed is False

        clock.advance(0.01)
        fresh = await limiter.check("client", "request")
        assert fresh.allowed is True
        assert fresh.remaining == 2
        assert fresh.reset_at == int(clock.now * 1000) + 60_000

    @pytest.mark.asyncio
    async def test_clients_and_classes_are_independent(self, limiter):
        for _ in range(3):
            await limiter.check("client-a", "request")

        assert (await limiter.check("client-a", "request")).allowed is False
        assert (await limiter.check("client-b", "request")).allowed is True
        assert (await limiter.check("client-a", "validate")).allowed is True

    @pytest.mark.asyncio
    async def test_unknown_class_uses_default_rule(self, limiter):
        decision = await limiter.check("client", "something-else")

        assert decision.limit == 3

    @pytest.mark.asyncio
    async def test_concurrent_hits_never_exceed_ceiling(self, limiter):
        decisions = await asyncio.gather(*(limiter.check("burst", "validate") for _ in range(50)))

        assert sum(1 for d in decisions if d.allowed) == 10

    @pytest.mark.asyncio
    async def test_rejection_recorded_in_metrics(self, limiter, metrics):
        for _ in range(4):
            await limiter.check("client", "request")

        value = metrics.registry.get_sample_value(
            "rate_limit_rejections_total", {"endpoint_class": "request"}
        )
        assert value == 1.0

    @pytest.mark.asyncio
    async def test_sweep_drops_expired_windows(self, limiter, store, clock):
        await limiter.check("old", "request")
        clock.advance(30)
        await limiter.check("new", "request")

        clock.advance(31)
        removed = await limiter.sweep()

        assert removed == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_background_sweeper(self, limiter, store, clock):
        await limiter.check("client", "request")
        clock.advance(61)

        limiter.start_sweeper(0.01)
        await asyncio.sleep(0.05)
        await limiter.close()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_key_cap_sweeps_inline(self, clock):
        store = InMemoryRateLimitStore(max_keys=2)
        limiter = FixedWindowRateLimiter(store, RULES, clock=clock)
        await limiter.check("a", "request")
        await limiter.check("b", "request")

        clock.advance(61)
        await limiter.check("c", "request")

        assert len(store) == 1


class TestRedisRateLimitStore:
    """Test cases for RedisRateLimitStore."""

    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, redis_client):
        return RedisRateLimitStore("redis://localhost:6379/0", client=redis_client)

    @pytest.mark.asyncio
    async def test_admitted_hit(self, store, redis_client):
        redis_client.eval.return_value = [1, 4, 42_000]

        decision = await store.hit("rate_limit:validate:client", RULES["validate"], 1_000)

        assert decision.allowed is True
        assert decision.remaining == 6
        assert decision.reset_at == 43_000
        args = redis_client.eval.await_args.args
        assert args[1:] == (1, "rate_limit:validate:client", 10, 60_000)

    @pytest.mark.asyncio
    async def test_rejected_hit(self, store, redis_client):
        redis_client.eval.return_value = [0, 10, 1_500]

        decision = await store.hit("key", RULES["validate"], 1_000)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.reset_at == 2_500

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_unavailable(self, store, redis_client):
        redis_client.eval.side_effect = ConnectionError("redis down")

        decision = await store.hit("key", RULES["request"], 1_000)

        assert decision.allowed is True
        assert decision.remaining == 3

    @pytest.mark.asyncio
    async def test_sweep_is_noop_and_close_releases_client(self, store, redis_client):
        assert await store.sweep(0) == 0

        await store.close()

        redis_client.aclose.assert_awaited_once()


class TestGetClientId:
    """Test cases for get_client_id."""

    def test_first_forwarded_hop_wins(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"})

        assert get_client_id(request) == "203.0.113.7"

    def test_real_ip_fallback(self):
        assert get_client_id(_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"

    def test_peer_address_fallback(self):
        assert get_client_id(_request()) == "10.0.0.9"

    def test_unknown_without_peer(self):
        assert get_client_id(_request(client=None)) == "unknown"
