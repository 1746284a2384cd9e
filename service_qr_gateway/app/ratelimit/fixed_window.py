"""
Fixed-window rate limiter for the QR gateway.

Each endpoint class has its own ceiling and window. Windows are fixed, not
sliding: a client can be admitted up to twice the ceiling across a window
boundary, so classes that cannot tolerate that need a stricter ceiling.

Counters live behind ``RateLimitStore``. The in-memory store gives
per-process limits only; several gateway instances each enforce their own
ceiling unless they share the Redis store.
"""

import abc
import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

import redis.asyncio as redis
from fastapi import Request

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: int
    limit: int


@dataclass
class _Window:
    count: int
    reset_at: int


class RateLimitStore(abc.ABC):
    """Counter storage. ``hit`` must check and increment as one atomic step."""

    @abc.abstractmethod
    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitDecision:
        """Count one request against ``key`` under ``rule``."""

    @abc.abstractmethod
    async def sweep(self, now_ms: int) -> int:
        """Drop expired windows, returning how many were removed."""

    async def close(self) -> None:
        """Release connections held by the store."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local counters for single-instance deployments."""

    def __init__(self, max_keys: int = 10000):
        self.max_keys = max_keys
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitDecision:
        with self._lock:
            window = self._windows.get(key)

            if window is None or now_ms > window.reset_at:
                if window is None and len(self._windows) >= self.max_keys:
                    self._sweep_locked(now_ms)
                window = _Window(count=1, reset_at=now_ms + rule.window_ms)
                self._windows[key] = window
            elif window.count >= rule.max_requests:
                # Rejected attempts are not counted.
                return RateLimitDecision(False, 0, window.reset_at, rule.max_requests)
            else:
                window.count += 1

            return RateLimitDecision(
                True,
                max(0, rule.max_requests - window.count),
                window.reset_at,
                rule.max_requests,
            )

    async def sweep(self, now_ms: int) -> int:
        with self._lock:
            return self._sweep_locked(now_ms)

    def _sweep_locked(self, now_ms: int) -> int:
        expired = [key for key, window in self._windows.items() if now_ms > window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)


# KEYS[1] = counter key, ARGV[1] = max requests, ARGV[2] = window in ms.
# Returns {allowed, count, ttl_ms}.
_FIXED_WINDOW_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
  return {1, 1, tonumber(ARGV[2])}
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  ttl = tonumber(ARGV[2])
  redis.call('PEXPIRE', KEYS[1], ttl)
end
current = tonumber(current)
if current >= tonumber(ARGV[1]) then
  return {0, current, ttl}
end
current = redis.call('INCR', KEYS[1])
return {1, current, ttl}
"""


class RedisRateLimitStore(RateLimitStore):
    """Shared counters for multi-instance deployments."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("qr_gateway.rate_limit_store")
        self._redis = client

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitDecision:
        try:
            redis_client = await self._get_redis()
            allowed, count, ttl_ms = await redis_client.eval(
                _FIXED_WINDOW_SCRIPT, 1, key, rule.max_requests, rule.window_ms
            )
        except Exception as e:
            # Fails open.
            self.logger.error("Rate limit check error", key=key, error=str(e))
            return RateLimitDecision(True, rule.max_requests, now_ms + rule.window_ms, rule.max_requests)

        count = int(count)
        return RateLimitDecision(
            bool(int(allowed)),
            max(0, rule.max_requests - count),
            now_ms + int(ttl_ms),
            rule.max_requests,
        )

    async def sweep(self, now_ms: int) -> int:
        # Keys expire through their Redis TTL.
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class FixedWindowRateLimiter:
    """Per-(endpoint class, client) fixed-window limiter."""

    def __init__(self,
                 store: RateLimitStore,
                 rules: Mapping[str, RateLimitRule],
                 default_class: str = "request",
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        if default_class not in rules:
            raise ValueError(f"No rate limit rule for default class '{default_class}'")
        self.store = store
        self.rules = dict(rules)
        self.default_class = default_class
        self.metrics = metrics
        self.logger = get_logger("qr_gateway.rate_limiter")
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def rule_for(self, endpoint_class: str) -> RateLimitRule:
        return self.rules.get(endpoint_class, self.rules[self.default_class])

    @staticmethod
    def make_key(identifier: str, endpoint_class: str) -> str:
        return f"rate_limit:{endpoint_class}:{identifier}"

    async def check(self, identifier: str, endpoint_class: str) -> RateLimitDecision:
        """Admit or reject one request from ``identifier``."""
        rule = self.rule_for(endpoint_class)
        decision = await self.store.hit(self.make_key(identifier, endpoint_class), rule, self.now_ms())

        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=identifier,
                endpoint_class=endpoint_class,
                limit=decision.limit,
                reset_at=decision.reset_at
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_rejections_total", endpoint_class=endpoint_class)
        return decision

    async def sweep(self) -> int:
        removed = await self.store.sweep(self.now_ms())
        if removed:
            self.logger.debug("Swept expired rate limit windows", removed=removed)
        return removed

    def start_sweeper(self, interval_seconds: float) -> None:
        """Run ``sweep`` every ``interval_seconds`` on the current event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await self.sweep()
                except Exception as e:
                    self.logger.error("Rate limit sweep failed", error=str(e))

        self._sweeper = asyncio.create_task(_run())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def close(self) -> None:
        await self.stop_sweeper()
        await self.store.close()


def get_client_id(request: Request) -> str:
    """Extract the caller identifier used as the rate limit key."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if isinstance(forwarded_for, str) and forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if isinstance(real_ip, str) and real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"
