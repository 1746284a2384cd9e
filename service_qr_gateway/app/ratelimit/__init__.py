"""
Rate limiting package for the QR gateway.

Holds the fixed-window limiter and its pluggable counter stores (in-process
for a single instance, Redis for several).
"""

from .fixed_window import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimitRule,
    RateLimitStore,
    RedisRateLimitStore,
    get_client_id,
)

__all__ = [
    "FixedWindowRateLimiter",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitRule",
    "RateLimitStore",
    "RedisRateLimitStore",
    "get_client_id",
]
