"""
Shared utilities for the guest QR gateway.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/session correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for idempotent calls
- circuit_breaker: Resilient external call protection
- base_service: FastAPI app skeleton with headers, health and error handling

Do not import from service packages into shared/ (test_helpers excepted).
"""
