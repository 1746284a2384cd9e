"""
Shared error handling for the guest QR gateway.

Every gate failure is raised as a ``GatewayException`` subclass and turned into
an HTTP response by the exception handler in ``shared.base_service``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Standard error response body."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    details: Optional[List[str]] = None
    reset_at: Optional[str] = Field(default=None, alias="resetAt")


class GatewayException(Exception):
    """Base exception for gateway errors."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def public_message(self) -> str:
        """Message that is safe to return to the caller."""
        return self.message

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.public_message)

    def to_body(self) -> Dict[str, Any]:
        return self.to_response().model_dump(by_alias=True, exclude_none=True)

    def response_headers(self) -> Dict[str, str]:
        return {}


class AuthenticationError(GatewayException):
    """Malformed, forged or expired credentials, collapsed into one signal."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(GatewayException):
    """The payload failed schema validation; the caller must correct it."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: Optional[List[str]] = None):
        super().__init__("VALIDATION_ERROR", message, {"errors": list(errors or [])})
        self.errors = list(errors or [])

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, details=self.errors)


class NotFoundError(GatewayException):
    """Unknown QR token, request, session or route."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class RateLimitError(GatewayException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, reset_at_ms: int, now_ms: int, message: str = "Rate limit exceeded",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
        self.reset_at_ms = reset_at_ms
        self.now_ms = now_ms

    @property
    def retry_after_seconds(self) -> int:
        remaining_ms = max(0, self.reset_at_ms - self.now_ms)
        # Round up so clients never retry before the window has rolled over.
        return max(1, -(-remaining_ms // 1000))

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, reset_at=format_epoch_ms(self.reset_at_ms))

    def response_headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after_seconds)}


class UpstreamServiceError(GatewayException):
    """The store or another dependency failed; details stay server-side."""

    status_code = 500

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_SERVICE_ERROR", f"{service}: {message}", details)
        self.service = service

    @property
    def public_message(self) -> str:
        return "Internal server error"


def format_epoch_ms(value_ms: int) -> str:
    """Format epoch milliseconds as an ISO-8601 UTC string."""
    value = datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
