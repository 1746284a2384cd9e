"""
Guest QR session & request gateway.

Every route runs the same gates in order: rate limit, session token (all
routes except ``/validate``), schema validation, sanitization, one store call,
best-effort staff notification. A failing gate short-circuits the rest.
"""

import time
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import GatewayConfig, get_config
from shared.errors import AuthenticationError, NotFoundError, RateLimitError, ValidationError
from .adapters import NotifierClient, SessionStoreClient
from .auth import SessionAuthenticator, SessionTokenService, TokenServiceConfig
from .domain.guest_portal import SERVICE_ENDPOINTS, GuestPortalService
from .domain.models import SessionClaims
from .domain.notifications import NotificationDispatcher
from .ratelimit import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimitRule,
    RateLimitStore,
    RedisRateLimitStore,
    get_client_id,
)
from .validation import (
    PAYMENT_TEXT_LIMITS,
    CreateRequestBody,
    PaymentChargeBody,
    RequestMessageBody,
    ServiceRequestBody,
    ValidateSessionBody,
    device_info_sanitizer,
    message_payload_sanitizer,
    parse_body,
    request_data_sanitizer,
    sanitize_string,
)

VALIDATE_CLASS = "validate"
REQUEST_CLASS = "request"
PAYMENT_CLASS = "payment"
READ_CLASS = "read"


def build_rate_limit_rules(config: GatewayConfig) -> Dict[str, RateLimitRule]:
    return {
        VALIDATE_CLASS: RateLimitRule(config.rate_limit_validate_requests,
                                      config.rate_limit_validate_window_seconds * 1000),
        REQUEST_CLASS: RateLimitRule(config.rate_limit_request_requests,
                                     config.rate_limit_request_window_seconds * 1000),
        PAYMENT_CLASS: RateLimitRule(config.rate_limit_payment_requests,
                                     config.rate_limit_payment_window_seconds * 1000),
        READ_CLASS: RateLimitRule(config.rate_limit_read_requests,
                                  config.rate_limit_read_window_seconds * 1000),
    }


class QRGatewayService(BaseService):
    """Guest QR gateway service implementation."""

    def __init__(self,
                 config: Optional[GatewayConfig] = None,
                 *,
                 session_store: Optional[Any] = None,
                 notifier: Optional[Any] = None,
                 rate_limit_store: Optional[RateLimitStore] = None,
                 clock: Callable[[], float] = time.time):
        config = config or get_config()
        config.validate_for_environment()
        super().__init__("qr-gateway", config.port, config=config)

        self.session_store = session_store or SessionStoreClient(
            self.config.store_url,
            self.config.store_service_key,
            self.config.store_timeout_seconds,
            metrics=self.metrics,
        )
        if notifier is None and self.config.notifier_url:
            notifier = NotifierClient(
                self.config.notifier_url,
                self.config.notifier_timeout_seconds,
                self.config.store_service_key,
            )
        self.notifier = notifier

        if rate_limit_store is None:
            if self.config.rate_limit_backend == "redis":
                rate_limit_store = RedisRateLimitStore(self.config.redis_url)
            else:
                rate_limit_store = InMemoryRateLimitStore(max_keys=self.config.rate_limit_max_keys)
        self.rate_limiter = FixedWindowRateLimiter(
            rate_limit_store,
            build_rate_limit_rules(self.config),
            default_class=REQUEST_CLASS,
            clock=clock,
            metrics=self.metrics,
        )

        self.token_service = SessionTokenService(
            TokenServiceConfig(
                secret=self.config.session_token_secret,
                ttl_seconds=self.config.session_token_ttl_seconds,
            ),
            clock=clock,
        )
        self.session_auth = SessionAuthenticator(self.token_service, metrics=self.metrics)
        self.dispatcher = NotificationDispatcher(self.notifier, metrics=self.metrics)
        self.portal = GuestPortalService(self.session_store, self.token_service, self.dispatcher, clock=clock)

        self._setup_guest_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def on_startup(self) -> None:
        if isinstance(self.rate_limiter.store, InMemoryRateLimitStore):
            self.rate_limiter.start_sweeper(self.config.rate_limit_sweep_interval_seconds)

    async def on_shutdown(self) -> None:
        await self.dispatcher.drain(timeout=self.config.notifier_timeout_seconds)
        await self.rate_limiter.close()
        for client in (self.session_store, self.notifier):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    async def _check_dependencies(self) -> Dict[str, str]:
        breaker = getattr(self.session_store, "circuit_breaker", None)
        store_status = "degraded" if breaker is not None and breaker.get_state()["state"] == "open" else "ok"
        return {
            "session_store": store_status,
            "rate_limiter": self.config.rate_limit_backend,
            "notifier": "configured" if self.notifier is not None else "disabled",
        }

    async def _enforce_rate_limit(self, request: Request, endpoint_class: str) -> RateLimitDecision:
        """Check the fixed-window limiter for the caller."""
        decision = await self.rate_limiter.check(get_client_id(request), endpoint_class)
        if not decision.allowed:
            raise RateLimitError(decision.reset_at, self.rate_limiter.now_ms())
        return decision

    def _set_rate_limit_headers(self, response: JSONResponse, decision: RateLimitDecision) -> None:
        """Propagate rate limiting metadata via standard headers."""
        reset_in_ms = max(0, decision.reset_at - self.rate_limiter.now_ms())
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(-(-reset_in_ms // 1000))

    def _respond(self, content: Any, decision: RateLimitDecision, status_code: int = 200) -> JSONResponse:
        response = JSONResponse(status_code=status_code, content=content)
        self._set_rate_limit_headers(response, decision)
        return response

    async def _read_json(self, request: Request) -> Any:
        try:
            return await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON body", errors=["body: must be valid JSON"])

    @staticmethod
    def _ensure_same_session(claims: Optional[SessionClaims], session_id: Optional[str]) -> None:
        if claims is not None and session_id is not None and session_id != claims.session_id:
            raise AuthenticationError("Session token does not match session")

    def _setup_guest_routes(self):
        """Set up guest portal routes."""

        @self.app.post("/validate")
        async def validate_qr(request: Request):
            """Exchange a scanned QR token for a session and signed token."""
            decision = await self._enforce_rate_limit(request, VALIDATE_CLASS)
            body = parse_body(ValidateSessionBody, await self._read_json(request))
            device_info = device_info_sanitizer.sanitize(body.device_info)

            session, token = await self.portal.open_session(body.qr_token, device_info)
            return self._respond({"success": True, "session": session.to_wire(), "token": token}, decision)

        @self.app.post("/request")
        async def create_request(request: Request):
            """Create a service request bound to the guest session."""
            decision = await self._enforce_rate_limit(request, REQUEST_CLASS)
            claims = await self.session_auth.authenticate(
                request, required=self.config.require_session_token_for_requests
            )
            body = parse_body(CreateRequestBody, await self._read_json(request))
            self._ensure_same_session(claims, body.session_id)

            created = await self.portal.submit_request(
                body.session_id,
                body.request_type,
                request_data_sanitizer.sanitize(body.request_data),
                body.priority,
                claims=claims,
            )
            return self._respond(self._request_created(created), decision, status_code=201)

        @self.app.post("/request/{service}")
        async def create_service_request(service: str, request: Request):
            """Shortcut routes where the path names the service, e.g. ``/request/housekeeping``."""
            decision = await self._enforce_rate_limit(request, REQUEST_CLASS)
            request_type = SERVICE_ENDPOINTS.get(service)
            if request_type is None:
                raise NotFoundError("Not found")

            claims = await self.session_auth.authenticate(
                request, required=self.config.require_session_token_for_requests
            )
            body = parse_body(ServiceRequestBody, await self._read_json(request))
            self._ensure_same_session(claims, body.session_id)
            session_id = body.session_id or (claims.session_id if claims else None)
            if session_id is None:
                raise ValidationError("Validation failed", errors=["sessionId: Field required"])

            created = await self.portal.submit_request(
                session_id,
                request_type,
                request_data_sanitizer.sanitize(body.request_data),
                body.priority,
                claims=claims,
            )
            return self._respond(self._request_created(created), decision, status_code=201)

        @self.app.post("/request/{request_id}/messages")
        async def add_request_message(request_id: str, request: Request):
            """Attach a guest message to an existing request."""
            decision = await self._enforce_rate_limit(request, REQUEST_CLASS)
            claims = await self.session_auth.authenticate(request)
            body = parse_body(RequestMessageBody, await self._read_json(request))

            created = await self.portal.add_message(
                request_id,
                claims,
                sanitize_string(body.message, 1000),
                message_payload_sanitizer.sanitize(body.payload),
            )
            return self._respond({"success": True, **created.to_wire()}, decision, status_code=201)

        @self.app.post("/payment/charge")
        async def charge_payment(request: Request):
            """Submit a guest payment; it stays pending until staff verify it."""
            decision = await self._enforce_rate_limit(request, PAYMENT_CLASS)
            claims = await self.session_auth.authenticate(request)
            body = parse_body(PaymentChargeBody, await self._read_json(request))

            reference = body.reference and sanitize_string(body.reference, PAYMENT_TEXT_LIMITS["reference"])
            notes = body.notes and sanitize_string(body.notes, PAYMENT_TEXT_LIMITS["notes"])
            payment = await self.portal.submit_payment(
                claims, body.amount, body.payment_method, reference, notes
            )
            return self._respond(
                {
                    "success": True,
                    "paymentId": payment.payment_id,
                    "referenceNumber": payment.reference_number,
                    "status": payment.status,
                    "isVerified": payment.is_verified,
                    "message": "Payment submitted for verification",
                },
                decision,
                status_code=201,
            )

        @self.app.get("/request/{request_id}")
        async def get_request(request_id: str, request: Request):
            """Get a request's current status."""
            decision = await self._enforce_rate_limit(request, READ_CLASS)
            claims = await self.session_auth.authenticate(request)
            record = await self.portal.get_request(request_id, claims)
            return self._respond(record, decision)

        @self.app.get("/session/{session_id}/requests")
        async def list_session_requests(session_id: str, request: Request):
            """List the requests filed under the caller's session."""
            decision = await self._enforce_rate_limit(request, READ_CLASS)
            claims = await self.session_auth.authenticate(request)
            requests = await self.portal.list_session_requests(session_id, claims)
            return self._respond({"requests": requests}, decision)

        @self.app.get("/analytics/qr/{qr_code_id}")
        async def get_qr_analytics(qr_code_id: str, request: Request):
            """Scan and request statistics for the caller's QR code."""
            decision = await self._enforce_rate_limit(request, READ_CLASS)
            claims = await self.session_auth.authenticate(request)
            analytics = await self.portal.get_qr_analytics(qr_code_id, claims)
            return self._respond(analytics, decision)

    @staticmethod
    def _request_created(created) -> Dict[str, Any]:
        return {
            "success": True,
            "requestId": created.request_id,
            "trackingNumber": created.tracking_number,
            "createdAt": created.to_wire()["createdAt"],
        }


def create_app(config: Optional[GatewayConfig] = None, **dependencies):
    """Create FastAPI application."""
    service = QRGatewayService(config, **dependencies)
    return service.app


if __name__ == "__main__":
    service = QRGatewayService()
    service.run()
