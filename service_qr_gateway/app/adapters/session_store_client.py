"""
Session/request store client for the QR gateway.

The store is a PostgREST-style service exposing stored procedures at
``POST {base_url}/rest/v1/rpc/{procedure}``. It is the source of truth for
sessions, requests and payments; the gateway only forwards sanitized data.
"""

import time
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import NotFoundError, UpstreamServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_on_exception
from ..domain.models import (
    CreatedMessage,
    CreatedPayment,
    CreatedRequest,
    SessionClaims,
    SessionDescriptor,
    SessionValidation,
)

SERVICE_NAME = "session_store"

VALIDATE_SESSION_PROCEDURE = "validate_qr_and_create_session"
CREATE_REQUEST_PROCEDURE = "create_unified_qr_request"
CREATE_PAYMENT_PROCEDURE = "create_guest_payment"
ADD_MESSAGE_PROCEDURE = "add_qr_request_message"
GET_REQUEST_PROCEDURE = "get_qr_request"
SESSION_REQUESTS_PROCEDURE = "get_session_requests"
QR_ANALYTICS_PROCEDURE = "get_qr_analytics"

_RETRYABLE_ERRORS = (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError)


def _first_row(result: Any) -> Optional[Dict[str, Any]]:
    """RPCs returning a table come back as a list; scalar JSON as an object."""
    if isinstance(result, list):
        result = result[0] if result else None
    return result if isinstance(result, dict) else None


def _field(row: Mapping[str, Any], snake: str, camel: str) -> Any:
    return row[snake] if snake in row else row.get(camel)


class SessionStoreClient:
    """Client for the session/request store procedures."""

    def __init__(self,
                 base_url: str,
                 service_key: str = "",
                 timeout_seconds: float = 10.0,
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger("qr_gateway.session_store")
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name=SERVICE_NAME
        )
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)

        headers = {"Content-Type": "application/json"}
        if service_key:
            headers["apikey"] = service_key
            headers["Authorization"] = f"Bearer {service_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _rpc(self, procedure: str, params: Dict[str, Any], *, idempotent: bool = False) -> Any:
        """Call ``procedure`` once, surfacing every failure as ``UpstreamServiceError``.

        Only idempotent reads are retried on connection errors.
        """

        async def _call() -> Any:
            response = await self._client.post(f"/rest/v1/rpc/{procedure}", json=params)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

        if idempotent:
            _call = retry_on_exception(_RETRYABLE_ERRORS, config=self.retry_config)(_call)

        start_time = time.time()
        status = "error"
        try:
            result = await self.circuit_breaker.call(_call)
            status = "ok"
            return result
        except httpx.TimeoutException as e:
            status = "timeout"
            self.logger.error("Session store call timed out", procedure=procedure, error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, f"{procedure} timed out")
        except httpx.HTTPStatusError as e:
            self.logger.error(
                "Session store returned an error",
                procedure=procedure,
                status_code=e.response.status_code,
                body=e.response.text[:500]
            )
            raise UpstreamServiceError(
                SERVICE_NAME,
                f"{procedure} failed with status {e.response.status_code}",
                details={"status_code": e.response.status_code}
            )
        except httpx.HTTPError as e:
            self.logger.error("Session store unavailable", procedure=procedure, error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, f"{procedure} unavailable")
        except CircuitBreakerOpenException as e:
            status = "circuit_open"
            self.logger.error("Session store circuit open", procedure=procedure, error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, "circuit breaker open")
        except ValueError as e:
            self.logger.error("Session store returned invalid JSON", procedure=procedure, error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, f"{procedure} returned invalid JSON")
        finally:
            if self.metrics:
                self.metrics.increment_counter("store_calls_total", operation=procedure, status=status)
                self.metrics.get_metric("store_call_duration_seconds").labels(
                    operation=procedure
                ).observe(time.time() - start_time)

    async def validate_and_create_session(self, qr_token: str,
                                          device_info: Dict[str, Any]) -> SessionValidation:
        """Exchange a QR token for a new session.

        When the store reports ``is_valid = false`` every other field of the
        row is ignored.
        """
        row = _first_row(await self._rpc(
            VALIDATE_SESSION_PROCEDURE,
            {"p_qr_token": qr_token, "p_device_info": device_info},
        ))
        if not row or not _field(row, "is_valid", "isValid"):
            return SessionValidation(is_valid=False)

        try:
            session = SessionDescriptor(
                session_id=_field(row, "session_id", "sessionId"),
                tenant_id=_field(row, "tenant_id", "tenantId"),
                qr_code_id=_field(row, "qr_code_id", "qrCodeId"),
                hotel_name=_field(row, "hotel_name", "hotelName"),
                room_number=_field(row, "room_number", "roomNumber"),
                services=_field(row, "services", "services") or [],
                expires_at=_field(row, "expires_at", "expiresAt"),
            )
        except PydanticValidationError as e:
            self.logger.error("Session store returned a malformed session", error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, "malformed session row")

        return SessionValidation(is_valid=True, session=session)

    async def create_request(self, session_id: str, request_type: str,
                             request_data: Dict[str, Any], priority: str) -> CreatedRequest:
        """Create a guest service request bound to ``session_id``."""
        row = _first_row(await self._rpc(
            CREATE_REQUEST_PROCEDURE,
            {
                "p_session_id": session_id,
                "p_request_type": request_type,
                "p_request_data": request_data,
                "p_priority": priority,
            },
        ))
        if not row or row.get("success") is False:
            raise NotFoundError("Session not found or expired")

        try:
            return CreatedRequest(
                request_id=_field(row, "request_id", "requestId"),
                tracking_number=_field(row, "tracking_number", "trackingNumber"),
                created_at=_field(row, "created_at", "createdAt"),
                tenant_id=_field(row, "tenant_id", "tenantId"),
            )
        except PydanticValidationError as e:
            self.logger.error("Session store returned a malformed request", error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, "malformed request row")

    async def create_payment(self, claims: SessionClaims, amount: float, payment_method: str,
                             reference: Optional[str], notes: Optional[str]) -> CreatedPayment:
        """Record a guest payment for staff verification."""
        row = _first_row(await self._rpc(
            CREATE_PAYMENT_PROCEDURE,
            {
                "p_tenant_id": claims.tenant_id,
                "p_session_id": claims.session_id,
                "p_qr_code_id": claims.qr_code_id,
                "p_amount": amount,
                "p_payment_method": payment_method,
                "p_reference": reference,
                "p_notes": notes,
            },
        ))
        payment_id = _field(row, "payment_id", "paymentId") if row else None
        if not payment_id:
            raise UpstreamServiceError(SERVICE_NAME, "payment was not created")

        # Guest payments are always unverified here, whatever the store echoes.
        return CreatedPayment(
            payment_id=str(payment_id),
            reference_number=_field(row, "reference_number", "referenceNumber"),
            status="pending",
            is_verified=False,
        )

    async def add_request_message(self, request_id: str, claims: SessionClaims, message: str,
                                  payload: Dict[str, Any]) -> CreatedMessage:
        """Attach a guest message to an existing request of the same tenant."""
        row = _first_row(await self._rpc(
            ADD_MESSAGE_PROCEDURE,
            {
                "p_request_id": request_id,
                "p_tenant_id": claims.tenant_id,
                "p_session_id": claims.session_id,
                "p_sender_role": "guest",
                "p_message": message,
                "p_payload": payload,
            },
        ))
        if not row or row.get("success") is False:
            raise NotFoundError("Request not found")

        try:
            return CreatedMessage(
                message_id=_field(row, "message_id", "messageId"),
                request_id=_field(row, "request_id", "requestId") or request_id,
                created_at=_field(row, "created_at", "createdAt"),
            )
        except PydanticValidationError as e:
            self.logger.error("Session store returned a malformed message", error=str(e))
            raise UpstreamServiceError(SERVICE_NAME, "malformed message row")

    async def get_request(self, request_id: str) -> Dict[str, Any]:
        row = _first_row(await self._rpc(GET_REQUEST_PROCEDURE, {"p_request_id": request_id}, idempotent=True))
        if not row:
            raise NotFoundError("Request not found")
        return row

    async def list_session_requests(self, session_id: str) -> List[Dict[str, Any]]:
        result = await self._rpc(SESSION_REQUESTS_PROCEDURE, {"p_session_id": session_id}, idempotent=True)
        if result is None:
            return []
        if isinstance(result, dict):
            return [result]
        return [row for row in result if isinstance(row, dict)]

    async def get_qr_analytics(self, qr_code_id: str) -> Dict[str, Any]:
        row = _first_row(await self._rpc(QR_ANALYTICS_PROCEDURE, {"p_qr_code_id": qr_code_id}, idempotent=True))
        if not row:
            raise NotFoundError("QR code not found")
        return row
