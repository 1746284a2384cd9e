"""
Guest portal operations: the single store call behind each gateway route plus
the staff notification it triggers.

Everything arriving here has already passed rate limiting, authentication,
validation and sanitization.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.errors import NotFoundError
from shared.logging import get_logger
from ..auth.session_tokens import SessionTokenService
from .models import (
    CreatedMessage,
    CreatedPayment,
    CreatedRequest,
    SessionClaims,
    SessionDescriptor,
)
from .notifications import NotificationDispatcher, StaffNotification

# Per-service shortcut routes and the request type each one files.
SERVICE_ENDPOINTS: Dict[str, str] = {
    "wifi-request": "wifi_support",
    "room-service": "room_service",
    "housekeeping": "housekeeping",
    "maintenance": "maintenance",
    "digital-menu": "room_service",
    "events": "concierge",
    "feedback": "feedback",
    "front-desk-call": "concierge",
}

DEPARTMENTS: Dict[str, str] = {
    "wifi_support": "IT",
    "room_service": "Kitchen",
    "housekeeping": "Housekeeping",
    "maintenance": "Maintenance",
    "concierge": "Front Desk",
    "feedback": "Management",
}
DEFAULT_DEPARTMENT = "Front Desk"
PAYMENTS_DEPARTMENT = "Accounts"


def department_for(request_type: str) -> str:
    return DEPARTMENTS.get(request_type, DEFAULT_DEPARTMENT)


class GuestPortalService:
    """Business calls for the guest QR portal."""

    def __init__(self,
                 store: Any,
                 token_service: SessionTokenService,
                 dispatcher: NotificationDispatcher,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.token_service = token_service
        self.dispatcher = dispatcher
        self.logger = get_logger("qr_gateway.guest_portal")
        self._clock = clock

    async def open_session(self, qr_token: str, device_info: Dict[str, Any]) -> Tuple[SessionDescriptor, str]:
        """Exchange a QR token for a session descriptor and its signed token."""
        validation = await self.store.validate_and_create_session(qr_token, device_info)
        session = validation.session
        if not validation.is_valid or session is None:
            raise NotFoundError("Invalid or expired QR code")

        if session.expires_at_ms <= int(self._clock() * 1000):
            self.logger.warning("Store issued an already expired session", session_id=session.session_id)
            raise NotFoundError("Invalid or expired QR code")

        token = self.token_service.sign(
            SessionClaims.identity_claims(session),
            not_after_ms=session.expires_at_ms,
        )
        self.logger.info(
            "Guest session issued",
            session_id=session.session_id,
            tenant_id=session.tenant_id,
            qr_code_id=session.qr_code_id
        )
        return session, token

    async def submit_request(self,
                             session_id: str,
                             request_type: str,
                             request_data: Dict[str, Any],
                             priority: str,
                             claims: Optional[SessionClaims] = None) -> CreatedRequest:
        created = await self.store.create_request(session_id, request_type, request_data, priority)
        self.logger.info(
            "Guest request accepted",
            request_id=created.request_id,
            tracking_number=created.tracking_number,
            request_type=request_type,
            priority=priority
        )

        tenant_id = claims.tenant_id if claims else created.tenant_id
        if tenant_id:
            label = request_type.replace("_", " ").replace("-", " ")
            self.dispatcher.dispatch(StaffNotification(
                tenant_id=tenant_id,
                title=f"New {label} request",
                message=f"Guest request {created.tracking_number} ({label}) needs attention",
                priority=priority,
                department=department_for(request_type),
                reference_id=created.request_id,
                metadata={
                    "session_id": session_id,
                    "request_type": request_type,
                    "tracking_number": created.tracking_number,
                    "qr_code_id": claims.qr_code_id if claims else None,
                },
            ))
        return created

    async def submit_payment(self,
                             claims: SessionClaims,
                             amount: float,
                             payment_method: str,
                             reference: Optional[str],
                             notes: Optional[str]) -> CreatedPayment:
        """Record a payment as pending; verification happens outside the gateway."""
        payment = await self.store.create_payment(claims, amount, payment_method, reference, notes)
        self.logger.info(
            "Guest payment submitted for verification",
            payment_id=payment.payment_id,
            payment_method=payment_method,
            amount=amount
        )
        self.dispatcher.dispatch(StaffNotification(
            tenant_id=claims.tenant_id,
            title="Guest payment pending verification",
            message=f"{payment_method} payment of {amount:.2f} submitted for verification",
            priority="high",
            department=PAYMENTS_DEPARTMENT,
            reference_id=payment.payment_id,
            metadata={
                "session_id": claims.session_id,
                "qr_code_id": claims.qr_code_id,
                "reference": reference,
            },
        ))
        return payment

    async def add_message(self, request_id: str, claims: SessionClaims, message: str,
                          payload: Dict[str, Any]) -> CreatedMessage:
        created = await self.store.add_request_message(request_id, claims, message, payload)
        self.dispatcher.dispatch(StaffNotification(
            tenant_id=claims.tenant_id,
            title="New guest message",
            message=message[:200],
            priority="normal",
            department=DEFAULT_DEPARTMENT,
            reference_id=request_id,
            metadata={"session_id": claims.session_id, "message_id": created.message_id},
        ))
        return created

    async def get_request(self, request_id: str, claims: SessionClaims) -> Dict[str, Any]:
        record = await self.store.get_request(request_id)
        tenant_id = record.get("tenant_id", record.get("tenantId"))
        if tenant_id is not None and tenant_id != claims.tenant_id:
            # Another tenant's request is indistinguishable from a missing one.
            raise NotFoundError("Request not found")
        return record

    async def list_session_requests(self, session_id: str, claims: SessionClaims) -> List[Dict[str, Any]]:
        if session_id != claims.session_id:
            raise NotFoundError("Session not found")
        return await self.store.list_session_requests(session_id)

    async def get_qr_analytics(self, qr_code_id: str, claims: SessionClaims) -> Dict[str, Any]:
        if qr_code_id != claims.qr_code_id:
            raise NotFoundError("QR code not found")
        return await self.store.get_qr_analytics(qr_code_id)
