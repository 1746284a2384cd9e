"""
Domain models shared by the gateway routes, the store adapter and the tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.errors import AuthenticationError


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SessionDescriptor(CamelModel):
    """A guest session as created by the store."""

    session_id: str = Field(alias="sessionId")
    tenant_id: str = Field(alias="tenantId")
    qr_code_id: str = Field(alias="qrCodeId")
    hotel_name: str = Field(alias="hotelName")
    room_number: Optional[str] = Field(default=None, alias="roomNumber")
    services: List[str] = Field(default_factory=list)
    expires_at: datetime = Field(alias="expiresAt")

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def expires_at_ms(self) -> int:
        return int(self.expires_at.timestamp() * 1000)


class SessionValidation(CamelModel):
    """Outcome of exchanging a QR token; ``session`` is only set when valid."""

    is_valid: bool = Field(alias="isValid")
    session: Optional[SessionDescriptor] = None


class CreatedRequest(CamelModel):
    request_id: str = Field(alias="requestId")
    tracking_number: str = Field(alias="trackingNumber")
    created_at: datetime = Field(alias="createdAt")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")


class CreatedPayment(CamelModel):
    payment_id: str = Field(alias="paymentId")
    reference_number: Optional[str] = Field(default=None, alias="referenceNumber")
    status: str = "pending"
    is_verified: bool = Field(default=False, alias="isVerified")


class CreatedMessage(CamelModel):
    message_id: str = Field(alias="messageId")
    request_id: str = Field(alias="requestId")
    created_at: datetime = Field(alias="createdAt")


@dataclass(frozen=True)
class SessionClaims:
    """Verified identity carried by a session token."""

    session_id: str
    tenant_id: str
    qr_code_id: str
    issued_at: int
    expires_at: int

    @staticmethod
    def identity_claims(session: SessionDescriptor) -> Dict[str, Any]:
        """Identity claims to sign for ``session``; timing is added by the signer."""
        return {
            "sessionId": session.session_id,
            "tenantId": session.tenant_id,
            "qrCodeId": session.qr_code_id,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SessionClaims":
        try:
            values = {
                "session_id": payload["sessionId"],
                "tenant_id": payload["tenantId"],
                "qr_code_id": payload["qrCodeId"],
            }
            issued_at = int(payload["issuedAt"])
            expires_at = int(payload["expiresAt"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Invalid or expired session token")

        if not all(isinstance(value, str) and value for value in values.values()):
            raise AuthenticationError("Invalid or expired session token")

        return cls(issued_at=issued_at, expires_at=expires_at, **values)
