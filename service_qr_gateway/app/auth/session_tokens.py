"""
Signed guest session tokens.

Tokens are compact ``header.payload.signature`` strings (base64url segments,
HMAC-SHA256 over ``header.payload``). They carry the session identity plus
``issuedAt``/``expiresAt`` in epoch milliseconds.
"""

from __future__ import annotations

import hmac
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import jwt
from jwt.algorithms import HMACAlgorithm
from jwt.utils import base64url_encode

from shared.errors import AuthenticationError
from shared.logging import get_logger

TOKEN_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_SECONDS = 24 * 60 * 60
INVALID_TOKEN_MESSAGE = "Invalid or expired session token"


@dataclass(frozen=True)
class TokenServiceConfig:
    """Explicit signing configuration; the service never reads the environment itself."""

    secret: str
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("Session token secret must not be empty")
        if self.ttl_seconds <= 0:
            raise ValueError("Session token TTL must be positive")


class SessionTokenService:
    """Issue and verify session tokens."""

    def __init__(self, config: TokenServiceConfig, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self.logger = get_logger("qr_gateway.session_tokens")
        self._clock = clock
        self._algorithm = HMACAlgorithm(HMACAlgorithm.SHA256)
        self._key = self._algorithm.prepare_key(config.secret)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def sign(self, claims: Mapping[str, Any], not_after_ms: Optional[int] = None) -> str:
        """Stamp issuance/expiry onto ``claims`` and return a signed token.

        ``not_after_ms`` caps the expiry so a token never outlives the store's
        own session.
        """
        issued_at = self._now_ms()
        expires_at = issued_at + self.config.ttl_seconds * 1000
        if not_after_ms is not None:
            expires_at = min(expires_at, int(not_after_ms))

        payload = dict(claims)
        payload["issuedAt"] = issued_at
        payload["expiresAt"] = expires_at
        return jwt.encode(payload, self._key, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: Optional[str]) -> Dict[str, Any]:
        """Return the token's claims, or raise ``AuthenticationError``.

        Structural, signature and expiry failures all raise the same error so
        callers cannot tell which check failed.
        """
        if not isinstance(token, str):
            raise self._reject("missing")

        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise self._reject("malformed")

        header_segment, payload_segment, signature_segment = segments
        signing_input = f"{header_segment}.{payload_segment}".encode("utf-8")
        expected_signature = base64url_encode(self._algorithm.sign(signing_input, self._key))

        # Exact comparison of the encoded segment: any changed character fails,
        # including non-canonical base64 that would decode to the same bytes.
        if not hmac.compare_digest(expected_signature, signature_segment.encode("utf-8")):
            raise self._reject("signature")

        try:
            claims = jwt.decode(token, self._key, algorithms=[TOKEN_ALGORITHM])
        except jwt.PyJWTError:
            raise self._reject("undecodable")

        expires_at = claims.get("expiresAt")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise self._reject("missing_expiry")
        if expires_at < self._now_ms():
            raise self._reject("expired")

        return claims

    def _reject(self, reason: str) -> AuthenticationError:
        self.logger.info("Session token rejected", reason=reason)
        return AuthenticationError(INVALID_TOKEN_MESSAGE)
