"""
Session authentication for guest requests.
"""

from typing import Optional

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_session_context
from shared.metrics import MetricsCollector
from ..domain.models import SessionClaims
from .session_tokens import SessionTokenService

SESSION_TOKEN_HEADER = "x-session-token"


class SessionAuthenticator:
    """Authenticate requests from the ``x-session-token`` header.

    Trust is stateless: a valid signature and unexpired ``expiresAt`` are
    enough. The store is deliberately NOT consulted per request; adding a
    synchronous session lookup here would couple every guest call to store
    latency and availability.
    """

    def __init__(self, token_service: SessionTokenService, metrics: Optional[MetricsCollector] = None):
        self.token_service = token_service
        self.metrics = metrics
        self.logger = get_logger("qr_gateway.session_auth")

    async def authenticate(self, request: Request, required: bool = True) -> Optional[SessionClaims]:
        """Return verified claims, ``None`` when optional and absent, else raise."""
        token = request.headers.get(SESSION_TOKEN_HEADER)
        if not token:
            if required:
                self._record("missing")
                raise AuthenticationError("Session token required")
            return None

        try:
            claims = SessionClaims.from_payload(self.token_service.verify(token.strip()))
        except AuthenticationError:
            self._record("rejected")
            raise

        self._record("ok")
        set_session_context(session_id=claims.session_id, tenant_id=claims.tenant_id)
        return claims

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("session_token_verifications_total", status=status)
