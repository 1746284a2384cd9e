"""
Session token issuance and request authentication for the QR gateway.
"""

from .session_tokens import SessionTokenService, TokenServiceConfig
from .session_auth import SESSION_TOKEN_HEADER, SessionAuthenticator

__all__ = [
    "SESSION_TOKEN_HEADER",
    "SessionAuthenticator",
    "SessionTokenService",
    "TokenServiceConfig",
]
