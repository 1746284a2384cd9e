"""
Adapters package for the QR gateway.

Contains HTTP client wrappers for the external collaborators: the
session/request store and the staff notifier. These adapters encapsulate:

- Base URLs, procedure names and request shapes
- Timeouts, retries for idempotent reads and circuit breaking
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .notifier_client import NotifierClient
from .session_store_client import SessionStoreClient

__all__ = [
    "NotifierClient",
    "SessionStoreClient",
]
