"""
Staff notifier client for the QR gateway.
"""

from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger


class NotifierClient:
    """Posts staff notifications to the alerting pipeline.

    ``notify`` raises on failure; callers that must not fail wrap it (see
    ``domain.notifications.NotificationDispatcher``).
    """

    def __init__(self,
                 url: str,
                 timeout_seconds: float = 5.0,
                 service_key: str = "",
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.logger = get_logger("qr_gateway.notifier_client")

        headers = {"Content-Type": "application/json"}
        if service_key:
            headers["Authorization"] = f"Bearer {service_key}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def notify(self,
                     tenant_id: str,
                     title: str,
                     message: str,
                     priority: str,
                     department: str,
                     reference_id: str,
                     metadata: Dict[str, Any]) -> None:
        response = await self._client.post(
            self.url,
            json={
                "tenant_id": tenant_id,
                "title": title,
                "message": message,
                "priority": priority,
                "department": department,
                "reference_id": reference_id,
                "metadata": metadata,
            },
        )
        response.raise_for_status()
        self.logger.debug("Staff notification accepted", department=department, reference_id=reference_id)
