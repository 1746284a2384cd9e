"""
Best-effort staff notifications.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class StaffNotification:
    tenant_id: str
    title: str
    message: str
    priority: str
    department: str
    reference_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Dispatch notifications and discard the result except for logging.

    Delivery runs as a detached task, so a slow or failing notifier never
    affects the guest request that triggered it.
    """

    def __init__(self, notifier: Optional[Any], metrics: Optional[MetricsCollector] = None):
        self.notifier = notifier
        self.metrics = metrics
        self.logger = get_logger("qr_gateway.notifications")
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, notification: StaffNotification) -> None:
        if self.notifier is None:
            self._record("skipped")
            return

        task = asyncio.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: StaffNotification) -> None:
        try:
            await self.notifier.notify(
                tenant_id=notification.tenant_id,
                title=notification.title,
                message=notification.message,
                priority=notification.priority,
                department=notification.department,
                reference_id=notification.reference_id,
                metadata=notification.metadata,
            )
        except Exception as e:
            self.logger.warning(
                "Staff notification failed",
                department=notification.department,
                reference_id=notification.reference_id,
                error=str(e)
            )
            self._record("failed")
        else:
            self._record("sent")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries, e.g. on shutdown."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            self.logger.warning("Abandoning undelivered staff notifications", count=len(pending))

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("notifications_total", status=status)
