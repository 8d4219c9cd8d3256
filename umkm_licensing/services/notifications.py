# ==== WORKFLOW NOTIFICATIONS ==== #

"""
Fire-and-forget notifications for workflow events.

The workflow engine never waits on delivery: each notification runs as a
background task, and a failed delivery is logged and counted without
affecting the transition that triggered it.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol, Set

from umkm_licensing.observability.logging import get_logger
from umkm_licensing.observability.metrics import notifications_failed_total


logger = get_logger(__name__)


# Templates emitted by the workflow engine
LICENSE_SUBMITTED = "license_submitted"
LICENSE_APPROVED = "license_approved"
LICENSE_REJECTED = "license_rejected"


class Notifier(Protocol):
    """Delivery channel for templated notifications (email, SMS, push...)."""

    async def send(self, recipient: str, template: str, variables: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Notifier that only records the notification in the structured log."""

    async def send(self, recipient: str, template: str, variables: Dict[str, Any]) -> None:
        logger.info(
            "Notification sent",
            recipient=recipient,
            template=template,
            variables=variables,
        )


class NotificationDispatcher:
    """
    Schedules notifier calls as background tasks.

    References to pending tasks are held until they finish so they are not
    garbage collected mid-flight; ``drain`` waits for all of them, which the
    app lifespan and tests use.
    """

    def __init__(self, notifier: Optional[Notifier] = None, enabled: bool = True):
        self.notifier = notifier or LoggingNotifier()
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, recipient: str, template: str, variables: Dict[str, Any]) -> None:
        """Schedule a notification; returns immediately."""
        if not self.enabled:
            return

        task = asyncio.create_task(self._deliver(recipient, template, variables))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, recipient: str, template: str, variables: Dict[str, Any]) -> None:
        try:
            await self.notifier.send(recipient, template, variables)
        except Exception as e:
            notifications_failed_total.labels(template=template).inc()
            logger.warning(
                "Notification delivery failed",
                recipient=recipient,
                template=template,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def pending(self) -> int:
        return len(self._pending)
