"""Customer notifications for order confirmation and cancellation.

Delivery is fire-and-forget: a failed notification is logged and never
blocks or reverts the order transition that produced it.
"""

import asyncio
from typing import Any, Protocol

import httpx

from storefront_core.models.order import OrderTransition
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)

# Strong references so scheduled deliveries are not garbage collected mid-flight
_pending_deliveries: set[asyncio.Task] = set()


class NotificationDispatcher(Protocol):
    async def dispatch(self, event: OrderTransition) -> None: ...


def notification_payload(event: OrderTransition) -> dict[str, Any]:
    """Wire body for one notification."""
    customer = event.customer
    return {
        "order_id": str(event.order_id),
        "order_number": event.order_number,
        "status": event.to_status.value,
        "reason": event.reason,
        "occurred_at": event.occurred_at.isoformat(),
        "customer": {
            "name": customer.name if customer else None,
            "email": customer.email if customer else None,
            "phone": customer.phone if customer else None,
        },
    }


class LoggingDispatcher:
    """Records notifications in the log only."""

    async def dispatch(self, event: OrderTransition) -> None:
        logger.info("notification_dispatched", **notification_payload(event))


class HttpNotificationDispatcher:
    """Posts notifications to an external notification service."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def dispatch(self, event: OrderTransition) -> None:
        response = await self.client.post(self.url, json=notification_payload(event))
        response.raise_for_status()
        logger.info(
            "notification_sent",
            order_id=str(event.order_id),
            status=event.to_status.value,
            status_code=response.status_code,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


async def _deliver(dispatcher: NotificationDispatcher, event: OrderTransition) -> None:
    try:
        await dispatcher.dispatch(event)
    except Exception as e:
        logger.warning(
            "notification_failed",
            order_id=str(event.order_id),
            status=event.to_status.value,
            error=str(e),
            error_type=type(e).__name__,
        )


def fire_and_forget(dispatcher: NotificationDispatcher, event: OrderTransition) -> asyncio.Task:
    """Schedule delivery on the running loop and return immediately."""
    task = asyncio.create_task(_deliver(dispatcher, event))
    _pending_deliveries.add(task)
    task.add_done_callback(_pending_deliveries.discard)
    return task


async def drain_notifications() -> None:
    """Wait for in-flight deliveries (shutdown and tests)."""
    if _pending_deliveries:
        await asyncio.gather(*list(_pending_deliveries), return_exceptions=True)
