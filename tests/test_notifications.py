"""Tests for customer notification delivery."""

import json
from uuid import uuid4

import httpx
import pytest

from storefront_core.models.customer import CustomerContact
from storefront_core.models.order import OrderStatus, OrderTransition
from storefront_core.notifications import (
    HttpNotificationDispatcher,
    drain_notifications,
    fire_and_forget,
    notification_payload,
)
from storefront_core.utils.clock import ManualClock


@pytest.fixture
def confirmed(customer: CustomerContact, clock: ManualClock) -> OrderTransition:
    return OrderTransition(
        order_id=uuid4(),
        order_number="ORD-1A2B3C4D",
        from_status=OrderStatus.PENDING_CONFIRMATION,
        to_status=OrderStatus.CONFIRMED,
        trigger="grace_period_expired",
        occurred_at=clock.now(),
        customer=customer,
    )


def test_payload_carries_contact_channels(confirmed: OrderTransition) -> None:
    payload = notification_payload(confirmed)

    assert payload["status"] == "confirmed"
    assert payload["order_number"] == "ORD-1A2B3C4D"
    assert payload["customer"] == {
        "name": "Test Customer",
        "email": "test@example.com",
        "phone": "+1234567890",
    }


@pytest.mark.asyncio
async def test_http_dispatcher_posts_payload(confirmed: OrderTransition) -> None:
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = HttpNotificationDispatcher("http://notify.test/events", client=client)

    await dispatcher.dispatch(confirmed)

    assert received == [notification_payload(confirmed)]
    await client.aclose()


@pytest.mark.asyncio
async def test_http_dispatcher_raises_on_error_status(confirmed: OrderTransition) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    dispatcher = HttpNotificationDispatcher("http://notify.test/events", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await dispatcher.dispatch(confirmed)
    await client.aclose()


@pytest.mark.asyncio
async def test_fire_and_forget_swallows_failures(confirmed: OrderTransition) -> None:
    class Broken:
        async def dispatch(self, event: OrderTransition) -> None:
            raise RuntimeError("smtp down")

    task = fire_and_forget(Broken(), confirmed)
    await drain_notifications()

    assert task.done()
    assert task.exception() is None
