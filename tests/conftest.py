"""Pytest configuration and fixtures."""

from decimal import Decimal
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from storefront_core.config import Settings
from storefront_core.container import ServiceContainer, build_container
from storefront_core.models.customer import CustomerContact
from storefront_core.models.order import OrderItem, OrderPayload, OrderTransition
from storefront_core.notifications import drain_notifications
from storefront_core.orders.state_machine import OrderLifecycle
from storefront_core.reservations.tracker import ReservationTracker
from storefront_core.stores.memory import InMemoryStore
from storefront_core.utils.clock import ManualClock

# Raw inventory seeded into every store fixture
MENU_INVENTORY: dict[str, int | None] = {
    "pizza": 10,
    "salad": 5,
    "fries": 20,
    "soda": None,
}


class RecordingDispatcher:
    """Notification dispatcher that keeps every event."""

    def __init__(self) -> None:
        self.events: list[OrderTransition] = []

    async def dispatch(self, event: OrderTransition) -> None:
        self.events.append(event)


@pytest.fixture
def settings() -> Settings:
    """Settings with deterministic values for tests."""
    return Settings(
        _env_file=None,
        log_format="text",
        reservation_ttl_seconds=1800,
        grace_period_seconds=180,
        grace_period_extension_seconds=120,
        grace_period_max_seconds=300,
        cancellation_window_seconds=600,
        tax_rate=Decimal("0.05"),
        delivery_fee=Decimal("50.00"),
        submit_max_attempts=3,
        submit_base_delay_seconds=0.5,
        submit_max_delay_seconds=8.0,
        submit_attempt_timeout_seconds=5.0,
        submit_jitter=False,
        notification_url=None,
    )


@pytest.fixture
def clock() -> ManualClock:
    """Manually advanced clock."""
    return ManualClock()


@pytest_asyncio.fixture
async def store() -> InMemoryStore:
    """In-memory store seeded with the test menu."""
    store = InMemoryStore()
    for item_id, quantity in MENU_INVENTORY.items():
        await store.set_inventory(item_id, quantity)
    return store


@pytest.fixture
def tracker(store: InMemoryStore, clock: ManualClock, settings: Settings) -> ReservationTracker:
    return ReservationTracker(store, clock=clock, settings=settings)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest_asyncio.fixture
async def lifecycle(
    store: InMemoryStore,
    tracker: ReservationTracker,
    clock: ManualClock,
    settings: Settings,
    dispatcher: RecordingDispatcher,
) -> AsyncGenerator[OrderLifecycle, None]:
    """Order lifecycle over the in-memory store."""
    lifecycle = OrderLifecycle(
        store,
        tracker,
        clock=clock,
        settings=settings,
        dispatcher=dispatcher,
    )
    yield lifecycle
    await lifecycle.stop_ticker()
    await lifecycle.drain_listeners()
    await drain_notifications()


@pytest_asyncio.fixture
async def container(
    store: InMemoryStore,
    clock: ManualClock,
    settings: Settings,
) -> AsyncGenerator[ServiceContainer, None]:
    """Service container over the seeded in-memory store; background tasks not started."""
    container = await build_container(settings, clock=clock, store=store)
    yield container
    await container.stop()


# Sample data fixtures


@pytest.fixture
def customer() -> CustomerContact:
    """Create a sample customer."""
    return CustomerContact(
        customer_id="cust-1",
        name="Test Customer",
        email="test@example.com",
        phone="+1234567890",
    )


@pytest.fixture
def make_payload(customer: CustomerContact) -> Callable[..., OrderPayload]:
    """Factory for order payloads; items are (item_id, quantity, unit_price) tuples."""

    def _make(
        session_id: str = "session-1",
        items: list[tuple[str, int, str]] | None = None,
        **overrides,
    ) -> OrderPayload:
        items = items or [("pizza", 2, "12.50"), ("salad", 1, "8.00")]
        return OrderPayload(
            session_id=session_id,
            customer=customer,
            items=[
                OrderItem(
                    item_id=item_id,
                    name=item_id.title(),
                    quantity=quantity,
                    unit_price=Decimal(price),
                )
                for item_id, quantity, price in items
            ],
            delivery_address="123 Test St",
            **overrides,
        )

    return _make
