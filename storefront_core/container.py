"""Wiring of the store, tracker and order lifecycle for one process."""

from dataclasses import dataclass

from storefront_core.config import Settings, get_settings
from storefront_core.notifications import (
    HttpNotificationDispatcher,
    LoggingDispatcher,
    NotificationDispatcher,
    drain_notifications,
)
from storefront_core.orders.state_machine import OrderLifecycle
from storefront_core.reservations.tracker import ReservationTracker
from storefront_core.state.manager import StateManager
from storefront_core.stores.base import Store
from storefront_core.stores.memory import InMemoryStore
from storefront_core.stores.redis_store import RedisStore
from storefront_core.utils.clock import Clock, SystemClock
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived services shared by every request."""

    settings: Settings
    clock: Clock
    store: Store
    tracker: ReservationTracker
    lifecycle: OrderLifecycle
    dispatcher: NotificationDispatcher
    state: StateManager | None = None

    def start(self) -> None:
        """Start background sweeps on the running loop."""
        self.tracker.start_sweeper()
        self.lifecycle.start_ticker()

    async def stop(self) -> None:
        await self.lifecycle.stop_ticker()
        await self.lifecycle.drain_listeners()
        await self.tracker.stop_sweeper()
        await drain_notifications()
        if isinstance(self.dispatcher, HttpNotificationDispatcher):
            await self.dispatcher.aclose()
        if self.state is not None:
            await self.state.disconnect()


async def build_container(
    settings: Settings | None = None,
    clock: Clock | None = None,
    store: Store | None = None,
) -> ServiceContainer:
    """Build services for the configured store backend."""
    settings = settings or get_settings()
    clock = clock or SystemClock()

    state = None
    if store is None:
        if settings.store_backend == "redis":
            state = StateManager(redis_url=settings.redis_url)
            await state.connect()
            store = RedisStore(state, prefix=settings.key_prefix)
        else:
            store = InMemoryStore()

    dispatcher: NotificationDispatcher
    if settings.notification_url:
        dispatcher = HttpNotificationDispatcher(
            settings.notification_url,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        dispatcher = LoggingDispatcher()

    tracker = ReservationTracker(store, clock=clock, settings=settings)
    lifecycle = OrderLifecycle(
        store,
        tracker,
        clock=clock,
        settings=settings,
        dispatcher=dispatcher,
    )

    logger.info(
        "container_built",
        store_backend=type(store).__name__,
        notifications=type(dispatcher).__name__,
    )
    return ServiceContainer(
        settings=settings,
        clock=clock,
        store=store,
        tracker=tracker,
        lifecycle=lifecycle,
        dispatcher=dispatcher,
        state=state,
    )
