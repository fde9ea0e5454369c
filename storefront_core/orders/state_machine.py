"""Order grace-period state machine.

PENDING_CONFIRMATION -> CONFIRMED -> PREPARING -> READY -> OUT_FOR_DELIVERY -> DELIVERED
with CANCELLED reachable until preparation starts and the cancellation
window closes. Every transition of one order runs under that order's lock.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Awaitable, Callable
from uuid import UUID

from storefront_core.config import Settings, get_settings
from storefront_core.errors import (
    AppError,
    Err,
    InsufficientStockError,
    NotFoundError,
    Ok,
    PermanentError,
    RequestValidationError,
    Result,
)
from storefront_core.models.order import (
    KITCHEN_SEQUENCE,
    STATUS_TIMESTAMPS,
    Order,
    OrderItem,
    OrderItemChange,
    OrderPayload,
    OrderStatus,
    OrderTransition,
    TimeRemaining,
)
from storefront_core.notifications import (
    LoggingDispatcher,
    NotificationDispatcher,
    fire_and_forget,
)
from storefront_core.orders.pricing import (
    build_order,
    compute_pricing,
    extended_grace_deadline,
)
from storefront_core.reservations.tracker import ReservationTracker
from storefront_core.stores.base import Store
from storefront_core.utils.clock import Clock, SystemClock
from storefront_core.utils.logging import TransitionLogger

TransitionListener = Callable[[OrderTransition], Awaitable[None]]

# Transitions the customer is told about
NOTIFY_ON = (OrderStatus.CONFIRMED, OrderStatus.CANCELLED)


def seconds_until(deadline: datetime, now: datetime) -> float:
    return max(0.0, (deadline - now).total_seconds())


class OrderLifecycle:
    """
    Drives orders from submission to a terminal status.

    Grace and cancellation windows are checked against the order's stored
    timestamps using the injected clock. Expiry is enforced both by a
    background ticker and lazily before any read or mutation of an order.
    """

    def __init__(
        self,
        store: Store,
        tracker: ReservationTracker,
        clock: Clock | None = None,
        settings: Settings | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.store = store
        self.tracker = tracker
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.log = TransitionLogger("order_lifecycle")

        self._locks: dict[UUID, asyncio.Lock] = {}
        self._lock_users: dict[UUID, int] = {}
        self._listeners: list[TransitionListener] = []
        self._listener_task: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None

    @asynccontextmanager
    async def _order_lock(self, order_id: UUID) -> AsyncGenerator[None, None]:
        """Hold the order's lock. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(order_id)
        if lock is None:
            lock = self._locks[order_id] = asyncio.Lock()
        self._lock_users[order_id] = self._lock_users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[order_id] -= 1
            if not self._lock_users[order_id]:
                del self._lock_users[order_id]
                del self._locks[order_id]

    def add_listener(self, listener: TransitionListener) -> None:
        """Register an async callback invoked, in order, after every accepted transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Creation

    async def create_order(self, payload: OrderPayload) -> Result[Order, AppError]:
        """Create a pending order. Replays of the same idempotency key return the first order."""
        for item in payload.items:
            try:
                await self.store.get_raw_inventory(item.item_id)
            except NotFoundError as e:
                return Err(e)

        order = build_order(payload, self.settings, self.clock.now())
        stored = await self.store.create_order(order)
        if stored.id == order.id:
            self.log.logger.info(
                "order_created",
                order_id=str(stored.id),
                order_number=stored.order_number,
                session_id=stored.session_id,
                total=str(stored.pricing.total),
                grace_period_expires_at=stored.grace_period_expires_at.isoformat(),
            )
        return Ok(stored)

    async def register(self, order: Order) -> Order:
        """Track an order created elsewhere so its grace period is enforced here."""
        async with self._order_lock(order.id):
            existing = await self.store.get_order(order.id)
            if existing is not None:
                return existing
            await self.store.save_order(order)
            self.log.logger.info("order_registered", order_id=str(order.id))
            return order

    # Reads

    async def _load(self, order_id: UUID) -> Result[Order, AppError]:
        order = await self.store.get_order(order_id)
        if order is None:
            return Err(NotFoundError(f"Order {order_id} not found", resource="order"))
        return Ok(order)

    async def _finalize_if_due(self, order: Order) -> Order:
        if (
            order.status == OrderStatus.PENDING_CONFIRMATION
            and self.clock.now() >= order.grace_period_expires_at
        ):
            await self._finalize_locked(order, trigger="grace_period_expired")
        return order

    async def get_order(self, order_id: UUID) -> Result[Order, AppError]:
        async with self._order_lock(order_id):
            loaded = await self._load(order_id)
            if loaded.is_err():
                return loaded
            return Ok(await self._finalize_if_due(loaded.value))

    async def get_time_remaining(self, order_id: UUID) -> Result[TimeRemaining, AppError]:
        """Remaining grace and cancellation time, derived from stored timestamps."""
        loaded = await self.get_order(order_id)
        if loaded.is_err():
            return loaded
        order = loaded.value
        now = self.clock.now()

        grace = 0.0
        if order.status == OrderStatus.PENDING_CONFIRMATION:
            grace = seconds_until(order.grace_period_expires_at, now)

        cancellation = 0.0
        if not order.status.is_terminal and order.preparing_at is None:
            cancellation = seconds_until(order.cancellation_expires_at, now)

        return Ok(
            TimeRemaining(
                order_id=order.id,
                status=order.status,
                grace_period_seconds=grace,
                cancellation_seconds=cancellation,
                can_modify=grace > 0,
                can_cancel=cancellation > 0,
            )
        )

    # Grace-period modification

    async def modify_items(
        self,
        order_id: UUID,
        changes: list[OrderItemChange],
    ) -> Result[Order, AppError]:
        """
        Replace the order's items while it is still pending confirmation.

        Args:
            order_id: Order to modify
            changes: Complete new item set; quantity 0 drops a line

        Returns:
            Ok with the repriced order, or Err when the grace period is over,
            the new set is empty or stock cannot be held
        """
        async with self._order_lock(order_id):
            loaded = await self._load(order_id)
            if loaded.is_err():
                return loaded
            order = await self._finalize_if_due(loaded.value)

            if order.status != OrderStatus.PENDING_CONFIRMATION:
                code = "not_modifiable"
                if order.status == OrderStatus.CONFIRMED:
                    code = "grace_period_expired"
                return self._reject(order, "modify", code, "Order can no longer be modified")

            built = self._apply_changes(order, changes)
            if built.is_err():
                return built
            items = built.value
            if not items:
                return self._reject(
                    order, "modify", "empty_order", "An order needs at least one item"
                )

            held = await self._adjust_holds(order, items)
            if held.is_err():
                return held

            now = self.clock.now()
            order.items = items
            order.pricing = compute_pricing(
                items,
                self.settings,
                discount=order.pricing.discount,
                tip=order.pricing.tip,
            )
            order.modification_count += 1
            order.last_modified_at = now
            order.grace_period_expires_at = extended_grace_deadline(order, self.settings, now)
            await self.store.save_order(order)

        self.log.logger.info(
            "order_modified",
            order_id=str(order.id),
            modification_count=order.modification_count,
            total=str(order.pricing.total),
            grace_period_expires_at=order.grace_period_expires_at.isoformat(),
        )
        return Ok(order)

    def _apply_changes(
        self, order: Order, changes: list[OrderItemChange]
    ) -> Result[list[OrderItem], AppError]:
        current = {item.item_id: item for item in order.items}
        seen: set[str] = set()
        items: list[OrderItem] = []

        for change in changes:
            if change.item_id in seen:
                return Err(
                    RequestValidationError(f"Duplicate item {change.item_id}", field="items")
                )
            seen.add(change.item_id)
            if change.quantity == 0:
                continue

            existing = current.get(change.item_id)
            unit_price = existing.unit_price if existing else change.unit_price
            if unit_price is None:
                return Err(
                    RequestValidationError(
                        f"Unit price required for new item {change.item_id}",
                        field="unit_price",
                    )
                )
            items.append(
                OrderItem(
                    item_id=change.item_id,
                    name=change.name or (existing.name if existing else ""),
                    quantity=change.quantity,
                    unit_price=unit_price,
                    special_instructions=(
                        change.special_instructions
                        if change.special_instructions is not None
                        else (existing.special_instructions if existing else None)
                    ),
                )
            )
        return Ok(items)

    async def _adjust_holds(self, order: Order, items: list[OrderItem]) -> Result[None, AppError]:
        """Move the session's holds to the new quantities, all or nothing."""
        session_id = order.session_id
        before = self.tracker.holds_for_session(session_id)
        wanted = {item.item_id: item.quantity for item in items}
        for item_id in order.quantities():
            wanted.setdefault(item_id, 0)

        # Increases can fail; apply them first so a failure is easy to undo
        increases = [(i, q) for i, q in wanted.items() if q > before.get(i, 0)]
        decreases = [(i, q) for i, q in wanted.items() if q <= before.get(i, 0)]

        applied: list[str] = []
        for item_id, quantity in increases:
            result = await self.tracker.adjust(session_id, item_id, quantity)
            if result.is_err():
                for undo in applied:
                    await self.tracker.adjust(session_id, undo, before.get(undo, 0))
                self.log.log_rejection(
                    str(order.id),
                    "modify",
                    result.error.code,
                    order.status.value,
                    item_id=item_id,
                )
                return result
            applied.append(item_id)

        for item_id, quantity in decreases:
            await self.tracker.adjust(session_id, item_id, quantity)
        return Ok(None)

    # Finalization

    async def finalize_order(self, order_id: UUID) -> Result[Order, AppError]:
        """
        Confirm now.

        Finalizing an order already past confirmation is a no-op. Cancelled and
        delivered orders are rejected.
        """
        async with self._order_lock(order_id):
            loaded = await self._load(order_id)
            if loaded.is_err():
                return loaded
            return await self._finalize_locked(loaded.value, trigger="explicit")

    async def finalize_due_orders(self) -> int:
        """Confirm every pending order whose grace period has passed."""
        finalized = 0
        for order_id in await self.store.pending_order_ids():
            async with self._order_lock(order_id):
                order = await self.store.get_order(order_id)
                if (
                    order is None
                    or order.status != OrderStatus.PENDING_CONFIRMATION
                    or self.clock.now() < order.grace_period_expires_at
                ):
                    continue
                result = await self._finalize_locked(order, trigger="grace_period_expired")
                if result.is_ok():
                    finalized += 1
        return finalized

    async def _finalize_locked(self, order: Order, trigger: str) -> Result[Order, AppError]:
        if order.status.is_terminal:
            return self._reject(
                order, "finalize", "order_terminal", f"Order is already {order.status.value}"
            )
        if order.status != OrderStatus.PENDING_CONFIRMATION:
            return Ok(order)

        committed: list[OrderItem] = []
        for item in order.items:
            if await self.store.atomic_decrement_if_available(item.item_id, item.quantity):
                committed.append(item)
                self.log.log_stock_commit(str(order.id), item.item_id, item.quantity, True)
                await self.tracker.release(order.session_id, item.item_id)
                continue

            self.log.log_stock_commit(str(order.id), item.item_id, item.quantity, False)
            for done in committed:
                await self.store.atomic_increment(done.item_id, done.quantity)
            available = await self.store.get_raw_inventory(item.item_id) or 0
            await self._cancel_locked(order, reason="insufficient_stock", trigger=trigger)
            return Err(InsufficientStockError(item.item_id, item.quantity, available))

        order.stock_committed = True
        await self._transition(order, OrderStatus.CONFIRMED, trigger)
        return Ok(order)

    # Cancellation

    async def cancel_order(
        self, order_id: UUID, reason: str | None = None
    ) -> Result[Order, AppError]:
        """
        Cancel on the customer's behalf.

        Allowed within the cancellation window and before preparation starts,
        even after the order was confirmed. Stock already committed is
        returned to inventory; uncommitted holds are released.
        """
        async with self._order_lock(order_id):
            loaded = await self._load(order_id)
            if loaded.is_err():
                return loaded
            order = await self._finalize_if_due(loaded.value)

            if order.status.is_terminal:
                return self._reject(
                    order, "cancel", "order_terminal", f"Order is already {order.status.value}"
                )
            if order.preparing_at is not None:
                return self._reject(
                    order,
                    "cancel",
                    "preparation_started",
                    "The kitchen has started preparing this order",
                )
            if self.clock.now() >= order.cancellation_expires_at:
                return self._reject(
                    order,
                    "cancel",
                    "cancellation_window_expired",
                    "The cancellation window has closed",
                )

            await self._cancel_locked(
                order, reason=reason or "customer_request", trigger="customer"
            )
            return Ok(order)

    async def _cancel_locked(self, order: Order, reason: str, trigger: str) -> None:
        if order.stock_committed:
            for item in order.items:
                await self.store.atomic_increment(item.item_id, item.quantity)
                self.log.log_stock_commit(
                    str(order.id), item.item_id, item.quantity, True, restored=True
                )
            order.stock_committed = False
        else:
            for item in order.items:
                await self.tracker.release(order.session_id, item.item_id)

        order.cancellation_reason = reason
        await self._transition(order, OrderStatus.CANCELLED, trigger, reason=reason)

    # Kitchen progression

    async def advance_status(
        self, order_id: UUID, status: OrderStatus
    ) -> Result[Order, AppError]:
        """Move an order one step along the kitchen sequence."""
        async with self._order_lock(order_id):
            loaded = await self._load(order_id)
            if loaded.is_err():
                return loaded
            order = await self._finalize_if_due(loaded.value)

            if order.status.is_terminal:
                return self._reject(
                    order, "advance", "order_terminal", f"Order is already {order.status.value}"
                )
            if order.status == OrderStatus.PENDING_CONFIRMATION:
                if status == OrderStatus.CONFIRMED:
                    return await self._finalize_locked(order, trigger="staff")
                return self._reject(
                    order, "advance", "invalid_transition", "Order is not confirmed yet"
                )
            if status not in KITCHEN_SEQUENCE:
                return self._reject(
                    order,
                    "advance",
                    "invalid_transition",
                    f"Cannot move order to {status.value}",
                )

            current = KITCHEN_SEQUENCE.index(order.status)
            if KITCHEN_SEQUENCE.index(status) != current + 1:
                return self._reject(
                    order,
                    "advance",
                    "invalid_transition",
                    f"Cannot move order from {order.status.value} to {status.value}",
                )

            await self._transition(order, status, trigger="staff", persist_full=False)
            return Ok(order)

    # Internals

    def _reject(self, order: Order, action: str, code: str, message: str) -> Err[AppError]:
        self.log.log_rejection(str(order.id), action, code, order.status.value)
        return Err(PermanentError(message, code=code))

    async def _transition(
        self,
        order: Order,
        status: OrderStatus,
        trigger: str,
        reason: str | None = None,
        persist_full: bool = True,
    ) -> None:
        previous = order.status
        now = self.clock.now()
        order.status = status
        setattr(order, STATUS_TIMESTAMPS[status], now)

        if persist_full:
            await self.store.save_order(order)
        else:
            await self.store.update_order_status(order.id, status, now)

        self.log.log_transition(
            str(order.id),
            previous.value,
            status.value,
            trigger,
            order_number=order.order_number,
            reason=reason,
        )

        event = OrderTransition(
            order_id=order.id,
            order_number=order.order_number,
            from_status=previous,
            to_status=status,
            trigger=trigger,
            occurred_at=now,
            customer=order.customer,
            reason=reason,
        )
        if status in NOTIFY_ON:
            fire_and_forget(self.dispatcher, event)
        if self._listeners:
            # Delivered in order on a task, outside the order lock
            self._listener_task = asyncio.create_task(
                self._notify_listeners(event, after=self._listener_task)
            )

    async def _notify_listeners(
        self, event: OrderTransition, after: asyncio.Task | None = None
    ) -> None:
        if after is not None:
            await asyncio.wait({after})
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                self.log.log_error(
                    str(e),
                    str(event.order_id),
                    stage="transition_listener",
                    to_status=event.to_status.value,
                )

    async def drain_listeners(self) -> None:
        """Wait until every transition so far has reached the listeners."""
        while self._listener_task is not None and not self._listener_task.done():
            await asyncio.wait({self._listener_task})

    # Background ticker

    def start_ticker(self, interval: float | None = None) -> None:
        """Start finalizing expired grace periods on the running loop."""
        if self._ticker and not self._ticker.done():
            return
        interval = interval or self.settings.finalize_tick_seconds
        self._ticker = asyncio.create_task(self._tick_loop(interval))
        self.log.logger.info("finalize_ticker_started", interval_seconds=interval)

    async def stop_ticker(self) -> None:
        if self._ticker is None:
            return
        self._ticker.cancel()
        try:
            await self._ticker
        except asyncio.CancelledError:
            pass
        self._ticker = None
        self.log.logger.info("finalize_ticker_stopped")

    async def _tick_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.finalize_due_orders()
            except Exception as e:
                self.log.log_error(str(e), "*", stage="finalize_ticker")
