"""Cart inventory reservation tracker."""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from storefront_core.config import Settings, get_settings
from storefront_core.errors import (
    AppError,
    Err,
    InsufficientStockError,
    NotFoundError,
    Ok,
    RequestValidationError,
    Result,
)
from storefront_core.models.inventory import DemandSnapshot, Reservation, TrackerStats
from storefront_core.reservations.demand import (
    DemandBaseline,
    DemandConfig,
    demand_score,
    social_proof,
    urgency_message,
    urgency_tier,
)
from storefront_core.stores.base import InventoryStore
from storefront_core.utils.clock import Clock, SystemClock
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


class ReservationTracker:
    """
    Soft, expiring holds on menu items shared across all shopping carts.

    Responsibilities:
    - Reserve stock for a cart without touching raw inventory
    - Renew, adjust and release holds as the cart changes
    - Expire abandoned holds on a recurring sweep
    - Score demand pressure for urgency display

    Mutations of one item's holds happen under that item's lock, so two
    carts can never both take the last unit.
    """

    def __init__(
        self,
        store: InventoryStore,
        clock: Clock | None = None,
        settings: Settings | None = None,
        demand_config: DemandConfig | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.ttl = timedelta(seconds=self.settings.reservation_ttl_seconds)
        self.demand_config = demand_config or DemandConfig.from_settings(self.settings)
        self.baseline = DemandBaseline(
            window=self.demand_config.baseline_window,
            percentile=self.demand_config.baseline_percentile,
            min_samples=self.demand_config.baseline_min_samples,
        )

        # item_id -> session_id -> reservation
        self._holds: dict[str, dict[str, Reservation]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._sweeper: asyncio.Task | None = None

    @asynccontextmanager
    async def _item_lock(self, item_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.get(item_id)
        if lock is None:
            lock = self._locks[item_id] = asyncio.Lock()
        self._lock_users[item_id] = self._lock_users.get(item_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[item_id] -= 1
            if not self._lock_users[item_id]:
                del self._lock_users[item_id]
                del self._locks[item_id]

    def _active_holds(self, item_id: str) -> list[Reservation]:
        now = self.clock.now()
        return [r for r in self._holds.get(item_id, {}).values() if not r.is_expired(now)]

    def _active_hold(self, session_id: str, item_id: str) -> Reservation | None:
        hold = self._holds.get(item_id, {}).get(session_id)
        if hold is None or hold.is_expired(self.clock.now()):
            return None
        return hold

    def _store_hold(self, reservation: Reservation) -> None:
        self._holds.setdefault(reservation.item_id, {})[reservation.session_id] = reservation

    def _drop_hold(self, session_id: str, item_id: str) -> bool:
        holds = self._holds.get(item_id)
        if not holds or session_id not in holds:
            return False
        del holds[session_id]
        if not holds:
            del self._holds[item_id]
        return True

    def reserved_quantity(self, item_id: str) -> int:
        """Total quantity held by unexpired reservations."""
        return sum(r.quantity for r in self._active_holds(item_id))

    def active_cart_count(self, item_id: str) -> int:
        """Number of carts currently holding this item."""
        return len({r.session_id for r in self._active_holds(item_id)})

    def get_stock_with_reservations(
        self, item_id: str, raw_inventory: int | None
    ) -> int | None:
        """Raw inventory minus active holds, never negative. None stays None (untracked)."""
        if raw_inventory is None:
            return None
        return max(0, raw_inventory - self.reserved_quantity(item_id))

    async def _raw_inventory(self, item_id: str) -> Result[int | None, AppError]:
        try:
            return Ok(await self.store.get_raw_inventory(item_id))
        except NotFoundError as e:
            return Err(e)

    async def reserve(
        self,
        session_id: str,
        item_id: str,
        quantity: int,
    ) -> Result[Reservation, AppError]:
        """
        Hold ``quantity`` more units of an item for a cart.

        Args:
            session_id: Cart session
            item_id: Menu item
            quantity: Additional units to hold

        Returns:
            Ok with the session's updated reservation, or Err(InsufficientStockError)
            when fewer than ``quantity`` units are available right now
        """
        if quantity < 1:
            return Err(RequestValidationError("Quantity must be positive", field="quantity"))

        async with self._item_lock(item_id):
            raw = await self._raw_inventory(item_id)
            if raw.is_err():
                return raw

            available = self.get_stock_with_reservations(item_id, raw.value)
            if available is not None and quantity > available:
                logger.info(
                    "reservation_refused",
                    session_id=session_id,
                    item_id=item_id,
                    requested=quantity,
                    available=available,
                )
                return Err(InsufficientStockError(item_id, quantity, available))

            now = self.clock.now()
            existing = self._active_hold(session_id, item_id)
            reservation = Reservation(
                session_id=session_id,
                item_id=item_id,
                quantity=quantity + (existing.quantity if existing else 0),
                created_at=existing.created_at if existing else now,
                expires_at=now + self.ttl,
            )
            self._store_hold(reservation)

        logger.info(
            "reservation_created",
            session_id=session_id,
            item_id=item_id,
            quantity=reservation.quantity,
            expires_at=reservation.expires_at.isoformat(),
        )
        return Ok(reservation)

    async def adjust(
        self,
        session_id: str,
        item_id: str,
        quantity: int,
    ) -> Result[Reservation | None, AppError]:
        """Set the cart's hold to an absolute quantity. Zero releases it."""
        if quantity < 0:
            return Err(RequestValidationError("Quantity cannot be negative", field="quantity"))
        if quantity == 0:
            await self.release(session_id, item_id)
            return Ok(None)

        async with self._item_lock(item_id):
            existing = self._active_hold(session_id, item_id)
            held = existing.quantity if existing else 0
            increase = quantity - held

            if increase > 0:
                raw = await self._raw_inventory(item_id)
                if raw.is_err():
                    return raw
                # Re-read after the await; a sweep may have dropped the hold
                existing = self._active_hold(session_id, item_id)
                held = existing.quantity if existing else 0
                increase = quantity - held
                available = self.get_stock_with_reservations(item_id, raw.value)
                if available is not None and increase > available:
                    logger.info(
                        "reservation_refused",
                        session_id=session_id,
                        item_id=item_id,
                        requested=increase,
                        available=available,
                    )
                    return Err(InsufficientStockError(item_id, increase, available))

            now = self.clock.now()
            reservation = Reservation(
                session_id=session_id,
                item_id=item_id,
                quantity=quantity,
                created_at=existing.created_at if existing else now,
                expires_at=now + self.ttl,
            )
            self._store_hold(reservation)

        logger.info(
            "reservation_adjusted",
            session_id=session_id,
            item_id=item_id,
            previous=held,
            quantity=quantity,
        )
        return Ok(reservation)

    async def release(self, session_id: str, item_id: str) -> bool:
        """Remove a cart's hold on an item. Returns False if there was none."""
        async with self._item_lock(item_id):
            released = self._drop_hold(session_id, item_id)
        if released:
            logger.info("reservation_released", session_id=session_id, item_id=item_id)
        return released

    async def release_session(self, session_id: str) -> int:
        """Release every hold of one cart."""
        released = 0
        for item_id in [i for i, holds in self._holds.items() if session_id in holds]:
            if await self.release(session_id, item_id):
                released += 1
        logger.info("session_reservations_released", session_id=session_id, count=released)
        return released

    async def renew(self, session_id: str, item_id: str) -> Result[Reservation, AppError]:
        """Push a hold's expiry to now + TTL."""
        async with self._item_lock(item_id):
            existing = self._active_hold(session_id, item_id)
            if existing is None:
                return Err(
                    NotFoundError(
                        f"No active reservation for {item_id} in session",
                        resource="reservation",
                    )
                )
            reservation = existing.renewed(self.clock.now(), self.ttl)
            self._store_hold(reservation)
        logger.debug("reservation_renewed", session_id=session_id, item_id=item_id)
        return Ok(reservation)

    async def renew_session(self, session_id: str) -> int:
        """Heartbeat: renew every active hold of one cart."""
        renewed = 0
        for item_id in [i for i, holds in self._holds.items() if session_id in holds]:
            if (await self.renew(session_id, item_id)).is_ok():
                renewed += 1
        return renewed

    def holds_for_session(self, session_id: str) -> dict[str, int]:
        """Active held quantity per item for one cart."""
        now = self.clock.now()
        return {
            item_id: holds[session_id].quantity
            for item_id, holds in self._holds.items()
            if session_id in holds and not holds[session_id].is_expired(now)
        }

    def sweep_expired(self) -> int:
        """Drop every expired hold. Never awaits, so it is atomic on the event loop."""
        now = self.clock.now()
        removed = 0
        for item_id, holds in list(self._holds.items()):
            expired = [s for s, r in holds.items() if r.is_expired(now)]
            for session_id in expired:
                del holds[session_id]
            removed += len(expired)
            if not holds:
                del self._holds[item_id]

        if removed:
            logger.info("reservations_swept", removed=removed)
        return removed

    def calculate_demand_pressure(
        self,
        item_id: str,
        *,
        raw_inventory: int | None,
        orders_last_24h: int,
    ) -> DemandSnapshot:
        """Score demand for one item from current holds and recent order velocity."""
        active_carts = self.active_cart_count(item_id)
        available = self.get_stock_with_reservations(item_id, raw_inventory)
        score = demand_score(self.demand_config, active_carts, orders_last_24h, available)

        tier = urgency_tier(
            self.demand_config,
            score,
            active_carts,
            available,
            self.baseline.threshold(),
        )
        self.baseline.record(score)

        return DemandSnapshot(
            item_id=item_id,
            demand_score=score,
            active_cart_count=active_carts,
            orders_last_24h=orders_last_24h,
            available_stock=available,
            urgency_tier=tier,
            urgency_message=urgency_message(tier, active_carts, available, orders_last_24h),
            social_proof=social_proof(tier, active_carts, orders_last_24h),
        )

    async def demand_pressure(self, item_id: str) -> Result[DemandSnapshot, AppError]:
        """Fetch inventory and order history, then score demand."""
        raw = await self._raw_inventory(item_id)
        if raw.is_err():
            return raw
        since = self.clock.now() - timedelta(hours=self.settings.demand_history_hours)
        orders = await self.store.count_recent_orders(item_id, since)
        return Ok(
            self.calculate_demand_pressure(
                item_id, raw_inventory=raw.value, orders_last_24h=orders
            )
        )

    def stats(self) -> TrackerStats:
        """Get tracker statistics."""
        now = self.clock.now()
        sessions: set[str] = set()
        total = 0
        items = 0
        for holds in self._holds.values():
            active = [r for r in holds.values() if not r.is_expired(now)]
            if active:
                items += 1
            total += len(active)
            sessions.update(r.session_id for r in active)
        return TrackerStats(
            total_reservations=total,
            unique_items=items,
            unique_sessions=len(sessions),
        )

    def start_sweeper(self, interval: float | None = None) -> None:
        """Start the recurring expiry sweep on the running loop."""
        if self._sweeper and not self._sweeper.done():
            return
        interval = interval or self.settings.sweep_interval_seconds
        self._sweeper = asyncio.create_task(self._sweep_loop(interval))
        logger.info("reservation_sweeper_started", interval_seconds=interval)

    async def stop_sweeper(self) -> None:
        """Stop the sweep task (graceful shutdown)."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("reservation_sweeper_stopped")

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_expired()
            except Exception as e:
                logger.error("reservation_sweep_failed", error=str(e))
