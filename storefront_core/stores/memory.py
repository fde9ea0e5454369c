"""In-process store for development and tests."""

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from storefront_core.errors import NotFoundError
from storefront_core.models.order import STATUS_TIMESTAMPS, Order, OrderStatus
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryStore:
    """Dictionary-backed store.

    Every operation runs without awaiting between its read and its write, so
    each one is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._inventory: dict[str, int | None] = {}
        self._orders: dict[UUID, Order] = {}
        self._idempotency: dict[str, UUID] = {}
        self._order_history: dict[str, list[datetime]] = defaultdict(list)

    # Inventory

    async def set_inventory(self, item_id: str, quantity: int | None) -> None:
        if quantity is not None and quantity < 0:
            raise ValueError("Inventory cannot be negative")
        self._inventory[item_id] = quantity

    async def get_raw_inventory(self, item_id: str) -> int | None:
        if item_id not in self._inventory:
            raise NotFoundError(f"Menu item {item_id} not found", resource="menu_item")
        return self._inventory[item_id]

    async def atomic_decrement_if_available(self, item_id: str, quantity: int) -> bool:
        current = await self.get_raw_inventory(item_id)
        if current is None:
            return True
        if current < quantity:
            return False
        self._inventory[item_id] = current - quantity
        return True

    async def atomic_increment(self, item_id: str, quantity: int) -> None:
        current = await self.get_raw_inventory(item_id)
        if current is not None:
            self._inventory[item_id] = current + quantity

    async def count_recent_orders(self, item_id: str, since: datetime) -> int:
        return sum(1 for ts in self._order_history.get(item_id, []) if ts >= since)

    # Orders

    async def create_order(self, order: Order) -> Order:
        key = order.idempotency_key
        if key and key in self._idempotency:
            existing = self._orders[self._idempotency[key]]
            logger.info("order_create_replayed", order_id=str(existing.id), idempotency_key=key)
            return existing.model_copy(deep=True)

        self._orders[order.id] = order.model_copy(deep=True)
        if key:
            self._idempotency[key] = order.id
        for item in order.items:
            self._order_history[item.item_id].append(order.created_at)
        return order.model_copy(deep=True)

    async def get_order(self, order_id: UUID) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def save_order(self, order: Order) -> None:
        self._orders[order.id] = order.model_copy(deep=True)

    async def update_order_status(
        self, order_id: UUID, status: OrderStatus, at: datetime
    ) -> None:
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", resource="order")
        order.status = status
        if status in STATUS_TIMESTAMPS:
            setattr(order, STATUS_TIMESTAMPS[status], at)

    async def pending_order_ids(self) -> set[UUID]:
        return {
            order_id
            for order_id, order in self._orders.items()
            if order.status == OrderStatus.PENDING_CONFIRMATION
        }
