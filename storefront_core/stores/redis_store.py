"""Redis-backed durable store."""

from datetime import datetime
from uuid import UUID

from storefront_core.errors import NotFoundError
from storefront_core.models.order import STATUS_TIMESTAMPS, Order, OrderStatus
from storefront_core.state.manager import (
    INSUFFICIENT,
    MISSING,
    NOT_NUMERIC,
    StateManager,
)
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)

UNBOUNDED_MARKER = "unbounded"
IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60


class RedisStore:
    """Inventory counters, order documents and order history in Redis."""

    def __init__(self, state: StateManager, prefix: str = "storefront"):
        self.state = state
        self.prefix = prefix

    def _inventory_key(self, item_id: str) -> str:
        return f"{self.prefix}:inventory:{item_id}"

    def _order_key(self, order_id: UUID) -> str:
        return f"{self.prefix}:order:{order_id}"

    def _idempotency_key(self, key: str) -> str:
        return f"{self.prefix}:idempotency:{key}"

    def _history_key(self, item_id: str) -> str:
        return f"{self.prefix}:history:{item_id}"

    @property
    def _pending_key(self) -> str:
        return f"{self.prefix}:orders:pending"

    # Inventory

    async def set_inventory(self, item_id: str, quantity: int | None) -> None:
        if quantity is not None and quantity < 0:
            raise ValueError("Inventory cannot be negative")
        value = UNBOUNDED_MARKER if quantity is None else quantity
        await self.state.set(self._inventory_key(item_id), value)

    async def get_raw_inventory(self, item_id: str) -> int | None:
        value = await self.state.get(self._inventory_key(item_id))
        if value is None:
            raise NotFoundError(f"Menu item {item_id} not found", resource="menu_item")
        if value == UNBOUNDED_MARKER:
            return None
        return max(0, int(value))

    async def atomic_decrement_if_available(self, item_id: str, quantity: int) -> bool:
        """Decrement unless that would go below zero, in a single Redis script call."""
        key = self._inventory_key(item_id)
        remaining = await self.state.decrement_if_available(key, quantity)
        if remaining == MISSING:
            raise NotFoundError(f"Menu item {item_id} not found", resource="menu_item")
        if remaining == NOT_NUMERIC:
            # Unbounded items carry the marker instead of a counter
            return True
        if remaining == INSUFFICIENT:
            logger.info("stock_decrement_refused", item_id=item_id, quantity=quantity)
            return False
        return True

    async def atomic_increment(self, item_id: str, quantity: int) -> None:
        if await self.get_raw_inventory(item_id) is None:
            return
        await self.state.increment(self._inventory_key(item_id), quantity)

    async def count_recent_orders(self, item_id: str, since: datetime) -> int:
        return await self.state.zcount(self._history_key(item_id), since.timestamp(), "+inf")

    # Orders

    async def create_order(self, order: Order) -> Order:
        if order.idempotency_key:
            claimed = await self.state.set_if_absent(
                self._idempotency_key(order.idempotency_key),
                str(order.id),
                ttl=IDEMPOTENCY_TTL_SECONDS,
            )
            if not claimed:
                existing_id = await self.state.get(self._idempotency_key(order.idempotency_key))
                existing = await self.get_order(UUID(str(existing_id)))
                if existing is not None:
                    logger.info(
                        "order_create_replayed",
                        order_id=str(existing.id),
                        idempotency_key=order.idempotency_key,
                    )
                    return existing

        await self.save_order(order)
        for item in order.items:
            await self.state.zadd(
                self._history_key(item.item_id),
                {str(order.id): order.created_at.timestamp()},
            )
        return order

    async def get_order(self, order_id: UUID) -> Order | None:
        data = await self.state.get(self._order_key(order_id))
        if not data:
            return None
        return Order.model_validate(data)

    async def save_order(self, order: Order) -> None:
        await self.state.set(self._order_key(order.id), order.model_dump(mode="json"))
        if order.status == OrderStatus.PENDING_CONFIRMATION:
            await self.state.sadd(self._pending_key, str(order.id))
        else:
            await self.state.srem(self._pending_key, str(order.id))

    async def update_order_status(
        self, order_id: UUID, status: OrderStatus, at: datetime
    ) -> None:
        order = await self.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", resource="order")
        order.status = status
        if status in STATUS_TIMESTAMPS:
            setattr(order, STATUS_TIMESTAMPS[status], at)
        await self.save_order(order)

    async def pending_order_ids(self) -> set[UUID]:
        return {UUID(member) for member in await self.state.smembers(self._pending_key)}
