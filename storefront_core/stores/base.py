"""Durable store contracts consumed by the reservation and order components."""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from storefront_core.models.order import Order, OrderStatus


class InventoryStore(Protocol):
    """Authoritative menu-item stock.

    Raw inventory of ``None`` means the item is not stock-tracked. Unknown
    items raise ``NotFoundError``.
    """

    async def get_raw_inventory(self, item_id: str) -> int | None: ...

    async def atomic_decrement_if_available(self, item_id: str, quantity: int) -> bool: ...

    async def atomic_increment(self, item_id: str, quantity: int) -> None: ...

    async def set_inventory(self, item_id: str, quantity: int | None) -> None: ...

    async def count_recent_orders(self, item_id: str, since: datetime) -> int: ...


class OrderStore(Protocol):
    """Order persistence with idempotent creation."""

    async def create_order(self, order: Order) -> Order:
        """Persist ``order`` unless its idempotency key was seen; return the stored order."""
        ...

    async def get_order(self, order_id: UUID) -> Order | None: ...

    async def save_order(self, order: Order) -> None: ...

    async def update_order_status(
        self, order_id: UUID, status: OrderStatus, at: datetime
    ) -> None: ...

    async def pending_order_ids(self) -> set[UUID]: ...


class Store(InventoryStore, OrderStore, Protocol):
    """Combined store used by the service container."""
