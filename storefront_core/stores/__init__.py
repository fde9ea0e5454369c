"""Durable store backends."""

from storefront_core.stores.base import InventoryStore, OrderStore, Store
from storefront_core.stores.memory import InMemoryStore
from storefront_core.stores.redis_store import RedisStore

__all__ = ["InventoryStore", "OrderStore", "Store", "InMemoryStore", "RedisStore"]
