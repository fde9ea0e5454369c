"""Data models for the storefront order core."""

from storefront_core.models.customer import CustomerContact
from storefront_core.models.inventory import (
    DemandSnapshot,
    MenuItemStock,
    Reservation,
    TrackerStats,
    UrgencyTier,
)
from storefront_core.models.order import (
    Order,
    OrderItem,
    OrderItemChange,
    OrderPayload,
    OrderStatus,
    OrderTransition,
    Pricing,
    TimeRemaining,
)

__all__ = [
    # Customer
    "CustomerContact",
    # Inventory
    "DemandSnapshot",
    "MenuItemStock",
    "Reservation",
    "TrackerStats",
    "UrgencyTier",
    # Order
    "Order",
    "OrderItem",
    "OrderItemChange",
    "OrderPayload",
    "OrderStatus",
    "OrderTransition",
    "Pricing",
    "TimeRemaining",
]
