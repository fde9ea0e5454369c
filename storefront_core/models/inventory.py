"""Inventory and cart reservation models."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field


class Reservation(BaseModel):
    """Soft, expiring hold on one item for one cart session."""

    session_id: str
    item_id: str
    quantity: int = Field(ge=1)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if reservation has expired."""
        return now >= self.expires_at

    def renewed(self, now: datetime, ttl: timedelta) -> "Reservation":
        return self.model_copy(update={"expires_at": now + ttl})


class MenuItemStock(BaseModel):
    """Sellable inventory state of one menu item.

    ``raw_inventory`` of ``None`` means stock is not tracked for the item.
    """

    item_id: str
    raw_inventory: int | None = Field(default=None, ge=0)
    reservations: list[Reservation] = Field(default_factory=list)

    @property
    def is_unbounded(self) -> bool:
        return self.raw_inventory is None

    @property
    def reserved_quantity(self) -> int:
        return sum(r.quantity for r in self.reservations)

    @property
    def available_stock(self) -> int | None:
        if self.raw_inventory is None:
            return None
        return max(0, self.raw_inventory - self.reserved_quantity)


class UrgencyTier(str, Enum):
    """Urgency levels shown next to an item."""

    NONE = "none"
    LOW = "low"
    HIGH = "high"
    CRITICAL = "critical"


class DemandSnapshot(BaseModel):
    """Point-in-time demand pressure for one item."""

    item_id: str
    demand_score: float = Field(ge=0)
    active_cart_count: int = Field(ge=0)
    orders_last_24h: int = Field(ge=0)
    available_stock: int | None = Field(default=None, ge=0)
    urgency_tier: UrgencyTier = UrgencyTier.NONE
    urgency_message: str | None = None
    social_proof: str | None = None


class TrackerStats(BaseModel):
    """Aggregate reservation counts for dashboards."""

    total_reservations: int
    unique_items: int
    unique_sessions: int
