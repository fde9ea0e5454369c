"""Order-related data models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from storefront_core.models.customer import CustomerContact


class OrderStatus(str, Enum):
    """Order status progression."""

    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# Kitchen-driven forward sequence after confirmation
KITCHEN_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

# Timestamp attribute recorded when an order enters each status
STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class OrderItem(BaseModel):
    """Line item with the unit price frozen at submission time."""

    item_id: str = Field(min_length=1)
    name: str = ""
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    special_instructions: str | None = None
    subtotal: Decimal = Field(default=Decimal("0.00"), ge=0)

    def calculate_subtotal(self) -> Decimal:
        """Calculate subtotal for this item."""
        self.subtotal = self.unit_price * Decimal(self.quantity)
        return self.subtotal


class Pricing(BaseModel):
    """Order money breakdown. Frozen once the order leaves the grace period."""

    subtotal: Decimal = Field(default=Decimal("0.00"), ge=0)
    tax: Decimal = Field(default=Decimal("0.00"), ge=0)
    delivery_fee: Decimal = Field(default=Decimal("0.00"), ge=0)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    tip: Decimal = Field(default=Decimal("0.00"), ge=0)
    total: Decimal = Field(default=Decimal("0.00"), ge=0)


class OrderPayload(BaseModel):
    """Checkout request validated locally before any network call."""

    session_id: str = Field(min_length=1)
    customer: CustomerContact
    items: list[OrderItem] = Field(min_length=1)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    tip: Decimal = Field(default=Decimal("0.00"), ge=0)
    promo_code: str | None = None
    delivery_address: str | None = None
    special_instructions: str | None = Field(default=None, max_length=500)
    idempotency_key: str | None = None

    @model_validator(mode="after")
    def check_items(self) -> "OrderPayload":
        if not self.customer.has_channel:
            raise ValueError("Customer email or phone is required")
        seen: set[str] = set()
        for item in self.items:
            if item.item_id in seen:
                raise ValueError(f"Duplicate item {item.item_id} in order")
            seen.add(item.item_id)
        subtotal = sum((i.unit_price * i.quantity for i in self.items), Decimal("0"))
        if self.discount > subtotal:
            raise ValueError("Discount cannot exceed the order subtotal")
        return self

    def quantities(self) -> dict[str, int]:
        return {item.item_id: item.quantity for item in self.items}


class Order(BaseModel):
    """Complete order details."""

    id: UUID = Field(default_factory=uuid4)
    order_number: str | None = None
    session_id: str
    customer: CustomerContact
    status: OrderStatus = OrderStatus.PENDING_CONFIRMATION

    # Items
    items: list[OrderItem] = Field(default_factory=list)

    # Pricing
    pricing: Pricing = Field(default_factory=Pricing)
    promo_code: str | None = None

    # Delivery details
    delivery_address: str | None = None
    special_instructions: str | None = None

    # Timing
    created_at: datetime
    grace_period_expires_at: datetime
    cancellation_expires_at: datetime
    confirmed_at: datetime | None = None
    preparing_at: datetime | None = None
    ready_at: datetime | None = None
    out_for_delivery_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None

    # Modification and cancellation bookkeeping
    modification_count: int = 0
    last_modified_at: datetime | None = None
    cancellation_reason: str | None = None

    # Inventory bookkeeping
    stock_committed: bool = False
    idempotency_key: str | None = None

    @property
    def is_modifiable(self) -> bool:
        return self.status == OrderStatus.PENDING_CONFIRMATION

    def quantities(self) -> dict[str, int]:
        return {item.item_id: item.quantity for item in self.items}


class OrderTransition(BaseModel):
    """Event describing one accepted status change."""

    order_id: UUID
    order_number: str | None = None
    from_status: OrderStatus
    to_status: OrderStatus
    trigger: str
    occurred_at: datetime
    customer: CustomerContact | None = None
    reason: str | None = None


class TimeRemaining(BaseModel):
    """Derived view of the order's remaining windows."""

    order_id: UUID
    status: OrderStatus
    grace_period_seconds: float = Field(ge=0)
    cancellation_seconds: float = Field(ge=0)
    can_modify: bool
    can_cancel: bool


class OrderItemChange(BaseModel):
    """Requested line during a grace-period modification.

    ``unit_price`` may be omitted for items already on the order; their
    frozen price is kept. Quantity 0 removes the line.
    """

    item_id: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    name: str | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    special_instructions: str | None = None
