"""Order pricing and construction."""

import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from storefront_core.config import Settings
from storefront_core.models.order import Order, OrderItem, OrderPayload, Pricing

CENT = Decimal("0.01")


def compute_pricing(
    items: list[OrderItem],
    settings: Settings,
    discount: Decimal = Decimal("0.00"),
    tip: Decimal = Decimal("0.00"),
) -> Pricing:
    """
    Price an order from the unit prices frozen on its lines.

    Args:
        items: Order lines; each subtotal is recalculated
        settings: Source of tax rate and delivery fee
        discount: Absolute discount, capped at the subtotal
        tip: Customer tip

    Returns:
        Pricing breakdown rounded to cents
    """
    subtotal = sum((item.calculate_subtotal() for item in items), Decimal("0"))
    discount = min(discount, subtotal)
    tax = ((subtotal - discount) * settings.tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    total = subtotal - discount + tax + settings.delivery_fee + tip

    return Pricing(
        subtotal=subtotal.quantize(CENT),
        tax=tax,
        delivery_fee=settings.delivery_fee.quantize(CENT),
        discount=discount.quantize(CENT),
        tip=tip.quantize(CENT),
        total=total.quantize(CENT),
    )


def generate_order_number() -> str:
    return f"ORD-{uuid.uuid4().hex[:8].upper()}"


def build_order(payload: OrderPayload, settings: Settings, now: datetime) -> Order:
    """Create a new pending order with its windows anchored at ``now``."""
    items = [item.model_copy() for item in payload.items]
    pricing = compute_pricing(items, settings, discount=payload.discount, tip=payload.tip)

    return Order(
        order_number=generate_order_number(),
        session_id=payload.session_id,
        customer=payload.customer,
        items=items,
        pricing=pricing,
        promo_code=payload.promo_code,
        delivery_address=payload.delivery_address,
        special_instructions=payload.special_instructions,
        created_at=now,
        grace_period_expires_at=now + timedelta(seconds=settings.grace_period_seconds),
        cancellation_expires_at=now + timedelta(seconds=settings.cancellation_window_seconds),
        idempotency_key=payload.idempotency_key,
    )


def extended_grace_deadline(order: Order, settings: Settings, now: datetime) -> datetime:
    """Grace deadline after a modification, never beyond the creation-anchored cap."""
    extended = now + timedelta(seconds=settings.grace_period_extension_seconds)
    cap = order.created_at + timedelta(seconds=settings.grace_period_max_seconds)
    return max(order.grace_period_expires_at, min(extended, cap))
