"""Order pricing and lifecycle."""

from storefront_core.orders.pricing import build_order, compute_pricing
from storefront_core.orders.state_machine import OrderLifecycle, TransitionListener

__all__ = ["OrderLifecycle", "TransitionListener", "build_order", "compute_pricing"]
