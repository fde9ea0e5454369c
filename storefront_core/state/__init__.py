"""State management modules."""

from storefront_core.state.manager import StateManager

__all__ = ["StateManager"]
