"""Utility modules."""

from storefront_core.utils.clock import Clock, ManualClock, SystemClock
from storefront_core.utils.logging import setup_logging

__all__ = ["setup_logging", "Clock", "ManualClock", "SystemClock"]
