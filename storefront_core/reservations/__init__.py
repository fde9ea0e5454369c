"""Cart reservation tracking."""

from storefront_core.reservations.demand import DemandBaseline, DemandConfig
from storefront_core.reservations.tracker import ReservationTracker

__all__ = ["DemandBaseline", "DemandConfig", "ReservationTracker"]
