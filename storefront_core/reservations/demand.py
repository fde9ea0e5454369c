"""Demand pressure scoring and urgency tiers."""

import statistics
from collections import deque
from dataclasses import dataclass

from storefront_core.config import Settings
from storefront_core.models.inventory import UrgencyTier


@dataclass(frozen=True)
class DemandConfig:
    """Tunable weights and thresholds for demand pressure."""

    weight_active_carts: float = 30.0
    weight_recent_orders: float = 10.0
    weight_available_stock: float = 2.0
    low_threshold: float = 25.0
    baseline_percentile: int = 75
    baseline_window: int = 200
    baseline_min_samples: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "DemandConfig":
        return cls(
            weight_active_carts=settings.demand_weight_active_carts,
            weight_recent_orders=settings.demand_weight_recent_orders,
            weight_available_stock=settings.demand_weight_available_stock,
            low_threshold=settings.demand_low_threshold,
            baseline_percentile=settings.demand_baseline_percentile,
            baseline_window=settings.demand_baseline_window,
            baseline_min_samples=settings.demand_baseline_min_samples,
        )


class DemandBaseline:
    """Rolling window of recent demand scores."""

    def __init__(self, window: int, percentile: int, min_samples: int):
        self._scores: deque[float] = deque(maxlen=window)
        self.percentile = percentile
        self.min_samples = max(2, min_samples)

    def __len__(self) -> int:
        return len(self._scores)

    def record(self, score: float) -> None:
        self._scores.append(score)

    def threshold(self) -> float | None:
        """Score at the configured percentile, or None until enough samples exist."""
        if len(self._scores) < self.min_samples:
            return None
        cuts = statistics.quantiles(self._scores, n=100, method="inclusive")
        return cuts[self.percentile - 1]


def demand_score(
    config: DemandConfig,
    active_cart_count: int,
    orders_last_24h: int,
    available_stock: int | None,
) -> float:
    """Weighted sum of cart and order pressure minus remaining stock, floored at zero."""
    score = (
        config.weight_active_carts * active_cart_count
        + config.weight_recent_orders * orders_last_24h
        - config.weight_available_stock * (available_stock or 0)
    )
    return round(max(0.0, score), 2)


def urgency_tier(
    config: DemandConfig,
    score: float,
    active_cart_count: int,
    available_stock: int | None,
    baseline_threshold: float | None,
) -> UrgencyTier:
    if available_stock is not None:
        if available_stock == 0:
            return UrgencyTier.CRITICAL
        if available_stock <= active_cart_count:
            return UrgencyTier.HIGH
    if baseline_threshold is not None and score > baseline_threshold:
        return UrgencyTier.HIGH
    if score > 0 and score >= config.low_threshold:
        return UrgencyTier.LOW
    return UrgencyTier.NONE


def urgency_message(
    tier: UrgencyTier,
    active_cart_count: int,
    available_stock: int | None,
    orders_last_24h: int,
) -> str | None:
    if available_stock == 0:
        return "Just sold out! Check back soon or try something similar."
    if tier == UrgencyTier.HIGH and active_cart_count >= 2:
        return f"{active_cart_count} others are eyeing this too. Want to secure yours?"
    if available_stock is not None and available_stock <= 5:
        return f"Only {available_stock} left for today. Grab it before it's gone!"
    if orders_last_24h >= 10:
        return f"Trending: {orders_last_24h} orders in the last 24 hours!"
    return None


def social_proof(
    tier: UrgencyTier,
    active_cart_count: int,
    orders_last_24h: int,
) -> str | None:
    if active_cart_count >= 3:
        return f"{active_cart_count} people have this in cart"
    if orders_last_24h >= 15:
        return f"{orders_last_24h} orders today"
    if orders_last_24h >= 5 and tier != UrgencyTier.NONE:
        return "Popular choice"
    return None
