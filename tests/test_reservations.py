"""Tests for the cart reservation tracker and demand pressure."""

import asyncio

import pytest

from storefront_core.config import Settings
from storefront_core.errors import InsufficientStockError, NotFoundError, RequestValidationError
from storefront_core.models.inventory import UrgencyTier
from storefront_core.orders.pricing import build_order
from storefront_core.reservations.demand import DemandBaseline
from storefront_core.reservations.tracker import ReservationTracker
from storefront_core.stores.memory import InMemoryStore
from storefront_core.utils.clock import ManualClock


@pytest.fixture
def short_ttl_tracker(
    store: InMemoryStore, clock: ManualClock, settings: Settings
) -> ReservationTracker:
    """Tracker whose holds expire after one minute."""
    return ReservationTracker(
        store,
        clock=clock,
        settings=settings.model_copy(update={"reservation_ttl_seconds": 60}),
    )


@pytest.mark.asyncio
async def test_reserve_reduces_available_stock(tracker: ReservationTracker) -> None:
    result = await tracker.reserve("cart-a", "pizza", 3)

    assert result.is_ok()
    assert result.value.quantity == 3
    assert tracker.get_stock_with_reservations("pizza", 10) == 7
    assert tracker.active_cart_count("pizza") == 1


@pytest.mark.asyncio
async def test_concurrent_last_unit_race(
    store: InMemoryStore, tracker: ReservationTracker
) -> None:
    await store.set_inventory("cheesecake", 1)

    results = await asyncio.gather(
        tracker.reserve("cart-a", "cheesecake", 1),
        tracker.reserve("cart-b", "cheesecake", 1),
    )

    assert sum(r.is_ok() for r in results) == 1
    failures = [r for r in results if r.is_err()]
    assert len(failures) == 1
    assert isinstance(failures[0].error, InsufficientStockError)
    assert failures[0].error.available == 0


@pytest.mark.asyncio
async def test_no_oversell_under_concurrent_reserves(
    store: InMemoryStore, tracker: ReservationTracker
) -> None:
    await store.set_inventory("biryani", 5)

    results = await asyncio.gather(
        *(tracker.reserve(f"cart-{i}", "biryani", 1) for i in range(12))
    )

    assert sum(r.is_ok() for r in results) == 5
    assert tracker.reserved_quantity("biryani") == 5
    assert tracker.get_stock_with_reservations("biryani", 5) == 0


@pytest.mark.asyncio
async def test_reserve_extends_existing_hold(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 2)
    result = await tracker.reserve("cart-a", "pizza", 1)

    assert result.value.quantity == 3
    assert tracker.holds_for_session("cart-a") == {"pizza": 3}


@pytest.mark.asyncio
async def test_reserve_more_than_available_is_reported(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "salad", 4)

    result = await tracker.reserve("cart-b", "salad", 2)

    assert isinstance(result.error, InsufficientStockError)
    assert result.error.requested == 2
    assert result.error.available == 1
    assert tracker.holds_for_session("cart-b") == {}


@pytest.mark.asyncio
async def test_untracked_item_never_runs_out(tracker: ReservationTracker) -> None:
    result = await tracker.reserve("cart-a", "soda", 1000)

    assert result.is_ok()
    assert tracker.get_stock_with_reservations("soda", None) is None


@pytest.mark.asyncio
async def test_reserve_unknown_item(tracker: ReservationTracker) -> None:
    result = await tracker.reserve("cart-a", "unicorn", 1)

    assert isinstance(result.error, NotFoundError)


@pytest.mark.asyncio
async def test_item_locks_released_after_use(tracker: ReservationTracker) -> None:
    for i in range(200):
        await tracker.reserve("cart-a", f"unknown-{i}", 1)
    await asyncio.gather(*(tracker.reserve(f"cart-{i}", "salad", 1) for i in range(3)))

    assert tracker._locks == {}
    assert tracker.reserved_quantity("salad") == 3


@pytest.mark.asyncio
async def test_reserve_rejects_non_positive_quantity(tracker: ReservationTracker) -> None:
    result = await tracker.reserve("cart-a", "pizza", 0)

    assert isinstance(result.error, RequestValidationError)
    assert result.error.field == "quantity"


def test_available_stock_never_negative(tracker: ReservationTracker) -> None:
    assert tracker.get_stock_with_reservations("pizza", 0) == 0


@pytest.mark.asyncio
async def test_available_stock_clamped_when_inventory_drops(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 8)

    assert tracker.get_stock_with_reservations("pizza", 3) == 0


@pytest.mark.asyncio
async def test_release_is_idempotent(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 2)

    assert await tracker.release("cart-a", "pizza") is True
    assert await tracker.release("cart-a", "pizza") is False
    assert tracker.reserved_quantity("pizza") == 0


@pytest.mark.asyncio
async def test_release_session_clears_all_holds(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 1)
    await tracker.reserve("cart-a", "fries", 2)
    await tracker.reserve("cart-b", "fries", 1)

    assert await tracker.release_session("cart-a") == 2
    assert tracker.holds_for_session("cart-a") == {}
    assert tracker.holds_for_session("cart-b") == {"fries": 1}


@pytest.mark.asyncio
async def test_adjust_sets_absolute_quantity(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "salad", 2)

    grown = await tracker.adjust("cart-a", "salad", 5)
    too_many = await tracker.adjust("cart-a", "salad", 6)
    shrunk = await tracker.adjust("cart-a", "salad", 1)

    assert grown.value.quantity == 5
    assert isinstance(too_many.error, InsufficientStockError)
    assert shrunk.value.quantity == 1
    assert tracker.reserved_quantity("salad") == 1


@pytest.mark.asyncio
async def test_adjust_to_zero_releases(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "salad", 2)

    result = await tracker.adjust("cart-a", "salad", 0)

    assert result.is_ok() and result.value is None
    assert tracker.holds_for_session("cart-a") == {}


@pytest.mark.asyncio
async def test_expiry_sweep_restores_availability(
    clock: ManualClock, short_ttl_tracker: ReservationTracker
) -> None:
    tracker = short_ttl_tracker
    before = tracker.get_stock_with_reservations("fries", 20)
    await tracker.reserve("cart-a", "fries", 2)
    assert tracker.get_stock_with_reservations("fries", 20) == before - 2

    clock.advance(61)
    removed = tracker.sweep_expired()

    assert removed == 1
    assert tracker.get_stock_with_reservations("fries", 20) == before
    assert tracker.stats().total_reservations == 0


@pytest.mark.asyncio
async def test_renew_keeps_active_cart_alive(
    clock: ManualClock, short_ttl_tracker: ReservationTracker
) -> None:
    tracker = short_ttl_tracker
    await tracker.reserve("cart-a", "pizza", 1)

    clock.advance(50)
    assert (await tracker.renew("cart-a", "pizza")).is_ok()
    clock.advance(50)

    assert tracker.sweep_expired() == 0
    assert tracker.holds_for_session("cart-a") == {"pizza": 1}


@pytest.mark.asyncio
async def test_renew_session_heartbeat(
    clock: ManualClock, short_ttl_tracker: ReservationTracker
) -> None:
    tracker = short_ttl_tracker
    await tracker.reserve("cart-a", "pizza", 1)
    await tracker.reserve("cart-a", "fries", 1)

    clock.advance(30)
    assert await tracker.renew_session("cart-a") == 2
    clock.advance(45)

    assert tracker.holds_for_session("cart-a") == {"pizza": 1, "fries": 1}


@pytest.mark.asyncio
async def test_renew_expired_hold_fails(
    clock: ManualClock, short_ttl_tracker: ReservationTracker
) -> None:
    tracker = short_ttl_tracker
    await tracker.reserve("cart-a", "pizza", 1)
    clock.advance(61)

    result = await tracker.renew("cart-a", "pizza")

    assert isinstance(result.error, NotFoundError)


@pytest.mark.asyncio
async def test_sweeper_task_removes_expired_holds(
    clock: ManualClock, short_ttl_tracker: ReservationTracker
) -> None:
    tracker = short_ttl_tracker
    await tracker.reserve("cart-a", "pizza", 1)
    clock.advance(61)

    tracker.start_sweeper(interval=0.01)
    await asyncio.sleep(0.05)
    await tracker.stop_sweeper()

    assert tracker._holds == {}


@pytest.mark.asyncio
async def test_stats_counts_active_holds(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 1)
    await tracker.reserve("cart-a", "fries", 1)
    await tracker.reserve("cart-b", "pizza", 1)

    stats = tracker.stats()

    assert stats.total_reservations == 3
    assert stats.unique_items == 2
    assert stats.unique_sessions == 2


# Demand pressure


@pytest.mark.asyncio
async def test_demand_score_is_weighted_sum(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "pizza", 1)

    snapshot = tracker.calculate_demand_pressure("pizza", raw_inventory=10, orders_last_24h=3)

    # 30 * 1 cart + 10 * 3 orders - 2 * 9 available
    assert snapshot.demand_score == 42
    assert snapshot.available_stock == 9
    assert snapshot.urgency_tier == UrgencyTier.LOW


def test_quiet_item_has_no_urgency(tracker: ReservationTracker) -> None:
    snapshot = tracker.calculate_demand_pressure("fries", raw_inventory=20, orders_last_24h=0)

    assert snapshot.demand_score == 0
    assert snapshot.urgency_tier == UrgencyTier.NONE
    assert snapshot.urgency_message is None


@pytest.mark.asyncio
async def test_sold_out_item_is_critical(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "salad", 5)

    snapshot = tracker.calculate_demand_pressure("salad", raw_inventory=5, orders_last_24h=0)

    assert snapshot.available_stock == 0
    assert snapshot.urgency_tier == UrgencyTier.CRITICAL
    assert "sold out" in snapshot.urgency_message


@pytest.mark.asyncio
async def test_contested_item_is_high(tracker: ReservationTracker) -> None:
    await tracker.reserve("cart-a", "salad", 2)
    await tracker.reserve("cart-b", "salad", 1)

    snapshot = tracker.calculate_demand_pressure("salad", raw_inventory=5, orders_last_24h=0)

    assert snapshot.available_stock == 2
    assert snapshot.active_cart_count == 2
    assert snapshot.urgency_tier == UrgencyTier.HIGH
    assert snapshot.urgency_message == "2 others are eyeing this too. Want to secure yours?"


def test_untracked_item_is_never_critical(tracker: ReservationTracker) -> None:
    snapshot = tracker.calculate_demand_pressure("soda", raw_inventory=None, orders_last_24h=0)

    assert snapshot.available_stock is None
    assert snapshot.urgency_tier == UrgencyTier.NONE


def test_score_above_baseline_percentile_is_high(tracker: ReservationTracker) -> None:
    for _ in range(20):
        tracker.baseline.record(10.0)

    snapshot = tracker.calculate_demand_pressure("fries", raw_inventory=20, orders_last_24h=5)

    # 10 * 5 orders - 2 * 20 available
    assert snapshot.demand_score == 10
    assert snapshot.urgency_tier == UrgencyTier.NONE

    busy = tracker.calculate_demand_pressure("fries", raw_inventory=20, orders_last_24h=6)

    assert busy.demand_score == 20
    assert busy.urgency_tier == UrgencyTier.HIGH


def test_baseline_needs_minimum_samples() -> None:
    baseline = DemandBaseline(window=50, percentile=75, min_samples=10)
    for score in range(1, 10):
        baseline.record(float(score))
    assert baseline.threshold() is None

    for score in range(10, 21):
        baseline.record(float(score))
    assert 15 < baseline.threshold() < 16


def test_baseline_window_drops_old_scores() -> None:
    baseline = DemandBaseline(window=5, percentile=75, min_samples=2)
    for score in [100, 100, 100, 1, 1, 1, 1, 1]:
        baseline.record(float(score))

    assert len(baseline) == 5
    assert baseline.threshold() == 1


@pytest.mark.asyncio
async def test_demand_pressure_reads_order_history(
    store: InMemoryStore,
    tracker: ReservationTracker,
    clock: ManualClock,
    settings: Settings,
    make_payload,
) -> None:
    for i in range(12):
        order = build_order(
            make_payload(session_id=f"s-{i}", items=[("fries", 1, "3.00")]),
            settings,
            clock.now(),
        )
        await store.create_order(order)

    recent = await tracker.demand_pressure("fries")
    clock.advance(25 * 60 * 60)
    later = await tracker.demand_pressure("fries")

    assert recent.value.orders_last_24h == 12
    assert recent.value.urgency_message == "Trending: 12 orders in the last 24 hours!"
    assert later.value.orders_last_24h == 0


@pytest.mark.asyncio
async def test_demand_pressure_unknown_item(tracker: ReservationTracker) -> None:
    result = await tracker.demand_pressure("unicorn")

    assert isinstance(result.error, NotFoundError)
