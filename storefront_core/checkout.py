"""Checkout: hold the cart, submit the order, hand it to the lifecycle."""

import asyncio

from storefront_core.errors import AppError, Result
from storefront_core.models.order import Order, OrderPayload
from storefront_core.orders.state_machine import OrderLifecycle
from storefront_core.reservations.tracker import ReservationTracker
from storefront_core.submission.client import OrderSubmissionClient
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutService:
    """Composes the reservation tracker, submission client and order lifecycle."""

    def __init__(
        self,
        tracker: ReservationTracker,
        client: OrderSubmissionClient,
        lifecycle: OrderLifecycle,
    ):
        self.tracker = tracker
        self.client = client
        self.lifecycle = lifecycle

    async def checkout(self, payload: OrderPayload) -> Result[Order, AppError]:
        """
        Place an order for a cart.

        The session's holds are brought in line with the payload first; a
        shortfall is reported rather than submitting a partial order. If the
        caller abandons checkout mid-flight, every hold of the session is
        released.
        """
        session_id = payload.session_id
        try:
            for item in payload.items:
                held = await self.tracker.adjust(session_id, item.item_id, item.quantity)
                if held.is_err():
                    logger.info(
                        "checkout_hold_failed",
                        session_id=session_id,
                        item_id=item.item_id,
                        error=held.error.code,
                    )
                    return held

            result = await self.client.submit_order(payload)
        except asyncio.CancelledError:
            await self.abandon(session_id)
            raise

        if result.is_ok():
            await self.lifecycle.register(result.value)
            logger.info(
                "checkout_completed",
                session_id=session_id,
                order_id=str(result.value.id),
            )
        return result

    async def abandon(self, session_id: str) -> int:
        """Release every hold of an abandoned checkout."""
        released = await self.tracker.release_session(session_id)
        logger.info("checkout_abandoned", session_id=session_id, released=released)
        return released
