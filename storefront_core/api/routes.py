"""API routes for carts, stock and orders."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront_core.container import ServiceContainer
from storefront_core.errors import (
    AppError,
    InsufficientStockError,
    NotFoundError,
    PermanentError,
    RateLimitError,
    RequestValidationError,
)
from storefront_core.models.order import OrderItemChange, OrderPayload, OrderStatus
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class ReserveRequest(BaseModel):
    """Add units of an item to a cart."""

    item_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class AdjustRequest(BaseModel):
    """Set a cart line to an absolute quantity."""

    quantity: int = Field(ge=0)


class ModifyOrderRequest(BaseModel):
    """Replacement item set for a pending order."""

    items: list[OrderItemChange]


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=200)


class AdvanceStatusRequest(BaseModel):
    status: OrderStatus


class InventoryUpdateRequest(BaseModel):
    """Raw inventory for an item; null marks it untracked."""

    quantity: int | None = Field(default=None, ge=0)


# Error mapping


def http_status_for(error: AppError) -> int:
    if isinstance(error, RequestValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (InsufficientStockError, PermanentError)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, RateLimitError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_503_SERVICE_UNAVAILABLE


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a classified failure as a JSON error body."""
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(int(round(exc.retry_after_seconds)))

    logger.info(
        "request_rejected",
        path=request.url.path,
        error=exc.kind,
        code=exc.code,
    )
    return JSONResponse(
        status_code=http_status_for(exc),
        content={
            "success": False,
            "error": {**exc.to_dict(), "user_message": exc.user_message},
        },
        headers=headers,
    )


# Dependency to get the service container


def get_container(request: Request) -> ServiceContainer:
    """Get the service container attached to the app."""
    return request.app.state.container


# Cart endpoints


@router.post("/cart/{session_id}/items", status_code=status.HTTP_201_CREATED)
async def reserve_item(
    session_id: str,
    request: ReserveRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Hold more units of an item for a cart.

    Fails with 409 when fewer units are available than requested.
    """
    reservation = (
        await container.tracker.reserve(session_id, request.item_id, request.quantity)
    ).unwrap()

    return {
        "success": True,
        "reservation": reservation.model_dump(mode="json"),
    }


@router.put("/cart/{session_id}/items/{item_id}")
async def adjust_item(
    session_id: str,
    item_id: str,
    request: AdjustRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Change a cart line's quantity."""
    reservation = (
        await container.tracker.adjust(session_id, item_id, request.quantity)
    ).unwrap()

    return {
        "success": True,
        "reservation": reservation.model_dump(mode="json") if reservation else None,
    }


@router.delete("/cart/{session_id}/items/{item_id}")
async def release_item(
    session_id: str,
    item_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Remove a cart line. Releasing an absent line is not an error."""
    released = await container.tracker.release(session_id, item_id)
    return {"success": True, "released": released}


@router.delete("/cart/{session_id}")
async def release_cart(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Clear a cart."""
    released = await container.tracker.release_session(session_id)
    return {"success": True, "released": released}


@router.post("/cart/{session_id}/heartbeat")
async def cart_heartbeat(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Keep an actively shopped cart's holds alive."""
    renewed = await container.tracker.renew_session(session_id)
    return {
        "success": True,
        "renewed": renewed,
        "holds": container.tracker.holds_for_session(session_id),
    }


# Item endpoints


@router.get("/items/{item_id}/stock")
async def get_item_stock(
    item_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Point-in-time availability for an item."""
    raw = await container.store.get_raw_inventory(item_id)
    return {
        "item_id": item_id,
        "raw_inventory": raw,
        "reserved": container.tracker.reserved_quantity(item_id),
        "available_stock": container.tracker.get_stock_with_reservations(item_id, raw),
    }


@router.get("/items/{item_id}/demand")
async def get_item_demand(
    item_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Demand pressure and urgency display for an item."""
    snapshot = (await container.tracker.demand_pressure(item_id)).unwrap()
    return snapshot.model_dump(mode="json")


# Order endpoints


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderPayload,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Create a pending order.

    Repeating a request with the same Idempotency-Key returns the order
    created by the first request.
    """
    if idempotency_key:
        payload = payload.model_copy(update={"idempotency_key": idempotency_key})

    order = (await container.lifecycle.create_order(payload)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: UUID,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Get order details."""
    order = (await container.lifecycle.get_order(order_id)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.put("/orders/{order_id}/items")
async def modify_order(
    order_id: UUID,
    request: ModifyOrderRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Replace the items of an order still inside its grace period."""
    order = (await container.lifecycle.modify_items(order_id, request.items)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.post("/orders/{order_id}/finalize")
async def finalize_order(
    order_id: UUID,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Confirm an order now instead of waiting for the grace period."""
    order = (await container.lifecycle.finalize_order(order_id)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: UUID,
    request: CancelOrderRequest = CancelOrderRequest(),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Cancel an order within its cancellation window."""
    order = (await container.lifecycle.cancel_order(order_id, request.reason)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.get("/orders/{order_id}/time-remaining")
async def get_time_remaining(
    order_id: UUID,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Seconds left to modify and to cancel."""
    remaining = (await container.lifecycle.get_time_remaining(order_id)).unwrap()
    return remaining.model_dump(mode="json")


# Kitchen and admin endpoints


@router.post("/orders/{order_id}/status")
async def advance_order_status(
    order_id: UUID,
    request: AdvanceStatusRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Move an order to the next kitchen status."""
    order = (await container.lifecycle.advance_status(order_id, request.status)).unwrap()
    return {"success": True, "order": order.model_dump(mode="json")}


@router.put("/admin/inventory/{item_id}")
async def update_inventory(
    item_id: str,
    request: InventoryUpdateRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Manually set an item's raw inventory."""
    await container.store.set_inventory(item_id, request.quantity)
    logger.info("inventory_updated", item_id=item_id, quantity=request.quantity)
    return {"success": True, "item_id": item_id, "raw_inventory": request.quantity}


@router.get("/admin/reservations/stats")
async def get_reservation_stats(
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Aggregate reservation counts."""
    return container.tracker.stats().model_dump()
