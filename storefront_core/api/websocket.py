"""WebSocket push of order status changes."""

import json
from typing import Any
from uuid import UUID

from fastapi import WebSocket, WebSocketDisconnect

from storefront_core.container import ServiceContainer
from storefront_core.models.order import OrderTransition
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Manages WebSocket subscriptions per order."""

    def __init__(self) -> None:
        self.active_connections: dict[str, set[WebSocket]] = {}

    async def connect(self, order_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(order_id, set()).add(websocket)
        logger.info("websocket_connected", order_id=order_id)

    def disconnect(self, order_id: str, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        sockets = self.active_connections.get(order_id)
        if sockets and websocket in sockets:
            sockets.discard(websocket)
            if not sockets:
                del self.active_connections[order_id]
            logger.info("websocket_disconnected", order_id=order_id)

    async def send_message(self, order_id: str, message: dict[str, Any]) -> None:
        """Send a message to every subscriber of an order."""
        for websocket in list(self.active_connections.get(order_id, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning("websocket_send_failed", order_id=order_id, error=str(e))
                self.disconnect(order_id, websocket)

    async def broadcast_transition(self, event: OrderTransition) -> None:
        """Transition listener pushing status changes to subscribers."""
        await self.send_message(
            str(event.order_id),
            {
                "type": "status",
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "from_status": event.from_status.value,
                "to_status": event.to_status.value,
                "trigger": event.trigger,
                "reason": event.reason,
                "occurred_at": event.occurred_at.isoformat(),
            },
        )


# Global connection manager
manager = ConnectionManager()


async def handle_order_updates(
    websocket: WebSocket,
    order_id: UUID,
    container: ServiceContainer,
) -> None:
    """
    Stream status changes of one order to a client.

    Args:
        websocket: WebSocket connection
        order_id: Order to follow
        container: Services for the current app
    """
    order_str = str(order_id)

    loaded = await container.lifecycle.get_order(order_id)
    if loaded.is_err():
        await websocket.close(code=1008, reason="Order not found")
        return

    await manager.connect(order_str, websocket)
    await websocket.send_json(
        {
            "type": "connected",
            "order": loaded.value.model_dump(mode="json"),
        }
    )

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                message = None
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Invalid message format"})
                continue

            if message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            elif message.get("type") == "time_remaining":
                remaining = await container.lifecycle.get_time_remaining(order_id)
                if remaining.is_ok():
                    await websocket.send_json(
                        {"type": "time_remaining", **remaining.value.model_dump(mode="json")}
                    )

    except WebSocketDisconnect:
        manager.disconnect(order_str, websocket)
        logger.info("websocket_client_disconnected", order_id=order_str)

    except Exception as e:
        logger.error(
            "websocket_error",
            order_id=order_str,
            error=str(e),
        )
        manager.disconnect(order_str, websocket)
