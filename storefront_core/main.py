"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import UUID

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from storefront_core.api.routes import app_error_handler, router
from storefront_core.api.websocket import handle_order_updates, manager
from storefront_core.config import get_settings
from storefront_core.container import ServiceContainer, build_container
from storefront_core.errors import AppError
from storefront_core.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container is None:
        container = await build_container()
        app.state.container = container
    container.lifecycle.add_listener(manager.broadcast_transition)
    container.start()
    logger.info("services_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    container.lifecycle.remove_listener(manager.broadcast_transition)
    await container.stop()


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build the application, optionally around pre-built services."""
    app = FastAPI(
        title="Storefront Order Core",
        description="Cart reservations, order grace periods and order submission",
        version="0.1.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.include_router(router, prefix="/api/v1", tags=["api"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "storefront-core"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Storefront Order Core API",
            "docs": "/docs",
            "health": "/health",
        }

    # WebSocket endpoint
    @app.websocket("/ws/orders/{order_id}")
    async def websocket_endpoint(websocket: WebSocket, order_id: str) -> None:
        """WebSocket endpoint for live order status."""
        try:
            order_uuid = UUID(order_id)
        except ValueError:
            await websocket.close(code=1003, reason="Invalid order ID")
            return
        await handle_order_updates(websocket, order_uuid, websocket.app.state.container)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storefront_core.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
