"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from storefront_core.config import get_settings


# Third-party loggers that would otherwise log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _stdlib_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    return logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(level: str | None = None) -> None:
    """Configure stdlib and structlog output for the service.

    Args:
        level: Overrides the configured log level (e.g. in scripts)
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper())
    json_output = settings.log_format == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_stdlib_formatter(settings.log_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if json_output
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class TransitionLogger:
    """Specialized logger for order lifecycle transitions."""

    def __init__(self, component: str):
        self.component = component
        self.logger = get_logger(component)

    def log_transition(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        trigger: str,
        **kwargs: Any,
    ) -> None:
        """Log a successful state transition."""
        self.logger.info(
            "order_transition",
            component=self.component,
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            trigger=trigger,
            **kwargs,
        )

    def log_rejection(
        self,
        order_id: str,
        action: str,
        code: str,
        status: str,
        **kwargs: Any,
    ) -> None:
        """Log a transition request that was refused."""
        self.logger.warning(
            "order_transition_rejected",
            component=self.component,
            order_id=order_id,
            action=action,
            code=code,
            status=status,
            **kwargs,
        )

    def log_stock_commit(
        self,
        order_id: str,
        item_id: str,
        quantity: int,
        success: bool,
        **kwargs: Any,
    ) -> None:
        """Log a permanent stock decrement or restore."""
        self.logger.info(
            "stock_commit",
            component=self.component,
            order_id=order_id,
            item_id=item_id,
            quantity=quantity,
            success=success,
            **kwargs,
        )

    def log_error(
        self,
        error: str,
        order_id: str,
        **kwargs: Any,
    ) -> None:
        """Log an error."""
        self.logger.error(
            "order_lifecycle_error",
            component=self.component,
            order_id=order_id,
            error=error,
            **kwargs,
        )
