"""Order submission client with classified, retried HTTP calls."""

import asyncio
import time
from typing import Any, Awaitable, Callable
from uuid import uuid4

import httpx
from pydantic import ValidationError

from storefront_core.config import Settings, get_settings
from storefront_core.errors import (
    AppError,
    AttemptTimeoutError,
    Err,
    NetworkError,
    Ok,
    RateLimitError,
    RequestValidationError,
    Result,
    RetriableError,
    ServerError,
)
from storefront_core.models.order import Order, OrderPayload
from storefront_core.retry import AttemptContext, RetryPolicy, retry_with_backoff, run_attempt
from storefront_core.utils.logging import get_logger
from storefront_core.utils.tracing import SubmissionTracer

logger = get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


def validate_payload(payload: OrderPayload | dict[str, Any]) -> Result[OrderPayload, AppError]:
    """Local shape check. Never touches the network."""
    if isinstance(payload, OrderPayload):
        payload = payload.model_dump()
    try:
        return Ok(OrderPayload.model_validate(payload))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        return Err(RequestValidationError(first.get("msg", "Invalid order"), field=field))


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _retry_after(response: httpx.Response, body: dict[str, Any]) -> float:
    header = response.headers.get("Retry-After")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    value = body.get("retryAfter", error.get("retry_after_seconds", 0))
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return 0.0


def classify_response(response: httpx.Response) -> Result[Order, AppError]:
    """Map an HTTP response from the order service to a Result."""
    status = response.status_code
    body = _json_body(response)
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    message = error.get("message") or body.get("message")

    if status == 429:
        return Err(
            RateLimitError(
                message or "Too many requests",
                retry_after_seconds=_retry_after(response, body),
            )
        )
    if 400 <= status < 500:
        return Err(
            RequestValidationError(
                message or f"Order rejected with status {status}",
                field=error.get("field"),
            )
        )
    if status >= 500:
        return Err(
            RetriableError(message or f"Order service returned {status}", reason=f"http_{status}")
        )

    if body.get("success") is False:
        return Err(RequestValidationError(message or "Order rejected", field=error.get("field")))
    try:
        return Ok(Order.model_validate(body["order"]))
    except (KeyError, TypeError, ValidationError):
        return Err(ServerError("Malformed order response", status_code=status))


class OrderSubmissionClient:
    """
    Submits orders to the order service.

    Each submission carries one idempotency key across all of its attempts,
    so a retried creation never produces a second order.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int], None] | None = None,
    ):
        self.settings = settings or get_settings()
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(base_url=self.settings.order_service_url)
        self.sleep = sleep
        self.attempt_timeout = self.settings.submit_attempt_timeout_seconds
        self.policy = RetryPolicy(
            max_attempts=self.settings.submit_max_attempts,
            base_delay=self.settings.submit_base_delay_seconds,
            max_delay=self.settings.submit_max_delay_seconds,
            jitter=self.settings.submit_jitter,
            on_retry=on_retry,
        )

    async def submit_order(
        self,
        payload: OrderPayload | dict[str, Any],
        on_attempt: Callable[[AttemptContext], None] | None = None,
    ) -> Result[Order, AppError]:
        """
        Validate and submit an order.

        Args:
            payload: Order request
            on_attempt: Receives each attempt's context so the caller can cancel it

        Returns:
            Ok with the created pending order, or the most recent Err
        """
        validated = validate_payload(payload)
        if validated.is_err():
            logger.info(
                "order_submission_invalid",
                field=validated.error.field,
                message=validated.error.message,
            )
            return validated

        order_payload = validated.value
        key = order_payload.idempotency_key or str(uuid4())
        body = order_payload.model_copy(update={"idempotency_key": key}).model_dump(mode="json")
        tracer = SubmissionTracer(key)

        async def attempt(context: AttemptContext) -> Result[Order, AppError]:
            with tracer.trace_attempt(context.attempt) as slot:
                result = await run_attempt(
                    lambda: self._post(body, key),
                    timeout=self.attempt_timeout,
                    cancel_event=context.cancel_event,
                )
                slot.outcome = "ok" if result.is_ok() else result.error.code
                return result

        result = await retry_with_backoff(
            attempt,
            self.policy,
            on_attempt=on_attempt,
            sleep=self.sleep,
        )

        summary = tracer.get_trace_summary()
        if result.is_ok():
            logger.info(
                "order_submitted",
                order_id=str(result.value.id),
                order_number=result.value.order_number,
                attempts=summary["attempts"],
            )
        else:
            logger.warning(
                "order_submission_failed",
                idempotency_key=key,
                error=result.error.kind,
                attempts=summary["attempts"],
                outcomes=summary["outcomes"],
            )
        return result

    async def _post(self, body: dict[str, Any], key: str) -> Result[Order, AppError]:
        start = time.monotonic()
        try:
            response = await self.http.post(
                "/orders",
                json=body,
                headers={IDEMPOTENCY_HEADER: key},
            )
        except httpx.TimeoutException as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            return Err(AttemptTimeoutError(f"Request timed out: {e}", elapsed_ms))
        except httpx.TransportError as e:
            return Err(NetworkError(f"Could not reach order service: {e}", cause=e))
        return classify_response(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()
