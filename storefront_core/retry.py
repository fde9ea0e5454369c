"""Exponential-backoff retry around Result-returning async operations."""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from storefront_core.errors import (
    AppError,
    AttemptTimeoutError,
    Err,
    RateLimitError,
    Result,
    is_retryable,
)
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How many times to try and how long to wait in between.

    The delay before attempt ``n`` (n >= 2) is ``base_delay * 2 ** (n - 2)``,
    optionally capped by ``max_delay`` and spread by +/-20% jitter.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float | None = None
    jitter: bool = False
    on_retry: Callable[[int], None] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def backoff(self, attempt: int) -> float:
        """Backoff before ``attempt`` ignoring any server-imposed wait."""
        if attempt < 2:
            return 0.0
        delay = self.base_delay * (2 ** (attempt - 2))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay = max(0.0, delay + delay * 0.2 * (random.random() * 2 - 1))
        return delay

    def delay_before(self, attempt: int, previous_error: AppError | None = None) -> float:
        delay = self.backoff(attempt)
        if isinstance(previous_error, RateLimitError):
            delay = max(delay, previous_error.retry_after_seconds)
        return delay


@dataclass
class AttemptContext:
    """Handed to each attempt. Setting ``cancel_event`` abandons that attempt only."""

    attempt: int
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


Operation = Callable[[AttemptContext], Awaitable[Result[T, AppError]]]


async def run_attempt(
    work: Callable[[], Awaitable[Result[T, AppError]]],
    *,
    timeout: float,
    cancel_event: asyncio.Event | None = None,
) -> Result[T, AppError]:
    """Run one attempt under a deadline and a cancellation signal.

    Whichever of deadline or cancellation fires first cancels the in-flight
    work and resolves to ``Err(AttemptTimeoutError)``.
    """
    cancel_event = cancel_event or asyncio.Event()
    start = time.monotonic()
    task = asyncio.ensure_future(work())
    waiter = asyncio.ensure_future(cancel_event.wait())

    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()

    if task in done:
        return task.result()

    try:
        await task
    except asyncio.CancelledError:
        pass

    elapsed_ms = (time.monotonic() - start) * 1000
    if cancel_event.is_set():
        return Err(AttemptTimeoutError("Attempt cancelled", elapsed_ms, cancelled=True))
    return Err(
        AttemptTimeoutError(f"Request timed out after {timeout:g} seconds", elapsed_ms)
    )


async def retry_with_backoff(
    operation: Operation[T],
    policy: RetryPolicy,
    *,
    on_attempt: Callable[[AttemptContext], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Result[T, AppError]:
    """
    Execute ``operation`` until it succeeds, fails permanently, or runs out of attempts.

    Args:
        operation: Coroutine function returning a Result; receives an AttemptContext
        policy: Attempt budget and backoff configuration
        on_attempt: Called with each fresh AttemptContext so the caller can cancel it
        sleep: Awaitable sleep used between attempts

    Returns:
        The first Ok, the first non-retryable Err, or the last Err once the
        budget is exhausted
    """
    last: Result[T, AppError] | None = None

    for attempt in range(1, policy.max_attempts + 1):
        if last is not None:
            delay = policy.delay_before(attempt, last.error)
            if policy.on_retry:
                policy.on_retry(attempt)
            logger.info(
                "retry_scheduled",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 3),
                previous_error=last.error.kind,
            )
            await sleep(delay)

        context = AttemptContext(attempt=attempt)
        if on_attempt:
            on_attempt(context)

        result = await operation(context)

        if result.is_ok():
            if attempt > 1:
                logger.info("retry_succeeded", attempt=attempt)
            return result

        if not is_retryable(result.error):
            logger.debug(
                "retry_not_attempted",
                attempt=attempt,
                error=result.error.kind,
                message=result.error.message,
            )
            return result

        last = result

    logger.warning(
        "retry_exhausted",
        attempts=policy.max_attempts,
        final_error=last.error.kind if last else None,
    )
    return last
