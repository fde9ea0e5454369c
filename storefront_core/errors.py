"""Typed failure kinds and the Result type shared by every component.

A Result is either ``Ok(value)`` or ``Err(error)``. Callers branch on the
variant, either with ``is_ok()`` / ``is_err()`` or with structural pattern
matching::

    match await client.submit_order(payload):
        case Ok(order):
            ...
        case Err(RateLimitError() as error):
            ...
        case Err(error):
            ...

``AppError`` is a closed family. New failure modes get a new subclass here,
never an ad hoc string.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")
F = TypeVar("F")


class AppError(Exception):
    """Base class for every classified failure."""

    code: str = "app_error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def user_message(self) -> str:
        """Message suitable for an end user."""
        if self.retryable:
            return "Something went wrong while placing your order. Please try again."
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{self.kind}({self.message!r})"


class RequestValidationError(AppError):
    """Request rejected because of bad input. Never retried."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class NotFoundError(AppError):
    """Referenced resource does not exist."""

    code = "not_found"

    def __init__(self, message: str, resource: str | None = None):
        super().__init__(message)
        self.resource = resource


class InsufficientStockError(AppError):
    """Requested quantity exceeds what is currently available."""

    code = "insufficient_stock"

    def __init__(self, item_id: str, requested: int, available: int):
        super().__init__(
            f"Only {available} of {item_id} available, {requested} requested"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available

    @property
    def user_message(self) -> str:
        if self.available == 0:
            return "This item just sold out."
        return f"Only {self.available} left. Please adjust your quantity."

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "item_id": self.item_id,
            "requested": self.requested,
            "available": self.available,
        }


class RateLimitError(AppError):
    """Caller must wait at least ``retry_after_seconds`` before trying again."""

    code = "rate_limited"
    retryable = True

    def __init__(self, message: str, retry_after_seconds: float = 0.0):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    @property
    def user_message(self) -> str:
        wait = int(round(self.retry_after_seconds)) or 1
        return f"Too many requests. Please wait {wait} seconds and try again."

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retry_after_seconds": self.retry_after_seconds}


class AttemptTimeoutError(AppError):
    """An attempt missed its deadline or was cancelled by the caller."""

    code = "timeout"
    retryable = True

    def __init__(self, message: str, elapsed_ms: float, cancelled: bool = False):
        super().__init__(message)
        self.elapsed_ms = elapsed_ms
        self.cancelled = cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "elapsed_ms": self.elapsed_ms,
            "cancelled": self.cancelled,
        }


class NetworkError(AppError):
    """Transport-level failure such as a refused or reset connection."""

    code = "network_error"
    retryable = True

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ServerError(AppError):
    """The remote service itself failed."""

    code = "server_error"
    retryable = True

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "status_code": self.status_code}


class RetriableError(AppError):
    """Business condition that is explicitly worth retrying."""

    code = "retriable"
    retryable = True

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.reason = reason or message


class PermanentError(AppError):
    """Rejection that will never succeed on retry.

    ``code`` names the rule that was violated, e.g. ``preparation_started``.
    """

    retryable = False

    def __init__(self, message: str, code: str = "permanent_error"):
        super().__init__(message)
        self.code = code
        self.reason = message


def is_retryable(error: AppError) -> bool:
    """Whether the retry scheduler may attempt again after this error."""
    return error.retryable


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Success variant."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[Any], F]) -> "Ok[T]":
        return self

    def and_then(self, fn: Callable[[T], "Result[U, F]"]) -> "Result[U, F]":
        return fn(self.value)

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failure variant."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def map(self, fn: Callable[[Any], U]) -> "Err[E]":
        return self

    def map_err(self, fn: Callable[[E], F]) -> "Err[F]":
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[Any], "Result[U, F]"]) -> "Err[E]":
        return self

    def unwrap(self) -> Any:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap() on Err: {self.error!r}")

    def unwrap_or(self, default: U) -> U:
        return default


Result = Union[Ok[T], Err[E]]
