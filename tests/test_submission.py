"""Tests for the order submission client."""

import asyncio
import json

import httpx
import pytest

from storefront_core.config import Settings
from storefront_core.errors import (
    AttemptTimeoutError,
    NetworkError,
    RateLimitError,
    RequestValidationError,
    RetriableError,
    ServerError,
)
from storefront_core.orders.pricing import build_order
from storefront_core.submission.client import (
    IDEMPOTENCY_HEADER,
    OrderSubmissionClient,
    classify_response,
    validate_payload,
)
from storefront_core.utils.clock import ManualClock

BASE_URL = "http://orders.test/api/v1"


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class OrderService:
    """Scripted order endpoint recording every request it receives."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def keys(self) -> list[str]:
        return [r.headers[IDEMPOTENCY_HEADER] for r in self.requests]


@pytest.fixture
def created(make_payload, settings: Settings, clock: ManualClock) -> httpx.Response:
    order = build_order(make_payload(), settings, clock.now())
    return httpx.Response(201, json={"success": True, "order": order.model_dump(mode="json")})


def make_client(handler, settings: Settings, sleep: FakeSleep, **kwargs) -> OrderSubmissionClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return OrderSubmissionClient(http, settings=settings, sleep=sleep, **kwargs)


@pytest.mark.asyncio
async def test_submit_success(make_payload, settings: Settings, created) -> None:
    service = OrderService(created)
    client = make_client(service, settings, FakeSleep())

    result = await client.submit_order(make_payload())

    assert result.is_ok()
    assert result.value.order_number.startswith("ORD-")
    assert len(service.requests) == 1
    request = service.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/orders"
    body = json.loads(request.content)
    assert body["idempotency_key"] == service.keys[0]
    assert body["items"][0]["item_id"] == "pizza"


@pytest.mark.asyncio
async def test_transient_failures_retry_with_same_key(
    make_payload, settings: Settings, created
) -> None:
    service = OrderService(
        httpx.Response(503, json={"message": "busy"}),
        httpx.Response(503, json={"message": "busy"}),
        created,
    )
    sleep = FakeSleep()
    client = make_client(service, settings, sleep)

    result = await client.submit_order(make_payload())

    assert result.is_ok()
    assert len(service.requests) == 3
    assert len(set(service.keys)) == 1
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_caller_supplied_key_is_sent(make_payload, settings: Settings, created) -> None:
    service = OrderService(created)
    client = make_client(service, settings, FakeSleep())

    await client.submit_order(make_payload(idempotency_key="checkout-42"))

    assert service.keys == ["checkout-42"]


@pytest.mark.asyncio
async def test_persistent_server_error_exhausts_attempts(make_payload, settings: Settings) -> None:
    service = OrderService(httpx.Response(500, json={"message": "boom"}))
    retries: list[int] = []
    client = make_client(service, settings, FakeSleep(), on_retry=retries.append)

    result = await client.submit_order(make_payload())

    assert len(service.requests) == 3
    assert isinstance(result.error, RetriableError)
    assert result.error.reason == "http_500"
    assert retries == [2, 3]


@pytest.mark.asyncio
async def test_validation_rejection_is_not_retried(make_payload, settings: Settings) -> None:
    service = OrderService(
        httpx.Response(
            400,
            json={"success": False, "error": {"message": "Unknown item", "field": "items"}},
        )
    )
    sleep = FakeSleep()
    client = make_client(service, settings, sleep)

    result = await client.submit_order(make_payload())

    assert len(service.requests) == 1
    assert sleep.delays == []
    assert isinstance(result.error, RequestValidationError)
    assert result.error.field == "items"
    assert result.error.message == "Unknown item"


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after(make_payload, settings: Settings, created) -> None:
    service = OrderService(
        httpx.Response(429, headers={"Retry-After": "3"}, json={"message": "slow down"}),
        created,
    )
    sleep = FakeSleep()
    client = make_client(service, settings, sleep)

    result = await client.submit_order(make_payload())

    assert result.is_ok()
    assert sleep.delays == [3.0]


@pytest.mark.asyncio
async def test_transport_timeout_becomes_timeout_error(make_payload, settings: Settings) -> None:
    service = OrderService(httpx.ReadTimeout("read timed out"))
    client = make_client(service, settings, FakeSleep())

    result = await client.submit_order(make_payload())

    assert len(service.requests) == 3
    assert isinstance(result.error, AttemptTimeoutError)
    assert result.error.cancelled is False


@pytest.mark.asyncio
async def test_connection_failure_becomes_network_error(make_payload, settings: Settings) -> None:
    service = OrderService(httpx.ConnectError("connection refused"))
    client = make_client(service, settings, FakeSleep())

    result = await client.submit_order(make_payload())

    assert isinstance(result.error, NetworkError)
    assert isinstance(result.error.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_invalid_payload_never_reaches_network(make_payload, settings: Settings) -> None:
    service = OrderService(httpx.Response(201))
    client = make_client(service, settings, FakeSleep())
    payload = make_payload().model_dump(mode="json")
    payload["items"] = []

    result = await client.submit_order(payload)

    assert service.requests == []
    assert isinstance(result.error, RequestValidationError)
    assert result.error.field == "items"


@pytest.mark.asyncio
async def test_slow_attempt_hits_deadline(make_payload, settings: Settings) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(201)

    quick = settings.model_copy(
        update={"submit_attempt_timeout_seconds": 0.05, "submit_max_attempts": 1}
    )
    client = make_client(slow, quick, FakeSleep())

    result = await client.submit_order(make_payload())

    assert isinstance(result.error, AttemptTimeoutError)
    assert result.error.elapsed_ms >= 40


@pytest.mark.asyncio
async def test_caller_cancels_each_attempt(make_payload, settings: Settings) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(201)

    client = make_client(slow, settings, FakeSleep())

    def cancel_soon(context) -> None:
        asyncio.get_running_loop().call_later(0.01, context.cancel)

    result = await client.submit_order(make_payload(), on_attempt=cancel_soon)

    assert isinstance(result.error, AttemptTimeoutError)
    assert result.error.cancelled is True


@pytest.mark.asyncio
async def test_malformed_success_body_is_server_error(make_payload, settings: Settings) -> None:
    service = OrderService(httpx.Response(200, json={"success": True, "order": {"id": "x"}}))
    single = settings.model_copy(update={"submit_max_attempts": 1})
    client = make_client(service, single, FakeSleep())

    result = await client.submit_order(make_payload())

    assert isinstance(result.error, ServerError)
    assert result.error.status_code == 200


def test_rate_limit_wait_read_from_body() -> None:
    response = httpx.Response(429, json={"error": {"message": "slow", "retry_after_seconds": 7}})

    result = classify_response(response)

    assert isinstance(result.error, RateLimitError)
    assert result.error.retry_after_seconds == 7.0


def test_success_false_body_is_rejection() -> None:
    response = httpx.Response(
        200,
        json={"success": False, "error": {"message": "Closed", "field": "delivery_address"}},
    )

    result = classify_response(response)

    assert isinstance(result.error, RequestValidationError)
    assert result.error.field == "delivery_address"


def test_validate_payload_requires_contact_channel(make_payload) -> None:
    payload = make_payload().model_dump(mode="json")
    payload["customer"]["email"] = None
    payload["customer"]["phone"] = None

    result = validate_payload(payload)

    assert isinstance(result.error, RequestValidationError)
    assert "email or phone" in result.error.message
