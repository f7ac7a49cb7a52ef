import base64
import json
from decimal import Decimal
from typing import List

import httpx
import pytest

from domains.payment.errors import UpstreamUnavailable
from domains.payment.gateway import RazorpayClient, build_gateway, to_minor_units
from tests.support import KEY_ID, KEY_SECRET, RazorpayStub, make_settings


def make_client(handler: object, max_retries: int = 2) -> RazorpayClient:
    return RazorpayClient(
        KEY_ID,
        KEY_SECRET,
        max_retries=max_retries,
        retry_delay=0.0,
        transport=httpx.MockTransport(handler),  # type: ignore[arg-type]
    )


@pytest.mark.parametrize(
    "amount, paise",
    [
        (Decimal("500"), 50000),
        (Decimal("1"), 100),
        (Decimal("10.005"), 1001),
        (Decimal("99.99"), 9999),
        (Decimal("1000000"), 100000000),
    ],
)
def test_to_minor_units_rounds_half_up(amount: Decimal, paise: int) -> None:
    assert to_minor_units(amount) == paise


def test_create_order_sends_paise_basic_auth_and_notes(razorpay: RazorpayStub) -> None:
    razorpay.next_ids.append("order_abc123")
    client = make_client(razorpay)

    order = client.create_order(
        Decimal("500"),
        "INR",
        receipt="rcpt_1",
        notes={"description": "Electricity", "user_id": "u-1"},
    )

    assert order.id == "order_abc123"
    assert order.amount == 50000
    assert order.status == "created"

    request = razorpay.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/orders"
    expected_auth = base64.b64encode(f"{KEY_ID}:{KEY_SECRET}".encode()).decode()
    assert request.headers["Authorization"] == f"Basic {expected_auth}"
    assert json.loads(request.content) == {
        "amount": 50000,
        "currency": "INR",
        "receipt": "rcpt_1",
        "notes": {"description": "Electricity", "user_id": "u-1"},
    }


def test_receipt_is_truncated_to_gateway_limit(razorpay: RazorpayStub) -> None:
    client = make_client(razorpay)
    client.create_order(Decimal("1"), "INR", receipt="k" * 64)

    assert json.loads(razorpay.requests[0].content)["receipt"] == "k" * 40


def test_client_error_is_not_retried_and_carries_gateway_details(
    razorpay: RazorpayStub,
) -> None:
    error = {
        "error": {"code": "BAD_REQUEST_ERROR", "description": "Authentication failed"}
    }
    razorpay.queued.append(httpx.Response(401, json=error))
    client = make_client(razorpay)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        client.create_order(Decimal("500"), "INR")

    assert exc_info.value.message == "Failed to create payment order"
    assert exc_info.value.details == error
    assert len(razorpay.requests) == 1


def test_server_error_is_retried_then_succeeds(razorpay: RazorpayStub) -> None:
    razorpay.queued.extend(
        [httpx.Response(503, text="unavailable"), httpx.Response(502, text="bad gateway")]
    )
    client = make_client(razorpay, max_retries=2)

    order = client.create_order(Decimal("42"), "INR")

    assert order.id.startswith("order_")
    assert len(razorpay.requests) == 3


def test_server_error_gives_up_after_max_retries(razorpay: RazorpayStub) -> None:
    razorpay.queued.extend([httpx.Response(500, text="oops")] * 3)
    client = make_client(razorpay, max_retries=1)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        client.create_order(Decimal("42"), "INR")

    assert exc_info.value.details == {"status": 500, "body": "oops"}
    assert len(razorpay.requests) == 2


def test_connection_errors_are_retried_then_surface() -> None:
    attempts: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, max_retries=2)

    with pytest.raises(UpstreamUnavailable, match="Failed to create payment order"):
        client.create_order(Decimal("42"), "INR")
    assert len(attempts) == 3


def test_response_without_id_is_rejected(razorpay: RazorpayStub) -> None:
    razorpay.queued.append(httpx.Response(200, json={"entity": "order"}))
    client = make_client(razorpay)

    with pytest.raises(UpstreamUnavailable):
        client.create_order(Decimal("42"), "INR")


def test_fetch_order_reads_status(razorpay: RazorpayStub) -> None:
    razorpay.order_status["order_paid1"] = "paid"
    client = make_client(razorpay)

    order = client.fetch_order("order_paid1")

    assert order.id == "order_paid1"
    assert order.status == "paid"
    assert razorpay.requests[0].method == "GET"
    assert razorpay.requests[0].url.path == "/v1/orders/order_paid1"


def test_build_gateway_needs_both_keys() -> None:
    assert build_gateway(make_settings(razorpay_key_secret=None)) is None

    gateway = build_gateway(make_settings())
    assert gateway is not None
    assert gateway.key_id == KEY_ID
    gateway.close()
