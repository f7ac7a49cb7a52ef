"""Test doubles and helpers shared by unit and e2e tests."""
import hashlib
import hmac
import json
from typing import Any, Dict, List, Optional

import httpx

from core.config import Settings

WEBHOOK_SECRET = "whsec_test_secret"  # noqa: S105
KEY_ID = "rzp_test_abc123XYZ"
KEY_SECRET = "rzp_secret_456"  # noqa: S105
USER_ID = "5b0c3c3e-0000-4000-8000-000000000001"
OTHER_USER_ID = "5b0c3c3e-0000-4000-8000-000000000002"
TOKEN = "token-user-1"  # noqa: S105
OTHER_TOKEN = "token-user-2"  # noqa: S105


class InMemoryRedis:
    """The handful of redis-py calls IdempotencyCache makes, kept in a dict."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    def set(
        self, key: str, value: str, nx: bool = False, ex: Any = None
    ) -> Optional[bool]:
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0


class RazorpayStub:
    """httpx.MockTransport handler that answers like the Razorpay orders API."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.queued: List[httpx.Response] = []
        self.next_ids: List[str] = []
        self.order_status: Dict[str, str] = {}
        self._counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            return self.queued.pop(0)

        if request.method == "POST":
            body = json.loads(request.content)
            self._counter += 1
            order_id = (
                self.next_ids.pop(0) if self.next_ids else f"order_T{self._counter:05d}"
            )
            return httpx.Response(
                200,
                json={
                    "id": order_id,
                    "entity": "order",
                    "amount": body["amount"],
                    "currency": body["currency"],
                    "receipt": body.get("receipt"),
                    "status": "created",
                    "notes": body.get("notes"),
                },
            )

        order_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={
                "id": order_id,
                "entity": "order",
                "amount": 50000,
                "currency": "INR",
                "status": self.order_status.get(order_id, "created"),
            },
        )


def supabase_auth_handler(request: httpx.Request) -> httpx.Response:
    users = {
        f"Bearer {TOKEN}": {"id": USER_ID, "email": "payer@example.com"},
        f"Bearer {OTHER_TOKEN}": {"id": OTHER_USER_ID, "email": "other@example.com"},
    }
    user = users.get(request.headers.get("Authorization", ""))
    if user is None or request.headers.get("apikey") != "service-role-key":
        return httpx.Response(401, json={"msg": "invalid JWT"})
    return httpx.Response(200, json=user)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "supabase_url": "https://project.supabase.co",
        "supabase_service_role_key": "service-role-key",
        "database_url": "sqlite:///:memory:",
        "razorpay_key_id": KEY_ID,
        "razorpay_key_secret": KEY_SECRET,
        "razorpay_webhook_secret": WEBHOOK_SECRET,
        "gateway_retry_delay": 0.0,
        "otel_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(event: str, **entities: Dict[str, Any]) -> bytes:
    payload = {name: {"entity": entity} for name, entity in entities.items()}
    return json.dumps(
        {"entity": "event", "event": event, "payload": payload},
        separators=(",", ":"),
    ).encode("utf-8")
