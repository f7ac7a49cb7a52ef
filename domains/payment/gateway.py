import logging
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx

from core.config import Settings
from domains.payment.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# 這些狀態碼代表 gateway 暫時有問題，可以重試
RETRYABLE_STATUS = {500, 502, 503, 504}


def to_minor_units(amount: Decimal) -> int:
    """Major units -> paise (round half up)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class GatewayOrder:
    id: str
    status: str
    amount: int  # minor units
    currency: str

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "GatewayOrder":
        order_id = data.get("id")
        if not order_id:
            raise UpstreamUnavailable(
                "Payment gateway returned an order without id", details=data
            )
        return cls(
            id=str(order_id),
            status=str(data.get("status", "")),
            amount=int(data.get("amount") or 0),
            currency=str(data.get("currency", "")),
        )


class RazorpayClient:
    """
    Order-creation side of the Razorpay REST API.

    Everything outside this class deals in major units and GatewayOrder;
    the wire format (paise, Basic auth, JSON envelopes) stays in here.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.key_id = key_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.Client(
            base_url=api_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        body: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "notes": notes or {},
        }
        if receipt:
            body["receipt"] = receipt[:40]  # Razorpay 限制 40 字

        data = self._request(
            "POST", "/orders", json=body, error="Failed to create payment order"
        )
        return GatewayOrder.from_json(data)

    def fetch_order(self, order_id: str) -> GatewayOrder:
        data = self._request(
            "GET", f"/orders/{order_id}", error="Failed to fetch payment order"
        )
        return GatewayOrder.from_json(data)

    def close(self) -> None:
        self._client.close()

    def _request(
        self, method: str, path: str, error: str, json: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self._client.request(method, path, json=json)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if attempt < attempts:
                    logger.warning(
                        f"⚠️ [Gateway] {method} {path} failed ({e}). Retrying..."
                    )
                    time.sleep(self.retry_delay * attempt)
                    continue
                logger.error(f"❌ [Gateway] {method} {path} unreachable: {e}")
                raise UpstreamUnavailable(error, details=str(e)) from e
            except httpx.HTTPError as e:
                logger.error(f"❌ [Gateway] {method} {path} failed: {e}")
                raise UpstreamUnavailable(error, details=str(e)) from e

            if response.status_code in RETRYABLE_STATUS and attempt < attempts:
                logger.warning(
                    f"⚠️ [Gateway] {method} {path} returned "
                    f"{response.status_code}. Retrying..."
                )
                time.sleep(self.retry_delay * attempt)
                continue

            if response.is_success:
                return response.json()

            details = _error_body(response)
            logger.error(
                f"❌ [Gateway] {method} {path} returned {response.status_code}: "
                f"{details}"
            )
            raise UpstreamUnavailable(error, details=details)


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"status": response.status_code, "body": response.text}


def build_gateway(settings: Settings) -> Optional[RazorpayClient]:
    if not settings.gateway_configured:
        logger.warning("⚠️ [Gateway] Razorpay keys not configured")
        return None
    return RazorpayClient(
        key_id=settings.razorpay_key_id or "",
        key_secret=settings.razorpay_key_secret or "",
        api_url=settings.razorpay_api_url,
        timeout=settings.gateway_timeout,
        max_retries=settings.gateway_max_retries,
        retry_delay=settings.gateway_retry_delay,
    )
