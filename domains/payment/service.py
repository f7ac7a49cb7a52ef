import hashlib
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.cache import IdempotencyCache
from domains.payment.errors import (
    Conflict,
    InvalidArgument,
    InvalidPayload,
    PaymentError,
    PersistenceError,
    UpstreamUnavailable,
)
from domains.payment.gateway import RazorpayClient
from domains.payment.model import PaymentStatus, utcnow
from domains.payment.schemas import CreateOrderRequest, PaymentOut, WebhookEvent
from domains.payment.store import PaymentStore

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("1000000")
MAX_DESCRIPTION_LENGTH = 500
DEFAULT_CURRENCY = "INR"
DEFAULT_PAYMENT_METHOD = "unknown"

# gateway event -> internal status; 其他事件一律忽略
EVENT_STATUS = {
    "payment.captured": PaymentStatus.COMPLETED,
    "order.paid": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
}

IN_FLIGHT_TTL = timedelta(minutes=1)


class WebhookOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    event: str
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "event": self.event,
            "outcome": self.outcome.value,
        }
        if self.payment_id:
            body["paymentId"] = self.payment_id
        if self.status:
            body["status"] = self.status.value
        return body


def validate_order_request(request: CreateOrderRequest) -> Decimal:
    """Return the amount rounded to paise, or raise InvalidArgument."""
    amount = request.amount
    if amount is None or not amount.is_finite():
        raise InvalidArgument("Invalid amount")

    # 範圍先檢查原始金額，1000000.004 不能 round 回上限內
    if amount <= 0:
        raise InvalidArgument("Invalid amount")
    if amount > MAX_AMOUNT:
        raise InvalidArgument("Amount exceeds maximum limit")

    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise InvalidArgument("Invalid amount")

    if request.description and len(request.description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidArgument("Description must be less than 500 characters")
    return amount


def extract_payment_reference(event: WebhookEvent) -> str:
    """
    Pull the id we stored at order creation out of the event entity.

    A payment entity carries its parent order under ``order_id``; that is
    the id the record was saved with. An order entity is the order itself.
    """
    payment = event.payload.payment.entity if event.payload.payment else None
    order = event.payload.order.entity if event.payload.order else None

    if payment:
        reference = payment.get("order_id") or payment.get("id")
    elif order:
        reference = order.get("id")
    else:
        raise InvalidPayload("Invalid payload")

    if not reference:
        raise InvalidPayload("Invalid payload", details="entity has no id")
    return str(reference)


class PaymentService:
    def __init__(
        self,
        store: PaymentStore,
        gateway: Optional[RazorpayClient],
        cache: IdempotencyCache,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.cache = cache

    # ------------------------------------------------------------------
    # order creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        user_id: str,
        request: CreateOrderRequest,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        建立 Razorpay 訂單並存一筆 pending payment
        回傳: {success, orderId, payment, keyId}
        """
        # 1. 驗證輸入 (在任何外部呼叫之前)
        amount = validate_order_request(request)

        # 2. gateway 沒設定 -> 這個請求失敗，但 process 不掛
        if self.gateway is None:
            logger.error("❌ [Orders] Razorpay keys not configured")
            raise UpstreamUnavailable(
                "Payment gateway not configured. Please contact support."
            )

        if not idempotency_key:
            return self._create_order(self.gateway, user_id, amount, request, None)

        # 3. idempotency key: 同一個 key 重送直接回上次的結果
        result_key = f"idempotency:{user_id}:{idempotency_key}"
        cached = self.cache.get_json(result_key)
        if cached is not None:
            logger.info(f"♻️ [Orders] Replaying response for key {idempotency_key}")
            return cached

        lock_key = f"{result_key}:lock"
        if not self.cache.claim(lock_key, ttl=IN_FLIGHT_TTL):
            logger.warning(f"⚠️ [Orders] Key {idempotency_key} is already in flight")
            raise Conflict("A request with this Idempotency-Key is in progress")

        try:
            result = self._create_order(
                self.gateway, user_id, amount, request, idempotency_key
            )
            self.cache.set_json(result_key, result)
        finally:
            self.cache.release(lock_key)
        return result

    def _create_order(
        self,
        gateway: RazorpayClient,
        user_id: str,
        amount: Decimal,
        request: CreateOrderRequest,
        receipt: Optional[str],
    ) -> Dict[str, Any]:
        currency = (request.currency or DEFAULT_CURRENCY).upper()

        logger.info(f"🧾 [Orders] Creating payment for {user_id}, amount {amount}")
        order = gateway.create_order(
            amount,
            currency,
            receipt=receipt or f"rcpt_{uuid.uuid4().hex[:20]}",
            notes={"description": request.description or "", "user_id": user_id},
        )

        try:
            payment = self.store.insert_pending(
                user_id=user_id,
                payment_id=order.id,
                amount=amount,
                currency=currency,
                payment_method=request.payment_method or DEFAULT_PAYMENT_METHOD,
                description=request.description,
            )
        except PersistenceError:
            # gateway 那邊已經有訂單了，留給 reconcile job 處理
            logger.error(f"💀 [Orders] Gateway order {order.id} has no local record")
            raise

        logger.info(f"✅ [Orders] Payment created successfully: {order.id}")
        return {
            "success": True,
            "orderId": order.id,
            "payment": PaymentOut.model_validate(payment).model_dump(mode="json"),
            "keyId": gateway.key_id,
        }

    # ------------------------------------------------------------------
    # webhook
    # ------------------------------------------------------------------

    def handle_webhook(
        self, raw_body: bytes, event_id: Optional[str] = None
    ) -> WebhookResult:
        """
        Apply a verified Razorpay webhook to the stored payment.

        The signature must already be checked; ``raw_body`` is the exact
        body the signature was computed over.
        """
        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as e:
            logger.error(f"❌ [Webhook] Unreadable payload: {e}")
            raise InvalidPayload("Invalid payload") from e

        logger.info(f"📨 [Webhook] Received {event.event or '<no event>'}")
        payment_id = extract_payment_reference(event)

        status = EVENT_STATUS.get(event.event)
        if status is None:
            logger.info(f"⏭️ [Webhook] Ignoring {event.event} for {payment_id}")
            return WebhookResult(WebhookOutcome.IGNORED, event.event, payment_id)

        # 同一個事件送兩次只處理一次
        dedup_key = f"webhook:{event_id or hashlib.sha256(raw_body).hexdigest()}"
        if not self.cache.claim(dedup_key):
            logger.info(f"♻️ [Webhook] Event for {payment_id} already processed")
            return WebhookResult(
                WebhookOutcome.DUPLICATE, event.event, payment_id, status
            )

        try:
            outcome = self.store.update_status(payment_id, status)
        except PaymentError:
            # 讓 gateway 重送時還能再處理一次
            self.cache.release(dedup_key)
            raise

        if outcome.value == WebhookOutcome.NOT_FOUND.value:
            logger.warning(f"⚠️ [Webhook] No payment found for {payment_id}")
        elif outcome.value == WebhookOutcome.CONFLICT.value:
            logger.warning(
                f"⚠️ [Webhook] {payment_id} is already terminal; "
                f"ignoring {event.event}"
            )
        else:
            logger.info(f"✅ [Webhook] Payment {payment_id} -> {status.value}")

        return WebhookResult(
            WebhookOutcome(outcome.value), event.event, payment_id, status
        )

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    def reconcile_pending(
        self, older_than: timedelta, limit: int = 100
    ) -> Dict[str, int]:
        """
        Ask the gateway about payments still pending after ``older_than``.

        Orders the gateway reports as ``paid`` are completed through the
        same path the webhook uses. Returns a count per outcome.
        """
        if self.gateway is None:
            raise UpstreamUnavailable("Payment gateway not configured")

        cutoff = utcnow() - older_than
        summary: Counter = Counter()

        for payment in self.store.list_pending(cutoff, limit=limit):
            try:
                order = self.gateway.fetch_order(payment.payment_id)
            except UpstreamUnavailable as e:
                logger.error(f"❌ [Reconcile] {payment.payment_id}: {e.message}")
                summary["errors"] += 1
                continue

            if order.status != "paid":
                summary["still_pending"] += 1
                continue

            outcome = self.store.update_status(
                payment.payment_id, PaymentStatus.COMPLETED
            )
            logger.info(f"🔄 [Reconcile] {payment.payment_id}: {outcome.value}")
            summary[outcome.value] += 1

        return dict(summary)
