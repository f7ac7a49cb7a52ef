import logging
import re
import secrets
import string
import time
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from domains.payment.errors import InvalidArgument
from domains.payment.model import PaymentRequest, PaymentStatus, as_utc, utcnow
from domains.payment.schemas import CreatePaymentRequestIn, PaymentRequestOut
from domains.payment.store import PaymentStore

logger = logging.getLogger(__name__)

MIN_REQUEST_AMOUNT = Decimal("1")
MAX_REQUEST_AMOUNT = Decimal("1000000")
MAX_DESCRIPTION_LENGTH = 500
MAX_EMAIL_LENGTH = 255
DEFAULT_DESCRIPTION = "Payment Request"
REQUEST_TTL = timedelta(hours=24)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# E.164
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"REQ-{int(time.time() * 1000)}-{suffix}"


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


def validate_payment_request(request: CreatePaymentRequestIn) -> Decimal:
    """Return the amount rounded to paise, or raise InvalidArgument."""
    amount = request.amount
    if amount is None or not amount.is_finite():
        raise InvalidArgument("Please enter an amount")
    if amount <= 0:
        raise InvalidArgument("Amount must be positive")
    if amount < MIN_REQUEST_AMOUNT:
        raise InvalidArgument("Amount must be at least ₹1")
    if amount > MAX_REQUEST_AMOUNT:
        raise InvalidArgument("Amount cannot exceed ₹10,00,000")

    if request.description and len(request.description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidArgument("Description must be less than 500 characters")

    email = _blank_to_none(request.requester_email)
    if email is not None:
        if len(email) > MAX_EMAIL_LENGTH:
            raise InvalidArgument("Email must be less than 255 characters")
        if not EMAIL_RE.match(email):
            raise InvalidArgument("Invalid email address")

    phone = _blank_to_none(request.requester_phone)
    if phone is not None and not PHONE_RE.match(phone):
        raise InvalidArgument("Invalid phone number format")

    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def request_to_dict(
    request: PaymentRequest, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Serialize a request; pending requests past ``expires_at`` read as expired."""
    out = PaymentRequestOut.model_validate(request).model_dump(mode="json")
    expired = as_utc(request.expires_at) <= (now or utcnow())
    if request.status == PaymentStatus.PENDING.value and expired:
        out["status"] = "expired"
    return out


class PaymentRequestService:
    def __init__(self, store: PaymentStore) -> None:
        self.store = store

    def create(self, user_id: str, request: CreatePaymentRequestIn) -> PaymentRequest:
        amount = validate_payment_request(request)

        now = utcnow()
        record = PaymentRequest(
            request_id=new_request_id(),
            user_id=user_id,
            amount=amount,
            description=_blank_to_none(request.description) or DEFAULT_DESCRIPTION,
            requester_email=_blank_to_none(request.requester_email),
            requester_phone=_blank_to_none(request.requester_phone),
            status=PaymentStatus.PENDING.value,
            expires_at=now + REQUEST_TTL,
            created_at=now,
        )
        saved = self.store.insert_payment_request(record)
        logger.info(f"📮 [Requests] Created {saved.request_id} for ₹{amount}")
        return saved

    def list_for(self, user_id: str) -> List[PaymentRequest]:
        return self.store.list_payment_requests(user_id)
