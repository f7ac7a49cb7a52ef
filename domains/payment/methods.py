import logging
import re
from typing import Any, Dict, List, Tuple

from domains.payment.errors import InvalidArgument, NotFound
from domains.payment.model import SavedPaymentMethod
from domains.payment.schemas import AddPaymentMethodIn
from domains.payment.store import PaymentStore

logger = logging.getLogger(__name__)

CARD_NUMBER_RE = re.compile(r"^\d{12,19}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")
UPI_ID_RE = re.compile(r"^[\w.\-]{2,256}@[A-Za-z]{2,64}$")


def mask_card_number(card_number: str) -> str:
    return f"****-****-****-{card_number[-4:]}"


def build_details(request: AddPaymentMethodIn) -> Tuple[str, Dict[str, Any]]:
    """
    Validate the form and return ``(method_type, details)``.

    Only the last four card digits are ever kept.
    """
    method_type = (request.method_type or "").strip().lower()
    if not method_type:
        raise InvalidArgument("Please select a payment method type")

    if method_type == "card":
        number = re.sub(r"[\s-]", "", request.card_number or "")
        expiry = (request.expiry_date or "").strip()
        holder = (request.holder_name or "").strip()
        if not number or not expiry or not holder:
            raise InvalidArgument("Please fill all card details")
        if not CARD_NUMBER_RE.match(number):
            raise InvalidArgument("Invalid card number")
        if not EXPIRY_RE.match(expiry):
            raise InvalidArgument("Expiry date must be MM/YY")
        return method_type, {
            "card_number": mask_card_number(number),
            "expiry_date": expiry,
            "holder_name": holder,
        }

    if method_type == "upi":
        upi_id = (request.upi_id or "").strip()
        if not upi_id:
            raise InvalidArgument("Please enter UPI ID")
        if not UPI_ID_RE.match(upi_id):
            raise InvalidArgument("Invalid UPI ID")
        return method_type, {"upi_id": upi_id}

    raise InvalidArgument(f"Unsupported payment method type: {method_type}")


class PaymentMethodService:
    def __init__(self, store: PaymentStore) -> None:
        self.store = store

    def add(self, user_id: str, request: AddPaymentMethodIn) -> SavedPaymentMethod:
        method_type, details = build_details(request)
        method = self.store.add_payment_method(
            SavedPaymentMethod(
                user_id=user_id, method_type=method_type, details=details
            )
        )
        logger.info(f"💳 [Methods] Saved {method_type} method {method.id}")
        return method

    def list_for(self, user_id: str) -> List[SavedPaymentMethod]:
        return self.store.list_payment_methods(user_id)

    def delete(self, user_id: str, method_id: int) -> None:
        if not self.store.delete_payment_method(user_id, method_id):
            raise NotFound("Payment method not found")
        logger.info(f"🗑️ [Methods] Deleted method {method_id} for {user_id}")

    def set_default(self, user_id: str, method_id: int) -> SavedPaymentMethod:
        method = self.store.set_default_payment_method(user_id, method_id)
        if method is None:
            raise NotFound("Payment method not found")
        return method
