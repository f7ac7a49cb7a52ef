import logging
import secrets
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from domains.payment.errors import InvalidArgument, NotFound, PersistenceError
from domains.payment.model import PaymentOrder, PaymentStatus, Receipt, utcnow
from domains.payment.store import PaymentStore

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.18")
CENTS = Decimal("0.01")


def new_receipt_number() -> str:
    return f"RCP-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


def render_text(receipt: Receipt) -> str:
    """Plain-text receipt for download."""
    return (
        "PAYMENT RECEIPT\n"
        "===============\n"
        "\n"
        f"Receipt Number: {receipt.receipt_number}\n"
        f"Date: {receipt.issued_at:%d/%m/%Y}\n"
        "\n"
        f"Amount: ₹{receipt.amount:.2f}\n"
        f"Tax (18%): ₹{receipt.tax_amount:.2f}\n"
        f"Total: ₹{receipt.total_amount:.2f}\n"
        "\n"
        "Thank you for your payment!\n"
    )


class ReceiptService:
    def __init__(self, store: PaymentStore) -> None:
        self.store = store

    def generate(self, user_id: str, payment_ref: int) -> Tuple[Receipt, bool]:
        """
        Issue a receipt for a completed payment.
        回傳: (receipt, created) — 已經開過就回舊的那張
        """
        payment = self._owned_payment(user_id, payment_ref)
        if payment.status != PaymentStatus.COMPLETED.value:
            raise InvalidArgument("Receipts are only issued for completed payments")

        existing = self.store.get_receipt(payment_ref)
        if existing is not None:
            return existing, False

        amount = Decimal(payment.amount)
        tax = (amount * TAX_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
        receipt = Receipt(
            user_id=user_id,
            payment_ref=payment_ref,
            receipt_number=new_receipt_number(),
            amount=amount,
            tax_amount=tax,
            total_amount=amount + tax,
            issued_at=utcnow(),
        )
        try:
            saved = self.store.insert_receipt(receipt)
        except PersistenceError:
            # 同時兩個請求，另一個先寫進去了
            existing = self.store.get_receipt(payment_ref)
            if existing is None:
                raise
            return existing, False

        logger.info(
            f"🧾 [Receipts] Issued {saved.receipt_number} for {payment.payment_id}"
        )
        return saved, True

    def get(self, user_id: str, payment_ref: int) -> Receipt:
        self._owned_payment(user_id, payment_ref)
        receipt = self.store.get_receipt(payment_ref)
        if receipt is None:
            raise NotFound("Receipt not found. Please generate it first.")
        return receipt

    def _owned_payment(self, user_id: str, payment_ref: int) -> PaymentOrder:
        payment = self.store.get_for_owner(user_id, payment_ref)
        if payment is None:
            raise NotFound("Payment not found")
        return payment
