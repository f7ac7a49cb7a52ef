from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domains.payment.errors import InvalidArgument, NotFound
from domains.payment.model import PaymentOrder, PaymentStatus, Receipt
from domains.payment.receipts import ReceiptService, render_text
from domains.payment.store import SqlPaymentStore
from tests.support import OTHER_USER_ID, USER_ID


def add_payment(
    store: SqlPaymentStore, payment_id: str, amount: str = "1000", completed: bool = True
) -> PaymentOrder:
    payment = store.insert_pending(
        user_id=USER_ID,
        payment_id=payment_id,
        amount=Decimal(amount),
        currency="INR",
        payment_method="upi",
        description="Broadband",
    )
    if completed:
        store.update_status(payment_id, PaymentStatus.COMPLETED)
    return payment


def test_receipt_adds_18_percent_tax(store: SqlPaymentStore) -> None:
    payment = add_payment(store, "order_r1", amount="1234.50")

    receipt, created = ReceiptService(store).generate(USER_ID, payment.id or 0)

    assert created is True
    assert receipt.receipt_number.startswith("RCP-")
    assert receipt.amount == Decimal("1234.50")
    assert receipt.tax_amount == Decimal("222.21")
    assert receipt.total_amount == Decimal("1456.71")


def test_second_generate_returns_the_existing_receipt(store: SqlPaymentStore) -> None:
    payment = add_payment(store, "order_r2")
    service = ReceiptService(store)

    first, _ = service.generate(USER_ID, payment.id or 0)
    second, created = service.generate(USER_ID, payment.id or 0)

    assert created is False
    assert second.receipt_number == first.receipt_number


def test_pending_payment_has_no_receipt(store: SqlPaymentStore) -> None:
    payment = add_payment(store, "order_r3", completed=False)

    with pytest.raises(InvalidArgument, match="completed payments"):
        ReceiptService(store).generate(USER_ID, payment.id or 0)


def test_someone_elses_payment_is_not_found(store: SqlPaymentStore) -> None:
    payment = add_payment(store, "order_r4")
    service = ReceiptService(store)

    with pytest.raises(NotFound, match="Payment not found"):
        service.generate(OTHER_USER_ID, payment.id or 0)
    with pytest.raises(NotFound):
        service.get(OTHER_USER_ID, payment.id or 0)


def test_get_before_generate_is_not_found(store: SqlPaymentStore) -> None:
    payment = add_payment(store, "order_r5")

    with pytest.raises(NotFound, match="generate it first"):
        ReceiptService(store).get(USER_ID, payment.id or 0)


def test_render_text() -> None:
    receipt = Receipt(
        user_id=USER_ID,
        payment_ref=1,
        receipt_number="RCP-1760000000000-AB12",
        amount=Decimal("500"),
        tax_amount=Decimal("90"),
        total_amount=Decimal("590"),
        issued_at=datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc),
    )

    text = render_text(receipt)

    assert "Receipt Number: RCP-1760000000000-AB12" in text
    assert "Date: 19/10/2026" in text
    assert "Amount: ₹500.00" in text
    assert "Tax (18%): ₹90.00" in text
    assert "Total: ₹590.00" in text
