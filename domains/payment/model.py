from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite 讀回來沒有 tzinfo，一律當 UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentOrder(SQLModel, table=True):
    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    payment_id: str = Field(index=True, unique=True)  # gateway order id
    user_id: str = Field(index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="INR", max_length=8)
    status: str = Field(default=PaymentStatus.PENDING.value, index=True)
    payment_method: str = Field(default="unknown")
    description: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class Receipt(SQLModel, table=True):
    __tablename__ = "receipts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    payment_ref: int = Field(foreign_key="payments.id", unique=True)
    receipt_number: str = Field(index=True, unique=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    tax_amount: Decimal = Field(max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(max_digits=12, decimal_places=2)
    issued_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class PaymentRequest(SQLModel, table=True):
    """A request for money sent to someone else (shared as link / QR)."""

    __tablename__ = "payment_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: str = Field(index=True, unique=True)  # REQ-<ms>-<rand>
    user_id: str = Field(index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="INR", max_length=8)
    description: str = Field(default="Payment Request", max_length=500)
    requester_email: Optional[str] = Field(default=None, max_length=255)
    requester_phone: Optional[str] = Field(default=None, max_length=16)
    status: str = Field(default=PaymentStatus.PENDING.value)
    expires_at: datetime = Field(sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class SavedPaymentMethod(SQLModel, table=True):
    __tablename__ = "payment_methods"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    method_type: str  # card | upi
    # card: masked number, expiry, holder; upi: upi_id
    details: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    is_default: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )
