import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from domains.payment.errors import InvalidArgument

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_body(model: Type[ModelT], raw_body: bytes) -> ModelT:
    """Parse a route body after authentication has already run."""
    try:
        return model.model_validate_json(raw_body)
    except ValidationError as e:
        raise InvalidArgument(
            "Invalid request body", details=json.loads(e.json(include_url=False))
        ) from e


class CreateOrderRequest(BaseModel):
    # amount 的範圍檢查交給 service，這裡只負責型別
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")

    model_config = ConfigDict(populate_by_name=True)


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    payment_id: str
    amount: float
    currency: str
    status: str
    payment_method: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_ref: int
    receipt_number: str
    amount: float
    tax_amount: float
    total_amount: float
    issued_at: datetime


class CreatePaymentRequestIn(BaseModel):
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    requester_email: Optional[str] = Field(default=None, alias="requesterEmail")
    requester_phone: Optional[str] = Field(default=None, alias="requesterPhone")

    model_config = ConfigDict(populate_by_name=True)


class PaymentRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_id: str
    amount: float
    currency: str
    description: str
    status: str
    requester_email: Optional[str] = None
    requester_phone: Optional[str] = None
    expires_at: datetime
    created_at: datetime


class AddPaymentMethodIn(BaseModel):
    method_type: Optional[str] = Field(default=None, alias="type")
    card_number: Optional[str] = Field(default=None, alias="cardNumber")
    expiry_date: Optional[str] = Field(default=None, alias="expiryDate")
    holder_name: Optional[str] = Field(default=None, alias="holderName")
    upi_id: Optional[str] = Field(default=None, alias="upiId")

    model_config = ConfigDict(populate_by_name=True)


class PaymentMethodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    method_type: str
    details: Dict[str, Any]
    is_default: bool
    created_at: datetime


class WebhookEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    entity: Optional[Dict[str, Any]] = None


class WebhookInner(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment: Optional[WebhookEntity] = None
    order: Optional[WebhookEntity] = None


class WebhookEvent(BaseModel):
    """Razorpay webhook envelope: ``{event, payload: {payment?, order?}}``."""

    model_config = ConfigDict(extra="allow")

    event: str = ""
    payload: WebhookInner = Field(default_factory=WebhookInner)
