import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Protocol

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from domains.payment.errors import PersistenceError
from domains.payment.model import (
    PaymentOrder,
    PaymentRequest,
    PaymentStatus,
    Receipt,
    SavedPaymentMethod,
    utcnow,
)

logger = logging.getLogger(__name__)


class UpdateOutcome(str, Enum):
    UPDATED = "updated"  # pending -> terminal
    UNCHANGED = "unchanged"  # already in the requested status
    CONFLICT = "conflict"  # already in the other terminal status
    NOT_FOUND = "not_found"


class PaymentStore(Protocol):
    """What the handlers need from the payment-record store."""

    def insert_pending(
        self,
        *,
        user_id: str,
        payment_id: str,
        amount: Decimal,
        currency: str,
        payment_method: str,
        description: Optional[str],
    ) -> PaymentOrder: ...

    def update_status(
        self, payment_id: str, status: PaymentStatus
    ) -> UpdateOutcome: ...

    def list_by_owner(self, user_id: str) -> List[PaymentOrder]: ...

    def get_for_owner(self, user_id: str, payment_ref: int) -> Optional[PaymentOrder]: ...

    def list_pending(
        self, older_than: datetime, limit: int = 100
    ) -> List[PaymentOrder]: ...

    def get_receipt(self, payment_ref: int) -> Optional[Receipt]: ...

    def insert_receipt(self, receipt: Receipt) -> Receipt: ...

    def insert_payment_request(self, request: PaymentRequest) -> PaymentRequest: ...

    def list_payment_requests(self, user_id: str) -> List[PaymentRequest]: ...

    def add_payment_method(
        self, method: SavedPaymentMethod
    ) -> SavedPaymentMethod: ...

    def list_payment_methods(self, user_id: str) -> List[SavedPaymentMethod]: ...

    def delete_payment_method(self, user_id: str, method_id: int) -> bool: ...

    def set_default_payment_method(
        self, user_id: str, method_id: int
    ) -> Optional[SavedPaymentMethod]: ...


class SqlPaymentStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def insert_pending(
        self,
        *,
        user_id: str,
        payment_id: str,
        amount: Decimal,
        currency: str,
        payment_method: str,
        description: Optional[str],
    ) -> PaymentOrder:
        now = utcnow()
        payment = PaymentOrder(
            payment_id=payment_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            description=description,
            created_at=now,
            updated_at=now,
        )
        try:
            with Session(self.engine) as session:
                session.add(payment)
                session.commit()
                session.refresh(payment)
                return payment
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Insert failed for {payment_id}: {e}")
            raise PersistenceError("Failed to save payment") from e

    def update_status(self, payment_id: str, status: PaymentStatus) -> UpdateOutcome:
        """
        Move a pending payment to a terminal status.

        The row is read under ``FOR UPDATE`` so two deliveries of the same
        event cannot both observe ``pending``. A terminal row is never
        rewritten.
        """
        try:
            with Session(self.engine) as session:
                payment = session.exec(
                    select(PaymentOrder)
                    .where(PaymentOrder.payment_id == payment_id)
                    .with_for_update()
                ).first()

                if payment is None:
                    return UpdateOutcome.NOT_FOUND
                if payment.status == status.value:
                    return UpdateOutcome.UNCHANGED
                if payment.status != PaymentStatus.PENDING.value:
                    return UpdateOutcome.CONFLICT

                payment.status = status.value
                payment.updated_at = utcnow()
                session.add(payment)
                session.commit()
                return UpdateOutcome.UPDATED
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Status update failed for {payment_id}: {e}")
            raise PersistenceError("Failed to update payment") from e

    def list_by_owner(self, user_id: str) -> List[PaymentOrder]:
        try:
            with Session(self.engine) as session:
                statement = (
                    select(PaymentOrder)
                    .where(PaymentOrder.user_id == user_id)
                    .order_by(
                        col(PaymentOrder.created_at).desc(), col(PaymentOrder.id).desc()
                    )
                )
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch payments") from e

    def get_for_owner(self, user_id: str, payment_ref: int) -> Optional[PaymentOrder]:
        try:
            with Session(self.engine) as session:
                return session.exec(
                    select(PaymentOrder).where(
                        PaymentOrder.id == payment_ref, PaymentOrder.user_id == user_id
                    )
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch payment") from e

    def list_pending(self, older_than: datetime, limit: int = 100) -> List[PaymentOrder]:
        try:
            with Session(self.engine) as session:
                statement = (
                    select(PaymentOrder)
                    .where(
                        PaymentOrder.status == PaymentStatus.PENDING.value,
                        PaymentOrder.created_at < older_than,
                    )
                    .order_by(col(PaymentOrder.created_at))
                    .limit(limit)
                )
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch pending payments") from e

    def get_receipt(self, payment_ref: int) -> Optional[Receipt]:
        try:
            with Session(self.engine) as session:
                return session.exec(
                    select(Receipt).where(Receipt.payment_ref == payment_ref)
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch receipt") from e

    def insert_receipt(self, receipt: Receipt) -> Receipt:
        try:
            with Session(self.engine) as session:
                session.add(receipt)
                session.commit()
                session.refresh(receipt)
                return receipt
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Receipt insert failed: {e}")
            raise PersistenceError("Failed to save receipt") from e

    # ------------------------------------------------------------------
    # payment requests
    # ------------------------------------------------------------------

    def insert_payment_request(self, request: PaymentRequest) -> PaymentRequest:
        try:
            with Session(self.engine) as session:
                session.add(request)
                session.commit()
                session.refresh(request)
                return request
        except SQLAlchemyError as e:
            logger.error(
                f"❌ [Store] Request insert failed for {request.request_id}: {e}"
            )
            raise PersistenceError("Failed to create payment request") from e

    def list_payment_requests(self, user_id: str) -> List[PaymentRequest]:
        try:
            with Session(self.engine) as session:
                statement = (
                    select(PaymentRequest)
                    .where(PaymentRequest.user_id == user_id)
                    .order_by(
                        col(PaymentRequest.created_at).desc(),
                        col(PaymentRequest.id).desc(),
                    )
                )
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch payment requests") from e

    # ------------------------------------------------------------------
    # saved payment methods
    # ------------------------------------------------------------------

    def add_payment_method(self, method: SavedPaymentMethod) -> SavedPaymentMethod:
        """The first method a user saves becomes the default."""
        try:
            with Session(self.engine) as session:
                existing = session.exec(
                    select(SavedPaymentMethod.id)
                    .where(SavedPaymentMethod.user_id == method.user_id)
                    .with_for_update()
                ).first()
                method.is_default = existing is None
                session.add(method)
                session.commit()
                session.refresh(method)
                return method
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Payment method insert failed: {e}")
            raise PersistenceError("Failed to add payment method") from e

    def list_payment_methods(self, user_id: str) -> List[SavedPaymentMethod]:
        try:
            with Session(self.engine) as session:
                statement = (
                    select(SavedPaymentMethod)
                    .where(SavedPaymentMethod.user_id == user_id)
                    .order_by(
                        col(SavedPaymentMethod.created_at).desc(),
                        col(SavedPaymentMethod.id).desc(),
                    )
                )
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to fetch payment methods") from e

    def delete_payment_method(self, user_id: str, method_id: int) -> bool:
        """
        Delete one of the user's methods. Returns False if it is not theirs.

        Deleting the default promotes the newest remaining method.
        """
        try:
            with Session(self.engine) as session:
                method = session.exec(
                    select(SavedPaymentMethod).where(
                        SavedPaymentMethod.id == method_id,
                        SavedPaymentMethod.user_id == user_id,
                    )
                ).first()
                if method is None:
                    return False

                was_default = method.is_default
                session.delete(method)
                session.flush()

                if was_default:
                    successor = session.exec(
                        select(SavedPaymentMethod)
                        .where(SavedPaymentMethod.user_id == user_id)
                        .order_by(
                            col(SavedPaymentMethod.created_at).desc(),
                            col(SavedPaymentMethod.id).desc(),
                        )
                    ).first()
                    if successor is not None:
                        successor.is_default = True
                        session.add(successor)

                session.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Method delete failed for {method_id}: {e}")
            raise PersistenceError("Failed to delete payment method") from e

    def set_default_payment_method(
        self, user_id: str, method_id: int
    ) -> Optional[SavedPaymentMethod]:
        # 清掉舊的 default 跟設定新的在同一個 transaction
        try:
            with Session(self.engine) as session:
                methods = session.exec(
                    select(SavedPaymentMethod)
                    .where(SavedPaymentMethod.user_id == user_id)
                    .with_for_update()
                ).all()
                method = next((m for m in methods if m.id == method_id), None)
                if method is None:
                    return None

                for m in methods:
                    m.is_default = m.id == method_id
                    session.add(m)
                session.commit()
                session.refresh(method)
                return method
        except SQLAlchemyError as e:
            logger.error(f"❌ [Store] Default update failed for {method_id}: {e}")
            raise PersistenceError("Failed to update default payment method") from e
