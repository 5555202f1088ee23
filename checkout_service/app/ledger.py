"""
Order ledger: the only code that creates or changes order rows.

Orders are created exactly once, either straight away for cash or after a
captured payment for card/UPI, and afterwards only move along the status
lifecycle. Nothing is ever deleted; cancelling is a status.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AuthorizationDeclined, InvalidStatusTransition, NotFound, StorageFailure, ValidationError
from .models import Order, OrderStatus
from .payments import CASH, AuthorizationResult
from .pricing import cents
from .schemas import CartItem, Discount, DraftOrder, OrderOut, PaymentInfo

logger = logging.getLogger(__name__)

DELIVERY_WINDOW = timedelta(minutes=40)

# Admin-driven lifecycle. Delivered and cancelled have no way out.
TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_ready_for_delivery(order: Order, now: datetime) -> bool:
    if order.status in OrderStatus.TERMINAL:
        return False
    return as_utc(now) - as_utc(order.created_at) >= DELIVERY_WINDOW


def minutes_remaining(order: Order, now: datetime) -> int:
    if order.status in OrderStatus.TERMINAL or is_ready_for_delivery(order, now):
        return 0
    left = DELIVERY_WINDOW - (as_utc(now) - as_utc(order.created_at))
    return max(0, math.ceil(left.total_seconds() / 60))


def scoped_key(owner_id: str, key: str) -> str:
    return f"{owner_id}:{key}"


class OrderLedger:

    def __init__(self, db: Session):
        self.db = db

    def create(self, draft: DraftOrder, authorization: AuthorizationResult,
               idempotency_key: Optional[str] = None, now: Optional[datetime] = None) -> Order:
        order, _ = self.create_or_replay(draft, authorization, idempotency_key, now)
        return order

    def create_or_replay(self, draft: DraftOrder, authorization: AuthorizationResult,
                         idempotency_key: Optional[str] = None,
                         now: Optional[datetime] = None) -> Tuple[Order, bool]:
        """
        Persist the draft and return (order, replayed).

        When a concurrent request already stored an order under the same
        idempotency key, the insert loses on the unique constraint and that
        stored order is returned instead, with replayed set.
        """
        now = as_utc(now or datetime.now(timezone.utc))

        if authorization.method == CASH:
            # Collect on delivery: nothing has been charged yet.
            status = OrderStatus.PENDING
            authorized = False
            transaction_id = None
            amount = draft.total
            paid_at = None
        elif authorization.captured:
            status = OrderStatus.PAID
            authorized = True
            transaction_id = authorization.transaction_id
            amount = authorization.amount
            paid_at = now
        else:
            raise AuthorizationDeclined()

        order = Order(
            id=uuid.uuid4().hex,
            owner_id=draft.owner_id,
            items=[item.model_dump(mode="json", by_alias=True) for item in draft.items],
            address=draft.address,
            phone=draft.phone,
            subtotal=draft.subtotal,
            discount_total=draft.discount_total,
            gst_amount=draft.gst_amount,
            total=draft.total,
            discounts=[d.model_dump(mode="json", by_alias=True) for d in draft.discounts],
            payment_method=authorization.method,
            payment_authorized=authorized,
            transaction_id=transaction_id,
            payment_amount=amount,
            status=status,
            created_at=now,
            paid_at=paid_at,
            updated_at=now,
            idempotency_key=scoped_key(draft.owner_id, idempotency_key) if idempotency_key else None,
        )
        try:
            self._commit(order, "save order", conflicts=(IntegrityError,) if idempotency_key else ())
        except IntegrityError:
            existing = self.find_by_idempotency_key(draft.owner_id, idempotency_key)
            if existing is None:
                logger.exception("Database error while trying to save order")
                raise StorageFailure("save order")
            logger.info("Order %s already recorded for idempotency key %s", existing.id, idempotency_key)
            return existing, True
        logger.info("Order %s created for %s (method=%s, status=%s, total=%s)",
                    order.id, order.owner_id, order.payment_method, order.status, order.total)
        return order, False

    def _commit(self, order: Order, action: str, conflicts=()) -> None:
        """Commit the row. Errors listed in conflicts are rolled back and re-raised as is."""
        try:
            self.db.add(order)
            self.db.commit()
            self.db.refresh(order)
        except conflicts:
            self.db.rollback()
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Database error while trying to %s", action)
            raise StorageFailure(action)

    def find_by_idempotency_key(self, owner_id: str, key: str) -> Optional[Order]:
        return (self.db.query(Order)
                .filter(Order.idempotency_key == scoped_key(owner_id, key))
                .first())

    def get(self, order_id: str, owner_id: str) -> Order:
        # Someone else's order looks exactly like a missing one.
        order = (self.db.query(Order)
                 .filter(Order.id == order_id, Order.owner_id == owner_id)
                 .first())
        if order is None:
            raise NotFound("Order")
        return order

    def list_for_owner(self, owner_id: str) -> List[Order]:
        return (self.db.query(Order)
                .filter(Order.owner_id == owner_id)
                .order_by(Order.created_at.desc())
                .all())

    def list_all(self) -> List[Order]:
        return self.db.query(Order).order_by(Order.created_at.desc()).all()

    def transition(self, order_id: str, new_status: str, now: Optional[datetime] = None) -> Order:
        if new_status not in OrderStatus.ALL:
            raise ValidationError(f"Unknown order status: {new_status}")
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise NotFound("Order")
        if new_status not in TRANSITIONS[order.status]:
            raise InvalidStatusTransition(order.status, new_status)

        previous = order.status
        order.status = new_status
        order.updated_at = as_utc(now or datetime.now(timezone.utc))
        self._commit(order, "update order status")
        logger.info("Order %s moved from %s to %s", order.id, previous, new_status)
        return order

    def stats(self) -> Dict[str, object]:
        by_status = dict(self.db.query(Order.status, func.count(Order.id)).group_by(Order.status).all())
        delivered = self.db.query(Order.payment_amount).filter(Order.status == OrderStatus.DELIVERED).all()
        return {
            "totalOrders": sum(by_status.values()),
            "ordersByStatus": {status: by_status.get(status, 0) for status in OrderStatus.ALL},
            "totalRevenue": str(cents(sum((Decimal(row[0]) for row in delivered), Decimal("0")))),
        }


def to_schema(order: Order, now: datetime) -> OrderOut:
    created_at = as_utc(order.created_at)
    return OrderOut(
        id=order.id,
        owner_id=order.owner_id,
        items=[CartItem.model_validate(item) for item in order.items],
        address=order.address,
        phone=order.phone,
        subtotal=cents(order.subtotal),
        discount_total=cents(order.discount_total),
        gst_amount=cents(order.gst_amount),
        total=cents(order.total),
        discounts=[Discount.model_validate(d) for d in order.discounts or []],
        payment=PaymentInfo(
            method=order.payment_method,
            authorized=order.payment_authorized,
            transaction_id=order.transaction_id,
            amount=cents(order.payment_amount),
        ),
        status=order.status,
        created_at=created_at,
        paid_at=as_utc(order.paid_at) if order.paid_at else None,
        estimated_delivery=created_at + DELIVERY_WINDOW,
        ready_for_delivery=is_ready_for_delivery(order, now),
        minutes_remaining=minutes_remaining(order, now),
    )
