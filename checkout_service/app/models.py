from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base  # Import the Base class from our database setup

# Money columns keep four places so discount amounts are stored exactly.
Money = Numeric(12, 4, asdecimal=True)


def utcnow():
    return datetime.now(timezone.utc)


class OrderStatus:
    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALL = (PENDING, PAID, PREPARING, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)
    TERMINAL = (DELIVERED, CANCELLED)


# Catalog row. Only the fields the checkout pipeline reads or writes live here.
class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, index=True)
    price = Column(Money, nullable=False)
    image = Column(String)

    average_rating = Column(Numeric(3, 1, asdecimal=True), default=0)
    review_count = Column(Integer, default=0)
    # Bootstrap rating captured before the first real review; never recomputed.
    seed_average_rating = Column(Numeric(3, 1, asdecimal=True), nullable=True)
    seed_review_count = Column(Integer, nullable=True)


# Defines the ORM model for a persisted 'Order'.
class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)  # Opaque order identifier.
    owner_id = Column(String, index=True, nullable=False)
    items = Column(JSON, nullable=False)  # Snapshot of the line items at order time.
    address = Column(String, nullable=False)
    phone = Column(String, nullable=False)

    subtotal = Column(Money, nullable=False)
    discount_total = Column(Money, nullable=False)
    gst_amount = Column(Money, nullable=False)
    total = Column(Money, nullable=False)
    discounts = Column(JSON, default=list)  # Audit list of applied discounts.

    payment_method = Column(String, nullable=False)  # card, upi or cash.
    payment_authorized = Column(Boolean, nullable=False, default=False)
    transaction_id = Column(String, nullable=True)
    payment_amount = Column(Money, nullable=False)

    status = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    idempotency_key = Column(String, unique=True, nullable=True)  # Key to prevent duplicate processing.


# One customer's rating for an order, or for one product of that order.
class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (
        UniqueConstraint("order_id", "user_id", "product_key", name="uq_feedback_scope"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    product_id = Column(String, index=True, nullable=True)  # None means whole-order feedback.
    # product_id or "" so the unique constraint also covers whole-order feedback.
    product_key = Column(String, nullable=False, default="")
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
