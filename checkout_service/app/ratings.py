"""
Customer feedback and product reputation.

A product's published rating blends the synthetic "seed" rating it shipped
with and every real rating it has received since. The seed is captured the
first time a real rating arrives and is never derived from the published
average again, otherwise earlier feedback would be counted twice.

The average is recomputed from the full feedback set on every accepted
review. Concurrent reviews of one product are not serialized: the last
commit wins, and since each writer recomputes from the full set the stored
value converges once the writes settle.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import DuplicateFeedback, StorageFailure, ValidationError
from .ledger import OrderLedger
from .models import Feedback, Order, Product
from .schemas import FeedbackOut, ProductInfo, ProductReviewsOut

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")
RECENT_REVIEWS = 10


def product_ids_in(items) -> Set[str]:
    return {item.get("productId") for item in items or [] if item.get("productId")}


def ratings_for_product(db: Session, product_id: str) -> List[int]:
    """Ratings that count towards a product: its own reviews plus whole-order feedback on orders containing it."""
    own = [row.rating for row in db.query(Feedback.rating).filter(Feedback.product_id == product_id)]
    order_level = (db.query(Feedback.rating, Order.items)
                   .join(Order, Order.id == Feedback.order_id)
                   .filter(Feedback.product_id.is_(None))
                   .all())
    own.extend(rating for rating, items in order_level if product_id in product_ids_in(items))
    return [r for r in own if r >= 1]


def blended_rating(seed_average: Decimal, seed_count: int, ratings: List[int]):
    """Return (average, count), or None when there is nothing to average."""
    count = seed_count + len(ratings)
    if count == 0:
        return None
    weighted = Decimal(seed_average) * seed_count + sum(ratings)
    average = (weighted / count).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
    return average, count


def recompute(db: Session, product: Product) -> Product:
    """Rewrite the product's average and count. The caller commits."""
    if product.seed_review_count is None:
        # First real feedback for this product: freeze the bootstrap values.
        product.seed_average_rating = product.average_rating or Decimal("0")
        product.seed_review_count = product.review_count or 0

    seed_count = product.seed_review_count
    seed_average = product.seed_average_rating if seed_count else Decimal("0")
    result = blended_rating(seed_average, seed_count, ratings_for_product(db, product.id))
    if result is not None:
        product.average_rating, product.review_count = result
        logger.info("Product %s rating recomputed: %s from %s reviews",
                    product.id, product.average_rating, product.review_count)
    return product


def submit_feedback(db: Session, ledger: OrderLedger, user_id: str, order_id: str, rating: int,
                    comment: Optional[str] = None, product_id: Optional[str] = None) -> Feedback:
    """
    Record one rating and refresh the affected products in the same transaction.

    Whole-order feedback (no product_id) touches every product in the order.
    Raises NotFound if the order is not the caller's, ValidationError if the
    product is not part of the order and DuplicateFeedback on a second attempt.
    """
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")

    order = ledger.get(order_id, user_id)
    in_order = product_ids_in(order.items)
    if product_id is not None and product_id not in in_order:
        raise ValidationError("This product is not part of the order.")

    product_key = product_id or ""
    existing = (db.query(Feedback)
                .filter(Feedback.order_id == order_id,
                        Feedback.user_id == user_id,
                        Feedback.product_key == product_key)
                .first())
    if existing:
        raise DuplicateFeedback(_duplicate_message(product_id))

    feedback = Feedback(order_id=order_id, user_id=user_id, product_id=product_id,
                        product_key=product_key, rating=rating, comment=comment)
    try:
        db.add(feedback)
        db.flush()
        for pid in sorted([product_id] if product_id else in_order):
            product = db.get(Product, pid)
            if product is None:
                logger.warning("Skipping rating update for unknown product %s", pid)
                continue
            recompute(db, product)
        db.commit()
    except IntegrityError:
        # Lost a race with an identical submission.
        db.rollback()
        raise DuplicateFeedback(_duplicate_message(product_id))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database error while saving feedback for order %s", order_id)
        raise StorageFailure("submit feedback")

    db.refresh(feedback)
    return feedback


def _duplicate_message(product_id: Optional[str]) -> str:
    if product_id:
        return "You have already reviewed this product from this order."
    return "Feedback already submitted for this order."


def reviews_for_user(db: Session, user_id: str) -> List[Feedback]:
    return (db.query(Feedback)
            .filter(Feedback.user_id == user_id)
            .order_by(Feedback.created_at.desc(), Feedback.id.desc())
            .all())


def product_reviews(db: Session, product_id: str) -> ProductReviewsOut:
    product = db.get(Product, product_id)
    reviews = (db.query(Feedback)
               .filter(Feedback.product_id == product_id, Feedback.rating >= 1)
               .order_by(Feedback.created_at.desc(), Feedback.id.desc())
               .limit(RECENT_REVIEWS)
               .all())
    return ProductReviewsOut(
        reviews=[to_schema(f) for f in reviews],
        product_info=ProductInfo(
            name=product.name if product else "Product",
            average_rating=(product.average_rating or Decimal("0")) if product else Decimal("0"),
            review_count=(product.review_count or 0) if product else 0,
        ),
    )


def to_schema(feedback: Feedback) -> FeedbackOut:
    return FeedbackOut(
        id=feedback.id,
        order_id=feedback.order_id,
        user_id=feedback.user_id,
        product_id=feedback.product_id,
        rating=feedback.rating,
        comment=feedback.comment,
        created_at=feedback.created_at,
    )
