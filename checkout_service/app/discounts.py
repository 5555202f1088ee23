"""
Discount rules applied at checkout.

Every rule looks at the original cart subtotal. Discounts are summed by the
pricing step, never compounded, so an item that qualifies for both happy
hour and the student coupon is discounted twice.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from .config import STORE_TIMEZONE
from .errors import ValidationError
from .schemas import CartItem, Discount

HAPPY_HOUR_CODE = "HAPPYHOUR"
HAPPY_HOUR_RATE = Decimal("0.25")
HAPPY_HOUR_START = 8
HAPPY_HOUR_END = 10  # exclusive
COFFEE_CATEGORY = "Coffee"
COFFEE_KEYWORDS = ("coffee", "espresso", "latte", "cappuccino", "mocha", "americano")

STUDENT_COUPON = "STUDENT20"
STUDENT_RATE = Decimal("0.20")


def local_time(now: datetime) -> datetime:
    """Naive datetimes are already store-local; aware ones are converted."""
    if now.tzinfo is None:
        return now
    return now.astimezone(ZoneInfo(STORE_TIMEZONE))


def line_total(item: CartItem) -> Decimal:
    return item.price * item.quantity


def cart_subtotal(items: Iterable[CartItem]) -> Decimal:
    return sum((line_total(i) for i in items), Decimal("0"))


def is_happy_hour(now: datetime) -> bool:
    now = local_time(now)
    # weekday(): Monday is 0, Friday is 4
    return now.weekday() <= 4 and HAPPY_HOUR_START <= now.hour < HAPPY_HOUR_END


def is_coffee(item: CartItem) -> bool:
    if item.category == COFFEE_CATEGORY:
        return True
    name = item.name.lower()
    return any(keyword in name for keyword in COFFEE_KEYWORDS)


def is_student_coupon(coupon: Optional[str]) -> bool:
    return coupon is not None and coupon.upper() == STUDENT_COUPON


def validate_coupon(coupon: Optional[str]) -> None:
    """Reject a coupon the storefront does not know. Empty input is fine."""
    if coupon and coupon.strip() and not is_student_coupon(coupon):
        raise ValidationError(f"Please enter the exact coupon code: {STUDENT_COUPON}")


def compute_discounts(items: List[CartItem], now: datetime,
                      coupon: Optional[str] = None) -> List[Discount]:
    discounts = []

    if is_happy_hour(now):
        coffee_items = [i for i in items if is_coffee(i)]
        if coffee_items:
            discounts.append(Discount(
                name="Happy Hour Discount",
                description="25% off coffee beverages (8AM-10AM)",
                amount=cart_subtotal(coffee_items) * HAPPY_HOUR_RATE,
                code=HAPPY_HOUR_CODE,
            ))

    if is_student_coupon(coupon):
        discounts.append(Discount(
            name="Student Discount",
            description=f"20% off with {STUDENT_COUPON} coupon code",
            amount=cart_subtotal(items) * STUDENT_RATE,
            code=STUDENT_COUPON,
        ))

    return discounts


def happy_hour_status(now: datetime) -> str:
    """Banner text the storefront shows next to the happy hour offer."""
    now = local_time(now)
    if now.weekday() > 4:
        return "Happy Hour available on weekdays 8:00 AM - 10:00 AM"
    if is_happy_hour(now):
        return "Happy Hour is NOW LIVE! (25% off coffee beverages)"
    if now.hour < HAPPY_HOUR_START:
        return "Happy Hour starts at 8:00 AM (25% off coffee beverages)"
    return "Happy Hour ended at 10:00 AM. Come back tomorrow!"


def verify_discounts(items: List[CartItem], discounts: List[Discount], coupon: Optional[str],
                     now: datetime) -> None:
    """
    Check that a client-carried discount list is one the engine grants at `now`.

    A draft may drop a discount, never add one: a happy hour discount quoted
    at 9:59 is rejected if payment arrives after 10:00.
    """
    granted = {d.code: d.amount for d in compute_discounts(items, now, coupon)}
    seen = set()
    for discount in discounts:
        if discount.code in seen:
            raise ValidationError(f"Discount {discount.code} applied more than once.")
        seen.add(discount.code)

        if discount.code not in granted:
            raise ValidationError(f"Discount {discount.code} is not available for this order.")
        if discount.amount != granted[discount.code]:
            raise ValidationError(f"Discount {discount.code} does not match the order items.")
