from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

from .discounts import cart_subtotal
from .schemas import CartItem, Discount, PriceBreakdownOut

GST_RATE = Decimal("0.18")
CENTS = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_total: Decimal
    taxable_amount: Decimal
    gst: Decimal
    total: Decimal

    def to_schema(self) -> PriceBreakdownOut:
        return PriceBreakdownOut(
            subtotal=self.subtotal,
            discount_total=self.discount_total,
            taxable_amount=self.taxable_amount,
            gst=self.gst,
            total=self.total,
        )


def gst_for(taxable_amount: Decimal) -> Decimal:
    return (taxable_amount * GST_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)


def cents(amount: Decimal) -> Decimal:
    """Round a stored amount to the two places a customer sees."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate(items: List[CartItem], discounts: Iterable[Discount]) -> PriceBreakdown:
    subtotal = cart_subtotal(items)
    discount_total = sum((d.amount for d in discounts), ZERO)
    # A discount total above the subtotal must not produce a negative bill.
    taxable_amount = max(ZERO, subtotal - discount_total)
    gst = gst_for(taxable_amount)
    return PriceBreakdown(
        subtotal=subtotal,
        discount_total=discount_total,
        taxable_amount=taxable_amount,
        gst=gst,
        total=taxable_amount + gst,
    )
