"""
Request and response models for the checkout API.

JSON bodies use camelCase (the storefront's convention); Python code uses
snake_case. Money is carried as Decimal and serialized as a string.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartItem(CamelModel):
    """A line item as the cart (and later the order snapshot) carries it."""
    product_id: Optional[str] = None
    name: NonEmptyStr
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    category: Optional[str] = None
    image: Optional[str] = None


class Discount(CamelModel):
    name: str
    description: str
    amount: Decimal
    code: str


class PriceBreakdownOut(CamelModel):
    subtotal: Decimal
    discount_total: Decimal
    taxable_amount: Decimal
    gst: Decimal
    total: Decimal


class QuoteRequest(CamelModel):
    items: List[CartItem] = Field(..., min_length=1)
    coupon: Optional[str] = None


class QuoteOut(CamelModel):
    discounts: List[Discount]
    pricing: PriceBreakdownOut


class OrderCreateRequest(CamelModel):
    """Body of POST /orders."""
    items: List[CartItem] = Field(..., min_length=1)
    address: NonEmptyStr
    phone: NonEmptyStr
    payment_method: Optional[str] = None
    coupon: Optional[str] = None


class DraftOrder(CamelModel):
    """
    A priced order that has not been persisted.

    It has no id and no status on purpose: only OrderLedger.create turns a
    draft into an Order row.
    """
    owner_id: NonEmptyStr
    items: List[CartItem] = Field(..., min_length=1)
    address: NonEmptyStr
    phone: NonEmptyStr
    coupon: Optional[str] = None
    discounts: List[Discount] = Field(default_factory=list)
    subtotal: Decimal
    discount_total: Decimal
    gst_amount: Decimal
    total: Decimal


class PaymentRequest(CamelModel):
    """Body of POST /process-payment."""
    payment_method_id: NonEmptyStr
    amount: Decimal = Field(..., gt=0)
    order_data: DraftOrder
    payment_details: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class PaymentOut(CamelModel):
    success: bool = True
    message: str
    transaction_id: Optional[str] = None
    amount: Decimal
    payment_method: str
    order_id: str
    replayed: bool = False


class PaymentInfo(CamelModel):
    method: str
    authorized: bool
    transaction_id: Optional[str] = None
    amount: Decimal


class OrderOut(CamelModel):
    id: str
    owner_id: str
    items: List[CartItem]
    address: str
    phone: str
    subtotal: Decimal
    discount_total: Decimal
    gst_amount: Decimal
    total: Decimal
    discounts: List[Discount]
    payment: PaymentInfo
    status: str
    created_at: datetime
    paid_at: Optional[datetime] = None
    estimated_delivery: datetime
    ready_for_delivery: bool
    minutes_remaining: int


class StatusUpdate(CamelModel):
    status: NonEmptyStr


class FeedbackRequest(CamelModel):
    order_id: NonEmptyStr
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ProductReviewRequest(FeedbackRequest):
    product_id: NonEmptyStr


class FeedbackOut(CamelModel):
    id: int
    order_id: str
    user_id: str
    product_id: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class NotificationRequest(CamelModel):
    order_id: NonEmptyStr


class ProductInfo(CamelModel):
    name: str
    average_rating: Decimal
    review_count: int


class ProductReviewsOut(CamelModel):
    reviews: List[FeedbackOut]
    product_info: ProductInfo
