import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import discounts as discount_rules
from . import ledger as order_ledger
from . import pricing
from . import ratings
from .config import ADMIN_TOKEN, LOG_LEVEL, PORT
from .database import Base, engine, get_db
from .errors import (
    AuthorizationDeclined,
    CheckoutError,
    DuplicateFeedback,
    InvalidStatusTransition,
    NotFound,
    NotificationFailed,
    PaymentTimeout,
    StorageFailure,
    ValidationError,
)
from .ledger import OrderLedger
from .messaging.producer import OrderNotifier, confirmation_payload
from .models import utcnow
from .payments import CASH, PAYMENT_METHODS, PaymentAuthorizer, resolve_method
from .schemas import (
    DraftOrder,
    FeedbackRequest,
    NotificationRequest,
    OrderCreateRequest,
    PaymentOut,
    PaymentRequest,
    ProductReviewRequest,
    ProductReviewsOut,
    QuoteOut,
    QuoteRequest,
    StatusUpdate,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

# Create database tables on startup if they don't exist.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Cafeteria Checkout API")

ERROR_STATUS_CODES = {
    ValidationError: 400,
    InvalidStatusTransition: 409,
    AuthorizationDeclined: 402,
    NotFound: 404,
    DuplicateFeedback: 409,
    StorageFailure: 500,
    NotificationFailed: 502,
    PaymentTimeout: 504,
}


# --- Error translation ---

@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    """Map CheckoutError subclasses to HTTP responses."""
    content = {"error": str(exc), "error_type": type(exc).__name__}
    if exc.code:
        content["success"] = False
        content["code"] = exc.code
    return JSONResponse(status_code=ERROR_STATUS_CODES.get(type(exc), 500), content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request.", "error_type": "ValidationError", "details": details},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Storage failure. Please try again later.", "error_type": "StorageFailure"},
    )


# --- Dependencies ---
# Auth lives in front of this service; it forwards the caller's identity.

def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="No user identity provided")
    return x_user_id


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin access required")


def get_clock():
    return utcnow


_authorizer = PaymentAuthorizer()


def get_authorizer() -> PaymentAuthorizer:
    return _authorizer


def get_notifier() -> OrderNotifier:
    return OrderNotifier()


# --- Endpoints ---

@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Checkout service is running"}


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unavailable"})
    return {"status": "ok", "database": "connected"}


@app.get("/discounts/status")
def discount_status(clock=Depends(get_clock)):
    now = clock()
    return {
        "happyHour": discount_rules.is_happy_hour(now),
        "message": discount_rules.happy_hour_status(now),
    }


@app.post("/pricing/quote", response_model=QuoteOut)
def quote(req: QuoteRequest, clock=Depends(get_clock)):
    """Price a cart without creating anything."""
    discount_rules.validate_coupon(req.coupon)
    applied = discount_rules.compute_discounts(req.items, clock(), req.coupon)
    return QuoteOut(discounts=applied, pricing=pricing.calculate(req.items, applied).to_schema())


# Cash orders are persisted here. Everything else gets a priced draft
# the client carries into /process-payment.
@app.post("/orders")
async def create_order(req: OrderCreateRequest,
                       user_id: str = Depends(current_user),
                       db: Session = Depends(get_db),
                       clock=Depends(get_clock),
                       authorizer: PaymentAuthorizer = Depends(get_authorizer)):
    discount_rules.validate_coupon(req.coupon)
    method = resolve_method(req.payment_method) if req.payment_method else None
    now = clock()

    applied = discount_rules.compute_discounts(req.items, now, req.coupon)
    breakdown = pricing.calculate(req.items, applied)
    draft = DraftOrder(
        owner_id=user_id,
        items=req.items,
        address=req.address,
        phone=req.phone,
        coupon=req.coupon,
        discounts=applied,
        subtotal=breakdown.subtotal,
        discount_total=breakdown.discount_total,
        gst_amount=breakdown.gst,
        total=breakdown.total,
    )

    if method != CASH:
        return {"message": "Order validated successfully!", "orderData": draft}

    authorization = await authorizer.authorize(CASH, draft.total)
    order = await run_in_threadpool(OrderLedger(db).create, draft, authorization, now=now)
    return {
        "success": True,
        "message": "Cash on delivery order created successfully!",
        "order": order_ledger.to_schema(order, now),
        "orderId": order.id,
    }


@app.post("/process-payment", response_model=PaymentOut)
async def process_payment(req: PaymentRequest,
                          user_id: str = Depends(current_user),
                          db: Session = Depends(get_db),
                          clock=Depends(get_clock),
                          authorizer: PaymentAuthorizer = Depends(get_authorizer)):
    """
    Authorize the payment for a draft and persist the order if it goes through.

    A declined payment leaves nothing behind, so the same request can be retried.
    """
    method = resolve_method(req.payment_method_id)
    ledger = OrderLedger(db)

    if req.idempotency_key:
        existing = await run_in_threadpool(ledger.find_by_idempotency_key, user_id, req.idempotency_key)
        if existing:
            logger.info("Replaying order %s for idempotency key %s", existing.id, req.idempotency_key)
            return _payment_out(existing, replayed=True)

    # The draft round-trips through the client, so it is priced again here.
    now = clock()
    draft = req.order_data
    discount_rules.verify_discounts(draft.items, draft.discounts, draft.coupon, now)
    breakdown = pricing.calculate(draft.items, draft.discounts)
    if req.amount != breakdown.total:
        raise ValidationError("Payment amount does not match the order total.")
    draft = draft.model_copy(update={
        "owner_id": user_id,
        "subtotal": breakdown.subtotal,
        "discount_total": breakdown.discount_total,
        "gst_amount": breakdown.gst,
        "total": breakdown.total,
    })

    authorization = await authorizer.authorize(method, req.amount, req.payment_details, today=now.date())
    order, replayed = await run_in_threadpool(ledger.create_or_replay, draft, authorization,
                                              req.idempotency_key, now)
    return _payment_out(order, replayed=replayed)


def _payment_out(order, replayed=False) -> PaymentOut:
    message = ("Cash on delivery order created successfully!" if order.payment_method == CASH
               else "Payment processed successfully!")
    return PaymentOut(
        message=message,
        transaction_id=order.transaction_id,
        amount=pricing.cents(order.payment_amount),
        payment_method=order.payment_method,
        order_id=order.id,
        replayed=replayed,
    )


@app.get("/payment-methods")
def payment_methods():
    return {"paymentMethods": PAYMENT_METHODS}


# Retrieves the caller's orders, newest first.
@app.get("/orders")
def list_orders(user_id: str = Depends(current_user), db: Session = Depends(get_db), clock=Depends(get_clock)):
    now = clock()
    return {"orders": [order_ledger.to_schema(o, now) for o in OrderLedger(db).list_for_owner(user_id)]}


# Retrieves a single order; other people's orders are reported as missing.
@app.get("/orders/{order_id}")
def get_order(order_id: str, user_id: str = Depends(current_user), db: Session = Depends(get_db),
              clock=Depends(get_clock)):
    return {"order": order_ledger.to_schema(OrderLedger(db).get(order_id, user_id), clock())}


@app.post("/send-order-email")
def send_order_email(req: NotificationRequest,
                     user_id: str = Depends(current_user),
                     db: Session = Depends(get_db),
                     clock=Depends(get_clock),
                     notifier: OrderNotifier = Depends(get_notifier)):
    order = OrderLedger(db).get(req.order_id, user_id)
    notifier.dispatch(confirmation_payload(order_ledger.to_schema(order, clock())))
    return {"message": "Order confirmation sent!"}


# --- Admin ---

@app.get("/admin/orders", dependencies=[Depends(require_admin)])
def admin_orders(db: Session = Depends(get_db), clock=Depends(get_clock)):
    now = clock()
    return {"orders": [order_ledger.to_schema(o, now) for o in OrderLedger(db).list_all()]}


@app.put("/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, body: StatusUpdate, db: Session = Depends(get_db),
                        clock=Depends(get_clock)):
    now = clock()
    order = OrderLedger(db).transition(order_id, body.status, now=now)
    return {"order": order_ledger.to_schema(order, now)}


@app.get("/admin/stats", dependencies=[Depends(require_admin)])
def admin_stats(db: Session = Depends(get_db)):
    return OrderLedger(db).stats()


# --- Feedback ---

@app.post("/feedback", status_code=201)
def submit_feedback(req: FeedbackRequest, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    feedback = ratings.submit_feedback(db, OrderLedger(db), user_id, req.order_id, req.rating, req.comment)
    return {"message": "Feedback submitted!", "feedback": ratings.to_schema(feedback)}


@app.post("/product-review", status_code=201)
def submit_product_review(req: ProductReviewRequest, user_id: str = Depends(current_user),
                          db: Session = Depends(get_db)):
    review = ratings.submit_feedback(db, OrderLedger(db), user_id, req.order_id, req.rating, req.comment,
                                     product_id=req.product_id)
    return {"message": "Product review submitted!", "review": ratings.to_schema(review)}


@app.get("/reviews")
def my_reviews(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return {"reviews": [ratings.to_schema(f) for f in ratings.reviews_for_user(db, user_id)]}


@app.get("/product-reviews/{product_id}", response_model=ProductReviewsOut)
def product_reviews(product_id: str, db: Session = Depends(get_db)):
    return ratings.product_reviews(db, product_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
