"""
Demo payment gateway.

Validates the payment details for the chosen method, waits to simulate the
network round trip, then asks a decision strategy whether to approve. The
strategy is injectable so callers (and tests) control the outcome.
"""

import asyncio
import logging
import random
import re
import string
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .config import PAYMENT_LATENCY_SECONDS, PAYMENT_SUCCESS_RATE, PAYMENT_TIMEOUT_SECONDS
from .errors import AuthorizationDeclined, PaymentTimeout, ValidationError

logger = logging.getLogger(__name__)

CARD = "card"
UPI = "upi"
CASH = "cash"

# Method ids the storefront sends, plus the bare method names.
METHOD_IDS = {
    "pm_demo_card": CARD,
    "pm_demo_upi": UPI,
    "pm_demo_cash": CASH,
    CARD: CARD,
    UPI: UPI,
    CASH: CASH,
}

PAYMENT_METHODS = [
    {"id": "pm_demo_card", "type": CARD, "name": "Credit/Debit Card"},
    {"id": "pm_demo_upi", "type": UPI, "name": "UPI Payment"},
    {"id": "pm_demo_cash", "type": CASH, "name": "Cash on Delivery"},
]

EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})$")
CVV_RE = re.compile(r"^\d{3,4}$")
UPI_ID_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z]{3,}$")

TXN_ALPHABET = string.digits + string.ascii_lowercase


def resolve_method(payment_method_id: Optional[str]) -> str:
    method = METHOD_IDS.get((payment_method_id or "").strip().lower())
    if method is None:
        raise ValidationError(f"Unsupported payment method: {payment_method_id}")
    return method


def validate_card(details: Dict[str, Any], today: date) -> None:
    number = str(details.get("cardNumber") or "").replace(" ", "")
    expiry = str(details.get("expiryDate") or "").strip()
    cvv = str(details.get("cvv") or "").strip()
    holder = details.get("cardholderName")

    if not number or not expiry or not cvv:
        raise ValidationError("Card number, expiry date and CVV are required.")
    if not number.isdigit() or len(number) < 16:
        raise ValidationError("Card number must be 16 digits.")

    match = EXPIRY_RE.match(expiry)
    if not match:
        raise ValidationError("Please enter a valid expiry date (MM/YY).")
    month, year = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError("Please enter a valid expiry date (MM/YY).")
    current_year = today.year % 100
    if year < current_year or (year == current_year and month < today.month):
        raise ValidationError("Card has expired. Please use a valid card.")

    if not CVV_RE.match(cvv):
        raise ValidationError("Please enter a valid CVV (3-4 digits).")
    if holder is not None and len(str(holder).strip()) < 2:
        raise ValidationError("Cardholder name is too short.")


def validate_upi(details: Dict[str, Any]) -> None:
    upi_id = str(details.get("upiId") or "").strip()
    upi_name = str(details.get("upiName") or "").strip()
    if not upi_id or not upi_name:
        raise ValidationError("UPI ID and name are required for UPI payment.")
    if not UPI_ID_RE.match(upi_id):
        raise ValidationError("Please enter a valid UPI ID (e.g., name@upi).")
    if len(upi_name) < 2:
        raise ValidationError("UPI name is too short.")


def validate_details(method: str, details: Dict[str, Any], today: date) -> None:
    if method == CARD:
        validate_card(details, today)
    elif method == UPI:
        validate_upi(details)
    # Cash is collected on delivery; there is nothing to check.


@dataclass(frozen=True)
class AuthorizationResult:
    method: str
    amount: Decimal
    authorized: bool
    # Cash "succeeds" without money changing hands.
    deferred: bool = False
    transaction_id: Optional[str] = None

    @property
    def captured(self) -> bool:
        return self.authorized and not self.deferred


class RandomDecision:
    """Approve with a fixed probability."""

    def __init__(self, success_rate: float = PAYMENT_SUCCESS_RATE, rng: Optional[random.Random] = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def __call__(self) -> bool:
        return self.rng.random() < self.success_rate


def always_approve() -> bool:
    return True


def always_decline() -> bool:
    return False


def new_transaction_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "txn_" + "".join(rng.choice(TXN_ALPHABET) for _ in range(9))


class PaymentAuthorizer:

    def __init__(self, decide: Optional[Callable[[], bool]] = None,
                 latency: float = PAYMENT_LATENCY_SECONDS,
                 timeout: float = PAYMENT_TIMEOUT_SECONDS):
        self.decide = decide or RandomDecision()
        self.latency = latency
        self.timeout = timeout

    async def _gateway(self) -> bool:
        # Stand-in for the round trip to a real processor.
        await asyncio.sleep(self.latency)
        return self.decide()

    async def authorize(self, method: str, amount: Decimal, details: Optional[Dict[str, Any]] = None,
                        today: Optional[date] = None) -> AuthorizationResult:
        """
        Authorize a charge.

        Raises ValidationError for bad details, AuthorizationDeclined when the
        gateway says no and PaymentTimeout when it does not answer in time.
        None of these leave anything behind, so the call can be retried as is.
        """
        details = details or {}
        validate_details(method, details, today or date.today())

        if method == CASH:
            return AuthorizationResult(method=CASH, amount=amount, authorized=True, deferred=True)

        try:
            approved = await asyncio.wait_for(self._gateway(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Payment gateway timed out after %ss (method=%s, amount=%s)",
                         self.timeout, method, amount)
            raise PaymentTimeout(self.timeout)

        if not approved:
            logger.info("Payment declined (method=%s, amount=%s)", method, amount)
            raise AuthorizationDeclined()

        txn = new_transaction_id()
        logger.info("Payment authorized %s (method=%s, amount=%s)", txn, method, amount)
        return AuthorizationResult(method=method, amount=amount, authorized=True, transaction_id=txn)
