"""Custom exceptions for the checkout service."""


class CheckoutError(Exception):
    """Base exception for all checkout errors."""

    code = None


class ValidationError(CheckoutError):
    """Raised when request data or payment details are malformed."""

    pass


class InvalidStatusTransition(ValidationError):
    """Raised when an admin asks for an order status change the lifecycle forbids."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'.")


class AuthorizationDeclined(CheckoutError):
    """Raised when the payment gateway declines the charge."""

    code = "payment_declined"

    def __init__(self, message: str = "Payment failed. Please try again."):
        super().__init__(message)


class PaymentTimeout(CheckoutError):
    """Raised when the payment gateway does not answer in time."""

    code = "payment_timeout"

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Payment gateway did not respond within {seconds:g}s.")


class NotFound(CheckoutError):
    """Raised when a record is absent or not visible to the caller."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind} not found.")


class DuplicateFeedback(CheckoutError):
    """Raised when feedback for the same order (and product) already exists."""

    pass


class StorageFailure(CheckoutError):
    """Raised when the database rejects a write. The detail is logged, not returned."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Failed to {action}.")


class NotificationFailed(CheckoutError):
    """Raised when the confirmation event could not be handed to the broker."""

    def __init__(self):
        super().__init__("Order saved, but the confirmation could not be sent.")
