from fastapi import HTTPException, status
from typing import Any, List, Optional


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class OfferNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Offer not found"
        )


class OfferCodeConflict(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Discount code already exists"
        )


class OrderNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )


class ProductNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found"
        )


# --------------------------------------------------
# Discount code validation
# --------------------------------------------------
class DiscountCodeError(APIError):
    """Client-side rejection of a discount code; never retried."""

    code = "DISCOUNT_CODE_INVALID"

    def __init__(self, message: str, **details: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=message,
            errors=[{"code": self.code, **details}],
        )


class DiscountCodeNotFound(DiscountCodeError):
    code = "DISCOUNT_CODE_NOT_FOUND"

    def __init__(self):
        super().__init__("Invalid discount code")


class OfferInactive(DiscountCodeError):
    code = "OFFER_INACTIVE"

    def __init__(self):
        super().__init__("This discount code is no longer active")


class OfferNotYetStarted(DiscountCodeError):
    code = "OFFER_NOT_STARTED"

    def __init__(self):
        super().__init__("This discount code is not yet active")


class OfferExpired(DiscountCodeError):
    code = "OFFER_EXPIRED"

    def __init__(self):
        super().__init__("This discount code has expired")


class OfferUsageLimitReached(DiscountCodeError):
    code = "OFFER_USAGE_LIMIT_REACHED"

    def __init__(self):
        super().__init__("This discount code has reached its usage limit")


class MinimumOrderNotMet(DiscountCodeError):
    code = "MINIMUM_ORDER_NOT_MET"

    def __init__(self, minimum: float, shortfall: float, currency_symbol: str = "₹"):
        super().__init__(
            f"Minimum order amount of {currency_symbol}{format_amount(minimum)} required "
            f"for this discount (add {currency_symbol}{format_amount(shortfall)} more)",
            minimum_order_amount=minimum,
            shortfall=shortfall,
        )
        self.minimum = minimum
        self.shortfall = shortfall


# --------------------------------------------------
# Payment reconciliation
# --------------------------------------------------
class ReconciliationError(Exception):
    """Base for payment events that could not be turned into order state."""

    retryable = False

    def __init__(self, provider_payment_id: str, reason: str):
        super().__init__(f"{reason} (payment {provider_payment_id})")
        self.provider_payment_id = provider_payment_id
        self.reason = reason


class MissingAttributionMetadata(ReconciliationError):
    def __init__(self, provider_payment_id: str):
        super().__init__(provider_payment_id, "Payment is not attributable to a cart checkout")


class CartNotFound(ReconciliationError):
    def __init__(self, provider_payment_id: str, cart_id: Optional[int]):
        super().__init__(provider_payment_id, f"Cart {cart_id} not found or empty")
        self.cart_id = cart_id


class PersistenceFailure(ReconciliationError):
    retryable = True

    def __init__(self, provider_payment_id: str):
        super().__init__(provider_payment_id, "Order could not be persisted")


def format_amount(value: float) -> str:
    """Render 2000.0 as "2000" and 2000.5 as "2000.50"."""
    value = round(float(value), 2)
    if value == int(value):
        return str(int(value))
    return f"{value:.2f}"
