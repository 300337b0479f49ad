import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentAttribution(BaseModel):
    """
    Checkout metadata attached to the payment as Razorpay ``notes``.

    Notes are free-form key/value strings, so nothing here rejects an event:
    an unreadable id attributes nothing and an unreadable amount counts as 0.
    The reconciliation step decides whether the event can be used.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    cart_id: Optional[int] = None
    order_id: Optional[int] = None
    offer_id: Optional[int] = None
    offer_code: Optional[str] = None
    discount_amount: float = Field(default=0.0, ge=0)
    shipping_amount: float = Field(default=0.0, ge=0)
    free_shipping: bool = False
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("user_id", "offer_code", "email", "name", mode="before")
    @classmethod
    def text_or_none(cls, value: Any) -> Optional[str]:
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("cart_id", "order_id", "offer_id", mode="before")
    @classmethod
    def id_or_none(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value > 0 else None
        if isinstance(value, float) and value.is_integer() and value > 0:
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip()) or None
        return None

    @field_validator("discount_amount", "shipping_amount", mode="before")
    @classmethod
    def amount_or_zero(cls, value: Any) -> float:
        if isinstance(value, bool):
            return 0.0
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(amount) or amount < 0:
            return 0.0
        return amount

    @field_validator("free_shipping", mode="before")
    @classmethod
    def flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return value is True or value == 1


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    order_id: Optional[str] = None
    amount: int = 0  # Minor units (paise)
    currency: str = "INR"
    status: Optional[str] = None
    method: Optional[str] = None
    email: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    notes: PaymentAttribution = Field(default_factory=PaymentAttribution)

    @field_validator("notes", mode="before")
    @classmethod
    def normalize_notes(cls, value: Any) -> Any:
        # Razorpay serialises empty notes as a JSON array.
        if not isinstance(value, dict):
            return {}
        return value

    @property
    def major_amount(self) -> float:
        return round(self.amount / 100, 2)


class PaymentEntityWrapper(BaseModel):
    entity: PaymentEntity


class PaymentEventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment: Optional[PaymentEntityWrapper] = None


class PaymentWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    payload: PaymentEventPayload = Field(default_factory=PaymentEventPayload)

    @property
    def payment(self) -> Optional[PaymentEntity]:
        return self.payload.payment.entity if self.payload.payment else None
