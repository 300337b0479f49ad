from datetime import datetime, timezone
from typing import Optional

import bleach
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.models.offer import DiscountType, OfferType


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OfferInput(CamelModel):
    """Shared field validation for admin create/update payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("title", "description", "button_text", check_fields=False)
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value)

    @field_validator("code", check_fields=False)
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("start_date", "end_date", check_fields=False)
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value)


class OfferCreate(OfferInput):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    code: Optional[str] = Field(None, max_length=50)
    type: OfferType
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=0)
    start_date: datetime
    end_date: Optional[datetime] = None
    image: Optional[str] = Field(None, max_length=500)
    button_text: Optional[str] = Field(None, max_length=50)
    button_link: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=50)
    priority: int = 0
    is_active: bool = True
    notify_users: bool = False

    @model_validator(mode="after")
    def validate_offer(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        if not self.title:
            raise ValueError("title is required")
        return self


class OfferUpdate(OfferInput):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    code: Optional[str] = Field(None, max_length=50)
    type: Optional[OfferType] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    image: Optional[str] = Field(None, max_length=500)
    button_text: Optional[str] = Field(None, max_length=50)
    button_link: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=50)
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class OfferResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    title: str
    description: Optional[str]
    code: Optional[str]
    type: OfferType
    discount_type: DiscountType
    discount_value: float
    min_order_amount: Optional[float]
    max_uses: Optional[int]
    used_count: int
    start_date: datetime
    end_date: Optional[datetime]
    image: Optional[str]
    button_text: Optional[str]
    button_link: Optional[str]
    position: str
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class OfferStats(BaseModel):
    total: int
    active: int
    scheduled: int
    expired: int
    total_usage: int


class DiscountCodeRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    code: str = Field(..., min_length=1, max_length=50)
    order_amount: float = Field(..., gt=0)

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Discount code is required")
        return value


class AppliedOffer(CamelModel):
    id: int
    title: str
    code: Optional[str]
    discount_type: DiscountType
    discount_value: float
    discount_amount: float
    free_shipping: bool
    min_order_amount: Optional[float]


class DiscountCodeResponse(CamelModel):
    valid: bool
    offer: AppliedOffer
