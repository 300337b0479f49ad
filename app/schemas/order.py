from typing import List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.order import OrderStatus
from app.models.payment import PaymentStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: float
    total_price: float


class PaymentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_payment_id: str
    status: PaymentStatus
    amount: float
    method: Optional[str] = None
    processed_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    status: OrderStatus
    user_email: str
    user_name: Optional[str] = None
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    offer_code: Optional[str] = None
    total_amount: float
    items: List[OrderItemResponse]
    payments: List[PaymentSummary] = []
    created_at: datetime
