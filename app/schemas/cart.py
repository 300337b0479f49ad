from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class CartItemCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=99)


class CartItemUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(..., ge=0, le=99)  # 0 removes the item


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_image: Optional[str]
    quantity: int
    unit_price: float
    total_price: float


class CartResponse(BaseModel):
    id: int
    items: List[CartItemResponse]
    subtotal: float
    total_items: int
