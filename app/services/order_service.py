import random
import string
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import OrderNotFound
from app.models.order import Order, OrderItem, OrderStatus
from app.services.cart_service import CartSnapshot

logger = structlog.get_logger()

ORDER_NUMBER_PREFIX = "ORD"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float


@dataclass(frozen=True)
class CustomerSnapshot:
    auth_user_id: str
    email: str
    name: Optional[str]


def compute_order_totals(
    subtotal: float,
    tax_rate: float,
    shipping_amount: float = 0.0,
    discount_amount: float = 0.0,
) -> OrderTotals:
    """
    Price an order: subtotal + tax + shipping - discount.

    Tax is charged on the subtotal. The discount is clamped to
    subtotal + shipping so the total can never go negative.
    """
    subtotal = round(subtotal, 2)
    tax_amount = round(subtotal * tax_rate, 2)
    shipping_amount = round(max(shipping_amount, 0.0), 2)
    discount_amount = round(min(max(discount_amount, 0.0), subtotal + shipping_amount), 2)
    total_amount = round(subtotal + tax_amount + shipping_amount - discount_amount, 2)

    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        shipping_amount=shipping_amount,
        discount_amount=discount_amount,
        total_amount=max(total_amount, 0.0),
    )


def generate_order_number(db: Session) -> str:
    """Generate a unique, time-based order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"{ORDER_NUMBER_PREFIX}-{timestamp}-{random_part}"

        existing = db.query(Order.id).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise ValueError("Failed to generate unique order number")


def create_order_from_snapshot(
    db: Session,
    snapshot: CartSnapshot,
    totals: OrderTotals,
    customer: CustomerSnapshot,
    offer_code: Optional[str] = None,
    status: OrderStatus = OrderStatus.CONFIRMED,
) -> Order:
    """Add an order and its items to the session. The caller commits."""
    order = Order(
        order_number=generate_order_number(db),
        auth_user_id=customer.auth_user_id,
        user_email=customer.email,
        user_name=customer.name,
        cart_id=snapshot.cart_id,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        shipping_amount=totals.shipping_amount,
        discount_amount=totals.discount_amount,
        offer_code=offer_code,
        total_amount=totals.total_amount,
        status=status,
    )
    order.items = [
        OrderItem(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.line_total,
        )
        for line in snapshot.lines
    ]
    db.add(order)
    db.flush()
    return order


def list_orders(db: Session, auth_user_id: Optional[str] = None, skip: int = 0, limit: int = 50) -> List[Order]:
    query = db.query(Order).options(selectinload(Order.items), selectinload(Order.payments))
    if auth_user_id is not None:
        query = query.filter(Order.auth_user_id == auth_user_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit).all()


def get_order_by_number(db: Session, order_number: str, auth_user_id: Optional[str] = None) -> Order:
    query = db.query(Order).options(selectinload(Order.items), selectinload(Order.payments))
    query = query.filter(Order.order_number == order_number)
    if auth_user_id is not None:
        query = query.filter(Order.auth_user_id == auth_user_id)

    order = query.first()
    if not order:
        raise OrderNotFound()
    return order
