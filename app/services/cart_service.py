from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import ProductNotFound
from app.core.security import Identity
from app.models.cart import Cart, CartItem
from app.models.product import Product

logger = structlog.get_logger()


@dataclass(frozen=True)
class CartLine:
    product_id: int
    product_name: str
    unit_price: float
    quantity: int

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass(frozen=True)
class CartSnapshot:
    """A cart's items priced at current product prices."""

    cart_id: int
    auth_user_id: str
    user_email: Optional[str]
    user_name: Optional[str]
    lines: List[CartLine] = field(default_factory=list)

    @property
    def subtotal(self) -> float:
        return round(sum(line.line_total for line in self.lines), 2)

    @property
    def is_empty(self) -> bool:
        return not self.lines


def load_cart_snapshot(db: Session, cart_id: int, auth_user_id: str) -> Optional[CartSnapshot]:
    """Return the owner's cart with current prices, or None if it does not exist."""
    cart = (
        db.query(Cart)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
        .filter(Cart.id == cart_id, Cart.auth_user_id == auth_user_id)
        .first()
    )
    if not cart:
        return None

    lines = [
        CartLine(
            product_id=item.product_id,
            product_name=item.product.name if item.product else (item.product_name or ""),
            unit_price=float(item.product.price),
            quantity=item.quantity,
        )
        for item in cart.items
        if item.product is not None
    ]
    return CartSnapshot(
        cart_id=cart.id,
        auth_user_id=cart.auth_user_id,
        user_email=cart.user_email,
        user_name=cart.user_name,
        lines=lines,
    )


def clear_cart(db: Session, cart_id: int) -> int:
    """Delete every item of a cart, keeping the cart row. No commit."""
    return (
        db.query(CartItem)
        .filter(CartItem.cart_id == cart_id)
        .delete(synchronize_session=False)
    )


def get_or_create_cart(db: Session, identity: Identity) -> Cart:
    cart = db.query(Cart).filter(Cart.auth_user_id == identity.user_id).first()
    if cart:
        return cart

    cart = Cart(
        auth_user_id=identity.user_id,
        user_email=identity.email,
        user_name=identity.full_name or None,
    )
    db.add(cart)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        return db.query(Cart).filter(Cart.auth_user_id == identity.user_id).one()
    db.refresh(cart)
    return cart


def add_to_cart(db: Session, identity: Identity, product_id: int, quantity: int = 1) -> CartItem:
    """Add a product, merging into the existing line for that product."""
    product = db.query(Product).filter(Product.id == product_id, Product.is_active == True).first()
    if not product:
        raise ProductNotFound()

    cart = get_or_create_cart(db, identity)
    item = (
        db.query(CartItem)
        .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        .first()
    )
    if item:
        item.quantity += quantity
        item.product_name = product.name
    else:
        item = CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity, product_name=product.name)
        db.add(item)

    db.commit()
    db.refresh(item)
    logger.info("cart_item_added", cart_id=cart.id, product_id=product_id, quantity=item.quantity)
    return item


def set_item_quantity(db: Session, identity: Identity, item_id: int, quantity: int) -> Optional[CartItem]:
    """Set a line's quantity; zero removes it. Returns None when removed."""
    item = _get_owned_item(db, identity, item_id)
    if quantity <= 0:
        db.delete(item)
        db.commit()
        return None

    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, identity: Identity, item_id: int) -> None:
    item = _get_owned_item(db, identity, item_id)
    db.delete(item)
    db.commit()


def _get_owned_item(db: Session, identity: Identity, item_id: int) -> CartItem:
    item = (
        db.query(CartItem)
        .join(Cart, Cart.id == CartItem.cart_id)
        .filter(CartItem.id == item_id, Cart.auth_user_id == identity.user_id)
        .first()
    )
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cart item not found")
    return item
