from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload

from app.api.deps import get_current_identity
from app.core.security import Identity
from app.db.session import get_db
from app.models.cart import Cart, CartItem
from app.schemas.cart import CartItemCreate, CartItemUpdate, CartResponse
from app.services import cart_service
from app.utils.response import success

router = APIRouter()


def _cart_response(db: Session, identity: Identity) -> dict:
    cart = cart_service.get_or_create_cart(db, identity)
    cart = (
        db.query(Cart)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
        .filter(Cart.id == cart.id)
        .one()
    )

    items_response = []
    subtotal = 0.0
    total_items = 0
    for item in cart.items:
        product = item.product
        if product is None:
            continue
        unit_price = float(product.price)
        total_price = round(unit_price * item.quantity, 2)
        subtotal += total_price
        total_items += item.quantity
        items_response.append({
            "id": item.id,
            "product_id": product.id,
            "product_name": product.name,
            "product_image": product.image_url,
            "quantity": item.quantity,
            "unit_price": unit_price,
            "total_price": total_price,
        })

    return CartResponse(
        id=cart.id,
        items=items_response,
        subtotal=round(subtotal, 2),
        total_items=total_items,
    ).model_dump()


@router.get("/", response_model=dict)
def get_cart(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Get user's cart"""
    return success(data=_cart_response(db, identity), message="Cart retrieved successfully")


@router.post("/", response_model=dict)
def add_to_cart(
    item_data: CartItemCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Add item to cart; an existing line for the product is incremented"""
    cart_service.add_to_cart(db, identity, item_data.product_id, item_data.quantity)
    return success(data=_cart_response(db, identity), message="Item added to cart")


@router.put("/{item_id}", response_model=dict)
def update_cart_item(
    item_id: int,
    item_data: CartItemUpdate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Update cart item quantity"""
    item = cart_service.set_item_quantity(db, identity, item_id, item_data.quantity)
    message = "Cart updated" if item else "Item removed from cart"
    return success(data=_cart_response(db, identity), message=message)


@router.delete("/{item_id}", response_model=dict)
def remove_from_cart(
    item_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Remove item from cart"""
    cart_service.remove_item(db, identity, item_id)
    return success(data=_cart_response(db, identity), message="Item removed from cart")
