from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_identity
from app.core.security import Identity
from app.db.session import get_db
from app.schemas.order import OrderResponse
from app.services.order_service import get_order_by_number, list_orders
from app.utils.response import success

router = APIRouter()


@router.get("/", response_model=dict)
def get_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Orders placed by the signed-in user, newest first."""
    orders = list_orders(db, auth_user_id=identity.user_id, skip=skip, limit=limit)
    return success(
        data=[OrderResponse.model_validate(order).model_dump() for order in orders],
        message="Orders retrieved successfully",
    )


@router.get("/{order_number}", response_model=dict)
def get_my_order(
    order_number: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    order = get_order_by_number(db, order_number, auth_user_id=identity.user_id)
    return success(data=OrderResponse.model_validate(order).model_dump(), message="Order retrieved successfully")
