from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session, selectinload

from app.api.deps import require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.schemas.offer import OfferCreate, OfferResponse, OfferUpdate
from app.schemas.order import OrderResponse
from app.services.offer_service import OFFER_STATUSES, OfferService
from app.tasks.notification_tasks import broadcast_notification
from app.utils.response import paginated_response, success

router = APIRouter()
logger = structlog.get_logger()


def _offer_data(offer) -> dict:
    return OfferResponse.model_validate(offer).model_dump(by_alias=True)


def _queue_offer_broadcast(offer) -> None:
    try:
        broadcast_notification.delay(
            title=offer.title,
            body=offer.description or f"New offer: {offer.title}",
            data={
                "type": "offer",
                "offerId": str(offer.id),
                "url": offer.button_link or "/products",
            },
        )
    except Exception:
        logger.exception("offer_broadcast_queue_failed", offer_id=offer.id)


# ============= OFFER MANAGEMENT =============

@router.get("/offers")
@limiter.limit("60/minute")
def list_offers(
    request: Request,
    type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: List offers, optionally by kind and lifecycle status"""
    if status and status not in OFFER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter")

    try:
        offers = OfferService.list_offers(db, kind=type, status_filter=status)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid offer type")

    return success(data=[_offer_data(offer) for offer in offers], message="Offers retrieved successfully")


@router.post("/offers", status_code=201)
@limiter.limit("30/minute")
def create_offer(
    request: Request,
    offer_data: OfferCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create an offer, optionally announcing it by push"""
    offer = OfferService.create_offer(db, offer_data)

    if offer_data.notify_users:
        _queue_offer_broadcast(offer)

    return success(data=_offer_data(offer), message="Offer created successfully")


@router.get("/offers/stats")
def get_offer_stats(
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    stats = OfferService.get_offer_stats(db)
    return success(data=stats.model_dump(), message="Offer statistics retrieved successfully")


@router.get("/offers/{offer_id}")
def get_offer(
    offer_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    offer = OfferService.get_offer(db, offer_id)
    return success(data=_offer_data(offer), message="Offer retrieved successfully")


@router.put("/offers/{offer_id}")
@limiter.limit("30/minute")
def update_offer(
    request: Request,
    offer_id: int,
    offer_data: OfferUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    offer = OfferService.update_offer(db, offer_id, offer_data)
    return success(data=_offer_data(offer), message="Offer updated successfully")


@router.delete("/offers/{offer_id}")
@limiter.limit("30/minute")
def delete_offer(
    request: Request,
    offer_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Delete an offer. Offers with recorded uses are retired instead."""
    retired = OfferService.delete_offer(db, offer_id)
    message = "Offer has been used and was deactivated instead of deleted" if retired else "Offer deleted successfully"
    return success(data={"id": offer_id, "retired": retired}, message=message)


# ============= ORDER MANAGEMENT =============

@router.get("/orders")
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Admin: Get all orders"""
    query = db.query(Order).options(selectinload(Order.items), selectinload(Order.payments))

    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status.lower()))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid status")

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit).all()

    return paginated_response(
        [OrderResponse.model_validate(order).model_dump() for order in orders],
        total=total,
        page=page,
        limit=limit,
        message="Orders retrieved successfully",
    )
