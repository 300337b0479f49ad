from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.offer import DiscountCodeRequest, DiscountCodeResponse, OfferResponse
from app.services.offer_service import OfferService
from app.utils.response import success

router = APIRouter()


@router.get("/", response_model=dict)
def list_active_offers(
    type: Optional[str] = Query(None, description="BANNER, DISCOUNT_CODE, BOTH or all"),
    position: Optional[str] = Query(None, max_length=50),
    db: Session = Depends(get_db),
):
    """Offers currently usable, most prominent first."""
    try:
        offers = OfferService.get_active_offers(db, kind=type, position=position)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid offer type")

    return success(
        data=[OfferResponse.model_validate(offer).model_dump(by_alias=True) for offer in offers],
        message="Offers retrieved successfully",
    )


@router.post("/use", response_model=dict)
@limiter.limit("30/minute")
def use_discount_code(
    request: Request,
    payload: DiscountCodeRequest,
    db: Session = Depends(get_db),
):
    """Check a discount code against an order amount. Does not consume a use."""
    validation = OfferService.validate_discount_code(db, payload.code, payload.order_amount)
    response = DiscountCodeResponse(valid=True, offer=validation.as_applied_offer())
    return success(data=response.model_dump(by_alias=True), message="Discount code applied")
