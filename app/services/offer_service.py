from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    DiscountCodeNotFound,
    MinimumOrderNotMet,
    OfferCodeConflict,
    OfferExpired,
    OfferInactive,
    OfferNotFound,
    OfferNotYetStarted,
    OfferUsageLimitReached,
)
from app.models.offer import DEFAULT_OFFER_POSITION, DiscountType, Offer, OfferType
from app.schemas.offer import AppliedOffer, OfferCreate, OfferStats, OfferUpdate

logger = structlog.get_logger()

OFFER_STATUSES = ("active", "inactive", "scheduled", "expired")
REQUIRED_OFFER_FIELDS = {"title", "type", "discount_type", "discount_value", "start_date", "priority", "is_active"}


@dataclass(frozen=True)
class DiscountValidation:
    offer: Offer
    discount_amount: float
    free_shipping: bool

    def as_applied_offer(self) -> AppliedOffer:
        return AppliedOffer(
            id=self.offer.id,
            title=self.offer.title,
            code=self.offer.code,
            discount_type=self.offer.discount_type,
            discount_value=self.offer.discount_value,
            discount_amount=self.discount_amount,
            free_shipping=self.free_shipping,
            min_order_amount=self.offer.min_order_amount,
        )


def calculate_discount(discount_type: DiscountType, discount_value: float, order_amount: float) -> float:
    """Discount for an order amount; never more than the amount itself."""
    if discount_type == DiscountType.PERCENTAGE:
        discount_amount = order_amount * (discount_value / 100)
    elif discount_type == DiscountType.FIXED_AMOUNT:
        discount_amount = discount_value
    else:  # FREE_SHIPPING is applied to shipping downstream
        discount_amount = 0.0
    return round(min(discount_amount, order_amount), 2)


def _usable_filter(now: datetime):
    return and_(
        Offer.is_active == True,
        Offer.start_date <= now,
        or_(Offer.end_date.is_(None), Offer.end_date >= now),
        or_(Offer.max_uses.is_(None), Offer.used_count < Offer.max_uses),
    )


def _kind_filter(kind: Optional[str]):
    if not kind or kind.lower() == "all":
        return None
    kind = OfferType(kind.upper())
    if kind == OfferType.BOTH:
        return Offer.type == OfferType.BOTH
    return Offer.type.in_([kind, OfferType.BOTH])


class OfferService:

    # ----------------------------------------------------------------
    # Repository
    # ----------------------------------------------------------------
    @staticmethod
    def get_offer(db: Session, offer_id: int) -> Offer:
        offer = db.query(Offer).filter(Offer.id == offer_id).first()
        if not offer:
            raise OfferNotFound()
        return offer

    @staticmethod
    def get_offer_by_code(db: Session, code: str) -> Optional[Offer]:
        # Exact, case-sensitive match.
        return db.query(Offer).filter(Offer.code == code).first()

    @staticmethod
    def list_offers(db: Session, kind: Optional[str] = None, status_filter: Optional[str] = None) -> List[Offer]:
        """List offers for the admin back-office."""
        query = db.query(Offer)

        if kind and kind.lower() != "all":
            query = query.filter(Offer.type == OfferType(kind.upper()))

        now = datetime.utcnow()
        if status_filter == "active":
            query = query.filter(
                Offer.is_active == True,
                Offer.start_date <= now,
                or_(Offer.end_date.is_(None), Offer.end_date >= now),
            )
        elif status_filter == "inactive":
            query = query.filter(Offer.is_active == False)
        elif status_filter == "scheduled":
            query = query.filter(Offer.is_active == True, Offer.start_date > now)
        elif status_filter == "expired":
            query = query.filter(Offer.end_date.isnot(None), Offer.end_date < now)

        return query.order_by(Offer.priority.desc(), Offer.created_at.desc()).all()

    @staticmethod
    def get_active_offers(
        db: Session,
        kind: Optional[str] = None,
        position: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Offer]:
        """Currently usable offers for banner display, most prominent first."""
        now = now or datetime.utcnow()
        query = db.query(Offer).filter(_usable_filter(now))

        kind_clause = _kind_filter(kind)
        if kind_clause is not None:
            query = query.filter(kind_clause)
        if position:
            query = query.filter(Offer.position == position)

        return query.order_by(Offer.priority.desc(), Offer.created_at.desc(), Offer.id.desc()).all()

    # ----------------------------------------------------------------
    # Admin lifecycle
    # ----------------------------------------------------------------
    @staticmethod
    def create_offer(db: Session, offer_data: OfferCreate) -> Offer:
        """Create a new offer (admin only)."""
        if offer_data.code and OfferService.get_offer_by_code(db, offer_data.code):
            raise OfferCodeConflict()

        offer = Offer(
            title=offer_data.title,
            description=offer_data.description,
            code=offer_data.code,
            type=offer_data.type,
            discount_type=offer_data.discount_type,
            discount_value=offer_data.discount_value,
            min_order_amount=offer_data.min_order_amount,
            max_uses=offer_data.max_uses,
            start_date=offer_data.start_date,
            end_date=offer_data.end_date,
            image=offer_data.image,
            button_text=offer_data.button_text or "Shop Now",
            button_link=offer_data.button_link or "/products",
            position=offer_data.position or DEFAULT_OFFER_POSITION,
            priority=offer_data.priority,
            is_active=offer_data.is_active,
        )

        db.add(offer)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent create using the same code.
            db.rollback()
            raise OfferCodeConflict()
        db.refresh(offer)

        logger.info("offer_created", offer_id=offer.id, code=offer.code, offer_type=offer.type.value)
        return offer

    @staticmethod
    def update_offer(db: Session, offer_id: int, offer_data: OfferUpdate) -> Offer:
        """Update an offer (admin only)."""
        offer = OfferService.get_offer(db, offer_id)
        update_data = {
            key: value
            for key, value in offer_data.model_dump(exclude_unset=True).items()
            if value is not None or key not in REQUIRED_OFFER_FIELDS
        }

        new_code = update_data.get("code")
        if new_code and new_code != offer.code and OfferService.get_offer_by_code(db, new_code):
            raise OfferCodeConflict()

        for key, value in update_data.items():
            setattr(offer, key, value)

        if offer.discount_type == DiscountType.PERCENTAGE and offer.discount_value > 100:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Percentage discount cannot exceed 100%"
            )
        if offer.max_uses is not None and offer.max_uses < offer.used_count:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"maxUses cannot be lower than the {offer.used_count} recorded uses",
            )
        if offer.end_date is not None and offer.end_date < offer.start_date:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="endDate must not be before startDate")

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise OfferCodeConflict()
        db.refresh(offer)

        logger.info("offer_updated", offer_id=offer.id, fields=sorted(update_data))
        return offer

    @staticmethod
    def delete_offer(db: Session, offer_id: int) -> bool:
        """
        Delete an offer (admin only).

        Redeemed offers stay auditable against past orders, so they are
        retired instead: deactivated and closed as of now.

        Returns True when the offer was retired rather than deleted.
        """
        offer = OfferService.get_offer(db, offer_id)

        if offer.used_count > 0:
            offer.is_active = False
            offer.end_date = datetime.utcnow()
            db.commit()
            logger.info("offer_retired", offer_id=offer.id, used_count=offer.used_count)
            return True

        db.delete(offer)
        db.commit()
        logger.info("offer_deleted", offer_id=offer_id)
        return False

    @staticmethod
    def get_offer_stats(db: Session) -> OfferStats:
        now = datetime.utcnow()
        total = db.query(func.count(Offer.id)).scalar() or 0
        active = db.query(func.count(Offer.id)).filter(
            Offer.is_active == True,
            Offer.start_date <= now,
            or_(Offer.end_date.is_(None), Offer.end_date >= now),
        ).scalar() or 0
        scheduled = db.query(func.count(Offer.id)).filter(
            Offer.is_active == True, Offer.start_date > now
        ).scalar() or 0
        expired = db.query(func.count(Offer.id)).filter(
            Offer.end_date.isnot(None), Offer.end_date < now
        ).scalar() or 0
        total_usage = db.query(func.coalesce(func.sum(Offer.used_count), 0)).scalar() or 0

        return OfferStats(
            total=total,
            active=active,
            scheduled=scheduled,
            expired=expired,
            total_usage=total_usage,
        )

    # ----------------------------------------------------------------
    # Discount codes
    # ----------------------------------------------------------------
    @staticmethod
    def validate_discount_code(
        db: Session,
        code: str,
        order_amount: float,
        now: Optional[datetime] = None,
    ) -> DiscountValidation:
        """
        Validate a discount code against an order amount and price it.

        Checks run in a fixed order so the rejection reason is deterministic:
        existence, active flag, window start, window end, usage cap, minimum
        order. Validation is a preview and never consumes a use.
        """
        now = now or datetime.utcnow()

        offer = OfferService.get_offer_by_code(db, code)
        if not offer:
            raise DiscountCodeNotFound()

        if not offer.is_active:
            raise OfferInactive()

        if now < offer.start_date:
            raise OfferNotYetStarted()

        if offer.end_date is not None and now > offer.end_date:
            raise OfferExpired()

        if offer.max_uses is not None and offer.used_count >= offer.max_uses:
            raise OfferUsageLimitReached()

        if offer.min_order_amount is not None and order_amount < offer.min_order_amount:
            raise MinimumOrderNotMet(
                minimum=offer.min_order_amount,
                shortfall=round(offer.min_order_amount - order_amount, 2),
                currency_symbol=settings.CURRENCY_SYMBOL,
            )

        discount_amount = calculate_discount(offer.discount_type, offer.discount_value, order_amount)
        return DiscountValidation(
            offer=offer,
            discount_amount=discount_amount,
            free_shipping=offer.discount_type == DiscountType.FREE_SHIPPING,
        )

    @staticmethod
    def redeem_offer(db: Session, offer_id: int) -> bool:
        """
        Consume one use of an offer.

        The cap check and the increment are a single conditional UPDATE so two
        concurrent redemptions cannot both take the last use. Runs inside the
        caller's transaction; returns False when no use was left.
        """
        result = db.execute(
            update(Offer)
            .where(
                Offer.id == offer_id,
                or_(Offer.max_uses.is_(None), Offer.used_count < Offer.max_uses),
            )
            .values(used_count=Offer.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        redeemed = result.rowcount == 1
        if redeemed:
            logger.info("offer_redeemed", offer_id=offer_id)
        else:
            logger.warning("offer_redemption_refused", offer_id=offer_id)
        return redeemed
