from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Enum, Text, Index
from datetime import datetime
import enum
from app.db.base_class import Base


class OfferType(str, enum.Enum):
    DISCOUNT_CODE = "DISCOUNT_CODE"
    BANNER = "BANNER"
    BOTH = "BOTH"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"


DEFAULT_OFFER_POSITION = "home-hero"


class Offer(Base):
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    code = Column(String(50), unique=True, nullable=True, index=True)  # Case-sensitive

    type = Column(Enum(OfferType), nullable=False)
    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Float, nullable=False)  # Percentage (0-100) or currency amount

    min_order_amount = Column(Float, nullable=True)
    max_uses = Column(Integer, nullable=True)  # None = unlimited
    used_count = Column(Integer, default=0, nullable=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)

    # Banner display
    image = Column(String(500), nullable=True)
    button_text = Column(String(50), default="Shop Now")
    button_link = Column(String(255), default="/products")
    position = Column(String(50), default=DEFAULT_OFFER_POSITION, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


Index("idx_offer_active_window", Offer.is_active, Offer.start_date, Offer.end_date)
