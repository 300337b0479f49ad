from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.exceptions import (
    DiscountCodeNotFound,
    MinimumOrderNotMet,
    OfferExpired,
    OfferInactive,
    OfferNotYetStarted,
    OfferUsageLimitReached,
)
from app.models.offer import DiscountType, OfferType
from app.services.offer_service import OfferService, calculate_discount
from tests.helpers import create_offer


def test_fixed_amount_discount_above_minimum(db_session: Session):
    create_offer(
        db_session,
        code="BABYCARE500",
        discount_type=DiscountType.FIXED_AMOUNT,
        discount_value=500.0,
        min_order_amount=2000.0,
    )

    validation = OfferService.validate_discount_code(db_session, "BABYCARE500", 2500.0)

    assert validation.discount_amount == 500.0
    assert validation.free_shipping is False
    assert validation.offer.code == "BABYCARE500"


def test_minimum_order_message_names_minimum_and_shortfall(db_session: Session):
    create_offer(
        db_session,
        code="BABYCARE500",
        discount_type=DiscountType.FIXED_AMOUNT,
        discount_value=500.0,
        min_order_amount=2000.0,
    )

    with pytest.raises(MinimumOrderNotMet) as exc_info:
        OfferService.validate_discount_code(db_session, "BABYCARE500", 1000.0)

    assert exc_info.value.message == (
        "Minimum order amount of ₹2000 required for this discount (add ₹1000 more)"
    )
    assert exc_info.value.minimum == 2000.0
    assert exc_info.value.shortfall == 1000.0
    assert exc_info.value.status_code == 400


def test_percentage_discount(db_session: Session):
    create_offer(db_session, code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_value=20.0)

    assert OfferService.validate_discount_code(db_session, "SAVE20", 1000.0).discount_amount == 200.0
    assert OfferService.validate_discount_code(db_session, "SAVE20", 10.0).discount_amount == 2.0


def test_discount_never_exceeds_order_amount():
    assert calculate_discount(DiscountType.FIXED_AMOUNT, 500.0, 300.0) == 300.0
    assert calculate_discount(DiscountType.FIXED_AMOUNT, 20.0, 10.0) == 10.0
    assert calculate_discount(DiscountType.PERCENTAGE, 100.0, 10.0) == 10.0
    assert calculate_discount(DiscountType.FREE_SHIPPING, 0.0, 999.0) == 0.0


def test_free_shipping_code_has_no_amount_discount(db_session: Session):
    create_offer(db_session, code="SHIPFREE", discount_type=DiscountType.FREE_SHIPPING, discount_value=0.0)

    validation = OfferService.validate_discount_code(db_session, "SHIPFREE", 750.0)

    assert validation.discount_amount == 0.0
    assert validation.free_shipping is True


def test_unknown_code_rejected(db_session: Session):
    with pytest.raises(DiscountCodeNotFound) as exc_info:
        OfferService.validate_discount_code(db_session, "NOPE", 100.0)
    assert exc_info.value.message == "Invalid discount code"


def test_code_match_is_case_sensitive(db_session: Session):
    create_offer(db_session, code="WELCOME10")

    with pytest.raises(DiscountCodeNotFound):
        OfferService.validate_discount_code(db_session, "welcome10", 100.0)


def test_inactive_offer_rejected(db_session: Session):
    create_offer(db_session, code="PAUSED", is_active=False)

    with pytest.raises(OfferInactive):
        OfferService.validate_discount_code(db_session, "PAUSED", 100.0)


def test_expired_offer_rejected(db_session: Session):
    now = datetime.utcnow()
    create_offer(db_session, code="OLD", start_date=now - timedelta(days=10), end_date=now - timedelta(days=1))

    with pytest.raises(OfferExpired) as exc_info:
        OfferService.validate_discount_code(db_session, "OLD", 100.0)
    assert exc_info.value.message == "This discount code has expired"


def test_not_yet_started_offer_rejected(db_session: Session):
    now = datetime.utcnow()
    create_offer(db_session, code="SOON", start_date=now + timedelta(days=1), end_date=now + timedelta(days=5))

    with pytest.raises(OfferNotYetStarted) as exc_info:
        OfferService.validate_discount_code(db_session, "SOON", 100.0)
    assert exc_info.value.message == "This discount code is not yet active"


def test_checks_run_in_fixed_order(db_session: Session):
    # Inactive and expired and below minimum: the active flag is reported first.
    now = datetime.utcnow()
    create_offer(
        db_session,
        code="MANY",
        is_active=False,
        start_date=now - timedelta(days=10),
        end_date=now - timedelta(days=1),
        min_order_amount=5000.0,
    )

    with pytest.raises(OfferInactive):
        OfferService.validate_discount_code(db_session, "MANY", 100.0)


def test_usage_cap_reported_before_minimum(db_session: Session):
    create_offer(db_session, code="CAPPED", max_uses=1, used_count=1, min_order_amount=5000.0)

    with pytest.raises(OfferUsageLimitReached):
        OfferService.validate_discount_code(db_session, "CAPPED", 100.0)


def test_validation_does_not_consume_uses(db_session: Session):
    offer = create_offer(db_session, code="PREVIEW", max_uses=1)

    for _ in range(3):
        OfferService.validate_discount_code(db_session, "PREVIEW", 100.0)

    db_session.refresh(offer)
    assert offer.used_count == 0


def test_redemption_cap(db_session: Session):
    offer = create_offer(db_session, code="LIMITED", max_uses=3)

    results = []
    for _ in range(3):
        results.append(OfferService.redeem_offer(db_session, offer.id))
        db_session.commit()

    assert results == [True, True, True]

    with pytest.raises(OfferUsageLimitReached):
        OfferService.validate_discount_code(db_session, "LIMITED", 100.0)

    assert OfferService.redeem_offer(db_session, offer.id) is False
    db_session.commit()
    db_session.refresh(offer)
    assert offer.used_count == 3


def test_unlimited_offer_redeems_freely(db_session: Session):
    offer = create_offer(db_session, code="OPEN", max_uses=None)

    for _ in range(5):
        assert OfferService.redeem_offer(db_session, offer.id) is True
    db_session.commit()

    db_session.refresh(offer)
    assert offer.used_count == 5


def test_active_offers_filter_by_kind_and_order_by_priority(db_session: Session):
    create_offer(db_session, title="Code only", type=OfferType.DISCOUNT_CODE, priority=5)
    create_offer(db_session, title="Hero banner", type=OfferType.BANNER, priority=1)
    create_offer(db_session, title="Both", type=OfferType.BOTH, priority=9)
    create_offer(db_session, title="Hidden", type=OfferType.BANNER, is_active=False, priority=100)
    create_offer(db_session, title="Used up", type=OfferType.BANNER, max_uses=1, used_count=1, priority=50)

    banners = OfferService.get_active_offers(db_session, kind="BANNER")
    assert [offer.title for offer in banners] == ["Both", "Hero banner"]

    everything = OfferService.get_active_offers(db_session)
    assert [offer.title for offer in everything] == ["Both", "Code only", "Hero banner"]

    assert [offer.title for offer in OfferService.get_active_offers(db_session, kind="BOTH")] == ["Both"]


def test_active_offers_filter_by_position(db_session: Session):
    create_offer(db_session, title="Hero", type=OfferType.BANNER, position="home-hero")
    create_offer(db_session, title="Sidebar", type=OfferType.BANNER, position="sidebar")

    offers = OfferService.get_active_offers(db_session, kind="BANNER", position="sidebar")

    assert [offer.title for offer in offers] == ["Sidebar"]


def test_use_endpoint_returns_priced_offer(client: TestClient, db_session: Session):
    create_offer(
        db_session,
        title="BabyCare 500 off",
        code="BABYCARE500",
        discount_type=DiscountType.FIXED_AMOUNT,
        discount_value=500.0,
        min_order_amount=2000.0,
    )

    response = client.post("/api/v1/offers/use", json={"code": "BABYCARE500", "orderAmount": 2500})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["valid"] is True
    assert body["data"]["offer"]["discountAmount"] == 500.0
    assert body["data"]["offer"]["discountType"] == "FIXED_AMOUNT"
    assert body["data"]["offer"]["freeShipping"] is False


def test_use_endpoint_rejects_below_minimum(client: TestClient, db_session: Session):
    create_offer(
        db_session,
        code="BABYCARE500",
        discount_type=DiscountType.FIXED_AMOUNT,
        discount_value=500.0,
        min_order_amount=2000.0,
    )

    response = client.post("/api/v1/offers/use", json={"code": "BABYCARE500", "orderAmount": 1000})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "2000" in body["message"]
    assert "1000" in body["message"]
    assert body["errors"][0]["code"] == "MINIMUM_ORDER_NOT_MET"


def test_use_endpoint_rejects_unknown_fields(client: TestClient):
    response = client.post("/api/v1/offers/use", json={"code": "X", "orderAmount": 10, "userId": "u1"})

    assert response.status_code == 422


def test_use_endpoint_requires_positive_amount(client: TestClient):
    response = client.post("/api/v1/offers/use", json={"code": "X", "orderAmount": 0})

    assert response.status_code == 422


def test_public_offer_listing(client: TestClient, db_session: Session):
    create_offer(db_session, title="Summer banner", type=OfferType.BANNER, image="https://cdn.example/banner.jpg")
    create_offer(db_session, title="Code", type=OfferType.DISCOUNT_CODE, code="SECRET")

    response = client.get("/api/v1/offers/", params={"type": "BANNER"})

    assert response.status_code == 200
    titles = [offer["title"] for offer in response.json()["data"]]
    assert titles == ["Summer banner"]
    assert response.json()["data"][0]["buttonText"] == "Shop Now"


def test_public_offer_listing_rejects_unknown_type(client: TestClient):
    response = client.get("/api/v1/offers/", params={"type": "POPUP"})

    assert response.status_code == 400
