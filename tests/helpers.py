import hashlib
import hmac
import json
from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.cart import Cart, CartItem
from app.models.offer import DiscountType, Offer, OfferType
from app.models.product import Product

WEBHOOK_URL = "/api/v1/payments/webhook"


class FakePushGateway:
    """Records multicast calls; tokens listed in ``failing`` are rejected."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.error = None

    def send_multicast(self, tokens, title, body, data):
        self.calls.append({"tokens": list(tokens), "title": title, "body": body, "data": dict(data)})
        if self.error is not None:
            raise self.error
        return [token not in self.failing for token in tokens]


def make_token(user_id: str, email: str = "", first_name: str = None, last_name: str = None) -> str:
    claims = {"sub": user_id, "email": email}
    if first_name:
        claims["first_name"] = first_name
    if last_name:
        claims["last_name"] = last_name
    return jwt.encode(claims, settings.IDENTITY_JWT_KEY, algorithm=settings.IDENTITY_JWT_ALGORITHM)


def auth_headers(user_id: str, email: str = "", **names) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email, **names)}"}


def create_offer(db: Session, **overrides) -> Offer:
    now = datetime.utcnow()
    values = {
        "title": "Offer",
        "code": None,
        "type": OfferType.DISCOUNT_CODE,
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 10.0,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=30),
        "is_active": True,
    }
    values.update(overrides)
    offer = Offer(**values)
    db.add(offer)
    db.commit()
    db.refresh(offer)
    return offer


def create_product(db: Session, name: str, price: float) -> Product:
    product = Product(name=name, slug=name.lower().replace(" ", "-"), price=price, is_active=True)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def create_cart(db: Session, auth_user_id: str, lines, email: str = "parent@example.com") -> Cart:
    """``lines`` is a list of (product, quantity) pairs."""
    cart = Cart(auth_user_id=auth_user_id, user_email=email, user_name="Asha Mehta")
    db.add(cart)
    db.flush()
    for product, quantity in lines:
        db.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity, product_name=product.name))
    db.commit()
    db.refresh(cart)
    return cart


def payment_event(event: str, payment_id: str, notes, amount: int = 0, **entity_fields) -> dict:
    entity = {
        "id": payment_id,
        "entity": "payment",
        "order_id": "order_test_001",
        "amount": amount,
        "currency": "INR",
        "status": "captured" if event == "payment.captured" else "failed",
        "method": "upi",
        "email": "parent@example.com",
        "notes": notes,
    }
    entity.update(entity_fields)
    return {
        "entity": "event",
        "event": event,
        "contains": ["payment"],
        "payload": {"payment": {"entity": entity}},
    }


def post_webhook(client: TestClient, event: dict, secret: str = None, signature: str = None):
    body = json.dumps(event).encode("utf-8")
    if signature is None:
        key = (secret or settings.RAZORPAY_WEBHOOK_SECRET).encode("utf-8")
        signature = hmac.new(key, body, hashlib.sha256).hexdigest()
    headers = {"Content-Type": "application/json"}
    if signature:
        headers["X-Razorpay-Signature"] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


class RecordingTask:
    """Stands in for a Celery task; records ``delay`` calls or raises ``error``."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def delay(self, *args, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs or args)
