from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.cart import CartItem
from app.services.cart_service import load_cart_snapshot
from app.services.order_service import compute_order_totals
from tests.helpers import auth_headers, create_cart, create_product, payment_event, post_webhook

CART_URL = "/api/v1/cart/"


def test_cart_requires_authentication(client: TestClient):
    assert client.get(CART_URL).status_code == 401


def test_empty_cart_is_created_on_first_visit(client: TestClient, customer_headers):
    response = client.get(CART_URL, headers=customer_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["items"] == []
    assert data["subtotal"] == 0.0


def test_adding_same_product_merges_quantity(client: TestClient, db_session: Session, customer_headers):
    product = create_product(db_session, "Baby Blanket", 450.0)

    client.post(CART_URL, json={"product_id": product.id, "quantity": 1}, headers=customer_headers)
    response = client.post(CART_URL, json={"product_id": product.id, "quantity": 2}, headers=customer_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["items"]) == 1
    assert data["items"][0]["quantity"] == 3
    assert data["subtotal"] == 1350.0
    assert data["total_items"] == 3


def test_unknown_product_is_404(client: TestClient, customer_headers):
    response = client.post(CART_URL, json={"product_id": 999, "quantity": 1}, headers=customer_headers)

    assert response.status_code == 404


def test_setting_quantity_to_zero_removes_line(client: TestClient, db_session: Session, customer_headers):
    product = create_product(db_session, "Teether", 120.0)
    added = client.post(CART_URL, json={"product_id": product.id}, headers=customer_headers)
    item_id = added.json()["data"]["items"][0]["id"]

    response = client.put(f"{CART_URL}{item_id}", json={"quantity": 0}, headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["data"]["items"] == []


def test_cannot_touch_another_users_item(client: TestClient, db_session: Session, customer_headers):
    product = create_product(db_session, "Rattle", 80.0)
    cart = create_cart(db_session, "other_user", [(product, 1)])
    item = db_session.query(CartItem).filter(CartItem.cart_id == cart.id).one()

    response = client.delete(f"{CART_URL}{item.id}", headers=customer_headers)

    assert response.status_code == 404


def test_snapshot_uses_current_prices(db_session: Session):
    product = create_product(db_session, "Car Seat", 5000.0)
    cart = create_cart(db_session, "user_123", [(product, 2)])
    product.price = 4500.0
    db_session.commit()

    snapshot = load_cart_snapshot(db_session, cart.id, "user_123")

    assert snapshot.subtotal == 9000.0
    assert load_cart_snapshot(db_session, cart.id, "intruder") is None


def test_order_totals():
    totals = compute_order_totals(subtotal=1500.0, tax_rate=0.08, shipping_amount=50.0, discount_amount=2000.0)

    assert totals.tax_amount == 120.0
    assert totals.discount_amount == 1550.0
    assert totals.total_amount == 120.0


def test_orders_are_listed_for_their_owner_only(client: TestClient, db_session: Session, customer_headers):
    product = create_product(db_session, "Swaddle", 700.0)
    cart = create_cart(db_session, "user_123", [(product, 1)])
    post_webhook(
        client,
        payment_event("payment.captured", "pay_history_001", {"user_id": "user_123", "cart_id": cart.id}, amount=75600),
    )

    mine = client.get("/api/v1/orders/", headers=customer_headers)
    assert mine.status_code == 200
    assert len(mine.json()["data"]) == 1
    order_number = mine.json()["data"][0]["order_number"]
    assert mine.json()["data"][0]["payments"][0]["status"] == "completed"

    detail = client.get(f"/api/v1/orders/{order_number}", headers=customer_headers)
    assert detail.json()["data"]["total_amount"] == 756.0

    stranger = auth_headers("user_999", "stranger@example.com")
    assert client.get("/api/v1/orders/", headers=stranger).json()["data"] == []
    assert client.get(f"/api/v1/orders/{order_number}", headers=stranger).status_code == 404


def test_admin_sees_all_orders(client: TestClient, db_session: Session, admin_headers):
    product = create_product(db_session, "Bib Set", 300.0)
    for index, user_id in enumerate(["user_a", "user_b"]):
        cart = create_cart(db_session, user_id, [(product, 1)])
        post_webhook(
            client,
            payment_event("payment.captured", f"pay_admin_{index}", {"user_id": user_id, "cart_id": cart.id}),
        )

    response = client.get("/api/v1/admin/orders", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["meta"]["total"] == 2
    assert len(response.json()["data"]) == 2
