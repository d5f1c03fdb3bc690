import re

from fastapi.testclient import TestClient
from sqlalchemy import select

import catalog
import identity
import orders
from errors import EmailDeliveryError
from main import create_app
from models import User
from notifications import Mailer


def register(client, email="new@example.com", password="secret123"):
    return client.post("/api/auth/register", json={"full_name": "New Shopper", "email": email, "password": password})


def reset_token_from(message):
    text = message.get_body(preferencelist=("plain",)).get_content()
    return re.search(r"/reset-password/([0-9a-f]+)", text).group(1)


# ---------------------- Root & Health ----------------------

def test_root_and_health(client):
    assert client.get("/").json() == {"message": "FreshMart FastAPI Backend Running"}

    health = client.get("/test").json()
    assert health["connection_status"] == "Connected"
    assert health["database_url"] == "sqlite://"
    assert "orders" in health["tables"]


# ---------------------- Auth ----------------------

def test_register_login_and_me(client):
    res = register(client)
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "user"
    assert "password" not in body["user"]

    res = client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret123"})
    assert res.status_code == 200
    token = res.json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["full_name"] == "New Shopper"


def test_register_duplicate_and_invalid(client):
    register(client)

    dup = register(client, email="NEW@example.com")
    assert dup.status_code == 409
    assert dup.json() == {"success": False, "message": "User with this email already exists"}

    short = register(client, email="short@example.com", password="123")
    assert short.status_code == 400
    assert short.json()["success"] is False


def test_login_failures_and_missing_token(client, user):
    res = client.post("/api/auth/login", json={"email": user.email, "password": "wrong"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid credentials"

    assert client.get("/api/auth/me").status_code == 401
    bad = client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401


def test_forgot_and_reset_password(client, user, mailer):
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    known = client.post("/api/auth/forgot-password", json={"email": user.email})

    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()
    assert len(mailer.sent) == 1
    recipient, message = mailer.sent[0]
    assert recipient == user.email

    token = reset_token_from(message)
    res = client.post(f"/api/auth/reset-password/{token}", json={"password": "fresh-pass"})
    assert res.status_code == 200

    again = client.post(f"/api/auth/reset-password/{token}", json={"password": "other-pass"})
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired token"

    login = client.post("/api/auth/login", json={"email": user.email, "password": "fresh-pass"})
    assert login.status_code == 200


class UndeliverableMailer(Mailer):
    def send(self, message, recipient):
        raise EmailDeliveryError()


def test_forgot_password_survives_mail_failure(settings, db, user):
    identity.generate_password_reset_token(db, user.email)

    with TestClient(create_app(settings, db, UndeliverableMailer())) as failing_client:
        res = failing_client.post("/api/auth/forgot-password", json={"email": user.email})
        unknown = failing_client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

        assert res.status_code == 200
        assert res.json() == unknown.json()
        with db.session() as session:
            stored = session.scalars(select(User).where(User.id == user.id)).one()
            assert stored.reset_password_token is None
            assert stored.reset_password_expire is None


def test_change_password(client, user, auth_headers):
    headers = auth_headers(user)
    wrong = client.post(
        "/api/auth/change-password",
        json={"current_password": "nope", "new_password": "another1"},
        headers=headers,
    )
    assert wrong.status_code == 401

    ok = client.put(
        "/api/users/change-password",
        json={"current_password": "secret123", "new_password": "another1"},
        headers=headers,
    )
    assert ok.status_code == 200
    assert client.post("/api/auth/login", json={"email": user.email, "password": "another1"}).status_code == 200


# ---------------------- Catalog ----------------------

def test_product_listing_and_detail(client, bananas, milk):
    res = client.get("/api/products", params={"minPrice": 2, "maxPrice": 4})
    assert res.status_code == 200
    body = res.json()
    assert [p["id"] for p in body["products"]] == [milk.id]
    assert body["total"] == 1

    detail = client.get(f"/api/products/{bananas.id}").json()
    assert detail["product"]["name"] == "Organic Bananas"
    assert [p["id"] for p in detail["related_products"]] == [milk.id]

    assert client.get("/api/products/9999").status_code == 404


def test_catalog_writes_require_admin(client, user, admin, category, auth_headers):
    payload = {"name": "Rye Bread", "price": 2.5, "category_id": category.id, "stock": 10}

    assert client.post("/api/products", json=payload).status_code == 401
    forbidden = client.post("/api/products", json=payload, headers=auth_headers(user))
    assert forbidden.status_code == 403
    assert forbidden.json()["message"] == "Not authorized as admin"

    created = client.post("/api/admin/products", json=payload, headers=auth_headers(admin))
    assert created.status_code == 201
    product_id = created.json()["product"]["id"]

    updated = client.put(f"/api/products/{product_id}", json={"stock": 3}, headers=auth_headers(admin))
    assert updated.json()["product"]["stock"] == 3

    in_use = client.delete(f"/api/admin/categories/{category.id}", headers=auth_headers(admin))
    assert in_use.status_code == 409

    assert client.delete(f"/api/products/{product_id}", headers=auth_headers(admin)).status_code == 200
    assert client.delete(f"/api/categories/{category.id}", headers=auth_headers(admin)).status_code == 200


def test_category_listing(client, category, bananas):
    body = client.get("/api/categories").json()
    assert body["categories"][0]["product_count"] == 1

    detail = client.get(f"/api/categories/{category.id}").json()
    assert [p["id"] for p in detail["products"]] == [bananas.id]


# ---------------------- Cart & Orders ----------------------

def test_cart_to_order_flow(client, db, user, bananas, milk, auth_headers):
    headers = auth_headers(user)

    client.post("/api/cart/add", json={"product_id": bananas.id, "quantity": 1}, headers=headers)
    client.post("/api/cart/add", json={"product_id": bananas.id, "quantity": 1}, headers=headers)
    res = client.post("/api/cart/add", json={"product_id": milk.id}, headers=headers)
    cart_body = res.json()["cart"]
    assert cart_body["item_count"] == 2
    assert cart_body["subtotal"] == 7.47

    missing = client.post("/api/cart/add", json={"product_id": 9999}, headers=headers)
    assert missing.status_code == 404

    res = client.post(
        "/api/orders",
        json={
            "shipping_address": "12 Market Street",
            "payment_method": "cod",
            "items": [
                {"product_id": bananas.id, "quantity": 2, "price": 1.99},
                {"product_id": milk.id, "quantity": 1, "price": 3.49},
            ],
        },
        headers=headers,
    )
    assert res.status_code == 201
    order = res.json()["order"]
    assert order["total_amount"] == 7.47
    assert order["status"] == "pending"

    assert client.get("/api/cart", headers=headers).json()["cart"]["items"] == []
    mine = client.get("/api/orders/my-orders", headers=headers).json()
    assert [o["id"] for o in mine["orders"]] == [order["id"]]

    cancelled = client.put(f"/api/orders/{order['id']}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert catalog.find_product(db, bananas.id).stock == 50

    again = client.put(f"/api/orders/{order['id']}/cancel", headers=headers)
    assert again.status_code == 400
    assert again.json()["message"] == "Order cannot be cancelled as it is already cancelled"


def test_order_failures(client, user, bananas, auth_headers):
    headers = auth_headers(user)
    base = {"shipping_address": "12 Market Street", "payment_method": "cod"}

    empty = client.post("/api/orders", json={**base, "items": []}, headers=headers)
    assert empty.status_code == 400

    too_many = client.post(
        "/api/orders", json={**base, "items": [{"product_id": bananas.id, "quantity": 51}]}, headers=headers
    )
    assert too_many.status_code == 409

    stale = client.post(
        "/api/orders",
        json={**base, "items": [{"product_id": bananas.id, "quantity": 1, "price": 1.49}]},
        headers=headers,
    )
    assert stale.status_code == 400


def test_order_visibility(client, db, make_user, admin, bananas, auth_headers):
    owner = make_user(email="owner@example.com")
    other = make_user(email="other@example.com")
    order = orders.create_order(db, owner.id, "1 Main St", "card", [{"product_id": bananas.id, "quantity": 1}])

    assert client.get(f"/api/orders/{order.id}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/api/orders/{order.id}", headers=auth_headers(other)).status_code == 404
    assert client.get(f"/api/orders/{order.id}", headers=auth_headers(admin)).status_code == 200
    assert client.get("/api/orders", headers=auth_headers(other)).status_code == 403


# ---------------------- Users & Admin ----------------------

def test_profile_and_wishlist(client, user, bananas, auth_headers):
    headers = auth_headers(user)

    res = client.put("/api/users/profile", json={"city": "Pune", "pincode": "411001"}, headers=headers)
    assert res.json()["user"]["city"] == "Pune"
    assert client.get("/api/users/profile", headers=headers).json()["user"]["pincode"] == "411001"

    added = client.post("/api/users/wishlist", json={"product_id": bananas.id}, headers=headers)
    assert added.status_code == 201
    entry_id = added.json()["wishlist"][0]["id"]

    dup = client.post("/api/users/wishlist", json={"product_id": bananas.id}, headers=headers)
    assert dup.status_code == 409

    removed = client.delete(f"/api/users/wishlist/{entry_id}", headers=headers)
    assert removed.json()["wishlist"] == []


def test_admin_dashboard_and_order_status(client, db, user, admin, bananas, auth_headers):
    order = orders.create_order(db, user.id, "1 Main St", "card", [{"product_id": bananas.id, "quantity": 2}])
    headers = auth_headers(admin)

    stats = client.get("/api/admin/dashboard", headers=headers).json()["stats"]
    assert stats["total_orders"] == 1
    assert stats["top_products"][0]["sales"] == 2

    bad = client.put(f"/api/admin/orders/{order.id}/status", json={"status": "lost"}, headers=headers)
    assert bad.status_code == 400

    res = client.put(f"/api/orders/{order.id}/status", json={"status": "shipped"}, headers=headers)
    assert res.json()["order"]["status"] == "shipped"
    detail = client.get(f"/api/admin/orders/{order.id}", headers=headers).json()["order"]
    assert detail["user"]["email"] == user.email


def test_admin_user_management(client, user, admin, auth_headers):
    headers = auth_headers(admin)

    listed = client.get("/api/admin/users", headers=headers).json()
    assert listed["count"] == 2

    created = client.post(
        "/api/admin/users",
        json={"full_name": "Clerk", "email": "clerk@example.com", "password": "clerk123", "city": "Goa"},
        headers=headers,
    )
    assert created.status_code == 201
    clerk_id = created.json()["user"]["id"]
    assert created.json()["user"]["city"] == "Goa"

    updated = client.put(f"/api/admin/users/{clerk_id}", json={"role": "admin"}, headers=headers)
    assert updated.json()["user"]["role"] == "admin"

    bad_role = client.put(f"/api/admin/users/{user.id}", json={"role": "owner"}, headers=headers)
    assert bad_role.status_code == 400

    assert client.delete(f"/api/admin/users/{user.id}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/users/{user.id}", headers=headers).status_code == 404


def test_last_admin_cannot_be_deleted_over_http(client, admin, auth_headers):
    res = client.delete(f"/api/admin/users/{admin.id}", headers=auth_headers(admin))
    assert res.status_code == 409
    assert res.json()["message"] == "Cannot delete the last admin user"
