import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.cart_service.main import calculate_total, create_app
from storefront.shared.config import CartSettings

from conftest import auth_header, make_settings

MUG = {"id": "p1", "name": "Mug", "price": 10, "category": "kitchen", "image_url": "mug.png", "stock": 4}
TEA = {"id": "p2", "name": "Tea", "price": 5, "category": "pantry", "image_url": "", "stock": 9}


@pytest.fixture
def client(mongo_client, upstream):
    upstream.add("GET", "/api/products/p1", json=MUG)
    upstream.add("GET", "/api/products/p2", json=TEA)
    app = create_app(make_settings(CartSettings), mongodb_client=mongo_client, transport=upstream.transport)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers(user_token):
    return auth_header(user_token)


def add_item(client, headers, product_id, quantity=None):
    body = {"product_id": product_id}
    if quantity is not None:
        body["quantity"] = quantity
    return client.post("/api/cart/items", json=body, headers=headers)


def test_get_creates_empty_cart(client, headers):
    resp = client.get("/api/cart", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "total": 0}


def test_add_item_snapshots_product(client, headers):
    resp = add_item(client, headers, "p1", 2)

    assert resp.status_code == 200
    assert resp.json() == {
        "items": [{"product_id": "p1", "name": "Mug", "price": 10, "quantity": 2, "image_url": "mug.png"}],
        "total": 20,
    }


def test_add_defaults_to_one(client, headers):
    assert add_item(client, headers, "p2").json()["items"][0]["quantity"] == 1


def test_adding_same_product_merges_quantity(client, headers):
    add_item(client, headers, "p1", 1)
    resp = add_item(client, headers, "p1", 2)

    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 3


def test_total_is_sum_of_lines(client, headers):
    add_item(client, headers, "p1", 2)
    add_item(client, headers, "p2", 1)

    cart = client.get("/api/cart", headers=headers).json()
    assert cart["total"] == 25
    assert [i["product_id"] for i in cart["items"]] == ["p1", "p2"]


def test_snapshot_is_not_live(client, upstream, headers):
    add_item(client, headers, "p1", 1)
    upstream.add("GET", "/api/products/p1", json=dict(MUG, price=99))

    assert client.get("/api/cart", headers=headers).json()["items"][0]["price"] == 10


def test_carts_are_per_user(client, headers, admin_token):
    add_item(client, headers, "p1", 1)
    assert client.get("/api/cart", headers=auth_header(admin_token)).json()["items"] == []


def test_unknown_product(client, headers):
    resp = add_item(client, headers, "missing")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Product not found"}


def test_product_service_down(client, upstream, headers):
    upstream.add("GET", "/api/products/p1", exc=httpx.ConnectError)

    resp = add_item(client, headers, "p1")
    assert resp.status_code == 502
    assert resp.json() == {"message": "Product service unavailable"}


def test_add_rejects_zero_quantity(client, headers):
    resp = add_item(client, headers, "p1", 0)
    assert resp.status_code == 400
    assert "quantity" in resp.json()["errors"]


def test_update_quantity(client, headers):
    add_item(client, headers, "p1", 1)

    resp = client.put("/api/cart/items/p1", json={"quantity": 5}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["items"][0]["quantity"] == 5
    assert resp.json()["total"] == 50


def test_update_rejects_quantity_below_one(client, headers):
    add_item(client, headers, "p1", 1)

    resp = client.put("/api/cart/items/p1", json={"quantity": 0}, headers=headers)
    assert resp.status_code == 400
    assert "quantity" in resp.json()["errors"]
    assert client.get("/api/cart", headers=headers).json()["items"][0]["quantity"] == 1


def test_update_missing_item(client, headers):
    add_item(client, headers, "p1", 1)

    resp = client.put("/api/cart/items/p2", json={"quantity": 2}, headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"message": "Item not found in cart"}


def test_update_without_cart(client, headers):
    resp = client.put("/api/cart/items/p1", json={"quantity": 2}, headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"message": "Cart not found"}


def test_remove_item(client, headers):
    add_item(client, headers, "p1", 1)
    add_item(client, headers, "p2", 2)

    resp = client.delete("/api/cart/items/p1", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {
        "items": [{"product_id": "p2", "name": "Tea", "price": 5, "quantity": 2, "image_url": ""}],
        "total": 10,
    }


def test_clear_cart(client, headers):
    add_item(client, headers, "p1", 3)

    resp = client.delete("/api/cart", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "total": 0}
    assert client.get("/api/cart", headers=headers).json()["items"] == []


def test_clear_without_cart(client, headers):
    assert client.delete("/api/cart", headers=headers).status_code == 404


def test_accepts_x_auth_token(client, user_token):
    resp = client.get("/api/cart", headers={"x-auth-token": user_token})
    assert resp.status_code == 200


def test_requires_token(client):
    assert client.get("/api/cart").status_code == 401


def test_calculate_total_uses_exact_decimal_sum():
    items = [{"price": 0.1, "quantity": 3}, {"price": 0.2, "quantity": 1}]
    assert calculate_total(items) == 0.5
