import json
import logging
import sys
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from storefront.cart_service.main import create_app as create_cart_app
from storefront.order_service.main import create_app as create_order_app
from storefront.product_service.main import create_app as create_product_app
from storefront.user_service.main import create_app as create_user_app
from storefront.shared.config import CartSettings, OrderSettings, ProductSettings, ServiceSettings, UserSettings
from storefront.shared.logging_config import JSONFormatter
from storefront.shared.security_config import sanitize_input, validate_password_strength
from storefront.shared.utils import (
    NotFoundException, Principal, UnauthorizedException,
    create_access_token, hash_password, str_to_oid, verify_password, verify_token
)

from conftest import JWT_SECRET, auth_header, make_settings, make_token


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.mark.parametrize("factory, settings_cls, name", [
    (create_product_app, ProductSettings, "product-service"),
    (create_user_app, UserSettings, "user-service"),
    (create_cart_app, CartSettings, "cart-service"),
    (create_order_app, OrderSettings, "order-service"),
])
def test_health(mongo_client, factory, settings_cls, name):
    with TestClient(factory(make_settings(settings_cls), mongodb_client=mongo_client)) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"service": name, "status": "ok", "version": "1.0.0"}
    assert resp.headers["x-content-type-options"] == "nosniff"


@pytest.fixture
def product_client(mongo_client):
    with TestClient(
        create_product_app(make_settings(ProductSettings, LOG_LEVEL="INFO"), mongodb_client=mongo_client)
    ) as client:
        yield client


def test_request_id_is_echoed(product_client):
    resp = product_client.get("/api/products", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["x-request-id"] == "abc-123"


def test_request_id_is_generated(product_client):
    assert product_client.get("/api/products").headers["x-request-id"]


def test_request_log_masks_credentials(product_client):
    handler = ListHandler()
    service_logger = logging.getLogger("product-service")
    service_logger.addHandler(handler)
    try:
        product_client.get("/api/products", headers=auth_header(make_token()))
    finally:
        service_logger.removeHandler(handler)

    record = next(r for r in handler.records if r.getMessage() == "Request Processed")
    assert record.headers["authorization"] == "***"
    assert record.path == "/api/products"
    assert record.status_code == 200


def test_request_log_records_caller(product_client):
    handler = ListHandler()
    service_logger = logging.getLogger("product-service")
    service_logger.addHandler(handler)
    try:
        product_client.post(
            "/api/products",
            json={"name": "Mug", "price": 10, "category": "kitchen"},
            headers=auth_header(make_token("u-42", role="admin"))
        )
    finally:
        service_logger.removeHandler(handler)

    record = next(r for r in handler.records if r.getMessage() == "Request Processed")
    assert record.status_code == 201
    assert record.user_id == "u-42"


def test_json_formatter_includes_request_fields():
    record = logging.LogRecord("order-service", logging.INFO, __file__, 10, "Order placed", None, None)
    record.order_id = "o1"
    record.user_id = "u1"

    line = json.loads(JSONFormatter("order-service").format(record))

    assert line["service"] == "order-service"
    assert line["level"] == "INFO"
    assert line["message"] == "Order placed"
    assert line["order_id"] == "o1"
    assert line["user_id"] == "u1"
    assert "status_code" not in line


def test_json_formatter_includes_traceback():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord(
            "cart-service", logging.ERROR, __file__, 10, "Failed", None, sys.exc_info()
        )

    line = json.loads(JSONFormatter("cart-service").format(record))
    assert "ValueError: boom" in line["exception"]


class TestTokens:
    settings = make_settings(ServiceSettings)

    def test_round_trip_keeps_identity(self):
        token = create_access_token(Principal(id="u1", role="admin"), self.settings)
        principal = verify_token(token, self.settings)

        assert principal.id == "u1"
        assert principal.is_admin

    def test_expired_token_rejected(self):
        token = create_access_token(Principal(id="u1"), self.settings, expires_delta=timedelta(seconds=-5))
        with pytest.raises(UnauthorizedException):
            verify_token(token, self.settings)

    def test_foreign_secret_rejected(self):
        other = make_settings(ServiceSettings, JWT_SECRET=JWT_SECRET + "-other")
        token = create_access_token(Principal(id="u1"), other)
        with pytest.raises(UnauthorizedException):
            verify_token(token, self.settings)


def test_password_hash_verifies_only_original():
    hashed = hash_password("Secret123")

    assert hashed != "Secret123"
    assert verify_password("Secret123", hashed)
    assert not verify_password("secret123", hashed)


@pytest.mark.parametrize("password, ok", [
    ("Secret123", True),
    ("Short1A", False),
    ("alllowercase1", False),
    ("ALLUPPERCASE1", False),
    ("NoDigitsHere", False),
])
def test_password_strength(password, ok):
    assert validate_password_strength(password) is ok


def test_sanitize_input_escapes_markup():
    assert sanitize_input("  <b>Mug</b> ") == "&lt;b&gt;Mug&lt;/b&gt;"


def test_malformed_id_is_not_found():
    with pytest.raises(NotFoundException) as exc_info:
        str_to_oid("not-an-id", "Order not found")
    assert exc_info.value.detail == "Order not found"
