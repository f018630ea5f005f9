"""
Tests for Shopify webhook intake through the HTTP API.

Covers:
  - Valid signature writes the order / customer
  - Missing or wrong signature is rejected with 401
  - Unknown or missing shop domain is rejected with 400
  - Missing webhook secret is a configuration error
"""
import json

import pytest
from fastapi.testclient import TestClient

from storesync.main import app
from storesync.models import ShopifyCustomer, ShopifyOrder
from storesync.services.webhook_service import compute_shopify_hmac, verify_shopify_hmac

SHOP = "acme.myshopify.com"
SECRET = "shpss_test_secret"

ORDER = {
    "id": 5551,
    "order_number": 1001,
    "email": "Buyer@Example.com",
    "created_at": "2025-01-05T10:00:00+00:00",
    "total_price": "42.50",
    "subtotal_price": "40.00",
    "line_items": [{"sku": "SKU-1", "quantity": 2}],
}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def shop(gateway):
    gateway.add("org1", "shopify", host=SHOP, token="tok", secret=SECRET)
    return gateway


def _post(client, path, payload, secret=SECRET, domain=SHOP, signature=None):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if domain:
        headers["X-Shopify-Shop-Domain"] = domain
    if secret:
        headers["X-Shopify-Hmac-Sha256"] = signature or compute_shopify_hmac(body, secret)
    return client.post(path, content=body, headers=headers)


class TestSignature:
    """Base64 HMAC-SHA256 over the raw body."""

    def test_roundtrip(self):
        body = b'{"id": 1}'
        assert verify_shopify_hmac(body, compute_shopify_hmac(body, SECRET), SECRET)

    def test_tampered_body(self):
        signature = compute_shopify_hmac(b'{"id": 1}', SECRET)
        assert not verify_shopify_hmac(b'{"id": 2}', signature, SECRET)

    def test_empty_header(self):
        assert not verify_shopify_hmac(b"{}", "", SECRET)


class TestOrderWebhook:
    """POST /webhooks/shopify/orders"""

    def test_valid_signature_writes_order(self, client, shop, db):
        response = _post(client, "/webhooks/shopify/orders", ORDER)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["orgId"] == "org1"
        assert body["inserted"] == 1

        order = db.query(ShopifyOrder).one()
        assert order.org_id == "org1"
        assert order.shopify_id == "5551"
        assert order.email == "buyer@example.com"
        assert order.is_repeat_customer is False

    def test_redelivery_is_idempotent(self, client, shop, db):
        _post(client, "/webhooks/shopify/orders", ORDER)
        response = _post(client, "/webhooks/shopify/orders", ORDER)
        assert response.status_code == 200
        assert response.json()["skipped"] == 1
        assert db.query(ShopifyOrder).count() == 1

    def test_invalid_signature(self, client, shop, db):
        response = _post(client, "/webhooks/shopify/orders", ORDER, signature="bm90LXRoZS1zaWduYXR1cmU=")
        assert response.status_code == 401
        assert "error" in response.json()
        assert db.query(ShopifyOrder).count() == 0

    def test_missing_signature(self, client, shop, db):
        response = _post(client, "/webhooks/shopify/orders", ORDER, secret=None)
        assert response.status_code == 401

    def test_missing_shop_domain(self, client, shop, db):
        response = _post(client, "/webhooks/shopify/orders", ORDER, domain=None)
        assert response.status_code == 400

    def test_unknown_shop_domain(self, client, shop, db):
        response = _post(client, "/webhooks/shopify/orders", ORDER, domain="other.myshopify.com")
        assert response.status_code == 400

    def test_missing_secret(self, client, gateway, db):
        gateway.add("org1", "shopify", host=SHOP, token="tok")
        response = _post(client, "/webhooks/shopify/orders", ORDER)
        assert response.status_code == 400
        assert response.json()["error"] == "Webhook secret not configured"


class TestCustomerWebhook:
    """POST /webhooks/shopify/customers"""

    def test_valid_signature_writes_customer(self, client, shop, db):
        payload = {
            "id": 77,
            "email": "Fan@Example.com",
            "first_name": "Fan",
            "orders_count": 3,
            "email_marketing_consent": {"state": "subscribed"},
        }
        response = _post(client, "/webhooks/shopify/customers", payload)
        assert response.status_code == 200

        customer = db.query(ShopifyCustomer).one()
        assert customer.customer_key == "fan@example.com"
        assert customer.accepts_marketing is True
        assert customer.orders_count == 3
