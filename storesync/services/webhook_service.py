"""
Shopify webhook intake.

Resolves the tenant from the shop domain header, verifies the base64
HMAC-SHA256 of the raw body with that tenant's webhook secret, then routes
the payload through the normalizer and the upsert store.
"""
import base64
import hashlib
import hmac
import json
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from storesync.exceptions import AuthError, ConfigError, ValidationError
from storesync.services.normalizers import normalize_customer_webhook, normalize_order_webhook
from storesync.services.settings_gateway import SettingsGateway, get_settings_gateway
from storesync.services.upsert_store import UpsertResult, UpsertStore
from storesync.utils.logger import log


def compute_shopify_hmac(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode("ascii")


def verify_shopify_hmac(body: bytes, header_hmac: Optional[str], secret: str) -> bool:
    """Constant-time comparison of the header against the body's signature."""
    if not header_hmac or not secret:
        return False
    return hmac.compare_digest(compute_shopify_hmac(body, secret), header_hmac.strip())


def _store_order(store: UpsertStore, org_id: str, payload: dict) -> UpsertResult:
    return store.upsert_orders(org_id, [normalize_order_webhook(payload)])


def _store_customer(store: UpsertStore, org_id: str, payload: dict) -> UpsertResult:
    return store.upsert_customers(org_id, [normalize_customer_webhook(payload)])


TOPICS: Dict[str, Callable[[UpsertStore, str, dict], UpsertResult]] = {
    "orders": _store_order,
    "customers": _store_customer,
}


class WebhookService:
    """Verifies and applies storefront webhooks"""

    def __init__(self, db: Session, gateway: Optional[SettingsGateway] = None):
        self.db = db
        self.gateway = gateway or get_settings_gateway()

    def resolve_tenant(self, shop_domain: Optional[str]) -> str:
        if not shop_domain:
            raise ValidationError("Missing shop domain header")
        org_id = self.gateway.find_tenant_by_shop_domain(shop_domain)
        if not org_id:
            raise ValidationError(f"Unknown shop domain: {shop_domain}")
        return org_id

    def handle(self, topic: str, shop_domain: Optional[str], header_hmac: Optional[str], body: bytes) -> Dict:
        """
        Apply one webhook delivery.

        Raises ValidationError for an unknown shop or bad payload, ConfigError
        when the tenant has no webhook secret, AuthError for a missing or
        invalid signature.
        """
        handler = TOPICS.get(topic)
        if handler is None:
            raise ValidationError(f"Unsupported webhook topic: {topic}")

        org_id = self.resolve_tenant(shop_domain)
        credential = self.gateway.get_credentials(org_id, "shopify")
        if credential is None or not credential.secret:
            log.error(f"Shopify webhook secret not configured for org {org_id}")
            raise ConfigError("Webhook secret not configured")
        if not header_hmac:
            raise AuthError("Missing HMAC header")
        if not verify_shopify_hmac(body, header_hmac, credential.secret):
            log.warning(f"Invalid Shopify webhook signature for org {org_id} ({topic})")
            raise AuthError("Invalid signature")

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")

        result = handler(UpsertStore(self.db), org_id, payload)
        log.info(f"Processed Shopify {topic} webhook {payload.get('id')} for org {org_id}: {result.to_dict()}")
        return {"success": True, "orgId": org_id, "id": str(payload.get("id")), **result.to_dict()}
