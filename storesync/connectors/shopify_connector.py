"""
Shopify Admin GraphQL connector.

Orders are pulled one created-at day at a time; customers are pulled as a
whole list, newest first. Both follow `pageInfo.endCursor`.
"""
from datetime import date
from typing import Any, Optional

from storesync.config import get_settings
from storesync.connectors.base_connector import BaseConnector, Page
from storesync.exceptions import ConfigError, UpstreamError
from storesync.services.settings_gateway import SyncCredential
from storesync.utils.helpers import sanitize_error

settings = get_settings()

PAGE_SIZE = 100

ORDERS_QUERY = """
query Orders($first: Int!, $after: String, $query: String) {
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT) {
    edges {
      node {
        id
        legacyResourceId
        name
        email
        phone
        createdAt
        displayFulfillmentStatus
        currencyCode
        tags
        discountCodes
        subtotalPriceSet { shopMoney { amount } }
        totalShippingPriceSet { shopMoney { amount } }
        totalTaxSet { shopMoney { amount } }
        totalPriceSet { shopMoney { amount } }
        customer { email firstName lastName phone }
        lineItems(first: 50) { edges { node { sku title quantity } } }
        fulfillments { trackingInfo { number } }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CUSTOMERS_QUERY = """
query Customers($first: Int!, $after: String) {
  customers(first: $first, after: $after, sortKey: CREATED_AT, reverse: true) {
    edges {
      node {
        id
        legacyResourceId
        firstName
        lastName
        email
        phone
        createdAt
        tags
        numberOfOrders
        amountSpent { amount }
        emailMarketingConsent { marketingState }
        lastOrder { createdAt }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

RESOURCES = ("orders", "customers")


class ShopifyConnector(BaseConnector):
    """Connector for Shopify orders and customers"""

    provider = "shopify"

    def __init__(self, credential: SyncCredential, resource: str = "orders"):
        super().__init__("Shopify", credential)
        if resource not in RESOURCES:
            raise ConfigError(f"Unknown Shopify resource: {resource}")
        if not credential.host or not credential.token:
            raise ConfigError(f"Shopify not configured for org {credential.org_id}")
        self.resource = resource
        shop = credential.host.replace("https://", "").rstrip("/")
        self.graphql_url = f"https://{shop}/admin/api/{settings.shopify_api_version}/graphql.json"
        self.headers = {
            "X-Shopify-Access-Token": credential.token,
            "Content-Type": "application/json",
        }

    async def graphql(self, query: str, variables: dict) -> dict:
        response = await self.request(
            "POST",
            self.graphql_url,
            headers=self.headers,
            json={"query": query, "variables": variables},
        )
        payload = response.json() or {}
        errors = payload.get("errors")
        if errors:
            throttled = any(
                (err.get("extensions") or {}).get("code") == "THROTTLED"
                for err in errors if isinstance(err, dict)
            )
            message = "; ".join(
                str(err.get("message")) if isinstance(err, dict) else str(err) for err in errors
            )
            raise UpstreamError(
                f"Shopify GraphQL error: {sanitize_error(message, 300)}",
                # Throttling arrives in a 200 body; report it as a 429
                status_code=429 if throttled else response.status,
                body=response.text(),
            )
        return payload.get("data") or {}

    async def fetch_page(self, unit: Any, cursor: Optional[str] = None) -> Page:
        variables = {"first": PAGE_SIZE, "after": cursor}
        if self.resource == "orders":
            day = unit.isoformat() if isinstance(unit, date) else str(unit)
            variables["query"] = f"created_at:>={day}T00:00:00Z created_at:<={day}T23:59:59Z"
            data = await self.graphql(ORDERS_QUERY, variables)
        else:
            data = await self.graphql(CUSTOMERS_QUERY, variables)

        connection = data.get(self.resource) or {}
        page_info = connection.get("pageInfo") or {}
        return Page(
            records=[edge.get("node") or {} for edge in connection.get("edges") or []],
            has_next=bool(page_info.get("hasNextPage")),
            next_cursor=page_info.get("endCursor"),
        )
