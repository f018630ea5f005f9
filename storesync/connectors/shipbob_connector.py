"""
ShipBob inventory connector.

Reads the /product listing (inventory items grouped under each product SKU)
one numbered page at a time. A short or empty page is the last one.
"""
from typing import Any, Optional

from storesync.config import get_settings
from storesync.connectors.base_connector import BaseConnector, Page
from storesync.exceptions import ConfigError
from storesync.services.settings_gateway import SyncCredential

settings = get_settings()

PAGE_LIMIT = 250


class ShipBobConnector(BaseConnector):
    """Connector for ShipBob product inventory"""

    provider = "shipbob"

    def __init__(self, credential: SyncCredential):
        super().__init__("ShipBob", credential)
        if not credential.token:
            raise ConfigError(f"ShipBob not configured for org {credential.org_id}")
        self.base_url = (credential.host or settings.shipbob_api_url).rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {credential.token}",
            "Content-Type": "application/json",
        }

    async def fetch_page(self, unit: Any, cursor: Optional[int] = None) -> Page:
        page_number = cursor or 1
        response = await self.request(
            "GET",
            f"{self.base_url}/product",
            # Paging past the end returns 404 on some accounts
            boundary_statuses=(404,) if page_number > 1 else (),
            headers=self.headers,
            params={"Page": str(page_number), "Limit": str(PAGE_LIMIT), "IsActive": "true"},
        )
        if response.status == 404:
            return Page()

        products = response.json() or []
        return Page(
            records=products,
            has_next=len(products) >= PAGE_LIMIT,
            next_cursor=page_number + 1,
        )
