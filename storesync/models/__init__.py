"""Database models for storesync"""

from storesync.models.ad_performance import AdPerformance
from storesync.models.inventory import InventorySnapshot
from storesync.models.analytics import DailyAnalytics
from storesync.models.shopify import ShopifyOrder, ShopifyCustomer
from storesync.models.product import Product
from storesync.models.sync_log import SyncLogEntry
from storesync.models.integration_setting import IntegrationSetting

__all__ = [
    "AdPerformance",
    "InventorySnapshot",
    "DailyAnalytics",
    "ShopifyOrder",
    "ShopifyCustomer",
    "Product",
    "SyncLogEntry",
    "IntegrationSetting",
]
