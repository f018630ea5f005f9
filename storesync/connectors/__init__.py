"""Data connectors for storesync"""

from storesync.connectors.base_connector import BaseConnector, HttpResponse, Page
from storesync.connectors.amazon_ads_connector import AmazonAdsConnector
from storesync.connectors.facebook_connector import FacebookConnector
from storesync.connectors.posthog_connector import PostHogConnector
from storesync.connectors.shipbob_connector import ShipBobConnector
from storesync.connectors.shopify_connector import ShopifyConnector

__all__ = [
    "BaseConnector",
    "HttpResponse",
    "Page",
    "AmazonAdsConnector",
    "FacebookConnector",
    "PostHogConnector",
    "ShipBobConnector",
    "ShopifyConnector",
]
