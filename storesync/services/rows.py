"""
Canonical row types produced by the normalizers.

Each row type names its natural key (without org_id, which the store adds)
and converts to the column mapping the upsert store writes.
"""
from dataclasses import dataclass, asdict, fields
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from storesync.exceptions import ValidationError


class CanonicalRow:
    """Mixin for row dataclasses."""

    NATURAL_KEY: Tuple[str, ...] = ()

    def natural_key(self) -> tuple:
        return tuple(getattr(self, name) for name in self.NATURAL_KEY)

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))


@dataclass
class AdPerformanceRow(CanonicalRow):
    platform: str
    date: date
    campaign: str = ""
    adset: str = ""
    ad: str = ""
    campaign_id: Optional[str] = None
    utm_campaign: Optional[str] = None
    spend: float = 0.0
    impressions: int = 0
    reach: int = 0
    frequency: float = 0.0
    clicks: int = 0
    purchases: int = 0
    purchase_value: float = 0.0
    cpc: float = 0.0
    cpm: float = 0.0
    ctr: float = 0.0
    roas: float = 0.0
    cost_per_purchase: float = 0.0

    NATURAL_KEY = ("platform", "date", "campaign", "adset", "ad")

    def __post_init__(self):
        for name in ("spend", "purchase_value"):
            value = getattr(self, name)
            if value < 0:
                raise ValidationError(f"Negative {name}", field=name, value=value)


@dataclass
class InventorySnapshotRow(CanonicalRow):
    snapshot_date: date
    sku: str
    product_name: Optional[str] = None
    fulfillable_quantity: int = 0
    onhand_quantity: int = 0
    committed_quantity: int = 0

    NATURAL_KEY = ("snapshot_date", "sku")


@dataclass
class DailyAnalyticsRow(CanonicalRow):
    date: date
    unique_visitors: int = 0
    total_sessions: int = 0
    pageviews: int = 0
    bounce_rate: float = 0.0
    avg_session_duration: float = 0.0
    mobile_sessions: int = 0
    desktop_sessions: int = 0
    top_country: Optional[str] = None
    direct_sessions: int = 0
    organic_sessions: int = 0
    paid_sessions: int = 0
    social_sessions: int = 0
    product_views: int = 0
    add_to_cart: int = 0
    checkout_started: int = 0
    purchases: int = 0
    conversion_rate: float = 0.0

    NATURAL_KEY = ("date",)


@dataclass
class OrderRow(CanonicalRow):
    shopify_id: str
    order_number: Optional[str] = None
    email: Optional[str] = None
    customer_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None
    fulfillment_status: str = "unfulfilled"
    currency: Optional[str] = None
    subtotal: float = 0.0
    shipping: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    discount_codes: Optional[str] = None
    skus: Optional[str] = None
    quantity: int = 0
    tracking_number: Optional[str] = None
    tags: Optional[str] = None

    NATURAL_KEY = ("shopify_id",)


@dataclass
class CustomerRow(CanonicalRow):
    customer_key: str
    shopify_customer_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    accepts_marketing: bool = False
    orders_count: int = 0
    total_spent: float = 0.0
    tags: Optional[str] = None
    created_at: Optional[datetime] = None
    last_order_at: Optional[datetime] = None

    NATURAL_KEY = ("customer_key",)


@dataclass
class ProductRow(CanonicalRow):
    sku: str
    product_name: Optional[str] = None
    brand: Optional[str] = None
    unit_barcode: Optional[str] = None
    asin: Optional[str] = None
    shippo_sku: Optional[str] = None
    pieces_per_pack: Optional[int] = None
    pack_weight_kg: Optional[float] = None
    pack_length_cm: Optional[float] = None
    pack_width_cm: Optional[float] = None
    pack_height_cm: Optional[float] = None
    unit_cbm: Optional[float] = None
    dimensional_weight: Optional[float] = None
    unit_price_usd: Optional[float] = None
    unit_price_gbp: Optional[float] = None
    pack_cost_gbp: Optional[float] = None
    landed_cost: Optional[float] = None
    unit_lcogs: Optional[float] = None
    dtc_rrp: Optional[float] = None
    pp_unit: Optional[float] = None
    carton_barcode: Optional[str] = None
    units_per_master_carton: Optional[int] = None
    pieces_per_master_carton: Optional[int] = None
    gross_weight_kg: Optional[float] = None
    carton_width_cm: Optional[float] = None
    carton_length_cm: Optional[float] = None
    carton_height_cm: Optional[float] = None
    carton_cbm: Optional[float] = None
    dtc_rrp_ex_vat: Optional[float] = None

    NATURAL_KEY = ("sku",)


def customer_key_for(email: Optional[str], shopify_customer_id: Optional[str]) -> Optional[str]:
    """Natural key for a customer: email when present, else the storefront id."""
    if email and email.strip():
        return email.strip().lower()
    if shopify_customer_id:
        return f"shopify:{shopify_customer_id}"
    return None
