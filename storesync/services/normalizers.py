"""
Row normalizers

Turn provider-native records into canonical rows. Provider response shapes
(GraphQL edge/node envelopes, Graph API action arrays, HogQL result tables)
stop here: nothing downstream of this module reads a raw provider field.

Every numeric conversion is defensive (unparseable -> 0). The primary date
of a row is the exception: a missing or malformed date raises
ValidationError and the batch runner records it against the row.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from dateutil import parser as date_parser

from storesync.exceptions import ValidationError
from storesync.services.rows import (
    AdPerformanceRow,
    CustomerRow,
    DailyAnalyticsRow,
    InventorySnapshotRow,
    OrderRow,
    customer_key_for,
)
from storesync.utils.helpers import round_money

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_SAMPLE_ERRORS = 20
PURCHASE_ACTION_TYPES = ("purchase", "omni_purchase")


# ── Conversions ────────────────────────────────────────


def to_float(value: Any) -> float:
    """Parse a number, returning 0.0 for blanks, garbage, NaN and infinities."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_int(value: Any) -> int:
    """Parse an integer count; fractional input is truncated."""
    return int(to_float(value))


def to_text(value: Any) -> Optional[str]:
    """Trimmed text, None when blank."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_iso_date(value: Any, field_name: str = "date", row: Optional[int] = None) -> date:
    """Strict YYYY-MM-DD parse for a row's primary date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"Missing {field_name}", row=row, field=field_name)
    if not ISO_DATE_RE.match(text):
        raise ValidationError(f"Invalid date: {text}", row=row, field=field_name, value=text)
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid date: {text}", row=row, field=field_name, value=text)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp to naive UTC; None when absent or unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value).strip())
        except (ValueError, OverflowError):
            try:
                parsed = date_parser.parse(str(value).strip())
            except (ValueError, OverflowError):
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def shopify_legacy_id(gid: Any) -> Optional[str]:
    """'gid://shopify/Order/123' -> '123'; plain ids pass through as text."""
    if gid is None:
        return None
    text = str(gid).strip()
    if not text:
        return None
    return text.rsplit("/", 1)[-1]


def _money(money_set: Optional[dict]) -> float:
    if not isinstance(money_set, dict):
        return 0.0
    shop_money = money_set.get("shopMoney") or money_set.get("shop_money") or {}
    return to_float(shop_money.get("amount"))


def _action_value(actions: Optional[Sequence[dict]], action_types: Sequence[str] = PURCHASE_ACTION_TYPES) -> float:
    for action in actions or []:
        if action.get("action_type") in action_types:
            return to_float(action.get("value"))
    return 0.0


# ── Batch runner ───────────────────────────────────────


@dataclass
class NormalizeResult:
    """Outcome of normalizing one batch."""
    rows: List[Any] = field(default_factory=list)
    total: int = 0
    failed: int = 0
    sample_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def parsed(self) -> int:
        return len(self.rows)

    def record_error(self, row: int, message: str):
        self.failed += 1
        if len(self.sample_errors) < MAX_SAMPLE_ERRORS:
            self.sample_errors.append({"row": row, "error": message})


def normalize_batch(records: Iterable[Any], normalizer: Callable[[Any], Optional[Any]], first_row: int = 1) -> NormalizeResult:
    """
    Apply `normalizer` to every record; failures are counted and sampled.

    A normalizer returning None means "not a data row" (blank line) and is
    neither parsed nor failed.
    """
    result = NormalizeResult()
    for index, record in enumerate(records, start=first_row):
        try:
            row = normalizer(record)
        except (ValidationError, ValueError, TypeError, KeyError) as e:
            result.total += 1
            result.record_error(index, e.message if isinstance(e, ValidationError) else str(e))
            continue
        if row is None:
            continue
        result.total += 1
        result.rows.append(row)
    return result


# ── Facebook Graph API insights ────────────────────────


def normalize_facebook_insight(record: dict, day: date) -> AdPerformanceRow:
    """One /insights row at level=ad for a single day."""
    spend = to_float(record.get("spend"))
    purchase_value = _action_value(record.get("action_values"))
    return AdPerformanceRow(
        platform="facebook",
        date=parse_iso_date(record.get("date_start") or day),
        campaign=(record.get("campaign_name") or "").strip(),
        adset=(record.get("adset_name") or "").strip(),
        ad=(record.get("ad_name") or "").strip(),
        campaign_id=to_text(record.get("campaign_id")),
        spend=round_money(spend),
        impressions=to_int(record.get("impressions")),
        reach=to_int(record.get("reach")),
        frequency=round_money(to_float(record.get("frequency"))),
        clicks=to_int(record.get("clicks")),
        purchases=int(_action_value(record.get("actions"))),
        purchase_value=round_money(purchase_value),
        cpc=round_money(to_float(record.get("cpc"))),
        cpm=round_money(to_float(record.get("cpm"))),
        ctr=round_money(to_float(record.get("ctr"))),
        roas=round_money(purchase_value / spend) if spend > 0 else 0.0,
        cost_per_purchase=round_money(_action_value(record.get("cost_per_action_type"))),
    )


# ── Amazon Sponsored Products report ───────────────────


def normalize_amazon_campaign_row(record: dict) -> AdPerformanceRow:
    """One spCampaigns DAILY report row (campaign level)."""
    spend = to_float(record.get("cost", record.get("spend")))
    sales = to_float(record.get("sales14d"))
    clicks = to_int(record.get("clicks"))
    impressions = to_int(record.get("impressions"))
    purchases = to_int(record.get("purchases14d"))
    return AdPerformanceRow(
        platform="amazon",
        date=parse_iso_date(record.get("date")),
        campaign=(record.get("campaignName") or str(record.get("campaignId") or "")).strip(),
        campaign_id=to_text(record.get("campaignId")),
        spend=round_money(spend),
        impressions=impressions,
        clicks=clicks,
        purchases=purchases,
        purchase_value=round_money(sales),
        cpc=round_money(to_float(record.get("costPerClick"))),
        ctr=to_float(record.get("clickThroughRate")),
        roas=round_money(sales / spend) if spend > 0 else 0.0,
        cost_per_purchase=round_money(spend / purchases) if purchases > 0 else 0.0,
    )


# ── PostHog daily analytics ────────────────────────────


def normalize_posthog_day(record: dict, day: date) -> DailyAnalyticsRow:
    """Combine the per-day HogQL query results into one analytics row."""
    unique_visitors = to_int(record.get("unique_visitors"))
    purchases = to_int(record.get("purchases"))
    return DailyAnalyticsRow(
        date=parse_iso_date(record.get("date") or day),
        unique_visitors=unique_visitors,
        total_sessions=to_int(record.get("total_sessions")),
        pageviews=to_int(record.get("pageviews")),
        bounce_rate=round_money(to_float(record.get("bounce_rate"))),
        avg_session_duration=float(round(to_float(record.get("avg_session_duration")))),
        mobile_sessions=to_int(record.get("mobile_sessions")),
        desktop_sessions=to_int(record.get("desktop_sessions")),
        top_country=to_text(record.get("top_country")) or "Unknown",
        direct_sessions=to_int(record.get("direct_sessions")),
        organic_sessions=to_int(record.get("organic_sessions")),
        paid_sessions=to_int(record.get("paid_sessions")),
        social_sessions=to_int(record.get("social_sessions")),
        product_views=to_int(record.get("product_views")),
        add_to_cart=to_int(record.get("add_to_cart")),
        checkout_started=to_int(record.get("checkout_started")),
        purchases=purchases,
        conversion_rate=round_money(purchases / unique_visitors * 100) if unique_visitors > 0 else 0.0,
    )


# ── ShipBob inventory ──────────────────────────────────


def normalize_shipbob_product(record: dict, snapshot_date: date) -> Optional[InventorySnapshotRow]:
    """Sum quantities across a product's inventory items; products without SKU are skipped."""
    sku = to_text(record.get("sku"))
    if not sku:
        return None
    fulfillable = onhand = committed = 0
    for item in record.get("inventory_items") or []:
        fulfillable += to_int(item.get("total_fulfillable_quantity"))
        onhand += to_int(item.get("total_onhand_quantity"))
        committed += to_int(item.get("total_committed_quantity"))
    return InventorySnapshotRow(
        snapshot_date=snapshot_date,
        sku=sku,
        product_name=to_text(record.get("name")),
        fulfillable_quantity=fulfillable,
        onhand_quantity=onhand,
        committed_quantity=committed,
    )


# ── Shopify orders ─────────────────────────────────────


def normalize_shopify_order_node(node: dict) -> OrderRow:
    """GraphQL Admin API `orders` node."""
    shopify_id = node.get("legacyResourceId") or shopify_legacy_id(node.get("id"))
    if not shopify_id:
        raise ValidationError("Order is missing an id", field="id")
    customer = node.get("customer") or {}
    name = " ".join(p for p in (customer.get("firstName"), customer.get("lastName")) if p) or None

    line_items = [edge.get("node") or {} for edge in (node.get("lineItems") or {}).get("edges", [])]
    tracking = None
    for fulfillment in node.get("fulfillments") or []:
        for info in fulfillment.get("trackingInfo") or []:
            if info.get("number"):
                tracking = info["number"]
                break
        if tracking:
            break

    tags = node.get("tags")
    return OrderRow(
        shopify_id=str(shopify_id),
        order_number=to_text(node.get("name")),
        email=_normalize_email(node.get("email") or customer.get("email")),
        customer_name=name,
        phone=to_text(node.get("phone") or customer.get("phone")),
        created_at=parse_timestamp(node.get("createdAt")),
        fulfillment_status=(node.get("displayFulfillmentStatus") or "unfulfilled").lower(),
        currency=to_text(node.get("currencyCode")),
        subtotal=round_money(_money(node.get("subtotalPriceSet"))),
        shipping=round_money(_money(node.get("totalShippingPriceSet"))),
        tax=round_money(_money(node.get("totalTaxSet"))),
        total=round_money(_money(node.get("totalPriceSet"))),
        discount_codes=", ".join(node.get("discountCodes") or []) or None,
        skus=", ".join(filter(None, (li.get("sku") or li.get("title") for li in line_items))) or None,
        quantity=sum(to_int(li.get("quantity")) for li in line_items),
        tracking_number=tracking,
        tags=", ".join(tags) if isinstance(tags, list) else to_text(tags),
    )


def normalize_order_webhook(payload: dict) -> OrderRow:
    """REST-shaped order payload delivered by the orders/create and orders/updated webhooks."""
    if not payload.get("id"):
        raise ValidationError("Order payload is missing an id", field="id")
    customer = payload.get("customer") or {}
    address = payload.get("shipping_address") or payload.get("billing_address") or {}
    first = customer.get("first_name") or address.get("first_name")
    last = customer.get("last_name") or address.get("last_name")
    line_items = payload.get("line_items") or []

    tracking = None
    for fulfillment in payload.get("fulfillments") or []:
        if fulfillment.get("tracking_number"):
            tracking = fulfillment["tracking_number"]
            break

    return OrderRow(
        shopify_id=str(payload["id"]),
        order_number=to_text(payload.get("order_number")),
        email=_normalize_email(customer.get("email") or payload.get("email")),
        customer_name=" ".join(p for p in (first, last) if p) or None,
        phone=to_text(customer.get("phone") or address.get("phone")),
        created_at=parse_timestamp(payload.get("created_at")),
        fulfillment_status=payload.get("fulfillment_status") or "unfulfilled",
        currency=to_text(payload.get("currency")),
        subtotal=round_money(to_float(payload.get("subtotal_price"))),
        shipping=round_money(_money(payload.get("total_shipping_price_set"))),
        tax=round_money(to_float(payload.get("total_tax"))),
        total=round_money(to_float(payload.get("total_price"))),
        discount_codes=", ".join(d.get("code", "") for d in payload.get("discount_codes") or [] if d.get("code")) or None,
        skus=", ".join(filter(None, (li.get("sku") or li.get("title") for li in line_items))) or None,
        quantity=sum(to_int(li.get("quantity")) for li in line_items),
        tracking_number=tracking,
        tags=to_text(payload.get("tags")),
    )


def _normalize_email(value: Any) -> Optional[str]:
    text = to_text(value)
    return text.lower() if text else None


# ── Shopify customers ──────────────────────────────────


def normalize_shopify_customer_node(node: dict) -> CustomerRow:
    """GraphQL Admin API `customers` node."""
    shopify_id = node.get("legacyResourceId") or shopify_legacy_id(node.get("id"))
    email = _normalize_email(node.get("email"))
    key = customer_key_for(email, shopify_id)
    if not key:
        raise ValidationError("Customer has neither email nor id", field="email")
    consent = node.get("emailMarketingConsent") or {}
    tags = node.get("tags")
    last_order = node.get("lastOrder") or {}
    return CustomerRow(
        customer_key=key,
        shopify_customer_id=to_text(shopify_id),
        first_name=to_text(node.get("firstName")),
        last_name=to_text(node.get("lastName")),
        email=email,
        phone=to_text(node.get("phone")),
        accepts_marketing=(consent.get("marketingState") == "SUBSCRIBED"),
        orders_count=to_int(node.get("numberOfOrders")),
        total_spent=round_money(to_float((node.get("amountSpent") or {}).get("amount"))),
        tags=", ".join(tags) if isinstance(tags, list) else to_text(tags),
        created_at=parse_timestamp(node.get("createdAt")),
        last_order_at=parse_timestamp(last_order.get("createdAt")),
    )


def normalize_customer_webhook(payload: dict) -> CustomerRow:
    """REST-shaped customer payload from customers/create and customers/update."""
    shopify_id = to_text(payload.get("id"))
    email = _normalize_email(payload.get("email"))
    key = customer_key_for(email, shopify_id)
    if not key:
        raise ValidationError("Customer payload has neither email nor id", field="email")
    consent = payload.get("email_marketing_consent") or {}
    accepts = consent.get("state") == "subscribed" if consent else bool(payload.get("accepts_marketing"))
    return CustomerRow(
        customer_key=key,
        shopify_customer_id=shopify_id,
        first_name=to_text(payload.get("first_name")),
        last_name=to_text(payload.get("last_name")),
        email=email,
        phone=to_text(payload.get("phone")),
        accepts_marketing=accepts,
        orders_count=to_int(payload.get("orders_count")),
        total_spent=round_money(to_float(payload.get("total_spent"))),
        tags=to_text(payload.get("tags")),
        created_at=parse_timestamp(payload.get("created_at")),
        last_order_at=parse_timestamp(payload.get("last_order_at")),
    )
