"""
Aggregation Engine

Reads normalized rows back out for one tenant, buckets them by day, week or
month, joins sources on the bucket key and derives spend-efficiency, cash and
lifecycle metrics. Sums are kept unrounded; rounding happens only when a
value is emitted.
"""
from collections import defaultdict
from datetime import date, datetime, time
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from storesync.config import get_settings
from storesync.exceptions import ValidationError
from storesync.models import AdPerformance, DailyAnalytics, ShopifyCustomer, ShopifyOrder
from storesync.services.settings_gateway import LifecycleThresholds, SettingsGateway, get_settings_gateway
from storesync.utils.helpers import round_money, safe_divide
from storesync.utils.logger import log

settings = get_settings()

GRAINS = ("day", "week", "month")
LIFECYCLE_STAGES = ("new", "reorder", "lapsed", "lost")

# Bucket fields summed from storage; everything else is derived
SUM_FIELDS = (
    "fbSpend",
    "fbImpressions",
    "fbClicks",
    "fbPurchases",
    "fbPurchaseValue",
    "amazonSpend",
    "amazonSales",
    "amazonImpressions",
    "amazonClicks",
    "revenue",
    "orders",
    "sessions",
    "uniqueVisitors",
    "purchases",
)
COUNT_FIELDS = {"fbImpressions", "fbClicks", "fbPurchases", "amazonImpressions", "amazonClicks", "orders", "sessions", "uniqueVisitors", "purchases"}


def truncate_to_grain(day: date, grain: str) -> date:
    """Bucket key: the day itself, the Monday of its week, or the 1st of its month."""
    if grain == "day":
        return day
    if grain == "week":
        return date.fromordinal(day.toordinal() - day.weekday())
    if grain == "month":
        return day.replace(day=1)
    raise ValidationError(f"Invalid grain: {grain}", field="grain", value=grain)


def ad_metrics(spend: float, impressions: float, clicks: float, purchases: float, purchase_value: float) -> Dict[str, float]:
    """Derived ad metrics; each is 0 when its denominator is not positive."""
    return {
        "ctr": round_money(safe_divide(clicks, impressions) * 100),
        "cpc": round_money(safe_divide(spend, clicks)),
        "cpm": round_money(safe_divide(spend, impressions) * 1000),
        "roas": round_money(safe_divide(purchase_value, spend)),
        "costPerPurchase": round_money(safe_divide(spend, purchases)),
    }


def net_cash_in(revenue: float, orders: float, ad_spend: float) -> Dict[str, float]:
    """Storefront cash after platform fees, per-order fulfillment and ad spend."""
    fees = revenue * settings.platform_fee_rate
    fulfillment = orders * settings.fulfillment_fee_per_order
    return {
        "shopifyFees": fees,
        "fulfillmentCost": fulfillment,
        "netCashIn": revenue - fees - fulfillment - ad_spend,
    }


def classify_lifecycle(elapsed_days: Optional[float], thresholds: LifecycleThresholds) -> str:
    """
    Lifecycle stage for a customer with at least one order.

    Edges are inclusive: exactly new_max_days old is still new. A purchased
    customer with no known last order date is lost.
    """
    if elapsed_days is None:
        return "lost"
    if elapsed_days <= thresholds.new_max_days:
        return "new"
    if elapsed_days <= thresholds.reorder_max_days:
        return "reorder"
    if elapsed_days <= thresholds.lapsed_max_days:
        return "lapsed"
    return "lost"


class ReportService:
    """Tenant-scoped reporting over stored rows"""

    def __init__(self, db: Session, gateway: Optional[SettingsGateway] = None):
        self.db = db
        self.gateway = gateway or get_settings_gateway()

    @staticmethod
    def _check_range(start: date, end: date, grain: str = "day"):
        if grain not in GRAINS:
            raise ValidationError(f"Invalid grain: {grain}", field="grain", value=grain)
        if end < start:
            raise ValidationError("'to' must not be before 'from'", field="to")

    # ── Overall ────────────────────────────────────────

    def get_report(self, org_id: str, start: date, end: date, grain: str = "day") -> Dict:
        """
        Cross-source report bucketed by grain.

        Every bucket that has data in any source is emitted, with the other
        sources zero-filled.
        """
        self._check_range(start, end, grain)
        buckets: Dict[date, Dict[str, float]] = defaultdict(lambda: {name: 0.0 for name in SUM_FIELDS})

        ad_rows = self.db.query(
            AdPerformance.date,
            AdPerformance.platform,
            func.sum(AdPerformance.spend),
            func.sum(AdPerformance.impressions),
            func.sum(AdPerformance.clicks),
            func.sum(AdPerformance.purchases),
            func.sum(AdPerformance.purchase_value),
        ).filter(
            AdPerformance.org_id == org_id,
            AdPerformance.date >= start,
            AdPerformance.date <= end
        ).group_by(AdPerformance.date, AdPerformance.platform).all()

        for day, platform, spend, impressions, clicks, purchases, value in ad_rows:
            bucket = buckets[truncate_to_grain(day, grain)]
            if platform == "amazon":
                bucket["amazonSpend"] += float(spend or 0)
                bucket["amazonSales"] += float(value or 0)
                bucket["amazonImpressions"] += int(impressions or 0)
                bucket["amazonClicks"] += int(clicks or 0)
            else:
                bucket["fbSpend"] += float(spend or 0)
                bucket["fbImpressions"] += int(impressions or 0)
                bucket["fbClicks"] += int(clicks or 0)
                bucket["fbPurchases"] += int(purchases or 0)
                bucket["fbPurchaseValue"] += float(value or 0)

        order_rows = self.db.query(ShopifyOrder.created_at, ShopifyOrder.total).filter(
            ShopifyOrder.org_id == org_id,
            ShopifyOrder.created_at >= datetime.combine(start, time.min),
            ShopifyOrder.created_at <= datetime.combine(end, time.max)
        ).all()
        for created_at, total in order_rows:
            bucket = buckets[truncate_to_grain(created_at.date(), grain)]
            bucket["revenue"] += float(total or 0)
            bucket["orders"] += 1

        analytics_rows = self.db.query(
            DailyAnalytics.date,
            DailyAnalytics.total_sessions,
            DailyAnalytics.unique_visitors,
            DailyAnalytics.purchases,
        ).filter(
            DailyAnalytics.org_id == org_id,
            DailyAnalytics.date >= start,
            DailyAnalytics.date <= end
        ).all()
        for day, sessions, visitors, purchases in analytics_rows:
            bucket = buckets[truncate_to_grain(day, grain)]
            bucket["sessions"] += int(sessions or 0)
            bucket["uniqueVisitors"] += int(visitors or 0)
            bucket["purchases"] += int(purchases or 0)

        totals = {name: 0.0 for name in SUM_FIELDS}
        series = []
        for key in sorted(buckets):
            sums = buckets[key]
            for name in SUM_FIELDS:
                totals[name] += sums[name]
            series.append({"date": key.isoformat(), **self._emit(sums)})

        log.debug(f"Overall report for org {org_id}: {len(series)} {grain} buckets {start}..{end}")
        return {
            "from": start.isoformat(),
            "to": end.isoformat(),
            "grain": grain,
            "buckets": series,
            "derivedMetrics": self._emit(totals),
        }

    @staticmethod
    def _emit(sums: Dict[str, float]) -> Dict[str, float]:
        ad_spend = sums["fbSpend"] + sums["amazonSpend"]
        cash = net_cash_in(sums["revenue"], sums["orders"], ad_spend)
        body = {}
        for name in SUM_FIELDS:
            body[name] = int(sums[name]) if name in COUNT_FIELDS else round_money(sums[name])
        body["adSpend"] = round_money(ad_spend)
        body["shopifyFees"] = round_money(cash["shopifyFees"])
        body["fulfillmentCost"] = round_money(cash["fulfillmentCost"])
        body["netCashIn"] = round_money(cash["netCashIn"])
        body["aov"] = round_money(safe_divide(sums["revenue"], sums["orders"]))
        body["conversionRate"] = round_money(safe_divide(sums["purchases"], sums["uniqueVisitors"]) * 100)
        body.update(ad_metrics(
            sums["fbSpend"], sums["fbImpressions"], sums["fbClicks"], sums["fbPurchases"], sums["fbPurchaseValue"]
        ))
        return body

    # ── Facebook ads ───────────────────────────────────

    def get_facebook_ads_report(self, org_id: str, start: date, end: date) -> Dict:
        """Per-campaign totals over the range, highest spend first."""
        self._check_range(start, end)
        rows = self.db.query(
            AdPerformance.campaign,
            func.sum(AdPerformance.spend),
            func.sum(AdPerformance.impressions),
            func.sum(AdPerformance.clicks),
            func.sum(AdPerformance.purchases),
            func.sum(AdPerformance.purchase_value),
            func.sum(AdPerformance.reach),
        ).filter(
            AdPerformance.org_id == org_id,
            AdPerformance.platform == "facebook",
            AdPerformance.date >= start,
            AdPerformance.date <= end
        ).group_by(AdPerformance.campaign).all()

        campaigns = []
        totals = defaultdict(float)
        for campaign, spend, impressions, clicks, purchases, value, reach in rows:
            spend, value = float(spend or 0), float(value or 0)
            impressions, clicks, purchases = int(impressions or 0), int(clicks or 0), int(purchases or 0)
            totals["spend"] += spend
            totals["impressions"] += impressions
            totals["clicks"] += clicks
            totals["purchases"] += purchases
            totals["purchaseValue"] += value
            campaigns.append({
                "campaign": campaign,
                "spend": round_money(spend),
                "impressions": impressions,
                "reach": int(reach or 0),
                "clicks": clicks,
                "purchases": purchases,
                "purchaseValue": round_money(value),
                **ad_metrics(spend, impressions, clicks, purchases, value),
            })
        campaigns.sort(key=lambda c: (-c["spend"], c["campaign"]))

        return {
            "from": start.isoformat(),
            "to": end.isoformat(),
            "campaigns": campaigns,
            "totals": {
                "spend": round_money(totals["spend"]),
                "impressions": int(totals["impressions"]),
                "clicks": int(totals["clicks"]),
                "purchases": int(totals["purchases"]),
                "purchaseValue": round_money(totals["purchaseValue"]),
                **ad_metrics(totals["spend"], totals["impressions"], totals["clicks"], totals["purchases"], totals["purchaseValue"]),
            },
        }

    # ── Customers ──────────────────────────────────────

    def get_customer_lifecycle(self, org_id: str, now: Optional[datetime] = None) -> Dict:
        """Lifecycle counts for purchased customers using the tenant's thresholds."""
        thresholds = self.gateway.get_lifecycle_thresholds(org_id)
        now = now or datetime.utcnow()

        counts = {stage: 0 for stage in LIFECYCLE_STAGES}
        total = 0
        purchased = 0
        subscribers = 0
        for orders_count, last_order_at, accepts_marketing in self.db.query(
            ShopifyCustomer.orders_count,
            ShopifyCustomer.last_order_at,
            ShopifyCustomer.accepts_marketing,
        ).filter(ShopifyCustomer.org_id == org_id).all():
            total += 1
            if accepts_marketing:
                subscribers += 1
            if not orders_count or orders_count <= 0:
                continue
            purchased += 1
            elapsed = (now - last_order_at).total_seconds() / 86400 if last_order_at else None
            counts[classify_lifecycle(elapsed, thresholds)] += 1

        return {
            "total": total,
            "purchased": purchased,
            "prospects": total - purchased,
            "emailSubscribers": subscribers,
            "lifecycle": {**counts, "total": purchased},
            "thresholds": thresholds.to_dict(),
        }
