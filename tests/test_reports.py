"""
Tests for the aggregation engine.

Covers:
  - Bucket keys per grain
  - Zero-denominator metrics
  - Cross-source joins (spend without orders, orders without spend)
  - Facebook campaign rollup
  - Customer lifecycle partition
"""
from datetime import date, datetime, timedelta

import pytest

from storesync.config import get_settings
from storesync.exceptions import ValidationError
from storesync.services.report_service import ReportService, ad_metrics, classify_lifecycle, truncate_to_grain
from storesync.services.rows import AdPerformanceRow, CustomerRow, DailyAnalyticsRow, OrderRow
from storesync.services.settings_gateway import LifecycleThresholds
from storesync.services.upsert_store import UpsertStore

settings = get_settings()


def _fb(day, spend, campaign="C", impressions=0, clicks=0, purchases=0, value=0.0):
    return AdPerformanceRow(
        platform="facebook", date=day, campaign=campaign, adset="S", ad="A",
        spend=spend, impressions=impressions, clicks=clicks, purchases=purchases, purchase_value=value,
    )


# ────────────────────────────────────────────
# PURE MATH
# ────────────────────────────────────────────


class TestGrain:
    """Week buckets start Monday, month buckets on the 1st."""

    def test_day(self):
        assert truncate_to_grain(date(2025, 1, 15), "day") == date(2025, 1, 15)

    def test_week(self):
        # 2025-01-15 is a Wednesday
        assert truncate_to_grain(date(2025, 1, 15), "week") == date(2025, 1, 13)
        assert truncate_to_grain(date(2025, 1, 13), "week") == date(2025, 1, 13)

    def test_month(self):
        assert truncate_to_grain(date(2025, 2, 28), "month") == date(2025, 2, 1)

    def test_invalid(self):
        with pytest.raises(ValidationError):
            truncate_to_grain(date(2025, 1, 1), "year")


class TestAdMetrics:
    """Each derived metric is 0 when its denominator is 0."""

    def test_zero_denominators(self):
        assert ad_metrics(0, 0, 0, 0, 0) == {"ctr": 0.0, "cpc": 0.0, "cpm": 0.0, "roas": 0.0, "costPerPurchase": 0.0}

    def test_spend_without_clicks(self):
        metrics = ad_metrics(50.0, 1000, 0, 0, 0)
        assert metrics["cpc"] == 0.0
        assert metrics["cpm"] == 50.0
        assert metrics["roas"] == 0.0

    def test_values(self):
        metrics = ad_metrics(20.0, 1000, 50, 4, 80.0)
        assert metrics == {"ctr": 5.0, "cpc": 0.4, "cpm": 20.0, "roas": 4.0, "costPerPurchase": 5.0}


class TestLifecycle:
    """Inclusive upper edges; beyond lapsed is lost."""

    T = LifecycleThresholds(new_max_days=30, reorder_max_days=60, lapsed_max_days=90)

    def test_edges(self):
        assert classify_lifecycle(0, self.T) == "new"
        assert classify_lifecycle(30, self.T) == "new"
        assert classify_lifecycle(30.5, self.T) == "reorder"
        assert classify_lifecycle(60, self.T) == "reorder"
        assert classify_lifecycle(90, self.T) == "lapsed"
        assert classify_lifecycle(91, self.T) == "lost"

    def test_unknown_last_order_is_lost(self):
        assert classify_lifecycle(None, self.T) == "lost"


# ────────────────────────────────────────────
# OVERALL REPORT
# ────────────────────────────────────────────


class TestOverallReport:
    """Buckets joined across ads, orders and analytics."""

    def test_spend_without_orders(self, db, gateway):
        UpsertStore(db).upsert("org1", [_fb(date(2025, 1, 1), 40.0)])
        report = ReportService(db, gateway).get_report("org1", date(2025, 1, 1), date(2025, 1, 1))

        bucket = report["buckets"][0]
        assert bucket["date"] == "2025-01-01"
        assert bucket["revenue"] == 0.0
        assert bucket["orders"] == 0
        assert bucket["aov"] == 0.0
        assert bucket["netCashIn"] == -40.0

    def test_net_cash_in(self, db, gateway):
        store = UpsertStore(db)
        store.upsert("org1", [_fb(date(2025, 1, 1), 10.0)])
        store.upsert("org1", [AdPerformanceRow(platform="amazon", date=date(2025, 1, 1), campaign="SP", spend=5.0, purchase_value=30.0)])
        store.upsert_orders("org1", [
            OrderRow(shopify_id="1", email="a@x.com", created_at=datetime(2025, 1, 1, 9), total=100.0),
            OrderRow(shopify_id="2", email="b@x.com", created_at=datetime(2025, 1, 1, 18), total=50.0),
        ])
        report = ReportService(db, gateway).get_report("org1", date(2025, 1, 1), date(2025, 1, 1))

        bucket = report["buckets"][0]
        fees = 150.0 * settings.platform_fee_rate
        fulfillment = 2 * settings.fulfillment_fee_per_order
        assert bucket["revenue"] == 150.0
        assert bucket["orders"] == 2
        assert bucket["aov"] == 75.0
        assert bucket["adSpend"] == 15.0
        assert bucket["amazonSales"] == 30.0
        assert bucket["netCashIn"] == round(150.0 - fees - fulfillment - 15.0, 2)

    def test_weekly_buckets_and_totals(self, db, gateway):
        store = UpsertStore(db)
        store.upsert("org1", [_fb(date(2025, 1, 13), 10.0), _fb(date(2025, 1, 15), 5.0), _fb(date(2025, 1, 20), 1.0)])
        store.upsert("org1", [DailyAnalyticsRow(date=date(2025, 1, 14), unique_visitors=200, purchases=4)])
        report = ReportService(db, gateway).get_report("org1", date(2025, 1, 13), date(2025, 1, 26), grain="week")

        assert [b["date"] for b in report["buckets"]] == ["2025-01-13", "2025-01-20"]
        first = report["buckets"][0]
        assert first["fbSpend"] == 15.0
        assert first["uniqueVisitors"] == 200
        assert first["conversionRate"] == 2.0
        assert report["derivedMetrics"]["fbSpend"] == 16.0

    def test_other_tenants_are_invisible(self, db, gateway):
        UpsertStore(db).upsert("org2", [_fb(date(2025, 1, 1), 40.0)])
        report = ReportService(db, gateway).get_report("org1", date(2025, 1, 1), date(2025, 1, 31))
        assert report["buckets"] == []
        assert report["derivedMetrics"]["adSpend"] == 0.0

    def test_reversed_range(self, db, gateway):
        with pytest.raises(ValidationError):
            ReportService(db, gateway).get_report("org1", date(2025, 1, 2), date(2025, 1, 1))


class TestFacebookReport:
    """Per-campaign rollup, highest spend first."""

    def test_campaigns_sorted_by_spend(self, db, gateway):
        UpsertStore(db).upsert("org1", [
            _fb(date(2025, 1, 1), 5.0, campaign="Small", impressions=100, clicks=1),
            _fb(date(2025, 1, 1), 20.0, campaign="Big", impressions=1000, clicks=50, purchases=4, value=80.0),
            _fb(date(2025, 1, 2), 10.0, campaign="Big", impressions=500, clicks=10),
        ])
        report = ReportService(db, gateway).get_facebook_ads_report("org1", date(2025, 1, 1), date(2025, 1, 2))

        assert [c["campaign"] for c in report["campaigns"]] == ["Big", "Small"]
        big = report["campaigns"][0]
        assert big["spend"] == 30.0
        assert big["clicks"] == 60
        assert big["roas"] == round(80.0 / 30.0, 2)
        assert report["totals"]["spend"] == 35.0


# ────────────────────────────────────────────
# CUSTOMER LIFECYCLE
# ────────────────────────────────────────────


class TestCustomerLifecycle:
    """Purchased customers partition exactly into the four stages."""

    def test_partition(self, db, gateway):
        now = datetime(2025, 6, 1, 12, 0)

        def customer(key, days_ago, orders=1, marketing=False):
            last = now - timedelta(days=days_ago) if days_ago is not None else None
            return CustomerRow(customer_key=key, email=key, orders_count=orders, last_order_at=last, accepts_marketing=marketing)

        UpsertStore(db).upsert_customers("org1", [
            customer("a@x.com", 5, marketing=True),
            customer("b@x.com", 45),
            customer("c@x.com", 75),
            customer("d@x.com", 200),
            customer("e@x.com", None),
            customer("f@x.com", None, orders=0, marketing=True),
        ])
        report = ReportService(db, gateway).get_customer_lifecycle("org1", now=now)

        assert report["total"] == 6
        assert report["purchased"] == 5
        assert report["prospects"] == 1
        assert report["emailSubscribers"] == 2
        lifecycle = report["lifecycle"]
        assert lifecycle == {"new": 1, "reorder": 1, "lapsed": 1, "lost": 2, "total": 5}
        assert sum(lifecycle[s] for s in ("new", "reorder", "lapsed", "lost")) == lifecycle["total"]

    def test_tenant_thresholds(self, db, gateway):
        gateway.thresholds["org1"] = LifecycleThresholds(new_max_days=7, reorder_max_days=14, lapsed_max_days=21)
        now = datetime(2025, 6, 1)
        UpsertStore(db).upsert_customers("org1", [
            CustomerRow(customer_key="a@x.com", email="a@x.com", orders_count=1, last_order_at=now - timedelta(days=10)),
        ])
        report = ReportService(db, gateway).get_customer_lifecycle("org1", now=now)
        assert report["lifecycle"]["reorder"] == 1
        assert report["thresholds"]["newMaxDays"] == 7
