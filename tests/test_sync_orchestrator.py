"""
Tests for the sync orchestrator.

A fake connector stands in for the provider APIs so each unit's outcome can
be scripted per day or per tenant.

Covers:
  - Settle-all: one failing day does not stop its siblings
  - Credential problems abort before any unit and leave no log entry
  - Partial pages are persisted and the unit is still marked failed
  - All units failing marks the job as an error
  - Cross-tenant runs with independent per-tenant failures
"""
import asyncio
from datetime import date

import pytest

from storesync.connectors.base_connector import BaseConnector, Page
from storesync.exceptions import AuthError, ConfigError, UpstreamError, ValidationError
from storesync.models import AdPerformance, InventorySnapshot
from storesync.models.sync_log import SyncLogEntry
from storesync.services.sync_orchestrator import SyncOrchestrator


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


def _insight(day, campaign, spend):
    return {"date_start": day.isoformat(), "campaign_name": campaign, "adset_name": "S", "ad_name": "A", "spend": str(spend)}


class FakeConnector(BaseConnector):
    """Serves scripted pages; a unit mapped to an exception raises it."""

    def __init__(self, credential, pages=None, auth_error=None, tracker=None):
        super().__init__("Fake", credential)
        self.page_delay = 0
        self.pages = pages or {}
        self.auth_error = auth_error
        self.tracker = tracker
        self.authenticated = False

    async def authenticate(self):
        if self.auth_error:
            raise self.auth_error
        self.authenticated = True

    async def fetch_page(self, unit, cursor=None):
        if self.tracker is not None:
            self.tracker["active"] += 1
            self.tracker["peak"] = max(self.tracker["peak"], self.tracker["active"])
            await asyncio.sleep(0.01)
            self.tracker["active"] -= 1
        script = self.pages.get(unit, [])
        if isinstance(script, Exception):
            raise script
        if not script:
            return Page()
        index = cursor or 0
        step = script[index]
        if isinstance(step, Exception):
            raise step
        return Page(records=step, has_next=index + 1 < len(script), next_cursor=index + 1)


def _orchestrator(gateway, pages=None, auth_error=None, tracker=None):
    def factory(source, credential):
        return FakeConnector(credential, pages=pages, auth_error=auth_error, tracker=tracker)

    return SyncOrchestrator(gateway=gateway, connector_factory=factory, max_concurrency=2, unit_delay=0)


# ────────────────────────────────────────────
# DATE UNITS
# ────────────────────────────────────────────


class TestDateBackfill:
    """Per-day units for one tenant."""

    def test_one_failed_day_does_not_stop_the_others(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="123")
        d1, d2, d3 = date(2025, 1, 1), date(2025, 1, 2), date(2025, 1, 3)
        pages = {
            d1: [[_insight(d1, "C", 10)]],
            d2: UpstreamError("Facebook API error: 500", status_code=500),
            d3: [[_insight(d3, "C", 30)]],
        }
        result = _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", d1, d3))

        assert result["status"] == "success"
        assert result["unitsTotal"] == 3
        assert result["unitsSucceeded"] == 2
        assert result["unitsFailed"] == 1
        assert [e["unit"] for e in result["errors"]] == ["2025-01-02"]
        assert [r["unit"] for r in result["perUnitResults"]] == ["2025-01-01", "2025-01-02", "2025-01-03"]

        entry = db.query(SyncLogEntry).one()
        assert entry.id == result["syncLogId"]
        assert entry.status == "success"
        assert entry.source == "facebook"
        assert entry.org_id == "org1"
        assert entry.details["unitsFailed"] == 1
        assert {r.date for r in db.query(AdPerformance).all()} == {d1, d3}

    def test_units_in_flight_never_exceed_max_concurrency(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        start, end = date(2025, 1, 1), date(2025, 1, 5)
        tracker = {"active": 0, "peak": 0}
        result = _run(_orchestrator(gateway, tracker=tracker).run_backfill("org1", "facebook", start, end))

        assert result["unitsTotal"] == 5
        assert result["unitsSucceeded"] == 5
        assert tracker["peak"] == 2

    def test_negative_spend_rows_fail_without_failing_the_unit(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        day = date(2025, 1, 1)
        pages = {day: [[_insight(day, "Refund", -5), _insight(day, "C", 5)]]}
        result = _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", day, day))

        unit = result["perUnitResults"][0]
        assert unit["status"] == "success"
        assert unit["rowsFailed"] == 1
        assert [r.campaign for r in db.query(AdPerformance).all()] == ["C"]

    def test_missing_credential_aborts_without_log(self, db, gateway):
        with pytest.raises(AuthError):
            _run(_orchestrator(gateway).run_backfill("org1", "facebook", date(2025, 1, 1), date(2025, 1, 2)))
        assert db.query(SyncLogEntry).count() == 0

    def test_disabled_credential_aborts(self, db, gateway):
        gateway.add("org1", "facebook", enabled=False, token="t", host="1")
        with pytest.raises(AuthError):
            _run(_orchestrator(gateway).run_backfill("org1", "facebook", date(2025, 1, 1), date(2025, 1, 1)))
        assert db.query(SyncLogEntry).count() == 0

    def test_rejected_token_aborts_before_units(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        orchestrator = _orchestrator(gateway, auth_error=AuthError("Facebook access token invalid or expired"))
        with pytest.raises(AuthError):
            _run(orchestrator.run_backfill("org1", "facebook", date(2025, 1, 1), date(2025, 1, 3)))
        assert db.query(SyncLogEntry).count() == 0
        assert db.query(AdPerformance).count() == 0

    def test_partial_pages_are_kept(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        day = date(2025, 1, 1)
        pages = {day: [[_insight(day, "A", 1), _insight(day, "B", 2)], UpstreamError("boom", status_code=500)]}
        result = _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", day, day))

        unit = result["perUnitResults"][0]
        assert unit["status"] == "error"
        assert unit["partial"] is True
        assert unit["recordsFetched"] == 2
        assert unit["inserted"] == 2
        assert result["status"] == "error"
        assert db.query(AdPerformance).count() == 2

    def test_all_failed_is_error(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        d1, d2 = date(2025, 1, 1), date(2025, 1, 2)
        pages = {d1: UpstreamError("x", status_code=500), d2: UpstreamError("y", status_code=500)}
        result = _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", d1, d2))

        assert result["status"] == "error"
        assert result["unitsFailed"] == 2
        assert db.query(SyncLogEntry).one().status == "error"

    def test_rerun_is_idempotent(self, db, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        day = date(2025, 1, 1)
        pages = {day: [[_insight(day, "A", 1)]]}
        _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", day, day))
        result = _run(_orchestrator(gateway, pages).run_backfill("org1", "facebook", day, day))

        assert result["perUnitResults"][0]["skipped"] == 1
        assert db.query(AdPerformance).count() == 1

    def test_range_validation(self, gateway):
        gateway.add("org1", "facebook", token="t", host="1")
        orchestrator = _orchestrator(gateway)
        with pytest.raises(ValidationError):
            _run(orchestrator.run_backfill("org1", "facebook", date(2025, 1, 2), date(2025, 1, 1)))
        with pytest.raises(ValidationError):
            _run(orchestrator.run_backfill("org1", "facebook", date(2024, 1, 1), date(2025, 1, 1)))
        with pytest.raises(ValidationError):
            _run(orchestrator.run_backfill(None, "facebook", date(2025, 1, 1), date(2025, 1, 1)))

    def test_unknown_provider(self, gateway):
        with pytest.raises(ConfigError):
            _run(_orchestrator(gateway).run_backfill("org1", "tiktok", date(2025, 1, 1), date(2025, 1, 1)))


# ────────────────────────────────────────────
# TENANT UNITS
# ────────────────────────────────────────────


class TestTenantSync:
    """One unit per tenant for whole-account pulls."""

    def test_each_tenant_fails_independently(self, db, gateway):
        gateway.add("org1", "shipbob", token="t1")
        gateway.add("org2", "shipbob", token="t2")
        gateway.add("org3", "shipbob", enabled=False, token="t3")
        product = {"sku": "SKU-1", "name": "Widget", "inventory_items": [{"total_fulfillable_quantity": 4, "total_onhand_quantity": 5}]}
        pages = {"org1": [[product]], "org2": UpstreamError("ShipBob API error: 503", status_code=503)}

        result = _run(_orchestrator(gateway, pages).run_backfill(None, "shipbob"))

        assert result["unitsTotal"] == 2
        assert result["status"] == "success"
        assert [e["unit"] for e in result["errors"]] == ["org2"]
        snapshot = db.query(InventorySnapshot).one()
        assert snapshot.org_id == "org1"
        assert snapshot.fulfillable_quantity == 4

        entry = db.query(SyncLogEntry).one()
        assert entry.org_id is None

    def test_single_tenant_auth_failure_aborts(self, db, gateway):
        with pytest.raises(AuthError):
            _run(_orchestrator(gateway).run_backfill("org9", "shipbob"))
        assert db.query(SyncLogEntry).count() == 0

    def test_cross_tenant_auth_failure_is_a_unit_failure(self, db, gateway):
        gateway.add("org1", "shipbob", token="t1")
        orchestrator = _orchestrator(gateway, auth_error=AuthError("ShipBob rejected the credential (401)"))
        result = _run(orchestrator.run_backfill(None, "shipbob"))

        assert result["status"] == "error"
        assert result["errors"][0]["unit"] == "org1"
        assert "401" in result["errors"][0]["errorMessage"]

    def test_no_enabled_tenants(self, db, gateway):
        result = _run(_orchestrator(gateway).run_backfill(None, "shipbob"))
        assert result["unitsTotal"] == 0
        assert result["status"] == "error"
