"""
Tests for the provider connectors with the HTTP transport replaced.

Each connector's `_send` is swapped for a scripted transport, so paging,
error mapping and retry run exactly as in production without a network.
"""
import asyncio
import gzip
import json
from datetime import date

import pytest

from storesync.connectors import base_connector
from storesync.connectors import (
    AmazonAdsConnector,
    FacebookConnector,
    HttpResponse,
    ShipBobConnector,
    ShopifyConnector,
)
from storesync.exceptions import AuthError, ConfigError, UpstreamError
from storesync.services.settings_gateway import SyncCredential


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


def _json(status, payload):
    return HttpResponse(status=status, body=json.dumps(payload).encode("utf-8"))


class ScriptedTransport:
    """Returns queued responses in order and records each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        return self.responses.pop(0)


def _connect(connector, *responses):
    transport = ScriptedTransport(*responses)
    connector._send = transport
    connector.retry_base_delay = 0
    connector.retry_max_delay = 0
    connector.page_delay = 0
    return transport


# ────────────────────────────────────────────
# SHIPBOB
# ────────────────────────────────────────────


class TestShipBob:
    """Numbered pages; a short page is the last."""

    def _connector(self):
        return ShipBobConnector(SyncCredential(org_id="org1", provider="shipbob", token="t"))

    def test_short_page_ends_paging(self):
        connector = self._connector()
        full = [{"sku": f"S{i}"} for i in range(250)]
        transport = _connect(connector, _json(200, full), _json(200, [{"sku": "last"}]))

        records = _run(connector.fetch_all("org1"))
        assert len(records) == 251
        assert [c[2]["params"]["Page"] for c in transport.calls] == ["1", "2"]

    def test_delay_runs_between_pages_only(self, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(base_connector.asyncio, "sleep", fake_sleep)
        connector = self._connector()
        full = [{"sku": f"S{i}"} for i in range(250)]
        transport = _connect(connector, _json(200, full), _json(200, full), _json(200, [{"sku": "last"}]))
        connector.page_delay = 0.25

        records = _run(connector.fetch_all("org1"))
        assert len(records) == 501
        assert len(transport.calls) == 3
        assert delays == [0.25, 0.25]

    def test_404_past_last_page_is_the_end(self):
        connector = self._connector()
        full = [{"sku": f"S{i}"} for i in range(250)]
        _connect(connector, _json(200, full), _json(404, {"message": "not found"}))
        assert len(_run(connector.fetch_all("org1"))) == 250

    def test_server_error_keeps_partial_records(self):
        connector = self._connector()
        full = [{"sku": f"S{i}"} for i in range(250)]
        transport = _connect(connector, _json(200, full), *[_json(500, {"error": "x"})] * connector.retry_max_attempts)

        with pytest.raises(UpstreamError) as exc:
            _run(connector.fetch_all("org1"))
        assert len(exc.value.partial_records) == 250
        assert len(transport.calls) == 1 + connector.retry_max_attempts

    def test_transient_error_is_retried(self):
        connector = self._connector()
        _connect(connector, _json(503, {}), _json(200, [{"sku": "A"}]))
        assert _run(connector.fetch_all("org1")) == [{"sku": "A"}]

    def test_unauthorized_is_not_retried(self):
        connector = self._connector()
        transport = _connect(connector, _json(401, {"message": "bad token"}))
        with pytest.raises(AuthError):
            _run(connector.fetch_all("org1"))
        assert len(transport.calls) == 1

    def test_missing_token(self):
        with pytest.raises(ConfigError):
            ShipBobConnector(SyncCredential(org_id="org1", provider="shipbob"))


# ────────────────────────────────────────────
# FACEBOOK
# ────────────────────────────────────────────


class TestFacebook:
    """Graph API insights follow paging.next."""

    def _connector(self):
        return FacebookConnector(SyncCredential(org_id="org1", provider="facebook", token="tok", host="123"))

    def test_account_prefix(self):
        assert self._connector().ad_account_id == "act_123"

    def test_follows_paging_next(self):
        connector = self._connector()
        next_url = "https://graph.facebook.com/v21.0/act_123/insights?after=abc"
        transport = _connect(
            connector,
            _json(200, {"data": [{"ad_name": "A"}], "paging": {"next": next_url}}),
            _json(200, {"data": [{"ad_name": "B"}], "paging": {}}),
        )
        records = _run(connector.fetch_all(date(2025, 1, 1)))

        assert [r["ad_name"] for r in records] == ["A", "B"]
        first_params = transport.calls[0][2]["params"]
        assert json.loads(first_params["time_range"]) == {"since": "2025-01-01", "until": "2025-01-01"}
        assert transport.calls[1][1] == next_url

    def test_expired_token_is_auth_error(self):
        connector = self._connector()
        _connect(connector, _json(400, {"error": {"message": "Session has expired", "type": "OAuthException", "code": 190}}))
        with pytest.raises(AuthError):
            _run(connector.fetch_all(date(2025, 1, 1)))

    def test_other_client_error_is_upstream(self):
        connector = self._connector()
        _connect(connector, _json(400, {"error": {"message": "Invalid parameter", "code": 100}}))
        with pytest.raises(UpstreamError):
            _run(connector.fetch_all(date(2025, 1, 1)))


# ────────────────────────────────────────────
# SHOPIFY
# ────────────────────────────────────────────


class TestShopify:
    """GraphQL cursor paging and in-body errors."""

    def _connector(self, resource="orders"):
        credential = SyncCredential(org_id="org1", provider="shopify", host="acme.myshopify.com", token="tok")
        return ShopifyConnector(credential, resource=resource)

    def test_orders_for_one_day(self):
        connector = self._connector()
        page = {"data": {"orders": {
            "edges": [{"node": {"id": "gid://shopify/Order/1"}}],
            "pageInfo": {"hasNextPage": False, "endCursor": "c1"},
        }}}
        transport = _connect(connector, _json(200, page))
        records = _run(connector.fetch_all(date(2025, 1, 5)))

        assert records == [{"id": "gid://shopify/Order/1"}]
        method, url, kwargs = transport.calls[0]
        assert url == "https://acme.myshopify.com/admin/api/2024-10/graphql.json"
        assert kwargs["json"]["variables"]["query"] == "created_at:>=2025-01-05T00:00:00Z created_at:<=2025-01-05T23:59:59Z"

    def test_graphql_errors_raise(self):
        connector = self._connector("customers")
        _connect(connector, _json(200, {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}))
        with pytest.raises(UpstreamError) as exc:
            _run(connector.fetch_all("org1"))
        assert exc.value.upstream_status == 429

    def test_unknown_resource(self):
        with pytest.raises(ConfigError):
            self._connector("products")


# ────────────────────────────────────────────
# AMAZON ADS
# ────────────────────────────────────────────


class TestAmazonAds:
    """Token exchange, then create -> poll -> download per day."""

    def _connector(self):
        credential = SyncCredential(
            org_id="org1",
            provider="amazon_ads",
            extra={"client_id": "cid", "client_secret": "cs", "refresh_token": "rt", "profile_id": 42},
        )
        connector = AmazonAdsConnector(credential)
        connector.poll_seconds = 0
        return connector

    def test_report_flow(self):
        connector = self._connector()
        rows = [{"date": "2025-01-01", "campaignName": "SP", "cost": 5.0, "sales14d": 20.0}]
        transport = _connect(
            connector,
            _json(200, {"access_token": "at"}),
            _json(200, {"reportId": "r1"}),
            _json(200, {"status": "PENDING"}),
            _json(200, {"status": "COMPLETED", "url": "https://reports.example/r1.json.gz"}),
            HttpResponse(status=200, body=gzip.compress(json.dumps(rows).encode("utf-8"))),
        )
        _run(connector.authenticate())
        records = _run(connector.fetch_all(date(2025, 1, 1)))

        assert records == rows
        assert len(transport.calls) == 5
        assert transport.calls[1][2]["headers"]["Authorization"] == "Bearer at"
        assert "headers" not in transport.calls[4][2]

    def test_token_exchange_failure(self):
        connector = self._connector()
        _connect(connector, _json(400, {"error": "invalid_grant"}))
        with pytest.raises(AuthError):
            _run(connector.authenticate())

    def test_failed_report(self):
        connector = self._connector()
        _connect(
            connector,
            _json(200, {"access_token": "at"}),
            _json(200, {"reportId": "r1"}),
            _json(200, {"status": "FAILURE", "failureReason": "bad"}),
        )
        with pytest.raises(UpstreamError):
            _run(connector.fetch_all(date(2025, 1, 1)))

    def test_missing_settings(self):
        with pytest.raises(ConfigError):
            AmazonAdsConnector(SyncCredential(org_id="org1", provider="amazon_ads", extra={"client_id": "x"}))
