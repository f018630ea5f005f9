"""
Sync Orchestrator

Drives one ingestion job: resolve credentials, explode the request into units
of work (calendar days or tenants), run Fetch -> Normalize -> Dedup -> Upsert
per unit with bounded concurrency, and record exactly one SyncLogEntry.
"""
import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytz

from storesync.config import get_settings
from storesync.connectors import (
    AmazonAdsConnector,
    BaseConnector,
    FacebookConnector,
    PostHogConnector,
    ShipBobConnector,
    ShopifyConnector,
)
from storesync.exceptions import AuthError, ConfigError, StoreSyncError, UpstreamError, ValidationError
from storesync.models.base import SessionLocal
from storesync.models.sync_log import SyncLogEntry
from storesync.services.dedup import dedupe_with_count
from storesync.services.normalizers import (
    normalize_amazon_campaign_row,
    normalize_batch,
    normalize_facebook_insight,
    normalize_posthog_day,
    normalize_shipbob_product,
    normalize_shopify_customer_node,
    normalize_shopify_order_node,
)
from storesync.services.settings_gateway import SettingsGateway, SyncCredential, get_settings_gateway
from storesync.services.upsert_store import UpsertResult, UpsertStore
from storesync.utils.helpers import date_range, sanitize_error
from storesync.utils.logger import log

settings = get_settings()

UNIT_DATE = "date"
UNIT_TENANT = "tenant"


@dataclass(frozen=True)
class SyncSource:
    """How one provider's data flows into the store."""
    name: str
    credential_provider: str
    unit_kind: str
    connector: Callable[[SyncCredential], BaseConnector]
    # (raw record, day) -> canonical row or None; day is the unit date, or
    # today's snapshot date for tenant units
    normalizer: Callable[[Any, date], Any]
    store: Callable[[UpsertStore, str, Sequence[Any]], UpsertResult]


SOURCES: Dict[str, SyncSource] = {
    "facebook": SyncSource(
        name="facebook",
        credential_provider="facebook",
        unit_kind=UNIT_DATE,
        connector=FacebookConnector,
        normalizer=normalize_facebook_insight,
        store=lambda store, org_id, rows: store.upsert(org_id, rows),
    ),
    "amazon_ads": SyncSource(
        name="amazon_ads",
        credential_provider="amazon_ads",
        unit_kind=UNIT_DATE,
        connector=AmazonAdsConnector,
        normalizer=lambda record, day: normalize_amazon_campaign_row(record),
        store=lambda store, org_id, rows: store.upsert(org_id, rows),
    ),
    "posthog": SyncSource(
        name="posthog",
        credential_provider="posthog",
        unit_kind=UNIT_DATE,
        connector=PostHogConnector,
        normalizer=normalize_posthog_day,
        store=lambda store, org_id, rows: store.upsert(org_id, rows),
    ),
    "shopify_orders": SyncSource(
        name="shopify_orders",
        credential_provider="shopify",
        unit_kind=UNIT_DATE,
        connector=lambda credential: ShopifyConnector(credential, resource="orders"),
        normalizer=lambda record, day: normalize_shopify_order_node(record),
        store=lambda store, org_id, rows: store.upsert_orders(org_id, rows),
    ),
    "shopify_customers": SyncSource(
        name="shopify_customers",
        credential_provider="shopify",
        unit_kind=UNIT_TENANT,
        connector=lambda credential: ShopifyConnector(credential, resource="customers"),
        normalizer=lambda record, day: normalize_shopify_customer_node(record),
        store=lambda store, org_id, rows: store.upsert_customers(org_id, rows),
    ),
    "shipbob": SyncSource(
        name="shipbob",
        credential_provider="shipbob",
        unit_kind=UNIT_TENANT,
        connector=ShipBobConnector,
        normalizer=normalize_shipbob_product,
        store=lambda store, org_id, rows: store.upsert(org_id, rows),
    ),
}


def get_source(provider: str) -> SyncSource:
    source = SOURCES.get(provider)
    if source is None:
        raise ConfigError(f"Unknown sync provider: {provider}", details=f"expected one of {', '.join(sorted(SOURCES))}")
    return source


def local_today() -> date:
    """Today in the business timezone; snapshot dates and 'yesterday' use it."""
    return datetime.now(pytz.timezone(settings.scheduler_timezone)).date()


@dataclass
class UnitResult:
    """Outcome of one unit; each unit writes only its own slot."""
    unit: str
    status: str = "pending"
    records_fetched: int = 0
    rows_parsed: int = 0
    rows_failed: int = 0
    duplicates_removed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    partial: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        body = {
            "unit": self.unit,
            "status": self.status,
            "recordsFetched": self.records_fetched,
            "rowsParsed": self.rows_parsed,
            "rowsFailed": self.rows_failed,
            "duplicatesRemoved": self.duplicates_removed,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
        }
        if self.partial:
            body["partial"] = True
        if self.error:
            body["error"] = self.error
        return body


class SyncOrchestrator:
    """Runs backfills and cross-tenant syncs"""

    def __init__(
        self,
        gateway: Optional[SettingsGateway] = None,
        connector_factory: Optional[Callable[[SyncSource, SyncCredential], BaseConnector]] = None,
        max_concurrency: Optional[int] = None,
        unit_delay: Optional[float] = None,
    ):
        self._gateway = gateway
        self.connector_factory = connector_factory or (lambda source, credential: source.connector(credential))
        self.max_concurrency = max(1, max_concurrency or settings.sync_max_concurrency)
        self.unit_delay = settings.backfill_delay_seconds if unit_delay is None else unit_delay

    @property
    def gateway(self) -> SettingsGateway:
        # Resolved per use so a long-lived orchestrator follows set_settings_gateway()
        return self._gateway or get_settings_gateway()

    # ── Entry point ────────────────────────────────────

    async def run_backfill(
        self,
        org_id: Optional[str],
        provider: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        tenants: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """
        Run one job and return its summary.

        Date sources need org_id plus an inclusive start/end range. Tenant
        sources take an explicit tenant list, a single org_id, or (neither)
        every tenant with the provider enabled.

        Raises AuthError/ConfigError/ValidationError before any unit runs;
        those are not recorded as sync attempts.
        """
        source = get_source(provider)
        log.info(f"Starting {provider} sync (org={org_id or 'all'}, {start}..{end})")

        try:
            if source.unit_kind == UNIT_DATE:
                units, connectors = await self._prepare_date_units(source, org_id, start, end)
            else:
                units, connectors = await self._prepare_tenant_units(source, org_id, tenants)
        except (AuthError, ConfigError, ValidationError):
            raise
        except Exception as e:
            # Failed before any unit ran; still leave an audit trail
            message = sanitize_error(f"{type(e).__name__}: {e}")
            log.error(f"{provider} sync aborted before any unit ran: {message}")
            self._record(org_id, provider, "error", {"error": message, "unitsTotal": 0})
            raise

        slots: List[Optional[UnitResult]] = [None] * len(units)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def worker(index: int, unit_org: str, unit: Any):
            async with semaphore:
                if index > 0 and self.unit_delay > 0:
                    await asyncio.sleep(self.unit_delay)
                slots[index] = await self._run_unit(source, connectors.get(unit_org), unit_org, unit)

        await asyncio.gather(*(worker(i, unit_org, unit) for i, (unit_org, unit) in enumerate(units)))

        results = [slot for slot in slots if slot is not None]
        succeeded = sum(1 for r in results if r.succeeded)
        errors = [{"unit": r.unit, "errorMessage": r.error} for r in results if not r.succeeded]
        status = "success" if succeeded > 0 else "error"

        summary = {
            "provider": provider,
            "status": status,
            "unitsTotal": len(units),
            "unitsSucceeded": succeeded,
            "unitsFailed": len(results) - succeeded,
            "perUnitResults": [r.to_dict() for r in results],
            "errors": errors,
        }
        details = {k: v for k, v in summary.items() if k not in ("provider", "status")}
        if start and end:
            details["range"] = {"start": start.isoformat(), "end": end.isoformat()}
        log_org = org_id if source.unit_kind == UNIT_DATE or (org_id and not tenants) else None
        summary["syncLogId"] = self._record(log_org, provider, status, details)

        log_fn = log.info if not errors else log.warning
        log_fn(
            f"{provider} sync finished: {succeeded}/{len(units)} units succeeded"
            + (f", {len(errors)} failed" if errors else "")
        )
        return summary

    # ── Authenticate ───────────────────────────────────

    def _credential(self, org_id: str, source: SyncSource) -> SyncCredential:
        credential = self.gateway.get_credentials(org_id, source.credential_provider)
        if credential is None:
            raise AuthError(f"{source.credential_provider} is not configured for org {org_id}")
        if not credential.enabled:
            raise AuthError(f"{source.credential_provider} is disabled for org {org_id}")
        return credential

    async def _connect(self, source: SyncSource, credential: SyncCredential) -> BaseConnector:
        connector = self.connector_factory(source, credential)
        await connector.authenticate()
        return connector

    async def _prepare_date_units(self, source: SyncSource, org_id: Optional[str], start: Optional[date], end: Optional[date]):
        if not org_id:
            raise ValidationError("org_id is required", field="org_id")
        if start is None or end is None:
            raise ValidationError("start and end dates are required", field="start")
        if end < start:
            raise ValidationError("end must not be before start", field="end")
        days = date_range(start, end)
        if len(days) > settings.max_backfill_days:
            raise ValidationError(
                f"Date range too long: {len(days)} days (max {settings.max_backfill_days}); "
                f"re-run with a narrower range",
                field="end",
            )
        connector = await self._connect(source, self._credential(org_id, source))
        return [(org_id, day) for day in days], {org_id: connector}

    async def _prepare_tenant_units(self, source: SyncSource, org_id: Optional[str], tenants: Optional[Sequence[str]]):
        if tenants:
            tenant_ids = list(dict.fromkeys(str(t) for t in tenants))
        elif org_id:
            tenant_ids = [org_id]
        else:
            tenant_ids = self.gateway.list_tenants_with_provider_enabled(source.credential_provider)

        connectors: Dict[str, Optional[BaseConnector]] = {}
        if org_id and not tenants:
            # Single-tenant run: a bad credential aborts the job
            connectors[org_id] = await self._connect(source, self._credential(org_id, source))
        return [(tenant, tenant) for tenant in tenant_ids], connectors

    # ── Per unit ───────────────────────────────────────

    async def _run_unit(self, source: SyncSource, connector: Optional[BaseConnector], org_id: str, unit: Any) -> UnitResult:
        label = unit.isoformat() if isinstance(unit, date) else str(unit)
        result = UnitResult(unit=label)
        day = unit if isinstance(unit, date) else local_today()
        fetch_error: Optional[UpstreamError] = None

        try:
            if connector is None:
                # Cross-tenant units authenticate independently
                connector = await self._connect(source, self._credential(org_id, source))
            try:
                records = await connector.fetch_all(unit)
            except UpstreamError as e:
                records = e.partial_records
                fetch_error = e

            result.records_fetched = len(records)
            normalized = normalize_batch(records, lambda record: source.normalizer(record, day))
            rows, dropped = dedupe_with_count(normalized.rows)
            result.rows_parsed = normalized.parsed
            result.rows_failed = normalized.failed
            result.duplicates_removed = dropped
            if normalized.sample_errors:
                log.warning(f"{source.name} {label}: {normalized.failed} rows failed, first: {normalized.sample_errors[0]}")

            if rows:
                db = SessionLocal()
                try:
                    written = source.store(UpsertStore(db), org_id, rows)
                finally:
                    db.close()
                result.inserted = written.inserted
                result.updated = written.updated
                result.skipped = written.skipped

            if fetch_error is not None:
                raise fetch_error
            result.status = "success"
        except Exception as e:
            result.status = "error"
            result.partial = fetch_error is not None and result.records_fetched > 0
            result.error = sanitize_error(e.message if isinstance(e, StoreSyncError) else f"{type(e).__name__}: {e}", 300)
            log.warning(f"{source.name} unit {label} (org {org_id}) failed: {result.error}")
        return result

    # ── Record ─────────────────────────────────────────

    def _record(self, org_id: Optional[str], source: str, status: str, details: dict) -> int:
        db = SessionLocal()
        try:
            entry = SyncLogEntry(
                org_id=org_id,
                source=source,
                status=status,
                synced_at=datetime.utcnow(),
                details=details,
            )
            db.add(entry)
            db.commit()
            return entry.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def yesterday() -> date:
    return local_today() - timedelta(days=1)
