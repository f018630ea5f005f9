"""
Delimited file ingestion.

Parses an uploaded export, normalizes and deduplicates its rows, writes them
through the upsert store and records one SyncLogEntry. Runs sequentially in
the calling task.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy.orm import Session

from storesync.exceptions import StoreSyncError, ValidationError
from storesync.models.base import SessionLocal
from storesync.models.sync_log import SyncLogEntry
from storesync.services.dedup import dedupe_with_count
from storesync.services.delimited import PRODUCT_FIELDS, UPLOAD_FORMATS, normalize_file, read_delimited
from storesync.services.upsert_store import UpsertStore
from storesync.utils.helpers import sanitize_error
from storesync.utils.logger import log


def decode_upload(raw: bytes) -> str:
    """Uploads are UTF-8 (with or without BOM); fall back to Latin-1 for spreadsheet exports."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def ingest_delimited_file(
    org_id: str,
    provider: str,
    raw_text: str,
    deactivate_missing: bool = False,
    db: Session = None,
) -> Dict[str, Any]:
    """
    Ingest one delimited file for a tenant.

    Row-level problems never abort the file; they are counted and up to 20
    are sampled. A file with no data rows or an unusable header is rejected
    with ValidationError; like a failed write, it leaves only an error entry
    in the sync log. A missing org_id or unknown format is not logged.
    """
    if not org_id:
        raise ValidationError("org_id is required", field="org_id")
    if provider not in UPLOAD_FORMATS:
        raise ValidationError(
            f"Unsupported upload format: {provider}",
            field="provider",
            value=provider,
        )

    owns_session = db is None
    db = db or SessionLocal()
    try:
        try:
            data = read_delimited(raw_text)
            normalized = normalize_file(provider, data)
            rows, duplicates = dedupe_with_count(normalized.rows)

            store = UpsertStore(db)
            deactivated = 0
            if provider == "products":
                written = store.upsert_products(org_id, rows, PRODUCT_FIELDS)
                if deactivate_missing and rows:
                    deactivated = store.deactivate_missing_products(org_id, [r.sku for r in rows])
            elif provider == "shopify_orders":
                written = store.upsert_orders(org_id, rows)
            else:
                written = store.upsert(org_id, rows)
        except Exception as e:
            # Whole-file failures are sync attempts too
            message = sanitize_error(e.message if isinstance(e, StoreSyncError) else f"{type(e).__name__}: {e}")
            log.error(f"{provider} upload for org {org_id} failed: {message}")
            db.rollback()
            _record(db, org_id, provider, "error", {"error": message, "rowsWritten": 0})
            raise

        summary = {
            "provider": provider,
            "rowsTotal": normalized.total,
            "rowsParsed": normalized.parsed,
            "rowsFailed": normalized.failed,
            "duplicatesRemoved": duplicates,
            "rowsWritten": written.written,
            "inserted": written.inserted,
            "updated": written.updated,
            "skipped": written.skipped,
            "sampleErrors": normalized.sample_errors,
        }
        if provider == "products":
            summary["deactivated"] = deactivated

        status = "success" if normalized.parsed > 0 or normalized.total == 0 else "error"
        _record(db, org_id, provider, status, {k: v for k, v in summary.items() if k != "provider"})
    finally:
        if owns_session:
            db.close()

    log.info(
        f"Ingested {provider} file for org {org_id}: {summary['rowsParsed']}/{summary['rowsTotal']} parsed, "
        f"{duplicates} duplicates, {summary['rowsWritten']} written"
    )
    return summary


def _record(db: Session, org_id: str, provider: str, status: str, details: dict):
    db.add(SyncLogEntry(
        org_id=org_id,
        source=f"{provider}-upload",
        status=status,
        synced_at=datetime.utcnow(),
        details=details,
    ))
    db.commit()
