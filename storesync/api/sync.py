"""
Data synchronization endpoints
"""
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session
from typing import Optional

from storesync.exceptions import ValidationError
from storesync.models.base import get_db
from storesync.models.sync_log import SyncLogEntry
from storesync.services.ingest_service import decode_upload, ingest_delimited_file
from storesync.api.schemas import BackfillRequest, TenantSyncRequest

router = APIRouter(prefix="/sync", tags=["sync"])

# Lazy-init so connectors are only imported when a sync is requested
_orchestrator = None


def _get_orchestrator():
    global _orchestrator
    if _orchestrator is None:
        from storesync.services.sync_orchestrator import SyncOrchestrator
        _orchestrator = SyncOrchestrator()
    return _orchestrator


@router.get("/logs")
def get_sync_logs(
    org_id: str = Query(..., description="Tenant id"),
    source: Optional[str] = Query(None, description="Filter by source"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Recent sync log entries for a tenant, newest first."""
    query = db.query(SyncLogEntry).filter(SyncLogEntry.org_id == org_id)
    if source:
        query = query.filter(SyncLogEntry.source == source)
    entries = query.order_by(SyncLogEntry.synced_at.desc(), SyncLogEntry.id.desc()).limit(limit).all()
    return {
        "logs": [
            {
                "id": e.id,
                "source": e.source,
                "status": e.status,
                "syncedAt": e.synced_at.isoformat() if e.synced_at else None,
                "details": e.details,
            }
            for e in entries
        ]
    }


@router.post("/{provider}/backfill")
async def run_backfill(provider: str, body: BackfillRequest):
    """
    Backfill one tenant over an inclusive date range, one unit per day.

    Example: POST /sync/facebook/backfill {"org_id": "1", "start": "2025-01-01", "end": "2025-01-31"}
    """
    return await _get_orchestrator().run_backfill(body.org_id, provider, start=body.start, end=body.end)


@router.post("/{provider}/tenants")
async def run_tenant_sync(provider: str, body: Optional[TenantSyncRequest] = None):
    """
    Run a whole-account sync, one unit per tenant.

    With no body every tenant that has the provider enabled is synced.
    """
    body = body or TenantSyncRequest()
    return await _get_orchestrator().run_backfill(body.org_id, provider, tenants=body.tenants)


@router.post("/{provider}/upload")
async def upload_file(
    provider: str,
    org_id: str = Form(...),
    deactivate_missing: bool = Form(False),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """Ingest an exported CSV for a tenant."""
    contents = await file.read()
    if not contents:
        raise ValidationError("Uploaded file is empty")
    return ingest_delimited_file(
        org_id,
        provider,
        decode_upload(contents),
        deactivate_missing=deactivate_missing,
        db=db,
    )
