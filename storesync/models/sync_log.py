"""
Sync audit log

One append-only entry per orchestrator run or file ingestion.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from datetime import datetime

from storesync.models.base import Base


class SyncLogEntry(Base):
    """
    Outcome of one job invocation.

    status: success (at least one unit succeeded), error, pending.
    org_id is NULL for cross-tenant runs; per-tenant outcomes live in details.
    """
    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_org_source_synced", "org_id", "source", "synced_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=True)
    source = Column(String, nullable=False)
    status = Column(String, nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    details = Column(JSON, nullable=True)
