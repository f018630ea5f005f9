"""
Integration settings

Per-tenant provider configuration. Written by the settings subsystem; the
ingestion core only reads it through storesync.services.settings_gateway.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, UniqueConstraint
from datetime import datetime

from storesync.models.base import Base


class IntegrationSetting(Base):
    """
    Provider settings for one tenant.

    `config` holds the provider-specific JSON: host/shop domain, access token,
    app or webhook secret, account/project ids. The "lifecycle" provider row
    carries the customer lifecycle thresholds.
    """
    __tablename__ = "integration_settings"
    __table_args__ = (
        UniqueConstraint("org_id", "provider", name="uq_integration_settings_org_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)
    enabled = Column(Boolean, default=True)
    config = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
