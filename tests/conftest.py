"""
Shared fixtures.

The environment is pointed at a throwaway SQLite file before the package is
imported, because settings are read once at import time.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="storesync-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["PAGE_DELAY_SECONDS"] = "0"
os.environ["BACKFILL_DELAY_SECONDS"] = "0"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["RETRY_MAX_DELAY"] = "0"
os.environ["AMAZON_REPORT_POLL_SECONDS"] = "0"

from typing import Dict, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402

from storesync.models.base import Base, SessionLocal, init_db  # noqa: E402
from storesync.services.settings_gateway import (  # noqa: E402
    LifecycleThresholds,
    SettingsGateway,
    SyncCredential,
    set_settings_gateway,
)


class InMemoryGateway(SettingsGateway):
    """Settings gateway backed by plain dicts."""

    def __init__(self):
        self.credentials: Dict[Tuple[str, str], SyncCredential] = {}
        self.thresholds: Dict[str, LifecycleThresholds] = {}

    def add(self, org_id: str, provider: str, enabled: bool = True, **kwargs) -> SyncCredential:
        credential = SyncCredential(org_id=org_id, provider=provider, enabled=enabled, **kwargs)
        self.credentials[(org_id, provider)] = credential
        return credential

    def get_credentials(self, org_id: str, provider: str) -> Optional[SyncCredential]:
        return self.credentials.get((org_id, provider))

    def list_tenants_with_provider_enabled(self, provider: str) -> List[str]:
        return sorted(org for (org, p), c in self.credentials.items() if p == provider and c.enabled)

    def get_lifecycle_thresholds(self, org_id: str) -> LifecycleThresholds:
        return self.thresholds.get(org_id) or LifecycleThresholds.defaults()

    def find_tenant_by_shop_domain(self, shop_domain: str) -> Optional[str]:
        for (org, provider), credential in self.credentials.items():
            if provider == "shopify" and (credential.host or "").lower() == (shop_domain or "").lower():
                return org
        return None


@pytest.fixture(scope="session", autouse=True)
def _database():
    init_db()
    yield


@pytest.fixture
def db():
    """Session on an emptied database."""
    session = SessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    gw = InMemoryGateway()
    set_settings_gateway(gw)
    yield gw
    set_settings_gateway(None)
