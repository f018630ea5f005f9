"""
Read-only access to tenant settings.

Credentials, tenant enumeration and lifecycle thresholds are owned by the
settings subsystem. The ingestion core reads them through a SettingsGateway
and takes a snapshot at job start.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from storesync.config import get_settings
from storesync.exceptions import ConfigError
from storesync.models.base import SessionLocal
from storesync.models.integration_setting import IntegrationSetting

LIFECYCLE_PROVIDER = "lifecycle"


@dataclass(frozen=True)
class SyncCredential:
    """Snapshot of one tenant's connection settings for one provider."""
    org_id: str
    provider: str
    host: Optional[str] = None
    token: Optional[str] = None
    secret: Optional[str] = None
    enabled: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    def require(self, *names: str) -> None:
        """Raise ConfigError naming any missing extra settings."""
        missing = [n for n in names if not self.extra.get(n)]
        if missing:
            raise ConfigError(
                f"{self.provider} settings incomplete for org {self.org_id}",
                details=f"missing: {', '.join(missing)}",
            )


@dataclass(frozen=True)
class LifecycleThresholds:
    """Days since last order bounding the new/reorder/lapsed buckets."""
    new_max_days: int
    reorder_max_days: int
    lapsed_max_days: int

    def __post_init__(self):
        if not (0 <= self.new_max_days < self.reorder_max_days < self.lapsed_max_days):
            raise ConfigError(
                "Lifecycle thresholds must satisfy new < reorder < lapsed",
                details=f"{self.new_max_days}/{self.reorder_max_days}/{self.lapsed_max_days}",
            )

    @classmethod
    def defaults(cls) -> "LifecycleThresholds":
        settings = get_settings()
        return cls(
            new_max_days=settings.lifecycle_new_max_days,
            reorder_max_days=settings.lifecycle_reorder_max_days,
            lapsed_max_days=settings.lifecycle_lapsed_max_days,
        )

    def to_dict(self) -> dict:
        return {
            "newMaxDays": self.new_max_days,
            "reorderMaxDays": self.reorder_max_days,
            "lapsedMaxDays": self.lapsed_max_days,
        }


class SettingsGateway(ABC):
    """Inbound interface to the settings subsystem."""

    @abstractmethod
    def get_credentials(self, org_id: str, provider: str) -> Optional[SyncCredential]:
        """Credential snapshot, or None when the tenant has none for provider."""

    @abstractmethod
    def list_tenants_with_provider_enabled(self, provider: str) -> List[str]:
        """Tenants with an enabled credential for provider."""

    @abstractmethod
    def get_lifecycle_thresholds(self, org_id: str) -> LifecycleThresholds:
        """Tenant lifecycle thresholds, falling back to configured defaults."""

    @abstractmethod
    def find_tenant_by_shop_domain(self, shop_domain: str) -> Optional[str]:
        """Tenant whose storefront credential uses shop_domain."""


def credential_from_config(org_id: str, provider: str, enabled: bool, config: Optional[dict]) -> SyncCredential:
    """Build a credential from a provider config mapping; unknown keys land in extra."""
    config = dict(config or {})
    host = config.pop("host", None) or config.pop("store_domain", None)
    token = config.pop("token", None) or config.pop("access_token", None)
    secret = config.pop("secret", None) or config.pop("webhook_secret", None)
    return SyncCredential(
        org_id=str(org_id),
        provider=provider,
        host=host,
        token=token,
        secret=secret,
        enabled=bool(enabled),
        extra=config,
    )


class DatabaseSettingsGateway(SettingsGateway):
    """Reads the integration_settings table."""

    def get_credentials(self, org_id: str, provider: str) -> Optional[SyncCredential]:
        db = SessionLocal()
        try:
            setting = db.query(IntegrationSetting).filter(
                IntegrationSetting.org_id == str(org_id),
                IntegrationSetting.provider == provider
            ).first()
            if not setting:
                return None
            return credential_from_config(setting.org_id, provider, setting.enabled, setting.config)
        finally:
            db.close()

    def list_tenants_with_provider_enabled(self, provider: str) -> List[str]:
        db = SessionLocal()
        try:
            rows = db.query(IntegrationSetting.org_id).filter(
                IntegrationSetting.provider == provider,
                IntegrationSetting.enabled.is_(True)
            ).order_by(IntegrationSetting.org_id).all()
            return [row[0] for row in rows]
        finally:
            db.close()

    def get_lifecycle_thresholds(self, org_id: str) -> LifecycleThresholds:
        db = SessionLocal()
        try:
            setting = db.query(IntegrationSetting).filter(
                IntegrationSetting.org_id == str(org_id),
                IntegrationSetting.provider == LIFECYCLE_PROVIDER
            ).first()
        finally:
            db.close()
        defaults = LifecycleThresholds.defaults()
        if not setting or not setting.config:
            return defaults
        config = setting.config
        return LifecycleThresholds(
            new_max_days=int(config.get("new_max_days", defaults.new_max_days)),
            reorder_max_days=int(config.get("reorder_max_days", defaults.reorder_max_days)),
            lapsed_max_days=int(config.get("lapsed_max_days", defaults.lapsed_max_days)),
        )

    def find_tenant_by_shop_domain(self, shop_domain: str) -> Optional[str]:
        wanted = (shop_domain or "").strip().lower()
        if not wanted:
            return None
        db = SessionLocal()
        try:
            settings = db.query(IntegrationSetting).filter(
                IntegrationSetting.provider == "shopify"
            ).all()
        finally:
            db.close()
        for setting in settings:
            config = setting.config or {}
            domain = (config.get("store_domain") or config.get("host") or "").strip().lower()
            if domain == wanted:
                return setting.org_id
        return None


_gateway: Optional[SettingsGateway] = None
_gateway_lock = threading.Lock()


def get_settings_gateway() -> SettingsGateway:
    """Process-wide gateway, created on first use."""
    global _gateway
    if _gateway is None:
        with _gateway_lock:
            if _gateway is None:
                _gateway = DatabaseSettingsGateway()
    return _gateway


def set_settings_gateway(gateway: Optional[SettingsGateway]) -> None:
    """Swap the process-wide gateway (None restores the database default)."""
    global _gateway
    with _gateway_lock:
        _gateway = gateway
