"""
Configuration management for storesync
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "storesync"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./storesync.db"

    # Sync tuning
    page_delay_seconds: float = 0.5  # Delay before each follow-up page request
    backfill_delay_seconds: float = 0.3  # Delay between dated units on the same worker
    sync_max_concurrency: int = 4  # Units of work running at once
    max_backfill_days: int = 92  # Longest date range a single job accepts
    http_timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Report constants
    platform_fee_rate: float = 0.02  # Storefront payment processing fee
    fulfillment_fee_per_order: float = 4.93

    # Customer lifecycle defaults (days since last order), overridable per tenant
    lifecycle_new_max_days: int = 30
    lifecycle_reorder_max_days: int = 60
    lifecycle_lapsed_max_days: int = 90

    # Provider endpoints
    facebook_graph_url: str = "https://graph.facebook.com"
    facebook_graph_version: str = "v21.0"
    shopify_api_version: str = "2024-10"
    shipbob_api_url: str = "https://api.shipbob.com/1.0"
    amazon_ads_api_url: str = "https://advertising-api-eu.amazon.com"
    amazon_token_url: str = "https://api.amazon.co.uk/auth/o2/token"
    amazon_report_poll_seconds: float = 5.0
    amazon_report_max_polls: int = 60
    posthog_host: str = "eu.posthog.com"

    # Scheduler
    enable_scheduler: bool = True
    scheduler_timezone: str = "Europe/London"
    sync_daily_hour: int = 5
    sync_inventory_hour: int = 6

    # Webhooks
    webhook_shop_domain_header: str = "x-shopify-shop-domain"
    webhook_hmac_header: str = "x-shopify-hmac-sha256"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
