"""
Scheduler for automated provider syncs

Uses APScheduler to run the daily jobs inside the API process.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import pytz

from storesync.config import get_settings
from storesync.exceptions import StoreSyncError
from storesync.services.settings_gateway import get_settings_gateway
from storesync.utils.logger import log

settings = get_settings()
LOCAL_TZ = pytz.timezone(settings.scheduler_timezone)
scheduler = AsyncIOScheduler(timezone=LOCAL_TZ)

# Date-unit providers backfilled for yesterday every morning
DAILY_PROVIDERS = ("facebook", "posthog", "amazon_ads")


# Sync Functions

async def sync_shipbob_inventory() -> dict:
    """Snapshot ShipBob inventory for every tenant with ShipBob enabled (daily)"""
    from storesync.services.sync_orchestrator import SyncOrchestrator
    log.info("Starting ShipBob inventory snapshot...")
    try:
        return await SyncOrchestrator().run_backfill(None, "shipbob")
    except Exception as e:
        log.error(f"ShipBob inventory snapshot failed: {str(e)}")
        return {"status": "error", "error": str(e)}


async def sync_daily_backfills() -> dict:
    """Backfill yesterday for every enabled tenant of each daily provider"""
    from storesync.services.sync_orchestrator import SOURCES, SyncOrchestrator, yesterday
    day = yesterday()
    orchestrator = SyncOrchestrator()
    gateway = get_settings_gateway()
    outcomes = {}

    for provider in DAILY_PROVIDERS:
        tenants = gateway.list_tenants_with_provider_enabled(SOURCES[provider].credential_provider)
        for org_id in tenants:
            key = f"{provider}:{org_id}"
            try:
                result = await orchestrator.run_backfill(org_id, provider, start=day, end=day)
                outcomes[key] = result["status"]
            except StoreSyncError as e:
                # One tenant's credential problem must not stop the others
                log.error(f"Daily {provider} backfill for org {org_id} rejected: {e.message}")
                outcomes[key] = "rejected"
            except Exception as e:
                log.error(f"Daily {provider} backfill for org {org_id} failed: {str(e)}")
                outcomes[key] = "error"

    log.info(f"Daily backfills for {day}: {len(outcomes)} runs, "
             f"{sum(1 for s in outcomes.values() if s == 'success')} succeeded")
    return {"date": day.isoformat(), "runs": outcomes}


def setup_scheduler():
    """
    Configure the sync jobs.

    All cron times are in settings.scheduler_timezone.

    - Daily backfills (Facebook, PostHog, Amazon Ads): yesterday, at sync_daily_hour
    - ShipBob inventory snapshot: every tenant, at sync_inventory_hour
    """
    scheduler.add_job(
        sync_daily_backfills,
        trigger=CronTrigger(hour=settings.sync_daily_hour, minute=0, timezone=LOCAL_TZ),
        id='daily_backfills',
        name='Daily Provider Backfills',
        replace_existing=True,
        max_instances=1
    )
    scheduler.add_job(
        sync_shipbob_inventory,
        trigger=CronTrigger(hour=settings.sync_inventory_hour, minute=0, timezone=LOCAL_TZ),
        id='shipbob_inventory',
        name='ShipBob Inventory Snapshot',
        replace_existing=True,
        max_instances=1
    )

    log.info(f"Scheduler configured with sync jobs (timezone: {settings.scheduler_timezone})")


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
