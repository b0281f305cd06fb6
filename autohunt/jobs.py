from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger
import asyncio
import logging
from autohunt.config import settings
from autohunt.db import SessionLocal
from autohunt.services.listings import mark_stale_listings
from autohunt.services.notifier import SlackWebhookSink, deliver_pending_alerts
from autohunt.services.orchestrator import ScanOrchestrator, sync_hunts
from autohunt.services.sources import HttpListingSource, SqlListingSource

logger = logging.getLogger(__name__)

_scheduler = None

def build_orchestrator(db) -> ScanOrchestrator:
    if settings.LISTING_SOURCE_URL:
        source = HttpListingSource(settings.LISTING_SOURCE_URL, timeout=settings.SOURCE_TIMEOUT_SECONDS,
                                   page_size=settings.LISTING_SOURCE_PAGE_SIZE)
    else:
        source = SqlListingSource(db, page_size=settings.LISTING_SOURCE_PAGE_SIZE)
    return ScanOrchestrator(db, listing_source=source)

def init_scheduler(app):
    global _scheduler
    if _scheduler:
        return
    _scheduler = AsyncIOScheduler()
    if settings.ENABLE_SCAN_POLLING:
        _scheduler.add_job(run_due_scans_job, IntervalTrigger(minutes=settings.SCAN_POLL_INTERVAL_MINUTES),
                           id="run_due_scans", name="Run due hunt scans", max_instances=1, coalesce=True)
        logger.info(f"Scheduled hunt scans every {settings.SCAN_POLL_INTERVAL_MINUTES} minutes")
    if settings.SLACK_WEBHOOK_URL:
        _scheduler.add_job(deliver_alerts_job, IntervalTrigger(minutes=settings.NOTIFY_POLL_INTERVAL_MINUTES),
                           id="deliver_alerts", name="Deliver pending alerts", max_instances=1, coalesce=True)

    # Nightly stale-listing sweep at 2 AM Sydney time
    _scheduler.add_job(
        expire_stale_listings_job,
        CronTrigger(hour=2, minute=0, timezone="Australia/Sydney"),
        id="expire_stale_listings",
        name="Expire stale listings"
    )
    _scheduler.start()

def _run_due_scans():
    db = SessionLocal()
    try:
        sync_hunts(db)
        summaries = build_orchestrator(db).run_due_scans()
        failed = sum(1 for s in summaries if s.status == "error")
        logger.info(f"Scan run complete: {len(summaries)} scans, {failed} failed")
        return summaries
    finally:
        db.close()

async def run_due_scans_job():
    """Scans are blocking DB and thread-pool work, so they run off the event loop."""
    try:
        await asyncio.to_thread(_run_due_scans)
    except Exception:
        logger.exception("Error during scan job")

def _deliver_alerts():
    db = SessionLocal()
    try:
        sink = SlackWebhookSink(settings.SLACK_WEBHOOK_URL, timeout=settings.NOTIFY_TIMEOUT_SECONDS)
        sent, failed = deliver_pending_alerts(db, sink, max_attempts=settings.NOTIFY_MAX_ATTEMPTS)
        if sent or failed:
            logger.info(f"Alert delivery: {sent} sent, {failed} failed")
    finally:
        db.close()

async def deliver_alerts_job():
    try:
        await asyncio.to_thread(_deliver_alerts)
    except Exception:
        logger.exception("Error during alert delivery job")

async def expire_stale_listings_job():
    db = SessionLocal()
    try:
        mark_stale_listings(db, silence_days=settings.STALE_LISTING_DAYS)
    except Exception:
        logger.exception("Error during stale listing sweep")
    finally:
        db.close()
