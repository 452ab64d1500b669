"""
Scheduler for background profile backfills

Uses APScheduler for two things:
- one-off backfills submitted fire-and-forget (OAuth callback, cold cache)
- a periodic full resync of every connected account
"""
import threading
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from klaviyo_hub.config import get_settings
from klaviyo_hub.utils.logger import log

settings = get_settings()
scheduler = BackgroundScheduler()


def run_backfill_job(account_ids: Optional[List[str]] = None) -> list:
    """
    Backfill the given accounts (all connected accounts when None)

    Runs inside a scheduler worker thread; failures are logged, never raised.
    """
    from klaviyo_hub.dependencies import build_backfill_service, build_provider, build_store

    store = build_store()
    try:
        connections = store.get_connections()
        if account_ids is not None:
            wanted = set(account_ids)
            connections = [c for c in connections if c.account_id in wanted]

        if not connections:
            log.info("Backfill job: no matching connections")
            return []

        service = build_backfill_service(store, build_provider())
        results = service.backfill_all(connections, settings.backfill_page_size)

        failed = [r for r in results if not r.success]
        log.info(
            f"Backfill job finished: {len(results) - len(failed)}/{len(results)} accounts synced"
        )
        for r in failed:
            log.error(f"Backfill job: account {r.account_id} failed: {r.error}")
        return results

    except Exception as e:
        log.error(f"Backfill job error: {str(e)}")
        return []


def submit_backfill(account_ids: Optional[List[str]] = None) -> None:
    """
    Queue a backfill and return immediately

    Progress and completion are only observable through sync status.
    Submitting again for the same target replaces a job still waiting to run.
    """
    target = "all" if account_ids is None else ",".join(sorted(account_ids))
    if scheduler.running:
        scheduler.add_job(
            run_backfill_job,
            args=[account_ids],
            id=f"backfill:{target}",
            name=f"Profile backfill ({target})",
            replace_existing=True,
            misfire_grace_time=None,
        )
    else:
        threading.Thread(
            target=run_backfill_job,
            args=(account_ids,),
            name=f"backfill-{target}",
            daemon=True,
        ).start()
    log.info(f"Submitted background backfill for {target}")


def setup_scheduler():
    """Register the periodic resync"""
    scheduler.add_job(
        run_backfill_job,
        CronTrigger.from_crontab(settings.sync_profiles_schedule),
        id="klaviyo_profiles_resync",
        name="Resync Klaviyo profiles",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    log.info(f"Scheduled profile resync: {settings.sync_profiles_schedule}")


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """Pending jobs, for the status endpoint"""
    jobs = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run.isoformat() if next_run else None,
        })
    return jobs
