"""
Background cut-off scheduler.
Uses APScheduler to run the cut-off tick (warnings, then auto-cancel sweep)
every CUTOFF_SWEEP_INTERVAL_MINUTES while the app runs.

Disabled unless ENABLE_BACKGROUND_JOBS is set. Deployments that trigger the
sweep externally (POST /api/cron/cutoff or `flask cutoff sweep`) leave it off.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

EXTENSION_KEY = "consign.scheduler"
CUTOFF_JOB_ID = "cutoff_sweep"


def init_scheduler(app, *, start: bool = True):
    """
    Create the scheduler and register the cut-off job.

    Returns the scheduler, or None when background jobs are disabled.
    """
    if not app.config.get("ENABLE_BACKGROUND_JOBS"):
        logger.debug("Background jobs disabled; cut-off scheduler not started")
        return None

    existing = app.extensions.get(EXTENSION_KEY)
    if existing is not None:
        return existing

    interval = int(app.config.get("CUTOFF_SWEEP_INTERVAL_MINUTES", 5))

    scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
    scheduler.add_job(
        func=_run_cutoff_job,
        args=[app],
        trigger=IntervalTrigger(minutes=interval),
        id=CUTOFF_JOB_ID,
        name="Cut-off warnings and auto-cancel sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    app.extensions[EXTENSION_KEY] = scheduler
    logger.info("Cut-off sweep scheduled every %d minute(s)", interval)

    if start:
        scheduler.start()
        logger.info("Background scheduler started")
    return scheduler


def stop_scheduler(app) -> None:
    scheduler = app.extensions.pop(EXTENSION_KEY, None)
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler shut down")


def list_scheduled_jobs(app) -> list[dict]:
    scheduler = app.extensions.get(EXTENSION_KEY)
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "trigger": str(job.trigger),
            "next_run": next_run.isoformat() if next_run else None,
        })
    return jobs


def _run_cutoff_job(app) -> None:
    """Job body: one scheduler tick inside an app context."""
    from .services import cutoff_service

    with app.app_context():
        try:
            result = cutoff_service.run_scheduler()
        except Exception:
            logger.exception("Scheduled cut-off run failed")
            return
        logger.info(
            "Scheduled cut-off run: %d warning(s), %d cancelled, %d failure(s)",
            result.warnings_sent,
            result.sweep.transactions_cancelled,
            len(result.sweep.failures),
        )
