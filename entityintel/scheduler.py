"""
Scheduler for the enrichment flywheel and the data quality audit.

Uses APScheduler to run both jobs at configured intervals.
"""

import logging
import signal
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from entityintel.config import config

log = logging.getLogger(__name__)


def audit_job():
    """Run the data quality audit and log the resulting score."""
    from entityintel.intelligence.quality import run_daily_audit, get_data_quality_score

    log.info("Starting scheduled audit...")
    try:
        results = run_daily_audit()
        for result in results:
            log.info("  %s: found %d, fixed %d", result.type, result.found, result.fixed)
        log.info("Data quality score: %d/100", get_data_quality_score())
    except Exception as e:
        log.error("Audit error: %s", e)

    log.info("Audit complete.")


def start_scheduler(foreground: bool = True):
    """
    Start the scheduler.

    Args:
        foreground: If True, run in blocking mode. Otherwise, background.

    Returns:
        (scheduler, flywheel) when running in the background.
    """
    from entityintel.enrichment import EnrichmentFlywheel

    if foreground:
        scheduler = BlockingScheduler()
    else:
        scheduler = BackgroundScheduler()

    interval_hours = config.audit_interval_hours

    flywheel = EnrichmentFlywheel(scheduler=scheduler)
    flywheel.start()

    scheduler.add_job(
        audit_job,
        trigger=IntervalTrigger(hours=interval_hours),
        id="audit_job",
        name="Data quality audit",
        max_instances=1,
        coalesce=True,
    )

    # Handle shutdown gracefully
    def shutdown(signum, frame):
        log.info("Shutting down scheduler...")
        flywheel.stop()
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    log.info(
        "Scheduler started. Flywheel every %d minutes, audit every %d hours",
        config.flywheel_interval_minutes, interval_hours,
    )
    for job in scheduler.get_jobs():
        log.info("  - %s: %s", job.name, job.trigger)

    log.info("Running initial audit...")
    audit_job()

    if foreground:
        log.info("Scheduler running. Press Ctrl+C to stop.")
        scheduler.start()
    else:
        scheduler.start()
        return scheduler, flywheel
