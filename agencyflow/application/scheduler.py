"""
Background scheduler: runs the pollers inside the FastAPI process.

Jobs:
  - Recurring task rules (every RECURRING_TASKS_INTERVAL_MINUTES, default 5)
  - Scheduled reports (every REPORTS_INTERVAL_MINUTES, default 60)
  - Client archival sweeps (daily at ARCHIVE_SWEEP_HOUR_UTC:00 UTC)

Every job is max_instances=1 / coalesce=True, so a slow run is never
overlapped by the next tick of the same job.
"""
import logging
import time

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from agencyflow.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True, timezone="UTC")


def _warn_if_slow(job: str, started: float) -> None:
    elapsed = time.monotonic() - started
    if elapsed > get_settings().SCHEDULER_SLOW_RUN_SECONDS:
        logger.warning("%s job took %.1fs", job, elapsed)


def _run_recurring_tasks():
    from agencyflow.infrastructure.db.session import get_session_factory
    from agencyflow.application.recurring_tasks import process_recurring_task_rules

    Session = get_session_factory()
    db = Session()
    started = time.monotonic()
    try:
        process_recurring_task_rules(db)
    except Exception:
        logger.exception("Recurring tasks job failed")
    finally:
        db.close()
        _warn_if_slow("Recurring tasks", started)


def _run_scheduled_reports():
    from agencyflow.infrastructure.db.session import get_session_factory
    from agencyflow.application.report_delivery import EmailReportDelivery
    from agencyflow.application.report_scheduler import process_scheduled_reports

    Session = get_session_factory()
    db = Session()
    started = time.monotonic()
    try:
        process_scheduled_reports(db, EmailReportDelivery())
    except Exception:
        logger.exception("Scheduled reports job failed")
    finally:
        db.close()
        _warn_if_slow("Scheduled reports", started)


def _run_client_archival():
    from agencyflow.infrastructure.db.session import get_session_factory
    from agencyflow.application.client_lifecycle import (
        archive_canceled_clients,
        archive_scheduled_clients,
    )

    Session = get_session_factory()
    db = Session()
    started = time.monotonic()
    try:
        # the sweeps are independent: one failing must not skip the other
        try:
            archive_canceled_clients(db)
        except Exception:
            logger.exception("Canceled-client archival sweep failed")
        try:
            archive_scheduled_clients(db)
        except Exception:
            logger.exception("Scheduled-archive sweep failed")
    finally:
        db.close()
        _warn_if_slow("Client archival", started)


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_recurring_tasks,
        "interval",
        minutes=settings.RECURRING_TASKS_INTERVAL_MINUTES,
        id="recurring_tasks",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        _run_scheduled_reports,
        "interval",
        minutes=settings.REPORTS_INTERVAL_MINUTES,
        id="scheduled_reports",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        _run_client_archival,
        CronTrigger(hour=settings.ARCHIVE_SWEEP_HOUR_UTC, minute=0, timezone="UTC"),
        id="client_archival",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: recurring_tasks (every %d min), scheduled_reports (every %d min), "
        "client_archival (%02d:00 UTC)",
        settings.RECURRING_TASKS_INTERVAL_MINUTES,
        settings.REPORTS_INTERVAL_MINUTES,
        settings.ARCHIVE_SWEEP_HOUR_UTC,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
