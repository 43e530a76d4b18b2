"""
app/scheduler/jobs.py

APScheduler-based housekeeping for the ingestion pipeline.

Schedule
--------
  stale_job_sweep: every ``STALE_JOB_SWEEP_INTERVAL_SECONDS`` (default 60s)

A processing job whose runner died (process restart, killed worker) stays
RUNNING forever unless something closes it. The sweep marks RUNNING jobs
that are past ``timeout_seconds + PROCESSING_STALE_JOB_GRACE_SECONDS`` as
TIMEOUT.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_app_settings, get_processing_settings
from app.services.job_runner import sweep_stale_jobs

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job: Stale processing job sweep
# ---------------------------------------------------------------------------


def run_stale_job_sweep() -> None:
    from db.session import SessionLocal

    settings = get_processing_settings()
    try:
        timed_out = sweep_stale_jobs(SessionLocal, grace_seconds=settings.stale_job_grace_seconds)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: stale_job_sweep failed: %s", exc)
        return
    if timed_out:
        logger.info("Scheduler: stale_job_sweep marked %d job(s) as TIMEOUT", len(timed_out))


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_stale_job_sweep,
        trigger="interval",
        seconds=get_app_settings().stale_job_sweep_interval_seconds,
        id="stale_job_sweep",
        name="Stale processing job sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    return scheduler
