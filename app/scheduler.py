# app/scheduler.py
import asyncio
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED

from app.config import Settings, get_settings
from app.logger import get_logger
from app.services.auth import StaticTokenSource
from app.services.storage_sweeper import StorageSweeper

logger = get_logger("Scheduler")


# ---------- INTERNAL ASYNC RUNNER ----------

async def run_sweep(settings: Settings):
    """
    Sweeps every bucket with the service-role key.
    Wrapped by orphan_sweep_task() which owns the event loop.
    """
    sweeper = StorageSweeper(StaticTokenSource(settings.service_role_key))
    removed = await sweeper.sweep()
    total = sum(len(paths) for paths in removed.values())
    logger.info(f"[DONE] Sweep ended. Removed {total} orphaned objects.")
    return removed


# ---------- SCHEDULER JOB WRAPPER ----------

def orphan_sweep_task(settings: Optional[Settings] = None):
    """
    Runs in APScheduler thread; creates its own event loop safely.
    Any exception is caught & logged so the scheduler keeps running.
    """
    settings = settings or get_settings()
    start_ts = datetime.now(timezone.utc)
    logger.info(f"[TASK] Orphan sweep started at {start_ts.isoformat()}")

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(run_sweep(settings))
    except Exception as e:
        logger.exception(f"[TASK-ERROR] orphan_sweep_task failed: {e}")
    finally:
        asyncio.set_event_loop(None)
        loop.close()
        logger.info("[TASK] Orphan sweep finished.")


# ---------- LISTENER (LOG SUCCESS/FAIL) ----------

def _job_listener(event):
    if event.exception:
        logger.error(f"[APSCHED] Job {event.job_id} raised an exception.")
    else:
        logger.info(f"[APSCHED] Job {event.job_id} executed successfully.")


# ---------- START / STOP SCHEDULER ----------

_scheduler: BackgroundScheduler | None = None

def start_scheduler(settings: Optional[Settings] = None):
    global _scheduler
    settings = settings or get_settings()
    if not settings.service_role_key:
        logger.info("[APSCHED] No service-role key configured; orphan sweep disabled.")
        return
    if _scheduler and _scheduler.running:
        logger.info("[APSCHED] Scheduler already running; skipping start.")
        return

    _scheduler = BackgroundScheduler()
    # Midnight daily run
    _scheduler.add_job(orphan_sweep_task, "cron", hour=0, minute=0, id="daily_orphan_sweep", kwargs={"settings": settings})

    _scheduler.add_listener(_job_listener, EVENT_JOB_ERROR | EVENT_JOB_EXECUTED)
    _scheduler.start()
    logger.info("[APSCHED] Scheduler started with jobs: %s", _scheduler.get_jobs())


def shutdown_scheduler():
    global _scheduler
    if _scheduler and _scheduler.running:
        logger.info("[APSCHED] Shutting down scheduler...")
        _scheduler.shutdown(wait=False)
        logger.info("[APSCHED] Scheduler shut down.")
