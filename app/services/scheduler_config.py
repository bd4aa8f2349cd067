import logging
from datetime import timedelta

from app.config import settings
from app.db import SessionLocal
from app.models.sync import SyncStatus

logger = logging.getLogger(__name__)

MASTER_SYNC_TASK = "app.tasks.acumatica.sync_acumatica_master"
BACKFILL_TASK = "app.tasks.acumatica.run_acumatica_backfill"


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": settings.celery_timezone,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "beat_max_loop_interval": 5,
    }


def _master_interval_minutes(session_factory=SessionLocal) -> int:
    """Shortest interval configured on an enabled entity row, else the env default."""
    interval = settings.sync_master_interval_minutes
    session = session_factory()
    try:
        intervals = [
            row.sync_interval_minutes
            for row in session.query(SyncStatus).filter(SyncStatus.sync_enabled.is_(True)).all()
            if row.sync_interval_minutes
        ]
        if intervals:
            interval = min(intervals)
    except Exception:
        logger.exception("Failed to load sync intervals from database.")
    finally:
        session.close()
    return max(interval, 1)


def build_beat_schedule(session_factory=SessionLocal) -> dict:
    schedule: dict[str, dict] = {}
    if settings.sync_master_enabled:
        schedule["acumatica_master_sync"] = {
            "task": MASTER_SYNC_TASK,
            "schedule": timedelta(minutes=_master_interval_minutes(session_factory)),
        }
    if settings.backfill_enabled:
        schedule["acumatica_payment_backfill"] = {
            "task": BACKFILL_TASK,
            "schedule": timedelta(seconds=max(settings.backfill_interval_seconds, 10)),
        }
    return schedule
