import time

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.logging import get_logger
from app.metrics import observe_job
from app.models.sync import SyncEntityType, SyncSource
from app.services.acumatica.backfill import PAYMENT_DATA_JOB, BackfillState, PaymentBackfill
from app.services.acumatica.sync import AcumaticaSyncService, SyncOptions, run_master_sync


@celery_app.task(
    name="app.tasks.acumatica.sync_acumatica_entity",
    time_limit=900,
    soft_time_limit=840,
)
def sync_acumatica_entity(entity_type: str, lookback_minutes: int | None = None):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    logger = get_logger(__name__)
    logger.info("ACUMATICA_SYNC_START entity=%s", entity_type)
    try:
        options = SyncOptions(lookback_minutes=lookback_minutes, source=SyncSource.scheduled_sync)
        result = AcumaticaSyncService(session).sync_entity(SyncEntityType(entity_type), options)
        if not result.success:
            status = "failed"
        logger.info(
            "ACUMATICA_SYNC_COMPLETE entity=%s success=%s created=%d updated=%d errors=%d",
            entity_type,
            result.success,
            result.created,
            result.updated,
            result.error_count,
        )
        return result.to_dict()
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("acumatica_sync_entity", status, time.monotonic() - start)


@celery_app.task(
    name="app.tasks.acumatica.sync_acumatica_master",
    time_limit=1800,
    soft_time_limit=1740,
)
def sync_acumatica_master():
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    logger.info("ACUMATICA_MASTER_SYNC_START")
    try:
        result = run_master_sync(SyncOptions(source=SyncSource.scheduled_sync))
        if not result.success:
            status = "failed"
        logger.info(
            "ACUMATICA_MASTER_SYNC_COMPLETE success=%s ran=%s skipped=%s",
            result.success,
            sorted(result.results),
            result.skipped,
        )
        return result.to_dict()
    except Exception:
        status = "error"
        raise
    finally:
        observe_job("acumatica_master_sync", status, time.monotonic() - start)


@celery_app.task(
    name="app.tasks.acumatica.run_acumatica_backfill",
    time_limit=600,
    soft_time_limit=540,
)
def run_acumatica_backfill(job_type: str = PAYMENT_DATA_JOB, batch_size: int | None = None):
    """One bounded backfill batch; beat keeps calling until the job completes."""
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    logger = get_logger(__name__)
    logger.info("ACUMATICA_BACKFILL_START job=%s", job_type)
    try:
        result = PaymentBackfill(session).run_batch(job_type, batch_size=batch_size or settings.backfill_batch_size)
        if result.status in (BackfillState.already_completed, BackfillState.skipped_running):
            status = "skipped"
        elif result.status == BackfillState.failed:
            status = "failed"
        return result.to_dict()
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("acumatica_backfill", status, time.monotonic() - start)
