"""Per-entity sync status rows and the append-only sync log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.config import settings
from app.models.sync import SyncEntityType, SyncLog, SyncRunStatus, SyncSource, SyncStatus
from app.services.common import utc_now

if TYPE_CHECKING:
    from app.services.acumatica.sync import SyncResult

logger = logging.getLogger(__name__)

ERROR_STORE_LIMIT = 150

DEFAULT_LOOKBACK_MINUTES: dict[SyncEntityType, int] = {
    SyncEntityType.customer: 10000,
}


class SyncStatusStore:
    def __init__(self, db: Session):
        self.db = db

    def ensure(self, entity_type: SyncEntityType) -> SyncStatus:
        row = self.db.query(SyncStatus).filter(SyncStatus.entity_type == entity_type).first()
        if row is None:
            row = SyncStatus(
                entity_type=entity_type,
                status=SyncRunStatus.idle,
                lookback_minutes=DEFAULT_LOOKBACK_MINUTES.get(entity_type, settings.sync_default_lookback_minutes),
                sync_interval_minutes=settings.sync_master_interval_minutes,
                sync_enabled=True,
                retry_count=0,
                records_synced=0,
                records_created=0,
                records_updated=0,
            )
            self.db.add(row)
            self.db.flush()
        return row

    def list_all(self) -> list[SyncStatus]:
        return [self.ensure(entity_type) for entity_type in SyncEntityType]

    def begin_run(self, entity_type: SyncEntityType) -> datetime:
        row = self.ensure(entity_type)
        started = utc_now()
        row.status = SyncRunStatus.running
        row.last_sync_started_at = started
        self.db.commit()
        logger.info("acumatica_sync_running entity=%s", entity_type.value)
        return started

    def end_run(
        self,
        entity_type: SyncEntityType,
        result: SyncResult,
        started_at: datetime,
        *,
        test_mode: bool = False,
        source: SyncSource = SyncSource.scheduled_sync,
    ) -> SyncStatus:
        row = self.ensure(entity_type)
        finished = utc_now()
        status = SyncRunStatus.completed if result.success else SyncRunStatus.failed
        stored_errors = result.errors[:ERROR_STORE_LIMIT]

        row.status = status
        row.records_synced = result.total_fetched
        row.records_created = result.created
        row.records_updated = result.updated
        row.errors = stored_errors
        row.sync_duration_ms = result.duration_ms
        if result.success:
            row.last_successful_sync = finished
            row.retry_count = 0
            row.last_error = result.errors[-1] if result.errors else None
        else:
            row.retry_count = (row.retry_count or 0) + 1
            row.last_error = result.error

        self.db.add(
            SyncLog(
                entity_type=entity_type,
                sync_started_at=started_at,
                sync_completed_at=finished,
                status=status,
                records_synced=result.total_fetched,
                records_created=result.created,
                records_updated=result.updated,
                errors=stored_errors,
                duration_ms=result.duration_ms,
                test_mode=test_mode,
                sync_source=source,
            )
        )
        self.db.commit()
        return row
