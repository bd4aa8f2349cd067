"""Resumable payment backfill (applications + attachment metadata).

Every invocation handles one bounded batch from the persisted cursor and
then stops. The scheduler keeps calling until the job reports completion;
after that calls short-circuit without touching the ERP.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models.acumatica import AcumaticaPayment
from app.models.sync import BackfillProgress, SyncEntityType, SyncSource
from app.services.acumatica.applications import ApplicationLinker
from app.services.acumatica.attachments import extract_files, record_attachments
from app.services.acumatica.client import (
    AcumaticaClient,
    AcumaticaError,
    ConfigurationError,
    SessionLimitReached,
)
from app.services.acumatica.credentials import AcumaticaCredentials, resolve_credentials
from app.services.acumatica.fetcher import EntityFetcher
from app.services.acumatica.session import AcumaticaSessionManager
from app.services.common import ensure_utc, utc_now

logger = logging.getLogger(__name__)

PAYMENT_DATA_JOB = "payment_data"


class BackfillState:
    already_completed = "already_completed"
    completed = "completed"
    in_progress = "in_progress"
    skipped_running = "skipped_running"
    failed = "failed"


@dataclass
class BackfillResult:
    status: str
    job_type: str
    processed: int = 0
    applications_found: int = 0
    attachments_found: int = 0
    errors: list[str] = field(default_factory=list)
    error: str | None = None
    solution: str | None = None
    progress: BackfillProgress | None = None

    @property
    def success(self) -> bool:
        return self.status != BackfillState.failed

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "status": self.status,
            "jobType": self.job_type,
            "processed": self.processed,
            "applicationsFound": self.applications_found,
            "attachmentsFound": self.attachments_found,
            "errors": self.errors[:10],
        }
        if self.progress is not None:
            data["itemsProcessed"] = self.progress.items_processed
            data["totalItems"] = self.progress.total_items
            data["remaining"] = max(self.progress.total_items - self.progress.items_processed, 0)
        if self.error:
            data["error"] = self.error
        if self.solution:
            data["solution"] = self.solution
        return data


class PaymentBackfill:
    def __init__(
        self,
        db: Session,
        client_factory: Callable[[AcumaticaCredentials], AcumaticaClient] = AcumaticaClient.from_credentials,
        item_delay: float | None = None,
        stale_after: timedelta | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.client_factory = client_factory
        self.item_delay = settings.acumatica_item_delay_seconds if item_delay is None else item_delay
        self.stale_after = stale_after or timedelta(minutes=settings.backfill_stale_minutes)
        self._sleep = sleep

    def get_progress(self, job_type: str = PAYMENT_DATA_JOB) -> BackfillProgress:
        progress = self.db.query(BackfillProgress).filter(BackfillProgress.backfill_type == job_type).first()
        if progress is None:
            progress = BackfillProgress(
                backfill_type=job_type,
                batch_size=settings.backfill_batch_size,
                is_running=False,
                total_items=0,
                items_processed=0,
                applications_found=0,
                attachments_found=0,
                errors_count=0,
            )
            self.db.add(progress)
            self.db.flush()
        return progress

    def reset(self, job_type: str = PAYMENT_DATA_JOB) -> BackfillProgress:
        """Operator action: start the job over from the beginning."""
        progress = self.get_progress(job_type)
        progress.is_running = False
        progress.last_processed_id = None
        progress.last_processed_created_at = None
        progress.total_items = 0
        progress.items_processed = 0
        progress.applications_found = 0
        progress.attachments_found = 0
        progress.errors_count = 0
        progress.last_error = None
        progress.started_at = None
        progress.last_batch_at = None
        progress.completed_at = None
        self.db.commit()
        logger.info("acumatica_backfill_reset job=%s", job_type)
        return progress

    def _remaining_query(self, progress: BackfillProgress):
        """Payments after the cursor, keyed on (created_at, id).

        Rows inserted while a job is in progress sort after the cursor, so
        they are picked up by a later batch.
        """
        query = self.db.query(AcumaticaPayment)
        created_at = progress.last_processed_created_at
        if created_at is not None and progress.last_processed_id is not None:
            query = query.filter(
                or_(
                    AcumaticaPayment.created_at > created_at,
                    and_(
                        AcumaticaPayment.created_at == created_at,
                        AcumaticaPayment.id > progress.last_processed_id,
                    ),
                )
            )
        return query.order_by(AcumaticaPayment.created_at, AcumaticaPayment.id)

    def _is_stale(self, progress: BackfillProgress) -> bool:
        marker = ensure_utc(progress.last_batch_at or progress.started_at)
        return marker is None or marker < utc_now() - self.stale_after

    def run_batch(self, job_type: str = PAYMENT_DATA_JOB, batch_size: int | None = None,
                  credential_overrides: dict | None = None) -> BackfillResult:
        progress = self.get_progress(job_type)
        if progress.completed_at is not None:
            return BackfillResult(status=BackfillState.already_completed, job_type=job_type, progress=progress)
        if progress.is_running and not self._is_stale(progress):
            logger.info("acumatica_backfill_skipped_running job=%s", job_type)
            return BackfillResult(status=BackfillState.skipped_running, job_type=job_type, progress=progress)

        if batch_size:
            progress.batch_size = batch_size
        now = utc_now()
        if progress.started_at is None:
            progress.total_items = self.db.query(func.count(AcumaticaPayment.id)).scalar() or 0
            progress.started_at = now
        batch = self._remaining_query(progress).limit(progress.batch_size or settings.backfill_batch_size).all()
        if not batch:
            progress.completed_at = now
            progress.is_running = False
            self.db.commit()
            logger.info("acumatica_backfill_completed job=%s processed=%d", job_type, progress.items_processed)
            return BackfillResult(status=BackfillState.completed, job_type=job_type, progress=progress)

        progress.is_running = True
        progress.last_batch_at = now
        self.db.commit()

        result = BackfillResult(status=BackfillState.in_progress, job_type=job_type, progress=progress)
        client: AcumaticaClient | None = None
        try:
            credentials = resolve_credentials(self.db, credential_overrides)
            client = self.client_factory(credentials)
            sessions = AcumaticaSessionManager(self.db, client, sleep=self._sleep)
            self._process_batch(batch, credentials, sessions, client, result)
        except SessionLimitReached as exc:
            self.db.rollback()
            result.solution = exc.remediation
            return self._fail(progress, result, str(exc))
        except (ConfigurationError, AcumaticaError) as exc:
            self.db.rollback()
            return self._fail(progress, result, str(exc))
        finally:
            if client is not None:
                client.close()

        progress.items_processed += result.processed
        progress.applications_found += result.applications_found
        progress.attachments_found += result.attachments_found
        progress.errors_count += len(result.errors)
        if result.errors:
            progress.last_error = result.errors[-1]
        last = batch[-1]
        progress.last_processed_id = last.id
        progress.last_processed_created_at = last.created_at
        progress.last_batch_at = utc_now()
        progress.is_running = False
        if self._remaining_query(progress).first() is None:
            progress.completed_at = utc_now()
            result.status = BackfillState.completed
        self.db.commit()
        logger.info(
            "acumatica_backfill_batch job=%s processed=%d total_processed=%d/%d apps=%d files=%d errors=%d status=%s",
            job_type,
            result.processed,
            progress.items_processed,
            progress.total_items,
            result.applications_found,
            result.attachments_found,
            len(result.errors),
            result.status,
        )
        return result

    def _process_batch(
        self,
        batch: list[AcumaticaPayment],
        credentials: AcumaticaCredentials,
        sessions: AcumaticaSessionManager,
        client: AcumaticaClient,
        result: BackfillResult,
    ) -> None:
        fetcher = EntityFetcher(client)
        linker = ApplicationLinker(self.db, fetcher, source=SyncSource.auto_backfill)

        def backfill_payment(payment: AcumaticaPayment, token: str) -> tuple[int, int]:
            link_result = linker.relink_applications(payment, token, payment.raw_data)
            files = extract_files(payment.raw_data)
            if files is None:
                detail = fetcher.fetch_detail(
                    SyncEntityType.payment, token, payment.type, payment.reference_number, expand="files"
                )
                files = extract_files(detail) or []
            added = record_attachments(self.db, client, payment, files, source=SyncSource.auto_backfill)
            return link_result.linked, added

        for index, payment in enumerate(batch):
            reference = payment.reference_number
            try:
                linked, added = sessions.call_in_savepoint(
                    credentials, lambda token, p=payment: backfill_payment(p, token)
                )
            except SessionLimitReached:
                raise
            except Exception as exc:
                result.errors.append(f"payment {reference}: {exc}")
                logger.warning("acumatica_backfill_item_failed payment=%s error=%s", reference, exc)
            else:
                result.applications_found += linked
                result.attachments_found += added
            result.processed += 1
            if self.item_delay and index < len(batch) - 1:
                self._sleep(self.item_delay)

    def _fail(self, progress: BackfillProgress, result: BackfillResult, message: str) -> BackfillResult:
        progress.is_running = False
        progress.errors_count += 1
        progress.last_error = message
        self.db.commit()
        logger.error("acumatica_backfill_failed job=%s error=%s", progress.backfill_type, message)
        result.status = BackfillState.failed
        result.error = message
        return result
