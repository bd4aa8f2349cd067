"""Acumatica → local database sync runs.

One ``sync_entity`` call is one stateless run for one entity type:
credentials → session → fetch → map → reconcile → (payments) relink
applications → status row + sync log. Master sync fans the enabled entity
types out over a thread pool, one DB session per worker.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.models.acumatica import AcumaticaPayment
from app.models.sync import SyncEntityType, SyncSource
from app.services.acumatica.applications import ApplicationLinker
from app.services.acumatica.attachments import extract_files, record_attachments
from app.services.acumatica.client import (
    AcumaticaClient,
    AcumaticaError,
    AcumaticaNotFoundError,
    ConfigurationError,
    SessionLimitReached,
)
from app.services.acumatica.credentials import AcumaticaCredentials, resolve_credentials
from app.services.acumatica.fetcher import EntityFetcher, Page
from app.services.acumatica.mappers import get_value, map_record, normalize_reference_number
from app.services.acumatica.reconciler import Reconciler
from app.services.acumatica.session import AcumaticaSessionManager
from app.services.acumatica.status import ERROR_STORE_LIMIT, SyncStatusStore

logger = logging.getLogger(__name__)

ERROR_RETURN_LIMIT = 10

RESYNC_PAYMENT_TYPES = ("Payment", "Prepayment", "Voided Payment")

_KEY_FIELDS = {
    SyncEntityType.invoice: "ReferenceNbr",
    SyncEntityType.payment: "ReferenceNbr",
    SyncEntityType.customer: "CustomerID",
}


@dataclass
class SyncOptions:
    lookback_minutes: int | None = None
    batch_size: int | None = None
    skip: int | None = None
    bulk: bool = False
    test_mode: bool = False
    link_applications: bool = True
    credentials: dict | None = None
    source: SyncSource = SyncSource.manual_sync


@dataclass
class SyncResult:
    entity_type: SyncEntityType
    success: bool = True
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total_fetched: int = 0
    applications_linked: int = 0
    attachments_found: int = 0
    errors: list[str] = field(default_factory=list)
    error_count: int = 0
    error: str | None = None
    solution: str | None = None
    duration_ms: int = 0

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def add_error(self, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < ERROR_STORE_LIMIT:
            self.errors.append(message)

    def fail(self, message: str, solution: str | None = None) -> None:
        self.success = False
        self.error = message
        self.solution = solution

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "entityType": self.entity_type.value,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "totalFetched": self.total_fetched,
            "applicationsLinked": self.applications_linked,
            "errors": self.errors[:ERROR_RETURN_LIMIT],
            "totalErrors": self.error_count,
            "durationMs": self.duration_ms,
        }
        if self.error:
            data["error"] = self.error
        if self.solution:
            data["solution"] = self.solution
        return data


@dataclass
class MasterSyncResult:
    results: dict[str, SyncResult] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "skipped": self.skipped,
            "durationMs": self.duration_ms,
        }


def _describe(raw: dict, entity_type: SyncEntityType) -> str:
    value = get_value(raw, _KEY_FIELDS[entity_type])
    if entity_type == SyncEntityType.customer:
        return str(value) if value else "<no id>"
    return normalize_reference_number(value) or "<no reference>"


class AcumaticaSyncService:
    def __init__(
        self,
        db: Session,
        client_factory: Callable[[AcumaticaCredentials], AcumaticaClient] = AcumaticaClient.from_credentials,
        item_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.client_factory = client_factory
        self.item_delay = settings.acumatica_item_delay_seconds if item_delay is None else item_delay
        self._sleep = sleep
        self.status = SyncStatusStore(db)

    def _session_manager(self, client: AcumaticaClient) -> AcumaticaSessionManager:
        return AcumaticaSessionManager(self.db, client, sleep=self._sleep)

    def sync_entity(self, entity_type: SyncEntityType, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        result = SyncResult(entity_type=entity_type)
        started = time.monotonic()
        started_at = self.status.begin_run(entity_type)
        client: AcumaticaClient | None = None
        try:
            credentials = resolve_credentials(self.db, options.credentials)
            client = self.client_factory(credentials)
            sessions = self._session_manager(client)
            fetcher = EntityFetcher(client)
            records = self._fetch(entity_type, options, credentials, sessions, fetcher)
            result.total_fetched = len(records)
            self._process_records(entity_type, records, options, credentials, sessions, fetcher, client, result)
            self.db.commit()
        except SessionLimitReached as exc:
            self.db.rollback()
            logger.error("acumatica_sync_session_limit entity=%s", entity_type.value)
            result.fail(str(exc), solution=exc.remediation)
        except (ConfigurationError, AcumaticaError) as exc:
            self.db.rollback()
            logger.error("acumatica_sync_failed entity=%s error=%s", entity_type.value, exc)
            result.fail(str(exc))
        except Exception as exc:
            self.db.rollback()
            result.fail(f"Unexpected error: {exc}")
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.status.end_run(
                entity_type, result, started_at, test_mode=options.test_mode, source=options.source
            )
            raise
        finally:
            if client is not None:
                client.close()

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.status.end_run(entity_type, result, started_at, test_mode=options.test_mode, source=options.source)
        logger.info(
            "acumatica_sync_complete entity=%s success=%s fetched=%d created=%d updated=%d errors=%d duration_ms=%d",
            entity_type.value,
            result.success,
            result.total_fetched,
            result.created,
            result.updated,
            result.error_count,
            result.duration_ms,
        )
        return result

    def _fetch(
        self,
        entity_type: SyncEntityType,
        options: SyncOptions,
        credentials: AcumaticaCredentials,
        sessions: AcumaticaSessionManager,
        fetcher: EntityFetcher,
    ) -> list[dict]:
        if options.bulk and options.skip is None and options.batch_size is None:
            return sessions.call_with_session(
                credentials,
                lambda token: [
                    record for page in fetcher.iter_pages(entity_type, token) for record in page
                ],
            )
        if options.bulk:
            page = Page(top=options.batch_size or fetcher.page_size, skip=options.skip or 0)
            return sessions.call_with_session(
                credentials, lambda token: fetcher.fetch_entities(entity_type, token, page=page)
            )
        lookback = options.lookback_minutes or self.status.ensure(entity_type).lookback_minutes
        return sessions.call_with_session(
            credentials, lambda token: fetcher.fetch_incremental(entity_type, token, lookback)
        )

    def _process_records(
        self,
        entity_type: SyncEntityType,
        records: list[dict],
        options: SyncOptions,
        credentials: AcumaticaCredentials,
        sessions: AcumaticaSessionManager,
        fetcher: EntityFetcher,
        client: AcumaticaClient,
        result: SyncResult,
    ) -> None:
        reconciler = Reconciler(self.db, source=options.source)
        linker = ApplicationLinker(self.db, fetcher, source=options.source)
        link = entity_type == SyncEntityType.payment and options.link_applications

        for index, raw in enumerate(records):
            reference = _describe(raw, entity_type)
            savepoint = self.db.begin_nested()
            try:
                outcome = reconciler.reconcile(map_record(raw, entity_type), entity_type)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                result.failed += 1
                result.add_error(f"{entity_type.value} {reference}: {exc}")
                logger.warning("acumatica_record_failed entity=%s ref=%s error=%s", entity_type.value, reference, exc)
                continue

            if outcome.action == "created":
                result.created += 1
            elif outcome.action == "updated":
                result.updated += 1
            else:
                result.skipped += 1

            if not link or outcome.action == "skipped":
                continue
            self._link_payment(outcome.entity, raw, credentials, sessions, linker, client, result, options.source)
            if self.item_delay and index < len(records) - 1:
                self._sleep(self.item_delay)

    def _link_payment(
        self,
        payment: AcumaticaPayment,
        raw: dict | None,
        credentials: AcumaticaCredentials,
        sessions: AcumaticaSessionManager,
        linker: ApplicationLinker,
        client: AcumaticaClient,
        result: SyncResult,
        source: SyncSource,
    ) -> None:
        def link(token: str) -> tuple[int, int]:
            link_result = linker.relink_applications(payment, token, raw)
            files = extract_files(raw)
            added = record_attachments(self.db, client, payment, files, source=source) if files else 0
            return link_result.linked, added

        reference = payment.reference_number
        try:
            linked, added = sessions.call_in_savepoint(credentials, link)
        except SessionLimitReached:
            raise
        except Exception as exc:
            result.add_error(f"payment {reference} applications: {exc}")
            logger.warning("acumatica_application_link_failed payment=%s error=%s", reference, exc)
            return
        result.applications_linked += linked
        result.attachments_found += added

    def resync_payment(self, reference_number: str, options: SyncOptions | None = None) -> dict[str, Any]:
        """Re-fetch one payment by reference number and rebuild its links."""
        options = options or SyncOptions()
        reference = normalize_reference_number(reference_number)
        if not reference:
            return {"success": False, "error": "Reference number is required"}
        client: AcumaticaClient | None = None
        try:
            credentials = resolve_credentials(self.db, options.credentials)
            client = self.client_factory(credentials)
            sessions = self._session_manager(client)
            fetcher = EntityFetcher(client)

            raw = None
            for doc_type in RESYNC_PAYMENT_TYPES:
                try:
                    raw = sessions.call_with_session(
                        credentials,
                        lambda token, doc_type=doc_type: fetcher.fetch_detail(
                            SyncEntityType.payment, token, doc_type, reference, expand="ApplicationHistory,files"
                        ),
                    )
                except AcumaticaNotFoundError:
                    continue
                if raw:
                    break
            if not raw:
                return {"success": False, "error": f"Payment {reference} not found in Acumatica"}

            outcome = Reconciler(self.db, source=options.source).reconcile(
                map_record(raw, SyncEntityType.payment), SyncEntityType.payment
            )
            linker = ApplicationLinker(self.db, fetcher, source=options.source)
            link_result = sessions.call_with_session(
                credentials, lambda token: linker.relink_applications(outcome.entity, token, raw)
            )
            attachments = record_attachments(
                self.db, client, outcome.entity, extract_files(raw) or [], source=options.source
            )
            self.db.commit()
        except SessionLimitReached as exc:
            self.db.rollback()
            return {"success": False, "error": str(exc), "solution": exc.remediation}
        except (ConfigurationError, AcumaticaError, ValueError) as exc:
            self.db.rollback()
            logger.error("acumatica_resync_payment_failed ref=%s error=%s", reference, exc)
            return {"success": False, "error": str(exc)}
        finally:
            if client is not None:
                client.close()

        logger.info("acumatica_payment_resynced ref=%s action=%s", reference, outcome.action)
        return {
            "success": True,
            "referenceNumber": reference,
            "type": outcome.entity.type,
            "action": outcome.action,
            "applications": link_result.to_dict(),
            "attachmentsAdded": attachments,
        }

    def force_logout(self, credential_overrides: dict | None = None) -> dict[str, Any]:
        client: AcumaticaClient | None = None
        try:
            credentials = resolve_credentials(self.db, credential_overrides)
            client = self.client_factory(credentials)
            released = self._session_manager(client).force_logout()
        except ConfigurationError as exc:
            return {"success": False, "error": str(exc)}
        finally:
            if client is not None:
                client.close()
        return {"success": True, "sessionsLoggedOut": released}


def run_master_sync(
    options: SyncOptions | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
    service_factory: Callable[[Session], AcumaticaSyncService] = AcumaticaSyncService,
    max_workers: int | None = None,
) -> MasterSyncResult:
    started = time.monotonic()
    master = MasterSyncResult()

    db = session_factory()
    try:
        rows = SyncStatusStore(db).list_all()
        enabled = [row.entity_type for row in rows if row.sync_enabled]
        master.skipped = [row.entity_type.value for row in rows if not row.sync_enabled]
        db.commit()
    finally:
        db.close()

    def _run(entity_type: SyncEntityType) -> SyncResult:
        worker_db = session_factory()
        try:
            return service_factory(worker_db).sync_entity(entity_type, options)
        finally:
            worker_db.close()

    if enabled:
        with ThreadPoolExecutor(max_workers=max_workers or settings.sync_max_workers) as pool:
            futures = {pool.submit(_run, entity_type): entity_type for entity_type in enabled}
            for future in as_completed(futures):
                entity_type = futures[future]
                try:
                    master.results[entity_type.value] = future.result()
                except Exception as exc:
                    logger.exception("acumatica_master_sync_worker_failed entity=%s", entity_type.value)
                    failed = SyncResult(entity_type=entity_type)
                    failed.fail(str(exc))
                    master.results[entity_type.value] = failed

    master.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "acumatica_master_sync_complete success=%s ran=%s skipped=%s duration_ms=%d",
        master.success,
        sorted(master.results),
        master.skipped,
        master.duration_ms,
    )
    return master
