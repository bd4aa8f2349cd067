"""Acumatica ERP integration: session cache, fetch, mapping, reconcile and backfill."""

from app.services.acumatica.applications import ApplicationLinker, LinkResult, find_orphaned_applications
from app.services.acumatica.backfill import PAYMENT_DATA_JOB, BackfillResult, BackfillState, PaymentBackfill
from app.services.acumatica.client import (
    AcumaticaAuthError,
    AcumaticaClient,
    AcumaticaError,
    AcumaticaNotFoundError,
    AcumaticaTransientError,
    ConfigurationError,
    SessionLimitReached,
    UpstreamFormatError,
)
from app.services.acumatica.credentials import AcumaticaCredentials, resolve_credentials
from app.services.acumatica.fetcher import EntityFetcher, FetchFilter, Page
from app.services.acumatica.mappers import get_value, map_record, normalize_reference_number
from app.services.acumatica.reconciler import (
    FieldMappingError,
    MissingNaturalKeyError,
    ReconcileOutcome,
    Reconciler,
)
from app.services.acumatica.session import AcumaticaSessionManager
from app.services.acumatica.status import SyncStatusStore
from app.services.acumatica.sync import (
    AcumaticaSyncService,
    MasterSyncResult,
    SyncOptions,
    SyncResult,
    run_master_sync,
)

__all__ = [
    "AcumaticaAuthError",
    "AcumaticaClient",
    "AcumaticaCredentials",
    "AcumaticaError",
    "AcumaticaNotFoundError",
    "AcumaticaSessionManager",
    "AcumaticaSyncService",
    "AcumaticaTransientError",
    "ApplicationLinker",
    "BackfillResult",
    "BackfillState",
    "ConfigurationError",
    "EntityFetcher",
    "FetchFilter",
    "FieldMappingError",
    "LinkResult",
    "MasterSyncResult",
    "MissingNaturalKeyError",
    "PAYMENT_DATA_JOB",
    "Page",
    "PaymentBackfill",
    "ReconcileOutcome",
    "Reconciler",
    "SessionLimitReached",
    "SyncOptions",
    "SyncResult",
    "SyncStatusStore",
    "UpstreamFormatError",
    "find_orphaned_applications",
    "get_value",
    "map_record",
    "normalize_reference_number",
    "resolve_credentials",
    "run_master_sync",
]
