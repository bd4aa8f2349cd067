from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.sync import SyncEntityType, SyncRunStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialOverride(_CamelModel):
    url: str | None = None
    username: str | None = None
    password: str | None = None
    company: str | None = None
    branch: str | None = None


class SyncRequest(_CamelModel):
    lookback_minutes: int | None = Field(default=None, ge=1)
    batch_size: int | None = Field(default=None, ge=1, le=5000)
    skip: int | None = Field(default=None, ge=0)
    bulk: bool = False
    test_mode: bool = False
    link_applications: bool = True
    credentials: CredentialOverride | None = None


class BackfillRequest(_CamelModel):
    batch_size: int | None = Field(default=None, ge=1, le=500)
    credentials: CredentialOverride | None = None


class ForceLogoutRequest(_CamelModel):
    credentials: CredentialOverride | None = None


class SyncSummary(_CamelModel):
    success: bool
    entity_type: str | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    total_fetched: int = 0
    applications_linked: int = 0
    errors: list[str] = Field(default_factory=list)
    total_errors: int = 0
    duration_ms: int = 0
    error: str | None = None
    solution: str | None = None


class MasterSyncSummary(_CamelModel):
    success: bool
    results: dict[str, SyncSummary] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class BackfillSummary(_CamelModel):
    success: bool
    status: str
    job_type: str
    processed: int = 0
    applications_found: int = 0
    attachments_found: int = 0
    items_processed: int | None = None
    total_items: int | None = None
    remaining: int | None = None
    errors: list[str] = Field(default_factory=list)
    error: str | None = None
    solution: str | None = None


class BackfillProgressRead(_CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    backfill_type: str
    is_running: bool
    batch_size: int
    last_processed_id: UUID | None = None
    last_processed_created_at: datetime | None = None
    total_items: int
    items_processed: int
    applications_found: int
    attachments_found: int
    errors_count: int
    last_error: str | None = None
    started_at: datetime | None = None
    last_batch_at: datetime | None = None
    completed_at: datetime | None = None


class SyncStatusRead(_CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    entity_type: SyncEntityType
    status: SyncRunStatus
    last_sync_started_at: datetime | None = None
    last_successful_sync: datetime | None = None
    records_synced: int
    records_created: int
    records_updated: int
    errors: list[str] | None = None
    last_error: str | None = None
    sync_duration_ms: int | None = None
    retry_count: int
    sync_enabled: bool
    lookback_minutes: int


class SyncStatusUpdate(_CamelModel):
    sync_enabled: bool | None = None
    lookback_minutes: int | None = Field(default=None, ge=1)
    sync_interval_minutes: int | None = Field(default=None, ge=1)


class ApplicationRead(_CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    id: UUID
    payment_id: UUID
    payment_reference_number: str
    invoice_reference_number: str
    customer_id: str | None = None
    amount_paid: float | None = None
    application_date: datetime | None = None
    doc_type: str | None = None


class ForceLogoutSummary(_CamelModel):
    success: bool
    sessions_logged_out: int = 0
    error: str | None = None


class PaymentResyncSummary(_CamelModel):
    success: bool
    reference_number: str | None = None
    type: str | None = None
    action: str | None = None
    applications: dict | None = None
    attachments_added: int = 0
    error: str | None = None
    solution: str | None = None
