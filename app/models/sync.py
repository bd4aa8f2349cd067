import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class SyncEntityType(enum.Enum):
    customer = "customer"
    invoice = "invoice"
    payment = "payment"


class SyncRunStatus(enum.Enum):
    idle = "idle"
    running = "running"
    completed = "completed"
    failed = "failed"


class SyncSource(enum.Enum):
    scheduled_sync = "scheduled_sync"
    manual_sync = "manual_sync"
    bulk_fetch = "bulk_fetch"
    auto_backfill = "auto_backfill"
    webhook = "webhook"


class SyncStatus(Base):
    __tablename__ = "sync_status"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[SyncEntityType] = mapped_column(Enum(SyncEntityType), nullable=False, unique=True)
    status: Mapped[SyncRunStatus] = mapped_column(Enum(SyncRunStatus), default=SyncRunStatus.idle)
    last_sync_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_successful_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list | None] = mapped_column(JSON)
    last_error: Mapped[str | None] = mapped_column(Text)
    sync_duration_ms: Mapped[int | None] = mapped_column(Integer)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=5)
    lookback_minutes: Mapped[int] = mapped_column(Integer, default=2)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class SyncLog(Base):
    __tablename__ = "sync_logs"
    __table_args__ = (Index("ix_sync_logs_entity_started", "entity_type", "sync_started_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[SyncEntityType] = mapped_column(Enum(SyncEntityType), nullable=False)
    sync_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sync_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[SyncRunStatus] = mapped_column(Enum(SyncRunStatus), nullable=False)
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list | None] = mapped_column(JSON)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    test_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_source: Mapped[SyncSource] = mapped_column(Enum(SyncSource), default=SyncSource.scheduled_sync)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class BackfillProgress(Base):
    __tablename__ = "backfill_progress"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    backfill_type: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    is_running: Mapped[bool] = mapped_column(Boolean, default=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=20)
    last_processed_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    last_processed_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    applications_found: Mapped[int] = mapped_column(Integer, default=0)
    attachments_found: Mapped[int] = mapped_column(Integer, default=0)
    errors_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_batch_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class SyncChangeLog(Base):
    """Append-only audit trail of sync actions."""

    __tablename__ = "sync_change_logs"
    __table_args__ = (
        Index("ix_sync_change_logs_type_created", "sync_type", "created_at"),
        Index("ix_sync_change_logs_reference", "entity_reference"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sync_type: Mapped[str] = mapped_column(String(40), nullable=False)
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(80))
    entity_reference: Mapped[str | None] = mapped_column(String(80))
    entity_name: Mapped[str | None] = mapped_column(String(255))
    change_summary: Mapped[str | None] = mapped_column(Text)
    change_details: Mapped[dict | None] = mapped_column(JSON)
    sync_source: Mapped[SyncSource] = mapped_column(Enum(SyncSource), default=SyncSource.scheduled_sync)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
