from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.models.sync import SyncChangeLog, SyncSource


def json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if hasattr(value, "value") and hasattr(value, "name"):
        return value.value
    return value


def record_change(
    db: Session,
    *,
    sync_type: str,
    action_type: str,
    entity_id: Any = None,
    entity_reference: str | None = None,
    entity_name: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
    source: SyncSource = SyncSource.scheduled_sync,
) -> SyncChangeLog:
    """Append an audit entry. Entries are never updated afterwards."""
    entry = SyncChangeLog(
        sync_type=sync_type,
        action_type=action_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_reference=entity_reference,
        entity_name=entity_name,
        change_summary=summary,
        change_details=json_safe(details) if details is not None else None,
        sync_source=source,
    )
    db.add(entry)
    return entry
