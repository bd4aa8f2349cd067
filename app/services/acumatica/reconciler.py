"""Natural-key upsert of mapped Acumatica records with change logging."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.metrics import record_sync_action
from app.models.acumatica import AcumaticaCustomer, AcumaticaInvoice, AcumaticaPayment
from app.models.sync import SyncEntityType, SyncSource
from app.services.acumatica.change_log import record_change
from app.services.acumatica.mappers import normalize_reference_number, parse_datetime
from app.services.common import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_UNTRACKED_COLUMNS = {"id", "raw_data", "last_sync_timestamp", "created_at", "updated_at"}


class MissingNaturalKeyError(ValueError):
    pass


class FieldMappingError(ValueError):
    pass


@dataclass(frozen=True)
class EntityConfig:
    model: type
    key_columns: tuple[str, ...]
    status_column: str
    name_column: str
    amount_column: str | None
    balance_column: str | None


ENTITY_CONFIG: dict[SyncEntityType, EntityConfig] = {
    SyncEntityType.invoice: EntityConfig(
        AcumaticaInvoice, ("reference_number",), "status", "customer_name", "amount", "balance"
    ),
    SyncEntityType.payment: EntityConfig(
        AcumaticaPayment,
        ("reference_number", "type"),
        "status",
        "customer_name",
        "payment_amount",
        "available_balance",
    ),
    SyncEntityType.customer: EntityConfig(
        AcumaticaCustomer, ("customer_id",), "customer_status", "customer_name", "credit_limit", None
    ),
}


@dataclass
class ReconcileOutcome:
    action: str
    id: uuid.UUID | None
    entity: Any = None
    change_type: str | None = None
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)


def classify_status_change(old_status: str | None, new_status: str | None) -> str:
    if old_status == new_status:
        return "updated"
    if new_status == "Closed":
        return "closed"
    if new_status == "Open":
        return "reopened"
    return "status_changed"


def coerce_for_column(column, value: Any, label: str) -> Any:
    if value is None:
        return None
    col_type = column.type
    if isinstance(col_type, DateTime):
        parsed = parse_datetime(value)
        if parsed is None:
            raise FieldMappingError(f"{label}: unparseable date {column.name}={value!r}")
        return parsed
    if isinstance(col_type, Numeric):
        if isinstance(value, bool):
            raise FieldMappingError(f"{label}: expected a number for {column.name}, got {value!r}")
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise FieldMappingError(f"{label}: expected a number for {column.name}, got {value!r}") from exc
    if isinstance(col_type, Boolean):
        if isinstance(value, str):
            return value.strip().lower() in {"true", "1", "yes"}
        return bool(value)
    if isinstance(col_type, Integer):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise FieldMappingError(f"{label}: expected an integer for {column.name}, got {value!r}") from exc
    if isinstance(col_type, (String, Text)):
        return str(value)
    if isinstance(col_type, JSON):
        return value
    return value


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    return value


class Reconciler:
    def __init__(self, db: Session, source: SyncSource = SyncSource.scheduled_sync):
        self.db = db
        self.source = source

    def natural_key(self, record: dict, entity_type: SyncEntityType) -> dict[str, str]:
        config = ENTITY_CONFIG[entity_type]
        key: dict[str, str] = {}
        for column in config.key_columns:
            value = record.get(column)
            if column == "reference_number":
                value = normalize_reference_number(value)
            elif value is not None:
                value = str(value).strip() or None
            if not value:
                raise MissingNaturalKeyError(f"{entity_type.value} record is missing {column}")
            key[column] = value
        return key

    def find_existing(self, entity_type: SyncEntityType, key: dict[str, str]):
        model = ENTITY_CONFIG[entity_type].model
        query = self.db.query(model)
        for column, value in key.items():
            query = query.filter(getattr(model, column) == value)
        return query.first()

    def _column_values(self, entity_type: SyncEntityType, record: dict, label: str) -> dict[str, Any]:
        columns = ENTITY_CONFIG[entity_type].model.__table__.columns
        values: dict[str, Any] = {}
        for name, value in record.items():
            if name in ("id", "created_at", "updated_at") or name not in columns:
                continue
            values[name] = coerce_for_column(columns[name], value, label)
        return values

    def reconcile(self, record: dict, entity_type: SyncEntityType) -> ReconcileOutcome:
        config = ENTITY_CONFIG[entity_type]
        key = self.natural_key(record, entity_type)
        label = f"{entity_type.value} {'/'.join(key.values())}"
        values = self._column_values(entity_type, record, label)
        values.update(key)
        values["last_sync_timestamp"] = utc_now()

        existing = self.find_existing(entity_type, key)
        if existing is None:
            try:
                with self.db.begin_nested():
                    entity = config.model(**values)
                    self.db.add(entity)
                    self.db.flush()
            except IntegrityError:
                # Another worker inserted the same key between lookup and insert.
                existing = self.find_existing(entity_type, key)
                if existing is None:
                    raise
                logger.info("acumatica_upsert_conflict entity=%s key=%s", entity_type.value, key)
            else:
                self._log_created(entity_type, entity, key)
                record_sync_action(entity_type.value, "created")
                return ReconcileOutcome(action="created", id=entity.id, entity=entity, change_type="created")

        return self._update(entity_type, existing, values, key)

    def _update(self, entity_type: SyncEntityType, entity, values: dict, key: dict) -> ReconcileOutcome:
        config = ENTITY_CONFIG[entity_type]
        incoming_modified = values.get("last_modified_datetime")
        stored_modified = ensure_utc(getattr(entity, "last_modified_datetime", None))
        if incoming_modified and stored_modified and ensure_utc(incoming_modified) < stored_modified:
            record_sync_action(entity_type.value, "skipped")
            return ReconcileOutcome(action="skipped", id=entity.id, entity=entity)

        old_status = getattr(entity, config.status_column)
        changes: dict[str, dict[str, Any]] = {}
        for name, value in values.items():
            old_value = getattr(entity, name)
            if name not in _UNTRACKED_COLUMNS and _comparable(old_value) != _comparable(value):
                changes[name] = {"old": old_value, "new": value}
            setattr(entity, name, value)
        self.db.flush()

        new_status = getattr(entity, config.status_column)
        change_type = classify_status_change(old_status, new_status)
        reference = "/".join(key.values())
        if change_type == "updated":
            summary = f"{entity_type.value.capitalize()} {reference} updated"
        else:
            summary = f"{entity_type.value.capitalize()} {reference} status {old_status} -> {new_status}"
        details: dict[str, Any] = {"changes": changes}
        if change_type != "updated":
            details["old_status"] = old_status
            details["new_status"] = new_status
        record_change(
            self.db,
            sync_type=entity_type.value,
            action_type=change_type,
            entity_id=entity.id,
            entity_reference=reference,
            entity_name=getattr(entity, config.name_column, None),
            summary=summary,
            details=details,
            source=self.source,
        )
        record_sync_action(entity_type.value, "updated")
        return ReconcileOutcome(
            action="updated", id=entity.id, entity=entity, change_type=change_type, changes=changes
        )

    def _log_created(self, entity_type: SyncEntityType, entity, key: dict) -> None:
        config = ENTITY_CONFIG[entity_type]
        reference = "/".join(key.values())
        details = {"status": getattr(entity, config.status_column)}
        if config.amount_column:
            details["amount"] = getattr(entity, config.amount_column)
        if config.balance_column:
            details["balance"] = getattr(entity, config.balance_column)
        record_change(
            self.db,
            sync_type=entity_type.value,
            action_type="created",
            entity_id=entity.id,
            entity_reference=reference,
            entity_name=getattr(entity, config.name_column, None),
            summary=f"New {entity_type.value} {reference} created",
            details=details,
            source=self.source,
        )
