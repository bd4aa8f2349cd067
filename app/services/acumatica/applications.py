"""Payment → invoice application links.

The join table always mirrors the ERP's current application history for a
payment: every refresh deletes the payment's rows and inserts the fresh set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.acumatica import AcumaticaInvoice, AcumaticaPayment, PaymentInvoiceApplication
from app.models.sync import SyncEntityType, SyncSource
from app.services.acumatica.change_log import record_change
from app.services.acumatica.client import AcumaticaAuthError, AcumaticaError, AcumaticaTransientError
from app.services.acumatica.fetcher import EntityFetcher, FetchFilter
from app.services.acumatica.mappers import get_value, map_application
from app.services.acumatica.reconciler import coerce_for_column

logger = logging.getLogger(__name__)

APPLICATION_HISTORY = "ApplicationHistory"
DOCUMENTS_TO_APPLY = "DocumentsToApply"

# Credit memos are synced as their own document type and stay out of this join;
# every other AR document an application points at is kept.
EXCLUDED_DOC_TYPES = frozenset({"Credit Memo", "CRM"})
DEFAULT_DOC_TYPE = "Invoice"

CLOSED_PAYMENT_STATUSES = frozenset({"Closed", "Voided"})


@dataclass
class LinkResult:
    linked: int = 0
    removed: int = 0
    skipped: int = 0
    missing_invoices: list[str] = field(default_factory=list)
    source: str | None = None
    # Nothing came back from the ERP, so existing links were left alone.
    retained: bool = False

    def to_dict(self) -> dict:
        return {
            "linked": self.linked,
            "removed": self.removed,
            "skipped": self.skipped,
            "missingInvoices": self.missing_invoices,
            "source": self.source,
            "retained": self.retained,
        }


def history_fields(status: str | None) -> tuple[str, str]:
    """Preferred and fallback nested field for a payment in this status."""
    if status in CLOSED_PAYMENT_STATUSES:
        return APPLICATION_HISTORY, DOCUMENTS_TO_APPLY
    return DOCUMENTS_TO_APPLY, APPLICATION_HISTORY


def pick_entries(record: dict | None, fields: tuple[str, str]) -> list[dict] | None:
    if not isinstance(record, dict):
        return None
    for name in fields:
        value = get_value(record, name)
        if isinstance(value, list) and value:
            return value
    for name in fields:
        if isinstance(get_value(record, name), list):
            return []
    return None


def is_linkable_entry(doc_type: str | None) -> bool:
    return (doc_type or DEFAULT_DOC_TYPE) not in EXCLUDED_DOC_TYPES


class ApplicationLinker:
    def __init__(self, db: Session, fetcher: EntityFetcher, source: SyncSource = SyncSource.scheduled_sync):
        self.db = db
        self.fetcher = fetcher
        self.source = source

    def fetch_entries(
        self, payment: AcumaticaPayment, token: str, raw: dict | None = None
    ) -> tuple[list[dict] | None, str | None]:
        fields = history_fields(payment.status)

        entries = pick_entries(raw, fields)
        if entries is not None:
            return entries, "record"

        try:
            matches = self.fetcher.fetch_entities(
                SyncEntityType.payment,
                token,
                FetchFilter(reference_number=payment.reference_number, doc_type=payment.type),
                expand=fields[0],
            )
        except (AcumaticaAuthError, AcumaticaTransientError):
            raise
        except AcumaticaError as exc:
            logger.info(
                "acumatica_application_query_unavailable payment=%s error=%s", payment.reference_number, exc
            )
            matches = []
        for match in matches:
            entries = pick_entries(match, fields)
            if entries is not None:
                return entries, "expand_query"

        try:
            detail = self.fetcher.fetch_detail(
                SyncEntityType.payment, token, payment.type, payment.reference_number, expand=fields[0]
            )
        except (AcumaticaAuthError, AcumaticaTransientError):
            raise
        except AcumaticaError as exc:
            logger.info("acumatica_application_detail_unavailable payment=%s error=%s", payment.reference_number, exc)
            detail = None
        entries = pick_entries(detail, fields)
        if entries is not None:
            return entries, "detail"
        return None, None

    def _build_rows(self, payment: AcumaticaPayment, entries: list[dict], result: LinkResult) -> list[dict]:
        columns = PaymentInvoiceApplication.__table__.columns
        rows: dict[str, dict[str, Any]] = {}
        for entry in entries:
            mapped = map_application(entry)
            doc_type = mapped.get("doc_type") or DEFAULT_DOC_TYPE
            if not is_linkable_entry(doc_type):
                result.skipped += 1
                continue
            invoice_ref = mapped.get("invoice_reference_number")
            if not invoice_ref:
                result.skipped += 1
                logger.warning("acumatica_application_missing_reference payment=%s", payment.reference_number)
                continue
            label = f"application {payment.reference_number}->{invoice_ref}"
            values = {
                name: coerce_for_column(columns[name], value, label)
                for name, value in mapped.items()
                if name in columns
            }
            values["doc_type"] = doc_type
            existing = rows.get(invoice_ref)
            if existing is not None:
                # Several partial applications to one invoice collapse into one link.
                existing["amount_paid"] = (existing.get("amount_paid") or Decimal("0")) + (
                    values.get("amount_paid") or Decimal("0")
                )
                existing["balance"] = values.get("balance", existing.get("balance"))
                continue
            rows[invoice_ref] = values
        return list(rows.values())

    def relink_applications(
        self, payment: AcumaticaPayment, token: str, raw: dict | None = None
    ) -> LinkResult:
        result = LinkResult()
        entries, result.source = self.fetch_entries(payment, token, raw)
        if entries is None:
            # Only an explicit empty history clears the join.
            result.retained = True
            logger.warning("acumatica_application_history_unavailable payment=%s", payment.reference_number)
            return result
        rows = self._build_rows(payment, entries, result)

        result.removed = (
            self.db.query(PaymentInvoiceApplication)
            .filter(PaymentInvoiceApplication.payment_id == payment.id)
            .delete(synchronize_session=False)
        )

        invoice_refs = [row["invoice_reference_number"] for row in rows]
        known = set()
        if invoice_refs:
            known = set(
                self.db.scalars(
                    select(AcumaticaInvoice.reference_number).where(
                        AcumaticaInvoice.reference_number.in_(invoice_refs)
                    )
                )
            )

        for row in rows:
            invoice_ref = row["invoice_reference_number"]
            if not row.get("customer_id"):
                row["customer_id"] = payment.customer_id
            link = PaymentInvoiceApplication(
                payment_id=payment.id,
                payment_reference_number=payment.reference_number,
                **row,
            )
            self.db.add(link)
            if invoice_ref not in known:
                result.missing_invoices.append(invoice_ref)
                logger.warning(
                    "acumatica_application_invoice_not_local payment=%s invoice=%s",
                    payment.reference_number,
                    invoice_ref,
                )
            record_change(
                self.db,
                sync_type="payment_application",
                action_type="application_fetched",
                entity_id=payment.id,
                entity_reference=payment.reference_number,
                entity_name=payment.customer_name,
                summary=f"Payment {payment.reference_number} applied to invoice {invoice_ref}",
                details={
                    "invoice_reference_number": invoice_ref,
                    "amount_paid": row.get("amount_paid"),
                    "application_date": row.get("application_date"),
                    "doc_type": row.get("doc_type"),
                },
                source=self.source,
            )
            result.linked += 1

        self.db.flush()
        self.db.expire(payment, ["applications"])
        logger.info(
            "acumatica_applications_relinked payment=%s linked=%d removed=%d source=%s",
            payment.reference_number,
            result.linked,
            result.removed,
            result.source,
        )
        return result


def find_orphaned_applications(db: Session, limit: int = 100, offset: int = 0) -> list[PaymentInvoiceApplication]:
    """Links whose invoice has not been synced locally yet."""
    stmt = (
        select(PaymentInvoiceApplication)
        .outerjoin(
            AcumaticaInvoice,
            AcumaticaInvoice.reference_number == PaymentInvoiceApplication.invoice_reference_number,
        )
        .where(AcumaticaInvoice.id.is_(None))
        .order_by(PaymentInvoiceApplication.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt))
