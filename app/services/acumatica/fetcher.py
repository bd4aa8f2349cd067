"""OData query construction and paging for Acumatica entity endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.models.sync import SyncEntityType
from app.services.acumatica.client import AcumaticaClient

logger = logging.getLogger(__name__)

ENTITY_NAMES: dict[SyncEntityType, str] = {
    SyncEntityType.customer: "Customer",
    SyncEntityType.invoice: "Invoice",
    SyncEntityType.payment: "Payment",
}

DEFAULT_EXPAND: dict[SyncEntityType, str] = {
    SyncEntityType.customer: "MainContact",
    SyncEntityType.payment: "files",
}

EXCLUDED_PAYMENT_TYPES = ("Credit Memo",)


def odata_string(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def odata_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return "datetimeoffset'" + value.replace(tzinfo=None, microsecond=0).isoformat() + "'"


@dataclass
class FetchFilter:
    modified_after: datetime | None = None
    status: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    customer_id: str | None = None
    reference_number: str | None = None
    doc_type: str | None = None

    def clauses(self, entity_type: SyncEntityType) -> list[str]:
        parts: list[str] = []
        if self.modified_after is not None:
            parts.append(f"LastModifiedDateTime gt {odata_datetime(self.modified_after)}")
        if self.status:
            parts.append(f"Status eq {odata_string(self.status)}")
        date_field = "ApplicationDate" if entity_type == SyncEntityType.payment else "Date"
        if self.date_from is not None:
            parts.append(f"{date_field} ge {odata_datetime(self.date_from)}")
        if self.date_to is not None:
            parts.append(f"{date_field} le {odata_datetime(self.date_to)}")
        if self.customer_id:
            customer_field = "Customer" if entity_type == SyncEntityType.invoice else "CustomerID"
            parts.append(f"{customer_field} eq {odata_string(self.customer_id)}")
        if self.reference_number:
            parts.append(f"ReferenceNbr eq {odata_string(self.reference_number)}")
        if self.doc_type:
            parts.append(f"Type eq {odata_string(self.doc_type)}")
        if entity_type == SyncEntityType.payment and not self.doc_type:
            for excluded in EXCLUDED_PAYMENT_TYPES:
                parts.append(f"Type ne {odata_string(excluded)}")
        return parts


@dataclass(frozen=True)
class Page:
    top: int
    skip: int = 0


class EntityFetcher:
    def __init__(self, client: AcumaticaClient, page_size: int | None = None):
        self.client = client
        self.page_size = page_size or settings.acumatica_page_size

    def build_params(
        self,
        entity_type: SyncEntityType,
        fetch_filter: FetchFilter | None = None,
        page: Page | None = None,
        expand: str | None = None,
        select: str | None = None,
    ) -> dict[str, str]:
        params: dict[str, str] = {}
        clauses = (fetch_filter or FetchFilter()).clauses(entity_type)
        if clauses:
            params["$filter"] = " and ".join(clauses)
        expand = expand if expand is not None else DEFAULT_EXPAND.get(entity_type)
        if expand:
            params["$expand"] = expand
        if select:
            params["$select"] = select
        if page is not None:
            params["$top"] = str(page.top)
            if page.skip:
                params["$skip"] = str(page.skip)
        return params

    def fetch_entities(
        self,
        entity_type: SyncEntityType,
        token: str,
        fetch_filter: FetchFilter | None = None,
        page: Page | None = None,
        expand: str | None = None,
    ) -> list[dict]:
        params = self.build_params(entity_type, fetch_filter, page, expand)
        records = self.client.get_list(ENTITY_NAMES[entity_type], token, params=params)
        logger.info(
            "acumatica_fetch entity=%s count=%d filter=%s",
            entity_type.value,
            len(records),
            params.get("$filter"),
        )
        return records

    def fetch_incremental(
        self,
        entity_type: SyncEntityType,
        token: str,
        lookback_minutes: int,
        now: datetime | None = None,
    ) -> list[dict]:
        cutoff = (now or datetime.now(UTC)) - timedelta(minutes=lookback_minutes)
        return self.fetch_entities(entity_type, token, FetchFilter(modified_after=cutoff))

    def iter_pages(
        self,
        entity_type: SyncEntityType,
        token: str,
        fetch_filter: FetchFilter | None = None,
        start: int = 0,
        page_size: int | None = None,
        max_pages: int | None = None,
    ) -> Iterator[list[dict]]:
        size = page_size or self.page_size
        skip = start
        pages = 0
        while True:
            records = self.fetch_entities(entity_type, token, fetch_filter, Page(top=size, skip=skip))
            if records:
                yield records
            pages += 1
            if len(records) < size or (max_pages is not None and pages >= max_pages):
                break
            skip += size

    def fetch_detail(
        self,
        entity_type: SyncEntityType,
        token: str,
        doc_type: str,
        reference_number: str,
        expand: str | None = None,
    ) -> dict | None:
        params = {"$expand": expand} if expand else None
        return self.client.get_detail(ENTITY_NAMES[entity_type], [doc_type, reference_number], token, params=params)
