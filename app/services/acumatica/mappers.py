"""Acumatica record → local column mapping."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from app.models.sync import SyncEntityType

REFERENCE_WIDTH = 6

_INT_RE = re.compile(r"^-?\d+$")
_DECIMAL_RE = re.compile(r"^-?\d+\.\d+$")

# (ERP field, local column). When several ERP fields feed one column the first
# non-empty one wins.
INVOICE_FIELDS: list[tuple[str, str]] = [
    ("Type", "type"),
    ("ReferenceNbr", "reference_number"),
    ("Status", "status"),
    ("Date", "date"),
    ("PostPeriod", "post_period"),
    ("Customer", "customer"),
    ("CustomerName", "customer_name"),
    ("CustomerOrder", "customer_order"),
    ("CurrencyID", "currency"),
    ("Amount", "amount"),
    ("Balance", "balance"),
    ("DueDate", "due_date"),
    ("CashDiscountDate", "cash_discount_date"),
    ("Terms", "terms"),
    ("Description", "description"),
    ("LastModifiedDateTime", "last_modified_datetime"),
]

PAYMENT_FIELDS: list[tuple[str, str]] = [
    ("ReferenceNbr", "reference_number"),
    ("Type", "type"),
    ("Status", "status"),
    ("Hold", "hold"),
    ("ApplicationDate", "application_date"),
    ("PaymentDate", "application_date"),
    ("PaymentAmount", "payment_amount"),
    ("UnappliedBalance", "available_balance"),
    ("CustomerID", "customer_id"),
    ("CustomerName", "customer_name"),
    ("PaymentMethod", "payment_method"),
    ("CashAccount", "cash_account"),
    ("PaymentRef", "payment_ref"),
    ("Description", "description"),
    ("CurrencyID", "currency_id"),
    ("LastModifiedDateTime", "last_modified_datetime"),
]

CUSTOMER_FIELDS: list[tuple[str, str]] = [
    ("CustomerID", "customer_id"),
    ("CustomerName", "customer_name"),
    ("Status", "customer_status"),
    ("CustomerClass", "customer_class"),
    ("CreditLimit", "credit_limit"),
    ("CreditDaysPastDue", "credit_days_past_due"),
    ("CreditVerificationRules", "credit_verification_rules"),
    ("CreditHold", "credit_hold"),
    ("CreditTerms", "credit_terms"),
    ("CurrencyID", "currency_id"),
    ("StatementType", "statement_type"),
    ("PrintStatements", "print_statements"),
    ("SendStatementsByEmail", "send_statements_by_email"),
    ("MainContact", "main_contact"),
    ("PrimaryContact", "primary_contact"),
    ("Phone1", "phone_1"),
    ("Email", "email_address"),
    ("PriceClassID", "price_class_id"),
    ("LastModifiedDateTime", "last_modified_datetime"),
]

APPLICATION_FIELDS: list[tuple[str, str]] = [
    ("DisplayRefNbr", "invoice_reference_number"),
    ("ReferenceNbr", "invoice_reference_number"),
    ("RefNbr", "invoice_reference_number"),
    ("AdjustedRefNbr", "invoice_reference_number"),
    ("DisplayDocType", "doc_type"),
    ("DocType", "doc_type"),
    ("AdjustedDocType", "doc_type"),
    ("Customer", "customer_id"),
    ("CustomerID", "customer_id"),
    ("AmountPaid", "amount_paid"),
    ("Balance", "balance"),
    ("CashDiscountTaken", "cash_discount_taken"),
    ("PostPeriod", "post_period"),
    ("ApplicationPeriod", "application_period"),
    ("DueDate", "due_date"),
    ("CustomerOrder", "customer_order"),
    ("ApplicationDate", "application_date"),
    ("AdjgDocDate", "application_date"),
    ("Date", "application_date"),
    ("DocDate", "invoice_date"),
    ("Date", "invoice_date"),
    ("Description", "description"),
]

FIELD_MAPS: dict[SyncEntityType, list[tuple[str, str]]] = {
    SyncEntityType.invoice: INVOICE_FIELDS,
    SyncEntityType.payment: PAYMENT_FIELDS,
    SyncEntityType.customer: CUSTOMER_FIELDS,
}

# Columns that hold identifiers or codes; numeric-looking values stay strings.
TEXT_FIELDS = frozenset(
    {
        "reference_number",
        "invoice_reference_number",
        "type",
        "doc_type",
        "customer",
        "customer_id",
        "customer_order",
        "customer_class",
        "post_period",
        "application_period",
        "payment_ref",
        "cash_account",
        "terms",
        "credit_terms",
        "phone_1",
        "price_class_id",
        "description",
        "customer_name",
    }
)

REFERENCE_FIELDS = frozenset({"reference_number", "invoice_reference_number"})


def get_value(record: Any, key: str, default: Any = None) -> Any:
    """Read ``record[key]``, unwrapping Acumatica's ``{"value": ...}`` envelope."""
    if not isinstance(record, dict) or key not in record:
        return default
    field = record[key]
    if isinstance(field, dict) and "value" in field:
        value = field["value"]
        return default if value is None else value
    return default if field is None else field


def normalize_reference_number(value: Any) -> str | None:
    """Left-pad numeric-only reference numbers to six digits."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        text = str(value)
    else:
        text = str(value).strip()
    if not text:
        return None
    if text.isdigit() and len(text) < REFERENCE_WIDTH:
        return text.zfill(REFERENCE_WIDTH)
    return text


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def is_date_field(name: str) -> bool:
    return "date" in name.lower()


def coerce_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in REFERENCE_FIELDS:
        return normalize_reference_number(value)
    if is_date_field(column):
        parsed = parse_datetime(value)
        if parsed is not None:
            return parsed.isoformat()
        return value
    if isinstance(value, (bool, int, float, Decimal)):
        return value
    if isinstance(value, str):
        if column in TEXT_FIELDS:
            return value
        stripped = value.strip()
        if _INT_RE.match(stripped):
            return int(stripped)
        if _DECIMAL_RE.match(stripped):
            return Decimal(stripped)
    return value


def map_fields(raw: dict, fields: list[tuple[str, str]]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for source, column in fields:
        if mapped.get(column) is not None:
            continue
        value = get_value(raw, source)
        if value is None:
            mapped.setdefault(column, None)
            continue
        mapped[column] = coerce_value(column, value)
    return mapped


def map_record(raw: dict, entity_type: SyncEntityType) -> dict[str, Any]:
    mapped = map_fields(raw, FIELD_MAPS[entity_type])
    mapped["raw_data"] = raw
    return mapped


def map_application(entry: dict) -> dict[str, Any]:
    mapped = map_fields(entry, APPLICATION_FIELDS)
    mapped["raw_data"] = entry
    return mapped
