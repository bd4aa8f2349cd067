"""Tests for Acumatica field mapping and reference normalization."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.models.sync import SyncEntityType
from app.services.acumatica.mappers import (
    coerce_value,
    get_value,
    map_application,
    map_record,
    normalize_reference_number,
    parse_datetime,
)
from tests.fakes import wrap


class TestGetValue:
    def test_unwraps_value_envelope(self):
        assert get_value({"Status": wrap("Open")}, "Status") == "Open"

    def test_passes_through_plain_fields(self):
        assert get_value({"id": "abc"}, "id") == "abc"

    def test_missing_key_returns_default(self):
        assert get_value({}, "Status", "n/a") == "n/a"

    def test_null_value_returns_default(self):
        assert get_value({"Status": wrap(None)}, "Status") is None

    def test_nested_object_without_value_is_returned_as_is(self):
        contact = {"Email": wrap("a@b.c")}
        assert get_value({"MainContact": contact}, "MainContact") == contact

    def test_non_dict_record(self):
        assert get_value(None, "Status") is None


class TestNormalizeReferenceNumber:
    @pytest.mark.parametrize("raw", ["123", "000123", 123, " 123 "])
    def test_padding_is_stable(self, raw):
        assert normalize_reference_number(raw) == "000123"

    def test_long_numbers_untouched(self):
        assert normalize_reference_number("1234567") == "1234567"

    def test_alphanumeric_untouched(self):
        assert normalize_reference_number("AR12") == "AR12"

    def test_empty_is_none(self):
        assert normalize_reference_number("") is None
        assert normalize_reference_number(None) is None


class TestParseDatetime:
    def test_naive_is_utc(self):
        assert parse_datetime("2024-03-01T10:00:00") == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    def test_zulu_suffix(self):
        assert parse_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    def test_offset_converted_to_utc(self):
        assert parse_datetime("2024-03-01T12:00:00+02:00") == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    def test_garbage(self):
        assert parse_datetime("not a date") is None


class TestCoerceValue:
    def test_numeric_strings(self):
        assert coerce_value("balance", "0") == 0
        assert coerce_value("amount", "12.50") == Decimal("12.50")

    def test_identifier_columns_stay_text(self):
        assert coerce_value("customer_id", "00042") == "00042"
        assert coerce_value("post_period", "032024") == "032024"

    def test_reference_columns_padded(self):
        assert coerce_value("reference_number", "77") == "000077"

    def test_date_columns(self):
        assert coerce_value("due_date", "2024-03-01T00:00:00") == "2024-03-01T00:00:00+00:00"


class TestMapRecord:
    def test_invoice(self):
        raw = {
            "ReferenceNbr": wrap("4521"),
            "Status": wrap("Closed"),
            "Balance": wrap("0"),
            "Amount": wrap(150.25),
            "Customer": wrap("C001"),
            "LastModifiedDateTime": wrap("2024-03-01T10:00:00"),
        }
        mapped = map_record(raw, SyncEntityType.invoice)
        assert mapped["reference_number"] == "004521"
        assert mapped["status"] == "Closed"
        assert mapped["balance"] == 0
        assert mapped["amount"] == 150.25
        assert mapped["customer"] == "C001"
        assert mapped["raw_data"] is raw

    def test_payment_prefers_application_date(self):
        raw = {
            "ReferenceNbr": wrap("9"),
            "Type": wrap("Payment"),
            "ApplicationDate": wrap("2024-03-02T00:00:00"),
            "PaymentDate": wrap("2024-01-01T00:00:00"),
        }
        mapped = map_record(raw, SyncEntityType.payment)
        assert mapped["application_date"].startswith("2024-03-02")

    def test_payment_falls_back_to_payment_date(self):
        raw = {"ReferenceNbr": wrap("9"), "Type": wrap("Payment"), "PaymentDate": wrap("2024-01-01T00:00:00")}
        mapped = map_record(raw, SyncEntityType.payment)
        assert mapped["application_date"].startswith("2024-01-01")

    def test_customer_keeps_contact_object(self):
        raw = {"CustomerID": wrap("C001"), "MainContact": {"Email": wrap("ops@acme.test")}}
        mapped = map_record(raw, SyncEntityType.customer)
        assert mapped["customer_id"] == "C001"
        assert mapped["main_contact"] == {"Email": {"value": "ops@acme.test"}}


def test_map_application_reads_display_fields():
    entry = {
        "DisplayRefNbr": wrap("55"),
        "DisplayDocType": wrap("Invoice"),
        "AmountPaid": wrap("25.00"),
        "Date": wrap("2024-03-05T00:00:00"),
    }
    mapped = map_application(entry)
    assert mapped["invoice_reference_number"] == "000055"
    assert mapped["doc_type"] == "Invoice"
    assert mapped["amount_paid"] == Decimal("25.00")
    assert mapped["application_date"].startswith("2024-03-05")
