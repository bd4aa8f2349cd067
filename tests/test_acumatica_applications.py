"""Tests for payment → invoice application links and attachment metadata."""

from decimal import Decimal

from app.models.acumatica import AcumaticaInvoice, PaymentAttachment, PaymentInvoiceApplication
from app.models.sync import SyncChangeLog
from app.services.acumatica.applications import (
    ApplicationLinker,
    find_orphaned_applications,
    history_fields,
    pick_entries,
)
from app.services.acumatica.attachments import clean_file_name, extract_files, record_attachments
from app.services.acumatica.client import AcumaticaNotFoundError
from app.services.acumatica.fetcher import EntityFetcher
from tests.fakes import FakeAcumaticaClient, wrap


def _entry(reference, amount, doc_type="Invoice"):
    return {
        "DisplayRefNbr": wrap(reference),
        "DisplayDocType": wrap(doc_type),
        "AmountPaid": wrap(amount),
        "ApplicationDate": wrap("2024-03-05T00:00:00"),
    }


def _links(db_session, payment):
    return (
        db_session.query(PaymentInvoiceApplication)
        .filter(PaymentInvoiceApplication.payment_id == payment.id)
        .order_by(PaymentInvoiceApplication.invoice_reference_number)
        .all()
    )


def _linker(db_session, client=None):
    return ApplicationLinker(db_session, EntityFetcher(client or FakeAcumaticaClient()))


class TestHistoryFields:
    def test_closed_payments_prefer_history(self):
        assert history_fields("Closed") == ("ApplicationHistory", "DocumentsToApply")

    def test_open_payments_prefer_documents_to_apply(self):
        assert history_fields("Open") == ("DocumentsToApply", "ApplicationHistory")

    def test_pick_entries_falls_back(self):
        record = {"ApplicationHistory": [], "DocumentsToApply": [{"x": 1}]}
        assert pick_entries(record, ("ApplicationHistory", "DocumentsToApply")) == [{"x": 1}]

    def test_pick_entries_empty_list_is_authoritative(self):
        assert pick_entries({"ApplicationHistory": []}, ("ApplicationHistory", "DocumentsToApply")) == []

    def test_pick_entries_absent(self):
        assert pick_entries({"Status": wrap("Open")}, ("ApplicationHistory", "DocumentsToApply")) is None


class TestRelinkApplications:
    def test_resync_replaces_the_whole_set(self, db_session, make_payment):
        payment = make_payment()
        linker = _linker(db_session)

        linker.relink_applications(
            payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10), _entry("100002", 20)]}
        )
        db_session.commit()
        assert [link.invoice_reference_number for link in _links(db_session, payment)] == ["100001", "100002"]

        result = linker.relink_applications(payment, "sid=1", {"ApplicationHistory": [_entry("100002", 25)]})
        db_session.commit()

        links = _links(db_session, payment)
        assert len(links) == 1
        assert links[0].invoice_reference_number == "100002"
        assert links[0].amount_paid == Decimal("25")
        assert result.removed == 2
        assert result.linked == 1

    def test_empty_upstream_set_clears_links(self, db_session, make_payment):
        payment = make_payment()
        linker = _linker(db_session)
        linker.relink_applications(payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10)]})

        result = linker.relink_applications(payment, "sid=1", {"ApplicationHistory": []})

        assert result.linked == 0
        assert _links(db_session, payment) == []

    def test_credit_memos_and_blank_references_skipped(self, db_session, make_payment):
        payment = make_payment()
        entries = [
            _entry("100001", 10),
            _entry("100003", 5, doc_type="Credit Memo"),
            {"AmountPaid": wrap(1)},
        ]

        result = _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": entries})

        assert result.linked == 1
        assert result.skipped == 2
        assert [link.invoice_reference_number for link in _links(db_session, payment)] == ["100001"]

    def test_partial_applications_to_one_invoice_are_summed(self, db_session, make_payment):
        payment = make_payment()
        entries = [_entry("100001", "10.50"), _entry("100001", "4.50")]

        _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": entries})

        links = _links(db_session, payment)
        assert len(links) == 1
        assert links[0].amount_paid == Decimal("15.00")

    def test_missing_invoice_still_linked(self, db_session, make_payment):
        payment = make_payment(customer_id="C042")
        result = _linker(db_session).relink_applications(
            payment, "sid=1", {"ApplicationHistory": [_entry("42", 10)]}
        )

        assert result.missing_invoices == ["000042"]
        link = _links(db_session, payment)[0]
        assert link.invoice_reference_number == "000042"
        assert link.customer_id == "C042"
        assert link.payment_reference_number == payment.reference_number

    def test_writes_change_log_per_link(self, db_session, make_payment):
        payment = make_payment()
        _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10)]})
        entries = (
            db_session.query(SyncChangeLog)
            .filter(SyncChangeLog.action_type == "application_fetched")
            .all()
        )
        assert len(entries) == 1
        assert entries[0].change_details["invoice_reference_number"] == "100001"

    def test_falls_back_to_detail_endpoint(self, db_session, make_payment):
        payment = make_payment(reference_number="000321", raw_data={})
        client = FakeAcumaticaClient(
            details={("Payment", "Payment", "000321"): {"ApplicationHistory": [_entry("100001", 10)]}}
        )

        result = _linker(db_session, client).relink_applications(payment, "sid=1", payment.raw_data)

        assert result.source == "detail"
        assert result.linked == 1
        entity, params = client.list_calls[0]
        assert params["$filter"] == "ReferenceNbr eq '000321' and Type eq 'Payment'"
        assert params["$expand"] == "ApplicationHistory"

    def test_unavailable_history_keeps_existing_links(self, db_session, make_payment):
        class _MissingClient(FakeAcumaticaClient):
            def get_detail(self, entity, keys, cookie, params=None):
                raise AcumaticaNotFoundError("gone", status_code=404)

        payment = make_payment(raw_data={})
        _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10)]})
        db_session.commit()

        result = _linker(db_session, _MissingClient()).relink_applications(payment, "sid=1", payment.raw_data)
        db_session.commit()

        assert result.source is None
        assert result.retained is True
        assert result.removed == 0
        assert [link.invoice_reference_number for link in _links(db_session, payment)] == ["100001"]

    def test_empty_detail_response_keeps_existing_links(self, db_session, make_payment):
        payment = make_payment(raw_data={})
        _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10)]})

        result = _linker(db_session).relink_applications(payment, "sid=1", payment.raw_data)

        assert result.retained is True
        assert len(_links(db_session, payment)) == 1

    def test_debit_memos_and_overdue_charges_are_linked(self, db_session, make_payment):
        payment = make_payment()
        entries = [
            _entry("100001", 10),
            _entry("100004", 3, doc_type="Debit Memo"),
            _entry("100005", 2, doc_type="Overdue Charge"),
        ]

        result = _linker(db_session).relink_applications(payment, "sid=1", {"ApplicationHistory": entries})

        assert result.linked == 3
        assert [link.doc_type for link in _links(db_session, payment)] == ["Invoice", "Debit Memo", "Overdue Charge"]


def test_find_orphaned_applications(db_session, make_payment):
    payment = make_payment()
    _linker(db_session).relink_applications(
        payment, "sid=1", {"ApplicationHistory": [_entry("100001", 10), _entry("100002", 20)]}
    )
    db_session.add(AcumaticaInvoice(reference_number="100001", status="Closed"))
    db_session.commit()

    orphans = find_orphaned_applications(db_session)

    assert [link.invoice_reference_number for link in orphans] == ["100002"]


class TestAttachments:
    def test_clean_file_name(self):
        assert clean_file_name("Payments (AR302000)\\000123\\check #1.jpg") == "check _1.jpg"

    def test_extract_files(self):
        assert extract_files({"files": [{"id": "a"}, {"filename": "no id"}]}) == [{"id": "a"}]
        assert extract_files({"ReferenceNbr": wrap("1")}) is None

    def test_records_metadata_once(self, db_session, make_payment):
        payment = make_payment()
        files = [{"id": "f-1", "filename": "Payments\\000100\\check.jpg"}, {"id": "f-2", "filename": "remit.pdf"}]
        client = FakeAcumaticaClient()

        assert record_attachments(db_session, client, payment, files) == 2
        assert record_attachments(db_session, client, payment, files) == 0

        rows = db_session.query(PaymentAttachment).order_by(PaymentAttachment.file_id).all()
        assert [row.file_name for row in rows] == ["check.jpg", "remit.pdf"]
        assert [row.is_check_image for row in rows] == [True, False]
        assert rows[0].file_url.endswith("fileID=f-1")

    def test_payment_types_sharing_a_number_keep_separate_files(self, db_session, make_payment):
        payment = make_payment(reference_number="000200", type="Payment")
        prepayment = make_payment(reference_number="000200", type="Prepayment")
        files = [{"id": "f-1", "filename": "check.jpg"}]
        client = FakeAcumaticaClient()

        assert record_attachments(db_session, client, payment, files) == 1
        assert record_attachments(db_session, client, prepayment, files) == 1

        rows = db_session.query(PaymentAttachment).filter(PaymentAttachment.file_id == "f-1").all()
        assert {row.payment_id for row in rows} == {payment.id, prepayment.id}
