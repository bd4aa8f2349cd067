"""Tests for entity sync runs, status bookkeeping and master sync."""

from dataclasses import replace

import pytest

from app.models.acumatica import (
    AcumaticaCustomer,
    AcumaticaInvoice,
    AcumaticaPayment,
    PaymentAttachment,
    PaymentInvoiceApplication,
)
from app.models.sync import SyncEntityType, SyncLog, SyncRunStatus, SyncSource, SyncStatus
from app.services.acumatica import fetcher as fetcher_module
from app.services.acumatica.client import SessionLimitReached
from app.services.acumatica.status import ERROR_STORE_LIMIT, SyncStatusStore
from app.services.acumatica.sync import (
    AcumaticaSyncService,
    SyncOptions,
    SyncResult,
    run_master_sync,
)
from tests.fakes import CREDENTIALS, ClientFactory, FakeAcumaticaClient, PagedClient, no_sleep, wrap


def _invoice(reference, status="Open"):
    return {
        "ReferenceNbr": wrap(reference) if reference else wrap(None),
        "Type": wrap("Invoice"),
        "Status": wrap(status),
        "Amount": wrap("100.00"),
        "Balance": wrap("100.00"),
        "Customer": wrap("C001"),
        "LastModifiedDateTime": wrap("2024-03-01T10:00:00"),
    }


def _payment(reference, applications, files=None):
    raw = {
        "ReferenceNbr": wrap(reference),
        "Type": wrap("Payment"),
        "Status": wrap("Open"),
        "PaymentAmount": wrap("30.00"),
        "CustomerID": wrap("C001"),
        "DocumentsToApply": [
            {"ReferenceNbr": wrap(ref), "DocType": wrap("Invoice"), "AmountPaid": wrap(amount)}
            for ref, amount in applications
        ],
    }
    if files is not None:
        raw["files"] = files
    return raw


def _service(db_session, client):
    factory = ClientFactory(client)
    return AcumaticaSyncService(db_session, client_factory=factory, item_delay=0, sleep=no_sleep), factory


def _options(**kwargs):
    return SyncOptions(credentials=dict(CREDENTIALS), **kwargs)


class TestSyncResult:
    def test_errors_bounded(self):
        result = SyncResult(entity_type=SyncEntityType.invoice)
        for i in range(ERROR_STORE_LIMIT + 20):
            result.add_error(f"error {i}")

        assert len(result.errors) == ERROR_STORE_LIMIT
        assert result.error_count == ERROR_STORE_LIMIT + 20
        body = result.to_dict()
        assert len(body["errors"]) == 10
        assert body["totalErrors"] == ERROR_STORE_LIMIT + 20

    def test_to_dict_shape(self):
        body = SyncResult(entity_type=SyncEntityType.payment, created=2).to_dict()
        assert body["success"] is True
        assert body["entityType"] == "payment"
        assert body["created"] == 2
        assert "error" not in body


class TestSyncStatusStore:
    def test_ensure_defaults(self, db_session):
        store = SyncStatusStore(db_session)
        assert store.ensure(SyncEntityType.invoice).lookback_minutes == 2
        assert store.ensure(SyncEntityType.customer).lookback_minutes == 10000
        assert len(store.list_all()) == 3

    def test_failed_run_then_success(self, db_session):
        store = SyncStatusStore(db_session)
        started = store.begin_run(SyncEntityType.invoice)
        assert store.ensure(SyncEntityType.invoice).status == SyncRunStatus.running

        failed = SyncResult(entity_type=SyncEntityType.invoice)
        failed.fail("No active Acumatica credentials are configured")
        row = store.end_run(SyncEntityType.invoice, failed, started)
        assert row.status == SyncRunStatus.failed
        assert row.retry_count == 1
        assert row.last_error == "No active Acumatica credentials are configured"

        ok = SyncResult(entity_type=SyncEntityType.invoice, total_fetched=3, created=3)
        row = store.end_run(SyncEntityType.invoice, ok, store.begin_run(SyncEntityType.invoice), test_mode=True)
        assert row.status == SyncRunStatus.completed
        assert row.retry_count == 0
        assert row.records_created == 3
        assert row.last_successful_sync is not None

        logs = db_session.query(SyncLog).filter(SyncLog.entity_type == SyncEntityType.invoice).all()
        assert sorted(log.status.value for log in logs) == ["completed", "failed"]
        assert any(log.test_mode for log in logs)


class TestSyncEntity:
    def test_one_bad_record_does_not_abort_the_batch(self, db_session):
        records = [_invoice("1"), _invoice("2"), _invoice(None), _invoice("4"), _invoice("5")]
        client = FakeAcumaticaClient(lists={"Invoice": records})
        service, _ = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.invoice, _options())

        assert result.success is True
        assert result.total_fetched == 5
        assert result.created + result.updated == 4
        assert len(result.errors) == 1
        assert "invoice" in result.errors[0]
        assert db_session.query(AcumaticaInvoice).count() == 4
        assert client.closed is True

        status = db_session.query(SyncStatus).filter(SyncStatus.entity_type == SyncEntityType.invoice).one()
        assert status.status == SyncRunStatus.completed
        assert status.records_created == 4
        assert status.errors == result.errors

    def test_rerun_updates_instead_of_creating(self, db_session):
        client = FakeAcumaticaClient(lists={"Invoice": [_invoice("1"), _invoice("2")]})
        service, _ = _service(db_session, client)
        service.sync_entity(SyncEntityType.invoice, _options())

        client.lists["Invoice"] = [_invoice("1", status="Closed"), _invoice("2")]
        result = service.sync_entity(SyncEntityType.invoice, _options())

        assert (result.created, result.updated) == (0, 2)
        closed = db_session.query(AcumaticaInvoice).filter(AcumaticaInvoice.reference_number == "000001").one()
        assert closed.status == "Closed"
        assert client.logins == 1

    def test_incremental_fetch_uses_status_lookback(self, db_session):
        SyncStatusStore(db_session).ensure(SyncEntityType.invoice).lookback_minutes = 30
        db_session.commit()
        client = FakeAcumaticaClient()
        service, _ = _service(db_session, client)

        service.sync_entity(SyncEntityType.invoice, _options())

        _, params = client.list_calls[0]
        assert params["$filter"].startswith("LastModifiedDateTime gt datetimeoffset'")

    def test_bulk_fetch_pages(self, db_session):
        client = FakeAcumaticaClient()
        service, _ = _service(db_session, client)

        service.sync_entity(SyncEntityType.customer, _options(bulk=True, batch_size=100, skip=200))

        _, params = client.list_calls[0]
        assert params["$top"] == "100"
        assert params["$skip"] == "200"
        assert "$filter" not in params

    def test_bulk_without_paging_overrides_reads_until_short_page(self, db_session, monkeypatch):
        monkeypatch.setattr(fetcher_module, "settings", replace(fetcher_module.settings, acumatica_page_size=2))
        customers = [{"CustomerID": wrap(f"C{i:03d}"), "CustomerName": wrap(f"Customer {i}")} for i in range(5)]
        client = PagedClient(lists={"Customer": customers})
        service, _ = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.customer, _options(bulk=True))

        assert result.total_fetched == 5
        assert result.created == 5
        assert [params.get("$skip") for _, params in client.list_calls] == [None, "2", "4"]
        assert db_session.query(AcumaticaCustomer).count() == 5

    def test_missing_configuration_fails_the_run(self, db_session):
        client = FakeAcumaticaClient()
        service, factory = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.invoice, SyncOptions())

        assert result.success is False
        assert "credentials" in result.error
        assert factory.calls == 0
        status = db_session.query(SyncStatus).filter(SyncStatus.entity_type == SyncEntityType.invoice).one()
        assert status.status == SyncRunStatus.failed
        assert status.last_error == result.error
        assert result.to_dict()["success"] is False

    def test_session_limit_reports_remediation(self, db_session):
        client = FakeAcumaticaClient(login_error=SessionLimitReached("Acumatica API login limit reached"))
        service, _ = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.invoice, _options())

        assert result.success is False
        assert "SM201010" in result.solution
        assert result.to_dict()["solution"] == result.solution

    def test_payment_sync_links_applications_and_files(self, db_session):
        db_session.add(AcumaticaInvoice(reference_number="000011", status="Open"))
        db_session.commit()
        payment = _payment("500", [("11", 10), ("12", 20)], files=[{"id": "f-1", "filename": "check.png"}])
        client = FakeAcumaticaClient(lists={"Payment": [payment]})
        service, _ = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.payment, _options())

        assert result.success is True
        assert result.created == 1
        assert result.applications_linked == 2
        assert result.attachments_found == 1
        stored = db_session.query(AcumaticaPayment).one()
        assert stored.reference_number == "000500"
        links = (
            db_session.query(PaymentInvoiceApplication)
            .filter(PaymentInvoiceApplication.payment_id == stored.id)
            .order_by(PaymentInvoiceApplication.invoice_reference_number)
            .all()
        )
        assert [link.invoice_reference_number for link in links] == ["000011", "000012"]
        assert db_session.query(PaymentAttachment).count() == 1

    def test_link_applications_can_be_disabled(self, db_session):
        client = FakeAcumaticaClient(lists={"Payment": [_payment("501", [("11", 10)])]})
        service, _ = _service(db_session, client)

        result = service.sync_entity(SyncEntityType.payment, _options(link_applications=False))

        assert result.applications_linked == 0
        assert db_session.query(PaymentInvoiceApplication).count() == 0


class TestResyncPayment:
    def test_resync_single_payment(self, db_session):
        detail = _payment("000777", [("21", 5)])
        client = FakeAcumaticaClient(details={("Payment", "Payment", "000777"): detail})
        service, _ = _service(db_session, client)

        body = service.resync_payment("777", _options())

        assert body["success"] is True
        assert body["referenceNumber"] == "000777"
        assert body["action"] == "created"
        assert body["applications"]["linked"] == 1

    def test_resync_unknown_payment(self, db_session):
        service, _ = _service(db_session, FakeAcumaticaClient())
        body = service.resync_payment("778", _options())
        assert body == {"success": False, "error": "Payment 000778 not found in Acumatica"}


def test_force_logout(db_session):
    client = FakeAcumaticaClient()
    service, _ = _service(db_session, client)
    service.sync_entity(SyncEntityType.customer, _options())

    body = service.force_logout(dict(CREDENTIALS))

    assert body == {"success": True, "sessionsLoggedOut": 1}
    assert client.logouts == ["ASP.NET_SessionId=session-1"]


class TestMasterSync:
    def test_runs_enabled_types_and_isolates_failures(self, db_session, monkeypatch):
        store = SyncStatusStore(db_session)
        store.ensure(SyncEntityType.customer).sync_enabled = False
        db_session.commit()
        monkeypatch.setattr(db_session, "close", lambda: None)
        seen = []

        class _FakeService:
            def __init__(self, db):
                self.db = db

            def sync_entity(self, entity_type, options):
                seen.append((entity_type, options.source))
                if entity_type == SyncEntityType.invoice:
                    raise RuntimeError("worker crashed")
                return SyncResult(entity_type=entity_type, created=1)

        master = run_master_sync(
            SyncOptions(source=SyncSource.scheduled_sync),
            session_factory=lambda: db_session,
            service_factory=_FakeService,
            max_workers=1,
        )

        assert master.skipped == ["customer"]
        assert sorted(master.results) == ["invoice", "payment"]
        assert master.results["payment"].success is True
        assert master.results["invoice"].success is False
        assert master.results["invoice"].error == "worker crashed"
        assert master.success is False
        assert {entity for entity, _ in seen} == {SyncEntityType.invoice, SyncEntityType.payment}
        body = master.to_dict()
        assert body["results"]["payment"]["created"] == 1


@pytest.mark.parametrize("entity_type", list(SyncEntityType))
def test_every_entity_type_syncs_empty_page(db_session, entity_type):
    service, _ = _service(db_session, FakeAcumaticaClient())
    result = service.sync_entity(entity_type, _options())
    assert result.success is True
    assert result.total_fetched == 0
