import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: F401,E402
from app.db import Base  # noqa: E402
from app.models.acumatica import AcumaticaCredential, AcumaticaPayment  # noqa: E402
from tests.fakes import FakeAcumaticaClient  # noqa: E402

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite's implicit transaction handling breaks SAVEPOINT; take over BEGIN.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, autoflush=False, join_transaction_mode="create_savepoint")
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def fake_client():
    return FakeAcumaticaClient()


@pytest.fixture()
def credential_row(db_session):
    row = AcumaticaCredential(
        acumatica_url="https://erp.example.com",
        username="sync-user",
        password="secret",
        company="Acme",
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture()
def make_payment(db_session):
    def _make(reference_number="000100", type="Payment", status="Closed", raw_data=None, **fields):
        payment = AcumaticaPayment(
            reference_number=reference_number,
            type=type,
            status=status,
            customer_id=fields.pop("customer_id", "C001"),
            customer_name=fields.pop("customer_name", "Acme Corp"),
            raw_data=raw_data if raw_data is not None else {"ApplicationHistory": [], "files": []},
            **fields,
        )
        db_session.add(payment)
        db_session.commit()
        return payment

    return _make
