import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class AcumaticaCredential(Base):
    __tablename__ = "acumatica_sync_credentials"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    acumatica_url: Mapped[str] = mapped_column(String(500), nullable=False)
    username: Mapped[str] = mapped_column(String(200), nullable=False)
    password: Mapped[str] = mapped_column(String(500), nullable=False)
    company: Mapped[str | None] = mapped_column(String(200))
    branch: Mapped[str | None] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class AcumaticaSession(Base):
    """A cached ERP session cookie. A new login invalidates older rows for the same credentials."""

    __tablename__ = "acumatica_session_cache"
    __table_args__ = (
        Index("ix_acumatica_session_cache_lookup", "credential_key", "is_valid", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credential_key: Mapped[str] = mapped_column(String(120), nullable=False)
    session_cookie: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class AcumaticaCustomer(Base):
    __tablename__ = "acumatica_customers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_status: Mapped[str | None] = mapped_column(String(40), index=True)
    customer_class: Mapped[str | None] = mapped_column(String(60))
    credit_limit: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    credit_days_past_due: Mapped[int | None] = mapped_column(Integer)
    credit_verification_rules: Mapped[str | None] = mapped_column(String(80))
    credit_hold: Mapped[bool | None] = mapped_column(Boolean)
    credit_terms: Mapped[str | None] = mapped_column(String(60))
    currency_id: Mapped[str | None] = mapped_column(String(10))
    statement_type: Mapped[str | None] = mapped_column(String(40))
    print_statements: Mapped[bool | None] = mapped_column(Boolean)
    send_statements_by_email: Mapped[bool | None] = mapped_column(Boolean)
    main_contact: Mapped[dict | None] = mapped_column(JSON)
    primary_contact: Mapped[dict | None] = mapped_column(JSON)
    phone_1: Mapped[str | None] = mapped_column(String(60))
    email_address: Mapped[str | None] = mapped_column(String(255))
    price_class_id: Mapped[str | None] = mapped_column(String(60))
    last_modified_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    raw_data: Mapped[dict | None] = mapped_column(JSON)
    last_sync_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class AcumaticaInvoice(Base):
    __tablename__ = "acumatica_invoices"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    type: Mapped[str | None] = mapped_column(String(40))
    status: Mapped[str | None] = mapped_column(String(40), index=True)
    date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    post_period: Mapped[str | None] = mapped_column(String(10))
    customer: Mapped[str | None] = mapped_column(String(60), index=True)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_order: Mapped[str | None] = mapped_column(String(60))
    currency: Mapped[str | None] = mapped_column(String(10))
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cash_discount_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    terms: Mapped[str | None] = mapped_column(String(60))
    description: Mapped[str | None] = mapped_column(Text)
    last_modified_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    raw_data: Mapped[dict | None] = mapped_column(JSON)
    last_sync_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class AcumaticaPayment(Base):
    __tablename__ = "acumatica_payments"
    __table_args__ = (
        UniqueConstraint("reference_number", "type", name="uq_acumatica_payments_ref_type"),
        # Backfill pages in insertion order.
        Index("ix_acumatica_payments_created_id", "created_at", "id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(30), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str | None] = mapped_column(String(40), index=True)
    hold: Mapped[bool | None] = mapped_column(Boolean)
    application_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    available_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    customer_id: Mapped[str | None] = mapped_column(String(60), index=True)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    payment_method: Mapped[str | None] = mapped_column(String(60))
    cash_account: Mapped[str | None] = mapped_column(String(60))
    payment_ref: Mapped[str | None] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    currency_id: Mapped[str | None] = mapped_column(String(10))
    last_modified_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    raw_data: Mapped[dict | None] = mapped_column(JSON)
    last_sync_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    applications = relationship(
        "PaymentInvoiceApplication", back_populates="payment", passive_deletes=True
    )


class PaymentInvoiceApplication(Base):
    __tablename__ = "payment_invoice_applications"
    __table_args__ = (
        UniqueConstraint(
            "payment_id",
            "invoice_reference_number",
            name="uq_payment_invoice_applications_payment_invoice",
        ),
        Index("ix_payment_invoice_applications_invoice_ref", "invoice_reference_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("acumatica_payments.id", ondelete="CASCADE"), nullable=False
    )
    payment_reference_number: Mapped[str] = mapped_column(String(30), nullable=False)
    invoice_reference_number: Mapped[str] = mapped_column(String(30), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(60))
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    cash_discount_taken: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    post_period: Mapped[str | None] = mapped_column(String(10))
    application_period: Mapped[str | None] = mapped_column(String(10))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    customer_order: Mapped[str | None] = mapped_column(String(60))
    application_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    invoice_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    description: Mapped[str | None] = mapped_column(Text)
    doc_type: Mapped[str | None] = mapped_column(String(40))
    raw_data: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    payment = relationship("AcumaticaPayment", back_populates="applications")


class PaymentAttachment(Base):
    __tablename__ = "payment_attachments"
    __table_args__ = (
        UniqueConstraint("payment_id", "file_id", name="uq_payment_attachments_payment_file"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("acumatica_payments.id", ondelete="CASCADE"), nullable=False
    )
    payment_reference_number: Mapped[str] = mapped_column(String(30), nullable=False)
    file_id: Mapped[str] = mapped_column(String(80), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_url: Mapped[str | None] = mapped_column(String(1000))
    is_check_image: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
