from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT identity on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
_ID = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: ri_owners
# ---------------------------


class RiOwner(Base):
    __tablename__ = "ri_owners"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Round-up used when a purchase amount is already a whole currency unit.
    round_up_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("1.00")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("round_up_amount > 0", name="ck_ri_owner_round_up_positive"),
    )


class RiPlatformSetting(Base):
    __tablename__ = "ri_platform_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


# ---------------------------
# Core: ri_transactions
# ---------------------------


class RiTransaction(Base):
    __tablename__ = "ri_transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("ri_owners.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    round_up: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    ticker: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    # ``date|normalized merchant|amount``. Indexed, deliberately not unique:
    # dedup is a read-before-write check performed per ingestion batch.
    dedup_key: Mapped[str] = mapped_column(Text, nullable=False)
    # Aggregator-assigned id for bank-feed items; NULL for other sources.
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("status in ('pending','mapped','failed')", name="ck_ri_tx_status"),
        CheckConstraint("source in ('bank','bulk','receipt')", name="ck_ri_tx_source"),
        CheckConstraint("amount > 0", name="ck_ri_tx_amount_positive"),
        CheckConstraint("round_up > 0 AND fee >= 0 AND fee <= round_up", name="ck_ri_tx_fee"),
        Index("ix_ri_tx_owner_dedup_key", "owner_id", "dedup_key"),
        Index("ix_ri_tx_owner_external_id", "owner_id", "external_id"),
        Index("ix_ri_tx_owner_status", "owner_id", "status"),
    )


# ---------------------------
# Knowledge base: ri_merchant_mappings
# ---------------------------


class RiMerchantMapping(Base):
    __tablename__ = "ri_merchant_mappings"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False)
    ticker: Mapped[str] = mapped_column(String, nullable=False)
    company_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    ai_processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    provenance: Mapped[str] = mapped_column(String, nullable=False)
    created_by_owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("ri_owners.id"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status in ('pending','approved','rejected')", name="ck_ri_mapping_status"
        ),
        CheckConstraint(
            "provenance in ('manual','llm','rule','import','receipt')",
            name="ck_ri_mapping_provenance",
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_ri_mapping_confidence"
        ),
        Index("ix_ri_mapping_merchant_lower", func.lower(merchant_name)),
    )


class RiInferenceAudit(Base):
    """Append-only record of every inference attempt, successful or not."""

    __tablename__ = "ri_inference_audit"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    parsed_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    model_version: Mapped[str] = mapped_column(String, nullable=False)
    is_error: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


# ---------------------------
# Ledger / queue / holdings
# ---------------------------


class RiLedgerEntry(Base):
    __tablename__ = "ri_ledger_entries"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("ri_owners.id"), nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("ri_transactions.id"), nullable=False, unique=True
    )
    round_up_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    swept_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("status in ('pending','swept')", name="ck_ri_ledger_status"),
    )


class RiQueuedOrder(Base):
    __tablename__ = "ri_queued_orders"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("ri_owners.id"), nullable=False)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("ri_transactions.id"), nullable=False)
    # NULL marks a placeholder awaiting merchant resolution.
    ticker: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'queued'"))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("status in ('queued','executed')", name="ck_ri_order_status"),
        CheckConstraint("amount > 0", name="ck_ri_order_amount_positive"),
        Index("ix_ri_order_transaction", "transaction_id"),
    )


class RiHolding(Base):
    __tablename__ = "ri_holdings"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("ri_owners.id"), nullable=False)
    ticker: Mapped[str] = mapped_column(String, nullable=False)
    # shares/average_price/current_price are owned by execution and pricing.
    shares: Mapped[Decimal] = mapped_column(
        Numeric(20, 8), nullable=False, server_default=text("0")
    )
    average_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (UniqueConstraint("owner_id", "ticker", name="uq_ri_holding_owner_ticker"),)


# ---------------------------
# Receipts
# ---------------------------


class RiReceipt(Base):
    __tablename__ = "ri_receipts"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("ri_owners.id"), nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("ri_transactions.id"), nullable=True
    )
    retailer: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'parsed'"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("status in ('parsed','allocated')", name="ck_ri_receipt_status"),
    )


class RiReceiptAllocation(Base):
    __tablename__ = "ri_receipt_allocations"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    receipt_id: Mapped[int] = mapped_column(ForeignKey("ri_receipts.id"), nullable=False)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("ri_transactions.id"), nullable=False)
    queued_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("ri_queued_orders.id"), nullable=True
    )
    ticker: Mapped[str] = mapped_column(String, nullable=False)
    allocation_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    allocation_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


__all__ = [
    "Base",
    "RiHolding",
    "RiInferenceAudit",
    "RiLedgerEntry",
    "RiMerchantMapping",
    "RiOwner",
    "RiPlatformSetting",
    "RiQueuedOrder",
    "RiReceipt",
    "RiReceiptAllocation",
    "RiTransaction",
]
