# ruff: noqa: I001
"""Round-up core tables and default platform settings.

Revision ID: 0001_ri_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ri_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "ri_owners",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column(
            "round_up_amount", sa.Numeric(18, 2), nullable=False, server_default=sa.text("1.00")
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint("round_up_amount > 0", name="ck_ri_owner_round_up_positive"),
    )

    op.create_table(
        "ri_platform_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.bulk_insert(
        sa.table(
            "ri_platform_settings",
            sa.column("key", sa.String()),
            sa.column("value", sa.Text()),
        ),
        [
            {"key": "platform_fee_rate", "value": "0.025"},
            {"key": "auto_approval_enabled", "value": "false"},
            {"key": "auto_approval_threshold", "value": "0.90"},
        ],
    )

    op.create_table(
        "ri_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("round_up", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("ticker", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("dedup_key", sa.Text(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("status in ('pending','mapped','failed')", name="ck_ri_tx_status"),
        sa.CheckConstraint("source in ('bank','bulk','receipt')", name="ck_ri_tx_source"),
        sa.CheckConstraint("amount > 0", name="ck_ri_tx_amount_positive"),
        sa.CheckConstraint(
            "round_up > 0 AND fee >= 0 AND fee <= round_up", name="ck_ri_tx_fee"
        ),
    )
    op.create_index("ix_ri_tx_owner_dedup_key", "ri_transactions", ["owner_id", "dedup_key"])
    op.create_index("ix_ri_tx_owner_external_id", "ri_transactions", ["owner_id", "external_id"])
    op.create_index("ix_ri_tx_owner_status", "ri_transactions", ["owner_id", "status"])

    op.create_table(
        "ri_merchant_mappings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("merchant_name", sa.Text(), nullable=False),
        sa.Column("ticker", sa.String(), nullable=False),
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("confidence", sa.Numeric(5, 4), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("ai_processed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("provenance", sa.String(), nullable=False),
        sa.Column(
            "created_by_owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=True
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status in ('pending','approved','rejected')", name="ck_ri_mapping_status"
        ),
        sa.CheckConstraint(
            "provenance in ('manual','llm','rule','import','receipt')",
            name="ck_ri_mapping_provenance",
        ),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_ri_mapping_confidence"
        ),
    )
    op.create_index(
        "ix_ri_mapping_merchant_lower",
        "ri_merchant_mappings",
        [sa.text("lower(merchant_name)")],
    )

    op.create_table(
        "ri_inference_audit",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("merchant_name", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("raw_response", sa.Text(), nullable=True),
        sa.Column("parsed_response", sa.JSON(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("model_version", sa.String(), nullable=False),
        sa.Column("is_error", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "ri_ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=False),
        sa.Column(
            "transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("ri_transactions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("round_up_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("swept_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("status in ('pending','swept')", name="ck_ri_ledger_status"),
    )

    op.create_table(
        "ri_queued_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=False),
        sa.Column(
            "transaction_id", sa.BigInteger(), sa.ForeignKey("ri_transactions.id"), nullable=False
        ),
        sa.Column("ticker", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'queued'")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("status in ('queued','executed')", name="ck_ri_order_status"),
        sa.CheckConstraint("amount > 0", name="ck_ri_order_amount_positive"),
    )
    op.create_index("ix_ri_order_transaction", "ri_queued_orders", ["transaction_id"])

    op.create_table(
        "ri_holdings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=False),
        sa.Column("ticker", sa.String(), nullable=False),
        sa.Column("shares", sa.Numeric(20, 8), nullable=False, server_default=sa.text("0")),
        sa.Column("average_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("current_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("total_value", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("owner_id", "ticker", name="uq_ri_holding_owner_ticker"),
    )

    op.create_table(
        "ri_receipts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.BigInteger(), sa.ForeignKey("ri_owners.id"), nullable=False),
        sa.Column(
            "transaction_id", sa.BigInteger(), sa.ForeignKey("ri_transactions.id"), nullable=True
        ),
        sa.Column("retailer", sa.Text(), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'parsed'")),
        _created_at(),
        sa.CheckConstraint("status in ('parsed','allocated')", name="ck_ri_receipt_status"),
    )

    op.create_table(
        "ri_receipt_allocations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "receipt_id", sa.BigInteger(), sa.ForeignKey("ri_receipts.id"), nullable=False
        ),
        sa.Column(
            "transaction_id", sa.BigInteger(), sa.ForeignKey("ri_transactions.id"), nullable=False
        ),
        sa.Column(
            "queued_order_id",
            sa.BigInteger(),
            sa.ForeignKey("ri_queued_orders.id"),
            nullable=True,
        ),
        sa.Column("ticker", sa.String(), nullable=False),
        sa.Column("allocation_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("allocation_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("confidence", sa.Numeric(5, 4), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("ri_receipt_allocations")
    op.drop_table("ri_receipts")
    op.drop_table("ri_holdings")
    op.drop_index("ix_ri_order_transaction", table_name="ri_queued_orders")
    op.drop_table("ri_queued_orders")
    op.drop_table("ri_ledger_entries")
    op.drop_table("ri_inference_audit")
    op.drop_index("ix_ri_mapping_merchant_lower", table_name="ri_merchant_mappings")
    op.drop_table("ri_merchant_mappings")
    op.drop_index("ix_ri_tx_owner_status", table_name="ri_transactions")
    op.drop_index("ix_ri_tx_owner_external_id", table_name="ri_transactions")
    op.drop_index("ix_ri_tx_owner_dedup_key", table_name="ri_transactions")
    op.drop_table("ri_transactions")
    op.drop_table("ri_platform_settings")
    op.drop_table("ri_owners")
