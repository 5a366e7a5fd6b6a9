from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from roundup_db.client import session_scope
from roundup_db.models.roundup import RiLedgerEntry, RiQueuedOrder, RiTransaction

from roundup_invest.errors import OwnershipError
from roundup_invest.ledger import LedgerQueueManager
from roundup_invest.models import AllocationLine
from roundup_invest.portfolio import holdings_for_owner

from tests.helpers.db import bootstrap_sqlite_db, seed_owner


def _line(ticker: str, amount: str) -> AllocationLine:
    return AllocationLine(
        ticker=ticker,
        amount=Decimal(amount),
        percentage=Decimal("50.00"),
        confidence=Decimal("0.9"),
        reason=ticker,
    )


@pytest.fixture
def ctx(tmp_path):
    url = bootstrap_sqlite_db(tmp_path / "t.db")
    owner = seed_owner(database_url=url)
    with session_scope(database_url=url) as s:
        tx = RiTransaction(
            owner_id=owner,
            date=date(2024, 1, 5),
            merchant="Target",
            amount=Decimal("49.00"),
            round_up=Decimal("1.00"),
            fee=Decimal("0.03"),
            status="pending",
            dedup_key="2024-01-05|target|49.00",
            source="receipt",
        )
        s.add(tx)
        s.flush()
        tx_id = tx.id
    return url, owner, tx_id


def test_ledger_entry_is_written_once(ctx):
    url, owner, tx_id = ctx
    with session_scope(database_url=url) as s:
        tx = s.get(RiTransaction, tx_id)
        ledger = LedgerQueueManager(s, owner_id=owner)
        first = ledger.ensure_ledger_entry(tx)
        second = ledger.ensure_ledger_entry(tx)
        count = s.execute(select(func.count()).select_from(RiLedgerEntry)).scalar_one()

    assert first is not None and second is not None
    assert first.id == second.id
    assert count == 1
    assert first.round_up_amount == Decimal("1.00")
    assert first.fee_amount == Decimal("0.03")
    assert first.status == "pending"


def test_other_owner_cannot_touch_transaction(ctx):
    url, owner, tx_id = ctx
    intruder = seed_owner(database_url=url)
    with session_scope(database_url=url) as s:
        tx = s.get(RiTransaction, tx_id)
        ledger = LedgerQueueManager(s, owner_id=intruder)
        with pytest.raises(OwnershipError) as ei:
            ledger.queue_allocations(tx, [_line("TGT", "0.97")])
        with pytest.raises(OwnershipError):
            ledger.ensure_ledger_entry(tx)

    assert isinstance(ei.value, PermissionError)
    assert ei.value.transaction_id == tx_id


def test_failed_order_rolls_back_alone(ctx):
    url, owner, tx_id = ctx
    with session_scope(database_url=url) as s:
        tx = s.get(RiTransaction, tx_id)
        ledger = LedgerQueueManager(s, owner_id=owner)
        entry = ledger.ensure_ledger_entry(tx)
        # a zero-amount order violates the positive-amount check
        outcome = ledger.queue_allocations(
            tx, [_line("TGT", "0.65"), _line("BAD", "0.00"), _line("PG", "0.32")]
        )

    assert len(outcome.order_ids) == 2
    assert len(outcome.failures) == 1 and "BAD" in outcome.failures[0]

    with session_scope(database_url=url) as s:
        orders = s.execute(select(RiQueuedOrder).order_by(RiQueuedOrder.id)).scalars().all()
        holdings = {h.ticker: h.total_value for h in holdings_for_owner(s, owner)}
        assert s.get(RiLedgerEntry, entry.id) is not None

    assert [(o.ticker, o.amount, o.status) for o in orders] == [
        ("TGT", Decimal("0.65"), "queued"),
        ("PG", Decimal("0.32"), "queued"),
    ]
    assert holdings == {"PG": Decimal("0.32"), "TGT": Decimal("0.65")}


def test_placeholder_is_queued_once_then_backfilled(ctx):
    url, owner, tx_id = ctx
    with session_scope(database_url=url) as s:
        tx = s.get(RiTransaction, tx_id)
        ledger = LedgerQueueManager(s, owner_id=owner)
        first = ledger.queue_placeholder(tx, Decimal("0.97"))
        again = ledger.queue_placeholder(tx, Decimal("0.97"))
        assert holdings_for_owner(s, owner) == []

        filled = ledger.backfill_placeholders(tx, " tgt ")
        refill = ledger.backfill_placeholders(tx, "TGT")
        orders = ledger.orders_for(tx_id)
        holdings = [(h.ticker, h.total_value) for h in holdings_for_owner(s, owner)]

    assert first.order_ids == again.order_ids
    assert filled.order_ids == first.order_ids
    assert refill.order_ids == []
    assert [(o.ticker, o.amount) for o in orders] == [("TGT", Decimal("0.97"))]
    assert holdings == [("TGT", Decimal("0.97"))]


def test_holdings_accumulate_across_transactions(ctx):
    url, owner, tx_id = ctx
    with session_scope(database_url=url) as s:
        tx = s.get(RiTransaction, tx_id)
        ledger = LedgerQueueManager(s, owner_id=owner)
        ledger.queue_allocations(tx, [_line("TGT", "0.65")])
        ledger.queue_allocations(tx, [_line("tgt", "0.35")])
        (holding,) = holdings_for_owner(s, owner)

    assert holding.ticker == "TGT"
    assert holding.total_value == Decimal("1.00")
    assert holding.shares == Decimal(0)
