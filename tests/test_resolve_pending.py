from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from roundup_db.client import session_scope
from roundup_db.models.roundup import RiHolding, RiQueuedOrder, RiTransaction

from roundup_invest.errors import BatchAbortedError, OwnershipError
from roundup_invest.models import Deferred, Failed, Resolved
from roundup_invest.workflows.pipeline import (
    process_purchase,
    resolve_pending_transactions,
    resolve_transaction,
)

from tests.helpers.db import bootstrap_sqlite_db, seed_mapping, seed_owner

DAY = date(2024, 4, 1)


@pytest.fixture
def db_url(tmp_path) -> str:
    return bootstrap_sqlite_db(tmp_path / "t.db")


@pytest.fixture
def owner(db_url) -> int:
    return seed_owner(database_url=db_url)


def _purchase(db_url: str, owner: int, merchant: str = "Corner Bodega", amount="4.35", **kw):
    with session_scope(database_url=db_url) as s:
        return process_purchase(s, owner, merchant=merchant, amount=amount, tx_date=DAY, **kw)


def _orders(db_url: str) -> list[tuple[int, str | None, Decimal]]:
    with session_scope(database_url=db_url) as s:
        rows = s.execute(select(RiQueuedOrder).order_by(RiQueuedOrder.id)).scalars()
        return [(o.id, o.ticker, o.amount) for o in rows]


def test_mapped_purchase_queues_net_round_up(db_url, owner):
    seed_mapping(
        database_url=db_url, merchant="Corner Bodega", ticker="BDGA", confidence=Decimal("0.9")
    )

    result = _purchase(db_url, owner)

    assert isinstance(result.resolution, Resolved)
    assert result.quote.net == Decimal("0.63")
    assert result.ledger_entry_id is not None
    assert _orders(db_url) == [(result.queued_order_ids[0], "BDGA", Decimal("0.63"))]


def test_same_purchase_twice_is_idempotent(db_url, owner):
    seed_mapping(
        database_url=db_url, merchant="Corner Bodega", ticker="BDGA", confidence=Decimal("0.9")
    )

    first = _purchase(db_url, owner)
    again = _purchase(db_url, owner, merchant="CORNER  bodega", amount=Decimal("-4.35"))

    assert again.duplicate is True
    assert again.transaction_id == first.transaction_id
    assert again.ledger_entry_id == first.ledger_entry_id
    assert again.queued_order_ids == first.queued_order_ids
    assert len(_orders(db_url)) == 1


def test_unresolved_purchase_is_backfilled_once_a_mapping_exists(db_url, owner):
    first = _purchase(db_url, owner)

    assert isinstance(first.resolution, Failed)
    ((placeholder_id, ticker, amount),) = _orders(db_url)
    assert (ticker, amount) == (None, Decimal("0.63"))

    seed_mapping(
        database_url=db_url, merchant="corner bodega", ticker="BDGA", confidence=Decimal("0.9")
    )
    with session_scope(database_url=db_url) as s:
        summary = resolve_pending_transactions(s, owner)

    assert (summary.total, summary.success, summary.mapped, summary.unresolved) == (1, 1, 1, 0)
    assert _orders(db_url) == [(placeholder_id, "BDGA", Decimal("0.63"))]
    with session_scope(database_url=db_url) as s:
        tx = s.get(RiTransaction, first.transaction_id)
        holding = s.execute(select(RiHolding)).scalar_one()
    assert (tx.status, tx.ticker) == ("mapped", "BDGA")
    assert (holding.ticker, holding.total_value) == ("BDGA", Decimal("0.63"))

    # nothing left to resolve
    with session_scope(database_url=db_url) as s:
        assert resolve_pending_transactions(s, owner).total == 0


def test_pending_queue_respects_limit_and_keeps_deferred_pending(db_url, owner):
    for i in range(3):
        _purchase(db_url, owner, merchant=f"Stall {i}", amount=f"{i + 1}.50")

    with session_scope(database_url=db_url) as s:
        summary = resolve_pending_transactions(s, owner, limit=2)

    assert (summary.total, summary.unresolved) == (2, 2)
    assert len(_orders(db_url)) == 3


def test_deferred_resolution_leaves_transaction_pending(db_url, owner):
    # brand table hit, but auto-approval is off by default
    result = _purchase(db_url, owner, merchant="Starbucks")

    assert isinstance(result.resolution, Deferred)
    with session_scope(database_url=db_url) as s:
        tx = s.get(RiTransaction, result.transaction_id)
    assert (tx.status, tx.ticker) == ("pending", None)


def test_resolve_by_transaction_id(db_url, owner):
    first = _purchase(db_url, owner)
    seed_mapping(
        database_url=db_url, merchant="Corner Bodega", ticker="BDGA", confidence=Decimal("0.9")
    )

    with session_scope(database_url=db_url) as s:
        via_id = process_purchase(s, owner, transaction_id=first.transaction_id)
    with session_scope(database_url=db_url) as s:
        direct = resolve_transaction(s, owner, first.transaction_id)

    assert isinstance(via_id.resolution, Resolved) and via_id.resolution.ticker == "BDGA"
    # already mapped: keeps its ticker and reports the existing order
    assert direct.resolution.ticker == "BDGA"
    assert direct.queued_order_ids == via_id.queued_order_ids == first.queued_order_ids


def test_foreign_or_unknown_transactions_are_refused(db_url, owner):
    first = _purchase(db_url, owner)
    intruder = seed_owner(database_url=db_url)

    with session_scope(database_url=db_url) as s:
        with pytest.raises(OwnershipError):
            resolve_transaction(s, intruder, first.transaction_id)
        with pytest.raises(LookupError):
            resolve_transaction(s, owner, 12345)


@pytest.mark.parametrize(
    ("merchant", "amount"),
    [("   ", "4.35"), ("Corner Bodega", "abc"), ("Corner Bodega", "0")],
)
def test_invalid_purchase_fields_raise_before_writes(db_url, owner, merchant, amount):
    with pytest.raises(ValueError):
        _purchase(db_url, owner, merchant=merchant, amount=amount)
    assert _orders(db_url) == []


def test_inactive_owner_cannot_submit(db_url):
    inactive = seed_owner(database_url=db_url, is_active=False)
    with pytest.raises(BatchAbortedError):
        _purchase(db_url, inactive)
