from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from roundup_db.client import session_scope
from roundup_db.models.roundup import RiQueuedOrder, RiTransaction

from roundup_invest.config import PipelineConfig
from roundup_invest.ingest.bank_feed import BankFeedItem, TellerClient, map_category, to_purchase
from roundup_invest.workflows.pipeline import BankSyncJob, sync_bank_feed, sync_bank_feeds

from tests.helpers.db import bootstrap_sqlite_db, seed_owner


def _teller(
    tx_id: str,
    amount: str,
    *,
    name: str | None = "Starbucks",
    description: str = "STARBUCKS #1234",
    category: str | None = "coffee",
    on: str = "2024-03-01",
) -> dict:
    return {
        "id": tx_id,
        "account_id": "acc_1",
        "amount": amount,
        "date": on,
        "description": description,
        "details": {"category": category, "counterparty": {"name": name}},
        "status": "posted",
    }


class FakeFeed:
    def __init__(self, accounts: dict[str, list | Exception]) -> None:
        self.accounts = accounts
        self.closed = False

    def list_transactions(self, account_id: str):
        result = self.accounts[account_id]
        if isinstance(result, Exception):
            raise result
        return result

    def close(self) -> None:
        self.closed = True


# ---- Item mapping ---------------------------------------------------------------


@pytest.mark.parametrize(
    ("hint", "expected"),
    [
        ("groceries", "Groceries"),
        ("Coffee Shop", "Food & Drink"),
        ("GAS", "Gas"),
        (None, "Shopping"),
        ("   ", "Shopping"),
        ("zzz", "Shopping"),
    ],
)
def test_map_category(hint, expected):
    assert map_category(hint) == expected


def test_debit_becomes_purchase_with_external_id():
    item = BankFeedItem.from_teller(_teller("txn_1", "-4.35"))
    p = to_purchase(item, owner_id=3, position=7)

    assert p is not None
    assert (p.merchant, p.amount, p.date) == ("Starbucks", Decimal("4.35"), date(2024, 3, 1))
    assert (p.source, p.external_id, p.category, p.row) == ("bank", "txn_1", "Food & Drink", 7)


def test_merchant_falls_back_to_description_then_unknown():
    by_desc = BankFeedItem.from_teller(_teller("t", "-1.50", name=None))
    anon = BankFeedItem.from_teller(_teller("t", "-1.50", name=None, description=""))

    assert to_purchase(by_desc, owner_id=1, position=1).merchant == "STARBUCKS #1234"
    assert to_purchase(anon, owner_id=1, position=1).merchant == "Unknown"


@pytest.mark.parametrize("amount", ["12.00", "0", "-0.001"])
def test_credits_and_zero_amounts_are_dropped(amount: str):
    item = BankFeedItem.from_teller(_teller("t", amount))
    assert to_purchase(item, owner_id=1, position=1) is None


@pytest.mark.parametrize(
    "raw",
    [
        ["not", "an", "object"],
        {"id": "", "amount": "-1.00", "date": "2024-03-01"},
        {"id": "t1", "amount": "lots", "date": "2024-03-01"},
        {"id": "t1", "amount": "-1.00"},
    ],
)
def test_malformed_items_raise_value_error(raw):
    with pytest.raises(ValueError):
        BankFeedItem.from_teller(raw)


# ---- HTTP client ----------------------------------------------------------------


def test_teller_client_uses_basic_auth_and_account_path():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[_teller("txn_1", "-4.35")])

    with TellerClient("tok_abc", transport=httpx.MockTransport(handler)) as client:
        items = client.list_transactions("acc_1")

    assert [i["id"] for i in items] == ["txn_1"]
    (req,) = seen
    assert req.url.path == "/accounts/acc_1/transactions"
    assert req.headers["authorization"].startswith("Basic ")


def test_teller_client_rejects_unexpected_payloads():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/transactions"):
            return httpx.Response(200, content=json.dumps({"error": "nope"}))
        return httpx.Response(404)

    client = TellerClient("tok", transport=httpx.MockTransport(handler))
    with pytest.raises(ValueError):
        client.list_transactions("acc_1")
    with pytest.raises(httpx.HTTPStatusError):
        client.list_accounts()
    client.close()


def test_teller_client_requires_token():
    with pytest.raises(ValueError):
        TellerClient("")


# ---- Sync workflow --------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return bootstrap_sqlite_db(tmp_path / "t.db")


def test_sync_ingests_debits_and_survives_account_failure(db_url):
    owner = seed_owner(database_url=db_url)
    feed = FakeFeed(
        {
            "acc_1": [
                _teller("txn_1", "-4.35"),
                _teller("txn_2", "250.00", name="Payroll"),
                "garbage",
                _teller("txn_3", "-12.00", name="Local Diner", category="dining"),
            ],
            "acc_2": httpx.ConnectError("boom"),
        }
    )
    config = PipelineConfig(auto_approval_enabled=True)

    with session_scope(database_url=db_url) as s:
        summary = sync_bank_feed(s, owner, feed, ["acc_2", "acc_1"], config=config)

    assert (summary.total, summary.success, summary.failed, summary.skipped) == (4, 2, 1, 1)
    assert (summary.mapped, summary.unresolved) == (1, 1)
    assert [e.row for e in summary.errors] == [0, 3]
    assert "acc_2" in summary.errors[0].message

    with session_scope(database_url=db_url) as s:
        txs = s.execute(select(RiTransaction).order_by(RiTransaction.id)).scalars().all()
        orders = s.execute(select(RiQueuedOrder).order_by(RiQueuedOrder.id)).scalars().all()

    assert [(t.external_id, t.source, t.status, t.ticker) for t in txs] == [
        ("txn_1", "bank", "mapped", "SBUX"),
        ("txn_3", "bank", "failed", None),
    ]
    assert [(o.ticker, o.amount) for o in orders] == [
        ("SBUX", Decimal("0.63")),
        (None, Decimal("0.97")),
    ]


def test_resync_skips_items_already_ingested(db_url):
    owner = seed_owner(database_url=db_url)
    first = FakeFeed({"acc_1": [_teller("txn_1", "-4.35")]})
    # the aggregator replays txn_1 with a corrected description
    replay = FakeFeed(
        {"acc_1": [_teller("txn_1", "-4.35", name="SBUX Store"), _teller("txn_9", "-2.50")]}
    )

    with session_scope(database_url=db_url) as s:
        sync_bank_feed(s, owner, first, ["acc_1"])
    with session_scope(database_url=db_url) as s:
        summary = sync_bank_feed(s, owner, replay, ["acc_1"])

    assert (summary.total, summary.success, summary.skipped) == (2, 1, 1)


def test_parallel_sync_isolates_owners(db_url):
    a = seed_owner(database_url=db_url)
    b = seed_owner(database_url=db_url)
    feeds = {
        a: FakeFeed({"acc_a": [_teller("a1", "-4.35"), _teller("a2", "-1.25")]}),
        b: FakeFeed({"acc_b": [_teller("b1", "-9.10", name="Target")]}),
    }
    jobs = [
        BankSyncJob(owner_id=a, access_token="tok", account_ids=("acc_a",)),
        BankSyncJob(owner_id=404, access_token="tok", account_ids=("acc_x",)),
        BankSyncJob(owner_id=b, access_token="tok", account_ids=("acc_b",)),
    ]

    def factory(job: BankSyncJob) -> FakeFeed:
        return feeds.get(job.owner_id) or FakeFeed({})

    results = sync_bank_feeds(jobs, database_url=db_url, concurrency=2, client_factory=factory)

    assert list(results) == [a, 404, b]
    assert results[a].success == 2
    assert results[b].success == 1
    assert results[404].aborted is True
    assert "BatchAbortedError" in results[404].errors[0].message
    assert all(f.closed for f in feeds.values())

    with session_scope(database_url=db_url) as s:
        owners = s.execute(select(RiTransaction.owner_id, RiTransaction.external_id)).all()
    assert sorted(owners) == sorted([(a, "a1"), (a, "a2"), (b, "b1")])


def test_parallel_sync_validates_concurrency():
    with pytest.raises(ValueError):
        sync_bank_feeds([], concurrency=0)
    assert sync_bank_feeds([]) == {}


def test_unstorable_amount_is_a_row_error_not_a_crash(db_url):
    owner = seed_owner(database_url=db_url)
    feed = FakeFeed(
        {
            "acc_1": [
                _teller("txn_1", "-4.35"),
                _teller("txn_2", "-1e30", name="Glitch"),
                _teller("txn_3", "-2.50", name="Local Diner"),
            ]
        }
    )

    with pytest.raises(ValueError, match="out of range"):
        to_purchase(BankFeedItem.from_teller(_teller("x", "-1e30")), owner_id=1, position=1)

    with session_scope(database_url=db_url) as s:
        summary = sync_bank_feed(s, owner, feed, ["acc_1"])

    assert (summary.total, summary.success, summary.failed) == (3, 2, 1)
    assert [e.row for e in summary.errors] == [2]
    assert summary.errors[0].message.startswith("Malformed bank item: amount out of range")

    with session_scope(database_url=db_url) as s:
        ids = s.execute(select(RiTransaction.external_id).order_by(RiTransaction.id)).scalars()
        assert list(ids) == ["txn_1", "txn_3"]


def test_unstorable_amount_does_not_sink_other_owners(db_url):
    a = seed_owner(database_url=db_url)
    b = seed_owner(database_url=db_url)
    feeds = {
        a: FakeFeed({"acc_a": [_teller("a1", "-1e30"), _teller("a2", "-1.25")]}),
        b: FakeFeed({"acc_b": [_teller("b1", "-9.10", name="Target")]}),
    }
    jobs = [
        BankSyncJob(owner_id=a, access_token="tok", account_ids=("acc_a",)),
        BankSyncJob(owner_id=b, access_token="tok", account_ids=("acc_b",)),
    ]

    results = sync_bank_feeds(
        jobs, database_url=db_url, client_factory=lambda job: feeds[job.owner_id]
    )

    assert (results[a].aborted, results[a].success, results[a].failed) == (False, 1, 1)
    assert (results[b].aborted, results[b].success) == (False, 1)
