"""Workflow orchestrators for the round-up pipeline.

Each public function here composes ingestion, the calculator, the resolver,
allocation and the ledger/queue manager behind one importable call. The
functions take an open ``Session`` and commit at row boundaries: a row's
transaction insert, its resolution writes (mapping and audit rows) and its
ledger/queue writes are each committed before the next step, so progress is
durable when a batch is cancelled or a later row fails.

Configuration is loaded once per call (``load_pipeline_config``) unless the
caller passes a :class:`~roundup_invest.config.PipelineConfig`, and one
:class:`~roundup_invest.resolver.MerchantResolver` is built per call so the
per-merchant memo spans the whole batch.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from itertools import batched
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roundup_db.client import session_scope
from roundup_db.models.roundup import RiOwner, RiReceipt, RiReceiptAllocation, RiTransaction

from ..allocation import allocate, receipt_candidates
from ..config import PipelineConfig, load_pipeline_config
from ..duplicates import DedupGate, natural_key
from ..errors import BatchAbortedError, OwnershipError, RoundupError
from ..ingest import bank_feed, csv_bulk, mapping_import, receipt
from ..knowledge_base import known_pairs, record_mapping
from ..ledger import LedgerQueueManager, QueueOutcome
from ..logging_setup import get_logger
from ..models import (
    AllocationCandidate,
    AllocationLine,
    BatchSummary,
    CanonicalPurchase,
    Failed,
    PurchaseResult,
    ReceiptItem,
    ReceiptResult,
    Resolution,
    Resolved,
    RoundUpQuote,
    Source,
)
from ..normalizers import clean_text
from ..resolver import MerchantResolver
from ..roundup import calculate_round_up, quantize_cents, to_decimal

_logger = get_logger("roundup_invest.workflows.pipeline")

_RETAILER_HINT = "Retailer"
_BRAND_HINT = "Brand"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _load_owner(session: Session, owner_id: int) -> RiOwner:
    owner = session.get(RiOwner, owner_id)
    if owner is None:
        raise BatchAbortedError(f"Unknown owner {owner_id}")
    if not owner.is_active:
        raise BatchAbortedError(f"Owner {owner_id} is inactive")
    return owner


def _new_summary(config: PipelineConfig) -> BatchSummary:
    return BatchSummary(max_errors=config.max_row_errors)


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _quote_for(
    default_round_up: Decimal, amount: Decimal, config: PipelineConfig
) -> RoundUpQuote:
    return calculate_round_up(amount, default_round_up=default_round_up, fee_rate=config.fee_rate)


def _stored_quote(tx: RiTransaction) -> RoundUpQuote:
    round_up = Decimal(tx.round_up)
    fee = Decimal(tx.fee)
    return RoundUpQuote(round_up=round_up, fee=fee, net=round_up - fee)


def _insert_transaction(
    session: Session, purchase: CanonicalPurchase, quote: RoundUpQuote
) -> RiTransaction:
    tx = RiTransaction(
        owner_id=purchase.owner_id,
        date=purchase.date,
        merchant=purchase.merchant,
        amount=purchase.amount,
        category=purchase.category,
        description=purchase.description,
        round_up=quote.round_up,
        fee=quote.fee,
        status="pending",
        dedup_key=natural_key(purchase.date, purchase.merchant, purchase.amount),
        external_id=purchase.external_id,
        source=purchase.source,
    )
    session.add(tx)
    session.flush()
    return tx


def _find_by_dedup_key(session: Session, owner_id: int, key: str) -> RiTransaction | None:
    return (
        session.execute(
            select(RiTransaction)
            .where(RiTransaction.owner_id == owner_id, RiTransaction.dedup_key == key)
            .order_by(RiTransaction.id)
            .limit(1)
        )
        .scalars()
        .first()
    )


def _resolve_and_commit(
    session: Session, resolver: MerchantResolver, merchant: str, category: str | None
) -> tuple[Resolution, bool]:
    """Run the resolver and commit its knowledge-base writes.

    Returns the outcome and whether a persistence failure occurred. A mapping
    write that fails inside a tier is rolled back to its savepoint, so the
    audit rows for the attempt are still committed here; a failed commit is
    rolled back and reported as :class:`Failed`.
    """

    failures_before = resolver.write_failures
    try:
        outcome = resolver.resolve(merchant, category)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        _logger.error(
            "pipeline:resolution_write_failed merchant=%r error=%s", merchant, e.__class__.__name__
        )
        return Failed(reason=f"knowledge base write failed: {e.__class__.__name__}"), True
    return outcome, resolver.write_failures > failures_before


@dataclass(slots=True)
class _Settlement:
    ledger_entry_id: int | None = None
    order_ids: list[int] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


def _settle(
    session: Session,
    ledger: LedgerQueueManager,
    tx: RiTransaction,
    resolution: Resolution,
    *,
    amount: Decimal,
) -> _Settlement:
    """Write the ledger entry and orders for ``tx`` and update its status.

    Idempotent per transaction: the ledger entry is created once, a resolved
    ticker back-fills existing placeholders instead of queueing a second
    order, and an unresolved transaction gets at most one placeholder.
    """

    out = _Settlement()
    entry = ledger.ensure_ledger_entry(tx)
    if entry is None:
        out.failures.append("failed to write ledger entry")
    else:
        out.ledger_entry_id = entry.id

    step = QueueOutcome()
    if isinstance(resolution, Resolved):
        tx.ticker = resolution.ticker
        tx.status = "mapped"
        if ledger.placeholder_orders(tx.id):
            step = ledger.backfill_placeholders(tx, resolution.ticker)
        elif existing := ledger.orders_for(tx.id):
            step.order_ids.extend(o.id for o in existing)
        elif amount > 0:
            lines = allocate(
                amount,
                [
                    AllocationCandidate(
                        ticker=resolution.ticker,
                        weight=Decimal(1),
                        confidence=resolution.confidence,
                        reason=f"Purchase at {tx.merchant}",
                    )
                ],
            )
            step = ledger.queue_allocations(tx, lines)
    else:
        tx.status = "failed" if isinstance(resolution, Failed) else "pending"
        if existing := ledger.orders_for(tx.id):
            step.order_ids.extend(o.id for o in existing)
        elif amount > 0:
            step = ledger.queue_placeholder(tx, amount)
    tx.updated_at = datetime.now(UTC)

    out.order_ids.extend(step.order_ids)
    out.failures.extend(step.failures)
    return out


def _settle_and_commit(
    session: Session,
    ledger: LedgerQueueManager,
    tx: RiTransaction,
    resolution: Resolution,
    *,
    amount: Decimal,
) -> _Settlement:
    """:func:`_settle` plus the commit; a failed write is reported, not raised.

    On failure the whole settlement is rolled back, so the returned value
    carries no ids and the transaction keeps its previous status.
    """

    tx_id = tx.id
    try:
        settled = _settle(session, ledger, tx, resolution, amount=amount)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        _logger.error(
            "pipeline:settle_failed transaction_id=%d error=%s", tx_id, e.__class__.__name__
        )
        return _Settlement(failures=[f"Failed to update transaction: {e.__class__.__name__}"])
    return settled


def _investable(tx: RiTransaction, quote: RoundUpQuote) -> Decimal:
    # Receipts split the whole round-up; the fee stays on the ledger entry.
    return quote.round_up if tx.source == "receipt" else quote.net


def _tally(summary: BatchSummary, row: int, resolution: Resolution, settled: _Settlement) -> None:
    if isinstance(resolution, Resolved):
        summary.mapped += 1
    else:
        summary.unresolved += 1
    summary.persistence_failures += len(settled.failures)
    for msg in settled.failures:
        summary.record_error(row, msg)


def _ingest_purchase(
    session: Session,
    purchase: CanonicalPurchase,
    *,
    default_round_up: Decimal,
    config: PipelineConfig,
    resolver: MerchantResolver,
    ledger: LedgerQueueManager,
    gate: DedupGate,
    summary: BatchSummary,
) -> None:
    """Run one validated purchase through dedup, insert, resolve and settle."""

    row = purchase.row or 0
    if gate.is_duplicate(purchase):
        summary.skipped += 1
        return
    try:
        quote = _quote_for(default_round_up, purchase.amount, config)
    except ValueError as e:
        summary.failed += 1
        summary.record_error(row, str(e))
        return

    try:
        tx = _insert_transaction(session, purchase, quote)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        _logger.error("pipeline:insert_failed row=%d error=%s", row, e.__class__.__name__)
        summary.failed += 1
        summary.persistence_failures += 1
        summary.record_error(row, f"Failed to save transaction: {e.__class__.__name__}")
        return
    gate.admit(purchase)
    summary.success += 1

    resolution, write_failed = _resolve_and_commit(
        session, resolver, purchase.merchant, purchase.category
    )
    if write_failed:
        summary.persistence_failures += 1
    settled = _settle_and_commit(
        session, ledger, tx, resolution, amount=_investable(tx, quote)
    )
    _tally(summary, row, resolution, settled)


# ---------------------------------------------------------------------------
# Bulk CSV import
# ---------------------------------------------------------------------------


def ingest_bulk_csv(
    session: Session,
    owner_id: int,
    text: str,
    *,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
    cancel: threading.Event | None = None,
) -> BatchSummary:
    """Import purchases from CSV text for one owner.

    Raises :class:`BatchAbortedError` before any write when the owner is
    unknown or inactive, the text is empty, or a required column is missing.
    Everything else is reported on the returned summary.
    """

    default_round_up = Decimal(_load_owner(session, owner_id).round_up_amount)
    source = csv_bulk.CsvSource(
        text, aliases=csv_bulk.PURCHASE_ALIASES, required=csv_bulk.PURCHASE_REQUIRED
    )
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    ledger = LedgerQueueManager(session, owner_id=owner_id)
    gate = DedupGate.load(session, owner_id)
    summary = _new_summary(config)

    for batch_no, batch in enumerate(batched(source, config.batch_size), start=1):
        for record in batch:
            if _cancelled(cancel):
                summary.aborted = True
                break
            summary.total += 1
            try:
                purchase = csv_bulk.to_purchase(record, owner_id=owner_id)
            except ValueError as e:
                summary.failed += 1
                summary.record_error(record.line, str(e))
                continue
            _ingest_purchase(
                session,
                purchase,
                default_round_up=default_round_up,
                config=config,
                resolver=resolver,
                ledger=ledger,
                gate=gate,
                summary=summary,
            )
        if summary.aborted:
            break
        _logger.debug("bulk_import:batch_done batch=%d rows=%d", batch_no, len(batch))
        # Drop ORM state between batches and give other threads a turn.
        session.expunge_all()
        time.sleep(0)

    _logger.info(
        "bulk_import:summary owner_id=%d total=%d success=%d failed=%d skipped=%d mapped=%d "
        "unresolved=%d persistence_failures=%d aborted=%s",
        owner_id,
        summary.total,
        summary.success,
        summary.failed,
        summary.skipped,
        summary.mapped,
        summary.unresolved,
        summary.persistence_failures,
        summary.aborted,
    )
    return summary


# ---------------------------------------------------------------------------
# Bank feed sync
# ---------------------------------------------------------------------------


def sync_bank_feed(
    session: Session,
    owner_id: int,
    client: bank_feed.BankFeedClient,
    account_ids: Iterable[str],
    *,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
    cancel: threading.Event | None = None,
) -> BatchSummary:
    """Pull each account's transactions and ingest the debits.

    Credits, refunds and zero amounts are counted as skipped. A fetch failure
    for one account is logged, reported as a row-0 error and the sync moves
    on to the next account.
    """

    default_round_up = Decimal(_load_owner(session, owner_id).round_up_amount)
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    ledger = LedgerQueueManager(session, owner_id=owner_id)
    gate = DedupGate.load(session, owner_id)
    summary = _new_summary(config)
    position = 0

    for account_id in account_ids:
        if _cancelled(cancel):
            summary.aborted = True
            break
        try:
            raw_items = client.list_transactions(account_id)
        except (httpx.HTTPError, ValueError) as e:
            _logger.warning(
                "bank_sync:fetch_failed owner_id=%d account=%s error=%s",
                owner_id,
                account_id,
                e.__class__.__name__,
            )
            summary.record_error(0, f"Account {account_id}: fetch failed ({e.__class__.__name__})")
            continue

        for raw in raw_items:
            if _cancelled(cancel):
                summary.aborted = True
                break
            position += 1
            summary.total += 1
            try:
                item = bank_feed.BankFeedItem.from_teller(raw)
                purchase = bank_feed.to_purchase(item, owner_id=owner_id, position=position)
            except ValueError as e:
                summary.failed += 1
                summary.record_error(position, f"Malformed bank item: {e}")
                continue
            if purchase is None:
                summary.skipped += 1
                continue
            _ingest_purchase(
                session,
                purchase,
                default_round_up=default_round_up,
                config=config,
                resolver=resolver,
                ledger=ledger,
                gate=gate,
                summary=summary,
            )
        if summary.aborted:
            break

    _logger.info(
        "bank_sync:summary owner_id=%d total=%d success=%d failed=%d skipped=%d mapped=%d "
        "unresolved=%d aborted=%s",
        owner_id,
        summary.total,
        summary.success,
        summary.failed,
        summary.skipped,
        summary.mapped,
        summary.unresolved,
        summary.aborted,
    )
    return summary


@dataclass(frozen=True, slots=True)
class BankSyncJob:
    owner_id: int
    access_token: str
    account_ids: tuple[str, ...]


def _default_client(job: BankSyncJob) -> bank_feed.BankFeedClient:
    return bank_feed.TellerClient(job.access_token)


def sync_bank_feeds(
    jobs: Sequence[BankSyncJob],
    *,
    database_url: str | None = None,
    concurrency: int = 4,
    client_factory: Callable[[BankSyncJob], bank_feed.BankFeedClient] = _default_client,
    cancel: threading.Event | None = None,
) -> dict[int, BatchSummary]:
    """Sync independent owners in parallel, one session per owner.

    Results are keyed by owner id. An owner whose sync aborts (unknown owner,
    database error, client construction failure) gets an ``aborted`` summary
    carrying the reason; the other owners are unaffected.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    def _run(job: BankSyncJob) -> tuple[int, BatchSummary]:
        client: bank_feed.BankFeedClient | None = None
        try:
            client = client_factory(job)
            with session_scope(database_url=database_url) as session:
                return job.owner_id, sync_bank_feed(
                    session, job.owner_id, client, job.account_ids, cancel=cancel
                )
        except (RoundupError, SQLAlchemyError, httpx.HTTPError, OSError, ValueError) as e:
            _logger.error(
                "bank_sync:owner_failed owner_id=%d error=%s", job.owner_id, e.__class__.__name__
            )
            summary = BatchSummary(aborted=True)
            summary.record_error(0, f"{e.__class__.__name__}: {e}")
            return job.owner_id, summary
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

    if not jobs:
        return {}
    with ThreadPoolExecutor(max_workers=min(concurrency, len(jobs))) as pool:
        # map preserves input order
        return dict(pool.map(_run, jobs))


# ---------------------------------------------------------------------------
# Single purchase and re-resolution
# ---------------------------------------------------------------------------


def _load_owned_transaction(session: Session, owner_id: int, transaction_id: int) -> RiTransaction:
    tx = session.get(RiTransaction, transaction_id)
    if tx is None:
        raise LookupError(f"Transaction {transaction_id} not found")
    if tx.owner_id != owner_id:
        raise OwnershipError(transaction_id, owner_id)
    return tx


def _settle_existing(
    session: Session,
    tx: RiTransaction,
    *,
    resolver: MerchantResolver,
    duplicate: bool = False,
) -> PurchaseResult:
    if tx.status == "mapped" and tx.ticker:
        # Already mapped transactions keep their ticker; only missing
        # ledger/queue rows are filled in.
        resolution: Resolution = Resolved(
            ticker=tx.ticker, confidence=Decimal(1), tier="transaction"
        )
    else:
        resolution, _ = _resolve_and_commit(session, resolver, tx.merchant, tx.category)
    quote = _stored_quote(tx)
    ledger = LedgerQueueManager(session, owner_id=tx.owner_id)
    settled = _settle_and_commit(
        session, ledger, tx, resolution, amount=_investable(tx, quote)
    )
    return PurchaseResult(
        transaction_id=tx.id,
        quote=quote,
        resolution=resolution,
        ledger_entry_id=settled.ledger_entry_id,
        queued_order_ids=tuple(settled.order_ids),
        duplicate=duplicate,
    )


def resolve_transaction(
    session: Session,
    owner_id: int,
    transaction_id: int,
    *,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
) -> PurchaseResult:
    """Re-run resolution for one of the owner's transactions.

    Raises ``LookupError`` for an unknown id and :class:`OwnershipError`
    when the transaction belongs to someone else; both before any write.
    On success the ticker is set, the status becomes ``mapped`` and any
    placeholder orders are back-filled.
    """

    tx = _load_owned_transaction(session, owner_id, transaction_id)
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    return _settle_existing(session, tx, resolver=resolver)


def resolve_pending_transactions(
    session: Session,
    owner_id: int,
    *,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
    limit: int | None = None,
    cancel: threading.Event | None = None,
) -> BatchSummary:
    """Re-resolve the owner's ``pending`` and ``failed`` transactions, oldest first."""

    _load_owner(session, owner_id)
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    summary = _new_summary(config)

    stmt = (
        select(RiTransaction.id)
        .where(
            RiTransaction.owner_id == owner_id,
            RiTransaction.status.in_(("pending", "failed")),
        )
        .order_by(RiTransaction.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    ids = list(session.execute(stmt).scalars())

    for tx_id in ids:
        if _cancelled(cancel):
            summary.aborted = True
            break
        summary.total += 1
        tx = _load_owned_transaction(session, owner_id, tx_id)
        try:
            result = _settle_existing(session, tx, resolver=resolver)
        except SQLAlchemyError as e:
            session.rollback()
            summary.failed += 1
            summary.persistence_failures += 1
            summary.record_error(tx_id, f"Failed to settle transaction: {e.__class__.__name__}")
            continue
        summary.success += 1
        if isinstance(result.resolution, Resolved):
            summary.mapped += 1
        else:
            summary.unresolved += 1

    _logger.info(
        "resolve_pending:summary owner_id=%d total=%d mapped=%d unresolved=%d failed=%d",
        owner_id,
        summary.total,
        summary.mapped,
        summary.unresolved,
        summary.failed,
    )
    return summary


def process_purchase(
    session: Session,
    owner_id: int,
    *,
    merchant: str | None = None,
    amount: Any = None,
    category: str | None = None,
    description: str | None = None,
    tx_date: date | None = None,
    source: Source = "bulk",
    transaction_id: int | None = None,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
) -> PurchaseResult:
    """Run one purchase through the whole pipeline.

    Pass either the raw fields (``merchant`` and ``amount``, plus optional
    ``category``/``description``/``tx_date``) or the ``transaction_id`` of an
    already-ingested transaction. Submitting the same date, merchant and
    amount twice returns the first transaction with ``duplicate=True``.

    Raises ``ValueError`` for invalid raw fields, ``LookupError`` for an
    unknown ``transaction_id`` and :class:`OwnershipError` for someone
    else's transaction.
    """

    if transaction_id is not None:
        return resolve_transaction(
            session, owner_id, transaction_id, config=config, resolver=resolver
        )

    owner = _load_owner(session, owner_id)
    name = clean_text(merchant)
    if name is None:
        raise ValueError("Merchant name is required and cannot be empty.")
    value = quantize_cents(abs(to_decimal(amount, name="amount")))
    purchase = CanonicalPurchase(
        owner_id=owner_id,
        date=tx_date or datetime.now(UTC).date(),
        merchant=name,
        amount=value,
        source=source,
        category=clean_text(category),
        description=clean_text(description),
    )
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    quote = _quote_for(Decimal(owner.round_up_amount), purchase.amount, config)

    existing = _find_by_dedup_key(
        session, owner_id, natural_key(purchase.date, purchase.merchant, purchase.amount)
    )
    if existing is not None:
        _logger.info("pipeline:duplicate_purchase transaction_id=%d", existing.id)
        return _settle_existing(session, existing, resolver=resolver, duplicate=True)

    tx = _insert_transaction(session, purchase, quote)
    session.commit()
    resolution, _ = _resolve_and_commit(session, resolver, purchase.merchant, purchase.category)
    ledger = LedgerQueueManager(session, owner_id=owner_id)
    settled = _settle_and_commit(
        session, ledger, tx, resolution, amount=_investable(tx, quote)
    )
    return PurchaseResult(
        transaction_id=tx.id,
        quote=quote,
        resolution=resolution,
        ledger_entry_id=settled.ledger_entry_id,
        queued_order_ids=tuple(settled.order_ids),
    )


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def _record_receipt_allocation(
    session: Session,
    *,
    receipt_id: int,
    transaction_id: int,
    order_id: int | None,
    line: AllocationLine,
) -> bool:
    try:
        with session.begin_nested():
            session.add(
                RiReceiptAllocation(
                    receipt_id=receipt_id,
                    transaction_id=transaction_id,
                    queued_order_id=order_id,
                    ticker=line.ticker,
                    allocation_amount=line.amount,
                    allocation_percentage=line.percentage,
                    confidence=line.confidence.quantize(Decimal("0.0001")),
                    reason=line.reason,
                )
            )
            session.flush()
    except SQLAlchemyError as e:
        _logger.error(
            "receipt:allocation_failed receipt_id=%d ticker=%s error=%s",
            receipt_id,
            line.ticker,
            e.__class__.__name__,
        )
        return False
    return True


def submit_receipt(
    session: Session,
    owner_id: int,
    payload: Mapping[str, Any] | receipt.ReceiptPayload,
    *,
    config: PipelineConfig | None = None,
    resolver: MerchantResolver | None = None,
    today: date | None = None,
) -> ReceiptResult:
    """Turn an OCR'd receipt into a transaction and weighted queued orders.

    The retailer and each distinct brand are resolved; approved tickers are
    weighted (retailer 1.0, brands by item share of the total) and the whole
    round-up is split across them; the fee is only recorded on the ledger
    entry. With no approved ticker the transaction stays unmapped and gets a
    placeholder order for the round-up.

    Raises pydantic ``ValidationError`` for a malformed payload and
    :class:`BatchAbortedError` for an unknown or inactive owner, both before
    any write.
    """

    owner = _load_owner(session, owner_id)
    parsed = receipt.parse_receipt(payload)
    config = config or load_pipeline_config(session)
    resolver = resolver or MerchantResolver(session, config, owner_id=owner_id)
    purchase = receipt.to_purchase(parsed, owner_id=owner_id, today=today)
    quote = _quote_for(Decimal(owner.round_up_amount), purchase.amount, config)

    row = RiReceipt(
        owner_id=owner_id,
        retailer=parsed.retailer,
        total_amount=purchase.amount,
        payload=parsed.model_dump(mode="json", by_alias=True),
        status="parsed",
    )
    existing = _find_by_dedup_key(
        session, owner_id, natural_key(purchase.date, purchase.merchant, purchase.amount)
    )
    if existing is not None:
        row.transaction_id = existing.id
        session.add(row)
        session.commit()
        _logger.info(
            "receipt:duplicate receipt_id=%d transaction_id=%d", row.id, existing.id
        )
        return ReceiptResult(
            receipt_id=row.id,
            transaction_id=existing.id,
            quote=_stored_quote(existing),
            allocations=(),
            queued_order_ids=(),
            duplicate=True,
        )

    tx = _insert_transaction(session, purchase, quote)
    row.transaction_id = tx.id
    session.add(row)
    session.commit()

    retailer_res, failed_writes = _resolve_and_commit(
        session, resolver, parsed.retailer, _RETAILER_HINT
    )
    persistence_failures = int(failed_writes)
    brands: list[tuple[ReceiptItem, Resolved]] = []
    for item in receipt.branded_items(parsed):
        brand_res, failed_writes = _resolve_and_commit(
            session, resolver, item.brand or item.name, _BRAND_HINT
        )
        persistence_failures += int(failed_writes)
        if isinstance(brand_res, Resolved):
            brands.append((item, brand_res))

    candidates = receipt_candidates(
        retailer=parsed.retailer,
        retailer_resolution=retailer_res if isinstance(retailer_res, Resolved) else None,
        brands=brands,
        total_amount=parsed.total_amount,
    )
    lines = allocate(quote.round_up, candidates) if candidates else []

    ledger = LedgerQueueManager(session, owner_id=owner_id)
    receipt_id, tx_id = row.id, tx.id
    order_ids: list[int] = []
    if not lines:
        # Nothing approved to invest in: same path as an unresolved purchase.
        settled = _settle_and_commit(
            session, ledger, tx, retailer_res, amount=_investable(tx, quote)
        )
        order_ids.extend(settled.order_ids)
        persistence_failures += len(settled.failures)
    else:
        try:
            if ledger.ensure_ledger_entry(tx) is None:
                persistence_failures += 1
            for line in lines:
                outcome = ledger.queue_allocations(tx, [line])
                persistence_failures += len(outcome.failures)
                order_id = outcome.order_ids[0] if outcome.order_ids else None
                if order_id is not None:
                    order_ids.append(order_id)
                if not _record_receipt_allocation(
                    session,
                    receipt_id=receipt_id,
                    transaction_id=tx_id,
                    order_id=order_id,
                    line=line,
                ):
                    persistence_failures += 1
            if order_ids:
                tx.ticker = lines[0].ticker
                tx.status = "mapped"
                tx.updated_at = datetime.now(UTC)
                row.status = "allocated"
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            _logger.error(
                "receipt:settle_failed receipt_id=%d error=%s", receipt_id, e.__class__.__name__
            )
            order_ids.clear()
            lines = []
            persistence_failures += 1

    _logger.info(
        "receipt:done receipt_id=%d transaction_id=%d lines=%d orders=%d failures=%d",
        receipt_id,
        tx_id,
        len(lines),
        len(order_ids),
        persistence_failures,
    )
    return ReceiptResult(
        receipt_id=receipt_id,
        transaction_id=tx_id,
        quote=quote,
        allocations=tuple(lines),
        queued_order_ids=tuple(order_ids),
        persistence_failures=persistence_failures,
    )


# ---------------------------------------------------------------------------
# Knowledge-base import
# ---------------------------------------------------------------------------


def import_mappings_csv(
    session: Session,
    text: str,
    *,
    owner_id: int | None = None,
    config: PipelineConfig | None = None,
    cancel: threading.Event | None = None,
) -> BatchSummary:
    """Bulk-load merchant-to-ticker mappings.

    A row whose (merchant, ticker) pair already exists, in storage or earlier
    in the file, is skipped. New rows are ``approved`` only under the
    auto-approval policy; otherwise they wait as ``pending``.
    """

    source = csv_bulk.CsvSource(
        text, aliases=mapping_import.MAPPING_ALIASES, required=mapping_import.MAPPING_REQUIRED
    )
    if owner_id is not None:
        _load_owner(session, owner_id)
    config = config or load_pipeline_config(session)
    summary = _new_summary(config)
    seen = known_pairs(session)

    for record in source:
        if _cancelled(cancel):
            summary.aborted = True
            break
        summary.total += 1
        try:
            mapping = mapping_import.to_mapping_row(record)
        except ValueError as e:
            summary.failed += 1
            summary.record_error(record.line, str(e))
            continue
        pair = (mapping.merchant.lower(), mapping.ticker)
        if pair in seen:
            summary.skipped += 1
            continue
        approved = config.approves(mapping.confidence)
        try:
            record_mapping(
                session,
                merchant_name=mapping.merchant,
                ticker=mapping.ticker,
                company_name=mapping.company_name,
                category=mapping.category,
                confidence=mapping.confidence,
                status="approved" if approved else "pending",
                provenance="import",
                created_by_owner_id=owner_id,
                notes=mapping.notes,
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            summary.failed += 1
            summary.persistence_failures += 1
            summary.record_error(record.line, f"Failed to save mapping: {e.__class__.__name__}")
            continue
        seen.add(pair)
        summary.success += 1
        if approved:
            summary.mapped += 1
        else:
            summary.unresolved += 1

    _logger.info(
        "mapping_import:summary total=%d success=%d failed=%d skipped=%d approved=%d pending=%d",
        summary.total,
        summary.success,
        summary.failed,
        summary.skipped,
        summary.mapped,
        summary.unresolved,
    )
    return summary


__all__ = [
    "BankSyncJob",
    "ingest_bulk_csv",
    "import_mappings_csv",
    "process_purchase",
    "resolve_pending_transactions",
    "resolve_transaction",
    "submit_receipt",
    "sync_bank_feed",
    "sync_bank_feeds",
]
