"""Ledger and order-queue state machine.

For each transaction the manager writes exactly one ledger entry and one
queued order per allocation line. Every write runs in its own SAVEPOINT
(``Session.begin_nested``) so a failure on one queued order rolls back only
that order (and its holding update) while the ledger entry and sibling orders
survive. Failures are logged and returned to the caller for the batch
summary; they are not raised.

Transactions whose ticker is not yet known get a placeholder order with a
NULL ticker; :meth:`LedgerQueueManager.backfill_placeholders` assigns the
ticker once resolution succeeds.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roundup_db.models.roundup import RiLedgerEntry, RiQueuedOrder, RiTransaction

from .errors import OwnershipError
from .logging_setup import get_logger
from .models import AllocationLine
from .portfolio import accumulate_holding

_logger = get_logger("roundup_invest.ledger")


@dataclass(slots=True)
class QueueOutcome:
    order_ids: list[int] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


class LedgerQueueManager:
    """Writes ledger entries and queued orders for one owner."""

    def __init__(self, session: Session, *, owner_id: int) -> None:
        self._session = session
        self._owner_id = owner_id

    def _check_owner(self, tx: RiTransaction) -> None:
        if tx.owner_id != self._owner_id:
            raise OwnershipError(tx.id, self._owner_id)

    def ledger_entry_for(self, transaction_id: int) -> RiLedgerEntry | None:
        return self._session.execute(
            select(RiLedgerEntry).where(RiLedgerEntry.transaction_id == transaction_id)
        ).scalar_one_or_none()

    def ensure_ledger_entry(self, tx: RiTransaction) -> RiLedgerEntry | None:
        """Return the transaction's ledger entry, creating it on first call.

        Returns ``None`` (after logging) when the insert fails.
        """

        self._check_owner(tx)
        existing = self.ledger_entry_for(tx.id)
        if existing is not None:
            return existing
        try:
            with self._session.begin_nested():
                entry = RiLedgerEntry(
                    owner_id=tx.owner_id,
                    transaction_id=tx.id,
                    round_up_amount=tx.round_up,
                    fee_amount=tx.fee,
                    status="pending",
                )
                self._session.add(entry)
                self._session.flush()
        except SQLAlchemyError as e:
            _logger.error(
                "ledger:entry_failed transaction_id=%d error=%s", tx.id, e.__class__.__name__
            )
            return None
        _logger.debug("ledger:entry_created transaction_id=%d ledger_id=%d", tx.id, entry.id)
        return entry

    def queue_allocations(
        self, tx: RiTransaction, lines: Sequence[AllocationLine]
    ) -> QueueOutcome:
        """Queue one order per allocation line and fold each into holdings."""

        self._check_owner(tx)
        outcome = QueueOutcome()
        for line in lines:
            try:
                with self._session.begin_nested():
                    order = RiQueuedOrder(
                        owner_id=tx.owner_id,
                        transaction_id=tx.id,
                        ticker=line.ticker,
                        amount=line.amount,
                        status="queued",
                    )
                    self._session.add(order)
                    self._session.flush()
                    accumulate_holding(
                        self._session,
                        owner_id=tx.owner_id,
                        ticker=line.ticker,
                        amount=line.amount,
                    )
            except SQLAlchemyError as e:
                msg = f"failed to queue {line.ticker} {line.amount}: {e.__class__.__name__}"
                _logger.error(
                    "ledger:queue_failed transaction_id=%d ticker=%s amount=%s error=%s",
                    tx.id,
                    line.ticker,
                    line.amount,
                    e.__class__.__name__,
                )
                outcome.failures.append(msg)
                continue
            outcome.order_ids.append(order.id)
        if outcome.failures:
            _logger.warning(
                "ledger:partial transaction_id=%d queued=%d failed=%d",
                tx.id,
                len(outcome.order_ids),
                len(outcome.failures),
            )
        return outcome

    def orders_for(self, transaction_id: int) -> Sequence[RiQueuedOrder]:
        return (
            self._session.execute(
                select(RiQueuedOrder)
                .where(RiQueuedOrder.transaction_id == transaction_id)
                .order_by(RiQueuedOrder.id)
            )
            .scalars()
            .all()
        )

    def placeholder_orders(self, transaction_id: int) -> Sequence[RiQueuedOrder]:
        return (
            self._session.execute(
                select(RiQueuedOrder)
                .where(
                    RiQueuedOrder.transaction_id == transaction_id,
                    RiQueuedOrder.ticker.is_(None),
                    RiQueuedOrder.status == "queued",
                )
                .order_by(RiQueuedOrder.id)
            )
            .scalars()
            .all()
        )

    def queue_placeholder(self, tx: RiTransaction, amount: Decimal) -> QueueOutcome:
        """Queue a NULL-ticker order for ``tx`` unless one already exists."""

        self._check_owner(tx)
        outcome = QueueOutcome()
        existing = self.placeholder_orders(tx.id)
        if existing:
            outcome.order_ids.extend(o.id for o in existing)
            return outcome
        try:
            with self._session.begin_nested():
                order = RiQueuedOrder(
                    owner_id=tx.owner_id,
                    transaction_id=tx.id,
                    ticker=None,
                    amount=amount,
                    status="queued",
                )
                self._session.add(order)
                self._session.flush()
        except SQLAlchemyError as e:
            _logger.error(
                "ledger:placeholder_failed transaction_id=%d error=%s",
                tx.id,
                e.__class__.__name__,
            )
            outcome.failures.append(f"failed to queue placeholder: {e.__class__.__name__}")
            return outcome
        outcome.order_ids.append(order.id)
        return outcome

    def backfill_placeholders(self, tx: RiTransaction, ticker: str) -> QueueOutcome:
        """Assign ``ticker`` to the transaction's placeholder orders."""

        self._check_owner(tx)
        outcome = QueueOutcome()
        symbol = ticker.strip().upper()
        for order in self.placeholder_orders(tx.id):
            try:
                with self._session.begin_nested():
                    order.ticker = symbol
                    self._session.flush()
                    accumulate_holding(
                        self._session,
                        owner_id=tx.owner_id,
                        ticker=symbol,
                        amount=Decimal(order.amount),
                    )
            except SQLAlchemyError as e:
                _logger.error(
                    "ledger:backfill_failed order_id=%d ticker=%s error=%s",
                    order.id,
                    symbol,
                    e.__class__.__name__,
                )
                outcome.failures.append(
                    f"failed to back-fill order {order.id}: {e.__class__.__name__}"
                )
                continue
            outcome.order_ids.append(order.id)
        if outcome.order_ids:
            _logger.info(
                "ledger:backfilled transaction_id=%d ticker=%s orders=%d",
                tx.id,
                symbol,
                len(outcome.order_ids),
            )
        return outcome


__all__ = ["LedgerQueueManager", "QueueOutcome"]
