"""Fold queued allocations into per-ticker holdings.

Only ``total_value`` is touched here. ``shares``, ``average_price`` and
``current_price`` belong to execution and pricing.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roundup_db.models.roundup import RiHolding

from .roundup import quantize_cents


def accumulate_holding(
    session: Session, *, owner_id: int, ticker: str, amount: Decimal
) -> RiHolding:
    """Add ``amount`` to the owner's holding for ``ticker``, creating it if absent."""

    if amount <= 0:
        raise ValueError(f"amount must be positive; got {amount}")
    symbol = ticker.strip().upper()
    holding = session.execute(
        select(RiHolding).where(RiHolding.owner_id == owner_id, RiHolding.ticker == symbol)
    ).scalar_one_or_none()
    if holding is None:
        holding = RiHolding(
            owner_id=owner_id,
            ticker=symbol,
            shares=Decimal(0),
            total_value=Decimal(0),
        )
        session.add(holding)
    holding.total_value = quantize_cents(Decimal(holding.total_value) + amount)
    holding.updated_at = func.now()
    session.flush()
    return holding


def holdings_for_owner(session: Session, owner_id: int) -> Sequence[RiHolding]:
    return (
        session.execute(
            select(RiHolding).where(RiHolding.owner_id == owner_id).order_by(RiHolding.ticker)
        )
        .scalars()
        .all()
    )


__all__ = ["accumulate_holding", "holdings_for_owner"]
