"""Natural-key dedup for ingested purchases.

The gate is loaded once per ingestion run with the owner's persisted keys and
updated in memory as rows are accepted, so dedup never re-queries storage per
row. Two concurrent runs for the same owner can still both accept a row; the
key column is indexed but not unique.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from roundup_db.models.roundup import RiTransaction

from .models import CanonicalPurchase
from .normalizers import normalize_merchant_key
from .roundup import quantize_cents


def natural_key(tx_date: date, merchant: str, amount: Decimal) -> str:
    """Return ``date|normalized merchant|amount`` (amount at two decimals)."""

    return f"{tx_date.isoformat()}|{normalize_merchant_key(merchant)}|{quantize_cents(amount):.2f}"


class DedupGate:
    """In-memory view of the owner's natural keys and external ids."""

    def __init__(self, keys: set[str] | None = None, external_ids: set[str] | None = None) -> None:
        self._keys = set(keys or ())
        self._external_ids = set(external_ids or ())

    @classmethod
    def load(cls, session: Session, owner_id: int) -> DedupGate:
        rows = session.execute(
            select(RiTransaction.dedup_key, RiTransaction.external_id).where(
                RiTransaction.owner_id == owner_id
            )
        ).all()
        keys = {k for k, _ in rows}
        external_ids = {e for _, e in rows if e}
        return cls(keys, external_ids)

    def __len__(self) -> int:
        return len(self._keys)

    def is_duplicate(self, purchase: CanonicalPurchase) -> bool:
        if purchase.external_id and purchase.external_id in self._external_ids:
            return True
        return natural_key(purchase.date, purchase.merchant, purchase.amount) in self._keys

    def admit(self, purchase: CanonicalPurchase) -> bool:
        """Record ``purchase`` and return True, or return False if already seen."""

        if self.is_duplicate(purchase):
            return False
        self._keys.add(natural_key(purchase.date, purchase.merchant, purchase.amount))
        if purchase.external_id:
            self._external_ids.add(purchase.external_id)
        return True


__all__ = ["DedupGate", "natural_key"]
