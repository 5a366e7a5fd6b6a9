"""Receipt capture: validate an OCR'd payload into a canonical purchase.

The payload shape is ``{retailer, items:[{name, brand?, amount}],
totalAmount, date?}``. The receipt total is the purchase amount; the
round-up is computed from it like any other purchase, and the items only
influence how that round-up is split across tickers.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any

from ..models import CanonicalPurchase, ReceiptItem, ReceiptPayload
from ..roundup import quantize_cents


def parse_receipt(payload: Mapping[str, Any] | ReceiptPayload) -> ReceiptPayload:
    """Validate ``payload``; raises pydantic ``ValidationError`` when malformed."""

    if isinstance(payload, ReceiptPayload):
        return payload
    return ReceiptPayload.model_validate(payload)


def branded_items(receipt: ReceiptPayload) -> list[ReceiptItem]:
    """Items carrying a brand, in receipt order, first occurrence per brand.

    Repeated brands are merged with their amounts summed so one brand never
    triggers more than one resolution.
    """

    by_brand: dict[str, ReceiptItem] = {}
    for item in receipt.items:
        if not item.brand:
            continue
        key = item.brand.casefold()
        prev = by_brand.get(key)
        if prev is None:
            by_brand[key] = item
        else:
            by_brand[key] = ReceiptItem(
                name=prev.name, brand=prev.brand, amount=prev.amount + item.amount
            )
    return list(by_brand.values())


def to_purchase(
    receipt: ReceiptPayload, *, owner_id: int, today: date | None = None
) -> CanonicalPurchase:
    purchased_on = receipt.purchased_on or today or datetime.now(UTC).date()
    return CanonicalPurchase(
        owner_id=owner_id,
        date=purchased_on,
        merchant=receipt.retailer,
        amount=quantize_cents(receipt.total_amount),
        source="receipt",
        category="receipt",
        description=f"Receipt with {len(receipt.items)} item(s)",
    )


__all__ = ["branded_items", "parse_receipt", "to_purchase"]
