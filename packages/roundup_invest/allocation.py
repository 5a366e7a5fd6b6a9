"""Allocation engine: split one round-up across weighted tickers.

Amounts are computed proportionally and rounded to cents, except the last
line which takes the remainder so the lines sum to the round-up exactly.
Every line is floored at one cent; when the round-up is smaller than one cent
per line the floor wins and the sum exceeds the round-up by the difference.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal

from .models import AllocationCandidate, AllocationLine, ReceiptItem, Resolved
from .roundup import CENT, quantize_cents

MAX_CANDIDATES = 5
RETAILER_WEIGHT = Decimal("1.0")
# Brands are only weighted in when their resolution is strictly above this.
MIN_BRAND_CONFIDENCE = Decimal("0.7")
# Per-brand weight used when the receipt total cannot be used as a divisor.
FALLBACK_BRAND_WEIGHT = Decimal("0.5")

_HUNDRED = Decimal(100)


def merge_candidates(
    candidates: Iterable[AllocationCandidate], *, limit: int = MAX_CANDIDATES
) -> list[AllocationCandidate]:
    """Merge duplicate symbols (summing weights) and cap the list.

    First-seen order is preserved; a merged entry keeps the higher confidence
    and the reason of its first occurrence.
    """

    merged: dict[str, AllocationCandidate] = {}
    for c in candidates:
        symbol = c.ticker.strip().upper()
        prev = merged.get(symbol)
        if prev is None:
            if len(merged) >= limit:
                continue
            merged[symbol] = AllocationCandidate(
                ticker=symbol, weight=c.weight, confidence=c.confidence, reason=c.reason
            )
        else:
            merged[symbol] = AllocationCandidate(
                ticker=symbol,
                weight=prev.weight + c.weight,
                confidence=max(prev.confidence, c.confidence),
                reason=prev.reason,
            )
    return list(merged.values())


def allocate(round_up: Decimal, candidates: Sequence[AllocationCandidate]) -> list[AllocationLine]:
    """Distribute ``round_up`` across ``candidates`` in iteration order.

    Returns an empty list when there are no candidates; the caller keeps the
    transaction unmapped in that case.
    """

    if round_up <= 0:
        raise ValueError(f"round_up must be positive; got {round_up}")
    merged = merge_candidates(candidates)
    if not merged:
        return []

    total_weight = sum((c.weight for c in merged), Decimal(0))
    lines: list[AllocationLine] = []
    allocated = Decimal(0)
    pct_allocated = Decimal(0)
    last = len(merged) - 1
    for i, c in enumerate(merged):
        share = c.weight / total_weight
        if i == last:
            amount = quantize_cents(round_up - allocated)
            percentage = (_HUNDRED - pct_allocated).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            amount = quantize_cents(share * round_up)
            percentage = (share * _HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        amount = max(amount, CENT)
        allocated += amount
        pct_allocated += percentage
        lines.append(
            AllocationLine(
                ticker=c.ticker,
                amount=amount,
                percentage=percentage,
                confidence=c.confidence,
                reason=c.reason,
            )
        )
    return lines


def _confidence_suffix(confidence: Decimal) -> str:
    pct = (confidence * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return f" (confidence: {pct}%)"


def receipt_candidates(
    *,
    retailer: str,
    retailer_resolution: Resolved | None,
    brands: Sequence[tuple[ReceiptItem, Resolved]],
    total_amount: Decimal,
) -> list[AllocationCandidate]:
    """Build weighted candidates for a receipt.

    The retailer (when resolved) carries :data:`RETAILER_WEIGHT`. Each resolved
    brand above :data:`MIN_BRAND_CONFIDENCE` is weighted by its item amount as
    a fraction of the receipt total, or :data:`FALLBACK_BRAND_WEIGHT` when the
    total is not positive. Zero-weight brands are dropped.
    """

    out: list[AllocationCandidate] = []
    if retailer_resolution is not None:
        out.append(
            AllocationCandidate(
                ticker=retailer_resolution.ticker,
                weight=RETAILER_WEIGHT,
                confidence=retailer_resolution.confidence,
                reason=f"Purchase at {retailer}"
                + _confidence_suffix(retailer_resolution.confidence),
            )
        )
    for item, resolution in brands:
        if resolution.confidence <= MIN_BRAND_CONFIDENCE:
            continue
        if total_amount > 0:
            weight = item.amount / total_amount
        else:
            weight = FALLBACK_BRAND_WEIGHT
        if weight <= 0:
            continue
        out.append(
            AllocationCandidate(
                ticker=resolution.ticker,
                weight=weight,
                confidence=resolution.confidence,
                reason=f"Purchased {item.brand or item.name} products"
                + _confidence_suffix(resolution.confidence),
            )
        )
    return merge_candidates(out)


__all__ = [
    "FALLBACK_BRAND_WEIGHT",
    "MAX_CANDIDATES",
    "MIN_BRAND_CONFIDENCE",
    "RETAILER_WEIGHT",
    "allocate",
    "merge_candidates",
    "receipt_candidates",
]
