from __future__ import annotations

from decimal import Decimal

import pytest

from roundup_invest.allocation import allocate, merge_candidates, receipt_candidates
from roundup_invest.models import AllocationCandidate, ReceiptItem, Resolved


def _c(ticker: str, weight: str, confidence: str = "0.9") -> AllocationCandidate:
    return AllocationCandidate(
        ticker=ticker, weight=Decimal(weight), confidence=Decimal(confidence), reason=ticker
    )


def test_retailer_and_brand_split_with_remainder_on_last_line():
    lines = allocate(Decimal("1.00"), [_c("TGT", "1.0"), _c("PG", "0.5")])

    assert [(ln.ticker, ln.amount) for ln in lines] == [
        ("TGT", Decimal("0.67")),
        ("PG", Decimal("0.33")),
    ]
    assert [ln.percentage for ln in lines] == [Decimal("66.67"), Decimal("33.33")]
    assert sum(ln.amount for ln in lines) == Decimal("1.00")


@pytest.mark.parametrize(
    ("round_up", "weights"),
    [
        ("1.00", ["1", "1", "1"]),
        ("0.65", ["1", "0.3", "0.2"]),
        ("0.97", ["0.7", "0.2", "0.05", "0.05"]),
        ("2.35", ["3", "1", "1", "1", "1"]),
        ("0.10", ["1", "2"]),
    ],
)
def test_amounts_sum_exactly_to_round_up(round_up: str, weights: list[str]):
    candidates = [_c(f"T{i}", w) for i, w in enumerate(weights)]
    lines = allocate(Decimal(round_up), candidates)

    assert sum(ln.amount for ln in lines) == Decimal(round_up)
    assert sum(ln.percentage for ln in lines) == Decimal("100.00")


def test_each_line_is_floored_at_one_cent():
    lines = allocate(Decimal("0.02"), [_c("A", "1"), _c("B", "1"), _c("C", "1")])
    assert all(ln.amount >= Decimal("0.01") for ln in lines)


def test_duplicate_symbols_merge_and_list_caps_at_five():
    merged = merge_candidates([_c("aapl", "1"), _c("MSFT", "0.5"), _c("AAPL", "0.25", "0.99")])
    assert [(c.ticker, c.weight, c.confidence) for c in merged] == [
        ("AAPL", Decimal("1.25"), Decimal("0.99")),
        ("MSFT", Decimal("0.5"), Decimal("0.9")),
    ]

    lines = allocate(Decimal("1.00"), [_c(f"T{i}", "1") for i in range(7)])
    assert [ln.ticker for ln in lines] == ["T0", "T1", "T2", "T3", "T4"]


def test_no_candidates_means_no_allocations():
    assert allocate(Decimal("0.50"), []) == []


def test_non_positive_weight_is_rejected():
    with pytest.raises(ValueError):
        _c("X", "0")


def _resolved(ticker: str, confidence: str) -> Resolved:
    return Resolved(ticker=ticker, confidence=Decimal(confidence), tier="cache")


def test_receipt_candidates_weigh_brands_by_item_share():
    tide = ReceiptItem(name="Tide Pods", brand="Tide", amount=Decimal("25"))
    cands = receipt_candidates(
        retailer="Target",
        retailer_resolution=_resolved("TGT", "0.95"),
        brands=[(tide, _resolved("PG", "0.92"))],
        total_amount=Decimal("50"),
    )

    assert [(c.ticker, c.weight) for c in cands] == [
        ("TGT", Decimal("1.0")),
        ("PG", Decimal("0.5")),
    ]
    assert cands[0].reason == "Purchase at Target (confidence: 95%)"
    assert cands[1].reason == "Purchased Tide products (confidence: 92%)"


def test_low_confidence_brands_and_unresolved_retailer_are_dropped():
    item = ReceiptItem(name="Soap", brand="Dove", amount=Decimal("5"))
    cands = receipt_candidates(
        retailer="Corner Shop",
        retailer_resolution=None,
        brands=[(item, _resolved("UL", "0.70"))],
        total_amount=Decimal("10"),
    )
    assert cands == []


def test_brand_weight_falls_back_when_total_is_not_positive():
    item = ReceiptItem(name="Soda", brand="Coca-Cola", amount=Decimal("3"))
    cands = receipt_candidates(
        retailer="Kiosk",
        retailer_resolution=None,
        brands=[(item, _resolved("KO", "0.9"))],
        total_amount=Decimal("0"),
    )
    assert [(c.ticker, c.weight) for c in cands] == [("KO", Decimal("0.5"))]
