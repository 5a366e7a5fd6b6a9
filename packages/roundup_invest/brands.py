"""Static brand table used as the last-resort resolver tier.

Matching works on brand keys (see
:func:`roundup_invest.normalizers.normalize_brand_key`) with the spaces
removed, so bank descriptors such as "UBEREATS" or "AMAZONMKTPLACE" still
match. An equal key scores :data:`EXACT_CONFIDENCE`; a substring in either
direction scores :data:`FUZZY_CONFIDENCE`. When several brands match, the
longest brand key wins so "Whole Foods Market" prefers "whole foods" over
shorter names.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .normalizers import normalize_brand_key

EXACT_CONFIDENCE = Decimal("0.95")
FUZZY_CONFIDENCE = Decimal("0.80")
# Merchant keys shorter than this never match by containment.
_MIN_FUZZY_LEN = 3


@dataclass(frozen=True, slots=True)
class Brand:
    name: str
    ticker: str
    company_name: str


@dataclass(frozen=True, slots=True)
class BrandMatch:
    brand: Brand
    confidence: Decimal
    exact: bool


BRANDS: tuple[Brand, ...] = (
    Brand("Starbucks", "SBUX", "Starbucks Corporation"),
    Brand("Amazon", "AMZN", "Amazon.com, Inc."),
    Brand("Whole Foods", "AMZN", "Amazon.com, Inc."),
    Brand("Uber", "UBER", "Uber Technologies, Inc."),
    Brand("Uber Eats", "UBER", "Uber Technologies, Inc."),
    Brand("Lyft", "LYFT", "Lyft, Inc."),
    Brand("DoorDash", "DASH", "DoorDash, Inc."),
    Brand("Walmart", "WMT", "Walmart Inc."),
    Brand("Target", "TGT", "Target Corporation"),
    Brand("Costco", "COST", "Costco Wholesale Corporation"),
    Brand("Kroger", "KR", "The Kroger Co."),
    Brand("CVS", "CVS", "CVS Health Corporation"),
    Brand("Home Depot", "HD", "The Home Depot, Inc."),
    Brand("Lowe's", "LOW", "Lowe's Companies, Inc."),
    Brand("Best Buy", "BBY", "Best Buy Co., Inc."),
    Brand("Netflix", "NFLX", "Netflix, Inc."),
    Brand("Spotify", "SPOT", "Spotify Technology S.A."),
    Brand("Apple", "AAPL", "Apple Inc."),
    Brand("Microsoft", "MSFT", "Microsoft Corporation"),
    Brand("Google", "GOOGL", "Alphabet Inc."),
    Brand("Nike", "NKE", "NIKE, Inc."),
    Brand("McDonald's", "MCD", "McDonald's Corporation"),
    Brand("Chipotle", "CMG", "Chipotle Mexican Grill, Inc."),
    Brand("Shell", "SHEL", "Shell plc"),
    Brand("Chevron", "CVX", "Chevron Corporation"),
    Brand("Exxon", "XOM", "Exxon Mobil Corporation"),
    Brand("Disney", "DIS", "The Walt Disney Company"),
    Brand("Airbnb", "ABNB", "Airbnb, Inc."),
    Brand("eBay", "EBAY", "eBay Inc."),
    Brand("Coca-Cola", "KO", "The Coca-Cola Company"),
    Brand("Pepsi", "PEP", "PepsiCo, Inc."),
    Brand("Procter & Gamble", "PG", "The Procter & Gamble Company"),
)


def _compact_key(name: str) -> str:
    return normalize_brand_key(name).replace(" ", "")


def _build_index(brands: tuple[Brand, ...]) -> tuple[tuple[str, Brand], ...]:
    # Longest key first so the first containment hit is the most specific.
    keyed = [(_compact_key(b.name), b) for b in brands]
    return tuple(sorted(keyed, key=lambda kb: len(kb[0]), reverse=True))


_INDEX = _build_index(BRANDS)


def match_brand(merchant: str) -> BrandMatch | None:
    key = _compact_key(merchant)
    if not key:
        return None
    for brand_key, brand in _INDEX:
        if key == brand_key:
            return BrandMatch(brand=brand, confidence=EXACT_CONFIDENCE, exact=True)
    if len(key) < _MIN_FUZZY_LEN:
        return None
    for brand_key, brand in _INDEX:
        if brand_key in key or key in brand_key:
            return BrandMatch(brand=brand, confidence=FUZZY_CONFIDENCE, exact=False)
    return None


__all__ = ["BRANDS", "Brand", "BrandMatch", "EXACT_CONFIDENCE", "FUZZY_CONFIDENCE", "match_brand"]
