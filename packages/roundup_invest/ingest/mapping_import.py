"""Bulk import of merchant-to-ticker knowledge from CSV.

Required columns: ``merchant`` and ``ticker``. Optional: ``company``,
``category``, ``confidence`` (0-1, default 1.0) and ``notes``. Header names
are matched with the same alias rules as purchase imports.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from ..normalizers import clean_text, normalize_ticker, parse_amount
from .csv_bulk import CsvRecord

MAPPING_ALIASES: Mapping[str, tuple[str, ...]] = {
    "merchant": ("merchant", "merchant name", "brand", "name"),
    "ticker": ("ticker", "symbol", "stock symbol", "ticker symbol"),
    "company": ("company", "company name"),
    "category": ("category",),
    "confidence": ("confidence", "score"),
    "notes": ("notes", "note", "comment", "comments"),
}
MAPPING_REQUIRED: tuple[str, ...] = ("merchant", "ticker")

DEFAULT_IMPORT_CONFIDENCE = Decimal("1.0")


@dataclass(frozen=True, slots=True)
class MappingRow:
    line: int
    merchant: str
    ticker: str
    confidence: Decimal
    company_name: str | None = None
    category: str | None = None
    notes: str | None = None


def to_mapping_row(record: CsvRecord) -> MappingRow:
    merchant = clean_text(record.values.get("merchant"))
    if merchant is None:
        raise ValueError("Merchant name is required and cannot be empty.")
    raw_ticker = (record.values.get("ticker") or "").strip()
    if not raw_ticker:
        raise ValueError("Ticker is required and cannot be empty.")
    try:
        ticker = normalize_ticker(raw_ticker)
    except ValueError:
        raise ValueError(f'Invalid ticker: "{raw_ticker}".') from None

    raw_conf = (record.values.get("confidence") or "").strip()
    if raw_conf:
        try:
            confidence = parse_amount(raw_conf.rstrip("%"))
        except ValueError:
            raise ValueError(f'Invalid confidence: "{raw_conf}". Must be a number.') from None
        if raw_conf.endswith("%") or confidence > 1:
            confidence = confidence / 100
        if not (Decimal(0) <= confidence <= Decimal(1)):
            raise ValueError(f'Invalid confidence: "{raw_conf}". Must be between 0 and 1.')
    else:
        confidence = DEFAULT_IMPORT_CONFIDENCE

    return MappingRow(
        line=record.line,
        merchant=merchant,
        ticker=ticker,
        confidence=confidence,
        company_name=clean_text(record.values.get("company")),
        category=clean_text(record.values.get("category")),
        notes=clean_text(record.values.get("notes")),
    )


__all__ = [
    "DEFAULT_IMPORT_CONFIDENCE",
    "MAPPING_ALIASES",
    "MAPPING_REQUIRED",
    "MappingRow",
    "to_mapping_row",
]
