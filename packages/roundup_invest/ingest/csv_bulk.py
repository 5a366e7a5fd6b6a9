"""Bulk CSV reader for purchase imports and mapping imports.

Headers are matched case- and punctuation-insensitively against an alias
table, so ``Merchant Name``, ``merchant_name`` and ``MERCHANT-NAME`` all bind
to ``merchant``. Missing required columns raise
:class:`roundup_invest.errors.BatchAbortedError` from the constructor,
before any row is read. Each data row is reported with its 1-based physical
line number in the source text (the header is line 1).
"""

from __future__ import annotations

import csv
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO

from ..errors import BatchAbortedError
from ..models import CanonicalPurchase
from ..normalizers import clean_text, normalize_header, parse_amount, parse_date
from ..roundup import quantize_cents

PURCHASE_ALIASES: Mapping[str, tuple[str, ...]] = {
    "date": ("date", "transaction date", "posted date", "posting date", "purchase date"),
    "merchant": ("merchant", "merchant name", "payee", "vendor", "store", "name"),
    "amount": ("amount", "amt", "purchase amount", "transaction amount", "total"),
    "category": ("category", "type"),
    "description": ("description", "memo", "details", "notes"),
}
PURCHASE_REQUIRED: tuple[str, ...] = ("date", "merchant", "amount")


@dataclass(frozen=True, slots=True)
class CsvRecord:
    line: int
    values: dict[str, str]


def bind_columns(
    header: Sequence[str],
    aliases: Mapping[str, tuple[str, ...]],
    required: Sequence[str],
) -> dict[str, int]:
    """Map canonical field names to header positions; first match wins."""

    positions: dict[str, int] = {}
    normalized = [normalize_header(h) for h in header]
    for fld, names in aliases.items():
        keys = {normalize_header(n) for n in names}
        for i, h in enumerate(normalized):
            if h in keys and i not in positions.values():
                positions[fld] = i
                break
    missing = [f for f in required if f not in positions]
    if missing:
        raise BatchAbortedError(
            f"CSV is missing required column(s): {', '.join(missing)}. "
            f"Found: {', '.join(h.strip() for h in header) or '(none)'}"
        )
    return positions


class CsvSource:
    """Header-bound CSV text; iterate to get :class:`CsvRecord` values."""

    def __init__(
        self,
        text: str,
        *,
        aliases: Mapping[str, tuple[str, ...]],
        required: Sequence[str],
    ) -> None:
        if not text or not text.strip():
            raise BatchAbortedError("CSV input is empty")
        self._reader = csv.reader(StringIO(text.lstrip("\ufeff")))
        header = next(self._reader, None)
        if not header or not any(h.strip() for h in header):
            raise BatchAbortedError("CSV input has no header row")
        self.header = header
        self.columns = bind_columns(header, aliases, required)

    def __iter__(self) -> Iterator[CsvRecord]:
        for row in self._reader:
            if not row or not any(cell.strip() for cell in row):
                continue
            values = {
                fld: (row[i] if i < len(row) else "") for fld, i in self.columns.items()
            }
            yield CsvRecord(line=self._reader.line_num, values=values)


def to_purchase(record: CsvRecord, *, owner_id: int) -> CanonicalPurchase:
    """Validate one purchase row; raises ``ValueError`` with a user-facing message."""

    raw_date = record.values.get("date", "").strip()
    raw_merchant = record.values.get("merchant", "")
    raw_amount = record.values.get("amount", "").strip()

    try:
        tx_date = parse_date(raw_date)
    except ValueError:
        raise ValueError(
            f'Invalid date: "{raw_date}". Use YYYY-MM-DD or MM/DD/YYYY format.'
        ) from None
    merchant = clean_text(raw_merchant)
    if merchant is None:
        raise ValueError("Merchant name is required and cannot be empty.")
    try:
        amount = quantize_cents(abs(parse_amount(raw_amount)))
    except (ValueError, ArithmeticError):
        raise ValueError(f'Invalid amount: "{raw_amount}". Must be a valid number.') from None
    if amount == Decimal(0):
        raise ValueError(f'Invalid amount: "{raw_amount}". Must be greater than zero.')

    return CanonicalPurchase(
        owner_id=owner_id,
        date=tx_date,
        merchant=merchant,
        amount=amount,
        source="bulk",
        category=clean_text(record.values.get("category")),
        description=clean_text(record.values.get("description")),
        row=record.line,
    )


__all__ = [
    "PURCHASE_ALIASES",
    "PURCHASE_REQUIRED",
    "CsvRecord",
    "CsvSource",
    "bind_columns",
    "to_purchase",
]
