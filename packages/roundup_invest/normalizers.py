"""Field normalizers shared by every ingestion source.

Amounts accept a leading sign, a ``$`` currency marker, surrounding
parentheses (negative) and thousands separators. Dates accept ISO
``YYYY-MM-DD`` (optionally followed by a time) and ``MM/DD/YYYY``. Both raise
``ValueError`` on anything else; callers turn that into a row-level error.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

_DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def parse_amount(raw: str | None) -> Decimal:
    """Parse a signed currency amount; the result is finite but not quantized."""

    if raw is None:
        raise ValueError("amount is required")
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")
    negative = False

    # Strip leading sign, currency symbol and surrounding parentheses in any
    # order until stable, so "-($1,234.56)" and "$(1,234.56)" both work.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s.startswith("$"):
            s = s[1:].lstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").strip()
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"amount must be finite: {raw!r}")
    return -abs(d) if negative else d


def parse_date(raw: str | None) -> date:
    if raw is None:
        raise ValueError("date is required")
    s = raw.strip()
    if not s:
        raise ValueError("date is empty")
    # Drop a trailing time component ("2024-01-02T10:00:00", "01/02/2024 10:00").
    first = s.split()[0].split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(first, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date: {raw!r}")


def clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip()
    return cleaned or None


def normalize_merchant_key(merchant: str) -> str:
    """NFKC-normalize, collapse whitespace and casefold a merchant name."""

    s = unicodedata.normalize("NFKC", merchant).strip()
    return " ".join(s.split()).casefold()


def normalize_ticker(raw: str) -> str:
    """Uppercase an exchange symbol; raises ``ValueError`` for anything else."""

    symbol = raw.strip().upper()
    if not symbol or len(symbol) > 12 or not all(ch.isalnum() or ch in ".-" for ch in symbol):
        raise ValueError(f"ticker must be an exchange symbol; got {raw!r}")
    return symbol


def normalize_header(name: str) -> str:
    """Header comparison key: lowercase with punctuation and spaces removed."""

    return _NON_ALNUM.sub("", unicodedata.normalize("NFKC", name).casefold())


def normalize_brand_key(name: str) -> str:
    """Word-preserving key for brand matching (apostrophes dropped)."""

    s = unicodedata.normalize("NFKC", name).casefold().replace("'", "").replace("’", "")
    return " ".join(_NON_ALNUM.sub(" ", s).split())


__all__ = [
    "clean_text",
    "normalize_brand_key",
    "normalize_header",
    "normalize_merchant_key",
    "normalize_ticker",
    "parse_amount",
    "parse_date",
]
