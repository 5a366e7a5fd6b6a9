"""Bank-feed ingestion (Teller-style aggregator).

The feed is untrusted: items may be replayed, malformed or credits. Each raw
item is validated into :class:`BankFeedItem`; only debits (negative amounts)
become :class:`CanonicalPurchase` records. Credits, refunds and zero amounts
are discarded silently.

The merchant is the counterparty name when present, else the description,
else ``"Unknown"``. Aggregator categories are mapped onto platform
categories via :data:`CATEGORY_MAP` (exact, then containment either way,
default ``"Shopping"``).
"""

from __future__ import annotations

import os
import ssl
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..logging_setup import get_logger
from ..models import CanonicalPurchase
from ..normalizers import clean_text, parse_amount, parse_date
from ..roundup import quantize_cents

_logger = get_logger("roundup_invest.ingest.bank_feed")

DEFAULT_CATEGORY = "Shopping"
UNKNOWN_MERCHANT = "Unknown"

CATEGORY_MAP: Mapping[str, str] = {
    "bar": "Food & Drink",
    "dining": "Food & Drink",
    "restaurant": "Food & Drink",
    "coffee": "Food & Drink",
    "fast food": "Food & Drink",
    "food and drink": "Food & Drink",
    "bakery": "Food & Drink",
    "clothing": "Shopping",
    "department store": "Shopping",
    "shopping": "Shopping",
    "general merchandise": "Shopping",
    "sporting goods": "Shopping",
    "books": "Shopping",
    "pets": "Shopping",
    "gifts": "Shopping",
    "online shopping": "Shopping",
    "gas": "Gas",
    "fuel": "Gas",
    "gas station": "Gas",
    "groceries": "Groceries",
    "supermarket": "Groceries",
    "transportation": "Transportation",
    "ride share": "Transportation",
    "taxi": "Transportation",
    "parking": "Transportation",
    "public transit": "Transportation",
    "car": "Transportation",
    "auto": "Transportation",
    "entertainment": "Entertainment",
    "streaming": "Entertainment",
    "movies": "Entertainment",
    "music": "Entertainment",
    "gaming": "Entertainment",
    "arts": "Entertainment",
    "health": "Health",
    "pharmacy": "Health",
    "doctor": "Health",
    "hospital": "Health",
    "gym": "Health",
    "fitness": "Health",
    "dentist": "Health",
    "rent": "Home",
    "mortgage": "Home",
    "home improvement": "Home",
    "utilities": "Home",
    "home": "Home",
    "internet": "Home",
    "phone": "Home",
    "accommodation": "Home",
    "insurance": "Home",
    "electronics": "Electronics",
    "computer": "Electronics",
    "software": "Electronics",
}


def map_category(hint: str | None, category_map: Mapping[str, str] = CATEGORY_MAP) -> str:
    if not hint or not hint.strip():
        return DEFAULT_CATEGORY
    lower = hint.strip().lower()
    exact = category_map.get(lower)
    if exact is not None:
        return exact
    for key, value in category_map.items():
        if key in lower or lower in key:
            return value
    return DEFAULT_CATEGORY


class BankFeedItem(BaseModel):
    """One aggregator transaction, flattened from the provider's JSON."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str = Field(min_length=1)
    account_id: str | None = None
    amount: Decimal
    date: str
    description: str | None = None
    counterparty_name: str | None = None
    category: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> Decimal:
        if isinstance(v, Decimal):
            return v
        return parse_amount(str(v))

    @classmethod
    def from_teller(cls, raw: Mapping[str, Any]) -> BankFeedItem:
        if not isinstance(raw, Mapping):
            raise ValueError(f"bank item must be an object; got {type(raw).__name__}")
        details = raw.get("details")
        if not isinstance(details, Mapping):
            details = {}
        counterparty = details.get("counterparty")
        if not isinstance(counterparty, Mapping):
            counterparty = {}
        return cls.model_validate(
            {
                "id": raw.get("id"),
                "account_id": raw.get("account_id"),
                "amount": raw.get("amount"),
                "date": raw.get("date"),
                "description": raw.get("description"),
                "counterparty_name": counterparty.get("name"),
                "category": details.get("category"),
            }
        )


def to_purchase(item: BankFeedItem, *, owner_id: int, position: int) -> CanonicalPurchase | None:
    """Return a purchase for debits; ``None`` for credits and zero amounts.

    Raises ``ValueError`` when the date cannot be parsed.
    """

    if item.amount >= 0:
        return None
    amount = quantize_cents(-item.amount)
    if amount == 0:
        return None
    merchant = (
        clean_text(item.counterparty_name) or clean_text(item.description) or UNKNOWN_MERCHANT
    )
    return CanonicalPurchase(
        owner_id=owner_id,
        date=parse_date(item.date),
        merchant=merchant,
        amount=amount,
        source="bank",
        category=map_category(item.category),
        description=clean_text(item.description),
        external_id=item.id,
        row=position,
    )


class BankFeedClient(Protocol):
    def list_transactions(self, account_id: str) -> Sequence[Mapping[str, Any]]: ...


class TellerClient:
    """Minimal Teller API client: basic auth with the enrollment access token.

    When ``TELLER_CERT``/``TELLER_KEY`` point at a client certificate and key
    the connection uses mTLS (required outside the sandbox).
    """

    BASE_URL = "https://api.teller.io"

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        timeout: float = 30.0,
        cert: tuple[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("access_token is required")
        if cert is None:
            cert_path, key_path = os.getenv("TELLER_CERT"), os.getenv("TELLER_KEY")
            if cert_path and key_path:
                cert = (cert_path, key_path)
        verify: ssl.SSLContext | bool = True
        if cert is not None:
            verify = ssl.create_default_context()
            verify.load_cert_chain(certfile=cert[0], keyfile=cert[1])
        self._client = httpx.Client(
            base_url=base_url or self.BASE_URL,
            auth=(access_token, ""),
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TellerClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def list_accounts(self) -> list[Mapping[str, Any]]:
        r = self._client.get("/accounts")
        r.raise_for_status()
        return r.json()

    def list_transactions(self, account_id: str) -> list[Mapping[str, Any]]:
        r = self._client.get(f"/accounts/{account_id}/transactions")
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, list):
            raise ValueError(f"Unexpected Teller response for account {account_id}")
        _logger.debug("bank_feed:fetched account=%s items=%d", account_id, len(data))
        return data


__all__ = [
    "CATEGORY_MAP",
    "DEFAULT_CATEGORY",
    "BankFeedClient",
    "BankFeedItem",
    "TellerClient",
    "map_category",
    "to_purchase",
]
