"""Data models and type aliases for ``roundup_invest``.

Plain frozen dataclasses carry values between pipeline stages. Anything that
crosses a trust boundary (inference replies, receipt payloads, bank-feed
items) is a pydantic model so malformed input is rejected with a precise
``ValidationError`` instead of leaking half-parsed values downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .normalizers import normalize_ticker

type Source = Literal["bank", "bulk", "receipt"]
type TransactionStatus = Literal["pending", "mapped", "failed"]
type MappingStatus = Literal["pending", "approved", "rejected"]
type Provenance = Literal["manual", "llm", "rule", "import", "receipt"]


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CanonicalPurchase:
    """A validated purchase ready for dedup and persistence.

    ``amount`` is always positive and already quantized to cents. ``row`` is
    the 1-based source line (CSV) or 1-based item position (bank feed) used
    when reporting problems back to the caller.
    """

    owner_id: int
    date: date
    merchant: str
    amount: Decimal
    source: Source
    category: str | None = None
    description: str | None = None
    external_id: str | None = None
    row: int | None = None


@dataclass(frozen=True, slots=True)
class RowError:
    row: int
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row, "message": self.message}


@dataclass(slots=True)
class BatchSummary:
    """Counts and a bounded list of row-level errors for one batch operation.

    Counts are never truncated; only the ``errors`` list is capped at
    ``max_errors`` entries (``errors_truncated`` records whether any were
    dropped).
    """

    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    mapped: int = 0
    unresolved: int = 0
    persistence_failures: int = 0
    aborted: bool = False
    errors: list[RowError] = field(default_factory=list)
    errors_truncated: bool = False
    max_errors: int = 50

    def record_error(self, row: int, message: str) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(RowError(row=row, message=message))
        else:
            self.errors_truncated = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "mapped": self.mapped,
            "unresolved": self.unresolved,
            "persistence_failures": self.persistence_failures,
            "aborted": self.aborted,
            "errors": [e.as_dict() for e in self.errors],
            "errors_truncated": self.errors_truncated,
        }


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RoundUpQuote:
    round_up: Decimal
    fee: Decimal
    net: Decimal


# ---------------------------------------------------------------------------
# Resolver outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Resolved:
    """An approved ticker that may tag the transaction."""

    ticker: str
    confidence: Decimal
    tier: str
    company_name: str | None = None
    mapping_id: int | None = None
    status: MappingStatus = "approved"


@dataclass(frozen=True, slots=True)
class Deferred:
    """A candidate ticker persisted as ``pending``; needs human approval."""

    ticker: str
    confidence: Decimal
    tier: str
    company_name: str | None = None
    mapping_id: int | None = None
    status: MappingStatus = "pending"


@dataclass(frozen=True, slots=True)
class Failed:
    """No tier produced a candidate.

    ``write_failed`` marks a tier whose knowledge-base write was rolled back.
    """

    reason: str
    write_failed: bool = False
    status: Literal["unresolved"] = "unresolved"


type Resolution = Resolved | Deferred | Failed


class InferenceReply(BaseModel):
    """Structured reply expected from the inference endpoint."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    ticker: str = Field(min_length=1, max_length=12)
    company_name: str = Field(min_length=1)
    confidence: float
    reasoning: str = ""

    @field_validator("ticker")
    @classmethod
    def _ticker_symbol(cls, v: str) -> str:
        return normalize_ticker(v)

    @field_validator("confidence")
    @classmethod
    def _confidence_range(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("confidence must be within [0, 1]")
        return v


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AllocationCandidate:
    ticker: str
    weight: Decimal
    confidence: Decimal
    reason: str

    def __post_init__(self) -> None:
        if self.weight <= 0:
            raise ValueError(f"weight must be positive; got {self.weight}")


@dataclass(frozen=True, slots=True)
class AllocationLine:
    ticker: str
    amount: Decimal
    percentage: Decimal
    confidence: Decimal
    reason: str


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


class ReceiptItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(min_length=1)
    brand: str | None = None
    amount: Decimal = Field(ge=0, allow_inf_nan=False)

    @field_validator("brand")
    @classmethod
    def _blank_brand_is_none(cls, v: str | None) -> str | None:
        return v or None


class ReceiptPayload(BaseModel):
    """An OCR'd receipt: ``{retailer, items:[...], totalAmount}``."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    retailer: str = Field(min_length=1)
    items: list[ReceiptItem] = Field(default_factory=list)
    total_amount: Decimal = Field(alias="totalAmount", gt=0, allow_inf_nan=False)
    purchased_on: date | None = Field(default=None, alias="date")


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    transaction_id: int
    quote: RoundUpQuote
    resolution: Resolution
    ledger_entry_id: int | None
    queued_order_ids: tuple[int, ...] = ()
    duplicate: bool = False


@dataclass(frozen=True, slots=True)
class ReceiptResult:
    receipt_id: int
    transaction_id: int
    quote: RoundUpQuote
    allocations: tuple[AllocationLine, ...]
    queued_order_ids: tuple[int, ...]
    persistence_failures: int = 0
    duplicate: bool = False


__all__ = [
    "AllocationCandidate",
    "AllocationLine",
    "BatchSummary",
    "CanonicalPurchase",
    "Deferred",
    "Failed",
    "InferenceReply",
    "MappingStatus",
    "Provenance",
    "PurchaseResult",
    "ReceiptItem",
    "ReceiptPayload",
    "ReceiptResult",
    "Resolution",
    "Resolved",
    "RoundUpQuote",
    "RowError",
    "Source",
    "TransactionStatus",
]
