"""Merchant-to-ticker knowledge base and inference audit log.

Scope:
- Read the best approved mapping for a merchant (tier-1 cache lookup).
- List pending mappings for the external approval surface.
- Append new mapping rows; existing rows are never updated here so the
  confidence history for a merchant is preserved.
- Append inference audit rows (:class:`AuditLog`).

All writes ``flush`` but never ``commit``; the calling workflow owns the
transaction boundary.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roundup_db.models.roundup import RiInferenceAudit, RiMerchantMapping

from .inference import InferenceAttempt
from .logging_setup import get_logger
from .models import MappingStatus, Provenance

_logger = get_logger("roundup_invest.knowledge_base")

_CONFIDENCE_Q = Decimal("0.0001")


def best_approved_mapping(session: Session, merchant: str) -> RiMerchantMapping | None:
    """Return the highest-confidence approved mapping for ``merchant``.

    Matching is case-insensitive and exact after trimming. Ties on confidence
    go to the most recent row.
    """

    name = merchant.strip().lower()
    if not name:
        return None
    stmt = (
        select(RiMerchantMapping)
        .where(
            func.lower(RiMerchantMapping.merchant_name) == name,
            RiMerchantMapping.status == "approved",
        )
        .order_by(RiMerchantMapping.confidence.desc(), RiMerchantMapping.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalars().first()


def pending_mappings(session: Session, *, limit: int = 100) -> Sequence[RiMerchantMapping]:
    stmt = (
        select(RiMerchantMapping)
        .where(RiMerchantMapping.status == "pending")
        .order_by(RiMerchantMapping.created_at.asc(), RiMerchantMapping.id.asc())
        .limit(limit)
    )
    return session.execute(stmt).scalars().all()


def known_pairs(session: Session) -> set[tuple[str, str]]:
    """Return every ``(lowercased merchant, ticker)`` pair in the knowledge base."""

    rows = session.execute(
        select(func.lower(RiMerchantMapping.merchant_name), RiMerchantMapping.ticker)
    ).all()
    return {(m, t) for m, t in rows}


def record_mapping(
    session: Session,
    *,
    merchant_name: str,
    ticker: str,
    confidence: Decimal,
    status: MappingStatus,
    provenance: Provenance,
    company_name: str | None = None,
    category: str | None = None,
    ai_processed: bool = False,
    created_by_owner_id: int | None = None,
    notes: str | None = None,
) -> RiMerchantMapping:
    if not (Decimal(0) <= confidence <= Decimal(1)):
        raise ValueError(f"confidence must be within [0, 1]; got {confidence}")
    row = RiMerchantMapping(
        merchant_name=merchant_name.strip(),
        ticker=ticker.strip().upper(),
        company_name=company_name,
        category=category,
        confidence=confidence.quantize(_CONFIDENCE_Q),
        status=status,
        ai_processed=ai_processed,
        provenance=provenance,
        created_by_owner_id=created_by_owner_id,
        notes=notes,
    )
    session.add(row)
    session.flush()
    _logger.info(
        "knowledge_base:mapping_added id=%d merchant=%r ticker=%s confidence=%s status=%s "
        "provenance=%s",
        row.id,
        row.merchant_name,
        row.ticker,
        row.confidence,
        status,
        provenance,
    )
    return row


class AuditLog:
    """Append-only writer for :class:`InferenceAttempt` records."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def __call__(self, attempt: InferenceAttempt) -> None:
        self.append(attempt)

    def append(self, attempt: InferenceAttempt) -> RiInferenceAudit:
        row = RiInferenceAudit(
            merchant_name=attempt.merchant,
            category=attempt.category,
            prompt=attempt.prompt,
            raw_response=attempt.raw_response,
            parsed_response=attempt.reply.model_dump() if attempt.reply is not None else None,
            latency_ms=attempt.latency_ms,
            model_version=attempt.model,
            is_error=attempt.is_error,
            error_message=attempt.error,
        )
        self._session.add(row)
        self._session.flush()
        return row


__all__ = [
    "AuditLog",
    "best_approved_mapping",
    "known_pairs",
    "pending_mappings",
    "record_mapping",
]
