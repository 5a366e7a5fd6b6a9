"""Tiered merchant resolver.

Tiers run in order and the first :class:`Resolved` wins:

1. ``cache``: highest-confidence approved mapping (case-insensitive exact).
2. ``inference``: one call to the inference endpoint.
3. ``fuzzy``: the static brand table.

Tiers 2 and 3 always append a mapping row. The row is ``approved`` only when
the platform auto-approval switch is on and the confidence meets the
threshold; otherwise it is ``pending`` and the tier yields :class:`Deferred`,
which never tags the transaction and does not stop the chain. When no tier
resolves, the first :class:`Deferred` is returned, else :class:`Failed`.

Each inference attempt is handed to an ``on_attempt`` callback (the audit
log by default) after the call returns, so the tiers themselves never write
audit rows. Mapping rows are written in a savepoint; a failed write yields
:class:`Failed` and the chain moves on to the next tier.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .brands import match_brand
from .config import PipelineConfig
from .inference import InferenceAttempt, infer_ticker
from .knowledge_base import AuditLog, best_approved_mapping, record_mapping
from .logging_setup import get_logger
from .models import Deferred, Failed, Provenance, Resolution, Resolved
from .normalizers import normalize_merchant_key

_logger = get_logger("roundup_invest.resolver")


class ResolverTier(Protocol):
    name: str

    def resolve(self, merchant: str, category: str | None) -> Resolution: ...


def _persist_candidate(
    session: Session,
    config: PipelineConfig,
    *,
    tier: str,
    merchant: str,
    ticker: str,
    company_name: str | None,
    confidence: Decimal,
    category: str | None,
    provenance: Provenance,
    ai_processed: bool,
    owner_id: int | None,
    notes: str | None = None,
) -> Resolution:
    approved = config.approves(confidence)
    try:
        # Savepoint: a failed mapping write must not take the audit row with it
        with session.begin_nested():
            row = record_mapping(
                session,
                merchant_name=merchant,
                ticker=ticker,
                company_name=company_name,
                category=category,
                confidence=confidence,
                status="approved" if approved else "pending",
                provenance=provenance,
                ai_processed=ai_processed,
                created_by_owner_id=owner_id,
                notes=notes,
            )
    except SQLAlchemyError as e:
        _logger.error(
            "resolver:mapping_write_failed tier=%s merchant=%r error=%s",
            tier,
            merchant,
            e.__class__.__name__,
        )
        return Failed(
            reason=f"knowledge base write failed: {e.__class__.__name__}", write_failed=True
        )
    outcome_cls = Resolved if approved else Deferred
    return outcome_cls(
        ticker=row.ticker,
        confidence=confidence,
        tier=tier,
        company_name=company_name,
        mapping_id=row.id,
    )


class ApprovedMappingTier:
    name = "cache"

    def __init__(self, session: Session) -> None:
        self._session = session

    def resolve(self, merchant: str, category: str | None) -> Resolution:
        row = best_approved_mapping(self._session, merchant)
        if row is None:
            return Failed(reason="no approved mapping")
        return Resolved(
            ticker=row.ticker,
            confidence=Decimal(row.confidence),
            tier=self.name,
            company_name=row.company_name,
            mapping_id=row.id,
        )


class InferenceTier:
    name = "inference"

    def __init__(
        self,
        session: Session,
        config: PipelineConfig,
        *,
        on_attempt: Callable[[InferenceAttempt], None],
        owner_id: int | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._on_attempt = on_attempt
        self._owner_id = owner_id

    def resolve(self, merchant: str, category: str | None) -> Resolution:
        attempt = infer_ticker(
            merchant,
            category,
            model=self._config.model,
            timeout_s=self._config.inference_timeout_s,
        )
        self._on_attempt(attempt)
        if attempt.reply is None:
            return Failed(reason=attempt.error or "inference returned no reply")
        reply = attempt.reply
        return _persist_candidate(
            self._session,
            self._config,
            tier=self.name,
            merchant=merchant,
            ticker=reply.ticker,
            company_name=reply.company_name,
            confidence=Decimal(str(reply.confidence)),
            category=category,
            provenance="llm",
            ai_processed=True,
            owner_id=self._owner_id,
            notes=reply.reasoning or None,
        )


class BrandTableTier:
    name = "fuzzy"

    def __init__(
        self, session: Session, config: PipelineConfig, *, owner_id: int | None = None
    ) -> None:
        self._session = session
        self._config = config
        self._owner_id = owner_id

    def resolve(self, merchant: str, category: str | None) -> Resolution:
        match = match_brand(merchant)
        if match is None:
            return Failed(reason="no brand table match")
        return _persist_candidate(
            self._session,
            self._config,
            tier=self.name,
            merchant=merchant,
            ticker=match.brand.ticker,
            company_name=match.brand.company_name,
            confidence=match.confidence,
            category=category,
            provenance="rule",
            ai_processed=False,
            owner_id=self._owner_id,
            notes=f"brand table: {match.brand.name}" + ("" if match.exact else " (partial)"),
        )


class MerchantResolver:
    """Run the tier chain, memoizing outcomes per normalized merchant.

    Build one resolver per batch: the memo guarantees at most one inference
    call per merchant per batch, and the ``config`` it holds was loaded once
    for that batch.
    ``write_failures`` counts mapping writes rolled back so far.
    """

    def __init__(
        self,
        session: Session,
        config: PipelineConfig,
        *,
        owner_id: int | None = None,
        on_attempt: Callable[[InferenceAttempt], None] | None = None,
        tiers: Sequence[ResolverTier] | None = None,
    ) -> None:
        self._session = session
        self._config = config
        audit = on_attempt if on_attempt is not None else AuditLog(session)
        self._tiers: tuple[ResolverTier, ...] = tuple(
            tiers
            if tiers is not None
            else (
                ApprovedMappingTier(session),
                InferenceTier(session, config, on_attempt=audit, owner_id=owner_id),
                BrandTableTier(session, config, owner_id=owner_id),
            )
        )
        self._memo: dict[str, Resolution] = {}
        self.write_failures = 0

    @property
    def tiers(self) -> tuple[ResolverTier, ...]:
        return self._tiers

    def resolve(self, merchant: str, category: str | None = None) -> Resolution:
        key = normalize_merchant_key(merchant)
        if not key:
            return Failed(reason="empty merchant name")
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        deferred: Deferred | None = None
        outcome: Resolution | None = None
        for tier in self._tiers:
            result = tier.resolve(merchant, category)
            if isinstance(result, Failed) and result.write_failed:
                self.write_failures += 1
            if isinstance(result, Resolved):
                outcome = result
                break
            if isinstance(result, Deferred) and deferred is None:
                deferred = result
        if outcome is None:
            outcome = deferred if deferred is not None else Failed(reason="all tiers exhausted")

        self._memo[key] = outcome
        if isinstance(outcome, Failed):
            _logger.info("resolver:unresolved merchant=%r reason=%s", merchant, outcome.reason)
        else:
            _logger.info(
                "resolver:tier_hit tier=%s merchant=%r ticker=%s status=%s confidence=%s",
                outcome.tier,
                merchant,
                outcome.ticker,
                outcome.status,
                outcome.confidence,
            )
        return outcome


__all__ = [
    "ApprovedMappingTier",
    "BrandTableTier",
    "InferenceTier",
    "MerchantResolver",
    "ResolverTier",
]
