"""Public API for the ``roundup_invest`` package.

This module serves as the stable import surface. Workflow implementations
live in :mod:`roundup_invest.workflows.pipeline`; the pure building blocks
(calculator, allocation, resolver) are re-exported for callers that compose
their own flows.
"""

from __future__ import annotations

# Re-export for monkeypatch compatibility with the inference module
from openai import OpenAI as OpenAI

from .allocation import allocate, receipt_candidates
from .config import PipelineConfig, load_pipeline_config
from .errors import BatchAbortedError, InferenceError, OwnershipError, RoundupError
from .knowledge_base import best_approved_mapping, pending_mappings
from .models import (
    BatchSummary,
    Deferred,
    Failed,
    PurchaseResult,
    ReceiptResult,
    Resolution,
    Resolved,
    RoundUpQuote,
)
from .portfolio import holdings_for_owner
from .resolver import MerchantResolver
from .roundup import calculate_round_up
from .workflows.pipeline import (
    BankSyncJob,
    import_mappings_csv,
    ingest_bulk_csv,
    process_purchase,
    resolve_pending_transactions,
    resolve_transaction,
    submit_receipt,
    sync_bank_feed,
    sync_bank_feeds,
)

__all__ = [
    "BankSyncJob",
    "BatchAbortedError",
    "BatchSummary",
    "Deferred",
    "Failed",
    "InferenceError",
    "MerchantResolver",
    "OpenAI",
    "OwnershipError",
    "PipelineConfig",
    "PurchaseResult",
    "ReceiptResult",
    "Resolution",
    "Resolved",
    "RoundUpQuote",
    "RoundupError",
    "allocate",
    "best_approved_mapping",
    "calculate_round_up",
    "holdings_for_owner",
    "import_mappings_csv",
    "ingest_bulk_csv",
    "load_pipeline_config",
    "pending_mappings",
    "process_purchase",
    "receipt_candidates",
    "resolve_pending_transactions",
    "resolve_transaction",
    "submit_receipt",
    "sync_bank_feed",
    "sync_bank_feeds",
]
