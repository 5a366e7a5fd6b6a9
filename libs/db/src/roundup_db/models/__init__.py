"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the round-up pipeline models used by ``roundup_invest``.
"""

from .roundup import (
    Base,
    RiHolding,
    RiInferenceAudit,
    RiLedgerEntry,
    RiMerchantMapping,
    RiOwner,
    RiPlatformSetting,
    RiQueuedOrder,
    RiReceipt,
    RiReceiptAllocation,
    RiTransaction,
)

__all__ = [
    "Base",
    "RiHolding",
    "RiInferenceAudit",
    "RiLedgerEntry",
    "RiMerchantMapping",
    "RiOwner",
    "RiPlatformSetting",
    "RiQueuedOrder",
    "RiReceipt",
    "RiReceiptAllocation",
    "RiTransaction",
]
