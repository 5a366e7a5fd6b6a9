"""roundup_db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``roundup_db.models.roundup`` (re-exported for convenience)
- Engine/session helpers in ``roundup_db.client``
"""

from __future__ import annotations

from .models.roundup import (
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

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
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
