"""Exception types raised across the pipeline.

Row-level validation problems are not exceptions; they are collected as
:class:`roundup_invest.models.RowError` values on the batch summary. The
types here cover failures that abort a whole operation.
"""

from __future__ import annotations


class RoundupError(Exception):
    """Base class for pipeline errors."""


class BatchAbortedError(RoundupError):
    """A structural problem prevents a batch from starting.

    Raised before any row is written (missing required CSV columns, empty
    input, unknown or inactive owner).
    """


class OwnershipError(RoundupError, PermissionError):
    """The caller does not own the transaction it is acting on."""

    def __init__(self, transaction_id: int, owner_id: int) -> None:
        super().__init__(f"Transaction {transaction_id} does not belong to owner {owner_id}")
        self.transaction_id = transaction_id
        self.owner_id = owner_id


class InferenceError(RoundupError):
    """The inference endpoint returned something unusable."""


__all__ = [
    "BatchAbortedError",
    "InferenceError",
    "OwnershipError",
    "RoundupError",
]
