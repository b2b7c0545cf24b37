"""Error taxonomy for the progression engine.

PreconditionError and ConflictError never leave the facade: Walkthrough turns
them into ActionResult values. Catalog and lookup errors propagate.
"""
from __future__ import annotations


class WalkthroughError(Exception):
    """Base class for every error raised by escrow_walkthrough."""


class PreconditionError(WalkthroughError):
    """Action rejected before any state was touched."""


class ConflictError(WalkthroughError):
    """Action would repeat something already done; callers treat it as a no-op."""


class TransactionFailure(WalkthroughError):
    def __init__(self, transaction_id: str, message: str):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.message = message


class UnknownDemoError(WalkthroughError, KeyError):
    pass


class UnknownBadgeError(WalkthroughError, KeyError):
    pass


class CatalogError(WalkthroughError, ValueError):
    """Demo YAML could not be parsed or failed validation."""
