"""Completion policies: decide whether a pending transaction resolves on its own."""
from __future__ import annotations

DEFAULT_AUTO_RESOLVE_MS = 3000

AUTO_RESOLVE_MESSAGE = "Transaction auto-confirmed for smooth demo experience"


class CompletionPolicy:
    name = "base"

    def auto_resolve_delay(self, step_id: str) -> float | None:
        """Seconds until the transaction is assumed successful, or None to wait forever."""
        raise NotImplementedError


class OptimisticPolicy(CompletionPolicy):
    """Assume success once the deadline passes without a confirmation.

    This masks an unavailable backend as success. Use StrictPolicy where a
    real confirmation is required.
    """
    name = "optimistic"

    def __init__(self, delay_ms: int = DEFAULT_AUTO_RESOLVE_MS):
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self.delay_ms = delay_ms

    def auto_resolve_delay(self, step_id: str) -> float | None:
        return self.delay_ms / 1000


class StrictPolicy(CompletionPolicy):
    name = "strict"

    def auto_resolve_delay(self, step_id: str) -> float | None:
        return None


def get_policy(name: str, delay_ms: int = DEFAULT_AUTO_RESOLVE_MS) -> CompletionPolicy:
    match name:
        case "optimistic":
            return OptimisticPolicy(delay_ms)
        case "strict":
            return StrictPolicy()
    raise ValueError(f"Unknown completion policy: {name!r} (expected optimistic or strict)")
