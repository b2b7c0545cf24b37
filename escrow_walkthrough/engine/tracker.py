"""Transaction lifecycle tracker: pending → success | failed, exactly once."""
from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from escrow_walkthrough.engine.policy import AUTO_RESOLVE_MESSAGE, CompletionPolicy, OptimisticPolicy
from escrow_walkthrough.types import TX_TERMINAL, TransactionRecord

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrow_walkthrough.engine.scheduler import Scheduler, TimerHandle

log = logging.getLogger("escrow_walkthrough.tracker")


def new_transaction_id() -> str:
    # Same shape as a ledger transaction hash: 64 hex chars
    return secrets.token_hex(32)


class TransactionTracker:
    def __init__(
        self,
        scheduler: Scheduler,
        policy: CompletionPolicy | None = None,
    ):
        self.scheduler = scheduler
        self.policy = policy or OptimisticPolicy()
        self.records: dict[str, TransactionRecord] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._listeners: list[Callable[[TransactionRecord], None]] = []

    def on_resolved(self, listener: Callable[[TransactionRecord], None]) -> None:
        self._listeners.append(listener)

    def create(self, step_id: str) -> str:
        tx_id = new_transaction_id()
        now = self.scheduler.now()
        delay = self.policy.auto_resolve_delay(step_id)
        record = TransactionRecord(
            id=tx_id,
            step_id=step_id,
            created_at=now,
            auto_resolve_deadline=None if delay is None else now + delay,
        )
        self.records[tx_id] = record
        if delay is not None:
            self._timers[tx_id] = self.scheduler.call_later(delay, lambda: self._auto_resolve(tx_id))
        log.debug("tx %s created for step %s (policy=%s)", tx_id[:12], step_id, self.policy.name)
        return tx_id

    def get(self, tx_id: str) -> TransactionRecord | None:
        return self.records.get(tx_id)

    def status(self, tx_id: str | None) -> str | None:
        if tx_id is None:
            return None
        record = self.records.get(tx_id)
        return record.status if record else None

    def pending(self) -> list[TransactionRecord]:
        return [r for r in self.records.values() if r.status == "pending"]

    def resolve(self, tx_id: str, outcome: str, message: str = "") -> bool:
        """Terminal transition. Returns False when the call was a no-op."""
        if outcome not in TX_TERMINAL:
            raise ValueError(f"Invalid outcome {outcome!r}: expected success or failed")
        record = self.records.get(tx_id)
        if record is None:
            log.debug("ignoring resolve(%s) for unknown or retired transaction", tx_id[:12])
            return False
        if record.terminal:
            return False

        timer = self._timers.pop(tx_id, None)
        if timer is not None:
            timer.cancel()

        record.status = outcome
        record.message = message
        record.resolved_at = self.scheduler.now()
        log.info("tx %s for step %s -> %s", tx_id[:12], record.step_id, outcome)
        for listener in list(self._listeners):
            listener(record)
        return True

    def cancel_all(self) -> int:
        """Cancel every timer and retire every record. Returns the number still pending."""
        still_pending = len(self.pending())
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self.records.clear()
        return still_pending

    def _auto_resolve(self, tx_id: str) -> None:
        self._timers.pop(tx_id, None)
        record = self.records.get(tx_id)
        if record is None or record.terminal:
            return
        log.warning(
            "tx %s for step %s had no confirmation before its deadline; assuming success",
            tx_id[:12], record.step_id,
        )
        self.resolve(tx_id, "success", AUTO_RESOLVE_MESSAGE)
