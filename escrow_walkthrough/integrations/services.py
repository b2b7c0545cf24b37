"""Collaborator interfaces the engine depends on, and their default implementations.

The engine never reaches for process-wide state: a Walkthrough is handed a
wallet, a ledger client, a store and a notifier, and tests substitute any of
them.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from escrow_walkthrough.engine.scheduler import Scheduler

log = logging.getLogger("escrow_walkthrough.services")

NOTIFY_LEVELS = ("success", "info", "warning", "error")


# ─── Wallet ───

class WalletProvider(Protocol):
    @property
    def is_connected(self) -> bool: ...
    @property
    def wallet_id(self) -> str | None: ...
    @property
    def network(self) -> str: ...


@dataclass
class StaticWallet:
    """A wallet whose identity is fixed up front (CLI flag, config file, test)."""
    address: str | None = None
    network: str = "testnet"
    connected: bool = True

    @property
    def is_connected(self) -> bool:
        return self.connected and bool(self.address)

    @property
    def wallet_id(self) -> str | None:
        return self.address if self.is_connected else None

    def connect(self, address: str | None = None) -> None:
        if address:
            self.address = address
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False


# ─── Ledger client ───

@dataclass
class Operation:
    type: str
    step_id: str
    transaction_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class Confirmation:
    handle: str
    outcome: str  # success | failed
    message: str = ""


class LedgerClient(Protocol):
    def submit(self, operation: Operation, on_outcome: Callable[[Confirmation], None]) -> str: ...


class SimulatedLedgerClient:
    """Confirms every operation after a fixed latency on the scheduler.

    Operations whose type is in `fail_actions` are confirmed as failed, once
    each unless `fail_always` is set. A latency of None never confirms at all,
    leaving the completion policy to decide.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        latency: float | None = 1.0,
        fail_actions: Iterable[str] = (),
        fail_always: bool = False,
    ):
        self.scheduler = scheduler
        self.latency = latency
        self.fail_actions = set(fail_actions)
        self.fail_always = fail_always
        self.submitted: list[Operation] = []

    def submit(self, operation: Operation, on_outcome: Callable[[Confirmation], None]) -> str:
        handle = secrets.token_hex(8)
        self.submitted.append(operation)
        if self.latency is None:
            log.debug("ledger: %s submitted, no confirmation will arrive", operation.type)
            return handle

        failing = operation.type in self.fail_actions
        if failing and not self.fail_always:
            self.fail_actions.discard(operation.type)
        confirmation = Confirmation(
            handle=handle,
            outcome="failed" if failing else "success",
            message=f"Ledger rejected {operation.type}" if failing else f"{operation.type} confirmed",
        )
        self.scheduler.call_later(self.latency, lambda: on_outcome(confirmation))
        return handle


# ─── Notifications ───

class Notifier(Protocol):
    def notify(self, level: str, title: str, message: str) -> None: ...


class LoggingNotifier:
    _LEVELS = {
        "success": logging.INFO,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or logging.getLogger("escrow_walkthrough.notify")

    def notify(self, level: str, title: str, message: str) -> None:
        self.log.log(self._LEVELS.get(level, logging.INFO), "%s: %s", title, message)


class PrintNotifier:
    _ICONS = {"success": "✓", "info": "·", "warning": "⚠", "error": "✗"}

    def notify(self, level: str, title: str, message: str) -> None:
        print(f"  {self._ICONS.get(level, '·')} {title}: {message}")


class RecordingNotifier:
    """Keeps every notification; used by tests and the MCP server."""

    def __init__(self):
        self.messages: list[tuple[str, str, str]] = []

    def notify(self, level: str, title: str, message: str) -> None:
        self.messages.append((level, title, message))

    def drain(self) -> list[tuple[str, str, str]]:
        out, self.messages = self.messages, []
        return out
