"""Shared fixtures for escrow-walkthrough tests."""
from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import pytest

from escrow_walkthrough.engine import ActionResult, Walkthrough, load_catalog
from escrow_walkthrough.engine.policy import OptimisticPolicy
from escrow_walkthrough.integrations.services import RecordingNotifier, SimulatedLedgerClient, StaticWallet
from escrow_walkthrough.store.state import StateManager

WALLET = "GBTESTWALLETADDRESS7XQZ"


# ─── Manual clock ───

class FakeHandle:
    def __init__(self, when: float, seq: int, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self):
        self.time = 0.0
        self._handles: list[FakeHandle] = []
        self._seq = 0

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.time + max(0.0, delay), self._seq, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self._handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        """Run every callback due within `seconds`, in time order."""
        target = self.time + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self.time = max(self.time, handle.when)
            handle.fired = True
            handle.callback()
        self.time = target


# ─── Harness ───

class WalkthroughHarness:
    """A Walkthrough on a temp SQLite store, a manual clock and a recording notifier.

    Ledger confirmations arrive after `latency` seconds (None: never), so the
    3 s auto-resolve only matters when latency is None or above 3.
    """

    def __init__(
        self,
        *,
        latency: float | None = 1.0,
        fail_actions: tuple[str, ...] = (),
        policy=None,
        wallet_id: str = WALLET,
    ):
        self.tmp = Path(tempfile.mkdtemp())
        self.db_path = self.tmp / "state.db"
        self.scheduler = FakeScheduler()
        self.notifier = RecordingNotifier()
        self.wallet = StaticWallet(wallet_id)
        self.ledger_client = SimulatedLedgerClient(self.scheduler, latency, fail_actions)
        self.policy = policy or OptimisticPolicy()
        self.store = StateManager(self.db_path)
        self.walkthrough = self._build()

    def _build(self) -> Walkthrough:
        return Walkthrough(
            load_catalog(),
            self.store,
            self.scheduler,
            wallet=self.wallet,
            ledger_client=self.ledger_client,
            notifier=self.notifier,
            policy=self.policy,
        )

    @property
    def wt(self) -> Walkthrough:
        return self.walkthrough

    @property
    def account(self):
        return self.walkthrough.ledger.account

    @property
    def session(self):
        return self.walkthrough.machine.session

    @property
    def step(self) -> str | None:
        current = self.session.current_step
        return current.id if current else None

    def step_status(self, step_id: str) -> str:
        return self.walkthrough.machine.step(step_id).status

    def tx_status(self, step_id: str) -> str | None:
        machine = self.walkthrough.machine
        return machine.transaction_status(machine.step(step_id))

    def start(self, demo_id: str) -> ActionResult:
        return self.walkthrough.start_demo(demo_id)

    def invoke(self, step_id: str) -> ActionResult:
        return self.walkthrough.invoke_step_action(step_id)

    def advance(self, seconds: float) -> None:
        self.scheduler.advance(seconds)

    def play_steps(self, step_wait: float = 1.0) -> None:
        """Invoke every remaining step, letting each one confirm."""
        while self.step is not None:
            r = self.invoke(self.step)
            assert r, r.message
            self.advance(step_wait)

    def play(self, demo_id: str) -> ActionResult:
        r = self.start(demo_id)
        assert r, r.message
        self.play_steps()
        return r

    def notifications(self, level: str | None = None) -> list[tuple[str, str, str]]:
        return [n for n in self.notifier.messages if level is None or n[0] == level]

    def reopen(self) -> None:
        """Close the store and build a fresh Walkthrough on the same database."""
        self.store.close()
        self.store = StateManager(self.db_path)
        self.walkthrough = self._build()

    def close(self):
        self.store.close()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store(tmp_path):
    mgr = StateManager(tmp_path / "state.db")
    yield mgr
    mgr.close()


@pytest.fixture
def harness_factory():
    """Factory fixture that creates WalkthroughHarness instances and cleans up after test."""
    created: list[WalkthroughHarness] = []

    def _make(**kwargs) -> WalkthroughHarness:
        h = WalkthroughHarness(**kwargs)
        created.append(h)
        return h

    yield _make

    for h in created:
        h.close()
