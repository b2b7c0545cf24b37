"""Walkthrough facade: one wallet, one active demo session, injected collaborators.

Every user-facing operation returns an ActionResult. Rejections never raise:
  PreconditionError  -> success=False, kind="precondition", warning notification
  ConflictError      -> success=True,  kind="noop",         info notification
  failed transaction -> success=False, kind="failed",       retryable
Catalog and lookup errors (unknown demo or badge ids) propagate.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from escrow_walkthrough.compiler import bundled_demos_dir, format_errors, has_errors, load_demos, validate_demo
from escrow_walkthrough.engine.disputes import DisputeBoard
from escrow_walkthrough.engine.policy import AUTO_RESOLVE_MESSAGE, get_policy
from escrow_walkthrough.engine.session import StepMachine
from escrow_walkthrough.engine.tracker import TransactionTracker
from escrow_walkthrough.errors import (
    CatalogError,
    ConflictError,
    PreconditionError,
    TransactionFailure,
    UnknownDemoError,
)
from escrow_walkthrough.integrations.services import (
    LoggingNotifier,
    Operation,
    SimulatedLedgerClient,
    StaticWallet,
)
from escrow_walkthrough.rewards import gating
from escrow_walkthrough.rewards.catalog import BADGES, CAPSTONE_DEMO_ID
from escrow_walkthrough.rewards.ledger import RewardLedger
from escrow_walkthrough.store.state import StateManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrow_walkthrough.config import Settings
    from escrow_walkthrough.engine.policy import CompletionPolicy
    from escrow_walkthrough.engine.scheduler import Scheduler
    from escrow_walkthrough.integrations.services import (
        Confirmation,
        LedgerClient,
        Notifier,
        WalletProvider,
    )
    from escrow_walkthrough.types import (
        CompletionReceipt,
        DemoDefinition,
        TransactionRecord,
        WorkflowCompleted,
    )

log = logging.getLogger("escrow_walkthrough.executor")


# ─── Result type ───

class ActionResult:
    def __init__(
        self,
        success: bool,
        message: str,
        kind: str = "ok",  # ok | pending | noop | precondition | failed
        payload: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        self.success = success
        self.message = message
        self.kind = kind
        self.payload = payload or {}
        self.retryable = retryable

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "kind": self.kind,
            "payload": self.payload,
            "retryable": self.retryable,
        }


# ─── Facade ───

class Walkthrough:
    def __init__(
        self,
        demos: dict[str, DemoDefinition],
        store: StateManager,
        scheduler: Scheduler,
        *,
        wallet: WalletProvider,
        ledger_client: LedgerClient | None = None,
        notifier: Notifier | None = None,
        policy: CompletionPolicy | None = None,
    ):
        self.demos = demos
        self.store = store
        self.scheduler = scheduler
        self.wallet = wallet
        self.ledger_client = ledger_client or SimulatedLedgerClient(scheduler)
        self.notifier = notifier or LoggingNotifier()
        self.policy = policy
        self.ledger = RewardLedger(
            store,
            base_points={d.id: d.base_points for d in demos.values()},
            known_demos=set(demos),
        )
        self.tracker: TransactionTracker | None = None
        self.machine: StepMachine | None = None
        self.board: DisputeBoard | None = None
        self.last_receipt: CompletionReceipt | None = None
        self._waiters: dict[str, list[asyncio.Future]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scheduler: Scheduler,
        *,
        notifier: Notifier | None = None,
        ledger_client: LedgerClient | None = None,
    ) -> Walkthrough:
        demos = load_catalog(settings.demos_dir)
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(
            demos,
            StateManager(settings.db_path),
            scheduler,
            wallet=StaticWallet(settings.wallet_id, settings.network),
            ledger_client=ledger_client or SimulatedLedgerClient(scheduler, settings.ledger_latency),
            notifier=notifier,
            policy=get_policy(settings.policy, settings.auto_resolve_ms),
        )

    # ─── Account ───

    def connect(self, display_name: str = "") -> ActionResult:
        return self._attempt(self._connect, display_name)

    def _connect(self, display_name: str) -> ActionResult:
        account = self._ensure_account(display_name)
        return ActionResult(True, f"Connected as {account.wallet_id}", payload={"level": account.level})

    def _ensure_account(self, display_name: str = ""):
        if not self.wallet.is_connected:
            raise PreconditionError("Connect your wallet first.")
        wallet_id = self.wallet.wallet_id
        account = self.ledger.account
        if account is None or account.wallet_id != wallet_id:
            account = self.ledger.open_account(wallet_id, display_name, self.wallet.network)
        return account

    def _wallet_problem(self) -> str | None:
        if not self.wallet.is_connected:
            return "Connect your wallet to continue."
        return None

    # ─── Session ───

    def start_demo(self, demo_id: str) -> ActionResult:
        demo = self.demos.get(demo_id)
        if demo is None:
            raise UnknownDemoError(demo_id)
        return self._attempt(self._start_demo, demo)

    def _start_demo(self, demo: DemoDefinition) -> ActionResult:
        self._ensure_account()
        if self.machine is not None:
            self.machine.reset()
            self._cancel_waiters()

        self.tracker = TransactionTracker(self.scheduler, self.policy)
        # Registered before the machine so a step is logged ahead of the completion it triggers
        self.tracker.on_resolved(self._on_transaction_resolved)
        self.machine = StepMachine(demo, self.tracker, preconditions={"wallet": self._wallet_problem})
        self.board = DisputeBoard(demo.milestones) if demo.kind == "dispute" else None
        self.machine.on_completed(self._on_workflow_completed)
        self.last_receipt = None
        log.info('started demo "%s" (session %s)', demo.id, self.machine.session.id[:8])
        return ActionResult(
            True,
            f'Demo "{demo.name}" started, current step: {demo.steps[0].id}',
            payload={"session_id": self.machine.session.id, "steps": [s.id for s in demo.steps]},
        )

    def invoke_step_action(self, step_id: str) -> ActionResult:
        return self._attempt(self._invoke_step_action, step_id)

    def _invoke_step_action(self, step_id: str) -> ActionResult:
        machine = self._require_machine()
        problem = self._wallet_problem()
        if problem:
            raise PreconditionError(problem)
        tx_id = machine.invoke_action(step_id)
        step = machine.step(step_id)
        generation = machine.session.generation
        operation = Operation(
            type=step.action,
            step_id=step.id,
            transaction_id=tx_id,
            payload={"demo_id": machine.demo.id, "wallet_id": self.wallet.wallet_id},
        )
        self.ledger_client.submit(
            operation, lambda c: self._on_confirmation(machine, generation, tx_id, c)
        )
        return ActionResult(
            True,
            f'Step "{step.title}" submitted, waiting for confirmation',
            kind="pending",
            payload={"transaction_id": tx_id, "step": step.id},
        )

    def resolve_transaction(self, tx_id: str, outcome: str, message: str = "") -> ActionResult:
        return self._attempt(self._resolve_transaction, tx_id, outcome, message)

    def _resolve_transaction(self, tx_id: str, outcome: str, message: str) -> ActionResult:
        tracker = self._require_machine().tracker
        try:
            changed = tracker.resolve(tx_id, outcome, message)
        except ValueError as e:
            raise PreconditionError(str(e)) from e
        if not changed:
            raise ConflictError(f"Transaction {tx_id[:12]} is already settled or no longer tracked.")
        record = tracker.get(tx_id)
        if record.status == "failed":
            return self._failure_result(TransactionFailure(record.id, record.message or "Transaction failed"))
        return ActionResult(True, f"Transaction {tx_id[:12]} confirmed", payload={"transaction_id": tx_id})

    def reset_session(self) -> ActionResult:
        return self._attempt(self._reset_session)

    def _reset_session(self) -> ActionResult:
        machine = self._require_machine()
        cancelled = machine.reset()
        if self.board is not None:
            self.board.reset()
        self._cancel_waiters()
        self.last_receipt = None
        self.notifier.notify("info", "Demo reset", f'"{machine.demo.name}" is back at step one.')
        return ActionResult(True, "Session reset", payload={"cancelled_transactions": cancelled})

    async def wait_for(self, tx_id: str) -> TransactionRecord:
        """Suspend until the transaction settles. Raises TransactionFailure if it failed."""
        tracker = self._require_machine().tracker
        record = tracker.get(tx_id)
        if record is None:
            raise PreconditionError(f"Transaction {tx_id[:12]} is not tracked.")
        if not record.terminal:
            future = asyncio.get_running_loop().create_future()
            self._waiters.setdefault(tx_id, []).append(future)
            record = await future
        if record.status == "failed":
            raise TransactionFailure(record.id, record.message or "Transaction failed")
        return record

    # ─── Milestones & disputes ───

    def complete_milestone(self, milestone_id: str, role: str = "worker") -> ActionResult:
        return self._attempt(self._board_action, "complete_milestone", milestone_id, role=role)

    def approve_milestone(self, milestone_id: str, role: str = "client") -> ActionResult:
        return self._attempt(self._board_action, "approve", milestone_id, role=role)

    def raise_dispute(self, milestone_id: str, reason: str, role: str = "client") -> ActionResult:
        return self._attempt(self._board_action, "raise_dispute", milestone_id, reason, role=role)

    def resolve_dispute(
        self, dispute_id: str, resolution: str, reason: str | None = None, role: str = "arbitrator"
    ) -> ActionResult:
        return self._attempt(self._board_action, "resolve", dispute_id, resolution, reason, role=role)

    def _board_action(self, method: str, *args, role: str) -> ActionResult:
        board = self._require_board()
        result = getattr(board, method)(*args, role=role)
        if method == "raise_dispute":
            self.notifier.notify("warning", "Dispute raised", f"{result.id}: {result.reason}")
            return ActionResult(True, f"Dispute {result.id} opened", payload={"dispute_id": result.id})
        return ActionResult(
            True,
            f'Milestone "{result.title}" is now {result.status}',
            payload={"milestone_id": result.id, "status": result.status},
        )

    def release_all(self, role: str = "client") -> ActionResult:
        return self._attempt(self._release_all, role)

    def _release_all(self, role: str) -> ActionResult:
        board = self._require_board()
        released = board.release_all(role)
        self.notifier.notify("success", "Funds released", f"{len(released)} milestones paid out")
        self._require_machine().complete()
        return ActionResult(
            True,
            f"Released {len(released)} milestones",
            payload={"released": [m.id for m in released], **self._receipt_payload()},
        )

    # ─── Rewards ───

    def complete_demo(self, demo_id: str, score: int | None = None, elapsed_seconds: int = 0) -> ActionResult:
        return self._attempt(self._complete_demo, demo_id, score, elapsed_seconds)

    def _complete_demo(self, demo_id: str, score: int | None, elapsed_seconds: int) -> ActionResult:
        self._ensure_account()
        if score is None:
            receipt = self.ledger.complete_demo(demo_id, elapsed_seconds=elapsed_seconds)
        else:
            receipt = self.ledger.complete_demo(demo_id, score, elapsed_seconds)
        if receipt is None:
            raise ConflictError(f'Demo "{demo_id}" is already completed.')
        self._record_stats(demo_id, elapsed_seconds, receipt.score)
        self._announce(receipt)
        return ActionResult(True, f"+{receipt.points_earned} points", payload=_receipt_dict(receipt))

    def claim_composite_badge(self) -> ActionResult:
        return self._attempt(self._claim_composite_badge)

    def _claim_composite_badge(self) -> ActionResult:
        self._ensure_account()
        receipt = self.ledger.claim_composite_badge()
        if receipt is None:
            raise ConflictError("Nexus Master is already claimed.")
        self._record_stats(CAPSTONE_DEMO_ID, 60, receipt.score)
        self._announce(receipt)
        return ActionResult(True, "Nexus Master claimed", payload=_receipt_dict(receipt))

    def complete_quest(self, quest_id: str) -> ActionResult:
        return self._attempt(self._complete_quest, quest_id)

    def _complete_quest(self, quest_id: str) -> ActionResult:
        self._ensure_account()
        before = set(self.ledger.account.earned_badges)
        self.ledger.complete_quest(quest_id)
        new_badges = sorted(self.ledger.account.earned_badges - before)
        for badge_id in new_badges:
            self.notifier.notify("success", "Badge earned", BADGES[badge_id].name)
        return ActionResult(True, f'Quest "{quest_id}" completed', payload={"badges": new_badges})

    def clap_demo(self, demo_id: str) -> ActionResult:
        if demo_id not in self.demos and demo_id != CAPSTONE_DEMO_ID:
            raise UnknownDemoError(demo_id)
        return self._attempt(self._clap_demo, demo_id)

    def _clap_demo(self, demo_id: str) -> ActionResult:
        self._ensure_account()
        if not self.ledger.clap_demo(demo_id):
            raise ConflictError(f'You already clapped for "{demo_id}".')
        self.store.increment_clap(demo_id)
        stats = self.store.get_demo_stats(demo_id)
        return ActionResult(True, f'Clapped for "{demo_id}"', payload={"total_claps": stats.total_claps})

    def has_badge(self, badge_id: str) -> bool:
        return self.ledger.has_badge(badge_id)

    def has_completed_demo(self, demo_id: str) -> bool:
        return self.ledger.has_completed_demo(demo_id)

    # ─── Queries ───

    def get_status(self) -> dict[str, Any]:
        account = self.ledger.account
        result: dict[str, Any] = {
            "wallet": {"connected": self.wallet.is_connected, "wallet_id": self.wallet.wallet_id},
            "account": None,
            "session": None,
        }
        if account is not None:
            xp, span = gating.experience_progress(account)
            done, total = gating.main_demo_progress(account)
            result["account"] = {
                "level": account.level,
                "experience": account.experience,
                "level_progress": f"{xp}/{span}",
                "total_points": account.total_points,
                "completed_demos": sorted(account.completed_demos),
                "earned_badges": sorted(account.earned_badges),
                "main_demos": f"{done}/{total}",
                "capstone_ready": gating.capstone_ready(account),
                "mini_games_unlocked": gating.mini_games_unlocked(account),
                "available_quests": [q.id for q in gating.available_quests(account)],
            }

        machine = self.machine
        if machine is not None:
            session = machine.session
            current = session.current_step
            result["session"] = {
                "demo_id": machine.demo.id,
                "demo_name": machine.demo.name,
                "session_id": session.id,
                "current_step": current.id if current else None,
                "steps": [
                    {"id": s.id, "title": s.title, "status": s.status,
                     "transaction": machine.transaction_status(s)}
                    for s in session.steps
                ],
                "completed": session.completion_triggered,
                "last_failure": machine.last_failure.message if machine.last_failure else None,
            }
            if self.board is not None:
                result["session"]["milestones"] = [
                    {"id": m.id, "title": m.title, "amount": m.amount, "status": m.status}
                    for m in self.board.milestones.values()
                ]
                result["session"]["disputes"] = [
                    {"id": d.id, "milestone_id": d.milestone_id, "status": d.status,
                     "reason": d.reason, "resolution": d.resolution}
                    for d in self.board.disputes
                ]
                result["session"]["release_blockers"] = self.board.release_blockers()
        return result

    def get_history(self, limit: int = 20, type: str | None = None) -> list[dict]:
        wallet_id = self.wallet.wallet_id
        if wallet_id is None:
            return []
        return self.store.get_history(wallet_id, limit, type)

    def get_leaderboard(self, limit: int = 10) -> dict[str, Any]:
        """Top accounts, the connected wallet's rank, and its neighbourhood when outside the top."""
        wallet_id = self.wallet.wallet_id
        rank = self.store.get_rank(wallet_id) if wallet_id else None
        top = self.store.get_leaderboard(limit)
        around = self.store.get_leaderboard_around(wallet_id, radius=2) if rank and rank > limit else []
        for entry in (*top, *around):
            entry["is_current"] = entry["wallet_id"] == wallet_id
        return {"total_accounts": self.store.count_accounts(), "rank": rank, "top": top, "around": around}

    def get_rank(self) -> int | None:
        wallet_id = self.wallet.wallet_id
        return self.store.get_rank(wallet_id) if wallet_id else None

    def close(self) -> None:
        if self.machine is not None:
            self.machine.reset()
        self._cancel_waiters()
        self.store.close()

    # ─── Callbacks ───

    def _on_confirmation(
        self, machine: StepMachine, generation: int, tx_id: str, confirmation: Confirmation
    ) -> None:
        if machine is not self.machine or machine.session.generation != generation:
            log.debug("dropping late confirmation for tx %s (session was reset)", tx_id[:12])
            return
        machine.tracker.resolve(tx_id, confirmation.outcome, confirmation.message)

    def _on_transaction_resolved(self, record: TransactionRecord) -> None:
        self._log_transaction(record)
        if record.status == "failed":
            failure = TransactionFailure(record.id, record.message or "Transaction failed")
            self.notifier.notify("error", "Transaction failed", f"{failure.message}. Retry the step to try again.")
        elif record.message == AUTO_RESOLVE_MESSAGE:
            self.notifier.notify("info", "Transaction confirmed", record.message)
        else:
            self.notifier.notify("success", "Transaction confirmed", record.message or record.step_id)
        for future in self._waiters.pop(record.id, []):
            if not future.done():
                future.set_result(record)

    def _on_workflow_completed(self, event: WorkflowCompleted) -> None:
        if self.ledger.account is None:
            log.warning('demo "%s" completed with no account loaded; nothing credited', event.demo_id)
            return
        receipt = self.ledger.complete_demo(event.demo_id, event.score, event.elapsed_seconds)
        if receipt is None:
            self.notifier.notify("info", "Demo completed", "Already completed before; no new rewards.")
            return
        self._record_stats(event.demo_id, event.elapsed_seconds, event.score)
        self.last_receipt = receipt
        self._announce(receipt)

    # ─── Private ───

    def _attempt(self, fn: Callable[..., ActionResult], *args, **kwargs) -> ActionResult:
        try:
            return fn(*args, **kwargs)
        except PreconditionError as e:
            self.notifier.notify("warning", "Not available", str(e))
            return ActionResult(False, str(e), kind="precondition")
        except ConflictError as e:
            self.notifier.notify("info", "Nothing to do", str(e))
            return ActionResult(True, str(e), kind="noop")

    def _failure_result(self, failure: TransactionFailure) -> ActionResult:
        return ActionResult(
            False,
            f"{failure.message}. Retry the step to try again.",
            kind="failed",
            payload={"transaction_id": failure.transaction_id},
            retryable=True,
        )

    def _require_machine(self) -> StepMachine:
        if self.machine is None:
            raise PreconditionError("No demo is running. Start one first.")
        return self.machine

    def _require_board(self) -> DisputeBoard:
        machine = self._require_machine()
        if self.board is None:
            raise PreconditionError(f'"{machine.demo.name}" has no milestones.')
        if not machine.steps_done:
            raise PreconditionError("Fund the escrow before working on milestones.")
        return self.board

    def _record_stats(self, demo_id: str, elapsed_seconds: int, score: int) -> None:
        self.store.record_demo_completion(demo_id, elapsed_seconds / 60, score)

    def _log_transaction(self, record: TransactionRecord) -> None:
        account = self.ledger.account
        machine = self.machine
        if account is None or machine is None:
            return
        step = machine.step(record.step_id)
        verb = "confirmed" if record.status == "success" else "failed"
        self.store.add_history(
            account.wallet_id,
            "transaction",
            f'Step "{step.title}" {verb}',
            demo_id=machine.demo.id,
            data={
                "transaction_id": record.id,
                "step": step.id,
                "action": step.action,
                "outcome": record.status,
                "message": record.message,
            },
        )

    def _announce(self, receipt: CompletionReceipt) -> None:
        kind = "first completion" if receipt.is_first_completion else "replay"
        self.notifier.notify(
            "success", "Demo completed",
            f"{receipt.demo_id}: +{receipt.points_earned} points, +{receipt.experience_earned} XP ({kind})",
        )
        if receipt.badge_awarded:
            self.notifier.notify("success", "Badge earned", BADGES[receipt.badge_awarded].name)

    def _receipt_payload(self) -> dict:
        return {"receipt": _receipt_dict(self.last_receipt)} if self.last_receipt else {}

    def _cancel_waiters(self) -> None:
        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.cancel()
        self._waiters.clear()


def _receipt_dict(receipt: CompletionReceipt) -> dict:
    return {
        "demo_id": receipt.demo_id,
        "score": receipt.score,
        "points_earned": receipt.points_earned,
        "experience_earned": receipt.experience_earned,
        "is_first_completion": receipt.is_first_completion,
        "badge_awarded": receipt.badge_awarded,
    }


def load_catalog(demos_dir=None) -> dict[str, DemoDefinition]:
    """Load and validate the demo catalog. Raises CatalogError on any validation error."""
    demos = load_demos(demos_dir or bundled_demos_dir())
    for demo in demos.values():
        errors = validate_demo(demo)
        if has_errors(errors):
            raise CatalogError(f'Demo "{demo.id}" failed validation:\n{format_errors(errors)}')
    return demos
