"""Step state machine: one guided demo run, gated by transaction outcomes.

A step is `current` while its action is available, including after a failed
attempt; failure belongs to the transaction, never to the step. The session
advances only when the tracker reports `success` for the step's latest
transaction, and emits its completion event at most once per run.
"""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from escrow_walkthrough.errors import PreconditionError
from escrow_walkthrough.types import DemoDefinition, DemoSession, Step, TransactionRecord, WorkflowCompleted

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrow_walkthrough.engine.tracker import TransactionTracker

log = logging.getLogger("escrow_walkthrough.session")


def build_session(demo: DemoDefinition, session_id: str | None = None) -> DemoSession:
    steps = [
        Step(
            id=sd.id,
            order=i,
            status="current" if i == 0 else "pending",
            title=sd.title or sd.id,
            action=sd.action or sd.id,
            requires=list(sd.requires),
        )
        for i, sd in enumerate(demo.steps)
    ]
    return DemoSession(id=session_id or uuid.uuid4().hex, demo_id=demo.id, steps=steps)


class StepMachine:
    def __init__(
        self,
        demo: DemoDefinition,
        tracker: TransactionTracker,
        *,
        # name -> check returning None when satisfied, or an advisory message
        preconditions: dict[str, Callable[[], str | None]] | None = None,
        session_id: str | None = None,
    ):
        if not demo.steps:
            raise ValueError(f'Demo "{demo.id}" has no steps')
        self.demo = demo
        self.tracker = tracker
        self.preconditions = dict(preconditions or {})
        self.session = build_session(demo, session_id)
        self.last_failure: TransactionRecord | None = None
        self._completion_listeners: list[Callable[[WorkflowCompleted], None]] = []
        tracker.on_resolved(self._on_transaction_resolved)

    # ─── Queries ───

    def on_completed(self, listener: Callable[[WorkflowCompleted], None]) -> None:
        self._completion_listeners.append(listener)

    def step(self, step_id: str) -> Step:
        for step in self.session.steps:
            if step.id == step_id:
                return step
        raise PreconditionError(
            f'Step "{step_id}" not found. Available steps: '
            f"{', '.join(s.id for s in self.session.steps)}"
        )

    def transaction_status(self, step: Step) -> str | None:
        return self.tracker.status(step.pending_transaction_id)

    def can_invoke(self, step_id: str) -> bool:
        try:
            self._check_invocable(self.step(step_id))
        except PreconditionError:
            return False
        return True

    @property
    def steps_done(self) -> bool:
        return self.session.finished_steps

    @property
    def completed(self) -> bool:
        return self.session.completion_triggered

    # ─── Transitions ───

    def invoke_action(self, step_id: str) -> str:
        """Start the step's action. Returns the new transaction id."""
        step = self.step(step_id)
        self._check_invocable(step)

        if self.session.started_at is None:
            self.session.started_at = self.tracker.scheduler.now()
        tx_id = self.tracker.create(step.id)
        step.pending_transaction_id = tx_id
        self.last_failure = None
        log.info('session %s: step "%s" invoked (tx %s)', self.session.id[:8], step.id, tx_id[:12])
        return tx_id

    def complete(self) -> bool:
        """Fire the completion event once. Returns False if it already fired."""
        if self.session.completion_triggered:
            return False
        self.session.completion_triggered = True

        started = self.session.started_at
        elapsed = round(self.tracker.scheduler.now() - started) if started is not None else 0
        event = WorkflowCompleted(
            demo_id=self.demo.id,
            score=self.demo.scoring.score(elapsed),
            elapsed_seconds=max(0, elapsed),
            session_id=self.session.id,
        )
        log.info('session %s: demo "%s" completed (score %d)', self.session.id[:8], event.demo_id, event.score)
        for listener in list(self._completion_listeners):
            listener(event)
        return True

    def reset(self) -> int:
        """Back to step one. Returns how many in-flight transactions were cancelled."""
        cancelled = self.tracker.cancel_all()
        session = self.session
        session.current_step_index = 0
        session.completion_triggered = False
        session.started_at = None
        session.generation += 1
        for i, step in enumerate(session.steps):
            step.status = "current" if i == 0 else "pending"
            step.pending_transaction_id = None
        self.last_failure = None
        log.info("session %s reset (generation %d, %d cancelled)", session.id[:8], session.generation, cancelled)
        return cancelled

    # ─── Private ───

    def _check_invocable(self, step: Step) -> None:
        session = self.session
        if session.finished_steps:
            raise PreconditionError(f'All steps of "{self.demo.name}" are already completed.')
        if step.order != session.current_step_index:
            current = session.steps[session.current_step_index]
            if step.order < session.current_step_index:
                raise PreconditionError(f'Step "{step.id}" is already completed.')
            raise PreconditionError(
                f'Step "{step.id}" is not available yet. Finish "{current.id}" first.'
            )
        if step.order > 0:
            previous = session.steps[step.order - 1]
            if self.transaction_status(previous) != "success":
                raise PreconditionError(
                    f'Step "{previous.id}" has not been confirmed yet.'
                )
        if self.transaction_status(step) == "pending":
            raise PreconditionError(
                f'Step "{step.id}" is waiting for its transaction to confirm.'
            )
        for name in step.requires:
            check = self.preconditions.get(name)
            if check is None:
                raise PreconditionError(f'Step "{step.id}" requires unknown precondition "{name}".')
            problem = check()
            if problem:
                raise PreconditionError(problem)

    def _on_transaction_resolved(self, record: TransactionRecord) -> None:
        step = next(
            (s for s in self.session.steps if s.pending_transaction_id == record.id), None
        )
        if step is None:
            return
        if record.status == "failed":
            self.last_failure = record
            log.info('session %s: step "%s" failed: %s', self.session.id[:8], step.id, record.message)
            return

        step.status = "completed"
        self.session.current_step_index = step.order + 1
        if not self.session.finished_steps:
            self.session.steps[self.session.current_step_index].status = "current"
        elif self.demo.kind == "linear":
            self.complete()
