"""Step state machine: gating, failure/retry, single completion, reset."""
from __future__ import annotations

import pytest

from escrow_walkthrough.engine.session import StepMachine
from escrow_walkthrough.engine.tracker import TransactionTracker
from escrow_walkthrough.errors import PreconditionError
from escrow_walkthrough.types import DemoDefinition, ScoringRule, StepDefinition


def _demo(*step_ids, kind="linear", scoring=None):
    return DemoDefinition(
        id="three-steps",
        name="Three Steps",
        kind=kind,
        steps=[StepDefinition(id=s, requires=["wallet"]) for s in step_ids],
        scoring=scoring or ScoringRule(),
    )


def _machine(scheduler, *step_ids, connected=None, **kwargs):
    state = {"connected": True} if connected is None else connected
    machine = StepMachine(
        _demo(*step_ids, **kwargs),
        TransactionTracker(scheduler),
        preconditions={"wallet": lambda: None if state["connected"] else "Connect your wallet."},
    )
    events = []
    machine.on_completed(events.append)
    return machine, events, state


def _statuses(machine):
    return [s.status for s in machine.session.steps]


def test_first_step_starts_current(scheduler):
    machine, _, _ = _machine(scheduler, "a", "b", "c")
    assert _statuses(machine) == ["current", "pending", "pending"]
    assert machine.can_invoke("a")
    assert not machine.can_invoke("b")


def test_later_step_rejected_until_previous_succeeds(scheduler):
    machine, _, _ = _machine(scheduler, "a", "b", "c")
    machine.invoke_action("a")

    with pytest.raises(PreconditionError, match="not available yet"):
        machine.invoke_action("b")
    with pytest.raises(PreconditionError, match="waiting for its transaction"):
        machine.invoke_action("a")
    assert _statuses(machine) == ["current", "pending", "pending"]


def test_success_advances_exactly_one_step(scheduler):
    machine, _, _ = _machine(scheduler, "a", "b", "c")
    tx = machine.invoke_action("a")
    machine.tracker.resolve(tx, "success")

    assert _statuses(machine) == ["completed", "current", "pending"]
    assert machine.session.current_step_index == 1
    with pytest.raises(PreconditionError, match="already completed"):
        machine.invoke_action("a")


def test_failure_keeps_step_current_and_retryable(scheduler):
    machine, _, _ = _machine(scheduler, "a", "b")
    tx = machine.invoke_action("a")
    machine.tracker.resolve(tx, "failed", "rejected by ledger")

    assert _statuses(machine) == ["current", "pending"]
    assert machine.last_failure.message == "rejected by ledger"
    assert not machine.can_invoke("b")

    retry = machine.invoke_action("a")
    assert retry != tx
    assert machine.last_failure is None
    machine.tracker.resolve(retry, "success")
    assert _statuses(machine) == ["completed", "current"]


def test_precondition_blocks_invocation_without_mutation(scheduler):
    machine, _, state = _machine(scheduler, "a", "b")
    state["connected"] = False

    with pytest.raises(PreconditionError, match="Connect your wallet"):
        machine.invoke_action("a")
    assert machine.tracker.pending() == []
    assert machine.session.started_at is None


def test_unknown_step(scheduler):
    machine, _, _ = _machine(scheduler, "a")
    with pytest.raises(PreconditionError, match='Step "zzz" not found'):
        machine.invoke_action("zzz")


def test_completion_emitted_once(scheduler):
    machine, events, _ = _machine(scheduler, "a", "b", scoring=ScoringRule(fixed=90))
    for step_id in ("a", "b"):
        tx = machine.invoke_action(step_id)
        scheduler.advance(2)
        machine.tracker.resolve(tx, "success")

    assert _statuses(machine) == ["completed", "completed"]
    assert len(events) == 1
    assert events[0].demo_id == "three-steps"
    assert events[0].score == 90
    assert events[0].elapsed_seconds == 4

    assert not machine.complete()
    assert len(events) == 1
    with pytest.raises(PreconditionError, match="already completed"):
        machine.invoke_action("b")


def test_dispute_kind_defers_completion(scheduler):
    machine, events, _ = _machine(scheduler, "a", kind="dispute")
    machine.tracker.resolve(machine.invoke_action("a"), "success")

    assert machine.steps_done
    assert events == []
    assert machine.complete()
    assert len(events) == 1


def test_auto_resolve_advances_step(scheduler):
    machine, _, _ = _machine(scheduler, "a", "b")
    machine.invoke_action("a")

    scheduler.advance(2.5)
    assert _statuses(machine) == ["current", "pending"]
    scheduler.advance(0.5)
    assert _statuses(machine) == ["completed", "current"]


def test_reset_cancels_pending_timer(scheduler):
    machine, events, _ = _machine(scheduler, "a", "b")
    machine.tracker.resolve(machine.invoke_action("a"), "success")
    machine.invoke_action("b")

    assert machine.reset() == 1
    scheduler.advance(10)

    assert _statuses(machine) == ["current", "pending"]
    assert machine.session.current_step_index == 0
    assert machine.session.generation == 1
    assert not machine.completed
    assert events == []
    assert scheduler.pending == []


def test_score_rule():
    rule = ScoringRule(base=85, quick_bonus=10, quick_seconds=300, bonus=5)
    assert rule.score(120) == 100
    assert rule.score(300) == 90
    assert ScoringRule(base=95, bonus=20).score(0) == 100
    assert ScoringRule(fixed=95).score(9999) == 95


def test_demo_without_steps_rejected(scheduler):
    with pytest.raises(ValueError, match="no steps"):
        StepMachine(DemoDefinition(id="empty", name="Empty"), TransactionTracker(scheduler))
