"""walkthrough run <demo> — play a demo end to end on the asyncio loop."""
from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

from escrow_walkthrough.commands.common import open_walkthrough
from escrow_walkthrough.errors import TransactionFailure

if TYPE_CHECKING:
    from escrow_walkthrough.engine import ActionResult, Walkthrough

MAX_ATTEMPTS = 3

DISPUTE_REASON = "Delivered designs do not match the agreed mockups"


def cmd_run(demo_id: str, cwd: str, wallet: str | None = None, fail_action: str | None = None, strict: bool = False):
    asyncio.run(_run(demo_id, cwd, wallet, fail_action, strict))


async def _run(demo_id: str, cwd: str, wallet: str | None, fail_action: str | None, strict: bool):
    walkthrough = open_walkthrough(cwd, wallet, policy="strict" if strict else None)
    try:
        demo = walkthrough.demos.get(demo_id)
        if demo is None:
            print(f"Unknown demo: {demo_id}. Available: {', '.join(walkthrough.demos)}", file=sys.stderr)
            sys.exit(1)
        if fail_action:
            walkthrough.ledger_client.fail_actions.add(fail_action)

        result = walkthrough.start_demo(demo_id)
        if not result:
            print(result.message, file=sys.stderr)
            sys.exit(1)
        print(result.message)

        for step in demo.steps:
            await _play_step(walkthrough, step.id)
        if demo.kind == "dispute":
            _play_milestones(walkthrough)

        _print_outcome(walkthrough)
    finally:
        walkthrough.close()


async def _play_step(walkthrough: Walkthrough, step_id: str):
    for attempt in range(1, MAX_ATTEMPTS + 1):
        result = walkthrough.invoke_step_action(step_id)
        if not result:
            print(f"✗ {result.message}", file=sys.stderr)
            sys.exit(1)
        print(f"→ {result.message}")
        try:
            await walkthrough.wait_for(result.payload["transaction_id"])
            return
        except TransactionFailure as e:
            print(f"  ↻ {step_id} failed ({e.message}), attempt {attempt}/{MAX_ATTEMPTS}")
    print(f'✗ Step "{step_id}" kept failing, giving up.', file=sys.stderr)
    sys.exit(1)


def _play_milestones(walkthrough: Walkthrough):
    """Worker delivers everything, the client disputes the first milestone, the arbitrator settles it."""
    first, *rest = list(walkthrough.board.milestones.values())
    for m in [first, *rest]:
        _show(walkthrough.complete_milestone(m.id))
    for m in rest:
        _show(walkthrough.approve_milestone(m.id))

    dispute = walkthrough.raise_dispute(first.id, DISPUTE_REASON)
    _show(dispute)
    _show(walkthrough.release_all())
    _show(walkthrough.resolve_dispute(dispute.payload["dispute_id"], "approve", "Revised designs accepted"))
    released = walkthrough.release_all()
    _show(released)
    if not released:
        sys.exit(1)


def _show(result: ActionResult):
    mark = "✓" if result.kind == "ok" else ("·" if result.success else "✗")
    print(f"{mark} {result.message}")


def _print_outcome(walkthrough: Walkthrough):
    print()
    receipt = walkthrough.last_receipt
    if receipt is None:
        print("Demo finished. No new rewards: it was already completed on this account.")
    else:
        kind = "first completion" if receipt.is_first_completion else "replay"
        print(f"Demo finished with score {receipt.score} ({kind}): "
              f"+{receipt.points_earned} points, +{receipt.experience_earned} XP")
    account = walkthrough.ledger.account
    print(f"Level {account.level} · {account.experience} XP · {account.total_points} points")
