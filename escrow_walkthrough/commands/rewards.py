"""walkthrough claim / clap / quest — explicit reward actions."""
from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from escrow_walkthrough.commands.common import open_walkthrough

if TYPE_CHECKING:
    from escrow_walkthrough.engine import ActionResult


def _report(result: ActionResult):
    if result.success:
        print(f"{'✓' if result.kind == 'ok' else '·'} {result.message}")
    else:
        print(f"✗ {result.message}", file=sys.stderr)
        sys.exit(1)


def cmd_claim(cwd: str, wallet: str | None = None):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        _report(walkthrough.claim_composite_badge())
    finally:
        walkthrough.close()


def cmd_clap(demo_id: str, cwd: str, wallet: str | None = None):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        _report(walkthrough.clap_demo(demo_id))
    except KeyError:
        print(f"Unknown demo: {demo_id}", file=sys.stderr)
        sys.exit(1)
    finally:
        walkthrough.close()


def cmd_quest(quest_id: str, cwd: str, wallet: str | None = None):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        _report(walkthrough.complete_quest(quest_id))
    finally:
        walkthrough.close()
