"""MCP Server — exposes walkthrough_* tools.

Unlike the CLI, the server keeps one Walkthrough alive for the whole process,
so a demo session (and its pending transactions) survives between tool calls.
Tools are coroutines: they run on the server's event loop, which is also where
auto-resolve timers and ledger confirmations fire.
"""
from __future__ import annotations

import json
import os
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from escrow_walkthrough.config import WORKSPACE_DIR, load_settings
from escrow_walkthrough.engine import ActionResult, Walkthrough
from escrow_walkthrough.engine.scheduler import AsyncioScheduler
from escrow_walkthrough.integrations.services import RecordingNotifier

mcp = FastMCP("escrow-walkthrough")

_notifier = RecordingNotifier()
_walkthrough: Walkthrough | None = None


def _get_walkthrough() -> Walkthrough:
    global _walkthrough
    if _walkthrough is None:
        settings = load_settings(Path(os.getcwd()) / WORKSPACE_DIR)
        _walkthrough = Walkthrough.from_settings(settings, AsyncioScheduler(), notifier=_notifier)
    return _walkthrough


def _reply(result: ActionResult) -> str:
    out = result.to_dict()
    notes = _notifier.drain()
    if notes:
        out["notifications"] = [{"level": lv, "title": t, "message": m} for lv, t, m in notes]
    return json.dumps(out, ensure_ascii=False, indent=2)


def _error(e: Exception) -> str:
    return json.dumps({"error": str(e)}, ensure_ascii=False)


@mcp.tool()
async def walkthrough_connect(wallet_id: str, display_name: str = "") -> str:
    """Connect a wallet; creates the account on first connection."""
    try:
        wt = _get_walkthrough()
        wt.wallet.connect(wallet_id)
        return _reply(wt.connect(display_name))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_get_status() -> str:
    """Account progress, the running demo's steps, milestones and unlocks."""
    try:
        return json.dumps(_get_walkthrough().get_status(), ensure_ascii=False, indent=2)
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_get_history(limit: int = 20) -> str:
    """Recent account events (step transactions, completions, badges, quests, claps)."""
    try:
        return json.dumps(_get_walkthrough().get_history(limit), ensure_ascii=False, indent=2)
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_start_demo(demo_id: str) -> str:
    """Start (or restart) a demo session."""
    try:
        return _reply(_get_walkthrough().start_demo(demo_id))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_invoke_step(step_id: str) -> str:
    """Invoke the current step's action. Confirmation arrives asynchronously."""
    try:
        return _reply(_get_walkthrough().invoke_step_action(step_id))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_resolve_transaction(transaction_id: str, outcome: str, message: str = "") -> str:
    """Settle a pending transaction by hand: outcome is success or failed."""
    try:
        return _reply(_get_walkthrough().resolve_transaction(transaction_id, outcome, message))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_reset_session() -> str:
    """Back to step one; cancels every pending transaction."""
    try:
        return _reply(_get_walkthrough().reset_session())
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_milestone(action: str, milestone_id: str, role: str, reason: str = "") -> str:
    """Milestone action: complete (worker), approve (client) or dispute (client, needs reason)."""
    try:
        wt = _get_walkthrough()
        match action:
            case "complete":
                result = wt.complete_milestone(milestone_id, role)
            case "approve":
                result = wt.approve_milestone(milestone_id, role)
            case "dispute":
                result = wt.raise_dispute(milestone_id, reason, role)
            case _:
                return _error(ValueError(f"Unknown milestone action {action!r}"))
        return _reply(result)
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_resolve_dispute(
    dispute_id: str, resolution: str, reason: str = "", role: str = "arbitrator"
) -> str:
    """Arbitrator settles a dispute: approve, reject or modify."""
    try:
        return _reply(_get_walkthrough().resolve_dispute(dispute_id, resolution, reason or None, role))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_release_all(role: str = "client") -> str:
    """Release every milestone's funds; completes the dispute demo."""
    try:
        return _reply(_get_walkthrough().release_all(role))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_claim_badge() -> str:
    """Claim the Nexus Master badge once every main demo badge is held."""
    try:
        return _reply(_get_walkthrough().claim_composite_badge())
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_clap(demo_id: str) -> str:
    """Clap for a demo, once per account."""
    try:
        return _reply(_get_walkthrough().clap_demo(demo_id))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_complete_quest(quest_id: str) -> str:
    """Mark a quest as done."""
    try:
        return _reply(_get_walkthrough().complete_quest(quest_id))
    except Exception as e:
        return _error(e)


@mcp.tool()
async def walkthrough_leaderboard(limit: int = 10) -> str:
    """Top accounts by points, with the connected wallet's rank."""
    try:
        return json.dumps(_get_walkthrough().get_leaderboard(limit), ensure_ascii=False, indent=2)
    except Exception as e:
        return _error(e)

def run_server():
    mcp.run(transport="stdio")
