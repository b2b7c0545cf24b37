"""Thin CLI router — dispatches to commands."""
from __future__ import annotations

import os
import sys

USAGE = """\
walkthrough — guided escrow demos with progression and rewards

Usage:
  walkthrough demos                 Compile and validate the demo catalog
  walkthrough run <demo>            Play a demo end to end against the simulated ledger
        [--fail <action>]           Make the first submission of <action> fail
        [--strict]                  Never auto-confirm; wait for the ledger
  walkthrough status                Account level, points, badges and unlocks
  walkthrough claim                 Claim the Nexus Master badge
  walkthrough clap <demo>           Clap for a demo (once per account)
  walkthrough quest <quest-id>      Mark a quest as done
  walkthrough history [--limit N]   Recent account events
  walkthrough leaderboard           Top accounts by points
        [--limit N]
  walkthrough reset [--all]         Delete the account (--all also forgets past completions)

Options:
  --wallet <address>                Wallet to act as (default: config or WALKTHROUGH_WALLET)

Internal:
  walkthrough mcp-server            Start MCP Server
"""


def _pop_option(args: list[str], name: str, flag: bool = False) -> str | bool | None:
    if name not in args:
        return False if flag else None
    idx = args.index(name)
    if flag:
        del args[idx]
        return True
    if idx + 1 >= len(args):
        print(f"Option {name} needs a value", file=sys.stderr)
        sys.exit(1)
    value = args[idx + 1]
    del args[idx:idx + 2]
    return value


def main():
    args = sys.argv[1:]
    cwd = os.getcwd()
    wallet = _pop_option(args, "--wallet")
    command = args[0] if args else None

    from escrow_walkthrough.logging_config import setup_logging
    setup_logging()

    if command == "demos":
        from escrow_walkthrough.commands.demos import cmd_demos
        cmd_demos(cwd)

    elif command == "run":
        fail = _pop_option(args, "--fail")
        strict = _pop_option(args, "--strict", flag=True)
        if len(args) < 2:
            print("Usage: walkthrough run <demo-id>", file=sys.stderr)
            sys.exit(1)
        from escrow_walkthrough.commands.run import cmd_run
        cmd_run(args[1], cwd, wallet=wallet, fail_action=fail, strict=strict)

    elif command == "status":
        from escrow_walkthrough.commands.status import cmd_status
        cmd_status(cwd, wallet=wallet)

    elif command == "claim":
        from escrow_walkthrough.commands.rewards import cmd_claim
        cmd_claim(cwd, wallet=wallet)

    elif command == "clap":
        if len(args) < 2:
            print("Usage: walkthrough clap <demo-id>", file=sys.stderr)
            sys.exit(1)
        from escrow_walkthrough.commands.rewards import cmd_clap
        cmd_clap(args[1], cwd, wallet=wallet)

    elif command == "quest":
        if len(args) < 2:
            print("Usage: walkthrough quest <quest-id>", file=sys.stderr)
            sys.exit(1)
        from escrow_walkthrough.commands.rewards import cmd_quest
        cmd_quest(args[1], cwd, wallet=wallet)

    elif command == "history":
        limit = _pop_option(args, "--limit")
        from escrow_walkthrough.commands.status import cmd_history
        cmd_history(cwd, wallet=wallet, limit=int(limit) if limit else 20)

    elif command == "leaderboard":
        limit = _pop_option(args, "--limit")
        from escrow_walkthrough.commands.status import cmd_leaderboard
        cmd_leaderboard(cwd, wallet=wallet, limit=int(limit) if limit else 10)

    elif command == "reset":
        everything = _pop_option(args, "--all", flag=True)
        from escrow_walkthrough.commands.reset import cmd_reset
        cmd_reset(cwd, wallet=wallet, include_completions=everything)

    elif command == "mcp-server":
        from escrow_walkthrough.integrations.mcp_server import run_server
        run_server()

    elif command in ("help", "--help", "-h", None):
        print(USAGE)

    else:
        print(f"Unknown command: {command}", file=sys.stderr)
        print(USAGE)
        sys.exit(1)
