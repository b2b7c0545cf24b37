"""walkthrough reset — delete the account so the wallet starts over."""
from __future__ import annotations

import sys
from pathlib import Path

from escrow_walkthrough.config import WORKSPACE_DIR, load_settings
from escrow_walkthrough.store.state import StateManager


def cmd_reset(cwd: str, wallet: str | None = None, include_completions: bool = False):
    settings = load_settings(Path(cwd) / WORKSPACE_DIR, wallet_id=wallet)
    if not settings.wallet_id:
        print("No wallet configured. Pass --wallet <address> or set WALKTHROUGH_WALLET.", file=sys.stderr)
        sys.exit(1)

    if not settings.db_path.exists():
        print("Nothing to reset — no state database found.")
        return

    mgr = StateManager(settings.db_path)
    try:
        account = mgr.read(settings.wallet_id)
        if account is None:
            print(f"No account for {settings.wallet_id}.")
            return
        print(f"Deleting account {account.wallet_id} (level {account.level}, {account.total_points} points)")
        mgr.delete_account(account.wallet_id, include_completions=include_completions)
    finally:
        mgr.close()

    if include_completions:
        print("Account and completion history cleared.")
    else:
        print("Account cleared. Past completions are kept, so replays earn replay points.")
