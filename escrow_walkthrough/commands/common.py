"""Building a Walkthrough for one CLI invocation."""
from __future__ import annotations

import sys
from pathlib import Path

from escrow_walkthrough.config import WORKSPACE_DIR, load_settings
from escrow_walkthrough.engine import Walkthrough
from escrow_walkthrough.engine.scheduler import AsyncioScheduler
from escrow_walkthrough.errors import CatalogError
from escrow_walkthrough.integrations.services import PrintNotifier


def open_walkthrough(cwd: str, wallet: str | None = None, **overrides) -> Walkthrough:
    """Settings from the workspace, a print notifier, and the account opened. Exits on failure."""
    try:
        settings = load_settings(Path(cwd) / WORKSPACE_DIR, wallet_id=wallet, **overrides)
    except (ValueError, OSError) as e:
        print(f"✗ Bad configuration: {e}", file=sys.stderr)
        sys.exit(1)
    if not settings.wallet_id:
        print("No wallet configured. Pass --wallet <address> or set WALKTHROUGH_WALLET.", file=sys.stderr)
        sys.exit(1)

    try:
        walkthrough = Walkthrough.from_settings(settings, AsyncioScheduler(), notifier=PrintNotifier())
    except CatalogError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    result = walkthrough.connect(settings.display_name)
    if not result:
        walkthrough.close()
        print(result.message, file=sys.stderr)
        sys.exit(1)
    return walkthrough
