"""walkthrough demos — compile the demo catalog, validate, list steps."""
from __future__ import annotations

import sys
from pathlib import Path

from escrow_walkthrough.compiler import bundled_demos_dir, format_errors, has_errors, load_demos, validate_demo
from escrow_walkthrough.config import WORKSPACE_DIR, load_settings
from escrow_walkthrough.errors import CatalogError
from escrow_walkthrough.rewards.catalog import badge_for_demo, get_badge


def cmd_demos(cwd: str):
    settings = load_settings(Path(cwd) / WORKSPACE_DIR)
    demos_dir = settings.demos_dir or bundled_demos_dir()

    try:
        demos = load_demos(demos_dir)
    except CatalogError as e:
        print(f"✗ Parse error: {e}", file=sys.stderr)
        sys.exit(1)
    if not demos:
        print(f"No demos found in {demos_dir}", file=sys.stderr)
        sys.exit(1)

    failed = False
    for demo in demos.values():
        errors = validate_demo(demo)
        if has_errors(errors):
            failed = True
            print(f'✗ Demo "{demo.id}" failed validation:')
            print(format_errors(errors))
            continue

        badge_id = badge_for_demo(demo.id)
        reward = f", awards {get_badge(badge_id).name}" if badge_id else ""
        print(f'✓ {demo.id} — "{demo.name}" ({len(demo.steps)} steps{reward})')
        if errors:
            print(format_errors(errors))
        print(f"    {' → '.join(s.id for s in demo.steps)}")
        for m in demo.milestones:
            print(f"    milestone {m.id}: {m.title} ({m.amount})")

    if failed:
        sys.exit(1)
