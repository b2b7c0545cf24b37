"""Static analysis for demo definitions: catch issues before a demo is run."""
from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_walkthrough.rewards.catalog import CAPSTONE_DEMO_ID

if TYPE_CHECKING:
    from escrow_walkthrough.types import DemoDefinition

KNOWN_PRECONDITIONS = frozenset({"wallet"})


class ValidationError:
    def __init__(self, level: str, message: str, step: str | None = None):
        self.level = level  # "error" | "warning"
        self.message = message
        self.step = step

    def __str__(self):
        prefix = f"[{self.step}] " if self.step else ""
        return f"{self.level.upper()}: {prefix}{self.message}"


def validate_demo(demo: DemoDefinition) -> list[ValidationError]:
    """Run all static checks on a demo definition."""
    errors: list[ValidationError] = []

    if not demo.steps:
        errors.append(ValidationError("error", "Demo has no steps"))
        return errors

    if demo.id == CAPSTONE_DEMO_ID:
        errors.append(ValidationError("error", f'"{CAPSTONE_DEMO_ID}" is reserved for the composite badge claim'))

    errors.extend(_check_preconditions(demo))
    errors.extend(_check_milestones(demo))
    errors.extend(_check_scoring(demo))

    return errors


def has_errors(errors: list[ValidationError]) -> bool:
    return any(e.level == "error" for e in errors)


def format_errors(errors: list[ValidationError]) -> str:
    if not errors:
        return ""
    lines = []
    errs = [e for e in errors if e.level == "error"]
    warns = [e for e in errors if e.level == "warning"]
    if errs:
        lines.append(f"  {len(errs)} error(s):")
        for e in errs:
            lines.append(f"    ✗ {e}")
    if warns:
        lines.append(f"  {len(warns)} warning(s):")
        for e in warns:
            lines.append(f"    ⚠ {e}")
    return "\n".join(lines)


# ─── Checks ───

def _check_preconditions(demo: DemoDefinition) -> list[ValidationError]:
    errors: list[ValidationError] = []
    for step in demo.steps:
        for name in step.requires:
            if name not in KNOWN_PRECONDITIONS:
                errors.append(ValidationError("error", f"Unknown precondition: '{name}'", step.id))
    return errors


def _check_milestones(demo: DemoDefinition) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if demo.kind == "dispute" and not demo.milestones:
        errors.append(ValidationError("error", "Dispute demo declares no milestones"))
    if demo.kind == "linear" and demo.milestones:
        errors.append(ValidationError("warning", "Milestones are ignored by linear demos"))

    seen: set[str] = set()
    for m in demo.milestones:
        if m.id in seen:
            errors.append(ValidationError("error", f"Duplicate milestone id: '{m.id}'"))
        seen.add(m.id)
        if not m.amount.isdigit():
            errors.append(ValidationError("error", f"Milestone amount must be a whole number: '{m.amount}'", m.id))
    return errors


def _check_scoring(demo: DemoDefinition) -> list[ValidationError]:
    errors: list[ValidationError] = []
    rule = demo.scoring
    if rule.fixed is not None and not 0 <= rule.fixed <= 100:
        errors.append(ValidationError("error", f"Fixed score out of range 0-100: {rule.fixed}"))
    if not 0 <= rule.base <= 100:
        errors.append(ValidationError("error", f"Base score out of range 0-100: {rule.base}"))
    if rule.quick_bonus and not rule.quick_seconds:
        errors.append(ValidationError("warning", "quick_bonus has no quick_seconds window"))
    if demo.base_points <= 0:
        errors.append(ValidationError("error", f"base_points must be positive: {demo.base_points}"))
    return errors
