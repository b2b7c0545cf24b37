"""Parse YAML demo definitions into DemoDefinition objects."""
from __future__ import annotations

from pathlib import Path

import yaml

from escrow_walkthrough.errors import CatalogError
from escrow_walkthrough.types import DemoDefinition, MilestoneDefinition, ScoringRule, StepDefinition

DEMO_KINDS = ("linear", "dispute")

# camelCase spellings accepted from older demo files
KEYWORD_MAP = {
    "basePoints": "base_points",
    "quickBonus": "quick_bonus",
    "quickSeconds": "quick_seconds",
}

# Keys consumed by the parser, not forwarded to step config
_CONSUMED_KEYS = frozenset({"id", "name", "title", "action", "requires"})


def _normalize(obj):
    if isinstance(obj, dict):
        return {KEYWORD_MAP.get(k, k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_normalize(item) for item in obj]
    return obj


def _parse_raw_step(raw) -> StepDefinition:
    """A step is either a bare id string, a mapping with `id`, or {id: body}."""
    if isinstance(raw, str):
        return StepDefinition(id=raw, title=raw, action=raw)
    if not isinstance(raw, dict):
        raise CatalogError(f"Invalid step: expected a string or mapping, got {type(raw).__name__}")

    if "id" in raw:
        step_id, body = raw["id"], raw
    elif len(raw) == 1:
        step_id, body = next(iter(raw.items()))
        body = body or {}
        if not isinstance(body, dict):
            raise CatalogError(f'Invalid step "{step_id}": body must be a mapping')
    else:
        raise CatalogError(f"Invalid step: missing id in {sorted(raw)}")

    requires = body.get("requires") or []
    if isinstance(requires, str):
        requires = [requires]
    return StepDefinition(
        id=str(step_id),
        title=body.get("title") or body.get("name") or str(step_id),
        action=body.get("action") or str(step_id),
        requires=[str(r) for r in requires],
        config={k: v for k, v in body.items() if k not in _CONSUMED_KEYS},
    )


def _parse_milestones(raw_milestones) -> list[MilestoneDefinition]:
    if raw_milestones is None:
        return []
    if not isinstance(raw_milestones, list):
        raise CatalogError('Invalid demo: "milestones" must be a list')
    milestones = []
    for raw in raw_milestones:
        if not isinstance(raw, dict) or "id" not in raw:
            raise CatalogError(f"Invalid milestone: {raw!r}")
        milestones.append(MilestoneDefinition(
            id=str(raw["id"]),
            title=raw.get("title", str(raw["id"])),
            # Amounts stay strings: they are ledger stroop quantities, never floats
            amount=str(raw.get("amount", "0")),
        ))
    return milestones


def _parse_scoring(raw) -> ScoringRule:
    if raw is None:
        return ScoringRule()
    if isinstance(raw, int) and not isinstance(raw, bool):
        return ScoringRule(fixed=raw)
    if not isinstance(raw, dict):
        raise CatalogError('Invalid demo: "scoring" must be a number or mapping')
    try:
        return ScoringRule(
            base=int(raw.get("base", 85)),
            quick_bonus=int(raw.get("quick_bonus", 0)),
            quick_seconds=int(raw.get("quick_seconds", 0)),
            bonus=int(raw.get("bonus", 0)),
            fixed=int(raw["fixed"]) if raw.get("fixed") is not None else None,
        )
    except (TypeError, ValueError) as e:
        raise CatalogError(f"Invalid scoring: {e}") from e


def _parse_base_points(raw) -> int:
    if isinstance(raw, bool):
        raise CatalogError(f"Invalid base_points: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise CatalogError(f"Invalid base_points: {e}") from e


def parse_demo_yaml(content: str) -> DemoDefinition:
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise CatalogError("Invalid YAML: expected a mapping")

    normalized = _normalize(raw)

    demo_id = normalized.get("id")
    if not demo_id:
        raise CatalogError('Invalid demo: missing "id"')
    raw_steps = normalized.get("steps")
    if not isinstance(raw_steps, list):
        raise CatalogError(f'Invalid demo "{demo_id}": missing "steps" list')

    steps = [_parse_raw_step(s) for s in raw_steps]
    seen: dict[str, int] = {}
    for s in steps:
        seen[s.id] = seen.get(s.id, 0) + 1
    dupes = [n for n, c in seen.items() if c > 1]
    if dupes:
        raise CatalogError(f"Duplicate step ids: {', '.join(dupes)}")

    kind = normalized.get("kind", "linear")
    if kind not in DEMO_KINDS:
        raise CatalogError(f'Invalid demo "{demo_id}": unknown kind {kind!r}')

    return DemoDefinition(
        id=str(demo_id),
        name=normalized.get("name", str(demo_id)),
        description=normalized.get("description", ""),
        kind=kind,
        base_points=_parse_base_points(normalized.get("base_points", 100)),
        steps=steps,
        milestones=_parse_milestones(normalized.get("milestones")),
        scoring=_parse_scoring(normalized.get("scoring")),
    )


def load_demos(directory: str | Path) -> dict[str, DemoDefinition]:
    """Parse every *.yaml file in a directory, keyed by demo id."""
    demos: dict[str, DemoDefinition] = {}
    for path in sorted(Path(directory).glob("*.yaml")):
        try:
            demo = parse_demo_yaml(path.read_text(encoding="utf-8"))
        except CatalogError as e:
            raise CatalogError(f"{path.name}: {e}") from e
        if demo.id in demos:
            raise CatalogError(f'{path.name}: duplicate demo id "{demo.id}"')
        demos[demo.id] = demo
    return demos


def bundled_demos_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "demos"
