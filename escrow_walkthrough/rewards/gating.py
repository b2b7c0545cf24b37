"""Unlock predicates over account state.

Every function accepts an Account or a raw persisted mapping (as read from an
export or an older store) and normalizes set fields before looking at them.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from escrow_walkthrough.rewards.catalog import (
    MAIN_ACHIEVEMENT_BADGES,
    PRIMARY_BADGES,
    PRIMARY_DEMOS,
    XP_PER_LEVEL,
    active_quests,
)
from escrow_walkthrough.store.state import normalize_set
from escrow_walkthrough.types import Account, Quest

_LEGACY_KEYS = {
    "earned_badges": ("earned_badges", "earnedBadges", "badgesEarned"),
    "completed_demos": ("completed_demos", "completedDemos", "demosCompleted"),
    "completed_quests": ("completed_quests", "completedQuests"),
    "experience": ("experience",),
}


def _field(account: Account | Mapping[str, Any] | None, name: str) -> Any:
    if account is None:
        return None
    if isinstance(account, Mapping):
        for key in _LEGACY_KEYS[name]:
            if key in account:
                return account[key]
        return None
    return getattr(account, name)


def badges_of(account: Account | Mapping[str, Any] | None) -> set[str]:
    return normalize_set(_field(account, "earned_badges"))


def demos_of(account: Account | Mapping[str, Any] | None) -> set[str]:
    return normalize_set(_field(account, "completed_demos"))


def feature_unlocked(account: Account | Mapping[str, Any] | None, required: Iterable[str]) -> bool:
    return set(required) <= badges_of(account)


def capstone_ready(account: Account | Mapping[str, Any] | None) -> bool:
    """All primary demo badges held: the composite badge may be claimed."""
    return feature_unlocked(account, PRIMARY_BADGES)


def mini_games_unlocked(account: Account | Mapping[str, Any] | None) -> bool:
    return set(PRIMARY_DEMOS) <= demos_of(account) and feature_unlocked(account, MAIN_ACHIEVEMENT_BADGES)


def quest_unlocked(account: Account | Mapping[str, Any] | None, quest: Quest) -> bool:
    return quest.active and feature_unlocked(account, quest.unlock_requirements)


def available_quests(account: Account | Mapping[str, Any] | None) -> list[Quest]:
    return [q for q in active_quests() if quest_unlocked(account, q)]


def level_for(experience: int) -> int:
    return experience // XP_PER_LEVEL + 1


def experience_progress(account: Account | Mapping[str, Any] | None) -> tuple[int, int]:
    """(xp into the current level, xp span of a level)."""
    experience = int(_field(account, "experience") or 0)
    return experience - (level_for(experience) - 1) * XP_PER_LEVEL, XP_PER_LEVEL


def main_demo_progress(account: Account | Mapping[str, Any] | None) -> tuple[int, int]:
    done = demos_of(account)
    return sum(1 for d in PRIMARY_DEMOS if d in done), len(PRIMARY_DEMOS)
