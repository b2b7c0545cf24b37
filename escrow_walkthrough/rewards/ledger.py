"""Reward ledger: turns completions and claims into account progress.

The in-memory Account is authoritative for the session; every mutation is
mirrored to the store as a partial write, and refresh() reconciles from it.
Level is always recomputed from experience, never incremented.
"""
from __future__ import annotations

import logging
import math
from typing import Protocol

from escrow_walkthrough.errors import ConflictError, PreconditionError, UnknownDemoError
from escrow_walkthrough.rewards import gating
from escrow_walkthrough.rewards.catalog import (
    CAPSTONE_BADGE_ID,
    CAPSTONE_DEMO_ID,
    DEFAULT_BASE_POINTS,
    DEFAULT_SCORE,
    MIN_SCORE_MULTIPLIER,
    PRIMARY_BADGES,
    QUEST_MASTER_BADGE_ID,
    REPLAY_FACTOR,
    active_quests,
    badge_for_demo,
    get_badge,
    get_quest,
)
from escrow_walkthrough.types import Account, CompletionReceipt, CompletionRecord

log = logging.getLogger("escrow_walkthrough.ledger")

CAPSTONE_SCORE = 100
CAPSTONE_ELAPSED_SECONDS = 60


class AccountStore(Protocol):
    def read(self, wallet_id: str) -> Account | None: ...
    def write(self, wallet_id: str, partial: dict) -> None: ...
    def create_account(self, account: Account) -> None: ...
    def add_history(self, wallet_id: str, type: str, message: str = "", **fields) -> None: ...


class CompletionHistory(Protocol):
    def completion_count(self, wallet_id: str, demo_id: str) -> int: ...
    def add_completion(self, wallet_id: str, record: CompletionRecord) -> None: ...


def _round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def calculate_points(base_points: int, score: int, is_first_completion: bool) -> int:
    multiplier = max(MIN_SCORE_MULTIPLIER, score / 100)
    points = _round_half_up(base_points * multiplier)
    if not is_first_completion:
        points = _round_half_up(points * REPLAY_FACTOR)
    return points


class RewardLedger:
    def __init__(
        self,
        store: AccountStore,
        history: CompletionHistory | None = None,
        *,
        base_points: dict[str, int] | None = None,
        known_demos: set[str] | None = None,
    ):
        self.store = store
        self.history = history if history is not None else store
        self.base_points = dict(base_points or {})
        self.known_demos = set(known_demos) if known_demos is not None else None
        self.account: Account | None = None

    # ─── Account lifecycle ───

    def open_account(self, wallet_id: str, display_name: str = "", network: str = "testnet") -> Account:
        """Load the wallet's account, creating it (with the welcome badge) on first connection."""
        account = self.store.read(wallet_id)
        if account is not None:
            self.account = account
            log.info("loaded account %s (level %d, %d xp)", wallet_id, account.level, account.experience)
            return account

        account = Account(wallet_id=wallet_id, display_name=display_name or "Anonymous User", network=network)
        self.store.create_account(account)
        self.account = account
        log.info("created account %s", wallet_id)
        self.award_badge("welcome_explorer")
        return account

    def refresh(self) -> Account:
        account = self._require_account()
        stored = self.store.read(account.wallet_id)
        if stored is None:
            raise RuntimeError(f"Account not found: {account.wallet_id}")
        self.account = stored
        return stored

    # ─── Queries ───

    def has_badge(self, badge_id: str) -> bool:
        return self.account is not None and badge_id in gating.badges_of(self.account)

    def has_completed_demo(self, demo_id: str) -> bool:
        return self.account is not None and demo_id in gating.demos_of(self.account)

    def has_clapped(self, demo_id: str) -> bool:
        return self.account is not None and demo_id in self.account.clapped_demos

    # ─── Mutations ───

    def add_experience_and_points(self, experience: int, points: int) -> None:
        if experience < 0 or points < 0:
            raise ValueError(f"Experience and points must be >= 0 (got {experience}, {points})")
        account = self._require_account()
        account.experience += experience
        account.total_points += points
        account.level = gating.level_for(account.experience)
        self.store.write(account.wallet_id, {
            "experience": account.experience,
            "total_points": account.total_points,
            "level": account.level,
        })

    def award_badge(self, badge_id: str) -> bool:
        """Insert the badge and credit its value. Returns False if already held."""
        badge = get_badge(badge_id)
        account = self._require_account()
        if badge_id in account.earned_badges:
            return False
        account.earned_badges.add(badge_id)
        self.store.write(account.wallet_id, {"earned_badges": account.earned_badges})
        self.add_experience_and_points(badge.point_value * 2, badge.point_value)
        self.store.add_history(
            account.wallet_id, "badge_earned", f"Earned {badge.name} badge",
            badge_id=badge_id, points=badge.point_value,
        )
        log.info("account %s earned badge %s (+%d)", account.wallet_id, badge_id, badge.point_value)
        return True

    def complete_demo(
        self,
        demo_id: str,
        score: int = DEFAULT_SCORE,
        elapsed_seconds: int = 0,
    ) -> CompletionReceipt | None:
        """Credit a demo completion once. Returns None when it was already credited."""
        if self.known_demos is not None and demo_id not in self.known_demos and demo_id != CAPSTONE_DEMO_ID:
            raise UnknownDemoError(demo_id)
        account = self._require_account()
        if self._already_credited(account, demo_id):
            log.debug("demo %s already credited to %s", demo_id, account.wallet_id)
            return None

        is_first = self.history.completion_count(account.wallet_id, demo_id) == 0
        base = self.base_points.get(demo_id, DEFAULT_BASE_POINTS)
        points = calculate_points(base, score, is_first)

        if demo_id != CAPSTONE_DEMO_ID:
            account.completed_demos.add(demo_id)
            self.store.write(account.wallet_id, {"completed_demos": account.completed_demos})
        self.history.add_completion(account.wallet_id, CompletionRecord(
            demo_id=demo_id,
            score=score,
            points_earned=points,
            completion_seconds=int(elapsed_seconds),
            is_first_completion=is_first,
        ))
        self.add_experience_and_points(points * 2, points)
        self.store.add_history(
            account.wallet_id, "demo_completion", f"Completed {demo_id.replace('-', ' ')} demo",
            demo_id=demo_id, points=points,
            data={"score": score, "elapsed_seconds": elapsed_seconds, "first": is_first},
        )

        badge_id = badge_for_demo(demo_id)
        awarded = self.award_badge(badge_id) if badge_id else False
        log.info("account %s completed %s: %d points (first=%s)", account.wallet_id, demo_id, points, is_first)
        return CompletionReceipt(
            demo_id=demo_id,
            score=score,
            points_earned=points,
            experience_earned=points * 2,
            is_first_completion=is_first,
            badge_awarded=badge_id if awarded else None,
        )

    def claim_composite_badge(self) -> CompletionReceipt | None:
        account = self._require_account()
        if CAPSTONE_BADGE_ID in gating.badges_of(account):
            return None
        if not gating.capstone_ready(account):
            missing = sorted(set(PRIMARY_BADGES) - gating.badges_of(account))
            raise PreconditionError(
                f"Nexus Master is locked. Still missing: {', '.join(missing)}."
            )
        return self.complete_demo(CAPSTONE_DEMO_ID, CAPSTONE_SCORE, CAPSTONE_ELAPSED_SECONDS)

    def clap_demo(self, demo_id: str) -> bool:
        account = self._require_account()
        if demo_id in account.clapped_demos:
            return False
        account.clapped_demos.add(demo_id)
        self.store.write(account.wallet_id, {"clapped_demos": account.clapped_demos})
        self.store.add_history(account.wallet_id, "clap", f"Clapped for {demo_id}", demo_id=demo_id)
        return True

    def complete_quest(self, quest_id: str) -> bool:
        quest = get_quest(quest_id)
        if quest is None:
            raise PreconditionError(f'Quest "{quest_id}" not found.')
        account = self._require_account()
        if not gating.quest_unlocked(account, quest):
            raise PreconditionError(f'Quest "{quest.title}" is locked.')
        if quest_id in account.completed_quests and not quest.repeatable:
            raise ConflictError(f'Quest "{quest.title}" is already completed.')

        account.completed_quests.add(quest_id)
        self.store.write(account.wallet_id, {"completed_quests": account.completed_quests})
        self.add_experience_and_points(quest.experience, quest.points)
        self.store.add_history(
            account.wallet_id, "quest", f"Completed quest {quest.title}", points=quest.points,
        )
        if quest.badge_id:
            self.award_badge(quest.badge_id)
        if all(q.id in account.completed_quests for q in active_quests()):
            self.award_badge(QUEST_MASTER_BADGE_ID)
        return True

    # ─── Private ───

    def _require_account(self) -> Account:
        if self.account is None:
            raise PreconditionError("No account loaded. Connect a wallet first.")
        return self.account

    def _already_credited(self, account: Account, demo_id: str) -> bool:
        if demo_id == CAPSTONE_DEMO_ID:
            return CAPSTONE_BADGE_ID in gating.badges_of(account)
        return demo_id in gating.demos_of(account)
