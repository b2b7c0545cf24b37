"""Static reward catalog: badges, demo → badge mapping, quests."""
from __future__ import annotations

from escrow_walkthrough.errors import UnknownBadgeError
from escrow_walkthrough.types import Badge, Quest

DEFAULT_BASE_POINTS = 100
DEFAULT_SCORE = 85
REPLAY_FACTOR = 0.25
MIN_SCORE_MULTIPLIER = 0.5
XP_PER_LEVEL = 1000

CAPSTONE_DEMO_ID = "nexus-master"
CAPSTONE_BADGE_ID = "nexus_master"
WELCOME_BADGE_ID = "welcome_explorer"
QUEST_MASTER_BADGE_ID = "quest_master"

PRIMARY_DEMOS = ("hello-milestone", "dispute-resolution", "micro-marketplace")

DEMO_BADGE_MAP: dict[str, str] = {
    "hello-milestone": "escrow_expert",
    "dispute-resolution": "trust_guardian",
    "micro-marketplace": "stellar_champion",
    CAPSTONE_DEMO_ID: CAPSTONE_BADGE_ID,
}

PRIMARY_BADGES = tuple(DEMO_BADGE_MAP[d] for d in PRIMARY_DEMOS)

_BADGES = [
    Badge("welcome_explorer", "Welcome Explorer", 10, "common", unlock="account",
          description="Joined the Nexus Experience community"),
    Badge("escrow_expert", "Escrow Expert", 30, "rare",
          description="Mastered the basic escrow flow"),
    Badge("trust_guardian", "Trust Guardian", 50, "epic",
          description="Resolved conflicts like a true arbitrator"),
    Badge("stellar_champion", "Stellar Champion", 100, "epic",
          description="Mastered the micro-task marketplace"),
    Badge(CAPSTONE_BADGE_ID, "Nexus Master", 200, "legendary", unlock="claim",
          description="Master of all trustless work demos"),
    Badge("social_butterfly", "Social Butterfly", 25, "common", "quest", "quest",
          description="Followed Trustless Work and Stellar on X"),
    Badge("hashtag_hero", "Hashtag Hero", 30, "common", "quest", "quest",
          description="Posted about Trustless Work with hashtags"),
    Badge("discord_warrior", "Discord Warrior", 35, "common", "quest", "quest",
          description="Joined the Trustless Work Discord server"),
    Badge(QUEST_MASTER_BADGE_ID, "Quest Master", 100, "epic", "quest", "quest",
          description="Completed all available quests"),
]

BADGES: dict[str, Badge] = {b.id: b for b in _BADGES}

MAIN_ACHIEVEMENT_BADGES = tuple(b.id for b in _BADGES if b.category == "main_achievement")

# Quests open up only once every main demo badge and the capstone are held
_QUEST_UNLOCK = (*PRIMARY_BADGES, CAPSTONE_BADGE_ID)

_QUESTS = [
    Quest("follow_both_accounts", "Social Butterfly", 250, 25, "social_butterfly",
          unlock_requirements=_QUEST_UNLOCK),
    Quest("post_hashtags", "Share the Love", 250, 25, "hashtag_hero", repeatable=True,
          unlock_requirements=_QUEST_UNLOCK),
    Quest("join_discord", "Join the Community", 250, 25, "discord_warrior",
          unlock_requirements=_QUEST_UNLOCK),
]

QUESTS: dict[str, Quest] = {q.id: q for q in _QUESTS}


def get_badge(badge_id: str) -> Badge:
    try:
        return BADGES[badge_id]
    except KeyError:
        raise UnknownBadgeError(badge_id) from None


def badge_for_demo(demo_id: str) -> str | None:
    return DEMO_BADGE_MAP.get(demo_id)


def get_quest(quest_id: str) -> Quest | None:
    return QUESTS.get(quest_id)


def active_quests() -> list[Quest]:
    return [q for q in _QUESTS if q.active]
