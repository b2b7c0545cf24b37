"""Reward ledger: point math, idempotence, level invariant, badges, capstone claim, quests."""
from __future__ import annotations

import pytest

from escrow_walkthrough.errors import ConflictError, PreconditionError, UnknownBadgeError, UnknownDemoError
from escrow_walkthrough.rewards.catalog import PRIMARY_DEMOS
from escrow_walkthrough.rewards.ledger import RewardLedger, calculate_points

WALLET = "GLEDGERTESTWALLET"


@pytest.fixture
def ledger(store):
    ledger = RewardLedger(store)
    ledger.open_account(WALLET, "Tester")
    return ledger


def _snapshot(ledger):
    a = ledger.account
    return (set(a.completed_demos), set(a.earned_badges), a.experience, a.total_points, a.level)


def _assert_level(ledger):
    a = ledger.account
    assert a.level == a.experience // 1000 + 1
    assert ledger.store.read(WALLET).level == a.level


# ─── Point math ───

@pytest.mark.parametrize(("base", "score", "first", "expected"), [
    (100, 100, True, 100),
    (100, 100, False, 25),
    (100, 85, True, 85),
    (100, 85, False, 21),
    (100, 90, False, 23),  # 22.5 rounds half up
    (100, 30, True, 50),   # multiplier floor 0.5
    (200, 95, True, 190),
])
def test_calculate_points(base, score, first, expected):
    assert calculate_points(base, score, first) == expected


# ─── Account ───

def test_new_account_gets_welcome_badge(ledger, store):
    account = ledger.account
    assert account.earned_badges == {"welcome_explorer"}
    assert account.total_points == 10
    assert account.experience == 20
    assert account.level == 1
    assert store.read(WALLET).earned_badges == {"welcome_explorer"}
    history = store.get_history(WALLET)
    assert [h["type"] for h in history] == ["badge_earned"]


def test_open_existing_account_does_not_reaward(ledger, store):
    again = RewardLedger(store)
    account = again.open_account(WALLET)
    assert account.total_points == 10
    assert len(store.get_history(WALLET)) == 1


def test_operations_need_an_account(store):
    with pytest.raises(PreconditionError, match="No account loaded"):
        RewardLedger(store).complete_demo("hello-milestone")
    assert not RewardLedger(store).has_badge("welcome_explorer")


# ─── complete_demo ───

def test_first_completion_perfect_score(ledger):
    receipt = ledger.complete_demo("hello-milestone", 100, 90)

    assert receipt.points_earned == 100
    assert receipt.experience_earned == 200
    assert receipt.is_first_completion
    assert receipt.badge_awarded == "escrow_expert"
    # welcome 10 + demo 100 + escrow_expert 30
    assert ledger.account.total_points == 140
    assert ledger.account.experience == 20 + 200 + 60
    assert ledger.has_completed_demo("hello-milestone")
    assert ledger.has_badge("escrow_expert")


def test_replay_earns_quarter_points(store):
    first = RewardLedger(store)
    first.open_account(WALLET)
    first.complete_demo("hello-milestone", 100)
    store.delete_account(WALLET)

    replay = RewardLedger(store)
    replay.open_account(WALLET)
    receipt = replay.complete_demo("hello-milestone", 100)

    assert not receipt.is_first_completion
    assert receipt.points_earned == 25
    assert receipt.experience_earned == 50
    assert [c.is_first_completion for c in store.get_completions(WALLET, "hello-milestone")] == [True, False]


def test_complete_demo_is_idempotent(ledger):
    ledger.complete_demo("dispute-resolution", 95)
    once = _snapshot(ledger)

    assert ledger.complete_demo("dispute-resolution", 95) is None
    assert ledger.complete_demo("dispute-resolution", 40) is None
    assert _snapshot(ledger) == once
    assert ledger.store.completion_count(WALLET, "dispute-resolution") == 1


def test_default_score(ledger):
    receipt = ledger.complete_demo("micro-marketplace")
    assert receipt.score == 85
    assert receipt.points_earned == 85


def test_writes_are_persisted(ledger, store):
    ledger.complete_demo("hello-milestone", 85)
    stored = store.read(WALLET)
    assert stored.completed_demos == {"hello-milestone"}
    assert stored.earned_badges == {"welcome_explorer", "escrow_expert"}
    assert stored.total_points == ledger.account.total_points
    assert stored.experience == ledger.account.experience
    types = [h["type"] for h in store.get_history(WALLET)]
    assert types.count("demo_completion") == 1
    assert types.count("badge_earned") == 2


def test_unknown_demo_rejected_when_catalog_known(store):
    ledger = RewardLedger(store, known_demos={"hello-milestone"})
    ledger.open_account(WALLET)
    with pytest.raises(UnknownDemoError):
        ledger.complete_demo("no-such-demo")


def test_per_demo_base_points(store):
    ledger = RewardLedger(store, base_points={"hello-milestone": 200})
    ledger.open_account(WALLET)
    assert ledger.complete_demo("hello-milestone", 100).points_earned == 200


# ─── Level & badges ───

def test_level_invariant_after_every_mutation(ledger):
    _assert_level(ledger)
    for demo_id in PRIMARY_DEMOS:
        ledger.complete_demo(demo_id, 85)
        _assert_level(ledger)
    ledger.add_experience_and_points(999, 0)
    _assert_level(ledger)
    ledger.add_experience_and_points(1, 0)
    _assert_level(ledger)
    assert ledger.account.level >= 2


def test_negative_amounts_rejected(ledger):
    with pytest.raises(ValueError):
        ledger.add_experience_and_points(-1, 0)
    with pytest.raises(ValueError):
        ledger.add_experience_and_points(0, -5)
    assert ledger.account.experience == 20


def test_badge_awarded_once(ledger):
    before = ledger.account.total_points
    results = [ledger.award_badge("trust_guardian") for _ in range(4)]

    assert results == [True, False, False, False]
    assert ledger.account.total_points == before + 50
    assert ledger.store.read(WALLET).earned_badges == {"welcome_explorer", "trust_guardian"}


def test_unknown_badge(ledger):
    with pytest.raises(UnknownBadgeError):
        ledger.award_badge("golden_goose")
    with pytest.raises(KeyError):
        ledger.award_badge("golden_goose")


# ─── Composite badge ───

def test_capstone_is_not_auto_awarded(ledger):
    for demo_id in PRIMARY_DEMOS:
        ledger.complete_demo(demo_id, 85)
    assert not ledger.has_badge("nexus_master")


def test_claim_requires_every_primary_badge(ledger):
    ledger.complete_demo("hello-milestone", 85)
    with pytest.raises(PreconditionError, match="stellar_champion"):
        ledger.claim_composite_badge()
    assert not ledger.has_badge("nexus_master")


def test_claim_composite_badge(ledger):
    for demo_id in PRIMARY_DEMOS:
        ledger.complete_demo(demo_id, 85)
    # welcome 10/20, three demos 255/510, three badges 180/360
    assert ledger.account.experience == 890
    assert ledger.account.level == 1

    receipt = ledger.claim_composite_badge()

    assert receipt.demo_id == "nexus-master"
    assert receipt.score == 100
    assert receipt.points_earned == 100
    assert receipt.badge_awarded == "nexus_master"
    assert "nexus-master" not in ledger.account.completed_demos
    assert ledger.account.experience == 890 + 200 + 400
    assert ledger.account.level == 2

    assert ledger.claim_composite_badge() is None
    assert ledger.complete_demo("nexus-master") is None
    assert ledger.account.experience == 1490


# ─── Quests & claps ───

def _unlock_quests(ledger):
    for demo_id in PRIMARY_DEMOS:
        ledger.complete_demo(demo_id, 85)
    ledger.claim_composite_badge()


def test_quests_locked_until_capstone(ledger):
    with pytest.raises(PreconditionError, match="locked"):
        ledger.complete_quest("join_discord")
    with pytest.raises(PreconditionError, match="not found"):
        ledger.complete_quest("climb_everest")


def test_quest_rewards_and_badges(ledger):
    _unlock_quests(ledger)
    xp, points = ledger.account.experience, ledger.account.total_points

    assert ledger.complete_quest("follow_both_accounts")
    assert ledger.has_badge("social_butterfly")
    assert ledger.account.experience == xp + 250 + 50
    assert ledger.account.total_points == points + 25 + 25

    with pytest.raises(ConflictError):
        ledger.complete_quest("follow_both_accounts")


def test_repeatable_quest_and_quest_master(ledger):
    _unlock_quests(ledger)
    ledger.complete_quest("post_hashtags")
    xp = ledger.account.experience
    ledger.complete_quest("post_hashtags")
    assert ledger.account.experience == xp + 250
    assert not ledger.has_badge("quest_master")

    ledger.complete_quest("follow_both_accounts")
    ledger.complete_quest("join_discord")
    assert ledger.has_badge("quest_master")
    assert ledger.store.read(WALLET).completed_quests == {
        "post_hashtags", "follow_both_accounts", "join_discord",
    }


def test_clap_once_per_demo(ledger):
    points = ledger.account.total_points
    assert ledger.clap_demo("hello-milestone")
    assert not ledger.clap_demo("hello-milestone")
    assert ledger.clap_demo("micro-marketplace")
    assert ledger.account.total_points == points
    assert ledger.store.read(WALLET).clapped_demos == {"hello-milestone", "micro-marketplace"}


def test_refresh_reconciles_from_store(ledger, store):
    store.write(WALLET, {"display_name": "Renamed"})
    assert ledger.refresh().display_name == "Renamed"
