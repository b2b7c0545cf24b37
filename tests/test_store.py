"""SQLite account store: partial writes, legacy set shapes, history and statistics."""
from __future__ import annotations

import json

import pytest

from escrow_walkthrough.store.state import StateManager, normalize_set
from escrow_walkthrough.types import Account, CompletionRecord

WALLET = "GSTORETESTWALLET"


def test_normalize_set_shapes():
    assert normalize_set(None) == set()
    assert normalize_set("") == set()
    assert normalize_set(["a", "b", "a"]) == {"a", "b"}
    assert normalize_set({"x": "a", "y": "b"}) == {"a", "b"}
    assert normalize_set('["a"]') == {"a"}
    assert normalize_set('{"0": "a", "1": "b"}') == {"a", "b"}
    assert normalize_set(("a",)) == {"a"}
    with pytest.raises(TypeError):
        normalize_set(42)


def test_create_and_read(store):
    store.create_account(Account(WALLET, "Ada", earned_badges={"b", "a"}))
    account = store.read(WALLET)
    assert account.display_name == "Ada"
    assert account.earned_badges == {"a", "b"}
    assert account.level == 1
    assert account.created_at
    assert store.has_account(WALLET)
    assert store.read("GNOBODY") is None


def test_partial_write_touches_only_named_fields(store):
    store.create_account(Account(WALLET, "Ada", experience=100, total_points=50))
    store.write(WALLET, {"total_points": 75, "completed_demos": {"hello-milestone"}})

    account = store.read(WALLET)
    assert account.total_points == 75
    assert account.experience == 100
    assert account.completed_demos == {"hello-milestone"}
    raw = store.db.execute("SELECT completed_demos FROM accounts WHERE wallet_id = ?", (WALLET,)).fetchone()
    assert json.loads(raw[0]) == ["hello-milestone"]


def test_write_rejects_unknown_fields_and_missing_account(store):
    store.create_account(Account(WALLET))
    with pytest.raises(ValueError, match="Unknown account fields"):
        store.write(WALLET, {"wallet_id": "GOTHER"})
    with pytest.raises(RuntimeError, match="Account not found"):
        store.write("GNOBODY", {"level": 2})


def test_legacy_map_rows_read_as_sets(store):
    store.create_account(Account(WALLET))
    store.db.execute(
        "UPDATE accounts SET earned_badges = ?, completed_demos = ? WHERE wallet_id = ?",
        (json.dumps({"0": "escrow_expert", "1": "trust_guardian"}),
         json.dumps({"first": "hello-milestone"}), WALLET),
    )
    store.db.commit()

    account = store.read(WALLET)
    assert account.earned_badges == {"escrow_expert", "trust_guardian"}
    assert account.completed_demos == {"hello-milestone"}

    # Rewritten in canonical list form
    store.write(WALLET, {"earned_badges": account.earned_badges | {"stellar_champion"}})
    raw = store.db.execute("SELECT earned_badges FROM accounts WHERE wallet_id = ?", (WALLET,)).fetchone()
    assert json.loads(raw[0]) == ["escrow_expert", "stellar_champion", "trust_guardian"]


def test_history_newest_first_and_filtered(store):
    store.add_history(WALLET, "badge_earned", "Earned A", badge_id="a", points=10)
    store.add_history(WALLET, "demo_completion", "Completed x", demo_id="x", points=85, data={"score": 85})
    store.add_history("GOTHER", "clap", "Clapped")

    history = store.get_history(WALLET)
    assert [h["type"] for h in history] == ["demo_completion", "badge_earned"]
    assert history[0]["data"] == {"score": 85}
    assert history[1]["data"] is None
    assert [h["type"] for h in store.get_history(WALLET, type="badge_earned")] == ["badge_earned"]
    assert len(store.get_history(WALLET, limit=1)) == 1


def test_completion_history(store):
    store.add_completion(WALLET, CompletionRecord("hello-milestone", 100, 100, 90, True))
    store.add_completion(WALLET, CompletionRecord("hello-milestone", 85, 21, 120, False))

    assert store.completion_count(WALLET, "hello-milestone") == 2
    assert store.completion_count(WALLET, "micro-marketplace") == 0
    records = store.get_completions(WALLET)
    assert [r.points_earned for r in records] == [100, 21]
    assert records[0].completed_at


def test_delete_account_keeps_completions_by_default(store):
    store.create_account(Account(WALLET))
    store.add_history(WALLET, "clap", "Clapped")
    store.add_completion(WALLET, CompletionRecord("hello-milestone", 100, 100, 90, True))

    store.delete_account(WALLET)
    assert store.read(WALLET) is None
    assert store.get_history(WALLET) == []
    assert store.completion_count(WALLET, "hello-milestone") == 1

    store.delete_account(WALLET, include_completions=True)
    assert store.completion_count(WALLET, "hello-milestone") == 0


def test_demo_stats(store):
    assert store.get_demo_stats("hello-milestone").total_completions == 0

    store.record_demo_completion("hello-milestone", 2.0, 100)
    store.record_demo_completion("hello-milestone", 4.0, 80)
    store.increment_clap("hello-milestone")

    stats = store.get_demo_stats("hello-milestone")
    assert stats.total_completions == 2
    assert stats.total_claps == 1
    assert stats.average_completion_minutes == pytest.approx(3.0)
    assert stats.average_score == pytest.approx(90.0)


def test_data_survives_reopen(tmp_path):
    db = tmp_path / "state.db"
    first = StateManager(db)
    first.create_account(Account(WALLET, total_points=10))
    first.close()

    second = StateManager(db)
    try:
        assert second.read(WALLET).total_points == 10
    finally:
        second.close()


def test_level_follows_experience_on_stale_rows(store):
    store.create_account(Account(WALLET, "Ada", experience=2500))
    store.db.execute("UPDATE accounts SET level = 1 WHERE wallet_id = ?", (WALLET,))
    store.db.commit()
    assert store.read(WALLET).level == 3


# ─── Leaderboard ───

def _seed_leaderboard(store):
    for wallet_id, name, xp, points in [
        ("GA", "Ann", 200, 100),
        ("GB", "Bo", 1400, 700),
        ("GC", "Cy", 300, 100),
        ("GD", "Di", 20, 10),
        ("GE", "Ed", 300, 100),
    ]:
        store.create_account(Account(wallet_id, name, experience=xp, total_points=points))


def test_leaderboard_orders_by_points_then_experience(store):
    _seed_leaderboard(store)

    board = store.get_leaderboard(limit=4)

    assert [(e["rank"], e["wallet_id"]) for e in board] == [(1, "GB"), (2, "GC"), (3, "GE"), (4, "GA")]
    assert board[0]["level"] == 2
    assert board[0]["display_name"] == "Bo"
    assert store.count_accounts() == 5


def test_rank_matches_leaderboard_position(store):
    _seed_leaderboard(store)
    full = store.get_leaderboard(limit=10)
    for entry in full:
        assert store.get_rank(entry["wallet_id"]) == entry["rank"]
    assert store.get_rank("GNOBODY") is None


def test_leaderboard_around_wallet(store):
    _seed_leaderboard(store)

    around = store.get_leaderboard_around("GE", radius=1)
    assert [(e["rank"], e["wallet_id"]) for e in around] == [(2, "GC"), (3, "GE"), (4, "GA")]

    top = store.get_leaderboard_around("GB", radius=2)
    assert [e["wallet_id"] for e in top] == ["GB", "GC", "GE"]
    assert store.get_leaderboard_around("GNOBODY") == []
