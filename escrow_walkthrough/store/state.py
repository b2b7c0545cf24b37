"""SQLite-backed account persistence, history and demo statistics.

Set-valued account fields are stored as JSON lists. Older rows may hold a
JSON object whose values are the members instead; every read goes through
normalize_set so callers only ever see a set.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from escrow_walkthrough.rewards.catalog import XP_PER_LEVEL
from escrow_walkthrough.types import Account, CompletionRecord, DemoStats

if TYPE_CHECKING:
    from pathlib import Path

INIT_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    wallet_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL DEFAULT '',
    network TEXT NOT NULL DEFAULT 'testnet',
    level INTEGER NOT NULL DEFAULT 1,
    experience INTEGER NOT NULL DEFAULT 0,
    total_points INTEGER NOT NULL DEFAULT 0,
    completed_demos TEXT NOT NULL DEFAULT '[]',
    earned_badges TEXT NOT NULL DEFAULT '[]',
    clapped_demos TEXT NOT NULL DEFAULT '[]',
    completed_quests TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS account_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_id TEXT NOT NULL,
    type TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    demo_id TEXT,
    badge_id TEXT,
    points INTEGER NOT NULL DEFAULT 0,
    data TEXT,
    timestamp TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_history_wallet ON account_history(wallet_id);

CREATE TABLE IF NOT EXISTS completion_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_id TEXT NOT NULL,
    demo_id TEXT NOT NULL,
    score INTEGER NOT NULL,
    points_earned INTEGER NOT NULL,
    completion_seconds INTEGER NOT NULL DEFAULT 0,
    is_first_completion INTEGER NOT NULL,
    completed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_completion_wallet_demo ON completion_history(wallet_id, demo_id);

CREATE TABLE IF NOT EXISTS demo_stats (
    demo_id TEXT PRIMARY KEY,
    total_completions INTEGER NOT NULL DEFAULT 0,
    total_claps INTEGER NOT NULL DEFAULT 0,
    total_completion_minutes REAL NOT NULL DEFAULT 0,
    total_score REAL NOT NULL DEFAULT 0
);
"""

LEADERBOARD_ORDER = "total_points DESC, experience DESC, wallet_id"

SET_FIELDS = ("completed_demos", "earned_badges", "clapped_demos", "completed_quests")
SCALAR_FIELDS = ("display_name", "network", "level", "experience", "total_points")
ACCOUNT_FIELDS = SCALAR_FIELDS + SET_FIELDS


def normalize_set(value: Any) -> set[str]:
    """Canonical set for a set-valued field, whatever shape it was stored in."""
    if value is None:
        return set()
    if isinstance(value, str):
        value = json.loads(value) if value.strip() else []
    if isinstance(value, dict):
        return {str(v) for v in value.values()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return {str(v) for v in value}
    raise TypeError(f"Cannot read a set from {type(value).__name__}")


def _now() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


# Stored level may lag behind experience on older rows
def _level(experience: int) -> int:
    return experience // XP_PER_LEVEL + 1


class StateManager:
    def __init__(self, db_path: str | Path):
        self.db = sqlite3.connect(str(db_path))
        self.db.execute("PRAGMA journal_mode = WAL")
        self.db.executescript(INIT_SQL)

    # ─── Accounts ───

    def has_account(self, wallet_id: str) -> bool:
        row = self.db.execute(
            "SELECT COUNT(*) FROM accounts WHERE wallet_id = ?", (wallet_id,)
        ).fetchone()
        return row[0] > 0

    def create_account(self, account: Account) -> None:
        self.db.execute(
            """INSERT INTO accounts
               (wallet_id, display_name, network, level, experience, total_points,
                completed_demos, earned_badges, clapped_demos, completed_quests,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                account.wallet_id,
                account.display_name,
                account.network,
                account.level,
                account.experience,
                account.total_points,
                *(json.dumps(sorted(getattr(account, f))) for f in SET_FIELDS),
                account.created_at or _now(),
                _now(),
            ),
        )
        self.db.commit()

    def read(self, wallet_id: str) -> Account | None:
        row = self.db.execute(
            "SELECT wallet_id, display_name, network, level, experience, total_points, "
            "completed_demos, earned_badges, clapped_demos, completed_quests, created_at "
            "FROM accounts WHERE wallet_id = ?",
            (wallet_id,),
        ).fetchone()
        if not row:
            return None
        return Account(
            wallet_id=row[0],
            display_name=row[1],
            network=row[2],
            level=_level(row[4]),
            experience=row[4],
            total_points=row[5],
            completed_demos=normalize_set(row[6]),
            earned_badges=normalize_set(row[7]),
            clapped_demos=normalize_set(row[8]),
            completed_quests=normalize_set(row[9]),
            created_at=row[10],
        )

    def write(self, wallet_id: str, partial: dict[str, Any]) -> None:
        unknown = set(partial) - set(ACCOUNT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown account fields: {', '.join(sorted(unknown))}")
        if not partial:
            return
        if not self.has_account(wallet_id):
            raise RuntimeError(f"Account not found: {wallet_id}")

        assignments = []
        values: list[Any] = []
        for k, v in partial.items():
            assignments.append(f"{k} = ?")
            values.append(json.dumps(sorted(normalize_set(v))) if k in SET_FIELDS else v)
        assignments.append("updated_at = ?")
        values.append(_now())
        self.db.execute(
            f"UPDATE accounts SET {', '.join(assignments)} WHERE wallet_id = ?",
            (*values, wallet_id),
        )
        self.db.commit()

    def delete_account(self, wallet_id: str, include_completions: bool = False) -> None:
        """Drop the account and its event history.

        Completion history is kept unless asked for, so demos finished again
        after a wipe still count as replays.
        """
        tables = ["accounts", "account_history"]
        if include_completions:
            tables.append("completion_history")
        for table in tables:
            self.db.execute(f"DELETE FROM {table} WHERE wallet_id = ?", (wallet_id,))
        self.db.commit()

    # ─── Append-only history ───

    def add_history(
        self,
        wallet_id: str,
        type: str,
        message: str = "",
        *,
        demo_id: str | None = None,
        badge_id: str | None = None,
        points: int = 0,
        data: dict | None = None,
    ) -> None:
        self.db.execute(
            "INSERT INTO account_history (wallet_id, type, message, demo_id, badge_id, points, data) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (wallet_id, type, message, demo_id, badge_id, points,
             json.dumps(data, ensure_ascii=False) if data is not None else None),
        )
        self.db.commit()

    def get_history(self, wallet_id: str, limit: int = 20, type: str | None = None) -> list[dict]:
        sql = (
            "SELECT id, type, message, demo_id, badge_id, points, data, timestamp "
            "FROM account_history WHERE wallet_id = ?"
        )
        params: list[Any] = [wallet_id]
        if type:
            sql += " AND type = ?"
            params.append(type)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = self.db.execute(sql, params).fetchall()
        return [
            {"id": r[0], "type": r[1], "message": r[2], "demo_id": r[3], "badge_id": r[4],
             "points": r[5], "data": json.loads(r[6]) if r[6] else None, "timestamp": r[7]}
            for r in rows
        ]

    # ─── Completion history ───

    def add_completion(self, wallet_id: str, record: CompletionRecord) -> None:
        self.db.execute(
            "INSERT INTO completion_history "
            "(wallet_id, demo_id, score, points_earned, completion_seconds, is_first_completion, completed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (wallet_id, record.demo_id, record.score, record.points_earned,
             record.completion_seconds, int(record.is_first_completion),
             record.completed_at or _now()),
        )
        self.db.commit()

    def completion_count(self, wallet_id: str, demo_id: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) FROM completion_history WHERE wallet_id = ? AND demo_id = ?",
            (wallet_id, demo_id),
        ).fetchone()
        return row[0]

    def get_completions(self, wallet_id: str, demo_id: str | None = None) -> list[CompletionRecord]:
        sql = (
            "SELECT demo_id, score, points_earned, completion_seconds, is_first_completion, completed_at "
            "FROM completion_history WHERE wallet_id = ?"
        )
        params: list[Any] = [wallet_id]
        if demo_id:
            sql += " AND demo_id = ?"
            params.append(demo_id)
        rows = self.db.execute(sql + " ORDER BY id", params).fetchall()
        return [
            CompletionRecord(demo_id=r[0], score=r[1], points_earned=r[2],
                             completion_seconds=r[3], is_first_completion=bool(r[4]),
                             completed_at=r[5])
            for r in rows
        ]

    # ─── Demo statistics ───

    def record_demo_completion(self, demo_id: str, completion_minutes: float, score: int) -> None:
        self._ensure_stats(demo_id)
        self.db.execute(
            "UPDATE demo_stats SET total_completions = total_completions + 1, "
            "total_completion_minutes = total_completion_minutes + ?, total_score = total_score + ? "
            "WHERE demo_id = ?",
            (completion_minutes, score, demo_id),
        )
        self.db.commit()

    def increment_clap(self, demo_id: str) -> None:
        self._ensure_stats(demo_id)
        self.db.execute(
            "UPDATE demo_stats SET total_claps = total_claps + 1 WHERE demo_id = ?", (demo_id,)
        )
        self.db.commit()

    def get_demo_stats(self, demo_id: str) -> DemoStats:
        row = self.db.execute(
            "SELECT total_completions, total_claps, total_completion_minutes, total_score "
            "FROM demo_stats WHERE demo_id = ?",
            (demo_id,),
        ).fetchone()
        if not row:
            return DemoStats(demo_id=demo_id)
        completions = row[0]
        return DemoStats(
            demo_id=demo_id,
            total_completions=completions,
            total_claps=row[1],
            average_completion_minutes=row[2] / completions if completions else 0.0,
            average_score=row[3] / completions if completions else 0.0,
        )

    # ─── Leaderboard ───

    def count_accounts(self) -> int:
        return self.db.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]

    def get_leaderboard(self, limit: int = 10, offset: int = 0) -> list[dict]:
        """Accounts ranked by points, then experience. Ranks start at offset + 1."""
        rows = self.db.execute(
            "SELECT wallet_id, display_name, experience, total_points, earned_badges FROM accounts "
            f"ORDER BY {LEADERBOARD_ORDER} LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [
            {"rank": offset + i, "wallet_id": r[0], "display_name": r[1], "level": _level(r[2]),
             "experience": r[2], "total_points": r[3], "badges": len(normalize_set(r[4]))}
            for i, r in enumerate(rows, 1)
        ]

    def get_rank(self, wallet_id: str) -> int | None:
        row = self.db.execute(
            "SELECT total_points, experience FROM accounts WHERE wallet_id = ?", (wallet_id,)
        ).fetchone()
        if not row:
            return None
        points, xp = row
        ahead = self.db.execute(
            "SELECT COUNT(*) FROM accounts WHERE total_points > ? "
            "OR (total_points = ? AND experience > ?) "
            "OR (total_points = ? AND experience = ? AND wallet_id < ?)",
            (points, points, xp, points, xp, wallet_id),
        ).fetchone()[0]
        return ahead + 1

    def get_leaderboard_around(self, wallet_id: str, radius: int = 5) -> list[dict]:
        rank = self.get_rank(wallet_id)
        if rank is None:
            return []
        first = max(1, rank - radius)
        return self.get_leaderboard(rank + radius - first + 1, offset=first - 1)

    def _ensure_stats(self, demo_id: str) -> None:
        self.db.execute("INSERT OR IGNORE INTO demo_stats (demo_id) VALUES (?)", (demo_id,))

    def close(self) -> None:
        self.db.close()
