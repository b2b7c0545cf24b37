"""walkthrough status / history / leaderboard — account progress, recent events and ranking."""
from __future__ import annotations

from escrow_walkthrough.commands.common import open_walkthrough
from escrow_walkthrough.rewards.catalog import BADGES


def cmd_status(cwd: str, wallet: str | None = None):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        st = walkthrough.get_status()
        acct = st["account"]
        print(f'Wallet {st["wallet"]["wallet_id"]}')
        print(f'Level {acct["level"]} ({acct["level_progress"]} XP) · {acct["total_points"]} points')
        print(f'Main demos: {acct["main_demos"]}')
        if acct["completed_demos"]:
            print(f'Completed: {", ".join(acct["completed_demos"])}')
        if acct["earned_badges"]:
            names = [BADGES[b].name if b in BADGES else b for b in acct["earned_badges"]]
            print(f'Badges: {", ".join(names)}')
        if acct["capstone_ready"] and "nexus_master" not in acct["earned_badges"]:
            print("Nexus Master is ready to claim: walkthrough claim")
        if acct["mini_games_unlocked"]:
            print("Mini-games unlocked")
        if acct["available_quests"]:
            print(f'Quests: {", ".join(acct["available_quests"])}')
    finally:
        walkthrough.close()


def cmd_history(cwd: str, wallet: str | None = None, limit: int = 20):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        entries = walkthrough.get_history(limit)
        if not entries:
            print("No history yet.")
            return
        for e in entries:
            points = f' (+{e["points"]})' if e["points"] else ""
            print(f'{e["timestamp"]}  {e["type"]:<16} {e["message"]}{points}')
    finally:
        walkthrough.close()


def cmd_leaderboard(cwd: str, wallet: str | None = None, limit: int = 10):
    walkthrough = open_walkthrough(cwd, wallet)
    try:
        board = walkthrough.get_leaderboard(limit)
        for entry in board["top"]:
            _print_entry(entry)
        if board["around"]:
            print("    ...")
            for entry in board["around"]:
                _print_entry(entry)
        if board["rank"]:
            print(f'\nYou are #{board["rank"]} of {board["total_accounts"]}')
    finally:
        walkthrough.close()


def _print_entry(entry: dict):
    mark = "→" if entry["is_current"] else " "
    name = entry["display_name"] or entry["wallet_id"][:8]
    print(f'{mark} {entry["rank"]:>3}. {name:<20} level {entry["level"]:<3} {entry["total_points"]:>6} points')
