"""Settings: `.walkthrough/config.toml`, overridden by WALKTHROUGH_* environment variables."""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING

from escrow_walkthrough.engine.policy import DEFAULT_AUTO_RESOLVE_MS

if TYPE_CHECKING:
    from collections.abc import Mapping

WORKSPACE_DIR = ".walkthrough"
CONFIG_FILE = "config.toml"

ENV_OVERRIDES = {
    "WALKTHROUGH_DB": "db_path",
    "WALKTHROUGH_WALLET": "wallet_id",
    "WALKTHROUGH_POLICY": "policy",
    "WALKTHROUGH_AUTO_RESOLVE_MS": "auto_resolve_ms",
    "WALKTHROUGH_LEDGER_LATENCY_MS": "ledger_latency_ms",
}


@dataclass
class Settings:
    workspace: Path = Path(WORKSPACE_DIR)
    db_path: Path | None = None
    wallet_id: str | None = None
    display_name: str = ""
    network: str = "testnet"
    policy: str = "optimistic"
    auto_resolve_ms: int = DEFAULT_AUTO_RESOLVE_MS
    # None: the simulated ledger never confirms, only the policy resolves
    ledger_latency_ms: int | None = 1000
    demos_dir: Path | None = None

    def __post_init__(self):
        self.workspace = Path(self.workspace)
        if self.db_path is None:
            self.db_path = self.workspace / "state.db"
        self.db_path = Path(self.db_path)
        if self.demos_dir is not None:
            self.demos_dir = Path(self.demos_dir)
        self.auto_resolve_ms = int(self.auto_resolve_ms)
        if self.ledger_latency_ms is not None:
            self.ledger_latency_ms = int(self.ledger_latency_ms)
        if self.policy not in ("optimistic", "strict"):
            raise ValueError(f"Unknown completion policy in config: {self.policy!r}")

    @property
    def ledger_latency(self) -> float | None:
        return None if self.ledger_latency_ms is None else self.ledger_latency_ms / 1000


def load_settings(
    workspace: str | Path = WORKSPACE_DIR,
    env: Mapping[str, str] | None = None,
    **overrides,
) -> Settings:
    """Build Settings from the workspace config file, then env, then explicit overrides."""
    env = os.environ if env is None else env
    workspace = Path(workspace)
    values: dict = {}

    config_path = workspace / CONFIG_FILE
    if config_path.exists():
        cfg = tomllib.loads(config_path.read_text(encoding="utf-8"))
        known = {f.name for f in fields(Settings)}
        unknown = set(cfg) - known
        if unknown:
            raise ValueError(f"{config_path}: unknown keys {', '.join(sorted(unknown))}")
        values.update(cfg)

    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            values[key] = env[var]

    values.update({k: v for k, v in overrides.items() if v is not None})
    if values.get("ledger_latency_ms") in ("none", "off"):
        values["ledger_latency_ms"] = None
    values["workspace"] = workspace
    return Settings(**values)
