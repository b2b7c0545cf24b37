"""Settings from config.toml, environment and explicit overrides."""
from __future__ import annotations

from pathlib import Path

import pytest

from escrow_walkthrough.config import Settings, load_settings


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / ".walkthrough", env={})
    assert settings.db_path == tmp_path / ".walkthrough" / "state.db"
    assert settings.policy == "optimistic"
    assert settings.auto_resolve_ms == 3000
    assert settings.ledger_latency == pytest.approx(1.0)
    assert settings.wallet_id is None
    assert settings.demos_dir is None


def test_config_file_then_env_then_overrides(tmp_path):
    ws = tmp_path / ".walkthrough"
    ws.mkdir()
    (ws / "config.toml").write_text(
        'wallet_id = "GFROMFILE"\npolicy = "strict"\nauto_resolve_ms = 5000\nnetwork = "mainnet"\n',
        encoding="utf-8",
    )

    from_file = load_settings(ws, env={})
    assert (from_file.wallet_id, from_file.policy, from_file.auto_resolve_ms) == ("GFROMFILE", "strict", 5000)
    assert from_file.network == "mainnet"

    env = {"WALKTHROUGH_WALLET": "GFROMENV", "WALKTHROUGH_AUTO_RESOLVE_MS": "250", "WALKTHROUGH_DB": str(tmp_path / "x.db")}
    from_env = load_settings(ws, env=env)
    assert from_env.wallet_id == "GFROMENV"
    assert from_env.auto_resolve_ms == 250
    assert from_env.db_path == Path(tmp_path / "x.db")

    explicit = load_settings(ws, env=env, wallet_id="GEXPLICIT", policy=None)
    assert explicit.wallet_id == "GEXPLICIT"
    assert explicit.policy == "strict"


def test_ledger_latency_off(tmp_path):
    settings = load_settings(tmp_path, env={"WALKTHROUGH_LEDGER_LATENCY_MS": "off"})
    assert settings.ledger_latency is None


def test_unknown_key_rejected(tmp_path):
    (tmp_path / "config.toml").write_text('colour = "blue"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="unknown keys colour"):
        load_settings(tmp_path, env={})


def test_bad_policy_rejected():
    with pytest.raises(ValueError, match="Unknown completion policy"):
        Settings(policy="eager")
