"""Tests for engine configuration persistence and environment overrides."""
from pathlib import Path

from valuation.config import EngineConfig


def test_save_and_load(tmp_path):
    config = EngineConfig()
    config.default_jurisdiction = "NY"
    config.range.low_factor = 0.5
    config.negotiation.counter_step = 0.2
    config.precedents.verdicts_path = tmp_path / "verdicts.json"

    path = tmp_path / "conf" / "engine.json"
    config.save(path)
    loaded = EngineConfig.load(path)

    assert loaded.default_jurisdiction == "NY"
    assert loaded.range.low_factor == 0.5
    assert loaded.negotiation.counter_step == 0.2
    assert loaded.precedents.verdicts_path == tmp_path / "verdicts.json"
    assert isinstance(loaded.db_path, Path)


def test_token_never_written(tmp_path):
    config = EngineConfig()
    config.precedents.courtlistener_token = "secret"
    assert "courtlistener_token" not in config.to_dict()["precedents"]
    # to_dict works on a copy of the section
    assert config.precedents.courtlistener_token == "secret"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("SETTLEMENT_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SETTLEMENT_DEFAULT_JURISDICTION", " ny ")
    monkeypatch.setenv("SETTLEMENT_PRECEDENT_PROVIDER", "CourtListener")
    monkeypatch.setenv("COURTLISTENER_TOKEN", "abc123")

    config = EngineConfig.from_env()

    assert config.db_path == tmp_path / "env.db"
    assert config.default_jurisdiction == "NY"
    assert config.precedents.provider == "courtlistener"
    assert config.precedents.courtlistener_token == "abc123"
