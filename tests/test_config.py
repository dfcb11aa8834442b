"""Tests for settings loading."""

from pathlib import Path

import pytest

from factcheck_relayer.config import REQUIRED_SETTINGS, Settings


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run with no relayer variables set and no `.env` file in reach."""
    monkeypatch.chdir(tmp_path)
    for env_name in list(REQUIRED_SETTINGS.values()) + [
        "BROKER_URL",
        "DEEPSEEK_PROVIDER",
        "SERPAPI_KEY",
        "MAX_CLAIMS",
        "STATE_DIR",
    ]:
        monkeypatch.delenv(env_name, raising=False)


def test_settings_start_without_any_variables(clean_env):
    """Settings initialize with every optional value unset."""
    settings = Settings()

    assert settings.alchemy_url is None
    assert settings.broker_url is None
    assert settings.has_broker is False
    assert settings.has_search is False


def test_defaults(clean_env):
    settings = Settings()

    assert settings.broker_fallback_fee == 0.01
    assert settings.num_results == 5
    assert settings.max_claims == 1
    assert settings.poll_interval == 4.0
    assert settings.max_attempts == 3
    assert settings.max_records == 1000
    assert settings.log_level == "INFO"
    assert settings.resolved_state_dir == Path.home() / ".factcheck-relayer"


def test_missing_required_lists_env_names(clean_env, monkeypatch):
    monkeypatch.setenv("ALCHEMY_URL", "http://rpc.test")
    monkeypatch.setenv("FACTCHECK_CONTRACT", "0x" + "22" * 20)

    assert Settings().missing_required() == ["RELAYER_PRIVATE_KEY", "WALRUS_GATEWAY_URL"]


def test_values_come_from_environment(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("BROKER_URL", "http://broker.test/query")
    monkeypatch.setenv("DEEPSEEK_PROVIDER", "0xProvider")
    monkeypatch.setenv("MAX_CLAIMS", "3")
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))

    settings = Settings()

    assert settings.has_broker is True
    assert settings.max_claims == 3
    assert settings.resolved_state_dir == tmp_path / "state"


def test_values_come_from_dotenv_file(clean_env, tmp_path):
    (tmp_path / ".env").write_text("SERPAPI_KEY=serp-key\nUNRELATED_VARIABLE=ignored\n")

    settings = Settings()

    assert settings.serpapi_key == "serp-key"
    assert settings.has_search is True
