"""Tests for the command-line interface."""

import pytest
from typer.testing import CliRunner

from factcheck_relayer.cli import app
from factcheck_relayer.config import REQUIRED_SETTINGS
from factcheck_relayer.models.schemas import FactCheckRequest
from factcheck_relayer.state.store import RequestStore

runner = CliRunner()


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Isolate the CLI from the developer's environment."""
    monkeypatch.chdir(tmp_path)
    for env_name in REQUIRED_SETTINGS.values():
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("COLUMNS", "200")
    return monkeypatch


def test_run_exits_when_required_variables_missing(env):
    env.setenv("ALCHEMY_URL", "http://rpc.test")

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1
    assert "RELAYER_PRIVATE_KEY" in result.output


def test_check_config_reports_missing(env):
    result = runner.invoke(app, ["check-config"])

    assert result.exit_code == 1
    assert "WALRUS_GATEWAY_URL" in result.output


def test_check_config_masks_secrets(env):
    env.setenv("ALCHEMY_URL", "http://rpc.test/secret-key")
    env.setenv("RELAYER_PRIVATE_KEY", "0x" + "11" * 32)
    env.setenv("FACTCHECK_CONTRACT", "0x" + "22" * 20)
    env.setenv("WALRUS_GATEWAY_URL", "https://walrus.test")

    result = runner.invoke(app, ["check-config"])

    assert result.exit_code == 0
    assert "secret-key" not in result.output
    assert "11" * 32 not in result.output


def test_process_requires_gateway(env):
    result = runner.invoke(app, ["process", "blob123"])

    assert result.exit_code == 1
    assert "WALRUS_GATEWAY_URL" in result.output


def test_dead_letters_and_requeue(env, tmp_path):
    store = RequestStore(tmp_path / "state", max_attempts=1)
    store.upsert_request(FactCheckRequest(request_id=7, requester="0xABC", content_uri="blob123"))
    store.mark_in_flight(7)
    store.mark_failed(7, "FetchError: HTTP 404")

    listed = runner.invoke(app, ["dead-letters"])
    assert listed.exit_code == 0
    assert "blob123" in listed.output

    requeued = runner.invoke(app, ["requeue", "7"])
    assert requeued.exit_code == 0
    assert store.get(7).attempts == 0

    again = runner.invoke(app, ["requeue", "7"])
    assert again.exit_code == 1


def test_process_submit_requires_request_id(env):
    env.setenv("WALRUS_GATEWAY_URL", "https://walrus.test")

    result = runner.invoke(app, ["process", "blob123", "--submit"])

    assert result.exit_code == 1
    assert "--request-id" in result.output
