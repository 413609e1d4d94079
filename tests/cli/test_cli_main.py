"""Tests for the voiceops Typer commands.

Commands run against an engine context built around the in-memory store
and the fake provider, so no database file or network is touched.
"""

import json

import pytest
from typer.testing import CliRunner

from src.cli.config import SyncConfig, VoiceOpsConfig
from src.cli.main import app
from src.services.engine_provider import build_context
from tests.helpers import TEST_API_KEY, json_response

runner = CliRunner()


@pytest.fixture
def cli_engine(monkeypatch, tmp_path, store, vault, provider):
    """Patch context construction so every command shares one store."""
    async def _create(config):
        return build_context(
            VoiceOpsConfig(sync=SyncConfig(batch_delay_ms=0)),
            store=store, vault=vault, client=provider.client(),
        )

    monkeypatch.setattr("src.cli.main.create_engine_context", _create)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("src.cli.config.get_config_dir", lambda: tmp_path / "user-config")
    return store


def test_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "sync" in result.stdout


def test_sync_help():
    result = runner.invoke(app, ["sync", "--help"])
    assert result.exit_code == 0
    assert "--agent" in result.stdout


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "VoiceOps Sync" in result.stdout


class TestIntegrationCommands:
    """set-key, approve, test, and status."""

    def test_set_key_then_test(self, cli_engine):
        result = runner.invoke(app, ["integration", "set-key", "org-1", "--api-key", TEST_API_KEY])
        assert result.exit_code == 0
        assert TEST_API_KEY not in result.stdout

        result = runner.invoke(app, ["integration", "test", "org-1"])
        assert result.exit_code == 0
        assert "Successfully connected" in result.stdout
        assert cli_engine.integrations[("org-1", "elevenlabs")].status == "ACTIVE"

    def test_set_key_prompts_for_key(self, cli_engine):
        result = runner.invoke(app, ["integration", "set-key", "org-1"], input=f"{TEST_API_KEY}\n")
        assert result.exit_code == 0
        assert ("org-1", "elevenlabs") in cli_engine.integrations

    def test_set_key_rejects_unknown_provider(self, cli_engine):
        result = runner.invoke(
            app, ["integration", "set-key", "org-1", "--api-key", "k", "--provider", "acme"],
        )
        assert result.exit_code == 1

    def test_failed_connectivity_test_exits_nonzero(self, cli_engine, provider):
        runner.invoke(app, ["integration", "set-key", "org-1", "--api-key", TEST_API_KEY])
        provider.user_status = (401, {"detail": {"message": "Invalid API key"}})

        result = runner.invoke(app, ["integration", "test", "org-1"])

        assert result.exit_code == 1
        assert "E-2001" in result.stdout

    def test_test_without_integration(self, cli_engine):
        result = runner.invoke(app, ["integration", "test", "org-1"])
        assert result.exit_code == 1

    def test_approve(self, cli_engine):
        runner.invoke(
            app,
            ["integration", "set-key", "org-1", "--api-key", TEST_API_KEY, "--requires-approval"],
        )

        result = runner.invoke(app, ["integration", "approve", "org-1"])

        assert result.exit_code == 0
        assert "INACTIVE" in result.stdout
        assert runner.invoke(app, ["integration", "approve", "org-1"]).exit_code == 1

    def test_status_json(self, cli_engine):
        result = runner.invoke(app, ["integration", "status", "org-1", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["configured"] is False


class TestAgentCommands:
    """agent add and agent list."""

    def test_add_and_list(self, cli_engine):
        result = runner.invoke(app, ["agent", "add", "org-1", "agent-1", "--name", "Front desk"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["agent", "list", "org-1", "--json"])
        agents = json.loads(result.stdout)
        assert [a["externalAgentId"] for a in agents] == ["agent-1"]

    def test_duplicate_agent(self, cli_engine):
        runner.invoke(app, ["agent", "add", "org-1", "agent-1"])
        result = runner.invoke(app, ["agent", "add", "org-1", "agent-1"])
        assert result.exit_code == 1
        assert "already registered" in result.stdout


class TestSyncCommand:
    """sync and conversations."""

    def test_sync_and_list(self, cli_engine, vault):
        cli_engine.seed_integration(vault)
        cli_engine.seed_agent()

        result = runner.invoke(app, ["sync", "org-1", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["totalSynced"] == 10

        result = runner.invoke(app, ["conversations", "org-1", "--limit", "2", "--json"])
        records = json.loads(result.stdout)
        assert [r["externalConversationId"] for r in records] == ["conv-009", "conv-008"]

    def test_sync_without_integration(self, cli_engine):
        result = runner.invoke(app, ["sync", "org-1"])
        assert result.exit_code == 1
        assert "no active" in result.stdout

    def test_listing_failure_prints_summary(self, cli_engine, vault, provider):
        cli_engine.seed_integration(vault)
        provider.list_responses = [json_response(401, {"detail": {"message": "Invalid API key"}})]

        result = runner.invoke(app, ["sync", "org-1", "--json"])

        assert result.exit_code == 1
        assert json.loads(result.stdout)["message"].startswith("Sync failed:")
