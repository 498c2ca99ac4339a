"""Tests for the flowsync command line."""

import json

import pytest
from typer.testing import CliRunner

from flowsync.cli import app


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path, monkeypatch):
    monkeypatch.delenv("FLOWSYNC_IDENTITY", raising=False)
    monkeypatch.delenv("FLOWSYNC_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    store = tmp_path / "store"

    def run(*args, input=None):
        return runner.invoke(app, ["--store", str(store), *args], input=input)

    return run


class TestConfigCommand:
    def test_shows_resolved_config(self, invoke, tmp_path):
        result = invoke("config")
        assert result.exit_code == 0, result.output
        assert f"store: {tmp_path / 'store'}" in result.output
        assert "identity: (none)" in result.output
        assert "token: not set" in result.output
        assert (tmp_path / "store" / "flowsync.toml").exists()


class TestDocuments:
    def test_set_then_get_without_identity(self, invoke):
        result = invoke("set", "profile/settings", '{"theme": "dark"}')
        assert result.exit_code == 0, result.output

        result = invoke("get", "profile/settings")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"theme": "dark"}

    def test_set_then_get_with_identity(self, invoke):
        assert invoke("set", "planner/daily/2025-01-01", '{"content": "hi"}', "--identity", "alice").exit_code == 0
        assert invoke("set", "planner/daily/2025-01-01", '{"mood": 3}', "--identity", "alice").exit_code == 0

        result = invoke("get", "planner/daily/2025-01-01", "--identity", "alice")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"content": "hi", "mood": 3}

        # Another identity sees nothing
        assert invoke("get", "planner/daily/2025-01-01", "--identity", "bob").exit_code == 1

    def test_invalid_json(self, invoke):
        result = invoke("set", "profile/settings", "{nope")
        assert result.exit_code == 1

    def test_non_object_rejected(self, invoke):
        result = invoke("set", "profile/settings", "[1, 2]")
        assert result.exit_code == 1

    def test_bad_path(self, invoke):
        result = invoke("get", "settings", "--identity", "alice")
        assert result.exit_code == 1


class TestMigrate:
    def test_requires_identity(self, invoke):
        result = invoke("migrate")
        assert result.exit_code == 1

    def test_check_then_migrate(self, invoke):
        result = invoke("migrate", "--check", "--identity", "alice")
        assert result.exit_code == 0, result.output
        assert "Migration needed" in result.output

        result = invoke("migrate", "--identity", "alice")
        assert result.exit_code == 0, result.output
        assert "Migrated 0 documents" in result.output

        result = invoke("migrate", "--identity", "alice")
        assert "Already migrated" in result.output


class TestBackupCommands:
    def test_export_requires_token(self, invoke):
        result = invoke("export", "--identity", "alice", "--owner", "alice")
        assert result.exit_code == 1

    def test_export_requires_owner(self, invoke, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "t")
        result = invoke("export", "--identity", "alice")
        assert result.exit_code == 1

    def test_import_declined(self, invoke, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "t")
        result = invoke("import", "--identity", "alice", "--owner", "alice", input="n\n")
        assert result.exit_code == 0
        assert "Continue?" in result.output
