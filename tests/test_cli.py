"""Tests for the memloop CLI."""

import pytest
from typer.testing import CliRunner

from memloop.cli import app

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run from an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestToolsCommand:
    def test_schemas_for_proxied_mode_omit_rest_tools(self):
        result = runner.invoke(app, ["tools", "--mode", "proxied", "--schemas"])

        assert result.exit_code == 0
        assert '"search_memory"' in result.output
        assert '"query_signals"' not in result.output
        assert '"create_plan"' not in result.output

    def test_direct_mode_lists_rest_tools(self):
        result = runner.invoke(app, ["tools", "--schemas"])

        assert result.exit_code == 0
        assert '"query_signals"' in result.output


class TestConfigCommand:
    def test_missing_credentials_exit_2(self, workdir):
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 2
        assert "MEMLOOP_REST_URL" in result.output

    def test_valid_configuration(self, workdir, monkeypatch):
        monkeypatch.setenv("MEMLOOP_REST_URL", "http://rest.test")
        monkeypatch.setenv("MEMLOOP_TOKEN", "svc-token-1234567890")

        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "svc-token-1234567890" not in result.output


class TestCallCommand:
    def test_greet(self, workdir, monkeypatch):
        monkeypatch.setenv("MEMLOOP_MODE", "proxied")
        monkeypatch.setenv("MEMLOOP_API_KEY", "personal-key")

        result = runner.invoke(app, ["call", "greet", "--args", '{"name": "Ada"}'])

        assert result.exit_code == 0
        assert "Hello Ada!" in result.output

    def test_invalid_json_args(self, workdir):
        result = runner.invoke(app, ["call", "greet", "--args", "{not json"])
        assert result.exit_code == 1

    def test_error_response_exits_1(self, workdir, monkeypatch):
        monkeypatch.setenv("MEMLOOP_MODE", "proxied")
        monkeypatch.setenv("MEMLOOP_API_KEY", "personal-key")

        result = runner.invoke(app, ["call", "no_such_tool"])

        assert result.exit_code == 1
        assert "Unknown tool" in result.output
