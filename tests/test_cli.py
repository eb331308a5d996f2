"""Tests for the command-line interface."""

import importlib
import json

import pytest
from click.testing import CliRunner

from mcpchat import __version__
from mcpchat.validation.config import Config

from fakes import FakeMCPServer, make_tool

cli_main = importlib.import_module("mcpchat.cli.main")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_servers(monkeypatch, make_registry):
    servers = {
        "local": FakeMCPServer("local", tools=[make_tool("create_task", required=["title"], title="string")]),
        "tavily": FakeMCPServer("tavily", tools=[make_tool("search", required=["query"], query="string")]),
    }
    monkeypatch.setattr(cli_main, "_load_config", lambda: Config(environ={}))
    monkeypatch.setattr(cli_main, "_make_registry", lambda config: make_registry(servers))
    return servers


def test_version(runner):
    result = runner.invoke(cli_main.cli, ["--version"])

    assert result.exit_code == 0
    assert f"MCPChat v{__version__}" in result.output


def test_help_without_command(runner):
    result = runner.invoke(cli_main.cli, [])

    assert result.exit_code == 0
    assert "chat" in result.output
    assert "tools" in result.output


class TestCall:
    def test_invalid_json_arguments(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["call", "search", "--args", "{query: x}"])

        assert result.exit_code == 2
        assert "not valid JSON" in result.output
        assert fake_servers["tavily"].calls == []

    def test_arguments_must_be_object(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["call", "search", "--args", "[1, 2]"])

        assert result.exit_code == 2
        assert "must be a JSON object" in result.output

    def test_call_prints_result(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["call", "search", "--args", json.dumps({"query": "mcp"})])

        assert result.exit_code == 0, result.output
        assert "tavily:search" in result.output
        assert fake_servers["tavily"].calls == [("search", {"query": "mcp"})]

    def test_unknown_tool(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["call", "translate"])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestListing:
    def test_tools(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["tools"])

        assert result.exit_code == 0, result.output
        assert "create_task" in result.output
        assert "search" in result.output

    def test_servers(self, runner, fake_servers):
        result = runner.invoke(cli_main.cli, ["servers"])

        assert result.exit_code == 0, result.output
        assert "local" in result.output
        assert "tavily" in result.output
        assert "connected" in result.output

    def test_no_servers_configured(self, runner, monkeypatch):
        monkeypatch.setattr(cli_main, "_load_config", lambda: Config(environ={}))

        result = runner.invoke(cli_main.cli, ["servers"])

        assert result.exit_code == 1
        assert "No MCP servers configured" in result.output
