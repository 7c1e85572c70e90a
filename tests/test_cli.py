"""Tests for the command-line interface."""

import json
import sys
from unittest.mock import AsyncMock

import pytest
import yaml
from click.testing import CliRunner
from prompt_toolkit.document import Document

from mcplex.cli.completer import McplexCompleter
from mcplex.cli.main import McplexREPL, build_router, cli, parse_tool_arguments
from mcplex.tools.schema import ToolResultBlock
from mcplex.validation.config import Config

from conftest import STUB_SERVER


def stub_entry(*flags, **extra):
    return {"command": sys.executable, "args": [str(STUB_SERVER), *flags], **extra}


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump(
            {
                "mcp": {
                    "request_timeout": 5,
                    "tool_timeout": 5,
                    "shutdown_grace": 1,
                    "servers": {
                        "alpha": stub_entry("--name", "alpha", "--tools", "search,fail", auto_connect=True),
                        "beta": stub_entry("--name", "beta", "--tools", "read_file"),
                        "off": stub_entry(enabled=False),
                    },
                }
            }
        )
    )
    return path


class TestParseToolArguments:
    """Tests for key=value argument parsing."""

    def test_json_values_keep_type(self):
        assert parse_tool_arguments(["n=5", "flag=true", "tags=[\"a\",\"b\"]", "opts={\"x\":1}"]) == {
            "n": 5,
            "flag": True,
            "tags": ["a", "b"],
            "opts": {"x": 1},
        }

    def test_plain_strings(self):
        assert parse_tool_arguments(["path=/tmp/a b", "query=hello", "empty="]) == {
            "path": "/tmp/a b",
            "query": "hello",
            "empty": "",
        }

    def test_value_may_contain_equals(self):
        assert parse_tool_arguments(["expr=a=b"]) == {"expr": "a=b"}

    @pytest.mark.parametrize("pair", ["novalue", "=value"])
    def test_rejects_bad_pairs(self, pair):
        with pytest.raises(ValueError):
            parse_tool_arguments([pair])


class TestCompleter:
    """Tests for McplexCompleter."""

    def complete(self, completer, text):
        return [c.text for c in completer.get_completions(Document(text), None)]

    def test_slash_commands(self):
        completer = McplexCompleter()

        assert self.complete(completer, "/mcp c") == ["/mcp connect", "/mcp call"]
        assert self.complete(completer, "hello") == []

    def test_server_names(self):
        completer = McplexCompleter(server_names_fn=lambda: ["git", "github", "fs"])

        assert self.complete(completer, "/mcp connect gi") == ["git", "github"]
        assert self.complete(completer, "/mcp disconnect f") == ["fs"]

    def test_tool_names(self):
        completer = McplexCompleter(tool_names_fn=lambda: ["git_status", "git_log", "search"])

        assert self.complete(completer, "/mcp call git_") == ["git_status", "git_log"]
        assert self.complete(completer, "/mcp call git_status repo") == []


class TestCommands:
    """Tests for the click commands."""

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "mcplex v" in result.output

    def test_servers(self, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "servers"])

        assert result.exit_code == 0
        assert "alpha" in result.output
        assert "beta" in result.output
        assert "off" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("mcp:\n  servers:\n    broken:\n      args: [x]\n")

        result = CliRunner().invoke(cli, ["--config", str(path), "servers"])

        assert result.exit_code == 1
        assert "Config error" in result.output

    def test_call(self, config_file):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "call", "read_file", "path=a.txt", "--server", "beta"]
        )

        assert result.exit_code == 0
        assert '"server": "beta"' in result.output
        assert '"path": "a.txt"' in result.output

    def test_call_tool_error_exit_code(self, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "call", "fail", "-s", "alpha"])

        assert result.exit_code == 1
        assert '"tool": "fail"' in result.output
        assert "Tool reported an error" not in result.output

    def test_call_bad_argument(self, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "call", "search", "oops"])

        assert result.exit_code == 2
        assert "key=value" in result.output

    def test_tools(self, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "tools"])

        assert result.exit_code == 0
        assert "search" in result.output
        assert "read_file" in result.output


class TestREPL:
    """Tests for console slash commands."""

    @pytest.mark.asyncio
    async def test_connect_call_disconnect(self, config_file):
        config = Config.from_file(config_file)
        repl = McplexREPL(config, router=build_router(config))
        try:
            assert await repl._handle_command("/mcp connect beta") is True
            assert repl.router.connected_servers == ["beta"]

            block = await repl.tool_handler.execute_tool_result({"name": "read_file", "input": {"path": "x"}})
            assert json.loads(block.content)["server"] == "beta"

            await repl._handle_command("/mcp disconnect beta")
            assert repl.router.connected_servers == []
        finally:
            await repl.router.disconnect_all()

    @pytest.mark.asyncio
    async def test_call_quoted_arguments(self, config_file):
        repl = McplexREPL(Config.from_file(config_file))
        repl.tool_handler.execute_tool_result = AsyncMock(return_value=ToolResultBlock(content="[done]"))

        await repl._handle_command('/mcp call search query="two words" limit=3')

        repl.tool_handler.execute_tool_result.assert_awaited_once_with(
            {"name": "search", "input": {"query": "two words", "limit": 3}}
        )

    @pytest.mark.asyncio
    async def test_call_unbalanced_quote(self, config_file):
        repl = McplexREPL(Config.from_file(config_file))
        repl.tool_handler.execute_tool_result = AsyncMock()

        assert await repl._handle_command('/mcp call search query="open') is True

        repl.tool_handler.execute_tool_result.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exit(self, config_file):
        repl = McplexREPL(Config.from_file(config_file))

        assert await repl._handle_command("/exit") is False
        assert repl.running is False

    def test_build_router_uses_config(self, config_file):
        router = build_router(Config.from_file(config_file))

        assert router.request_timeout == 5
        assert router.tool_timeout == 5
