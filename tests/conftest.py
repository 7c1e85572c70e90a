"""Shared helpers: launch configs for the stub MCP provider."""

import sys
from pathlib import Path

from mcplex.mcp.schema import ServerConfig

STUB_SERVER = Path(__file__).resolve().parent / "stub_server.py"


def stub_config(*flags: str, **env: str) -> ServerConfig:
    """Launch config for ``tests/stub_server.py`` with the given flags."""
    return ServerConfig(command=sys.executable, args=[str(STUB_SERVER), *flags], env=env)
