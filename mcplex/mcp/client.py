"""One MCP protocol session (handshake, discovery, invocation) over a stdio transport."""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from mcplex import __version__
from mcplex.mcp.errors import MCPConnectionError, MCPProtocolError
from mcplex.mcp.schema import (
    PROTOCOL_VERSION,
    CallResult,
    ClientInfo,
    InitializeResult,
    JsonRpcRequest,
    ServerCapabilities,
    ServerInfo,
    Tool,
)
from mcplex.mcp.transport import DEFAULT_TIMEOUT, StdioTransport

logger = logging.getLogger(__name__)

# Tools run shell commands and network calls; give them longer than plain requests.
DEFAULT_TOOL_TIMEOUT = 60.0


class MCPClient:
    """
    MCP session on top of a :class:`StdioTransport`.

    The session is usable only after :meth:`connect` completes the
    ``initialize`` / ``notifications/initialized`` handshake, and stops
    being usable after :meth:`disconnect`.

    Example:
        >>> client = MCPClient(StdioTransport(ServerConfig(command="uvx", args=["mcp-server-git"])))
        >>> await client.connect()
        >>> tools = await client.list_tools()
        >>> result = await client.call_tool("git_status", {"repo_path": "."})
        >>> await client.disconnect()
    """

    def __init__(
        self,
        transport: StdioTransport,
        client_name: str = "mcplex",
        client_version: str = __version__,
    ):
        self.transport = transport
        self.client_info = ClientInfo(name=client_name, version=client_version)
        self._ids = itertools.count(1)
        self._server_capabilities: Optional[ServerCapabilities] = None
        self._server_info: Optional[ServerInfo] = None
        self._protocol_version: Optional[str] = None

    # ── Session state ─────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        """A spawned process that has not completed the handshake does not count."""
        return self.transport.is_running and self._server_capabilities is not None

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._server_info

    @property
    def server_capabilities(self) -> Optional[ServerCapabilities]:
        return self._server_capabilities

    @property
    def protocol_version(self) -> Optional[str]:
        return self._protocol_version

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def connect(self, timeout: float = DEFAULT_TIMEOUT) -> InitializeResult:
        """
        Start the server process and perform the MCP handshake.

        Args:
            timeout: Seconds to wait for the ``initialize`` response.

        Returns:
            The server's parsed initialize result.

        Raises:
            MCPConnectionError: The process could not be started or died.
            MCPProtocolError: The server rejected ``initialize``.
            MCPTimeoutError: The server never answered.
        """
        await self.transport.start()
        try:
            raw = await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"roots": {"listChanged": False}, "sampling": {}},
                    "clientInfo": self.client_info.model_dump(),
                },
                timeout=timeout,
                action="Initialize",
            )
            try:
                result = InitializeResult.model_validate(raw)
            except ValidationError as exc:
                raise MCPProtocolError(f"Invalid initialize result: {exc}") from exc

            self._server_capabilities = result.capabilities
            self._server_info = result.serverInfo
            self._protocol_version = result.protocolVersion

            await self.transport.send_notification("notifications/initialized")
        except BaseException:
            await self.disconnect()
            raise

        logger.info(
            "Connected to %s (protocol %s)",
            result.serverInfo.label() if result.serverInfo else self.transport.name,
            result.protocolVersion,
        )
        return result

    async def disconnect(self) -> None:
        """Stop the server process and forget the session."""
        try:
            await self.transport.stop()
        finally:
            self._server_capabilities = None
            self._server_info = None
            self._protocol_version = None

    # ── MCP Protocol ──────────────────────────────────────────────────────

    async def list_tools(self, timeout: float = DEFAULT_TIMEOUT) -> List[Tool]:
        """Fetch the tool list from the MCP server."""
        self._ensure_connected()
        raw = await self._request("tools/list", None, timeout=timeout, action="tools/list")
        try:
            return [Tool.model_validate(tool) for tool in (raw or {}).get("tools") or []]
        except (ValidationError, AttributeError, TypeError) as exc:
            raise MCPProtocolError(f"Invalid tools/list result: {exc}") from exc

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_TOOL_TIMEOUT,
    ) -> CallResult:
        """Call a tool on the MCP server and return its result unchanged."""
        self._ensure_connected()
        raw = await self._request(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            timeout=timeout,
            action="tools/call",
        )
        try:
            return CallResult.model_validate(raw)
        except ValidationError as exc:
            raise MCPProtocolError(f"Invalid tools/call result: {exc}") from exc

    # ── Internals ─────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        params: Optional[Dict[str, Any]],
        timeout: float,
        action: str,
    ) -> Any:
        request = JsonRpcRequest(id=next(self._ids), method=method, params=params)
        response = await self.transport.request(request, timeout=timeout)
        if response.error is not None:
            raise MCPProtocolError(
                f"{action} failed: {response.error.message}",
                code=response.error.code,
                data=response.error.data,
            )
        return response.result

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise MCPConnectionError(
                f"Not connected to MCP server '{self.transport.name}'. Call connect() first."
            )
