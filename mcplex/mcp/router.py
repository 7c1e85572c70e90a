"""Router over several MCP servers: one tool surface, calls dispatched by tool name."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from mcplex.mcp.client import DEFAULT_TOOL_TIMEOUT, MCPClient
from mcplex.mcp.errors import MCPRoutingError
from mcplex.mcp.schema import CallResult, ServerConfig, ServerConnectResult, Tool
from mcplex.mcp.transport import DEFAULT_TIMEOUT, StdioTransport

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, ServerConfig], MCPClient]


def default_client_factory(name: str, config: ServerConfig) -> MCPClient:
    return MCPClient(StdioTransport(config, name=name))


class MCPRouter:
    """
    Registry of named MCP clients with a tool-name → server index.

    Registration is all-or-nothing: a server's tools become routable only
    once it has connected and listed them. When two servers expose the same
    tool name, the later registration owns it.

    Tool lookup in :meth:`call_tool` is point-in-time. A disconnect that
    lands after the lookup but before the call completes surfaces as the
    client's own ``MCPConnectionError``, not as a routing error.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        request_timeout: float = DEFAULT_TIMEOUT,
        tool_timeout: float = DEFAULT_TOOL_TIMEOUT,
    ):
        self._client_factory = client_factory or default_client_factory
        self.request_timeout = request_timeout
        self.tool_timeout = tool_timeout
        self._clients: Dict[str, MCPClient] = {}
        self._tool_owner: Dict[str, str] = {}
        self._server_tools: Dict[str, List[str]] = {}
        self._lock = asyncio.Lock()

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def server_names(self) -> List[str]:
        return list(self._clients)

    @property
    def connected_servers(self) -> List[str]:
        return [name for name, client in self._clients.items() if client.is_connected]

    @property
    def is_connected(self) -> bool:
        return any(client.is_connected for client in self._clients.values())

    @property
    def tool_names(self) -> List[str]:
        return list(self._tool_owner)

    def get_client(self, name: str) -> Optional[MCPClient]:
        return self._clients.get(name)

    def owner_of(self, tool_name: str) -> Optional[str]:
        return self._tool_owner.get(tool_name)

    def tools_of(self, server_name: str) -> List[str]:
        return list(self._server_tools.get(server_name, []))

    # ── Registration ──────────────────────────────────────────────────────

    async def add_server(self, name: str, config: ServerConfig) -> ServerConnectResult:
        """
        Connect to a server and make its tools routable.

        Never raises for server-side failures; the returned result carries
        ``success=False`` and the error text instead. Re-adding a name swaps
        in the new client only after it is fully connected.
        """
        client: Optional[MCPClient] = None
        try:
            client = self._client_factory(name, config)
            init = await client.connect(timeout=self.request_timeout)
            tools = await client.list_tools(timeout=self.request_timeout)
        except Exception as exc:
            logger.warning("Failed to add MCP server %s: %s", name, exc)
            if client is not None:
                await self._discard(name, client)
            return ServerConnectResult(success=False, server_name=name, error=str(exc) or type(exc).__name__)

        tool_names = [tool.name for tool in tools]
        async with self._lock:
            previous = self._clients.get(name)
            if previous is not None:
                self._unregister(name)
            self._clients[name] = client
            self._server_tools[name] = tool_names
            for tool_name in tool_names:
                owner = self._tool_owner.get(tool_name)
                if owner is not None and owner != name:
                    logger.warning("Tool %s from %s shadows the one from %s", tool_name, name, owner)
                self._tool_owner[tool_name] = name

        if previous is not None:
            logger.info("Replaced MCP server %s", name)
            await self._discard(name, previous)

        server_info = init.serverInfo.label() if init.serverInfo else None
        logger.info("Added MCP server %s with %d tools", name, len(tool_names))
        return ServerConnectResult(
            success=True,
            server_name=name,
            server_info=server_info,
            tool_count=len(tool_names),
            tools=tool_names,
        )

    async def disconnect(self, name: str) -> bool:
        """
        Remove a server and every tool it owns, then stop its process.

        Returns:
            False if no server of that name was registered.
        """
        async with self._lock:
            client = self._clients.get(name)
            if client is None:
                return False
            self._unregister(name)
        await client.disconnect()
        logger.info("Disconnected MCP server %s", name)
        return True

    async def disconnect_all(self) -> None:
        """Stop every server. One failing teardown does not block the rest."""
        async with self._lock:
            clients = dict(self._clients)
            self._clients.clear()
            self._tool_owner.clear()
            self._server_tools.clear()

        results = await asyncio.gather(
            *(client.disconnect() for client in clients.values()), return_exceptions=True
        )
        for name, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.warning("Error while disconnecting MCP server %s: %s", name, result)

    async def __aenter__(self) -> "MCPRouter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect_all()

    # ── Tools ─────────────────────────────────────────────────────────────

    async def list_all_tools(self) -> List[Tool]:
        """
        Union of the tools of every connected server.

        A server whose ``tools/list`` fails contributes nothing. Each name
        appears once, taken from the server that currently owns it.
        """
        async with self._lock:
            clients = {name: client for name, client in self._clients.items() if client.is_connected}

        results = await asyncio.gather(
            *(client.list_tools(timeout=self.request_timeout) for client in clients.values()),
            return_exceptions=True,
        )

        tools: List[Tool] = []
        for name, result in zip(clients, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Listing tools of MCP server %s failed: %s", name, result)
                continue
            tools.extend(tool for tool in result if self._tool_owner.get(tool.name) == name)
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> CallResult:
        """Call ``name`` on whichever server owns it."""
        async with self._lock:
            server_name = self._tool_owner.get(name)
            if server_name is None:
                raise MCPRoutingError(f"Tool '{name}' not found in any connected server")
            client = self._clients.get(server_name)

        if client is None:
            raise MCPRoutingError(f"Server '{server_name}' not found")
        if not client.is_connected:
            raise MCPRoutingError(f"Server '{server_name}' is not connected")

        logger.debug("Routing tool %s to %s", name, server_name)
        return await client.call_tool(
            name, arguments, timeout=self.tool_timeout if timeout is None else timeout
        )

    # ── Internals ─────────────────────────────────────────────────────────

    def _unregister(self, name: str) -> None:
        """Drop ``name`` and its tool mappings. Caller holds the lock."""
        self._clients.pop(name, None)
        self._server_tools.pop(name, None)
        for tool_name in [tool for tool, owner in self._tool_owner.items() if owner == name]:
            del self._tool_owner[tool_name]

    @staticmethod
    async def _discard(name: str, client: MCPClient) -> None:
        try:
            await client.disconnect()
        except Exception as exc:
            logger.warning("Error while disconnecting MCP server %s: %s", name, exc)
