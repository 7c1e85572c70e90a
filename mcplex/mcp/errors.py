"""Exception taxonomy for MCP transport, session and routing failures."""

from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base class for every MCP failure raised by mcplex."""


class MCPConnectionError(MCPError):
    """Raised when a provider process cannot be spawned, reached, or handshaken."""


class MCPProtocolError(MCPError):
    """Raised when a provider answers with a JSON-RPC error object or an invalid result."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.code = code
        self.data = data


class MCPTimeoutError(MCPError, TimeoutError):
    """Raised when no matching response arrives before the deadline."""

    def __init__(self, request_id: int, timeout: float):
        super().__init__(f"No response to request {request_id} within {timeout:g}s")
        self.request_id = request_id
        self.timeout = timeout


class MCPRoutingError(MCPError):
    """Raised when a tool name has no owner, or its owner is gone."""


class MCPParseError(MCPError):
    """Raised for a stdout line that is not a JSON-RPC response. Never leaves the transport."""
