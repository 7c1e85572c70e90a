"""
MCP client stack for mcplex.

Tool providers are external processes speaking JSON-RPC over stdio. Each
one gets a transport (process + pipes) and a client (protocol session);
the router merges every client into a single tool surface:

    StdioTransport --> MCPClient --> MCPRouter --> ToolHandler --> LLM loop
"""

from mcplex.mcp.errors import (
    MCPConnectionError,
    MCPError,
    MCPParseError,
    MCPProtocolError,
    MCPRoutingError,
    MCPTimeoutError,
)
from mcplex.mcp.schema import (
    CallResult,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ServerConfig,
    ServerConnectResult,
    Tool,
    ToolContent,
)
from mcplex.mcp.transport import StdioTransport
from mcplex.mcp.client import MCPClient
from mcplex.mcp.router import MCPRouter

__all__ = [
    "CallResult",
    "InitializeResult",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MCPClient",
    "MCPConnectionError",
    "MCPError",
    "MCPParseError",
    "MCPProtocolError",
    "MCPRouter",
    "MCPRoutingError",
    "MCPTimeoutError",
    "ServerConfig",
    "ServerConnectResult",
    "StdioTransport",
    "Tool",
    "ToolContent",
]
