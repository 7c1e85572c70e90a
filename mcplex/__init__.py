"""
mcplex - multi-server MCP client for LLM tool use.

Spawns tool-provider processes, speaks JSON-RPC to them over stdio, and
merges all of their tools into one surface an LLM orchestration loop can
list and call.

Architecture:
- Every provider is a child process with its own transport and session
- The router owns the sessions and a tool-name -> server index
- The tool handler turns router results into plain text for the model
- Server launch commands live in .mcplex/config.yaml
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from mcplex.mcp.client import MCPClient
from mcplex.mcp.router import MCPRouter
from mcplex.mcp.schema import ServerConfig
from mcplex.tools.handler import ToolHandler

__all__ = [
    "MCPClient",
    "MCPRouter",
    "ServerConfig",
    "ToolHandler",
    "__version__",
]
