"""
Tool adapter for mcplex.

Turns MCP tools into the tool definitions an LLM request carries, and turns
the model's tool-use blocks into routed MCP calls whose result is plain text.
"""

from mcplex.tools.schema import ToolDefinition, ToolResultBlock, ToolUseRequest
from mcplex.tools.handler import ToolHandler

__all__ = [
    "ToolDefinition",
    "ToolHandler",
    "ToolResultBlock",
    "ToolUseRequest",
]
