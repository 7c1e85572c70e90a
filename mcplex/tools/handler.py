"""Tool handler: bridges the LLM tool-use loop and the MCP router."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from mcplex.mcp.client import MCPClient
from mcplex.mcp.router import MCPRouter
from mcplex.mcp.schema import CallResult, Tool
from mcplex.tools.schema import ToolDefinition, ToolResultBlock, ToolUseRequest, empty_input_schema

logger = logging.getLogger(__name__)

NO_OUTPUT_TEXT = "Tool executed successfully (no output)"
MISSING_NAME_TEXT = "Error: tool name is missing"
NOT_CONNECTED_TEXT = "Error: no MCP servers are connected"


class ToolHandler:
    """
    Serves MCP tools to an LLM orchestration loop.

    ``get_available_tools()`` produces the definitions to put in the model
    request; ``execute_tool()`` runs one ``tool_use`` block and always
    returns text. Failures become text the model can read and react to;
    nothing raised below this layer escapes it.

    A router is preferred when both a router and a single client are given.
    """

    def __init__(self, router: Optional[MCPRouter] = None, client: Optional[MCPClient] = None):
        self._router = router
        self._client = client

    @property
    def is_connected(self) -> bool:
        if self._router is not None and self._router.is_connected:
            return True
        return self._client is not None and self._client.is_connected

    # ── Discovery ─────────────────────────────────────────────────────────

    async def get_available_tools(self) -> List[ToolDefinition]:
        """Tool definitions for the model. Empty when nothing is connected."""
        try:
            if self._router is not None and self._router.is_connected:
                tools = await self._router.list_all_tools()
            elif self._client is not None and self._client.is_connected:
                tools = await self._client.list_tools()
            else:
                return []
        except Exception as exc:
            logger.warning("Tool discovery failed: %s", exc)
            return []
        return [self.to_definition(tool) for tool in tools]

    @staticmethod
    def to_definition(tool: Tool) -> ToolDefinition:
        return ToolDefinition(
            name=tool.name,
            description=tool.description,
            input_schema=tool.inputSchema if tool.inputSchema is not None else empty_input_schema(),
        )

    # ── Execution ─────────────────────────────────────────────────────────

    async def execute_tool(self, tool_use: Union[ToolUseRequest, Mapping[str, Any]]) -> str:
        """Run one tool-use request and return its text output or an error message."""
        text, _ = await self._execute(tool_use)
        return text

    async def execute_tool_result(self, tool_use: Union[ToolUseRequest, Mapping[str, Any]]) -> ToolResultBlock:
        """Same as :meth:`execute_tool`, packaged as a ``tool_result`` block."""
        text, is_error = await self._execute(tool_use)
        if isinstance(tool_use, ToolUseRequest):
            tool_use_id = tool_use.id
        elif isinstance(tool_use, Mapping):
            tool_use_id = tool_use.get("id")
        else:
            tool_use_id = None
        return ToolResultBlock(tool_use_id=tool_use_id, content=text, is_error=is_error)

    async def _execute(self, tool_use: Union[ToolUseRequest, Mapping[str, Any]]) -> Tuple[str, bool]:
        try:
            request = (
                tool_use if isinstance(tool_use, ToolUseRequest) else ToolUseRequest.model_validate(dict(tool_use))
            )
        except (ValidationError, TypeError, ValueError) as exc:
            return f"Tool execution error: invalid tool request ({exc})", True

        if not request.name:
            return MISSING_NAME_TEXT, True

        arguments: Dict[str, Any] = dict(request.input or {})

        try:
            if self._router is not None and self._router.is_connected:
                result = await self._router.call_tool(request.name, arguments)
            elif self._client is not None and self._client.is_connected:
                result = await self._client.call_tool(request.name, arguments)
            else:
                return NOT_CONNECTED_TEXT, True
        except Exception as exc:
            logger.warning("Tool %s failed: %s", request.name, exc)
            return f"Tool execution error: {exc}", True

        return self.extract_text(result), bool(result.isError)

    @staticmethod
    def extract_text(result: CallResult) -> str:
        """Join the text blocks of a result with newlines. ``isError`` is reported separately."""
        return "\n".join(result.text_blocks()) or NO_OUTPUT_TEXT
