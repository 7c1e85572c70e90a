"""Data models for MCP server launch configs, JSON-RPC messages, tools and call results."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


class ServerConfig(BaseModel):
    """How to launch one tool-provider process. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    working_dir: Optional[str] = None

    @property
    def argv(self) -> List[str]:
        return [self.command] + list(self.args)

    def display(self) -> str:
        return " ".join(self.argv)


# ── JSON-RPC envelope ────────────────────────────────────────────────────


class JsonRpcRequest(BaseModel):
    """A request expecting exactly one response with the same ``id``."""

    jsonrpc: str = JSONRPC_VERSION
    id: int
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        """Wire dict; ``params`` is left out entirely when absent."""
        message: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


class JsonRpcNotification(BaseModel):
    """A fire-and-forget message. Has no ``id`` key on the wire, not even null."""

    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A response to a request: either ``result`` or ``error``."""

    jsonrpc: str = JSONRPC_VERSION
    id: Optional[int] = None
    result: Any = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


# ── Handshake ────────────────────────────────────────────────────────────


class ClientInfo(BaseModel):
    name: str
    version: str


class ServerInfo(BaseModel):
    name: str
    version: Optional[str] = None

    def label(self) -> str:
        return f"{self.name} v{self.version or '?'}"


class ToolsCapability(BaseModel):
    listChanged: Optional[bool] = None


class ServerCapabilities(BaseModel):
    """What the server announced in its initialize result. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    tools: Optional[ToolsCapability] = None
    resources: Optional[Dict[str, Any]] = None
    prompts: Optional[Dict[str, Any]] = None
    logging: Optional[Dict[str, Any]] = None


class InitializeResult(BaseModel):
    protocolVersion: str
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    serverInfo: Optional[ServerInfo] = None


# ── Tools ────────────────────────────────────────────────────────────────


class Tool(BaseModel):
    """A tool as a provider reports it from ``tools/list``."""

    name: str
    description: Optional[str] = None
    inputSchema: Optional[Dict[str, Any]] = None


class ToolContent(BaseModel):
    """One content block of a tool result. Block kinds other than text are kept verbatim."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None
    mimeType: Optional[str] = None
    data: Optional[str] = None


class CallResult(BaseModel):
    content: List[ToolContent] = Field(default_factory=list)
    isError: Optional[bool] = None

    def text_blocks(self) -> List[str]:
        return [block.text for block in self.content if block.type == "text" and block.text is not None]


class ServerConnectResult(BaseModel):
    """Outcome of registering one server with the router."""

    success: bool
    server_name: str
    server_info: Optional[str] = None
    tool_count: int = 0
    tools: List[str] = Field(default_factory=list)
    error: Optional[str] = None


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification]
