"""LLM-facing tool shapes: definitions offered to the model, and its tool-use requests."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def empty_input_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


class ToolDefinition(BaseModel):
    """One tool as the model sees it in the request's ``tools`` list."""

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=empty_input_schema)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "input_schema": self.input_schema}
        if self.description:
            data["description"] = self.description
        return data


class ToolUseRequest(BaseModel):
    """A ``tool_use`` content block emitted by the model."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None


class ToolResultBlock(BaseModel):
    """A ``tool_result`` content block to send back on the next turn."""

    tool_use_id: Optional[str] = None
    content: str
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            data["is_error"] = True
        return data
