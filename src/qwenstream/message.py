import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, NonNegativeInt, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Usage(BaseModel):
    """Token counts as reported by the API.

    DashScope resends a running total on every chunk, so the most recent
    snapshot is authoritative.
    """

    input_tokens: NonNegativeInt = 0
    output_tokens: NonNegativeInt = 0
    total_tokens: NonNegativeInt = 0


class ToolCall(BaseModel):
    """A completed tool call with parsed JSON arguments."""

    id: str
    name: str
    arguments: Any = None
    index: int = 0


class AssembledMessage(BaseModel):
    """The assistant turn reconstructed from a finished stream."""

    role: MessageRole = MessageRole.ASSISTANT
    content: str = ""
    reasoning_content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall]) -> list[dict]:
        # Arguments go back on the wire as a JSON string.
        return [
            {
                "id": t.id,
                "index": t.index,
                "type": "function",
                "function": {
                    "arguments": json.dumps(t.arguments),
                    "name": t.name
                }
            }
            for t in tool_calls
        ]
