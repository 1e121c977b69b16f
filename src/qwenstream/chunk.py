"""Parsing of DashScope streaming payloads into :class:`RawChunk`."""

from __future__ import annotations

from pydantic import BaseModel, Field, ValidationError, field_validator

from qwenstream.errors import ChunkParseError
from qwenstream.message import Usage
from qwenstream.streaming import RawChoice, RawChunk, ToolCallFragment


class StreamingFunction(BaseModel):
    name: str | None = None
    arguments: str = ""

    @field_validator("arguments", mode="before")
    @classmethod
    def _null_arguments(cls, value):
        return "" if value is None else value


class StreamingToolCall(BaseModel):
    id: str | None = None
    index: int
    type: str = "function"
    function: StreamingFunction = Field(default_factory=StreamingFunction)


class StreamingMessage(BaseModel):
    role: str | None = None
    content: str | None = None
    reasoning_content: str | None = None
    tool_calls: list[StreamingToolCall] = Field(default_factory=list)

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _null_tool_calls(cls, value):
        return [] if value is None else value


class StreamingChoice(BaseModel):
    message: StreamingMessage = Field(default_factory=StreamingMessage)
    finish_reason: str | None = None


class StreamingOutput(BaseModel):
    choices: list[StreamingChoice] = Field(default_factory=list)


class StreamingCompletionChunk(BaseModel):
    """Wire shape of one SSE ``data`` payload."""

    output: StreamingOutput | None = None
    usage: Usage | None = None
    request_id: str | None = None


def parse_chunk(data: str) -> RawChunk | None:
    """Parse one SSE message body.

    Returns ``None`` for empty or whitespace-only payloads.

    Raises:
        ChunkParseError: If the payload is not valid JSON or does not
            match the streaming chunk shape.
    """
    if not data.strip():
        return None
    try:
        wire = StreamingCompletionChunk.model_validate_json(data)
    except ValidationError as e:
        raise ChunkParseError(f"Couldn't parse SSE payload: {e}", data) from e

    choice = None
    if wire.output is not None and wire.output.choices:
        first = wire.output.choices[0]
        choice = RawChoice(
            text=first.message.content,
            reasoning=first.message.reasoning_content,
            tool_call_fragments=[
                ToolCallFragment(
                    index=tc.index,
                    call_id=tc.id,
                    name=tc.function.name,
                    arguments=tc.function.arguments,
                )
                for tc in first.message.tool_calls
            ],
            finish_reason=first.finish_reason,
        )
    return RawChunk(choice=choice, usage=wire.usage)
