"""Streaming decoder for DashScope (Qwen) chat completions."""

from qwenstream.decoder import StreamDecoder, collect, decode_stream
from qwenstream.events import (
    ErrorEvent,
    FinalEvent,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallEvent,
)
from qwenstream.instrumentation import instrument, uninstrument
from qwenstream.message import AssembledMessage, ToolCall, Usage
from qwenstream.provider import QwenProvider

__all__ = [
    "AssembledMessage",
    "ErrorEvent",
    "FinalEvent",
    "QwenProvider",
    "ReasoningDelta",
    "StreamDecoder",
    "StreamEvent",
    "TextDelta",
    "ToolCall",
    "ToolCallArgumentDelta",
    "ToolCallEvent",
    "Usage",
    "collect",
    "decode_stream",
    "instrument",
    "uninstrument",
]
