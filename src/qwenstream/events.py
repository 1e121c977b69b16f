"""Output events produced while decoding a completion stream."""

from __future__ import annotations

from dataclasses import dataclass, field

from qwenstream.message import AssembledMessage, ToolCall, Usage


@dataclass
class StreamEvent:
    """Base for all output events."""


@dataclass
class TextDelta(StreamEvent):
    """New assistant text since the previous delta."""

    content: str = ""


@dataclass
class ReasoningDelta(StreamEvent):
    """New reasoning ("thinking") text since the previous delta."""

    content: str = ""


@dataclass
class ToolCallArgumentDelta(StreamEvent):
    """Raw argument text of a tool call that is still being streamed.

    Useful for rendering tool arguments live. Consumers that only care
    about completed calls can ignore it and wait for
    :class:`ToolCallEvent`.
    """

    index: int = 0
    call_id: str = ""
    name: str = ""
    content: str = ""


@dataclass
class ToolCallEvent(StreamEvent):
    """A tool call whose arguments parsed as JSON."""

    call: ToolCall | None = None


@dataclass
class ErrorEvent(StreamEvent):
    """Terminal event: the stream failed and no ``FinalEvent`` follows."""

    reason: str = ""


@dataclass
class FinalEvent(StreamEvent):
    """Terminal event: always the last event of a successful stream."""

    usage: Usage = field(default_factory=Usage)
    message: AssembledMessage = field(default_factory=AssembledMessage)
