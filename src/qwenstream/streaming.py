"""Streaming primitives for DashScope completion chunks.

A parsed SSE message becomes a :class:`RawChunk`.  :class:`ChannelState`
turns the text and reasoning fields into minimal increments whether the
API resends cumulative snapshots or true deltas, and the
:class:`ToolCallAccumulator` reassembles tool calls whose arguments
arrive in fragments keyed by position.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from qwenstream.events import StreamEvent, ToolCallArgumentDelta, ToolCallEvent
from qwenstream.message import ToolCall, Usage

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass
class RawChoice:
    """The first choice of a streamed chunk."""

    text: str | None = None
    reasoning: str | None = None
    tool_call_fragments: list[ToolCallFragment] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass
class RawChunk:
    """One parsed SSE message."""

    choice: RawChoice | None = None
    usage: Usage | None = None


@dataclass
class ChannelState:
    """Longest value observed so far for one streamed channel."""

    accumulated: str = ""

    def apply(self, new_value: str | None) -> str:
        """Fold *new_value* into the channel and return the increment.

        A value that extends everything seen so far is a cumulative
        snapshot and only its new suffix is returned.  Anything else is an
        incremental fragment and is returned verbatim.
        """
        if not new_value:
            return ""
        if (
            len(new_value) >= len(self.accumulated)
            and new_value.startswith(self.accumulated)
        ):
            increment = new_value[len(self.accumulated):]
            self.accumulated = new_value
            return increment
        self.accumulated += new_value
        return new_value


@dataclass
class PendingToolCall:
    """A tool call whose arguments are still arriving."""

    id: str = ""
    name: str = ""
    arguments: ChannelState = field(default_factory=ChannelState)


def _parse_arguments(text: str):
    """Return ``(ok, value)`` for a JSON argument string."""
    try:
        return True, json.loads(text)
    except json.JSONDecodeError:
        return False, None


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, PendingToolCall] = {}
        self._completed: dict[int, ToolCall] = {}

    @property
    def pending(self) -> dict[int, PendingToolCall]:
        return self._pending

    @property
    def tool_calls(self) -> list[ToolCall]:
        """Completed tool calls in index order."""
        return [self._completed[i] for i in sorted(self._completed)]

    def feed(self, fragment: ToolCallFragment) -> list[StreamEvent]:
        index = fragment.index
        args = fragment.arguments or ""

        # Each index carries one call; resends of a completed call are dropped.
        if index in self._completed:
            logger.debug(f"Ignoring fragment for completed tool call at index {index}")
            return []

        # Start of a streamed call: name first, arguments later.
        if fragment.name and not args:
            self._pending[index] = PendingToolCall(
                id=fragment.call_id or "", name=fragment.name,
            )
            return []

        if not args:
            logger.debug(f"Ignoring empty tool call fragment at index {index}")
            return []

        pending = self._pending.get(index)
        if pending is not None:
            increment = pending.arguments.apply(args)
            if not increment:
                return []
            return [ToolCallArgumentDelta(
                index=index, call_id=pending.id, name=pending.name,
                content=increment,
            )]

        if fragment.call_id and fragment.name:
            ok, parsed = _parse_arguments(args)
            if ok:
                call = ToolCall(
                    id=fragment.call_id, name=fragment.name,
                    arguments=parsed, index=index,
                )
                self._completed[index] = call
                return [ToolCallEvent(call=call)]

        # Arguments for an index we never saw start.
        logger.debug(f"Tool call arguments arrived before start at index {index}")
        pending = PendingToolCall(
            id=fragment.call_id or f"call_{index}",
            name=fragment.name or "unknown",
            arguments=ChannelState(accumulated=args),
        )
        self._pending[index] = pending
        return [ToolCallArgumentDelta(
            index=index, call_id=pending.id, name=pending.name, content=args,
        )]

    def finalize(self) -> list[ToolCall]:
        """Parse and return pending tool calls in index order.

        Calls whose arguments are not valid JSON are dropped.  Pending
        state is cleared.
        """
        finalized: list[ToolCall] = []
        for index in sorted(self._pending):
            pending = self._pending[index]
            text = pending.arguments.accumulated
            ok, parsed = _parse_arguments(text)
            if not ok:
                logger.warning(
                    f"Dropping tool call {pending.name} ({pending.id}): "
                    f"invalid JSON arguments {text!r}"
                )
                continue
            finalized.append(ToolCall(
                id=pending.id, name=pending.name,
                arguments=parsed, index=index,
            ))
        self._pending.clear()
        self._completed.update((tc.index, tc) for tc in finalized)
        return finalized
