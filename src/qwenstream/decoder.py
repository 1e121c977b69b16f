"""Decoding of a DashScope SSE stream into output events.

:class:`StreamDecoder` owns all per-stream state and folds one message at
a time into zero or more :class:`~qwenstream.events.StreamEvent` objects.
:func:`decode_stream` drives it from an event source, and :func:`collect`
drains a decoded stream down to its ``FinalEvent``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from qwenstream.chunk import parse_chunk
from qwenstream.errors import ChunkParseError, StreamError
from qwenstream.events import (
    ErrorEvent,
    FinalEvent,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCallEvent,
)
from qwenstream.message import AssembledMessage, Usage
from qwenstream.sse import Message, Open, SourceError, SourceEvent, StreamEnded
from qwenstream.streaming import ChannelState, RawChunk, ToolCallAccumulator

logger = logging.getLogger(__name__)


class StreamDecoder:
    """Per-stream decoding state.

    Create one instance per streaming request; instances share nothing.
    """

    def __init__(self) -> None:
        self.text = ChannelState()
        self.reasoning = ChannelState()
        self.tool_calls = ToolCallAccumulator()
        self.usage = Usage()

    def feed(self, data: str) -> list[StreamEvent]:
        """Decode one SSE message body.

        Empty and malformed payloads produce no events.
        """
        try:
            chunk = parse_chunk(data)
        except ChunkParseError as e:
            logger.warning(f"{e}. Data: {data}")
            return []
        if chunk is None:
            return []
        return self.apply(chunk)

    def apply(self, chunk: RawChunk) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        choice = chunk.choice
        if choice is not None:
            reasoning = self.reasoning.apply(choice.reasoning)
            if reasoning:
                events.append(ReasoningDelta(content=reasoning))

            for fragment in choice.tool_call_fragments:
                events.extend(self.tool_calls.feed(fragment))

            text = self.text.apply(choice.text)
            if text:
                events.append(TextDelta(content=text))

            if choice.finish_reason and choice.finish_reason != "null":
                logger.debug(f"Stream finish_reason: {choice.finish_reason}")

        if chunk.usage is not None:
            self.usage = chunk.usage
        return events

    def assembled_message(self) -> AssembledMessage:
        reasoning = self.reasoning.accumulated
        return AssembledMessage(
            content=self.text.accumulated,
            reasoning_content=reasoning or None,
            tool_calls=self.tool_calls.tool_calls,
        )

    def finish(self) -> list[StreamEvent]:
        """Finalize pending tool calls and build the terminal event."""
        events: list[StreamEvent] = [
            ToolCallEvent(call=call) for call in self.tool_calls.finalize()
        ]
        events.append(FinalEvent(
            usage=self.usage.model_copy(),
            message=self.assembled_message(),
        ))
        return events


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


async def _close(source) -> None:
    for closer_name in ("aclose", "close"):
        closer = getattr(source, closer_name, None)
        if closer is None or not callable(closer):
            continue
        result = closer()
        if inspect.isawaitable(result):
            await result
        return


async def decode_stream(
    source: AsyncIterable[SourceEvent],
    *,
    on_final: Callable[[FinalEvent], None] | None = None,
) -> AsyncIterator[StreamEvent]:
    """Decode *source* into output events.

    The stream ends with exactly one ``FinalEvent`` on success or one
    ``ErrorEvent`` on failure.  Closing the returned generator closes
    *source*.

    Args:
        source: Async iterable of ``Open``, ``Message``, ``SourceError``
            and ``StreamEnded`` values.  Running out of items counts as a
            clean end of stream.
        on_final: Called with the ``FinalEvent`` right before it is
            yielded, e.g. to record usage on a tracing span.
    """
    decoder = StreamDecoder()
    iterator = aiter(source)
    try:
        while True:
            try:
                item = await anext(iterator)
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.error(f"Event source raised: {e!r}")
                yield ErrorEvent(reason=_describe(e))
                return

            if isinstance(item, Message):
                logger.debug(f"Received SSE message: {item.data}")
                for event in decoder.feed(item.data):
                    yield event
            elif isinstance(item, Open):
                continue
            elif isinstance(item, StreamEnded):
                break
            elif isinstance(item, SourceError):
                logger.error(f"SSE error: {item.error!r}")
                yield ErrorEvent(reason=_describe(item.error))
                return
            else:
                logger.debug(f"Ignoring unknown source event {item!r}")

        for event in decoder.finish():
            if isinstance(event, FinalEvent) and on_final is not None:
                on_final(event)
            yield event
    finally:
        await _close(source)


async def collect(events: AsyncIterator[StreamEvent]) -> FinalEvent:
    """Drain *events* and return the terminal ``FinalEvent``.

    Raises:
        StreamError: If the stream ends with an ``ErrorEvent`` or without
            any terminal event.
    """
    final: FinalEvent | None = None
    try:
        async for event in events:
            if isinstance(event, ErrorEvent):
                raise StreamError(event.reason)
            if isinstance(event, FinalEvent):
                final = event
    finally:
        await _close(events)
    if final is None:
        raise StreamError("stream ended without a FinalEvent")
    return final
