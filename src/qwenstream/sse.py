"""Server-Sent Events framing: decoding an HTTP stream, encoding events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, fields

import httpx
from pydantic import BaseModel

from qwenstream.errors import ProviderError, TransportError
from qwenstream.events import StreamEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events surfaced by an event source
# ---------------------------------------------------------------------------

@dataclass
class Open:
    """The connection is established and the response status is 2xx."""


@dataclass
class Message:
    """One dispatched SSE event."""

    data: str
    event: str = "message"
    id: str | None = None


@dataclass
class SourceError:
    """The source failed; nothing else follows."""

    error: BaseException


@dataclass
class StreamEnded:
    """The server closed the stream cleanly."""


SourceEvent = Open | Message | SourceError | StreamEnded


# ---------------------------------------------------------------------------
# Line decoding
# ---------------------------------------------------------------------------

class SSEDecoder:
    """Incremental parser for ``text/event-stream`` lines.

    Feed lines without their terminators; a blank line dispatches the
    event collected so far.  ``id`` persists across events as the
    WHATWG algorithm requires.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None
        self.retry: int | None = None

    def decode(self, line: str) -> Message | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            if value.isdigit():
                self.retry = int(value)
        else:
            logger.debug(f"Ignoring unknown SSE field {name!r}")
        return None

    def flush(self) -> Message | None:
        """Dispatch a trailing event that was not followed by a blank line."""
        return self._dispatch()

    def _dispatch(self) -> Message | None:
        if not self._data:
            self._event = ""
            return None
        message = Message(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return message


def _provider_error(data: str) -> ProviderError:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return ProviderError("UnknownError", data)
    if not isinstance(payload, dict):
        return ProviderError("UnknownError", data)
    return ProviderError(
        str(payload.get("code", "UnknownError")),
        str(payload.get("message", "")),
    )


async def event_source(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: dict | None = None,
) -> AsyncIterator[SourceEvent]:
    """POST *body* to *url* and yield the response as source events.

    The HTTP response is released when the generator finishes or is
    closed early.
    """
    try:
        async with client.stream(
            "POST", url, headers=headers, json=body,
        ) as response:
            if not response.is_success:
                text = (await response.aread()).decode("utf-8", errors="replace")
                logger.error(f"SSE request failed with HTTP {response.status_code}: {text}")
                yield SourceError(TransportError(
                    f"HTTP {response.status_code}: {text}",
                    status_code=response.status_code,
                ))
                return

            logger.debug("SSE connection opened")
            yield Open()

            decoder = SSEDecoder()
            async for line in response.aiter_lines():
                message = decoder.decode(line)
                if message is None:
                    continue
                if message.event == "error":
                    yield SourceError(_provider_error(message.data))
                    return
                yield message

            message = decoder.flush()
            if message is not None:
                if message.event == "error":
                    yield SourceError(_provider_error(message.data))
                    return
                yield message
    except httpx.HTTPError as e:
        logger.error(f"SSE transport error: {e!r}")
        yield SourceError(TransportError(str(e) or type(e).__name__))
        return

    yield StreamEnded()


# ---------------------------------------------------------------------------
# Encoding decoded events for relay
# ---------------------------------------------------------------------------

def _event_payload(event: StreamEvent) -> dict:
    payload = {}
    for f in fields(event):
        value = getattr(event, f.name)
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        payload[f.name] = value
    return payload


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        event_type = type(event).__name__
        data = json.dumps(_event_payload(event))
        yield f"event: {event_type}\ndata: {data}\n\n"
    yield "event: done\ndata: {}\n\n"
