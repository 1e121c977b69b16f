import json

import httpx
import pytest

from qwenstream.provider import QwenProvider
from qwenstream.sse import Message, Open, StreamEnded


# ---------------------------------------------------------------------------
# Wire payload builders (mirror the DashScope streaming shape)
# ---------------------------------------------------------------------------

def tool_call(
    index: int,
    arguments: str = "",
    name: str | None = None,
    call_id: str | None = None,
) -> dict:
    """One entry of ``output.choices[0].message.tool_calls``."""
    function = {"arguments": arguments}
    if name is not None:
        function["name"] = name
    entry = {"index": index, "type": "function", "function": function}
    if call_id is not None:
        entry["id"] = call_id
    return entry


def make_payload(
    content: str | None = None,
    reasoning: str | None = None,
    tool_calls: list[dict] | None = None,
    usage: dict | None = None,
    finish_reason: str = "null",
) -> str:
    """Serialized body of a single SSE ``data`` field."""
    message = {"role": "assistant"}
    if content is not None:
        message["content"] = content
    if reasoning is not None:
        message["reasoning_content"] = reasoning
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    payload = {
        "output": {
            "choices": [
                {"message": message, "finish_reason": finish_reason},
            ],
        },
        "request_id": "req-1",
    }
    if usage is not None:
        payload["usage"] = usage
    return json.dumps(payload)


def usage(input_tokens: int, output_tokens: int) -> dict:
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
    }


def sse_body(*payloads: str) -> bytes:
    """Render payloads the way the DashScope endpoint frames them."""
    frames = []
    for i, payload in enumerate(payloads, start=1):
        frames.append(
            f"id:{i}\nevent:result\n:HTTP_STATUS/200\ndata:{payload}\n\n"
        )
    return "".join(frames).encode("utf-8")


# ---------------------------------------------------------------------------
# Event source doubles
# ---------------------------------------------------------------------------

class FakeSource:
    """Replays pre-built source events and records whether it was closed."""

    def __init__(self, items):
        self._items = list(items)
        self.closed = False
        self.consumed = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        self.consumed += 1
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self):
        self.closed = True


def source_of(*payloads: str, ended: bool = True) -> FakeSource:
    """A source that opens, delivers each payload, then ends cleanly."""
    items = [Open(), *(Message(data=p) for p in payloads)]
    if ended:
        items.append(StreamEnded())
    return FakeSource(items)


async def drain(events) -> list:
    return [e async for e in events]


# ---------------------------------------------------------------------------
# Provider wired to an in-memory transport
# ---------------------------------------------------------------------------

def make_provider(handler) -> QwenProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return QwenProvider(
        api_key="test-key",
        base_url="https://dashscope.test/api/v1/services/aigc",
        http_client=client,
    )


@pytest.fixture
def recorded_requests():
    return []


@pytest.fixture
def sse_provider(recorded_requests):
    """Factory: provider whose endpoint answers with the given payloads."""
    def _make(*payloads, status_code=200, body=None):
        content = body if body is not None else sse_body(*payloads)

        def handler(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return httpx.Response(
                status_code,
                headers={"content-type": "text/event-stream"},
                content=content,
            )

        return make_provider(handler)
    return _make
