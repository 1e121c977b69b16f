import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from qwenstream.decoder import decode_stream
from qwenstream.errors import ConfigurationError, StreamError
from qwenstream.events import ErrorEvent, StreamEvent
from qwenstream.instrumentation import final_recorder, record_error, streaming_span
from qwenstream.sse import event_source

logger = logging.getLogger(__name__)

QWEN_API_BASE_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc"
GENERATION_PATH = "text-generation/generation"

QWEN_PLUS = "qwen-plus"
QWEN_PLUS_LATEST = "qwen-plus-latest"
QWEN_MAX = "qwen-max"
QWEN_MAX_LATEST = "qwen-max-latest"
QWEN_TURBO = "qwen-turbo"
QWEN_TURBO_LATEST = "qwen-turbo-latest"
QWEN_FLASH = "qwen-flash"
QWEN3_MAX = "qwen3-max"
QWQ_PLUS = "qwq-plus"


class ModelProvider(ABC):
    """Interface consumed by an agent loop."""

    @abstractmethod
    def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            **parameters,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion as output events."""


class QwenProvider(ModelProvider):
    """Streaming client for the DashScope native generation endpoint.

    Messages and tool schemas are sent as given; this class only frames
    the request and decodes the SSE response.

    Args:
        api_key: DashScope API key. Defaults to ``DASHSCOPE_API_KEY``.
        base_url: Service root. Defaults to ``DASHSCOPE_BASE_URL`` or the
            public DashScope endpoint.
        timeout: Request timeout in seconds.
        http_client: Optional preconfigured ``httpx.AsyncClient``. The
            provider does not close clients it did not create.
    """

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            timeout: float = 180.0,
            http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("DASHSCOPE_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "A DashScope API key is required. Pass api_key= "
                "or set DASHSCOPE_API_KEY."
            )
        if not base_url:
            base_url = os.getenv("DASHSCOPE_BASE_URL") or QWEN_API_BASE_URL
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

    def __repr__(self) -> str:
        return f"QwenProvider(base_url={self.base_url!r}, api_key='<REDACTED>')"

    @property
    def url(self) -> str:
        return f"{self.base_url}/{GENERATION_PATH}"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "X-DashScope-SSE": "enable",
        }

    def build_request(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            **parameters,
    ) -> dict:
        request_parameters = {
            "result_format": "message",
            "incremental_output": True,
            **parameters,
        }
        if tools:
            request_parameters["tools"] = tools
        return {
            "model": model,
            "input": {"messages": messages},
            "parameters": request_parameters,
        }

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            **parameters,
    ) -> AsyncIterator[StreamEvent]:
        body = self.build_request(model, messages, tools, **parameters)
        logger.debug(f"Qwen streaming request: {body}")

        async with streaming_span("qwen", model) as span:
            events = decode_stream(
                event_source(
                    self.client, self.url, headers=self.headers, body=body,
                ),
                on_final=final_recorder(span),
            )
            try:
                async for event in events:
                    if isinstance(event, ErrorEvent):
                        record_error(span, StreamError(event.reason))
                    yield event
            finally:
                await events.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
