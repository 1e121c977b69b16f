import json
from unittest.mock import MagicMock

import httpx
import pytest

import qwenstream.instrumentation as inst
from qwenstream.errors import ConfigurationError
from qwenstream.events import ErrorEvent, FinalEvent, TextDelta
from qwenstream.provider import (
    QWEN_API_BASE_URL,
    QWEN_PLUS,
    ModelProvider,
    QwenProvider,
)

from tests.conftest import drain, make_payload, usage


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def test_reads_api_key_from_env(monkeypatch):
    monkeypatch.setenv("DASHSCOPE_API_KEY", "sk-from-env")
    monkeypatch.delenv("DASHSCOPE_BASE_URL", raising=False)
    p = QwenProvider()
    assert p.api_key == "sk-from-env"
    assert p.base_url == QWEN_API_BASE_URL


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="DASHSCOPE_API_KEY"):
        QwenProvider()


def test_base_url_from_env_strips_trailing_slash(monkeypatch):
    monkeypatch.setenv("DASHSCOPE_BASE_URL", "https://example.test/aigc/")
    p = QwenProvider(api_key="k")
    assert p.url == "https://example.test/aigc/text-generation/generation"


def test_repr_redacts_api_key():
    assert "secret" not in repr(QwenProvider(api_key="secret"))


def test_model_provider_is_abstract():
    with pytest.raises(TypeError):
        ModelProvider()
    assert isinstance(QwenProvider(api_key="k"), ModelProvider)


def test_headers_enable_sse():
    headers = QwenProvider(api_key="k").headers
    assert headers["Authorization"] == "Bearer k"
    assert headers["X-DashScope-SSE"] == "enable"
    assert headers["Accept"] == "text/event-stream"


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------

class TestBuildRequest:
    def test_minimal_body(self):
        messages = [{"role": "user", "content": "hi"}]
        body = QwenProvider(api_key="k").build_request(QWEN_PLUS, messages)

        assert body == {
            "model": "qwen-plus",
            "input": {"messages": messages},
            "parameters": {
                "result_format": "message",
                "incremental_output": True,
            },
        }

    def test_tools_and_parameters(self):
        tools = [{"type": "function", "function": {"name": "f"}}]
        body = QwenProvider(api_key="k").build_request(
            "qwen-max", [], tools=tools, temperature=0.2,
        )

        assert body["parameters"]["tools"] == tools
        assert body["parameters"]["temperature"] == 0.2

    def test_empty_tools_are_omitted(self):
        body = QwenProvider(api_key="k").build_request("m", [], tools=[])
        assert "tools" not in body["parameters"]

    def test_parameters_override_defaults(self):
        body = QwenProvider(api_key="k").build_request(
            "m", [], incremental_output=False,
        )
        assert body["parameters"]["incremental_output"] is False


# ---------------------------------------------------------------------------
# stream_complete
# ---------------------------------------------------------------------------

class TestStreamComplete:
    @pytest.mark.asyncio
    async def test_posts_to_generation_endpoint(self, sse_provider, recorded_requests):
        provider = sse_provider(make_payload(content="hi"))
        events = await drain(provider.stream_complete(
            "qwen-plus", [{"role": "user", "content": "hello"}],
        ))

        request = recorded_requests[0]
        assert request.url.path.endswith("/text-generation/generation")
        assert request.headers["X-DashScope-SSE"] == "enable"
        assert request.headers["Authorization"] == "Bearer test-key"
        sent = json.loads(request.content)
        assert sent["input"]["messages"][0]["content"] == "hello"
        assert events == [TextDelta(content="hi"), events[-1]]
        assert isinstance(events[-1], FinalEvent)

    @pytest.mark.asyncio
    async def test_http_failure_yields_error_event(self, sse_provider):
        provider = sse_provider(status_code=500, body=b"internal")
        events = await drain(provider.stream_complete("m", []))

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert "HTTP 500" in events[0].reason

    @pytest.mark.asyncio
    async def test_records_usage_on_span(self, sse_provider):
        mock_span = MagicMock()
        mock_tracer = MagicMock()
        mock_tracer.start_as_current_span.return_value.__enter__ = (
            MagicMock(return_value=mock_span)
        )
        mock_tracer.start_as_current_span.return_value.__exit__ = (
            MagicMock(return_value=False)
        )
        inst._tracer = mock_tracer
        try:
            provider = sse_provider(make_payload(content="x", usage=usage(4, 2)))
            await drain(provider.stream_complete("qwen-plus", []))
        finally:
            inst._tracer = None

        mock_span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 4)
        mock_span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 2)

    @pytest.mark.asyncio
    async def test_records_error_on_span(self, sse_provider):
        mock_span = MagicMock()
        mock_tracer = MagicMock()
        mock_tracer.start_as_current_span.return_value.__enter__ = (
            MagicMock(return_value=mock_span)
        )
        mock_tracer.start_as_current_span.return_value.__exit__ = (
            MagicMock(return_value=False)
        )
        inst._tracer = mock_tracer
        try:
            provider = sse_provider(status_code=429, body=b"throttled")
            await drain(provider.stream_complete("qwen-plus", []))
        finally:
            inst._tracer = None

        mock_span.record_exception.assert_called_once()
        mock_span.set_attribute.assert_any_call("error.type", "StreamError")


@pytest.mark.asyncio
async def test_aclose_only_closes_owned_client():
    external = httpx.AsyncClient()
    provider = QwenProvider(api_key="k", http_client=external)
    await provider.aclose()
    assert not external.is_closed
    await external.aclose()

    owned = QwenProvider(api_key="k")
    await owned.aclose()
    assert owned.client.is_closed
