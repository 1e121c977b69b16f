"""Streaming example: render a Qwen completion live in the terminal.

Demonstrates:
- Streaming a completion with QwenProvider.stream_complete()
- Printing reasoning and answer text as they arrive
- Optionally showing tool-call arguments while they stream
- Recording the stream on an OpenTelemetry span

Install with `pip install -e ".[examples]"` for `--trace`.

Usage:
    DASHSCOPE_API_KEY=sk-... python examples/stream_chat_example.py --model qwq-plus "Why is the sky blue?"
    python examples/stream_chat_example.py --model qwen-plus --weather-tool --show-tool-args "Weather in Beijing?"
"""

import argparse
import asyncio
import logging

from qwenstream.events import (
    ErrorEvent,
    FinalEvent,
    ReasoningDelta,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallEvent,
)
from qwenstream.provider import QWEN_PLUS, QwenProvider

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Current weather for a city.",
        "parameters": {
            "type": "object",
            "properties": {"location": {"type": "string"}},
            "required": ["location"],
        },
    },
}


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from qwenstream.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


async def main(args):
    provider = QwenProvider()
    messages = [{"role": "user", "content": args.prompt}]
    tools = [WEATHER_TOOL] if args.weather_tool else None

    in_reasoning = False
    try:
        async for event in provider.stream_complete(args.model, messages, tools=tools):
            if isinstance(event, ReasoningDelta):
                if not in_reasoning:
                    print("\n[thinking] ", end="")
                    in_reasoning = True
                print(event.content, end="", flush=True)
            elif isinstance(event, TextDelta):
                if in_reasoning:
                    print("\n[answer] ", end="")
                    in_reasoning = False
                print(event.content, end="", flush=True)
            elif isinstance(event, ToolCallArgumentDelta):
                if args.show_tool_args:
                    print(event.content, end="", flush=True)
            elif isinstance(event, ToolCallEvent):
                print(f"\n[tool call] {event.call.name}({event.call.arguments})")
            elif isinstance(event, ErrorEvent):
                print(f"\n[error] {event.reason}")
            elif isinstance(event, FinalEvent):
                u = event.usage
                print(
                    f"\n[usage] in={u.input_tokens} out={u.output_tokens} "
                    f"total={u.total_tokens}"
                )
    finally:
        await provider.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("prompt")
    parser.add_argument("--model", default=QWEN_PLUS)
    parser.add_argument("--weather-tool", action="store_true")
    parser.add_argument("--show-tool-args", action="store_true")
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    if args.trace:
        setup_tracing("qwenstream-example")
    asyncio.run(main(args))
