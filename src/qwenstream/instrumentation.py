"""Optional OpenTelemetry instrumentation for qwenstream.

Call ``qwenstream.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; decoding works
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "qwenstream") -> None:
    """Enable OpenTelemetry tracing for streaming completions.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install qwenstream[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
        )

        provider = TracerProvider()
        provider.add_span_processor(
            BatchSpanProcessor(ConsoleSpanExporter())
        )
        trace.set_tracer_provider(provider)

        import qwenstream
        qwenstream.instrument()

    See also:
        - `GenAI Semantic Conventions <https://opentelemetry.io/docs/specs/semconv/gen-ai/>`_

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install qwenstream[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("qwenstream instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing.

    Subsequent streams will not emit spans.
    """
    global _tracer
    _tracer = None


@asynccontextmanager
async def streaming_span(system: str, model: str):
    """Wrap one streaming completion in a ``chat_streaming`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat_streaming {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat_streaming",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


def record_usage(span, usage):
    """Set token-usage attributes on a span."""
    if span is None or usage is None:
        return
    if getattr(usage, "input_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.input_tokens",
            usage.input_tokens,
        )
    if getattr(usage, "output_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.output_tokens",
            usage.output_tokens,
        )


def record_output(span, message) -> None:
    """Record the assembled assistant message on a span."""
    if span is None or message is None:
        return
    span.set_attribute(
        "gen_ai.output.messages",
        message.model_dump_json(exclude_none=True),
    )


def final_recorder(span):
    """Return an ``on_final`` callback that records a FinalEvent on *span*.

    Returns ``None`` when tracing is disabled so the decoder skips the
    callback entirely.
    """
    if span is None:
        return None

    def _record(final) -> None:
        record_usage(span, final.usage)
        record_output(span, final.message)

    return _record


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    Sets ``error.type`` per GenAI semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
