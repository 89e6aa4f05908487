"""Optional OpenTelemetry instrumentation for chatstream.

Call ``instrument()`` once at startup to enable tracing.  Requires
``opentelemetry-api`` to be installed; the pipeline works identically
without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "chatstream") -> None:
    """Enable OpenTelemetry tracing for streamed requests.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install chatstream[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        from chatstream.instrumentation import instrument
        instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install chatstream[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("chatstream instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def stream_span(model: str, quantity: int | None = None):
    """Wrap one streamed request in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    attributes = {
        "gen_ai.operation.name": "chat",
        "gen_ai.request.model": model,
    }
    if quantity is not None:
        attributes["chatstream.request.quantity"] = quantity
    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes=attributes,
    ) as span:
        yield span


def record_result(span, state, result) -> None:
    """Set frame counters and output sizes on a span."""
    if span is None:
        return
    span.set_attribute("chatstream.frames.seen", state.frames_seen)
    span.set_attribute("chatstream.frames.dropped", state.frames_dropped)
    span.set_attribute("chatstream.images.collected", len(state.image_urls))
    span.set_attribute("chatstream.images.returned", len(result.image_urls))
    span.set_attribute("chatstream.text.length", len(result.raw_text))


def record_cancelled(span) -> None:
    """Mark a span whose stream was cancelled."""
    if span is None:
        return
    span.set_attribute("chatstream.cancelled", True)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

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
