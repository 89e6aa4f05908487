"""Drawing example: stream an image generation request.

Demonstrates:
- Building a DrawingRequest and submitting it through a DrawingSession
- Watching content deltas arrive with an on_event callback
- Splitting a reasoning segment from the answer with render_parts

Usage:
    uv run --env-file=.env examples/drawing_example.py --model dall-e-3 --quantity 2 "a red fox in snow"
    uv run examples/drawing_example.py --provider openrouter --model some/image-model --trace "a lighthouse"
"""

import argparse
import asyncio
import logging

from chatstream.config import StreamConfig
from chatstream.events import ContentDeltaEvent, ImageEvent, StreamEvent
from chatstream.provider import ModelProvider, OpenAIProvider, OpenRouter
from chatstream.message import DrawingRequest
from chatstream.session import DrawingSession
from chatstream.thinking import render_parts


def make_provider(provider: str, config: StreamConfig) -> ModelProvider:
    if provider == "openrouter":
        return OpenRouter()
    return OpenAIProvider.from_config(config)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from chatstream.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


class LivePrinter:
    """Re-renders the reasoning/answer split on every delta."""

    def __init__(self):
        self.text = ""

    def __call__(self, event: StreamEvent) -> None:
        if isinstance(event, ContentDeltaEvent):
            self.text += event.content
            reasoning, body = render_parts(self.text)
            status = "thinking" if reasoning is not None and not body else "answering"
            print(f"\r[{status}] {len(self.text)} chars", end="", flush=True)
        elif isinstance(event, ImageEvent):
            print(f"\nimage: {event.url}")


async def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("prompt")
    parser.add_argument("--provider", choices=["openai", "openrouter"], default="openai")
    parser.add_argument("--model", required=True)
    parser.add_argument("--quantity", type=int, default=1)
    parser.add_argument("--ratio", default="1:1")
    parser.add_argument("--trace", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    if args.trace:
        setup_tracing("chatstream-drawing")

    config = StreamConfig.from_env()
    session = DrawingSession(
        make_provider(args.provider, config), config, on_event=LivePrinter(),
    )
    request = DrawingRequest(
        model=args.model, prompt=args.prompt,
        quantity=args.quantity, ratio=args.ratio,
    )

    try:
        view = await session.submit(request)
    finally:
        await session.close()

    print()
    if view is None:
        print("Cancelled.")
    elif view.status == "error":
        print(f"Error: {view.error}")
    else:
        reasoning, body = render_parts(view.message)
        if reasoning:
            print(f"Reasoning: {reasoning}\n")
        print(f"Message: {body}")
        for url in view.images:
            print(f"  {url}")


if __name__ == "__main__":
    asyncio.run(main())
