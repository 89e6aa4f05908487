"""Re-publish stream events to a browser renderer as Server-Sent Events.

Each event becomes one ``event:`` frame with a JSON ``data:`` line:
``delta`` carries ``{"content": ...}``, ``image`` carries ``{"url": ...}``
and ``complete`` carries the final result (``text``, ``image_urls``,
``raw_text``).  The stream ends with ``data: [DONE]``, the same sentinel
:class:`chatstream.frames.FrameDecoder` stops on.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from chatstream.events import (
    ContentDeltaEvent,
    ImageEvent,
    StreamCompleteEvent,
    StreamEvent,
)

DONE = "data: [DONE]\n\n"


def encode_event(event: StreamEvent) -> str | None:
    """Render one event as an SSE frame, or ``None`` if it has no wire form."""
    if isinstance(event, ContentDeltaEvent):
        name, data = "delta", json.dumps({"content": event.content})
    elif isinstance(event, ImageEvent):
        name, data = "image", json.dumps({"url": event.url})
    elif isinstance(event, StreamCompleteEvent):
        if event.result is None:
            return None
        name, data = "complete", event.result.model_dump_json()
    else:
        return None
    return f"event: {name}\ndata: {data}\n\n"


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        frame = encode_event(event)
        if frame is not None:
            yield frame
    yield DONE
