import asyncio
import json

import pytest

from chatstream.provider import ModelProvider


# ---------------------------------------------------------------------------
# Wire builders (mirror the OpenAI chat completion chunk shape)
# ---------------------------------------------------------------------------

def delta_payload(content: str | None, finish_reason: str | None = None) -> str:
    delta = {} if content is None else {"content": content}
    return json.dumps({
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }, ensure_ascii=False)


def delta_frame(content: str | None, finish_reason: str | None = None) -> str:
    """One ``data:`` frame carrying a content delta, delimiter included."""
    return f"data: {delta_payload(content, finish_reason)}\n\n"


DONE_FRAME = "data: [DONE]\n\n"


def build_stream(*contents: str, done: bool = True) -> bytes:
    """Full response body for the given content deltas."""
    body = "".join(delta_frame(c) for c in contents)
    if done:
        body += DONE_FRAME
    return body.encode("utf-8")


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def split_at(data: bytes, cuts: list[int]) -> list[bytes]:
    bounds = [0, *sorted(cuts), len(data)]
    return [data[a:b] for a, b in zip(bounds, bounds[1:])]


async def async_chunks(chunks):
    for chunk in chunks:
        yield chunk


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued byte streams. No network calls.

    Each call to ``stream_bytes`` pops the next queued stream.  If a
    stream contains an ``asyncio.Event`` the provider waits on it at
    that point, which lets tests hold a stream open mid-flight.  An
    exception instance in a stream is raised at that point.
    """

    def __init__(self):
        self.streams: list[list] = []
        self.call_log: list[dict] = []
        self.closed: list[int] = []

    async def stream_bytes(self, body):
        index = len(self.call_log)
        self.call_log.append(body)
        items = self.streams.pop(0)
        try:
            for item in items:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed.append(index)


@pytest.fixture
def mock_provider():
    return MockProvider()
