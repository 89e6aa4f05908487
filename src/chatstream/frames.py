"""Incremental decoding of an event-stream body into frames.

The transport delivers the body in chunks whose boundaries carry no
meaning: a chunk may end inside a UTF-8 character, inside a line, or
between the two newlines of a frame delimiter.  :class:`FrameDecoder`
buffers text until a complete frame is available and never fails on a
partial one.  :func:`iter_frames` and :func:`aiter_frames` wrap it as
lazy pull-style sequences.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"
FRAME_DELIMITER = "\n\n"

Chunk = bytes | bytearray | memoryview | str


@dataclass
class Frame:
    """One delimiter-bounded unit of the stream."""

    payload: str
    data_lines: list[str] = field(default_factory=list)
    is_sentinel: bool = False


def build_frame(block: str) -> Frame | None:
    """Build a frame from the raw text between two delimiters.

    ``data:`` lines are stripped of their prefix and joined with a
    newline.  A block without any ``data:`` line is taken verbatim.
    Returns ``None`` when nothing is left after trimming.
    """
    trimmed = block.strip()
    if not trimmed:
        return None
    data_lines = [
        line[len(DATA_PREFIX):].strip()
        for line in trimmed.split("\n")
        if line.startswith(DATA_PREFIX)
    ]
    if data_lines:
        payload = "\n".join(data_lines).strip()
    else:
        payload = trimmed
    if not payload:
        return None
    return Frame(
        payload=payload,
        data_lines=data_lines,
        is_sentinel=payload == DONE_MARKER,
    )


class FrameDecoder:
    """Push-style frame decoder for a single stream.

    ``feed()`` every chunk in arrival order, then ``close()`` once the
    transport signals end of stream.  Once a sentinel frame has been
    produced, or the decoder has been closed, all further input is
    ignored.

    Args:
        encoding: Text encoding of byte chunks.  ``str`` chunks are
            used as-is.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._sentinel_seen = False
        self._closed = False

    @property
    def terminated(self) -> bool:
        return self._sentinel_seen or self._closed

    @property
    def sentinel_seen(self) -> bool:
        return self._sentinel_seen

    def feed(self, chunk: Chunk) -> list[Frame]:
        """Buffer *chunk* and return every frame it completes."""
        if self.terminated:
            return []
        if isinstance(chunk, str):
            text = chunk
        else:
            text = self._decoder.decode(bytes(chunk))
        self._buffer += text.replace("\r", "")
        return self._drain()

    def close(self) -> list[Frame]:
        """Signal end of stream and flush any unterminated final frame."""
        if self.terminated:
            return []
        self._buffer += self._decoder.decode(b"", final=True).replace("\r", "")
        frames = self._drain()
        if not self._sentinel_seen:
            frame = build_frame(self._buffer)
            if frame is not None:
                logger.debug("Flushing unterminated final frame")
                frames.append(frame)
                self._sentinel_seen = frame.is_sentinel
        self._buffer = ""
        self._closed = True
        return frames

    def _drain(self) -> list[Frame]:
        frames: list[Frame] = []
        boundary = self._buffer.find(FRAME_DELIMITER)
        while boundary != -1:
            block = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + len(FRAME_DELIMITER):]
            frame = build_frame(block)
            if frame is not None:
                frames.append(frame)
                if frame.is_sentinel:
                    self._sentinel_seen = True
                    # Anything after the sentinel is never decoded.
                    self._buffer = ""
                    break
            boundary = self._buffer.find(FRAME_DELIMITER)
        return frames


def iter_frames(chunks: Iterable[Chunk], encoding: str = "utf-8") -> Iterator[Frame]:
    """Lazily decode *chunks* into frames.

    Exhausting *chunks* is the end-of-stream signal.  No further chunk
    is pulled once the sentinel frame has been yielded.
    """
    decoder = FrameDecoder(encoding)
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.terminated:
            return
    yield from decoder.close()


async def aiter_frames(
    chunks: AsyncIterable[Chunk], encoding: str = "utf-8",
) -> AsyncIterator[Frame]:
    """Async counterpart of :func:`iter_frames`."""
    decoder = FrameDecoder(encoding)
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
        if decoder.terminated:
            return
    for frame in decoder.close():
        yield frame
