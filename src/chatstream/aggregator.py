"""Aggregation of decoded frames into the text and images of one response.

A :class:`DeltaAggregator` owns the state of exactly one stream.  Each
non-sentinel frame is validated as an OpenAI-style chat completion
chunk; the ``choices[0].delta.content`` fragment is appended to the
running text and scanned for ``![image](<url>)`` references.  Frames
that do not validate are dropped without disturbing what has already
been collected.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from chatstream.errors import ReasoningExhaustedError, UpstreamError
from chatstream.frames import Frame

logger = logging.getLogger(__name__)

IMAGE_REF_OPEN = "![image]("
IMAGE_REF_CLOSE = ")"


# ---------------------------------------------------------------------------
# Image reference scanning
# ---------------------------------------------------------------------------

def _scan_image_refs(text: str) -> list[tuple[int, int, str]]:
    """Return ``(start, end, url)`` for each ``![image](url)`` in *text*.

    ``url`` is a non-empty run of characters other than ``)``.  Scanning
    resumes after each match, so references never overlap.
    """
    refs = []
    pos = 0
    while True:
        start = text.find(IMAGE_REF_OPEN, pos)
        if start == -1:
            return refs
        url_start = start + len(IMAGE_REF_OPEN)
        close = text.find(IMAGE_REF_CLOSE, url_start)
        if close == -1:
            return refs
        if close == url_start:
            pos = url_start
            continue
        refs.append((start, close + 1, text[url_start:close]))
        pos = close + 1


def find_image_urls(text: str) -> list[str]:
    """All image URLs referenced in *text*, in order, duplicates included."""
    return [url for _, _, url in _scan_image_refs(text)]


def strip_image_refs(text: str) -> str:
    """Remove every image reference from *text* and trim the result."""
    parts = []
    pos = 0
    for start, end, _ in _scan_image_refs(text):
        parts.append(text[pos:start])
        pos = end
    parts.append(text[pos:])
    return "".join(parts).strip()


# ---------------------------------------------------------------------------
# Payload shape
# ---------------------------------------------------------------------------

class ChunkDelta(BaseModel):
    content: str | None = None


class ChunkChoice(BaseModel):
    delta: ChunkDelta | None = None
    finish_reason: Any = None


class ErrorDetail(BaseModel):
    message: str = ""
    type: str | None = None


class ChatStreamChunk(BaseModel):
    """Only ``choices[0]`` is validated; other choices and ``error`` may
    have any shape without costing the frame its content."""

    choices: list[ChunkChoice] = []
    error: Any = None

    @field_validator("choices", mode="before")
    @classmethod
    def _first_choice_only(cls, value):
        if isinstance(value, list):
            return value[:1]
        return value

    @property
    def first_choice(self) -> ChunkChoice | None:
        return self.choices[0] if self.choices else None

    @property
    def content(self) -> str | None:
        choice = self.first_choice
        if choice is None or choice.delta is None:
            return None
        return choice.delta.content


# ---------------------------------------------------------------------------
# State and result
# ---------------------------------------------------------------------------

class AggregationState(BaseModel):
    """Everything collected so far for one stream.

    ``accumulated_text`` only ever grows.  ``image_urls`` is insertion
    ordered, free of duplicates and never longer than the aggregator's
    ``max_images``.
    """

    accumulated_text: str = ""
    image_urls: list[str] = []
    terminated: bool = False
    frames_seen: int = 0
    frames_dropped: int = 0


class AggregationResult(BaseModel):
    """Final output of a stream."""

    text: str
    image_urls: list[str]
    raw_text: str


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class DeltaAggregator:
    """Consumes frames in arrival order and accumulates their content.

    Args:
        max_images: Upper bound on the number of distinct image URLs
            collected.  ``None`` collects every distinct URL.
        raise_upstream_errors: Raise :class:`UpstreamError` for error
            payloads and :class:`ReasoningExhaustedError` for a
            ``length`` finish with no content, instead of logging and
            dropping those frames.
    """

    def __init__(
        self,
        max_images: int | None = None,
        raise_upstream_errors: bool = False,
    ):
        if max_images is not None and max_images < 0:
            raise ValueError("max_images must be non-negative")
        self.max_images = max_images
        self.raise_upstream_errors = raise_upstream_errors
        self._state = AggregationState()

    @property
    def state(self) -> AggregationState:
        return self._state

    @property
    def terminated(self) -> bool:
        return self._state.terminated

    def consume(self, frame: Frame) -> str | None:
        """Process one frame.

        Returns the content fragment appended to the text, or ``None``
        when the frame contributed nothing.
        """
        if self._state.terminated:
            return None
        if frame.is_sentinel:
            self._state.terminated = True
            return None

        self._state.frames_seen += 1
        chunk = self._decode(frame.payload)
        if chunk is None:
            self._state.frames_dropped += 1
            return None

        content = chunk.content
        if not content:
            self._check_upstream_error(chunk)
            self._check_exhausted(chunk)
            return None

        self._state.accumulated_text += content
        self._collect_images(content)
        return content

    def consume_all(self, frames: Iterable[Frame]) -> AggregationState:
        """Consume *frames* until they run out or a sentinel is seen."""
        for frame in frames:
            self.consume(frame)
            if self._state.terminated:
                break
        return self._state

    def finalize(self, quantity: int | None = None) -> AggregationResult:
        """Mark the stream finished and build its result.

        Image markup is removed from the text; the URL list is cut to
        the first *quantity* entries when given.
        """
        self._state.terminated = True
        urls = list(self._state.image_urls)
        if quantity is not None:
            urls = urls[:max(quantity, 0)]
        raw = self._state.accumulated_text
        return AggregationResult(
            text=strip_image_refs(raw), image_urls=urls, raw_text=raw,
        )

    def _decode(self, payload: str) -> ChatStreamChunk | None:
        try:
            return ChatStreamChunk.model_validate_json(payload)
        except ValidationError as e:
            logger.debug(f"Dropping undecodable frame: {e.error_count()} error(s)")
            return None

    def _check_upstream_error(self, chunk: ChatStreamChunk) -> None:
        if chunk.error is None:
            return
        try:
            err = ErrorDetail.model_validate(chunk.error)
        except ValidationError:
            err = ErrorDetail(message=str(chunk.error))
        message = f"upstream error: {err.message} (type: {err.type})"
        if self.raise_upstream_errors:
            raise UpstreamError(message, error_type=err.type)
        logger.warning(message)

    def _check_exhausted(self, chunk: ChatStreamChunk) -> None:
        choice = chunk.first_choice
        if choice is None or choice.finish_reason != "length":
            return
        if self.raise_upstream_errors:
            raise ReasoningExhaustedError()
        logger.warning("Stream finished on length with no content")

    def _collect_images(self, fragment: str) -> None:
        urls = self._state.image_urls
        for url in find_image_urls(fragment):
            if self.max_images is not None and len(urls) >= self.max_images:
                return
            if url not in urls:
                urls.append(url)
