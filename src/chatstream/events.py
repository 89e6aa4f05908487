"""Events emitted while a response stream is processed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class StreamEvent:
    """Base for all stream events."""


@dataclass
class ContentDeltaEvent(StreamEvent):
    """A content fragment appended to the accumulated text."""

    content: str = ""


@dataclass
class ImageEvent(StreamEvent):
    """A newly collected image URL, in first-seen order."""

    url: str = ""


@dataclass
class StreamCompleteEvent(StreamEvent):
    """Final event, always the last one yielded."""

    result: Any = None
