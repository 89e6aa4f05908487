"""Errors surfaced by the stream pipeline.

Only transport faults and upstream-reported failures are errors.
Malformed frames are dropped by the aggregator and never raise, and
cancellation is not an error at all.
"""


class ChatStreamError(Exception):
    """Base class for all chatstream errors."""


class TransportError(ChatStreamError):
    """The connection failed or the backend answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamError(ChatStreamError):
    """The backend reported an error inside the stream itself."""

    def __init__(self, message: str, error_type: str | None = None):
        super().__init__(message)
        self.error_type = error_type


class ReasoningExhaustedError(UpstreamError):
    """A reasoning model spent its whole token budget before answering."""

    def __init__(self):
        super().__init__(
            "reasoning model exhausted token limit during thinking phase, "
            "please increase max_tokens setting",
            error_type="length",
        )
