"""Request lifecycle for a drawing session.

At most one stream is in flight per session.  :class:`StreamSlot` is the
ownership token: starting a stream cancels and waits out whichever one
held the slot before, so a superseded stream can never overwrite the
view of its successor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from contextlib import aclosing
from typing import Any, Literal

from pydantic import BaseModel

from chatstream.aggregator import AggregationState
from chatstream.config import StreamConfig
from chatstream.errors import ChatStreamError
from chatstream.events import StreamCompleteEvent, StreamEvent
from chatstream.instrumentation import (
    record_cancelled,
    record_error,
    record_result,
    stream_span,
)
from chatstream.message import DrawingRequest
from chatstream.provider import ModelProvider
from chatstream.runner import Runner

logger = logging.getLogger(__name__)


class StreamSlot:
    """Holds the single in-flight stream task of a session."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def owns(self, task: asyncio.Task) -> bool:
        return self._task is task

    async def start(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Cancel the current task, wait for it to unwind, then schedule *coro*.

        Starts are serialized, so of several overlapping calls only the
        last one leaves its task running.
        """
        async with self._lock:
            await self.stop()
            task = asyncio.create_task(coro)
            self._task = task
            task.add_done_callback(self._release)
        return task

    def cancel(self) -> bool:
        """Request cancellation of the current task without waiting."""
        task, self._task = self._task, None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def stop(self) -> None:
        """Cancel the current task and wait until it has finished."""
        task = self._task
        if self.cancel():
            await asyncio.wait([task])

    def _release(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None


class DrawingView(BaseModel):
    """What the rendering layer shows for the latest request."""

    status: Literal["idle", "running", "success", "error"] = "idle"
    images: list[str] = []
    message: str = ""
    model_name: str | None = None
    error: str | None = None


class DrawingSession:
    """Submits drawing requests and tracks the view of the latest one.

    Args:
        provider: Transport that streams the response body.
        config: Image cap and upstream error policy.
        on_event: Called with every stream event of the request that
            currently owns the session.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: StreamConfig | None = None,
        on_event: Callable[[StreamEvent], None] | None = None,
    ):
        self.provider = provider
        self.config = config or StreamConfig()
        self.on_event = on_event
        self.view = DrawingView()
        self.live_state: AggregationState | None = None
        self._slot = StreamSlot()

    @property
    def active(self) -> bool:
        return self._slot.active

    async def submit(self, request: DrawingRequest) -> DrawingView | None:
        """Stream *request* and return the final view.

        Returns ``None`` if the request is superseded by a newer one or
        cancelled through :meth:`cancel`.
        """
        task = await self._slot.start(self._stream(request))
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info(f"Request for {request.model} cancelled")
            return None

    def cancel(self) -> bool:
        """Cancel the in-flight request, if any."""
        return self._slot.cancel()

    async def close(self) -> None:
        await self._slot.stop()

    def _max_images(self, quantity: int) -> int | None:
        cap = self.config.max_images
        if cap is None:
            return None
        return max(cap, quantity)

    async def _stream(self, request: DrawingRequest) -> DrawingView:
        self.view = DrawingView(status="running", model_name=request.model)
        runner = Runner(
            max_images=self._max_images(request.quantity),
            raise_upstream_errors=self.config.raise_upstream_errors,
        )
        aggregator = runner.new_aggregator()
        self.live_state = aggregator.state
        result = None

        async with stream_span(request.model, request.quantity) as span:
            try:
                body = request.request_body()
                async with aclosing(self.provider.stream_bytes(body)) as chunks:
                    async for event in runner.iter(chunks, request.quantity, aggregator):
                        if self.on_event is not None:
                            self.on_event(event)
                        if isinstance(event, StreamCompleteEvent):
                            result = event.result
            except asyncio.CancelledError:
                record_cancelled(span)
                raise
            except ChatStreamError as e:
                record_error(span, e)
                logger.error(f"Request for {request.model} failed: {e}")
                self.view = DrawingView(
                    status="error", model_name=request.model, error=str(e),
                )
                return self.view
            except Exception as e:
                record_error(span, e)
                self.view = DrawingView(
                    status="error", model_name=request.model, error=str(e),
                )
                raise
            finally:
                self.live_state = None
            record_result(span, aggregator.state, result)

        self.view = DrawingView(
            status="success",
            images=result.image_urls,
            message=result.text,
            model_name=request.model,
        )
        return self.view
