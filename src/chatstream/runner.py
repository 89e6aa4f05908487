import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from contextlib import aclosing

from chatstream.aggregator import AggregationResult, DeltaAggregator
from chatstream.events import ContentDeltaEvent, ImageEvent, StreamCompleteEvent, StreamEvent
from chatstream.frames import Chunk, aiter_frames, iter_frames

logger = logging.getLogger(__name__)


class Runner:
    """Drives one stream through the frame decoder and the aggregator.

    Chunks are pulled strictly in arrival order; the only suspension
    point is waiting for the next chunk.  A sentinel frame ends the
    stream even when more bytes follow it.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        max_images: Cap on distinct image URLs collected per stream.
        raise_upstream_errors: Passed to :class:`DeltaAggregator`.
        encoding: Text encoding of byte chunks.
    """

    def __init__(
        self,
        max_images: int | None = None,
        raise_upstream_errors: bool = False,
        encoding: str = "utf-8",
    ):
        self.max_images = max_images
        self.raise_upstream_errors = raise_upstream_errors
        self.encoding = encoding

    def new_aggregator(self) -> DeltaAggregator:
        return DeltaAggregator(
            max_images=self.max_images,
            raise_upstream_errors=self.raise_upstream_errors,
        )

    async def run(
        self, chunks: AsyncIterable[Chunk], quantity: int | None = None,
    ) -> AggregationResult:
        """Consume the whole stream and return its result."""
        result: AggregationResult | None = None
        async for event in self.iter(chunks, quantity):
            if isinstance(event, StreamCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting StreamCompleteEvent")
        return result

    async def iter(
        self,
        chunks: AsyncIterable[Chunk],
        quantity: int | None = None,
        aggregator: DeltaAggregator | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Process the stream, yielding events as content arrives.

        Pass *aggregator* to read its state while the stream is still
        running.  If the consumer is cancelled, no completion event is
        produced and the aggregator is simply abandoned.
        """
        if aggregator is None:
            aggregator = self.new_aggregator()

        async with aclosing(aiter_frames(chunks, self.encoding)) as frames:
            async for frame in frames:
                for event in self._consume(aggregator, frame):
                    yield event
                if aggregator.terminated:
                    logger.debug("Sentinel received, stopping stream")
                    break

        result = aggregator.finalize(quantity)
        logger.info(
            f"Stream finished: {len(result.raw_text)} chars, "
            f"{len(result.image_urls)} image(s), "
            f"{aggregator.state.frames_dropped} frame(s) dropped"
        )
        yield StreamCompleteEvent(result=result)

    def collect(
        self, chunks: Iterable[Chunk], quantity: int | None = None,
    ) -> AggregationResult:
        """Synchronous counterpart of ``run()`` for already-buffered chunks."""
        aggregator = self.new_aggregator()
        aggregator.consume_all(iter_frames(chunks, self.encoding))
        return aggregator.finalize(quantity)

    @staticmethod
    def _consume(aggregator: DeltaAggregator, frame) -> list[StreamEvent]:
        seen = len(aggregator.state.image_urls)
        content = aggregator.consume(frame)
        if not content:
            return []
        events: list[StreamEvent] = [ContentDeltaEvent(content=content)]
        events.extend(
            ImageEvent(url=url) for url in aggregator.state.image_urls[seen:]
        )
        return events
