# infrastructure/web/event_stream.py
import asyncio
import json
from typing import AsyncIterator, Optional

from domain.models.pipeline_events import PipelineEvent
from shared.logging import logger

_CLOSED = object()


class QueueEventSink:
    """Bounded channel between a pipeline run and one stream consumer.

    emit() never blocks the pipeline: when the consumer falls behind and the
    queue is full, the oldest queued progress event is dropped and logged so
    the newest event fits. Terminal events are never the ones dropped.
    """

    def __init__(self, max_size: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._closed = False
        self.dropped = 0

    def __call__(self, event: PipelineEvent) -> None:
        self.emit(event)

    def emit(self, event: PipelineEvent) -> None:
        if self._closed:
            return
        if self._queue.full() and not self._evict_oldest():
            self.dropped += 1
            logger.warning("Event stream full, dropping event",
                          event_type=event.type.value,
                          agent=event.agent)
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # The close marker must get through even when the queue is full
        if self._queue.full() and not self._evict_oldest():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(_CLOSED)

    def _evict_oldest(self) -> bool:
        """Drop the oldest non-terminal queued event, keeping the rest in order"""
        items = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())

        victim = next(
            (i for i, item in enumerate(items) if item is not _CLOSED and not item.is_terminal),
            None
        )
        if victim is not None:
            evicted = items.pop(victim)
            self.dropped += 1
            logger.warning("Event stream full, dropping oldest event",
                          event_type=evicted.type.value,
                          agent=evicted.agent)

        for item in items:
            self._queue.put_nowait(item)
        return victim is not None

    async def stream(self) -> AsyncIterator[PipelineEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


def format_sse(event: PipelineEvent) -> str:
    return f"data: {json.dumps(event.to_payload())}\n\n"


async def sse_stream(sink: QueueEventSink, task: Optional[asyncio.Task] = None) -> AsyncIterator[str]:
    """Server-sent event frames until the run ends"""
    if task is not None:
        task.add_done_callback(lambda _: sink.close())

    async for event in sink.stream():
        yield format_sse(event)
