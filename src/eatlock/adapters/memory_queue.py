"""In-process asyncio runtime for the vision job queue."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from eatlock.services.jobs import QueueMessage, VisionQueue, backoff_seconds

_logger = logging.getLogger(__name__)

BatchHandler = Callable[[Sequence[QueueMessage]], Awaitable[None]]


@dataclass
class InMemoryQueueMessage(QueueMessage):
    """Delivered message; retries travel as a new copy of the body."""

    body: dict[str, object]
    queue: "InMemoryVisionQueue"
    acked: bool = False
    retry_delay: float | None = None

    def ack(self) -> None:
        """Mark the message as processed."""
        self.acked = True

    def retry(self, delay_seconds: float) -> None:
        """Redeliver a copy with the attempt counter incremented."""
        self.retry_delay = delay_seconds
        attempt = self.body.get("attempt")
        next_attempt = attempt + 1 if isinstance(attempt, int) else 2
        self.queue.schedule({**self.body, "attempt": next_attempt}, delay_seconds)


@dataclass
class InMemoryVisionQueue(VisionQueue):
    """Single-process queue with delayed redelivery and a batch worker."""

    max_batch_size: int = 10
    unsettled_delay: Callable[[int], float] = backoff_seconds
    _queue: asyncio.Queue[dict[str, object]] = field(default_factory=asyncio.Queue)
    _task: asyncio.Task[None] | None = None
    _timers: set[asyncio.TimerHandle] = field(default_factory=set)

    async def send(self, payload: dict[str, object]) -> None:
        """Publish a job message."""
        await self._queue.put(dict(payload))

    def schedule(self, payload: dict[str, object], delay_seconds: float) -> None:
        """Publish a message after a delay."""
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def deliver() -> None:
            self._timers.discard(handle)
            self._queue.put_nowait(payload)

        handle = loop.call_later(delay_seconds, deliver)
        self._timers.add(handle)

    def start(self, handler: BatchHandler) -> None:
        """Start the background worker that feeds batches to ``handler``."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._worker(handler))
        _logger.info("Vision queue worker started")

    async def stop(self) -> None:
        """Stop the worker and drop pending redeliveries."""
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        _logger.info("Vision queue worker stopped")

    async def next_batch(self) -> list[InMemoryQueueMessage]:
        """Wait for at least one message and drain up to the batch size."""
        bodies = [await self._queue.get()]
        while len(bodies) < self.max_batch_size and not self._queue.empty():
            bodies.append(self._queue.get_nowait())
        return [InMemoryQueueMessage(body=body, queue=self) for body in bodies]

    async def _worker(self, handler: BatchHandler) -> None:
        while True:
            batch = await self.next_batch()
            try:
                await handler(batch)
            except Exception:
                _logger.exception("Vision queue batch failed")
            for message in batch:
                if message.acked or message.retry_delay is not None:
                    continue
                attempt = message.body.get("attempt")
                delay = self.unsettled_delay(
                    attempt if isinstance(attempt, int) else 1
                )
                _logger.warning(
                    "Message left unsettled, retrying in %ss: %s", delay, message.body
                )
                message.retry(delay)
