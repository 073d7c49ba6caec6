"""Bounded in-process queue for webhook-triggered sync work.

The webhook route only persists the event and enqueues its id; workers
started with the application run the actual Xero sync. A full queue is
not an error: the event stays "received" in the webhook log and the
daily cron replays it.
"""
from typing import Callable, Awaitable, List, Optional
import asyncio
import logging


logger = logging.getLogger(__name__)

EventHandler = Callable[[str], Awaitable[None]]


class WebhookTaskQueue:
    """asyncio.Queue of webhook event ids drained by background workers."""

    def __init__(self, handler: EventHandler, maxsize: int = 100, workers: int = 1):
        self.handler = handler
        self.maxsize = maxsize
        self.workers = workers
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._tasks = [
            asyncio.create_task(self._worker(i, self._queue), name=f"webhook-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Webhook queue started ({self.workers} worker(s), maxsize={self.maxsize})")

    async def stop(self) -> None:
        """Cancel the workers. Events still queued are left for the cron replay."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        logger.info("Webhook queue stopped")

    def enqueue(self, event_id: str) -> bool:
        """Hand an event to the workers without blocking.

        Returns False when the queue is not running or is full.
        """
        if not self.running or self._queue is None:
            logger.warning(f"Webhook queue not running, event {event_id} left for replay")
            return False
        try:
            self._queue.put_nowait(event_id)
        except asyncio.QueueFull:
            logger.warning(f"Webhook queue full, event {event_id} left for replay")
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, index: int, queue: asyncio.Queue) -> None:
        while True:
            event_id = await queue.get()
            try:
                await self.handler(event_id)
            except Exception:
                logger.exception(f"Webhook worker {index} failed on event {event_id}")
            finally:
                queue.task_done()
