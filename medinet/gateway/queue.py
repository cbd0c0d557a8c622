"""
Per-Connection Event Queue — serialises inbound events for each websocket.

One asyncio.Queue per open connection.  Events are processed FIFO, one at
a time, by a worker task, so the socket read loop never waits on the
consultation pipeline.  Different connections run in parallel.

A connection's queue is drained and torn down when the socket closes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from medinet.gateway.events import InboundEvent

logger = logging.getLogger("gateway.queue")

# Type for the callback the queue calls to process each event
EventProcessor = Callable[[str, InboundEvent], Awaitable[Any]]


class ConnectionQueueManager:
    """
    Manages one asyncio.Queue per connection_id.

    Usage:
        mgr = ConnectionQueueManager(processor=gateway.handle_event)
        await mgr.enqueue(connection_id, event)
        ...
        await mgr.release(connection_id)   # drain, then stop the worker

    The manager spawns the worker for a connection on its first event.
    """

    def __init__(
        self,
        processor: EventProcessor,
        slow_event_seconds: float = 30.0,
    ) -> None:
        self._processor = processor
        self._slow_event_seconds = slow_event_seconds

        self._queues: dict[str, asyncio.Queue[InboundEvent]] = {}
        self._workers: dict[str, asyncio.Task] = {}

    # ── Public API ──

    async def enqueue(self, connection_id: str, event: InboundEvent) -> None:
        """Add an event to the connection's queue.  Creates queue if needed."""
        if connection_id not in self._queues:
            self._create_queue(connection_id)

        await self._queues[connection_id].put(event)
        logger.debug(
            "Enqueued %s for connection %s (depth=%d)",
            event.type.value, connection_id, self._queues[connection_id].qsize(),
        )

    async def drain(self, connection_id: str) -> None:
        """Wait until every event queued so far for the connection is processed."""
        q = self._queues.get(connection_id)
        if q is not None:
            await q.join()

    async def release(self, connection_id: str) -> None:
        """Drain the connection's queue, then stop its worker."""
        await self.drain(connection_id)
        await self._destroy_queue(connection_id)

    async def stop(self) -> None:
        """Stop every worker without draining."""
        for cid in list(self._workers.keys()):
            await self._destroy_queue(cid)
        logger.info("ConnectionQueueManager stopped")

    @property
    def active_connections(self) -> list[str]:
        return list(self._queues.keys())

    @property
    def active_count(self) -> int:
        return len(self._queues)

    def queue_depth(self, connection_id: str) -> int:
        """Number of pending events for a connection.  Returns 0 if no queue."""
        q = self._queues.get(connection_id)
        return q.qsize() if q else 0

    # ── Internal ──

    def _create_queue(self, connection_id: str) -> None:
        q: asyncio.Queue[InboundEvent] = asyncio.Queue()
        self._queues[connection_id] = q
        self._workers[connection_id] = asyncio.create_task(
            self._worker_loop(connection_id, q)
        )
        logger.debug("Created queue + worker for connection %s", connection_id)

    async def _worker_loop(self, connection_id: str, q: asyncio.Queue[InboundEvent]) -> None:
        """Process events for a single connection, one at a time."""
        while True:
            event = await q.get()
            try:
                t0 = time.monotonic()
                await self._processor(connection_id, event)
                elapsed = time.monotonic() - t0
                logger.debug(
                    "Event %s for %s processed in %.2fs",
                    event.type.value, connection_id, elapsed,
                )
                if elapsed > self._slow_event_seconds:
                    logger.warning(
                        "Slow event: %s for %s took %.1fs",
                        event.type.value, connection_id, elapsed,
                    )
            except Exception as exc:
                logger.error(
                    "Error processing %s for connection %s: %s",
                    event.type.value, connection_id, exc,
                    exc_info=True,
                )
            finally:
                q.task_done()

    async def _destroy_queue(self, connection_id: str) -> None:
        worker = self._workers.pop(connection_id, None)
        if worker and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._queues.pop(connection_id, None)
        logger.debug("Destroyed queue for connection %s", connection_id)
