"""
Tests for the Per-Connection Event Queue.

Tests cover:
  - FIFO ordering within a connection
  - Cross-connection parallelism
  - Queue depth tracking
  - Error handling (processor failure doesn't crash worker)
  - Drain / release / stop
"""

import asyncio

import pytest

from medinet.gateway.events import InboundEvent, InboundType, MessagePayload
from medinet.gateway.queue import ConnectionQueueManager


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _msg(text: str) -> InboundEvent:
    return InboundEvent(type=InboundType.MESSAGE, payload=MessagePayload(text=text))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  FIFO Ordering
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestFIFOOrdering:

    @pytest.mark.asyncio
    async def test_events_processed_in_order(self):
        """Events for one connection should be processed FIFO."""
        processed = []

        async def processor(connection_id, event):
            processed.append(event.payload.text)
            await asyncio.sleep(0.01)

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.enqueue("conn-1", _msg("First"))
        await mgr.enqueue("conn-1", _msg("Second"))
        await mgr.enqueue("conn-1", _msg("Third"))

        await mgr.drain("conn-1")
        await mgr.stop()

        assert processed == ["First", "Second", "Third"]

    @pytest.mark.asyncio
    async def test_one_event_at_a_time_per_connection(self):
        running = 0
        peak = 0

        async def processor(connection_id, event):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        mgr = ConnectionQueueManager(processor=processor)
        for i in range(5):
            await mgr.enqueue("conn-1", _msg(str(i)))
        await mgr.release("conn-1")

        assert peak == 1


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Parallelism
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestParallelism:

    @pytest.mark.asyncio
    async def test_connections_run_in_parallel(self):
        """A slow connection should not hold up another one."""
        finished = []

        async def processor(connection_id, event):
            if connection_id == "slow":
                await asyncio.sleep(0.3)
            finished.append(connection_id)

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.enqueue("slow", _msg("a"))
        await mgr.enqueue("fast", _msg("b"))

        await mgr.drain("fast")
        assert finished == ["fast"]

        await mgr.drain("slow")
        assert finished == ["fast", "slow"]
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_active_connections(self):
        async def processor(connection_id, event):
            pass

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.enqueue("a", _msg("x"))
        await mgr.enqueue("b", _msg("y"))

        assert sorted(mgr.active_connections) == ["a", "b"]
        assert mgr.active_count == 2
        await mgr.stop()
        assert mgr.active_count == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Depth + errors + teardown
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestQueueBehaviour:

    @pytest.mark.asyncio
    async def test_queue_depth(self):
        gate = asyncio.Event()

        async def processor(connection_id, event):
            await gate.wait()

        mgr = ConnectionQueueManager(processor=processor)
        for i in range(3):
            await mgr.enqueue("conn-1", _msg(str(i)))
        await asyncio.sleep(0.01)

        # First event is being processed, two are waiting
        assert mgr.queue_depth("conn-1") == 2
        assert mgr.queue_depth("unknown") == 0

        gate.set()
        await mgr.release("conn-1")

    @pytest.mark.asyncio
    async def test_processor_error_does_not_kill_worker(self):
        processed = []

        async def processor(connection_id, event):
            if event.payload.text == "boom":
                raise RuntimeError("handler exploded")
            processed.append(event.payload.text)

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.enqueue("conn-1", _msg("boom"))
        await mgr.enqueue("conn-1", _msg("after"))
        await mgr.drain("conn-1")

        assert processed == ["after"]
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_release_drains_then_removes_queue(self):
        processed = []

        async def processor(connection_id, event):
            await asyncio.sleep(0.01)
            processed.append(event.payload.text)

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.enqueue("conn-1", _msg("one"))
        await mgr.enqueue("conn-1", _msg("two"))

        await mgr.release("conn-1")

        assert processed == ["one", "two"]
        assert "conn-1" not in mgr.active_connections

    @pytest.mark.asyncio
    async def test_release_unknown_connection_is_noop(self):
        async def processor(connection_id, event):
            pass

        mgr = ConnectionQueueManager(processor=processor)
        await mgr.release("never-seen")
        assert mgr.active_count == 0
