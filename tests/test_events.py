"""Tests for EventChannel and EventStream."""
import asyncio
import logging

import pytest

from restoreflow.core.events import EventChannel


class TestCallbacks:
    """Callback subscribers."""

    def test_emit_in_subscription_order(self):
        channel = EventChannel("test")
        seen = []
        channel.subscribe(lambda e: seen.append(("a", e)))
        channel.subscribe(lambda e: seen.append(("b", e)))

        channel.emit(1)

        assert seen == [("a", 1), ("b", 1)]
        assert channel.events_emitted == 1

    def test_unsubscribe_handle(self):
        channel = EventChannel("test")
        seen = []
        unsubscribe = channel.subscribe(seen.append)
        channel.emit(1)
        unsubscribe()
        channel.emit(2)
        assert seen == [1]
        assert channel.subscriber_count == 0

    def test_failing_callback_does_not_block_others(self, caplog):
        channel = EventChannel("test")
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="restoreflow.core.events"):
            channel.emit("x")

        assert seen == ["x"]
        assert "boom" in caplog.text

    def test_closed_channel(self):
        channel = EventChannel("test")
        seen = []
        channel.subscribe(seen.append)
        channel.close()
        channel.close()

        channel.emit(1)

        assert seen == []
        assert channel.closed
        with pytest.raises(RuntimeError):
            channel.subscribe(seen.append)

    def test_context_manager_closes(self):
        with EventChannel("test") as channel:
            pass
        assert channel.closed


class TestStreams:
    """Async stream subscribers."""

    async def test_stream_receives_events_until_close(self):
        channel = EventChannel("test")
        stream = channel.stream()

        channel.emit(1)
        channel.emit(2)
        channel.close()

        assert [event async for event in stream] == [1, 2]

    async def test_events_before_open_are_not_replayed(self):
        channel = EventChannel("test")
        channel.emit("early")
        stream = channel.stream()
        channel.emit("late")
        channel.close()

        assert [event async for event in stream] == ["late"]

    async def test_stream_close_detaches(self):
        channel = EventChannel("test")
        async with channel.stream() as stream:
            assert channel.subscriber_count == 1
        assert channel.subscriber_count == 0
        assert [event async for event in stream] == []

    async def test_concurrent_consumer(self):
        channel = EventChannel("test")
        stream = channel.stream()

        async def consume():
            return [event async for event in stream]

        consumer = asyncio.create_task(consume())
        for i in range(3):
            channel.emit(i)
            await asyncio.sleep(0)
        channel.close()

        assert await asyncio.wait_for(consumer, timeout=1) == [0, 1, 2]

    async def test_full_stream_drops(self, caplog):
        channel = EventChannel("test")
        stream = channel.stream(maxsize=1)

        with caplog.at_level(logging.WARNING, logger="restoreflow.core.events"):
            channel.emit(1)
            channel.emit(2)

        assert "Dropping event" in caplog.text
        stream.close()

    async def test_stream_of_closed_channel_is_empty(self):
        channel = EventChannel("test")
        channel.close()
        assert [event async for event in channel.stream()] == []
