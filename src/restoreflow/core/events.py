"""Broadcast event channels.

An EventChannel fans one stream of events out to any number of
subscribers. Subscribers either register a callback, which runs inline
when the event is emitted, or open an EventStream and consume events
with ``async for``. Closing the channel ends every open stream; nothing
relies on garbage collection to tear subscriptions down.

Example usage:

    >>> progress = EventChannel("progress")
    >>> progress.subscribe(lambda info: print(info.percent_complete))
    >>> progress.emit(ProgressInfo(frame=250, total_frames=1000))
    25
    >>>
    >>> async def watch():
    ...     async with progress.stream() as events:
    ...         async for info in events:
    ...             print(info.eta_formatted)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventCallback = Callable[[Any], None]

_CLOSED = object()


class EventStream(Generic[T]):
    """Queue-backed async iterator over a channel's events.

    Events emitted before the stream was opened are not replayed.
    """

    def __init__(self, channel: "EventChannel[T]", maxsize: int = 0) -> None:
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._done = False

    def _push(self, event: Any) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping event on full stream of channel %s", self._channel.name
            )

    def __aiter__(self) -> "EventStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._done:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _CLOSED:
            self._done = True
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        """Detach from the channel and end iteration."""
        if self._done:
            return
        self._channel._detach(self)
        self._done = True
        self._push(_CLOSED)

    async def __aenter__(self) -> "EventStream[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()


class EventChannel(Generic[T]):
    """Multi-subscriber channel for one kind of event.

    Callbacks are called in subscription order. A failing callback is
    logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: List[EventCallback] = []
        self._streams: List[EventStream[T]] = []
        self._closed = False
        self._events_emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._streams)

    @property
    def events_emitted(self) -> int:
        return self._events_emitted

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback.

        Returns:
            Function that removes the subscription when called
        """
        if self._closed:
            raise RuntimeError(f"Channel {self.name} is closed")
        if callback not in self._callbacks:
            self._callbacks.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: EventCallback) -> bool:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            return True
        return False

    def stream(self, maxsize: int = 0) -> EventStream[T]:
        """Open an async stream of subsequent events.

        Must be called from within a running event loop.
        """
        stream: EventStream[T] = EventStream(self, maxsize=maxsize)
        if self._closed:
            stream._done = True
            return stream
        self._streams.append(stream)
        return stream

    def _detach(self, stream: EventStream[T]) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    def emit(self, event: T) -> None:
        """Deliver an event to every subscriber."""
        if self._closed:
            logger.debug("Ignoring event on closed channel %s", self.name)
            return
        self._events_emitted += 1
        for callback in list(self._callbacks):
            self._safe_call(callback, event)
        for stream in list(self._streams):
            stream._push(event)

    def _safe_call(self, callback: EventCallback, event: Any) -> None:
        try:
            callback(event)
        except Exception as e:
            logger.error(
                f"Error in event callback for channel {self.name}: {e}",
                exc_info=True,
            )

    def close(self) -> None:
        """End all streams and drop all callbacks. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._callbacks.clear()
        streams, self._streams = self._streams, []
        for stream in streams:
            stream._push(_CLOSED)

    def __enter__(self) -> "EventChannel[T]":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
