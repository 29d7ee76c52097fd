"""Quiet-period coalescing of rapid requests."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs only the last of a burst of calls.

    Every ``schedule`` call restarts the quiet-period timer. Calls that
    are replaced before the timer fires are dropped: their timer is
    cancelled and the future they returned is cancelled too.

    Example usage:

        >>> debouncer = Debouncer(0.3)
        >>> for t in (1.0, 1.1, 1.2):
        ...     future = debouncer.schedule(generator.generate_preview, t, pipeline)
        >>> image = await future   # only the t=1.2 request ran

    Args:
        delay: Quiet period in seconds
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._future: Optional[asyncio.Future] = None
        self.fired = 0
        self.superseded = 0

    @property
    def pending(self) -> bool:
        """Whether a call is waiting for its timer."""
        return self._handle is not None

    def schedule(self, callback: Callable[..., Any], *args: Any) -> asyncio.Future:
        """Replace any pending call with ``callback(*args)``.

        Coroutine functions are awaited as a task once the timer fires.

        Returns:
            Future resolved with the callback's result, or cancelled if
            the call is superseded
        """
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self.superseded += 1
        self.cancel()

        future = loop.create_future()
        self._future = future
        self._handle = loop.call_later(self.delay, self._fire, future, callback, args)
        return future

    def cancel(self) -> None:
        """Drop the pending call, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._future = None

    def _fire(self, future: asyncio.Future, callback: Callable[..., Any], args: tuple) -> None:
        self._handle = None
        self._future = None
        if future.done():
            return
        self.fired += 1

        try:
            result = callback(*args)
        except Exception as e:
            future.set_exception(e)
            return

        if not inspect.isawaitable(result):
            future.set_result(result)
            return

        task = asyncio.ensure_future(result)

        def _relay(done: asyncio.Future) -> None:
            if future.done():
                return
            if done.cancelled():
                future.cancel()
            elif done.exception() is not None:
                future.set_exception(done.exception())
            else:
                future.set_result(done.result())

        def _abandon(outer: asyncio.Future) -> None:
            if outer.cancelled() and not task.done():
                task.cancel()

        task.add_done_callback(_relay)
        future.add_done_callback(_abandon)
