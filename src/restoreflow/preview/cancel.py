"""Per-request cancellation tokens."""

import itertools
import logging
from typing import Callable, List, Optional

from restoreflow.exceptions import PreviewCancelled

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


class CancelToken:
    """Flag owned by a single preview request.

    Each request creates its own token; cancelling one request never
    affects another. Callbacks registered with ``on_cancel`` run once,
    synchronously, when the token is first cancelled.
    """

    def __init__(self, request_id: Optional[int] = None) -> None:
        self.request_id = request_id if request_id is not None else next(_request_ids)
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancel callback for request {self.request_id} failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation, immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        """Checkpoint: raise PreviewCancelled if the request was superseded."""
        if self._cancelled:
            raise PreviewCancelled()

    def __repr__(self) -> str:
        return f"CancelToken(request_id={self.request_id}, cancelled={self._cancelled})"
