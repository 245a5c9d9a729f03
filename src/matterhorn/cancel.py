"""
Cooperative cancellation shared by interactive renders and exports.
"""

import threading
from typing import Callable, Optional


class CancelToken:
    """
    Flag checked between units of work (tiles, frames, encoder polls).

    A token is cancelled either explicitly via `cancel()` or when the optional
    predicate starts returning True, which lets a generation counter supersede
    in-flight work without touching the worker thread.
    """

    def __init__(self, predicate: Optional[Callable[[], bool]] = None):
        self._event = threading.Event()
        self._predicate = predicate

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._predicate is not None and self._predicate()

    def raise_if_cancelled(self, exc_type: type, message: str = "cancelled"):
        if self.cancelled:
            raise exc_type(message)
