"""
Cancellation token shared between a caller and an in-flight connect or session.
"""

from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..errors import SessionCancelledError

logger = logging.getLogger(__name__)


class CancelToken:
    """
    Thread-safe cancel flag with callbacks.

    Blocking operations register a callback that unblocks them (close a
    socket, wake a selector). ``cancel()`` runs every registered callback
    once; a callback registered after cancellation runs immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)

        logger.info("Cancel requested")
        for callback in callbacks:
            self._run(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise SessionCancelledError(stage)

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """Run ``callback`` if cancelled while the block is active."""
        with self._lock:
            already = self._event.is_set()
            if not already:
                self._callbacks.append(callback)

        if already:
            self._run(callback)

        try:
            yield
        finally:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.exception(f"Cancel callback error: {e}")
