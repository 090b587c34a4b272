from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Callable, Deque

logger = logging.getLogger(__name__)


class ForegroundDispatcher:
    """Queue of callables to run on the foreground (update) thread.

    Any thread may ``post``; the thread driving the update loop calls ``pump`` once
    per tick. Callables run in posting order. Anything posted while a pump is in
    progress runs on the next pump.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._queue: Deque[Callable[[], None]] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def post(self, fn: Callable[[], None]) -> None:
        if not callable(fn):
            raise TypeError("fn must be callable")
        with self._lock:
            self._queue.append(fn)

    def pump(self) -> int:
        """Run everything queued so far. Returns the number of callables run."""
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()
        for fn in batch:
            try:
                fn()
            except Exception:
                logger.exception("Unhandled exception in foreground callback %r", fn)
        return len(batch)
