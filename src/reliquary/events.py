from __future__ import annotations

import logging
from enum import Enum, auto
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SaveEvent(Enum):
    """Events raised by the save coordinator."""

    # Raised during a save to collect data; listeners get the live active state
    SAVING = auto()
    # Raised after a savegame and the metadata file are written
    SAVED = auto()
    # Raised after a savegame was read; listeners get the new active state
    LOADED = auto()
    # Raised after a savegame was deleted
    DELETED = auto()


Listener = Callable[..., Any]
OnceCallback = Callable[[], Any]

ONCE_EVENTS = (SaveEvent.SAVED, SaveEvent.LOADED, SaveEvent.DELETED)


class EventHub:
    """Persistent listeners plus one-shot callbacks for save events.

    Persistent listeners stay subscribed until removed and are called every time
    their event is emitted. One-shot callbacks take no arguments and run only on
    the next completion of their event, before the persistent listeners.

    Every listener and callback call is isolated: an exception is logged and the
    remaining ones still run.
    """

    def __init__(self, lock: Optional[RLock] = None) -> None:
        self._lock = lock or RLock()
        self._listeners: Dict[SaveEvent, List[Listener]] = {event: [] for event in SaveEvent}
        self._once: Dict[SaveEvent, List[OnceCallback]] = {event: [] for event in ONCE_EVENTS}

    def subscribe(self, event: SaveEvent, listener: Listener) -> None:
        """Subscribe a listener. Subscribing the same listener twice has no effect."""
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            listeners = self._listeners[event]
            if listener not in listeners:
                listeners.append(listener)
                logger.debug("Subscribed %s to %s", getattr(listener, "__name__", listener), event.name)

    def unsubscribe(self, event: SaveEvent, listener: Listener) -> None:
        """Unsubscribe a listener. Silently ignores if not present."""
        with self._lock:
            listeners = self._listeners[event]
            if listener in listeners:
                listeners.remove(listener)
                logger.debug("Unsubscribed %s from %s", getattr(listener, "__name__", listener), event.name)

    def has_listeners(self, event: SaveEvent) -> bool:
        with self._lock:
            return bool(self._listeners[event])

    def emit(self, event: SaveEvent, *args: Any) -> None:
        """Call every listener of ``event`` with ``args``."""
        with self._lock:
            listeners = list(self._listeners[event])
        logger.debug("Emitting %s to %d listener(s)", event.name, len(listeners))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Error in %s listener %r", event.name, listener)

    def invoke_once(self, event: SaveEvent, callback: OnceCallback) -> None:
        """Queue ``callback`` to run once, the next time ``event`` completes."""
        if event not in self._once:
            raise ValueError(f"One-shot callbacks are not supported for {event.name}")
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._once[event].append(callback)

    def drain_once(self, event: SaveEvent) -> int:
        """Run and discard all queued one-shot callbacks of ``event`` in FIFO order."""
        with self._lock:
            callbacks = self._once[event]
            self._once[event] = []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in one-shot %s callback %r", event.name, callback)
        return len(callbacks)

    def complete(self, event: SaveEvent, *args: Any) -> None:
        """Signal completion of ``event``: one-shot callbacks first, then listeners."""
        if event in self._once:
            self.drain_once(event)
        self.emit(event, *args)
