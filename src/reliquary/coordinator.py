from __future__ import annotations

import logging
import threading
import time
import uuid
import webbrowser
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum, auto
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import SaveSettings
from .dispatch import ForegroundDispatcher
from .errors import StorageError
from .events import EventHub, Listener, OnceCallback, SaveEvent
from .metadata import MetadataStore
from .models import ActiveState, SaveRecord, new_save_name
from .paths import ensure_dir
from .storage import JsonFileStorage

logger = logging.getLogger(__name__)

EntityId = Union[uuid.UUID, str]
PendingOperation = Callable[[], None]


class Operation(Enum):
    """Categories of pending disk operations, declared in execution priority order."""

    SETTINGS_SAVE = auto()
    SETTINGS_LOAD = auto()
    GAME_SAVE = auto()
    GAME_LOAD = auto()
    GAME_DELETE = auto()


def _as_uuid(value: EntityId) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class SaveCoordinator:
    """Coordinates saving, loading and deleting savegames and settings.

    Requests never block on disk I/O. Each request overwrites the pending slot of
    its category, so several requests of one kind before the worker gets to them
    collapse into the most recent one. A single background worker drains the
    slots in ``Operation`` order and stops when all of them are empty.

    Completion notifications are marshalled to the foreground: they are delivered
    by ``update``, which the application calls once per tick from its main loop.

    Usage:
        coordinator = SaveCoordinator(SaveSettings.load(path))
        coordinator.start()
        coordinator.request_game_save("Before the boss")
        ...
        coordinator.update(dt)  # every frame
        ...
        coordinator.shutdown()
    """

    def __init__(
        self,
        settings: Optional[SaveSettings] = None,
        storage: Optional[JsonFileStorage] = None,
        dispatcher: Optional[ForegroundDispatcher] = None,
    ) -> None:
        self.settings = settings or SaveSettings()
        self.storage = storage or JsonFileStorage()
        self.dispatcher = dispatcher or ForegroundDispatcher()

        # Guards active state, pending slots, metadata, one-shot queues and worker state
        self._lock = threading.RLock()
        self.events = EventHub(self._lock)

        self._active_state: ActiveState = {}
        self._pending: Dict[Operation, Optional[PendingOperation]] = {op: None for op in Operation}
        self._worker_active = False
        self._worker: Optional[threading.Thread] = None
        self._closed = False

        # Auto save runs on game time accumulated by update(dt)
        self._game_time = 0.0
        self._next_auto_save: Optional[float] = None

        self._metadata = MetadataStore(self.settings.metadata_file, self.storage)
        self._metadata.load()

    def __enter__(self) -> "SaveCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # Lifecycle

    def start(self, editor_mode: bool = False) -> None:
        """Request the initial settings load and arm auto save as configured."""
        if editor_mode and self.settings.skip_loading_settings_in_editor:
            logger.info("Editor mode: skipping settings load")
        else:
            self.request_settings_load()
        self.set_auto_save_active(self.settings.auto_save)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting requests, drop pending ones and wait for the running one.

        An operation that already started is allowed to finish; nothing pending is
        executed.
        """
        self.set_auto_save_active(False)
        with self._lock:
            self._closed = True
            discarded = [op.name for op, fn in self._pending.items() if fn is not None]
            for op in self._pending:
                self._pending[op] = None
            worker = self._worker
        if discarded:
            logger.info("Discarded pending operations on shutdown: %s", ", ".join(discarded))
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
        logger.info("Save coordinator shut down")

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def is_busy(self) -> bool:
        """True while the worker is running save/load/delete operations."""
        with self._lock:
            return self._worker_active

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no worker is running. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                worker = self._worker
            if worker is None:
                return True
            if worker is threading.current_thread():
                raise RuntimeError("wait_until_idle() cannot be called from the worker thread")
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            worker.join(remaining)
            if worker.is_alive():
                return False

    # Requests

    def request_game_save(self, display_name: Optional[str] = None, custom_data: Any = None) -> None:
        """Save the game state right away or at the next possible opening.

        Args:
            display_name: Name of the savegame as it should appear in-game. The file
                name is generated. Saves without a display name are auto saves.
            custom_data: Game-specific meta data stored in the save record.
        """
        self._request(Operation.GAME_SAVE, partial(self._save_game, display_name, custom_data))

    def request_game_load(self, save_name: str) -> None:
        """Load a savegame by its save name (not the display name)."""
        self._request(Operation.GAME_LOAD, partial(self._load_game, save_name))

    def request_game_delete(self, save_name: str) -> None:
        """Delete a savegame by its save name. You cannot undo this."""
        self._request(Operation.GAME_DELETE, partial(self._delete_game, save_name))

    def request_settings_save(self) -> None:
        self._request(Operation.SETTINGS_SAVE, self._save_settings)

    def request_settings_load(self) -> None:
        self._request(Operation.SETTINGS_LOAD, self._load_settings)

    # Active save data

    def set_save_data(self, id: EntityId, content: str) -> None:
        """Write the entry of one entity into the active save data.

        Useful when an entity goes away before the next save but its latest state
        should still end up in the savegame.
        """
        key = _as_uuid(id)
        with self._lock:
            self._active_state[key] = content

    def get_save_data(self, id: EntityId) -> Optional[str]:
        """Return the entry of one entity, or None (with a warning) if there is none."""
        try:
            key = _as_uuid(id)
        except ValueError:
            logger.warning("Savegame: %r is not a valid entry id", id)
            return None
        with self._lock:
            content = self._active_state.get(key)
        if content is None:
            logger.warning("Savegame: no entry with the id %s was found", key)
        return content

    def remove_save_data(self, id: EntityId) -> None:
        """Drop one entry. The savegame on disk changes with the next save."""
        key = _as_uuid(id)
        with self._lock:
            self._active_state.pop(key, None)

    def clear_save_data(self) -> None:
        """Drop all active save data, e.g. when starting a new game."""
        with self._lock:
            self._active_state.clear()

    def snapshot(self) -> ActiveState:
        """Return a copy of the active save data."""
        with self._lock:
            return dict(self._active_state)

    # Save records

    @property
    def save_records(self) -> List[SaveRecord]:
        with self._lock:
            return self._metadata.records

    def latest_record(self) -> Optional[SaveRecord]:
        with self._lock:
            return self._metadata.latest()

    def open_save_directory(self) -> Path:
        """Open the save directory in the platform file browser."""
        directory = ensure_dir(self.settings.savegame_directory)
        webbrowser.open(directory.resolve().as_uri())
        return directory

    # Events

    def subscribe(self, event: SaveEvent, listener: Listener) -> None:
        self.events.subscribe(event, listener)

    def unsubscribe(self, event: SaveEvent, listener: Listener) -> None:
        self.events.unsubscribe(event, listener)

    def invoke_on_saved(self, callback: OnceCallback) -> None:
        """Run ``callback`` once, the next time a save completes."""
        self.events.invoke_once(SaveEvent.SAVED, callback)

    def invoke_on_loaded(self, callback: OnceCallback) -> None:
        """Run ``callback`` once, the next time a load completes."""
        self.events.invoke_once(SaveEvent.LOADED, callback)

    def invoke_on_deleted(self, callback: OnceCallback) -> None:
        """Run ``callback`` once, the next time a delete completes."""
        self.events.invoke_once(SaveEvent.DELETED, callback)

    # Foreground tick and auto save

    @property
    def game_time(self) -> float:
        with self._lock:
            return self._game_time

    @property
    def next_auto_save(self) -> Optional[float]:
        """Game time of the next auto save, or None while auto save is off."""
        with self._lock:
            return self._next_auto_save

    def set_auto_save_active(self, enabled: bool) -> None:
        """Enable or disable auto save. The first one happens one interval from now."""
        with self._lock:
            if enabled:
                self._next_auto_save = self._game_time + self.settings.auto_save_interval_seconds
            else:
                self._next_auto_save = None
        logger.debug("Auto save %s", "enabled" if enabled else "disabled")

    def update(self, dt: float = 0.0) -> None:
        """Advance the foreground tick.

        Args:
            dt: Seconds of game time since the previous tick.
        """
        self._check_auto_save(dt)
        self.dispatcher.pump()

    def _check_auto_save(self, dt: float) -> None:
        with self._lock:
            self._game_time += max(float(dt), 0.0)
            if self._next_auto_save is None or self._game_time < self._next_auto_save:
                return
            fired_at = self._game_time
            self._next_auto_save = fired_at + self.settings.auto_save_interval_seconds
        logger.info("Auto save triggered at game time %.1fs", fired_at)
        self.request_game_save()

    # Worker

    def _request(self, op: Operation, fn: PendingOperation) -> None:
        with self._lock:
            if self._closed:
                logger.warning("Ignoring %s request: save coordinator is shut down", op.name)
                return
            if self._pending[op] is not None:
                logger.debug("Replacing pending %s request", op.name)
            self._pending[op] = fn
            self._start_worker()

    def _start_worker(self) -> None:
        # Caller holds the lock
        if self._worker_active:
            return
        self._worker_active = True
        self._worker = threading.Thread(target=self._drain, name="reliquary-worker", daemon=True)
        self._worker.start()

    def _take_next(self) -> Tuple[Optional[Operation], Optional[PendingOperation]]:
        # Caller holds the lock
        for op in Operation:
            fn = self._pending[op]
            if fn is not None:
                self._pending[op] = None
                return op, fn
        return None, None

    def _drain(self) -> None:
        while True:
            with self._lock:
                op, fn = self._take_next()
                if fn is None:
                    self._worker_active = False
                    self._worker = None
                    logger.debug("Worker idle")
                    return
            logger.debug("Running %s", op.name)
            try:
                fn()
            except Exception:
                logger.exception("%s operation failed", op.name)

    def _post_completion(self, event: SaveEvent, *args: Any) -> None:
        self.dispatcher.post(partial(self.events.complete, event, *args))

    # Operations (run on the worker thread)

    def _save_game(self, display_name: Optional[str], custom_data: Any) -> None:
        if not self.events.has_listeners(SaveEvent.SAVING):
            logger.info("Nothing to save: no listeners collect save data")
            self._post_completion(SaveEvent.SAVED)
            return

        # Collectors write into the live state without the lock held
        self.events.emit(SaveEvent.SAVING, self._active_state)
        with self._lock:
            data = dict(self._active_state)
            record = SaveRecord(
                save_name=new_save_name(),
                display_name=display_name or "",
                save_version=self.settings.savegame_version,
                save_date=datetime.now(timezone.utc),
                custom_data=custom_data,
                is_auto_save=not display_name,
            )
            self._metadata.append(record)
            records = self._metadata.records

        try:
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="reliquary-io") as pool:
                writes = [
                    pool.submit(self.storage.write, self.settings.save_file_path(record.save_name), data),
                    pool.submit(self._metadata.write, records),
                ]
                for write in writes:
                    write.result()
        except Exception:
            with self._lock:
                self._metadata.remove(record.save_name)
                remaining = self._metadata.records
            try:
                self._metadata.write(remaining)
            except StorageError:
                logger.exception("Failed to roll back save record %s in %s", record.save_name, self._metadata.path)
            raise

        logger.info(
            "Saved game %s (%s, %d entries)",
            record.save_name,
            record.display_name or "auto save",
            len(data),
        )
        self._post_completion(SaveEvent.SAVED)

    def _load_game(self, save_name: str) -> None:
        path = self.settings.save_file_path(save_name)
        state = self.storage.read(path, ActiveState)
        if state is None:
            logger.warning("Savegame %s not found at %s; loading empty save data", save_name, path)
        with self._lock:
            self._active_state = dict(state or {})
            loaded = self._active_state
        logger.info("Loaded game %s (%d entries)", save_name, len(loaded))
        self._post_completion(SaveEvent.LOADED, loaded)

    def _delete_game(self, save_name: str) -> None:
        self.storage.delete(self.settings.save_file_path(save_name))
        with self._lock:
            removed = self._metadata.remove(save_name)
            records = self._metadata.records
        if removed:
            self._metadata.write(records)
            logger.info("Deleted game %s", save_name)
        else:
            logger.warning("No save record named %s", save_name)
        self._post_completion(SaveEvent.DELETED)

    def _save_settings(self) -> None:
        with self._lock:
            payloads = [ref.dump() if ref is not None else None for ref in self.settings.assets]
        self.storage.write(self.settings.settings_file, payloads)
        logger.info("Saved %d settings asset(s) to %s", len(payloads), self.settings.settings_file)

    def _load_settings(self) -> None:
        payloads = self.storage.read(self.settings.settings_file, List[Any])
        if payloads is None:
            logger.info("No settings file at %s", self.settings.settings_file)
            return
        self.dispatcher.post(partial(self._apply_settings, payloads))

    def _apply_settings(self, payloads: List[Any]) -> None:
        assets = self.settings.assets
        applied = 0
        for index, payload in enumerate(payloads):
            ref = assets[index] if index < len(assets) else None
            if ref is None or payload is None:
                continue
            try:
                ref.wait_for_loaded()
                instance = ref.set_instance(payload)
                instance.load_action()
                applied += 1
            except Exception:
                logger.exception("Failed to apply settings asset #%d (%s)", index, ref.asset_type.__name__)
        logger.info("Applied %d settings asset(s)", applied)
