from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .errors import StorageError
from .models import SaveRecord
from .storage import JsonFileStorage

logger = logging.getLogger(__name__)


class MetadataStore:
    """Ordered list of save records, persisted as a single JSON file (Saves.meta).

    The store does no locking of its own; the coordinator mutates it under its lock.
    Records keep insertion order, so the last record is the newest save.
    """

    def __init__(self, path: Path, storage: Optional[JsonFileStorage] = None) -> None:
        self.path = Path(path)
        self._storage = storage or JsonFileStorage()
        self._records: List[SaveRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[SaveRecord]:
        return list(self._records)

    def load(self) -> List[SaveRecord]:
        """Read the metadata file, starting empty if it is missing or unreadable."""
        try:
            records = self._storage.read(self.path, List[SaveRecord])
        except StorageError:
            logger.exception("Failed to load save metadata from %s; starting with no saves", self.path)
            records = None
        self._records = list(records or [])
        logger.info("Loaded %d save record(s) from %s", len(self._records), self.path)
        return self.records

    def write(self, records: Optional[List[SaveRecord]] = None) -> None:
        """Rewrite the metadata file with ``records`` (a snapshot) or the current list."""
        self._storage.write(self.path, self._records if records is None else records)

    def append(self, record: SaveRecord) -> None:
        self._records.append(record)

    def find(self, save_name: str) -> Optional[SaveRecord]:
        for record in self._records:
            if record.save_name == save_name:
                return record
        return None

    def remove(self, save_name: str) -> bool:
        """Remove the first record named ``save_name``. Returns False if none matched."""
        for index, record in enumerate(self._records):
            if record.save_name == save_name:
                del self._records[index]
                return True
        return False

    def latest(self) -> Optional[SaveRecord]:
        return self._records[-1] if self._records else None
