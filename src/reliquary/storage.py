from __future__ import annotations

import logging
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from .errors import CorruptSaveError, StorageError
from .paths import ensure_dir

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


@lru_cache(maxsize=None)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


class JsonFileStorage:
    """Filesystem-backed JSON storage for savegames, save metadata and settings.

    Values are serialized with pydantic, so models, lists of models, datetimes and
    UUID-keyed mappings can be written directly. Writes go through a temporary file
    and ``os.replace`` so a file is either the old or the new content, never half
    of each. Separate writes are not transactional with each other.

    The storage keeps no state and can be called from any thread.
    """

    def __init__(self, indent: Optional[int] = 2) -> None:
        self.indent = indent

    def write(self, path: Path, value: Any) -> None:
        """Serialize ``value`` and write it to ``path``, creating parent directories."""
        path = Path(path)
        payload = _ANY_ADAPTER.dump_json(value, indent=self.indent)
        ensure_dir(path.parent)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
        logger.debug("Wrote %d bytes to %s", len(payload), path)

    def read(self, path: Path, type_: Type[T] = Any) -> Optional[T]:  # type: ignore[assignment]
        """Read and validate ``path`` as ``type_``.

        Returns:
            The decoded value, or None if the file does not exist.
        Raises:
            CorruptSaveError if the file exists but is not valid for ``type_``.
            StorageError if the file cannot be read.
        """
        path = Path(path)
        if not path.exists():
            logger.debug("Nothing to read at %s", path)
            return None
        try:
            text = path.read_bytes()
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return _adapter(type_).validate_json(text)
        except ValidationError as exc:
            raise CorruptSaveError(f"Malformed content in {path}: {exc}") from exc

    def delete(self, path: Path) -> bool:
        """Delete ``path`` if it exists. Returns True if a file was removed."""
        path = Path(path)
        if not path.exists():
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path, exc)
            raise StorageError(f"Failed to delete {path}: {exc}") from exc
        logger.debug("Deleted %s", path)
        return True
