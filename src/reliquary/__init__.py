"""Reliquary: background save/load coordination for games.

Game objects put their state into a shared mapping of id -> string; the
coordinator writes it to disk as a savegame, keeps a list of save records,
auto saves on an interval and persists user settings assets, all without
blocking the game loop.
"""

from .assets import AssetReference, SettingsAsset
from .config import SaveSettings
from .coordinator import Operation, SaveCoordinator
from .errors import CorruptSaveError, ReliquaryError, SettingsError, StorageError
from .events import SaveEvent
from .models import ActiveState, SaveRecord, SaveVersion
from .savable import Savable

__version__ = "1.2.0"

__all__ = [
    "ActiveState",
    "AssetReference",
    "CorruptSaveError",
    "Operation",
    "ReliquaryError",
    "Savable",
    "SaveCoordinator",
    "SaveEvent",
    "SaveRecord",
    "SaveSettings",
    "SaveVersion",
    "SettingsAsset",
    "SettingsError",
    "StorageError",
    "__version__",
]
