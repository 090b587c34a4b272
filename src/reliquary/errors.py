class ReliquaryError(Exception):
    """Base exception for save/load errors."""


class StorageError(ReliquaryError):
    """Raised when a save, metadata or settings file cannot be read or written."""


class CorruptSaveError(StorageError):
    """Raised when a file exists but its content cannot be decoded."""


class SettingsError(ReliquaryError):
    """Raised when save settings are invalid or cannot be loaded."""
