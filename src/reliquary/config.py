from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .assets import AssetReference
from .errors import SettingsError
from .models import SaveVersion
from .paths import APP_NAME, default_save_root

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".save"
METADATA_FILE_NAME = "Saves.meta"
SETTINGS_FILE_NAME = "Settings.config"

# Characters no common filesystem accepts in a file name
INVALID_FILENAME_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))


def normalize_extension(extension: Optional[str]) -> str:
    """Turn a configured extension into a valid one.

    Whitespace and illegal file name characters are dropped and a leading dot is
    added. Falls back to '.save' when nothing usable is left.
    """
    cleaned = "".join(
        ch for ch in (extension or "") if not ch.isspace() and ch not in INVALID_FILENAME_CHARS
    )
    # Dots alone are not an extension
    if not cleaned.strip("."):
        return DEFAULT_EXTENSION
    if not cleaned.startswith("."):
        cleaned = "." + cleaned
    return cleaned


class SaveSettings(BaseModel):
    """Settings for the save system: where files go, auto save, versioning, assets.

    ``assets`` holds runtime references to settings assets and is never written to
    or read from the YAML configuration.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    app_name: str = Field(APP_NAME, min_length=1, description="Used for the default save directory")
    save_directory: Optional[Path] = Field(
        default=None, description="Directory for savegames; platform default when unset"
    )
    file_extension: str = Field(DEFAULT_EXTENSION, description="Extension of savegame files")
    auto_save: bool = Field(True, description="Toggles auto save on and off")
    auto_save_interval_minutes: int = Field(5, ge=1, description="Time in-between auto saves")
    skip_loading_settings_in_editor: bool = Field(
        True, description="Keep edited settings assets untouched when running in editor mode"
    )
    savegame_version: SaveVersion = Field(default_factory=SaveVersion)
    assets: List[Optional[AssetReference]] = Field(default_factory=list, exclude=True)

    @field_validator("file_extension", mode="before")
    @classmethod
    def _normalize_extension(cls, v: Any) -> str:
        return normalize_extension(None if v is None else str(v))

    @field_validator("save_directory")
    @classmethod
    def _expand_directory(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @property
    def savegame_directory(self) -> Path:
        return self.save_directory or default_save_root(self.app_name)

    @property
    def metadata_file(self) -> Path:
        return self.savegame_directory / METADATA_FILE_NAME

    @property
    def settings_file(self) -> Path:
        return self.savegame_directory / SETTINGS_FILE_NAME

    @property
    def auto_save_interval_seconds(self) -> int:
        return self.auto_save_interval_minutes * 60

    def save_file_path(self, save_name: str) -> Path:
        """Full path of the data file for ``save_name`` (without extension)."""
        return self.savegame_directory / f"{save_name}{self.file_extension}"

    @staticmethod
    def _load_yaml(path: Path) -> Dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise SettingsError(f"Failed to read save settings from {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsError(f"Save settings in {path} must be a mapping")
        return data

    @classmethod
    def load(cls, user_path: Optional[Path] = None, **overrides: Any) -> "SaveSettings":
        """Load settings from defaults, an optional YAML file, and keyword overrides.

        Keyword overrides win over the file, which wins over the defaults.
        """
        data: Dict[str, Any] = {}
        if user_path is not None:
            user_path = Path(user_path)
            if user_path.exists():
                data = cls._load_yaml(user_path)
                logger.info("Loaded save settings from %s", user_path)
            else:
                logger.warning("Save settings file not found: %s", user_path)
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(f"Invalid save settings: {exc}") from exc

    def save(self, path: Path) -> None:
        """Write the settings (without asset references) as YAML."""
        data = self.model_dump(mode="json", exclude={"assets"})
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
        logger.info("Saved save settings to %s", path)
