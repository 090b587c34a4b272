from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class SettingsAsset(BaseModel):
    """Base class for user settings persisted to the settings file.

    Subclasses declare their fields as regular pydantic fields and override the
    two hooks:

    - ``save_action`` copies the live runtime values (volume, resolution, ...) into
      the fields right before the asset is written.
    - ``load_action`` applies the field values to the runtime after the asset was
      read back from disk.
    """

    model_config = ConfigDict(validate_assignment=True)

    def save_action(self) -> None:
        pass

    def load_action(self) -> None:
        pass


class AssetReference:
    """Handle to a configured settings asset.

    The referenced instance may still be loading when the reference is created;
    ``wait_for_loaded`` blocks until ``mark_loaded`` is called. References created
    with an instance are considered loaded.
    """

    def __init__(
        self,
        asset_type: Type[SettingsAsset],
        instance: Optional[SettingsAsset] = None,
        loaded: Optional[bool] = None,
    ) -> None:
        self.asset_type = asset_type
        self._instance = instance
        self._lock = threading.Lock()
        self._loaded = threading.Event()
        if loaded is None:
            loaded = instance is not None
        if loaded:
            self._loaded.set()

    def __repr__(self) -> str:
        return f"AssetReference({self.asset_type.__name__}, loaded={self.is_loaded})"

    @property
    def instance(self) -> Optional[SettingsAsset]:
        with self._lock:
            return self._instance

    @property
    def is_loaded(self) -> bool:
        return self._loaded.is_set()

    def mark_loaded(self, instance: Optional[SettingsAsset] = None) -> None:
        if instance is not None:
            with self._lock:
                self._instance = instance
        self._loaded.set()

    def wait_for_loaded(self, timeout: Optional[float] = None) -> bool:
        return self._loaded.wait(timeout)

    def dump(self) -> Optional[Dict[str, Any]]:
        """Run the instance's save hook and return its JSON payload, or None."""
        instance = self.instance
        if instance is None:
            return None
        instance.save_action()
        return instance.model_dump(mode="json")

    def set_instance(self, payload: Any) -> SettingsAsset:
        """Validate ``payload`` as this reference's asset type and install it."""
        instance = self.asset_type.model_validate(payload)
        with self._lock:
            self._instance = instance
        logger.debug("Installed %s instance from settings file", self.asset_type.__name__)
        return instance
