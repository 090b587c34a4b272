from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .events import SaveEvent
from .models import ActiveState

if TYPE_CHECKING:
    from .coordinator import SaveCoordinator

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Savable:
    """Base class for game objects that keep one entry in the savegame.

    Override ``save_action`` to write the entry and ``load_action`` to read it
    back. ``enable`` hooks both into a coordinator and applies the current save
    data right away, so objects created after a load restore themselves too.
    """

    def __init__(self, id: Optional[uuid.UUID] = None) -> None:
        self.id = id or uuid.uuid4()
        self._coordinator: Optional["SaveCoordinator"] = None

    @property
    def enabled(self) -> bool:
        return self._coordinator is not None

    def save_condition(self) -> bool:
        """Return False to leave the stored entry untouched on the next save."""
        return True

    def save_action(self, state: ActiveState) -> None:
        pass

    def load_action(self, state: ActiveState) -> None:
        pass

    def enable(self, coordinator: "SaveCoordinator") -> None:
        if self._coordinator is not None:
            self.disable()
        self._coordinator = coordinator
        coordinator.subscribe(SaveEvent.SAVING, self._collect)
        coordinator.subscribe(SaveEvent.LOADED, self.load_action)
        self.load_action(coordinator.snapshot())

    def disable(self) -> None:
        coordinator = self._coordinator
        if coordinator is None:
            return
        coordinator.unsubscribe(SaveEvent.SAVING, self._collect)
        coordinator.unsubscribe(SaveEvent.LOADED, self.load_action)
        self._coordinator = None

    def _collect(self, state: ActiveState) -> None:
        if self.save_condition():
            self.save_action(state)

    # Helpers for entries holding a pydantic model as JSON

    def store(self, state: ActiveState, value: BaseModel) -> None:
        state[self.id] = value.model_dump_json()

    def restore(self, state: ActiveState, model_type: Type[M]) -> Optional[M]:
        """Parse this object's entry as ``model_type``; None if absent or invalid."""
        raw = state.get(self.id)
        if raw is None:
            return None
        try:
            return model_type.model_validate_json(raw)
        except ValidationError:
            logger.exception("Invalid save entry for %s (%s)", type(self).__name__, self.id)
            return None
