from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)

T = TypeVar("T")

# In-memory savegame: one opaque serialized string per persistable entity
ActiveState = Dict[uuid.UUID, str]


def new_save_name() -> str:
    """Return a fresh file key for a savegame, unrelated to its display name."""
    return str(uuid.uuid4())


class SaveVersion(BaseModel):
    """Version stamp carried by every savegame, in Major.Minor.Build.Revision form.

    Accepts dotted strings ("1.2", "1.2.3.4") wherever a version is validated and
    is written to JSON as the dotted string. You don't need to set all parts.
    """

    model_config = ConfigDict(frozen=True)

    major: int = Field(1, ge=0)
    minor: int = Field(0, ge=0)
    build: int = Field(0, ge=0)
    revision: int = Field(0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _parse_dotted(cls, data: Any) -> Any:
        if isinstance(data, str):
            parts = data.strip().split(".")
            if not 1 <= len(parts) <= 4 or any(not p.isdigit() for p in parts):
                raise ValueError(f"Invalid version string: {data!r}")
            names = ("major", "minor", "build", "revision")
            return {name: int(p) for name, p in zip(names, parts)}
        return data

    @model_serializer
    def _dump(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, text: str) -> "SaveVersion":
        return cls.model_validate(text)

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.major, self.minor, self.build, self.revision)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"


class SaveRecord(BaseModel):
    """Metadata entry describing one persisted savegame.

    The list of records is the single source of truth for which saves exist;
    the data file itself is addressed by ``save_name``.
    """

    save_name: str = Field(..., min_length=1, description="Generated file key of the savegame")
    display_name: str = Field("", description="User-facing label; empty for auto-saves")
    save_version: SaveVersion = Field(default_factory=SaveVersion)
    save_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    custom_data: Any = Field(default=None, description="Game-specific meta data")
    is_auto_save: bool = False

    @field_validator("display_name", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("save_date")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        # Naive timestamps from hand-edited files are taken as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def custom_data_as(self, type_: Type[T]) -> Optional[T]:
        """Convert the stored custom data into ``type_``.

        Returns None if there is no custom data or it cannot be converted.
        """
        if self.custom_data is None:
            return None
        if isinstance(type_, type) and isinstance(self.custom_data, type_):
            return self.custom_data
        try:
            return TypeAdapter(type_).validate_python(self.custom_data)
        except ValidationError:
            return None
