"""
Calendar feature: Schemas for events and request/response models.

JSON uses camelCase (userId, sourceId, ...); database rows use snake_case.
Both are accepted on input thanks to populate_by_name.
"""

import datetime as dt
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

Category = Literal["academic", "personal", "wellness"]
EventSource = Literal["manual", "assignment", "workout", "meal", "sleep", "google", "apple"]
SyncStatus = Literal["synced", "pending", "failed"]

CATEGORIES: tuple[str, ...] = ("academic", "personal", "wellness")
DERIVED_SOURCES: tuple[str, ...] = ("assignment", "workout", "meal", "sleep")
PROVIDER_SOURCES: tuple[str, ...] = ("google", "apple")

TimeOfDay = Annotated[str, StringConstraints(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")]
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Event(CamelModel):
    """A calendar event, persisted (manual, google, apple) or synthesized."""
    id: str | None = None
    user_id: str
    title: str
    date: dt.date
    time: str | None = None  # HH:mm
    category: Category
    description: str = ""
    source: EventSource = "manual"
    source_id: str | None = None
    external_id: str | None = None
    sync_status: SyncStatus | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("time", mode="before")
    @classmethod
    def _trim_seconds(cls, v):
        # Postgres `time` columns come back as HH:MM:SS
        if isinstance(v, str) and len(v) == 8 and v[5] == ":":
            return v[:5]
        return v or None

    @property
    def sort_key(self) -> tuple[dt.date, str]:
        """Chronological key; untimed events sort at the end of their day."""
        return (self.date, self.time or "24:00")


class EventCreate(CamelModel):
    """Request to create a new manual calendar event."""
    title: Title
    date: dt.date
    time: TimeOfDay | None = None
    category: str  # checked by the service
    description: str = ""


class EventUpdate(CamelModel):
    """Request to update an existing manual event. Unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")

    title: Title | None = None
    date: dt.date | None = None
    time: TimeOfDay | None = None
    category: str | None = None
    description: str | None = None

