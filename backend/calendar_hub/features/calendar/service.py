"""
Calendar feature: Service layer for calendar events.

Reads go through the aggregation engine. Writes are limited to manual events
owned by the caller.
"""

import datetime as dt

from supabase import Client

from calendar_hub.core.exceptions import (
    ForbiddenError,
    ImmutableSourceError,
    NotFoundError,
    ValidationError,
)
from calendar_hub.features.calendar.aggregation import EventAggregator
from calendar_hub.features.calendar.schemas import CATEGORIES, Event, EventCreate, EventUpdate
from calendar_hub.features.calendar.sources import SourceRecordRepository
from calendar_hub.features.calendar.store import EventStore
from calendar_hub.features.sync.config_store import SyncConfigManager

REQUIRED_ON_UPDATE = ("title", "date", "category")


def validate_category(category: str | None) -> None:
    if category not in CATEGORIES:
        raise ValidationError(
            "Invalid category. Must be academic, personal, or wellness",
            detail=f"Got {category!r}.",
        )


class CalendarService:
    """Aggregated reads plus CRUD for manual calendar events."""

    def __init__(self, db: Client):
        self.db = db
        self.store = EventStore(db)
        self.aggregator = EventAggregator(self.store, SourceRecordRepository(db))
        self.configs = SyncConfigManager(db)

    def get_events(
        self,
        user_id: str,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
    ) -> list[Event]:
        """Unified calendar for a user, honouring their event source toggles."""
        config = self.configs.get_sync_config(user_id)
        return self.aggregator.get_events(user_id, start_date, end_date, config)

    def create_event(self, user_id: str, data: EventCreate) -> Event:
        """Create a new manual event."""
        validate_category(data.category)
        event = Event(
            user_id=user_id,
            title=data.title,
            date=data.date,
            time=data.time,
            category=data.category,
            description=data.description or "",
            source="manual",
        )
        return self.store.insert(event)

    def get_editable_event(self, user_id: str, event_id: str) -> Event:
        """Load an event the caller may modify.

        Raises:
            NotFoundError: unknown id.
            ForbiddenError: owned by someone else.
            ImmutableSourceError: not a manual event.
        """
        event = self.store.get(event_id)
        if event is None:
            raise NotFoundError()
        if event.user_id != user_id:
            raise ForbiddenError()
        if event.source != "manual":
            raise ImmutableSourceError(event.source)
        return event

    def update_event(self, user_id: str, event_id: str, data: EventUpdate) -> Event:
        """Apply the fields present in the request to a manual event."""
        event = self.get_editable_event(user_id, event_id)

        changes = data.model_dump(mode="json", exclude_unset=True)
        for field in REQUIRED_ON_UPDATE:
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")
        if "category" in changes:
            validate_category(changes["category"])
        if "description" in changes and changes["description"] is None:
            changes["description"] = ""

        if changes and event.sync_status == "synced":
            # Needs another push to reach the linked providers
            changes["sync_status"] = "pending"

        updated = self.store.update(event_id, changes)
        if updated is None:
            raise NotFoundError()
        return updated

    def delete_event(self, user_id: str, event_id: str) -> None:
        """Hard delete a manual event (and its provider links)."""
        self.get_editable_event(user_id, event_id)
        self.store.delete(event_id)
