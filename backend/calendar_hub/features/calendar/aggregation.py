"""
Calendar feature: Aggregation engine.

Builds the unified calendar: persisted events (manual, plus imported provider
events when that provider is connected with sync enabled) merged with events
synthesized from other domains. Read-only.
"""

import datetime as dt
import logging

from calendar_hub.core.exceptions import InvalidRangeError
from calendar_hub.features.calendar.schemas import Event, PROVIDER_SOURCES
from calendar_hub.features.calendar.sources import SOURCE_GENERATORS, SourceRecordRepository
from calendar_hub.features.calendar.store import EventStore
from calendar_hub.features.sync.schemas import CalendarSyncConfig

logger = logging.getLogger(__name__)


def merge_events(persisted: list[Event], synthesized: list[Event]) -> list[Event]:
    """Concatenate, collapse repeated (source, sourceId) derived events, sort."""
    seen: set[tuple[str, str | None]] = set()
    unique = []
    for event in synthesized:
        key = (event.source, event.source_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)

    return sorted(persisted + unique, key=lambda e: e.sort_key)


class EventAggregator:
    """getEvents(userId, startDate?, endDate?, config?) for the calendar view."""

    def __init__(self, store: EventStore, records: SourceRecordRepository):
        self.store = store
        self.records = records

    def get_events(
        self,
        user_id: str,
        start: dt.date | None = None,
        end: dt.date | None = None,
        config: CalendarSyncConfig | None = None,
    ) -> list[Event]:
        if start and end and start > end:
            raise InvalidRangeError(start, end)

        persisted_sources = ("manual",) + tuple(
            p for p in PROVIDER_SOURCES if config and config.imports_enabled(p)
        )
        persisted = self.store.list_for_user(user_id, start, end, sources=persisted_sources)

        synthesized: list[Event] = []
        if config:
            for toggle, (fetch_name, generate) in SOURCE_GENERATORS.items():
                if not getattr(config.event_sources, toggle):
                    continue
                records = getattr(self.records, fetch_name)(user_id, start, end)
                synthesized.extend(generate(user_id, records, start, end))

        events = merge_events(persisted, synthesized)
        logger.debug(
            f"Aggregated {len(events)} events for user {user_id} "
            f"({len(persisted)} stored, {len(synthesized)} derived)"
        )
        return events
