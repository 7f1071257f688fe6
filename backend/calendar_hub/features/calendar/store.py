"""
Calendar feature: Event Store over the Supabase `calendar_events` table.

Also owns `calendar_event_links`, the (event, provider) -> external id map
used to keep pushes idempotent.
"""

import datetime as dt
import logging

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from calendar_hub.core.exceptions import StoreUnavailableError
from calendar_hub.features.calendar.schemas import Event

logger = logging.getLogger(__name__)

EVENTS_TABLE = "calendar_events"
LINKS_TABLE = "calendar_event_links"


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def execute(query):
    """Run a PostgREST query, turning backend failures into StoreUnavailableError."""
    try:
        return query.execute()
    except (APIError, httpx.HTTPError) as e:
        logger.error(f"Supabase query failed: {e}")
        raise StoreUnavailableError(str(e)) from e


class EventStore:
    """Persistence for calendar events. Rows are returned as Event models."""

    def __init__(self, db: Client):
        self.db = db

    # ── Events ───────────────────────────────────────────

    def insert(self, event: Event) -> Event:
        now = _now()
        row = event.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
        row["created_at"] = now
        row["updated_at"] = now
        result = execute(self.db.table(EVENTS_TABLE).insert(row))
        return Event.model_validate(result.data[0])

    def get(self, event_id: str) -> Event | None:
        """Fetch by id regardless of owner (callers check ownership)."""
        result = execute(
            self.db.table(EVENTS_TABLE).select("*").eq("id", event_id).limit(1)
        )
        return Event.model_validate(result.data[0]) if result.data else None

    def update(self, event_id: str, changes: dict) -> Event | None:
        if not changes:
            return self.get(event_id)
        data = {**changes, "updated_at": _now()}
        result = execute(self.db.table(EVENTS_TABLE).update(data).eq("id", event_id))
        return Event.model_validate(result.data[0]) if result.data else None

    def delete(self, event_id: str) -> None:
        execute(self.db.table(LINKS_TABLE).delete().eq("event_id", event_id))
        execute(self.db.table(EVENTS_TABLE).delete().eq("id", event_id))

    def list_for_user(
        self,
        user_id: str,
        start: dt.date | None = None,
        end: dt.date | None = None,
        sources: tuple[str, ...] | None = None,
    ) -> list[Event]:
        """Events owned by `user_id`, optionally within inclusive [start, end]."""
        query = self.db.table(EVENTS_TABLE).select("*").eq("user_id", user_id)

        if sources:
            query = query.in_("source", list(sources))
        if start:
            query = query.gte("date", start.isoformat())
        if end:
            query = query.lte("date", end.isoformat())

        result = execute(query.order("date", desc=False))
        return [Event.model_validate(row) for row in result.data]

    def find_by_external_id(self, user_id: str, source: str, external_id: str) -> Event | None:
        result = execute(
            self.db.table(EVENTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("source", source)
            .eq("external_id", external_id)
            .limit(1)
        )
        return Event.model_validate(result.data[0]) if result.data else None

    def mark_pending(self, event_ids: list[str]) -> None:
        if not event_ids:
            return
        execute(
            self.db.table(EVENTS_TABLE)
            .update({"sync_status": "pending", "updated_at": _now()})
            .in_("id", event_ids)
        )

    # ── External links ───────────────────────────────────

    def get_links(self, user_id: str, provider: str) -> dict[str, str]:
        """Map local event id -> external id for one provider."""
        result = execute(
            self.db.table(LINKS_TABLE)
            .select("event_id, external_id")
            .eq("user_id", user_id)
            .eq("provider", provider)
        )
        return {row["event_id"]: row["external_id"] for row in result.data}

    def save_link(self, user_id: str, event_id: str, provider: str, external_id: str) -> None:
        execute(
            self.db.table(LINKS_TABLE).upsert(
                {
                    "user_id": user_id,
                    "event_id": event_id,
                    "provider": provider,
                    "external_id": external_id,
                    "updated_at": _now(),
                },
                on_conflict="event_id,provider",
            )
        )

    def delete_links(self, user_id: str, provider: str) -> int:
        result = execute(
            self.db.table(LINKS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("provider", provider)
        )
        return len(result.data) if result.data else 0
