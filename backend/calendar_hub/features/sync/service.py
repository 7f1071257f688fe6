"""
Sync feature: orchestrator for pushing to and pulling from external calendars.

Flow (push): lock (user, provider) -> check connected -> load manual events
-> mark pending -> connector.push -> persist each result as it arrives ->
stamp lastSync.
Flow (pull): lock -> check connected -> connector.pull -> drop mirrors of our
own pushed events -> upsert by (source, externalId) -> stamp lastSync.

If the caller cancels mid-push, events that were not confirmed stay
`pending` and the lock is released on the way out.
"""

import logging

from supabase import Client

from calendar_hub.core.exceptions import InvalidProviderError, NotConnectedError
from calendar_hub.core.locks import KeyedLock
from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.calendar.store import EventStore
from calendar_hub.features.sync.config_store import SyncConfigManager
from calendar_hub.features.sync.connectors.apple import AppleCalendarConnector
from calendar_hub.features.sync.connectors.base import CalendarConnector
from calendar_hub.features.sync.connectors.google import GoogleCalendarConnector
from calendar_hub.features.sync.schemas import (
    PROVIDERS,
    CalendarSyncConfig,
    EventSyncResult,
    PullResult,
    PushResult,
    SyncConfigUpdate,
    SyncItemError,
)

logger = logging.getLogger(__name__)

# Process-wide: one in-flight operation per (user_id, provider)
sync_locks = KeyedLock()

PULLED_FIELDS = ("title", "date", "time", "description")


def validate_service(service: str | None) -> str:
    if service not in PROVIDERS:
        raise InvalidProviderError(service)
    return service


class CalendarSyncService:
    """Sync configuration, provider connections, push and pull."""

    def __init__(self, db: Client, connectors: dict[str, CalendarConnector] | None = None):
        self.db = db
        self.store = EventStore(db)
        self.configs = SyncConfigManager(db)
        self.connectors = connectors or {
            "google": GoogleCalendarConnector(self.configs),
            "apple": AppleCalendarConnector(self.configs),
        }

    def get_connector(self, service: str | None) -> CalendarConnector:
        return self.connectors[validate_service(service)]

    # ── Configuration ────────────────────────────────────

    def get_sync_config(self, user_id: str) -> CalendarSyncConfig:
        return self.configs.get_sync_config(user_id)

    def update_sync_config(self, user_id: str, update: SyncConfigUpdate) -> CalendarSyncConfig:
        return self.configs.update_sync_config(user_id, update)

    # ── Connections ──────────────────────────────────────

    async def connect(self, user_id: str, service: str, payload: dict) -> bool:
        connector = self.get_connector(service)
        async with sync_locks.hold((user_id, connector.provider)):
            return await connector.connect(user_id, payload)

    async def disconnect(self, user_id: str, service: str | None) -> bool:
        connector = self.get_connector(service)
        async with sync_locks.hold((user_id, connector.provider)):
            success = await connector.disconnect(user_id)
            removed = self.store.delete_links(user_id, connector.provider)
            logger.info(f"Dropped {removed} {connector.provider} event links for user {user_id}")
            return success

    def _require_connected(self, user_id: str, provider: str) -> None:
        if not self.configs.get_sync_config(user_id).is_connected(provider):
            raise NotConnectedError(provider)

    # ── Push ─────────────────────────────────────────────

    async def push_events(self, user_id: str, service: str | None) -> PushResult:
        """Export the user's manual events; returns counts and per-event errors."""
        connector = self.get_connector(service)
        provider = connector.provider

        async with sync_locks.hold((user_id, provider)):
            self._require_connected(user_id, provider)

            events = [
                e for e in self.store.list_for_user(user_id, sources=("manual",))
                if e.source == "manual"
            ]
            logger.info(f"Pushing {len(events)} events to {provider} for user {user_id}")

            if events:
                links = self.store.get_links(user_id, provider)
                self.store.mark_pending([e.id for e in events])

                async def record(outcome: EventSyncResult) -> None:
                    if outcome.sync_status == "synced":
                        self.store.save_link(user_id, outcome.event_id, provider, outcome.external_id)
                        self.store.update(
                            outcome.event_id,
                            {"external_id": outcome.external_id, "sync_status": "synced"},
                        )
                    else:
                        self.store.update(outcome.event_id, {"sync_status": "failed"})

                result = await connector.push(user_id, events, links, on_result=record)
            else:
                result = PushResult()

            self.configs.mark_synced(user_id, provider)

        result.message = f"Synced {result.synced_count} events to {provider} calendar"
        if result.failed_count:
            result.message += f", {result.failed_count} failed"
        logger.info(f"{result.message} (user {user_id})")
        return result

    # ── Pull ─────────────────────────────────────────────

    async def pull_events(self, user_id: str, service: str | None) -> PullResult:
        """Import provider events, updating previously imported ones in place."""
        connector = self.get_connector(service)
        provider = connector.provider
        result = PullResult()

        async with sync_locks.hold((user_id, provider)):
            self._require_connected(user_id, provider)

            pulled = await connector.pull(user_id, on_skip=result.errors.append)
            # Entries we created by pushing manual events are not imports
            mirrors = set(self.store.get_links(user_id, provider).values())

            for item in pulled:
                if item.external_id in mirrors:
                    continue
                stored = self._upsert_pulled(user_id, provider, item, result)
                result.events.append(stored)

            self.configs.mark_synced(user_id, provider)

        result.pulled_count = len(result.events)
        result.success = not result.errors
        result.message = f"Pulled {result.pulled_count} events from {provider} calendar"
        logger.info(
            f"{result.message} for user {user_id} "
            f"({result.created_count} new, {result.updated_count} updated, {len(result.errors)} skipped)"
        )
        return result

    def _upsert_pulled(self, user_id: str, provider: str, item: Event, result: PullResult) -> Event:
        existing = self.store.find_by_external_id(user_id, provider, item.external_id)
        if existing is None:
            created = self.store.insert(
                item.model_copy(update={
                    "user_id": user_id,
                    "source": provider,
                    "sync_status": "synced",
                })
            )
            result.created_count += 1
            return created

        changes = item.model_dump(mode="json", include=set(PULLED_FIELDS))
        changes["sync_status"] = "synced"
        updated = self.store.update(existing.id, changes)
        if updated is None:
            # Row vanished between lookup and update
            result.errors.append(SyncItemError(
                external_id=item.external_id, title=item.title, error="local event disappeared during pull",
            ))
            return existing
        result.updated_count += 1
        return updated
