"""
Sync feature: external calendar connector abstraction.

A connector implements connect / push / pull / disconnect for one provider.
Connectors keep no state of their own: credentials are read from the
SyncConfigManager on every call and a fresh ProviderSession is opened for
the duration of that call.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from typing import Awaitable, Callable, ClassVar

from calendar_hub.core.exceptions import ExternalServiceError, NotConnectedError
from calendar_hub.core.retry import retry_async
from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.sync.config_store import SyncConfigManager
from calendar_hub.features.sync.schemas import (
    AppleCalendarState,
    AppleCredentials,
    EventSyncResult,
    GoogleCalendarState,
    GoogleCredentials,
    PushResult,
    SyncItemError,
)

logger = logging.getLogger(__name__)

Credentials = GoogleCredentials | AppleCredentials
ProviderState = GoogleCalendarState | AppleCalendarState
ResultCallback = Callable[[EventSyncResult], Awaitable[None]]
SkipCallback = Callable[[SyncItemError], None]


class ProviderSession(ABC):
    """One authenticated conversation with a provider.

    Methods raise ExternalServiceError; `transient=True` marks failures that
    are worth retrying.
    """

    provider: ClassVar[str]

    async def __aenter__(self):
        try:
            await retry_async(self.open, description=f"{self.provider} open session")
        except BaseException:
            await self.aclose()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def open(self) -> None:
        """Resolve the target calendar; no-op by default."""

    @abstractmethod
    async def create_event(self, event: Event) -> str:
        """Create a provider entry and return its id."""

    @abstractmethod
    async def update_event(self, external_id: str, event: Event) -> str:
        """Overwrite a provider entry; returns the id it now lives under."""

    @abstractmethod
    async def list_events(self, user_id: str, on_skip: SkipCallback | None = None) -> list[Event]:
        """All current provider entries translated to Event (no local id)."""

    @abstractmethod
    async def aclose(self) -> None:
        ...


class CalendarConnector(ABC):
    """connect / push / pull / disconnect over one provider."""

    provider: ClassVar[str]

    def __init__(self, configs: SyncConfigManager):
        self.configs = configs

    # ── Provider specifics ───────────────────────────────

    @abstractmethod
    def parse_credentials(self, payload: dict) -> tuple[Credentials, ProviderState]:
        """Validate the connect payload.

        Raises:
            MissingCredentialsError: if a required field is absent or blank.
        """

    @abstractmethod
    def open_session(self, credentials: Credentials, state: ProviderState) -> ProviderSession:
        ...

    async def revoke(self, credentials: Credentials) -> None:
        """Tell the provider the credentials are no longer used (optional)."""

    # ── Capability set ───────────────────────────────────

    async def connect(self, user_id: str, payload: dict) -> bool:
        credentials, state = self.parse_credentials(payload)
        self.configs.save_credentials(user_id, self.provider, credentials)
        self.configs.set_provider_state(user_id, self.provider, state)
        logger.info(f"Connected {self.provider} calendar for user {user_id}")
        return True

    def _session_for(self, user_id: str) -> ProviderSession:
        config = self.configs.get_sync_config(user_id)
        state = config.provider_state(self.provider)
        if state is None or not state.connected:
            raise NotConnectedError(self.provider)

        credentials = self.configs.load_credentials(user_id, self.provider)
        if credentials is None:
            raise NotConnectedError(self.provider)
        return self.open_session(credentials, state)

    async def push(
        self,
        user_id: str,
        events: list[Event],
        external_ids: dict[str, str] | None = None,
        on_result: ResultCallback | None = None,
    ) -> PushResult:
        """Create or update one provider entry per manual event.

        `external_ids` maps local event id -> provider id from earlier pushes;
        an event found there is updated instead of created again. Each
        outcome is handed to `on_result` as soon as it is known.
        """
        external_ids = external_ids or {}
        result = PushResult()
        # Set when no further event can succeed (session failed to open, or auth rejected)
        batch_error: ExternalServiceError | None = None

        async with AsyncExitStack() as stack:
            session = None
            try:
                session = await stack.enter_async_context(self._session_for(user_id))
            except ExternalServiceError as e:
                logger.error(f"Could not open {self.provider} session for user {user_id}: {e}")
                batch_error = e

            for event in events:
                if event.source != "manual" or not event.id:
                    logger.warning(f"Refusing to push non-manual event {event.id} ({event.source})")
                    continue

                known_id = external_ids.get(event.id)
                try:
                    if batch_error is not None:
                        raise batch_error
                    if known_id:
                        external_id = await retry_async(
                            lambda: session.update_event(known_id, event),
                            description=f"{self.provider} update {event.id}",
                        )
                    else:
                        external_id = await retry_async(
                            lambda: session.create_event(event),
                            description=f"{self.provider} create {event.id}",
                        )
                    outcome = EventSyncResult(
                        event_id=event.id, external_id=external_id, sync_status="synced"
                    )
                    result.synced_count += 1
                except ExternalServiceError as e:
                    if e.auth:
                        # Same credentials would be rejected for every remaining event
                        batch_error = e
                    logger.error(f"Failed to push event {event.id} to {self.provider}: {e}")
                    outcome = EventSyncResult(
                        event_id=event.id,
                        external_id=known_id,
                        sync_status="failed",
                        error=str(e),
                    )
                    result.failed_count += 1
                    result.errors.append(
                        SyncItemError(event_id=event.id, title=event.title, error=str(e))
                    )

                if on_result is not None:
                    await on_result(outcome)

        result.success = result.failed_count == 0
        return result

    async def pull(self, user_id: str, on_skip: SkipCallback | None = None) -> list[Event]:
        """Fetch the provider's current events as unsaved Event objects."""
        async def list_once() -> tuple[list[Event], list[SyncItemError]]:
            # A retry lists from the start again, so skips are kept per attempt
            skipped: list[SyncItemError] = []
            return await session.list_events(user_id, skipped.append), skipped

        async with self._session_for(user_id) as session:
            events, skipped = await retry_async(
                list_once, description=f"{self.provider} list events"
            )
        if on_skip is not None:
            for item in skipped:
                on_skip(item)
        for event in events:
            event.source = self.provider
            event.user_id = user_id
            event.id = None
        return events

    async def disconnect(self, user_id: str) -> bool:
        """Revoke (best effort) and discard credentials, mark disconnected."""
        credentials = self.configs.load_credentials(user_id, self.provider)
        if credentials is not None:
            try:
                await self.revoke(credentials)
            except ExternalServiceError as e:
                logger.warning(f"Could not revoke {self.provider} credentials for {user_id}: {e}")
        self.configs.delete_credentials(user_id, self.provider)

        config = self.configs.get_sync_config(user_id)
        state = config.provider_state(self.provider)
        if state is not None:
            self.configs.set_provider_state(
                user_id,
                self.provider,
                state.model_copy(update={"connected": False, "sync_enabled": False}),
            )
        logger.info(f"Disconnected {self.provider} calendar for user {user_id}")
        return True
