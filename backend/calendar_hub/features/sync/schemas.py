"""
Sync feature: Schemas for sync configuration, credentials and sync results.

CalendarSyncConfig has no credential fields. Secrets live in their own table
(see config_store.py) and only ever exist in memory as *Credentials models,
which are never used as response models.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from calendar_hub.features.calendar.schemas import CamelModel, Event

Provider = Literal["google", "apple"]
SyncFrequency = Literal["realtime", "hourly", "daily"]

PROVIDERS: tuple[str, ...] = ("google", "apple")


# ── Sync configuration ───────────────────────────────────

class EventSources(CamelModel):
    """Which derived sources feed the aggregated calendar."""
    assignments: bool = True
    workouts: bool = False
    meals: bool = False
    sleep: bool = False


class GoogleCalendarState(CamelModel):
    connected: bool = False
    calendar_id: str | None = None
    last_sync: dt.datetime | None = None
    sync_enabled: bool = False


class AppleCalendarState(CamelModel):
    connected: bool = False
    server_url: str | None = None
    calendar_name: str | None = None
    last_sync: dt.datetime | None = None
    sync_enabled: bool = False


class CalendarSyncConfig(CamelModel):
    """Per-user sync configuration (credential-free)."""
    id: str | None = None
    user_id: str
    google_calendar: GoogleCalendarState | None = None
    apple_calendar: AppleCalendarState | None = None
    event_sources: EventSources = Field(default_factory=EventSources)
    sync_frequency: SyncFrequency = "daily"  # read by an external scheduler
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def provider_state(self, provider: str) -> GoogleCalendarState | AppleCalendarState | None:
        return self.google_calendar if provider == "google" else self.apple_calendar

    def is_connected(self, provider: str) -> bool:
        state = self.provider_state(provider)
        return bool(state and state.connected)

    def imports_enabled(self, provider: str) -> bool:
        state = self.provider_state(provider)
        return bool(state and state.connected and state.sync_enabled)


class EventSourcesUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    assignments: bool | None = None
    workouts: bool | None = None
    meals: bool | None = None
    sleep: bool | None = None


class SyncConfigUpdate(CamelModel):
    """Only these two fields may be changed through PUT /sync/config."""
    model_config = ConfigDict(extra="forbid")

    event_sources: EventSourcesUpdate | None = None
    sync_frequency: SyncFrequency | None = None


# ── Credentials (in-memory only) ─────────────────────────

class GoogleCredentials(BaseModel):
    access_token: SecretStr
    refresh_token: SecretStr


class AppleCredentials(BaseModel):
    server_url: str
    username: str
    password: SecretStr


# ── Requests ─────────────────────────────────────────────

class GoogleConnectRequest(CamelModel):
    """Fields are optional here so missing ones surface as MissingCredentials."""
    access_token: str | None = None
    refresh_token: str | None = None
    calendar_id: str | None = None


class AppleConnectRequest(CamelModel):
    server_url: str | None = None
    username: str | None = None
    password: str | None = None
    calendar_name: str | None = None


class ServiceRequest(CamelModel):
    service: str | None = None


# ── Results ──────────────────────────────────────────────

class SyncItemError(CamelModel):
    """One event that could not be synced."""
    event_id: str | None = None
    external_id: str | None = None
    title: str | None = None
    error: str


class EventSyncResult(CamelModel):
    """Outcome of pushing a single local event."""
    event_id: str
    external_id: str | None = None
    sync_status: Literal["synced", "failed"]
    error: str | None = None


class ConnectResult(CamelModel):
    success: bool
    message: str


class PushResult(CamelModel):
    success: bool = True
    synced_count: int = 0
    failed_count: int = 0
    errors: list[SyncItemError] = Field(default_factory=list)
    message: str = ""


class PullResult(CamelModel):
    success: bool = True
    pulled_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    events: list[Event] = Field(default_factory=list)
    errors: list[SyncItemError] = Field(default_factory=list)
    message: str = ""
