"""
Sync feature: per-user sync configuration and encrypted provider credentials.

`calendar_sync_configs` holds one credential-free row per user.
`calendar_credentials` holds one Fernet-sealed secret per (user, provider);
the config only knows whether a provider is connected.
"""

import datetime as dt
import logging

from pydantic import SecretStr
from supabase import Client

from calendar_hub.core.security import open_secret, seal_secret
from calendar_hub.features.calendar.store import execute
from calendar_hub.features.sync.schemas import (
    AppleCalendarState,
    AppleCredentials,
    CalendarSyncConfig,
    EventSources,
    GoogleCalendarState,
    GoogleCredentials,
    SyncConfigUpdate,
)

logger = logging.getLogger(__name__)

CONFIGS_TABLE = "calendar_sync_configs"
CREDENTIALS_TABLE = "calendar_credentials"

CREDENTIAL_MODELS = {
    "google": GoogleCredentials,
    "apple": AppleCredentials,
}


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _state_field(provider: str) -> str:
    return "google_calendar" if provider == "google" else "apple_calendar"


class SyncConfigManager:
    """Single source of truth for connection state and credentials."""

    def __init__(self, db: Client):
        self.db = db

    # ── Config ───────────────────────────────────────────

    def _fetch(self, user_id: str) -> dict | None:
        result = execute(
            self.db.table(CONFIGS_TABLE).select("*").eq("user_id", user_id).limit(1)
        )
        return result.data[0] if result.data else None

    def get_sync_config(self, user_id: str) -> CalendarSyncConfig:
        """Return the user's config, creating the default one on first use."""
        row = self._fetch(user_id)
        if row is None:
            now = _now().isoformat()
            default = {
                "user_id": user_id,
                "google_calendar": None,
                "apple_calendar": None,
                "event_sources": EventSources().model_dump(),
                "sync_frequency": "daily",
                "created_at": now,
                "updated_at": now,
            }
            # A concurrent first request may have created it already
            execute(
                self.db.table(CONFIGS_TABLE).upsert(
                    default, on_conflict="user_id", ignore_duplicates=True
                )
            )
            logger.info(f"Created default calendar sync config for user {user_id}")
            row = self._fetch(user_id) or default
        return CalendarSyncConfig.model_validate(row)

    def _write(self, user_id: str, changes: dict) -> CalendarSyncConfig:
        data = {**changes, "updated_at": _now().isoformat()}
        execute(self.db.table(CONFIGS_TABLE).update(data).eq("user_id", user_id))
        return self.get_sync_config(user_id)

    def update_sync_config(self, user_id: str, update: SyncConfigUpdate) -> CalendarSyncConfig:
        """Merge eventSources / syncFrequency without touching provider state."""
        config = self.get_sync_config(user_id)
        changes: dict = {}

        if update.event_sources is not None:
            toggles = update.event_sources.model_dump(exclude_none=True)
            merged = config.event_sources.model_copy(update=toggles)
            changes["event_sources"] = merged.model_dump()
        if update.sync_frequency is not None:
            changes["sync_frequency"] = update.sync_frequency

        if not changes:
            return config
        return self._write(user_id, changes)

    def set_provider_state(
        self,
        user_id: str,
        provider: str,
        state: GoogleCalendarState | AppleCalendarState,
    ) -> CalendarSyncConfig:
        self.get_sync_config(user_id)
        return self._write(user_id, {_state_field(provider): state.model_dump(mode="json")})

    def mark_synced(self, user_id: str, provider: str) -> CalendarSyncConfig:
        """Stamp lastSync for a provider after a push or pull."""
        config = self.get_sync_config(user_id)
        state = config.provider_state(provider)
        if state is None:
            return config
        return self.set_provider_state(
            user_id, provider, state.model_copy(update={"last_sync": _now()})
        )

    # ── Credentials ──────────────────────────────────────

    def save_credentials(
        self, user_id: str, provider: str, credentials: GoogleCredentials | AppleCredentials
    ) -> None:
        payload = {
            key: value.get_secret_value() if isinstance(value, SecretStr) else value
            for key, value in credentials
        }
        execute(
            self.db.table(CREDENTIALS_TABLE).upsert(
                {
                    "user_id": user_id,
                    "provider": provider,
                    "secret_enc": seal_secret(payload),
                    "updated_at": _now().isoformat(),
                },
                on_conflict="user_id,provider",
            )
        )

    def load_credentials(
        self, user_id: str, provider: str
    ) -> GoogleCredentials | AppleCredentials | None:
        result = execute(
            self.db.table(CREDENTIALS_TABLE)
            .select("secret_enc")
            .eq("user_id", user_id)
            .eq("provider", provider)
            .limit(1)
        )
        if not result.data:
            return None

        payload = open_secret(result.data[0]["secret_enc"])
        if payload is None:
            logger.error(
                f"Stored {provider} credentials for user {user_id} could not be decrypted"
            )
            return None
        return CREDENTIAL_MODELS[provider].model_validate(payload)

    def delete_credentials(self, user_id: str, provider: str) -> None:
        execute(
            self.db.table(CREDENTIALS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("provider", provider)
        )
