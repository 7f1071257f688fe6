"""
Sync feature: Apple Calendar connector (CalDAV).

Works with iCloud (https://caldav.icloud.com, app-specific password) and any
other CalDAV server. The caldav library is blocking, so every call runs in a
worker thread. Events are addressed by their iCalendar UID, which is what we
store as the external id.
"""

import asyncio
import datetime as dt
import logging
from typing import Callable

import caldav
from caldav.lib import error as caldav_error
from icalendar import Calendar as ICalendar, Event as ICalEvent

from calendar_hub.config import get_settings
from calendar_hub.core.exceptions import ExternalServiceError, MissingCredentialsError
from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.sync.connectors.base import (
    CalendarConnector,
    ProviderSession,
    SkipCallback,
)
from calendar_hub.features.sync.schemas import (
    AppleCalendarState,
    AppleCredentials,
    SyncItemError,
)

logger = logging.getLogger(__name__)

PRODID = "-//student-calendar-hub//calendar sync//EN"
UID_DOMAIN = "student-calendar-hub"


def _server_busy(error: caldav_error.DAVError) -> bool:
    """True for 5xx and 429 responses, which caldav reports as "<status> <text>"."""
    reason = str(getattr(error, "reason", "") or "")
    return reason.startswith("5") or reason.startswith("429")


def event_uid(event: Event) -> str:
    """Stable UID for a local event; re-creating it overwrites the same resource."""
    return f"{event.id}@{UID_DOMAIN}"


def event_to_ical(event: Event, uid: str, duration_minutes: int) -> str:
    """Serialize a local event as a VCALENDAR with one VEVENT."""
    cal = ICalendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    vevent = ICalEvent()
    vevent.add("uid", uid)
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)
    vevent.add("dtstamp", dt.datetime.now(dt.timezone.utc))

    if event.time:
        # Floating time: already in the user's timezone
        start = dt.datetime.combine(event.date, dt.time.fromisoformat(event.time))
        vevent.add("dtstart", start)
        vevent.add("dtend", start + dt.timedelta(minutes=duration_minutes))
    else:
        vevent.add("dtstart", event.date)
        vevent.add("dtend", event.date + dt.timedelta(days=1))

    cal.add_component(vevent)
    return cal.to_ical().decode("utf-8")


def ical_to_events(data: str, user_id: str) -> list[Event]:
    """Translate every VEVENT in a calendar object resource."""
    events = []
    ical = ICalendar.from_ical(data)
    for component in ical.walk("VEVENT"):
        if component.get("recurrence-id") is not None:
            # Overrides of a recurring series share its UID; the master stands for them
            continue
        uid = component.get("uid")
        if not uid:
            raise ValueError("VEVENT without UID")
        start = component.decoded("dtstart")
        if isinstance(start, dt.datetime):
            day, time = start.date(), start.strftime("%H:%M")
        else:
            day, time = start, None

        events.append(Event(
            user_id=user_id,
            title=str(component.get("summary") or "(No title)"),
            date=day,
            time=time,
            category="personal",
            description=str(component.get("description") or ""),
            source="apple",
            external_id=str(uid),
            sync_status="synced",
        ))
    return events


class AppleCalendarSession(ProviderSession):
    provider = "apple"

    def __init__(
        self,
        credentials: AppleCredentials,
        calendar_name: str,
        client_factory: Callable[..., caldav.DAVClient] = caldav.DAVClient,
    ):
        settings = get_settings()
        self.credentials = credentials
        self.calendar_name = calendar_name
        self.duration_minutes = settings.SYNC_EVENT_DURATION_MINUTES
        self.timeout = settings.SYNC_HTTP_TIMEOUT
        self._client_factory = client_factory
        self._client: caldav.DAVClient | None = None
        self._calendar: caldav.Calendar | None = None

    async def _call(self, func, *args):
        """Run a blocking caldav call in a thread and translate its errors."""
        try:
            return await asyncio.to_thread(func, *args)
        except caldav_error.AuthorizationError as e:
            raise ExternalServiceError(self.provider, f"authorization failed: {e}", auth=True) from e
        except caldav_error.DAVError as e:
            raise ExternalServiceError(self.provider, f"CalDAV error: {e}", transient=_server_busy(e)) from e
        except OSError as e:
            # socket errors, timeouts and requests' exceptions all land here
            raise ExternalServiceError(self.provider, f"network error: {e}", transient=True) from e

    # ── Blocking helpers (run in worker threads) ─────────

    def _open_calendar(self) -> caldav.Calendar:
        if self._client is not None:
            # Left over from a failed attempt
            self._client.close()
        self._client = self._client_factory(
            url=self.credentials.server_url,
            username=self.credentials.username,
            password=self.credentials.password.get_secret_value(),
            timeout=self.timeout,
        )
        principal = self._client.principal()
        for calendar in principal.calendars():
            if calendar.name == self.calendar_name:
                return calendar
        logger.info(f"CalDAV calendar '{self.calendar_name}' not found, creating it")
        return principal.make_calendar(name=self.calendar_name)

    def _save(self, ical: str) -> None:
        self._calendar.save_event(ical)

    def _overwrite(self, uid: str, ical: str) -> bool:
        try:
            resource = self._calendar.event_by_uid(uid)
        except caldav_error.NotFoundError:
            return False
        resource.data = ical
        resource.save()
        return True

    def _fetch_all(self) -> list[str]:
        return [resource.data for resource in self._calendar.events()]

    # ── ProviderSession ──────────────────────────────────

    async def open(self) -> None:
        self._calendar = await self._call(self._open_calendar)

    async def create_event(self, event: Event) -> str:
        uid = event_uid(event)
        await self._call(self._save, event_to_ical(event, uid, self.duration_minutes))
        return uid

    async def update_event(self, external_id: str, event: Event) -> str:
        ical = event_to_ical(event, external_id, self.duration_minutes)
        found = await self._call(self._overwrite, external_id, ical)
        if not found:
            logger.info(f"CalDAV event {external_id} is gone, creating it again")
            await self._call(self._save, ical)
        return external_id

    async def list_events(self, user_id: str, on_skip: SkipCallback | None = None) -> list[Event]:
        events = []
        for data in await self._call(self._fetch_all):
            try:
                events.extend(ical_to_events(data, user_id))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable CalDAV resource: {e}")
                if on_skip is not None:
                    on_skip(SyncItemError(error=f"unreadable event: {e}"))
        return events

    async def aclose(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None


class AppleCalendarConnector(CalendarConnector):
    provider = "apple"

    def __init__(self, configs, client_factory: Callable[..., caldav.DAVClient] = caldav.DAVClient):
        super().__init__(configs)
        self._client_factory = client_factory

    def parse_credentials(self, payload: dict) -> tuple[AppleCredentials, AppleCalendarState]:
        missing = [f for f in ("serverUrl", "username", "password") if not (payload.get(f) or "").strip()]
        if missing:
            raise MissingCredentialsError(self.provider, missing)

        server_url = payload["serverUrl"].strip()
        credentials = AppleCredentials(
            server_url=server_url,
            username=payload["username"].strip(),
            password=payload["password"],
        )
        state = AppleCalendarState(
            connected=True,
            server_url=server_url,
            calendar_name=payload.get("calendarName") or "Home",
            sync_enabled=True,
        )
        return credentials, state

    def open_session(self, credentials: AppleCredentials, state: AppleCalendarState) -> AppleCalendarSession:
        return AppleCalendarSession(credentials, state.calendar_name or "Home", self._client_factory)
