"""
Sync feature: Google Calendar connector (Calendar API v3 over REST).

ENDPOINTS:
  1. List:    GET  /calendars/{calendarId}/events?singleEvents=true&pageToken=...
  2. Create:  POST /calendars/{calendarId}/events
  3. Update:  PUT  /calendars/{calendarId}/events/{eventId}
  4. Revoke:  POST https://oauth2.googleapis.com/revoke?token=...

Status handling: 401 and 403 (except rate-limit reasons) are auth failures,
429 and 5xx are transient, other 4xx are permanent.
"""

import datetime as dt
import logging
from urllib.parse import quote

import httpx

from calendar_hub.config import get_settings
from calendar_hub.core.exceptions import ExternalServiceError, MissingCredentialsError
from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.sync.connectors.base import (
    CalendarConnector,
    ProviderSession,
    SkipCallback,
)
from calendar_hub.features.sync.schemas import (
    GoogleCalendarState,
    GoogleCredentials,
    SyncItemError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
PAGE_SIZE = 250


def event_to_google(event: Event, timezone: str, duration_minutes: int) -> dict:
    """Build a Calendar v3 event resource from a local event."""
    body = {
        "summary": event.title,
        "description": event.description or "",
        "extendedProperties": {"private": {"localEventId": event.id or ""}},
    }
    if event.time:
        start = dt.datetime.combine(event.date, dt.time.fromisoformat(event.time))
        end = start + dt.timedelta(minutes=duration_minutes)
        body["start"] = {"dateTime": start.isoformat(), "timeZone": timezone}
        body["end"] = {"dateTime": end.isoformat(), "timeZone": timezone}
    else:
        # All-day: end date is exclusive
        body["start"] = {"date": event.date.isoformat()}
        body["end"] = {"date": (event.date + dt.timedelta(days=1)).isoformat()}
    return body


def google_to_event(item: dict, user_id: str) -> Event | None:
    """Translate a Calendar v3 event resource. Returns None for cancelled items."""
    if item.get("status") == "cancelled":
        return None

    start = item.get("start") or {}
    if start.get("dateTime"):
        when = dt.datetime.fromisoformat(start["dateTime"])
        day, time = when.date(), when.strftime("%H:%M")
    elif start.get("date"):
        day, time = dt.date.fromisoformat(start["date"]), None
    else:
        raise ValueError("event has no start")

    return Event(
        user_id=user_id,
        title=item.get("summary") or "(No title)",
        date=day,
        time=time,
        category="personal",
        description=item.get("description") or "",
        source="google",
        external_id=item["id"],
        sync_status="synced",
    )


class GoogleCalendarSession(ProviderSession):
    provider = "google"

    def __init__(
        self,
        credentials: GoogleCredentials,
        calendar_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.calendar_id = calendar_id
        self.timezone = settings.CALENDAR_TIMEZONE
        self.duration_minutes = settings.SYNC_EVENT_DURATION_MINUTES
        self._client = httpx.AsyncClient(
            base_url=settings.GOOGLE_CALENDAR_API_BASE_URL.rstrip("/"),
            timeout=settings.SYNC_HTTP_TIMEOUT,
            transport=transport,
            headers={
                "Authorization": f"Bearer {credentials.access_token.get_secret_value()}",
                "Accept": "application/json",
            },
        )

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    async def _request(self, method: str, url: str, allow: tuple[int, ...] = (), **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(self.provider, f"request timed out ({method} {url})", transient=True) from e
        except httpx.TransportError as e:
            raise ExternalServiceError(self.provider, f"network error: {e}", transient=True) from e

        code = response.status_code
        if code < 400 or code in allow:
            return response

        reason = self._error_reason(response)
        if code == 401 or (code == 403 and reason not in RATE_LIMIT_REASONS):
            raise ExternalServiceError(self.provider, f"authorization failed ({code})", auth=True)
        if code in (403, 429) or code >= 500:
            raise ExternalServiceError(self.provider, f"temporary failure ({code})", transient=True)
        raise ExternalServiceError(self.provider, f"request rejected ({code}): {reason or response.text[:200]}")

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        try:
            errors = response.json().get("error", {}).get("errors") or [{}]
            return errors[0].get("reason", "")
        except (ValueError, AttributeError):
            return ""

    async def create_event(self, event: Event) -> str:
        body = event_to_google(event, self.timezone, self.duration_minutes)
        response = await self._request("POST", self._events_path, json=body)
        return response.json()["id"]

    async def update_event(self, external_id: str, event: Event) -> str:
        body = event_to_google(event, self.timezone, self.duration_minutes)
        response = await self._request(
            "PUT",
            f"{self._events_path}/{quote(external_id, safe='')}",
            allow=(404, 410),
            json=body,
        )
        if response.status_code in (404, 410):
            logger.info(f"Google event {external_id} is gone, creating it again")
            return await self.create_event(event)
        return response.json()["id"]

    async def list_events(self, user_id: str, on_skip: SkipCallback | None = None) -> list[Event]:
        events = []
        params = {"singleEvents": "true", "maxResults": PAGE_SIZE}

        while True:
            response = await self._request("GET", self._events_path, params=params)
            body = response.json()
            for item in body.get("items", []):
                try:
                    event = google_to_event(item, user_id)
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping Google event {item.get('id')}: {e}")
                    if on_skip is not None:
                        on_skip(SyncItemError(external_id=item.get("id"), title=item.get("summary"), error=str(e)))
                    continue
                if event is not None:
                    events.append(event)

            page_token = body.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    async def revoke(self, token: str) -> None:
        settings = get_settings()
        await self._request("POST", settings.GOOGLE_OAUTH_REVOKE_URL, allow=(400,), params={"token": token})

    async def aclose(self) -> None:
        await self._client.aclose()


class GoogleCalendarConnector(CalendarConnector):
    provider = "google"

    def __init__(self, configs, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(configs)
        self._transport = transport

    def parse_credentials(self, payload: dict) -> tuple[GoogleCredentials, GoogleCalendarState]:
        missing = [f for f in ("accessToken", "refreshToken") if not (payload.get(f) or "").strip()]
        if missing:
            raise MissingCredentialsError(self.provider, missing)

        credentials = GoogleCredentials(
            access_token=payload["accessToken"].strip(),
            refresh_token=payload["refreshToken"].strip(),
        )
        state = GoogleCalendarState(
            connected=True,
            calendar_id=payload.get("calendarId") or "primary",
            sync_enabled=True,
        )
        return credentials, state

    def open_session(self, credentials: GoogleCredentials, state: GoogleCalendarState) -> GoogleCalendarSession:
        return GoogleCalendarSession(credentials, state.calendar_id or "primary", self._transport)

    async def revoke(self, credentials: GoogleCredentials) -> None:
        # Revoking the refresh token also invalidates its access tokens
        session = GoogleCalendarSession(credentials, "primary", self._transport)
        try:
            await session.revoke(credentials.refresh_token.get_secret_value())
        finally:
            await session.aclose()
