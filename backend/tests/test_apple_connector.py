"""
Tests for the CalDAV connector. The caldav client is replaced by a MagicMock
factory, so no server is needed.
"""

import datetime as dt
from unittest.mock import MagicMock

import pytest
from caldav.lib import error as caldav_error

from calendar_hub.core.exceptions import ExternalServiceError, MissingCredentialsError
from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.sync.config_store import SyncConfigManager
from calendar_hub.features.sync.connectors.apple import (
    AppleCalendarConnector,
    event_to_ical,
    event_uid,
    ical_to_events,
)

USER = "user-1"
LOGIN = {
    "serverUrl": "https://caldav.icloud.com",
    "username": "student@icloud.com",
    "password": "abcd-efgh-ijkl-mnop",
    "calendarName": "School",
}


def manual_event(event_id="e1", title="Midterm", time="09:00"):
    return Event(
        id=event_id, user_id=USER, title=title, date=dt.date(2025, 11, 1),
        time=time, category="academic", description="Room 101",
    )


def make_calendar(name):
    calendar = MagicMock()
    calendar.name = name
    calendar.events.return_value = []
    return calendar


@pytest.fixture
def dav():
    """A fake DAVClient whose principal owns a 'Home' and a 'School' calendar."""
    client = MagicMock()
    school = make_calendar("School")
    client.principal.return_value.calendars.return_value = [make_calendar("Home"), school]
    factory = MagicMock(return_value=client)
    return factory, client, school


@pytest.fixture
async def connector(fake_db, dav):
    factory, _, _ = dav
    connector = AppleCalendarConnector(SyncConfigManager(fake_db), client_factory=factory)
    await connector.connect(USER, LOGIN)
    return connector


class TestICalendar:
    def test_timed_event(self):
        data = event_to_ical(manual_event(), "e1@student-calendar-hub", 60)
        assert "BEGIN:VEVENT" in data
        assert "UID:e1@student-calendar-hub" in data
        assert "SUMMARY:Midterm" in data
        assert "DTSTART:20251101T090000" in data
        assert "DTEND:20251101T100000" in data

    def test_all_day_event(self):
        data = event_to_ical(manual_event(time=None), "uid-1", 60)
        assert "DTSTART;VALUE=DATE:20251101" in data
        assert "DTEND;VALUE=DATE:20251102" in data

    def test_parse(self):
        data = event_to_ical(manual_event(), "uid-1", 60)
        events = ical_to_events(data, USER)
        assert len(events) == 1
        assert events[0].external_id == "uid-1"
        assert events[0].title == "Midterm"
        assert events[0].date == dt.date(2025, 11, 1)
        assert events[0].time == "09:00"
        assert events[0].description == "Room 101"
        assert events[0].source == "apple"

    def test_uid_is_stable(self):
        assert event_uid(manual_event()) == event_uid(manual_event(title="Renamed"))

    def test_recurrence_overrides_are_folded_into_the_series(self):
        data = "\r\n".join([
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//test//EN",
            "BEGIN:VEVENT",
            "UID:weekly-lecture",
            "SUMMARY:Lecture",
            "DTSTART:20251103T100000",
            "RRULE:FREQ=WEEKLY;COUNT=5",
            "END:VEVENT",
            "BEGIN:VEVENT",
            "UID:weekly-lecture",
            "RECURRENCE-ID:20251110T100000",
            "SUMMARY:Lecture (room change)",
            "DTSTART:20251110T110000",
            "END:VEVENT",
            "END:VCALENDAR",
            "",
        ])
        events = ical_to_events(data, USER)
        assert [(e.external_id, e.title) for e in events] == [("weekly-lecture", "Lecture")]


class TestConnector:
    def test_missing_password(self, fake_db):
        connector = AppleCalendarConnector(SyncConfigManager(fake_db))
        with pytest.raises(MissingCredentialsError):
            connector.parse_credentials({"serverUrl": "https://caldav.icloud.com", "username": "me"})

    async def test_push_creates_in_the_named_calendar(self, connector, dav):
        factory, client, school = dav
        result = await connector.push(USER, [manual_event()])

        assert result.synced_count == 1
        factory.assert_called_once()
        assert factory.call_args.kwargs["username"] == "student@icloud.com"
        school.save_event.assert_called_once()
        assert "UID:e1@student-calendar-hub" in school.save_event.call_args.args[0]
        client.close.assert_called_once()

    async def test_missing_calendar_is_created(self, fake_db, dav):
        factory, client, _ = dav
        client.principal.return_value.calendars.return_value = [make_calendar("Home")]
        connector = AppleCalendarConnector(SyncConfigManager(fake_db), client_factory=factory)
        await connector.connect(USER, LOGIN)

        await connector.push(USER, [manual_event()])
        client.principal.return_value.make_calendar.assert_called_once_with(name="School")

    async def test_update_overwrites_by_uid(self, connector, dav):
        _, _, school = dav
        resource = MagicMock()
        school.event_by_uid.return_value = resource

        result = await connector.push(
            USER, [manual_event(title="Moved")], {"e1": "e1@student-calendar-hub"}
        )

        assert result.synced_count == 1
        school.event_by_uid.assert_called_once_with("e1@student-calendar-hub")
        assert "SUMMARY:Moved" in resource.data
        resource.save.assert_called_once()
        school.save_event.assert_not_called()

    async def test_update_of_deleted_event_creates_again(self, connector, dav):
        _, _, school = dav
        school.event_by_uid.side_effect = caldav_error.NotFoundError(reason="gone")

        result = await connector.push(USER, [manual_event()], {"e1": "e1@student-calendar-hub"})

        assert result.synced_count == 1
        school.save_event.assert_called_once()

    async def test_pull(self, connector, dav):
        _, _, school = dav
        remote = MagicMock()
        remote.data = event_to_ical(manual_event(title="Office hours"), "remote-uid", 30)
        broken = MagicMock()
        broken.data = "BEGIN:VCALENDAR\nBEGIN:VEVENT\nSUMMARY:No uid\nDTSTART:20251101T090000\nEND:VEVENT\nEND:VCALENDAR\n"
        school.events.return_value = [remote, broken]
        skipped = []

        events = await connector.pull(USER, on_skip=skipped.append)

        assert [e.external_id for e in events] == ["remote-uid"]
        assert events[0].id is None
        assert len(skipped) == 1

    async def test_bad_password_is_an_auth_error(self, connector, dav):
        factory, _, _ = dav
        factory.side_effect = caldav_error.AuthorizationError(reason="401 Unauthorized")

        with pytest.raises(ExternalServiceError) as exc_info:
            await connector.pull(USER)
        assert exc_info.value.auth is True

    async def test_network_errors_are_retried(self, connector, dav):
        _, _, school = dav
        school.save_event.side_effect = [ConnectionError("reset"), None]

        result = await connector.push(USER, [manual_event()])

        assert result.synced_count == 1
        assert school.save_event.call_count == 2

    async def test_server_rejection_fails_the_event(self, connector, dav):
        _, _, school = dav
        school.save_event.side_effect = caldav_error.PutError(reason="412 Precondition Failed")

        result = await connector.push(USER, [manual_event()])

        assert result.failed_count == 1
        assert school.save_event.call_count == 1
        assert "CalDAV error" in result.errors[0].error

    async def test_server_errors_are_retried(self, connector, dav):
        _, _, school = dav
        school.save_event.side_effect = [caldav_error.PutError(reason="503 Service Unavailable"), None]

        result = await connector.push(USER, [manual_event()])

        assert result.synced_count == 1
        assert school.save_event.call_count == 2


class TestSessionOpen:
    async def test_discovery_network_error_is_retried(self, connector, dav):
        _, client, school = dav
        principal = client.principal.return_value
        client.principal.side_effect = [ConnectionError("reset"), principal]

        result = await connector.push(USER, [manual_event()])

        assert result.synced_count == 1
        assert client.principal.call_count == 2
        school.save_event.assert_called_once()
        # the half-open client from the first attempt is closed too
        assert client.close.call_count == 2

    async def test_auth_failure_on_open_fails_every_event(self, connector, dav):
        factory, client, school = dav
        client.principal.side_effect = caldav_error.AuthorizationError(reason="401 Unauthorized")
        outcomes = []

        async def record(outcome):
            outcomes.append(outcome)

        result = await connector.push(USER, [manual_event("e1"), manual_event("e2")], on_result=record)

        assert result.success is False
        assert result.failed_count == 2
        assert [o.sync_status for o in outcomes] == ["failed", "failed"]
        assert factory.call_count == 1
        school.save_event.assert_not_called()
        client.close.assert_called_once()

    async def test_open_failure_on_pull_closes_the_client(self, connector, dav):
        _, client, _ = dav
        client.principal.side_effect = caldav_error.AuthorizationError(reason="401 Unauthorized")

        with pytest.raises(ExternalServiceError):
            await connector.pull(USER)
        client.close.assert_called_once()
