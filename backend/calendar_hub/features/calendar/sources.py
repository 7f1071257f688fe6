"""
Calendar feature: derived events from other domains.

SourceRecordRepository reads the coursework / fitness / nutrition / sleep
tables owned by other features. The generate_* functions are pure: given the
same records and range they always return the same events, so a derived event
is identical across reads. Nothing here is ever written back.
"""

import datetime as dt
import logging
from typing import Any, Callable

from supabase import Client

from calendar_hub.features.calendar.schemas import Event
from calendar_hub.features.calendar.store import execute

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────

def _parse_datetime(value: Any) -> dt.datetime | None:
    """Accept datetime, date, or ISO-8601 strings (with or without Z)."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    try:
        return dt.datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _in_range(day: dt.date, start: dt.date | None, end: dt.date | None) -> bool:
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def _derived_id(source: str, source_id: str) -> str:
    return f"{source}-{source_id}"


def _hhmm(value: dt.datetime) -> str:
    return value.strftime("%H:%M")


def _number(value: Any) -> Any:
    return value if value not in (None, "") else 0


# ── Generators ───────────────────────────────────────────

def generate_assignment_events(
    user_id: str,
    courses: list[dict],
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> list[Event]:
    """One academic event per assignment due date."""
    events = []
    for course in courses:
        course_name = course.get("course_name") or ""
        for index, assignment in enumerate(course.get("assignments") or []):
            due = _parse_datetime(assignment.get("due_date"))
            if due is None:
                continue
            if not _in_range(due.date(), start, end):
                continue

            source_id = str(assignment.get("id") or f"{course['id']}-{index}")
            title = assignment.get("title") or "Assignment"
            events.append(Event(
                id=_derived_id("assignment", source_id),
                user_id=user_id,
                title=f"{title} - {course_name}" if course_name else title,
                date=due.date(),
                time=_hhmm(due),
                category="academic",
                description=assignment.get("description") or "",
                source="assignment",
                source_id=source_id,
                created_at=_parse_datetime(assignment.get("created_at")),
                updated_at=_parse_datetime(assignment.get("updated_at")),
            ))
    return events


def generate_workout_events(
    user_id: str,
    workouts: list[dict],
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> list[Event]:
    events = []
    for log in workouts:
        when = _parse_datetime(log.get("date"))
        if when is None:
            logger.warning(f"Skipping workout log {log.get('id')}: no usable date")
            continue
        if not _in_range(when.date(), start, end):
            continue

        routine = log.get("routine_name") or "Workout"
        kind = log.get("type") or ""
        events.append(Event(
            id=_derived_id("workout", str(log["id"])),
            user_id=user_id,
            title=f"{routine} - {kind}" if kind else routine,
            date=when.date(),
            time=_hhmm(when),
            category="wellness",
            description=log.get("notes") or f"Duration: {_number(log.get('duration'))} minutes",
            source="workout",
            source_id=str(log["id"]),
            created_at=_parse_datetime(log.get("created_at")),
            updated_at=_parse_datetime(log.get("updated_at")),
        ))
    return events


def generate_meal_events(
    user_id: str,
    meals: list[dict],
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> list[Event]:
    events = []
    for meal in meals:
        when = _parse_datetime(meal.get("date"))
        if when is None:
            logger.warning(f"Skipping meal {meal.get('id')}: no usable date")
            continue
        if not _in_range(when.date(), start, end):
            continue

        events.append(Event(
            id=_derived_id("meal", str(meal["id"])),
            user_id=user_id,
            title=f"{meal.get('meal_type') or 'Meal'}: {meal.get('food_name') or ''}".rstrip(": "),
            date=when.date(),
            time=_hhmm(when),
            category="wellness",
            description=(
                f"{_number(meal.get('calories'))} calories | "
                f"Protein: {_number(meal.get('protein'))}g | "
                f"Carbs: {_number(meal.get('carbs'))}g | "
                f"Fats: {_number(meal.get('fats'))}g"
            ),
            source="meal",
            source_id=str(meal["id"]),
            created_at=_parse_datetime(meal.get("created_at")),
            updated_at=_parse_datetime(meal.get("updated_at")),
        ))
    return events


def generate_sleep_events(
    user_id: str,
    sleep_logs: list[dict],
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> list[Event]:
    """One event per night, placed at bedtime; wake time goes in the description."""
    events = []
    for log in sleep_logs:
        when = _parse_datetime(log.get("date"))
        if when is None:
            logger.warning(f"Skipping sleep log {log.get('id')}: no usable date")
            continue
        if not _in_range(when.date(), start, end):
            continue

        bed_time = (log.get("bed_time") or "22:00")[:5]
        wake_time = (log.get("wake_time") or "08:00")[:5]
        events.append(Event(
            id=_derived_id("sleep", str(log["id"])),
            user_id=user_id,
            title="Sleep",
            date=when.date(),
            time=bed_time,
            category="wellness",
            description=(
                f"Bedtime {bed_time}, wake up {wake_time} | "
                f"Slept: {_number(log.get('actual_hours'))} hours | "
                f"Quality: {log.get('quality') or 'N/A'}"
            ),
            source="sleep",
            source_id=str(log["id"]),
            created_at=_parse_datetime(log.get("created_at")),
            updated_at=_parse_datetime(log.get("updated_at")),
        ))
    return events


# ── Record fetching ──────────────────────────────────────

class SourceRecordRepository:
    """Reads records owned by other features, scoped to one user."""

    def __init__(self, db: Client):
        self.db = db

    def _dated_rows(
        self, table: str, user_id: str, start: dt.date | None, end: dt.date | None
    ) -> list[dict]:
        query = self.db.table(table).select("*").eq("user_id", user_id)
        if start:
            query = query.gte("date", f"{start.isoformat()}T00:00:00")
        if end:
            query = query.lte("date", f"{end.isoformat()}T23:59:59")
        return execute(query).data

    def courses(self, user_id: str, start: dt.date | None = None, end: dt.date | None = None) -> list[dict]:
        # Assignments live inside the course row; the generator filters by due date
        return execute(
            self.db.table("courses").select("id, course_name, assignments").eq("user_id", user_id)
        ).data

    def workouts(self, user_id: str, start: dt.date | None = None, end: dt.date | None = None) -> list[dict]:
        return self._dated_rows("workout_logs", user_id, start, end)

    def meals(self, user_id: str, start: dt.date | None = None, end: dt.date | None = None) -> list[dict]:
        return self._dated_rows("meals", user_id, start, end)

    def sleep_logs(self, user_id: str, start: dt.date | None = None, end: dt.date | None = None) -> list[dict]:
        return self._dated_rows("sleep_logs", user_id, start, end)


Generator = Callable[[str, list[dict], dt.date | None, dt.date | None], list[Event]]

# eventSources toggle -> (record fetcher name, generator)
SOURCE_GENERATORS: dict[str, tuple[str, Generator]] = {
    "assignments": ("courses", generate_assignment_events),
    "workouts": ("workouts", generate_workout_events),
    "meals": ("meals", generate_meal_events),
    "sleep": ("sleep_logs", generate_sleep_events),
}
