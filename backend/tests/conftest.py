"""
Test configuration and fixtures.

Provides an in-memory stand-in for the Supabase query builder, a fake Google
Calendar API for httpx.MockTransport, and a TestClient wired to both.
"""

import json
import os
import re
import uuid
from types import SimpleNamespace

from cryptography.fernet import Fernet

# Settings are read at import time by calendar_hub.main
os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("ENCRYPTION_SECRET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("SYNC_BACKOFF_BASE_SECONDS", "0")
os.environ.setdefault("SYNC_BACKOFF_MAX_SECONDS", "0")

import httpx
import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from calendar_hub.core.dependencies import get_db
from calendar_hub.core.security import create_access_token
from calendar_hub.main import app


# ── Fake Supabase ────────────────────────────────────────

class FakeQuery:
    """Chainable subset of the PostgREST builder used by the app."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.columns: list[str] | None = None
        self.payload = None
        self.filters = []
        self.order_by: tuple[str, bool] | None = None
        self.limit_n: int | None = None
        self.on_conflict: list[str] = []
        self.ignore_duplicates = False

    # actions
    def select(self, columns: str = "*"):
        self.action = "select"
        self.columns = None if columns.strip() == "*" else [c.strip() for c in columns.split(",")]
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.action, self.payload = "update", payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def upsert(self, payload, on_conflict: str = "id", ignore_duplicates: bool = False):
        self.action, self.payload = "upsert", payload
        self.on_conflict = [c.strip() for c in on_conflict.split(",")]
        self.ignore_duplicates = ignore_duplicates
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) >= str(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) <= str(value))
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, n: int):
        self.limit_n = n
        return self

    # execution
    def _matches(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self):
        self.db.queries.append((self.table_name, self.action))
        if self.db.unavailable:
            raise APIError({"message": "connection refused", "code": "PGRST000"})

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.action == "select":
            found = [r for r in rows if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                found.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
            if self.limit_n is not None:
                found = found[: self.limit_n]
            if self.columns:
                found = [{c: r.get(c) for c in self.columns} for r in found]
            return SimpleNamespace(data=json.loads(json.dumps(found)))

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for item in items:
                row = {"id": str(uuid.uuid4()), **item}
                rows.append(row)
                inserted.append(dict(row))
            return SimpleNamespace(data=inserted)

        if self.action == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(dict(row))
            return SimpleNamespace(data=updated)

        if self.action == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed)

        if self.action == "upsert":
            item = self.payload
            for row in rows:
                if all(row.get(c) == item.get(c) for c in self.on_conflict):
                    if self.ignore_duplicates:
                        return SimpleNamespace(data=[])
                    row.update(item)
                    return SimpleNamespace(data=[dict(row)])
            row = {"id": str(uuid.uuid4()), **item}
            rows.append(row)
            return SimpleNamespace(data=[dict(row)])

        raise AssertionError(f"unsupported action {self.action}")


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.queries: list[tuple[str, str]] = []
        self.unavailable = False

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.get(name, [])


# ── Fake Google Calendar API ─────────────────────────────

class FakeGoogleCalendar:
    """Minimal Calendar v3 server for httpx.MockTransport."""

    def __init__(self, page_size: int = 250):
        self.events: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_queue: list[int] = []  # status codes returned before real handling
        self.fail_titles: set[str] = set()  # POST/PUT bodies with these summaries get a 400
        self.page_size = page_size
        self.revoked: list[str] = []
        self._counter = 0

    def add_remote(self, summary: str, start: dict, **extra) -> str:
        self._counter += 1
        event_id = f"remote{self._counter}"
        self.events[event_id] = {"id": event_id, "summary": summary, "start": start, "status": "confirmed", **extra}
        return event_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_queue:
            return httpx.Response(self.fail_queue.pop(0), json={"error": {"errors": [{"reason": "backendError"}]}})

        path = request.url.path
        if path.endswith("/revoke"):
            self.revoked.append(request.url.params.get("token"))
            return httpx.Response(200)

        match = re.search(r"/calendars/[^/]+/events(?:/([^/]+))?$", path)
        if not match:
            return httpx.Response(404)
        event_id = match.group(1)

        if request.method == "GET" and event_id is None:
            items = sorted(self.events.values(), key=lambda e: e["id"])
            offset = int(request.url.params.get("pageToken") or 0)
            page = items[offset: offset + self.page_size]
            body = {"items": page}
            if offset + self.page_size < len(items):
                body["nextPageToken"] = str(offset + self.page_size)
            return httpx.Response(200, json=body)

        if request.method in ("POST", "PUT"):
            body = json.loads(request.content)
            if body.get("summary") in self.fail_titles:
                return httpx.Response(400, json={"error": {"errors": [{"reason": "invalid"}]}})

        if request.method == "POST" and event_id is None:
            self._counter += 1
            new_id = f"g{self._counter}"
            self.events[new_id] = {"id": new_id, "status": "confirmed", **body}
            return httpx.Response(200, json=self.events[new_id])

        if request.method == "PUT" and event_id is not None:
            if event_id not in self.events:
                return httpx.Response(404, json={"error": {"errors": [{"reason": "notFound"}]}})
            self.events[event_id] = {"id": event_id, "status": "confirmed", **body}
            return httpx.Response(200, json=self.events[event_id])

        return httpx.Response(405)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ── Fixtures ─────────────────────────────────────────────

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def google_server():
    return FakeGoogleCalendar()


@pytest.fixture
def client(fake_db):
    app.dependency_overrides[get_db] = lambda: fake_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def headers():
    return auth_headers(USER_ID)


@pytest.fixture
def other_headers():
    return auth_headers(OTHER_USER_ID)
