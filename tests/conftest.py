from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import KINDS, serialize, to_document
from errors import RecordNotFoundError, UpstreamFetchError
from main import app, get_settings, get_store

USER = "user-1"
OTHER_USER = "user-2"


class FakeStore:
    """In-memory stand-in for database.RecordStore."""

    def __init__(self):
        self.records = {kind: [] for kind in KINDS}
        self.counters = {kind: 0 for kind in KINDS}
        self.clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.fail = False

    def _check(self):
        if self.fail:
            raise UpstreamFetchError("store unavailable")

    def _owned(self, kind, user_id):
        self._check()
        return [r for r in self.records[kind] if r["user_id"] == user_id]

    def get_all(self, kind, user_id):
        _, field, direction = KINDS[kind]
        rows = sorted(self._owned(kind, user_id), key=lambda r: r["id"])
        rows = sorted(rows, key=lambda r: r[field], reverse=direction < 0)
        return [serialize(r) for r in rows]

    def get_active(self, kind, user_id):
        return [serialize(r) for r in self._owned(kind, user_id) if r.get("is_active")]

    def get_range(self, kind, user_id, start, end):
        _, field, _ = KINDS[kind]
        return [
            r for r in self.get_all(kind, user_id)
            if start.isoformat() <= r[field] <= end.isoformat()
        ]

    def get_recent(self, kind, user_id, limit=10):
        rows = sorted(self._owned(kind, user_id), key=lambda r: r["created_at"], reverse=True)
        return [serialize(r) for r in rows[:limit]]

    def get_by_id(self, kind, user_id, record_id):
        for r in self._owned(kind, user_id):
            if r["id"] == record_id:
                return serialize(r)
        raise RecordNotFoundError(kind, record_id)

    def create(self, kind, user_id, payload):
        self._check()
        self.counters[kind] += 1
        self.clock += timedelta(minutes=1)
        doc = to_document(payload)
        doc.update(id=self.counters[kind], user_id=user_id, created_at=self.clock)
        self.records[kind].append(doc)
        return serialize(doc)

    def update(self, kind, user_id, record_id, changes):
        data = to_document(changes, exclude_unset=True)
        for r in self._owned(kind, user_id):
            if r["id"] == record_id:
                r.update(data)
                return serialize(r)
        raise RecordNotFoundError(kind, record_id)

    def toggle_active(self, kind, user_id, record_id):
        for r in self._owned(kind, user_id):
            if r["id"] == record_id:
                r["is_active"] = not r.get("is_active")
                return serialize(r)
        raise RecordNotFoundError(kind, record_id)

    def delete(self, kind, user_id, record_id):
        before = len(self.records[kind])
        self.records[kind] = [
            r for r in self.records[kind]
            if not (r["id"] == record_id and r["user_id"] == user_id)
        ]
        if len(self.records[kind]) == before:
            raise RecordNotFoundError(kind, record_id)

    def list_collection_names(self):
        self._check()
        return list(KINDS)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def settings():
    return Settings(database_url="mongodb://localhost:27017", database_name="finance_test")


@pytest.fixture
def client(store, settings):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    # no context manager: the lifespan (real database connection) is skipped
    yield TestClient(app, headers={"X-User-Id": USER})
    app.dependency_overrides.clear()
