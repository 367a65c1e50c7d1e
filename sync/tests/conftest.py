"""Shared fixtures: mocked DB connections and in-memory fakes."""

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

# Keep the suite independent of a developer's .env
os.environ.setdefault("DATABASE_URL", "postgresql://test@localhost:5432/garmin_sync_test")


def make_mock_conn():
    """Return (conn, cursor) mocks wired like a psycopg2 connection."""
    mock_conn = MagicMock()
    mock_cur = MagicMock()
    mock_conn.cursor.return_value.__enter__ = MagicMock(return_value=mock_cur)
    mock_conn.cursor.return_value.__exit__ = MagicMock(return_value=False)
    return mock_conn, mock_cur


@pytest.fixture
def mock_db():
    """(conn, cursor) pair for testing db helpers."""
    return make_mock_conn()


class FakeSessionStore:
    """In-memory stand-in for SessionStore."""

    def __init__(self, session=None):
        self.session = session
        self.saved = []
        self.clear_calls = 0

    def load(self):
        return self.session

    def save(self, session):
        self.session = session
        self.saved.append(session)

    def clear(self):
        self.session = None
        self.clear_calls += 1


class FakeDb:
    """Captures upserts keyed like the real tables."""

    def __init__(self):
        self.activities = {}
        self.daily_metrics = {}

    def upsert_activity(self, conn, record):
        self.activities[(record["provider"], record["id"])] = dict(record)

    def upsert_daily_metric(self, conn, record):
        self.daily_metrics[record["day"]] = dict(record)

    @contextmanager
    def get_connection(self):
        yield MagicMock()


@pytest.fixture
def fake_db(monkeypatch):
    import garmin_sync

    db = FakeDb()
    monkeypatch.setattr(garmin_sync, "get_connection", db.get_connection)
    monkeypatch.setattr(garmin_sync, "upsert_activity", db.upsert_activity)
    monkeypatch.setattr(garmin_sync, "upsert_daily_metric", db.upsert_daily_metric)
    return db


@pytest.fixture
def fixed_now():
    return datetime(2026, 2, 20, 12, 0, 0, tzinfo=timezone.utc)
