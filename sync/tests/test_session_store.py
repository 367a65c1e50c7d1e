"""Test session validity window and meta-table persistence."""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from config import SESSION_TTL_DAYS
from session_store import SESSION_META_KEY, Session, SessionStore

CREATED = datetime(2026, 2, 13, 12, 0, 0, tzinfo=timezone.utc)


@contextmanager
def _fake_connection():
    yield MagicMock()


@pytest.fixture
def meta():
    """In-memory meta table wired into session_store."""
    table = {}
    with patch("session_store.get_connection", _fake_connection), \
         patch("session_store.get_meta", side_effect=lambda conn, key: table.get(key)), \
         patch("session_store.set_meta", side_effect=lambda conn, key, value: table.__setitem__(key, value)), \
         patch("session_store.delete_meta", side_effect=lambda conn, key: table.pop(key, None)):
        yield table


def _store(now):
    return SessionStore(ttl=timedelta(days=7), clock=lambda: now)


class TestValidity:

    def test_valid_one_second_before_expiry(self):
        session = Session(token="token-abc", created_at=CREATED)
        now = CREATED + timedelta(days=7) - timedelta(seconds=1)
        assert _store(now).is_valid(session) is True

    def test_expired_at_exact_boundary(self):
        session = Session(token="token-abc", created_at=CREATED)
        now = CREATED + timedelta(days=7)
        assert _store(now).is_valid(session) is False

    def test_expired_one_second_after(self):
        session = Session(token="token-abc", created_at=CREATED)
        now = CREATED + timedelta(days=7, seconds=1)
        assert _store(now).is_valid(session) is False

    def test_explicit_now_overrides_clock(self):
        session = Session(token="token-abc", created_at=CREATED)
        store = _store(CREATED + timedelta(days=30))
        assert store.is_valid(session, now=CREATED + timedelta(hours=1)) is True


class TestSessionJson:

    def test_round_trip(self):
        session = Session(token="b2F1dGgx.dG9rZW4=", created_at=CREATED, display_name="runner42")
        restored = Session.from_json(session.to_json())
        assert restored == session

    def test_naive_timestamp_is_utc(self):
        raw = json.dumps({"token": "token-abc", "created_at": "2026-02-13T12:00:00"})
        restored = Session.from_json(raw)
        assert restored.created_at == CREATED
        assert restored.display_name is None


class TestPersistence:

    def test_load_missing_returns_none(self, meta):
        assert _store(CREATED).load() is None

    def test_save_then_load(self, meta):
        store = _store(CREATED + timedelta(days=1))
        session = Session(token="token-abc", created_at=CREATED, display_name="runner42")
        store.save(session)

        assert SESSION_META_KEY in meta
        assert store.load() == session

    def test_load_expired_returns_none(self, meta):
        session = Session(token="token-abc", created_at=CREATED)
        meta[SESSION_META_KEY] = session.to_json()
        assert _store(CREATED + timedelta(days=8)).load() is None

    def test_load_corrupt_returns_none(self, meta):
        meta[SESSION_META_KEY] = "{not json"
        assert _store(CREATED).load() is None

    def test_load_missing_fields_returns_none(self, meta):
        meta[SESSION_META_KEY] = json.dumps({"token": "token-abc"})
        assert _store(CREATED).load() is None

    def test_clear_removes_row(self, meta):
        store = _store(CREATED)
        store.save(Session(token="token-abc", created_at=CREATED))
        store.clear()
        assert SESSION_META_KEY not in meta
        assert store.load() is None

    def test_default_ttl_comes_from_config(self):
        assert SessionStore().ttl == timedelta(days=SESSION_TTL_DAYS)
