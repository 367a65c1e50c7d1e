"""Test DB helper functions with mocked connections."""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from db import (
    ACTIVITY_COLUMNS,
    DAILY_METRIC_COLUMNS,
    close_stale_sync_logs,
    close_sync_log,
    delete_meta,
    get_connection,
    get_meta,
    init_schema,
    list_activities,
    list_daily_metrics,
    list_recent_sync_logs,
    open_sync_log,
    set_meta,
    upsert_activity,
    upsert_daily_metric,
)
from errors import PersistenceError

SAMPLE_ACTIVITY = {
    "id": "12345",
    "provider": "garmin",
    "start_time": datetime(2026, 2, 20, 7, 30),
    "activity_type": "running",
    "name": "Morning Run",
    "distance_meters": 5000.0,
    "duration_seconds": 1800.0,
    "calories": 350.0,
    "raw_json": {"summary": {"activityId": 12345}},
}


def test_init_schema_creates_all_tables(mock_db):
    conn, cur = mock_db
    init_schema(conn)
    sql = cur.execute.call_args[0][0]
    for table in ("meta", "activities", "daily_metrics", "sync_log"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_upsert_activity_executes_full_row_upsert(mock_db):
    conn, cur = mock_db
    upsert_activity(conn, SAMPLE_ACTIVITY)

    cur.execute.assert_called_once()
    sql, params = cur.execute.call_args[0]
    assert "INSERT INTO activities" in sql
    assert "ON CONFLICT (provider, id)" in sql
    # every non-key column is replaced
    for col in ACTIVITY_COLUMNS:
        if col not in ("provider", "id"):
            assert f"{col} = EXCLUDED.{col}" in sql
    assert set(params) == set(ACTIVITY_COLUMNS)


def test_upsert_activity_writes_missing_columns_as_null(mock_db):
    conn, cur = mock_db
    upsert_activity(conn, SAMPLE_ACTIVITY)
    params = cur.execute.call_args[0][1]
    assert params["average_hr"] is None
    assert params["detail_json"] is None
    assert json.loads(params["raw_json"]) == {"summary": {"activityId": 12345}}


def test_upsert_activity_is_idempotent(mock_db):
    conn, cur = mock_db
    upsert_activity(conn, SAMPLE_ACTIVITY)
    upsert_activity(conn, SAMPLE_ACTIVITY)
    first, second = cur.execute.call_args_list
    assert first == second


def test_upsert_activity_coerces_numeric_id(mock_db):
    conn, cur = mock_db
    upsert_activity(conn, {**SAMPLE_ACTIVITY, "id": 987654321})
    assert cur.execute.call_args[0][1]["id"] == "987654321"


def test_upsert_activity_requires_key(mock_db):
    conn, cur = mock_db
    with pytest.raises(ValueError):
        upsert_activity(conn, {"provider": "garmin"})
    cur.execute.assert_not_called()


def test_upsert_daily_metric_executes_correct_sql(mock_db):
    conn, cur = mock_db
    upsert_daily_metric(conn, {"day": date(2026, 2, 20), "steps": 10500, "raw_json": {"summary": {}}})
    sql, params = cur.execute.call_args[0]
    assert "INSERT INTO daily_metrics" in sql
    assert "ON CONFLICT (day)" in sql
    assert "day = EXCLUDED.day" not in sql
    assert set(params) == set(DAILY_METRIC_COLUMNS)
    assert params["sleep_seconds"] is None


def test_upsert_daily_metric_requires_day(mock_db):
    conn, _ = mock_db
    with pytest.raises(ValueError):
        upsert_daily_metric(conn, {"steps": 1})


def test_open_sync_log_returns_id(mock_db):
    conn, cur = mock_db
    cur.fetchone.return_value = (42,)
    started = datetime(2026, 2, 20, 15, 30, tzinfo=timezone.utc)

    assert open_sync_log(conn, started) == 42
    sql, params = cur.execute.call_args[0]
    assert "'running'" in sql
    assert "RETURNING id" in sql
    assert params == (started,)


def test_close_sync_log_updates_status(mock_db):
    conn, cur = mock_db
    ended = datetime(2026, 2, 20, 15, 31, tzinfo=timezone.utc)
    close_sync_log(conn, 42, ended, "success", "activities=3 days=2")
    sql, params = cur.execute.call_args[0]
    assert "UPDATE sync_log" in sql
    assert params == (ended, "success", "activities=3 days=2", 42)


def test_close_sync_log_rejects_running_status(mock_db):
    conn, _ = mock_db
    with pytest.raises(ValueError):
        close_sync_log(conn, 1, datetime.now(timezone.utc), "running")


def test_close_stale_sync_logs_returns_rowcount(mock_db):
    conn, cur = mock_db
    cur.rowcount = 2
    assert close_stale_sync_logs(conn, datetime.now(timezone.utc)) == 2
    assert "WHERE status = 'running'" in cur.execute.call_args[0][0]


def test_list_activities_orders_by_start_time(mock_db):
    conn, cur = mock_db
    cur.fetchall.return_value = [{"id": "2"}, {"id": "1"}]
    rows = list_activities(conn, limit=5)
    sql, params = cur.execute.call_args[0]
    assert "ORDER BY start_time DESC" in sql
    assert params == (5,)
    assert rows == [{"id": "2"}, {"id": "1"}]


def test_list_daily_metrics_orders_by_day(mock_db):
    conn, cur = mock_db
    list_daily_metrics(conn, limit=7)
    assert "ORDER BY day DESC" in cur.execute.call_args[0][0]


def test_list_recent_sync_logs_newest_first(mock_db):
    conn, cur = mock_db
    list_recent_sync_logs(conn)
    sql, params = cur.execute.call_args[0]
    assert "ORDER BY id DESC" in sql
    assert params == (10,)


def test_get_meta_returns_none_for_missing(mock_db):
    conn, cur = mock_db
    cur.fetchone.return_value = None
    assert get_meta(conn, "garmin_session") is None


def test_get_meta_returns_value(mock_db):
    conn, cur = mock_db
    cur.fetchone.return_value = ("value2",)
    assert get_meta(conn, "test_key") == "value2"


def test_set_meta_upserts(mock_db):
    conn, cur = mock_db
    set_meta(conn, "test_key", "value1")
    sql, params = cur.execute.call_args[0]
    assert "ON CONFLICT (key)" in sql
    assert params == ("test_key", "value1")


def test_delete_meta(mock_db):
    conn, cur = mock_db
    delete_meta(conn, "garmin_session")
    assert cur.execute.call_args[0] == ("DELETE FROM meta WHERE key = %s", ("garmin_session",))


@patch("db.psycopg2.connect")
def test_get_connection_commits_and_closes(mock_connect):
    conn = MagicMock()
    mock_connect.return_value = conn
    with get_connection() as c:
        assert c is conn
    conn.commit.assert_called_once()
    conn.close.assert_called_once()


@patch("db.psycopg2.connect")
def test_get_connection_wraps_database_errors(mock_connect):
    conn = MagicMock()
    mock_connect.return_value = conn
    with pytest.raises(PersistenceError):
        with get_connection():
            raise psycopg2.OperationalError("disk full")
    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()
    conn.close.assert_called_once()


@patch("db.psycopg2.connect")
def test_get_connection_reraises_other_errors(mock_connect):
    conn = MagicMock()
    mock_connect.return_value = conn
    with pytest.raises(KeyError):
        with get_connection():
            raise KeyError("x")
    conn.rollback.assert_called_once()


@patch("db.psycopg2.connect", side_effect=psycopg2.OperationalError("no route to host"))
def test_get_connection_connect_failure(mock_connect):
    with pytest.raises(PersistenceError, match="Could not connect"):
        with get_connection():
            pass
