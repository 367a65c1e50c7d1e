"""Database connection, schema and helpers."""

import json
from contextlib import contextmanager
from datetime import datetime

import psycopg2
import psycopg2.extras

from config import DATABASE_URL
from errors import PersistenceError

SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activities (
    id TEXT NOT NULL,
    provider TEXT NOT NULL,
    start_time TIMESTAMP,
    activity_type TEXT,
    name TEXT,
    distance_meters DOUBLE PRECISION,
    duration_seconds DOUBLE PRECISION,
    calories DOUBLE PRECISION,
    average_hr INTEGER,
    max_hr INTEGER,
    average_speed DOUBLE PRECISION,
    max_speed DOUBLE PRECISION,
    elevation_gain DOUBLE PRECISION,
    elevation_loss DOUBLE PRECISION,
    description TEXT,
    location_name TEXT,
    detail_json JSONB,
    raw_json JSONB,
    PRIMARY KEY (provider, id)
);

CREATE TABLE IF NOT EXISTS daily_metrics (
    day DATE PRIMARY KEY,
    steps INTEGER,
    resting_heart_rate INTEGER,
    body_battery INTEGER,
    sleep_seconds INTEGER,
    sleep_score INTEGER,
    deep_sleep_seconds INTEGER,
    light_sleep_seconds INTEGER,
    rem_sleep_seconds INTEGER,
    awake_sleep_seconds INTEGER,
    avg_spo2 REAL,
    avg_respiration REAL,
    avg_stress_level INTEGER,
    hrv_status TEXT,
    hrv_last_night_avg REAL,
    raw_json JSONB
);

CREATE TABLE IF NOT EXISTS sync_log (
    id SERIAL PRIMARY KEY,
    started_at TIMESTAMPTZ NOT NULL,
    ended_at TIMESTAMPTZ,
    status TEXT NOT NULL CHECK (status IN ('running', 'success', 'error')),
    details TEXT
);
"""

ACTIVITY_KEY = ("provider", "id")
ACTIVITY_COLUMNS = (
    "id", "provider", "start_time", "activity_type", "name",
    "distance_meters", "duration_seconds", "calories",
    "average_hr", "max_hr", "average_speed", "max_speed",
    "elevation_gain", "elevation_loss", "description", "location_name",
    "detail_json", "raw_json",
)

DAILY_METRIC_KEY = ("day",)
DAILY_METRIC_COLUMNS = (
    "day", "steps", "resting_heart_rate", "body_battery",
    "sleep_seconds", "sleep_score", "deep_sleep_seconds", "light_sleep_seconds",
    "rem_sleep_seconds", "awake_sleep_seconds",
    "avg_spo2", "avg_respiration", "avg_stress_level",
    "hrv_status", "hrv_last_night_avg", "raw_json",
)

JSON_COLUMNS = {"detail_json", "raw_json"}

SYNC_STATUSES = ("running", "success", "error")


@contextmanager
def get_connection():
    """Yield a database connection, closing it on exit.

    Any psycopg2 error is rolled back and re-raised as PersistenceError.
    """
    try:
        conn = psycopg2.connect(DATABASE_URL)
    except psycopg2.Error as e:
        raise PersistenceError(f"Could not connect to database: {e}") from e
    try:
        yield conn
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        raise PersistenceError(str(e).strip()) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_schema(conn):
    """Create all tables if they do not exist yet."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA)


def _build_upsert(table: str, columns: tuple, key: tuple) -> str:
    updates = [f"{c} = EXCLUDED.{c}" for c in columns if c not in key]
    return f"""
        INSERT INTO {table} ({', '.join(columns)})
        VALUES ({', '.join(f'%({c})s' for c in columns)})
        ON CONFLICT ({', '.join(key)})
        DO UPDATE SET {', '.join(updates)}
    """


_UPSERT_ACTIVITY_SQL = _build_upsert("activities", ACTIVITY_COLUMNS, ACTIVITY_KEY)
_UPSERT_DAILY_METRIC_SQL = _build_upsert("daily_metrics", DAILY_METRIC_COLUMNS, DAILY_METRIC_KEY)


def _row_params(record: dict, columns: tuple) -> dict:
    """Full-row parameters: every column present, missing ones as NULL."""
    params = {}
    for col in columns:
        value = record.get(col)
        if col in JSON_COLUMNS and value is not None:
            value = json.dumps(value)
        params[col] = value
    return params


def upsert_activity(conn, record: dict):
    """Insert or fully replace an activity. Keyed on (provider, id)."""
    for col in ACTIVITY_KEY:
        if not record.get(col):
            raise ValueError(f"activity record is missing {col!r}")
    params = _row_params(record, ACTIVITY_COLUMNS)
    params["id"] = str(params["id"])
    with conn.cursor() as cur:
        cur.execute(_UPSERT_ACTIVITY_SQL, params)


def upsert_daily_metric(conn, record: dict):
    """Insert or fully replace the metrics row of one calendar day."""
    if not record.get("day"):
        raise ValueError("daily metric record is missing 'day'")
    with conn.cursor() as cur:
        cur.execute(_UPSERT_DAILY_METRIC_SQL, _row_params(record, DAILY_METRIC_COLUMNS))


# ===================
# SYNC LOG
# ===================


def open_sync_log(conn, started_at: datetime) -> int:
    """Open a 'running' sync_log entry and return its id."""
    with conn.cursor() as cur:
        cur.execute(
            "INSERT INTO sync_log (started_at, status) VALUES (%s, 'running') RETURNING id",
            (started_at,),
        )
        return cur.fetchone()[0]


def close_sync_log(conn, log_id: int, ended_at: datetime, status: str, details: str = None):
    """Close a sync_log entry as 'success' or 'error'."""
    if status not in ("success", "error"):
        raise ValueError(f"cannot close sync log with status {status!r}")
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE sync_log SET ended_at = %s, status = %s, details = %s WHERE id = %s",
            (ended_at, status, details, log_id),
        )


def close_stale_sync_logs(conn, ended_at: datetime, details: str = "Interrupted before completion") -> int:
    """Close 'running' entries left behind by a process that died mid-sync."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE sync_log SET ended_at = %s, status = 'error', details = %s
            WHERE status = 'running'
            """,
            (ended_at, details),
        )
        return cur.rowcount


# ===================
# READ PATHS
# ===================


def list_activities(conn, limit: int = 100) -> list[dict]:
    """Most recent activities first."""
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, provider, start_time, activity_type, name, distance_meters,
                   duration_seconds, calories, average_hr, max_hr, average_speed,
                   max_speed, elevation_gain, elevation_loss, description, location_name
            FROM activities
            ORDER BY start_time DESC NULLS LAST
            LIMIT %s
            """,
            (int(limit),),
        )
        return cur.fetchall()


def list_daily_metrics(conn, limit: int = 60) -> list[dict]:
    """Most recent days first."""
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT day, steps, resting_heart_rate, body_battery, sleep_seconds, sleep_score,
                   deep_sleep_seconds, light_sleep_seconds, rem_sleep_seconds,
                   awake_sleep_seconds, avg_spo2, avg_respiration, avg_stress_level,
                   hrv_status, hrv_last_night_avg
            FROM daily_metrics
            ORDER BY day DESC
            LIMIT %s
            """,
            (int(limit),),
        )
        return cur.fetchall()


def list_recent_sync_logs(conn, limit: int = 10) -> list[dict]:
    """Newest sync_log entries first."""
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            "SELECT id, started_at, ended_at, status, details FROM sync_log ORDER BY id DESC LIMIT %s",
            (int(limit),),
        )
        return cur.fetchall()


# ===================
# META (key/value)
# ===================


def get_meta(conn, key: str) -> str | None:
    with conn.cursor() as cur:
        cur.execute("SELECT value FROM meta WHERE key = %s", (key,))
        row = cur.fetchone()
        return row[0] if row else None


def set_meta(conn, key: str, value: str):
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO meta (key, value) VALUES (%s, %s)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
            """,
            (key, value),
        )


def delete_meta(conn, key: str):
    with conn.cursor() as cur:
        cur.execute("DELETE FROM meta WHERE key = %s", (key,))
