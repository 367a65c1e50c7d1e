"""Sync service: sync log bookkeeping, scheduler wiring and read accessors.

This is the surface the HTTP layer and the CLI talk to:

    service = SyncService()
    service.start()                  # schema + stale-log cleanup + auto-sync
    service.trigger_sync()           # {"activities_synced": .., "days_synced": ..}
    service.get_scheduler_status()
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from config import (
    SYNC_ACTIVITY_LIMIT,
    SYNC_DAYS,
    SYNC_INTERVAL_MINUTES,
    get_garmin_credentials,
)
from db import (
    close_stale_sync_logs,
    close_sync_log,
    get_connection,
    init_schema,
    list_activities,
    list_daily_metrics,
    list_recent_sync_logs,
    open_sync_log,
)
from errors import ConfigurationError, SyncInProgressError
from garmin_client import GarminClient
from garmin_sync import GarminSync
from scheduler import SyncScheduler
from session_store import SessionStore

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_details(result: dict) -> str:
    return f"activities={result['activities_synced']} days={result['days_synced']}"


class SyncService:
    """Owns the Garmin client, session store and scheduler of one process."""

    def __init__(
        self,
        client: GarminClient | None = None,
        session_store: SessionStore | None = None,
        interval_minutes: int = SYNC_INTERVAL_MINUTES,
        activity_limit: int = SYNC_ACTIVITY_LIMIT,
        days: int = SYNC_DAYS,
        credentials: tuple[str, str] | None = None,
        scheduler: SyncScheduler | None = None,
    ):
        self.client = client or GarminClient()
        self.session_store = session_store or SessionStore()
        self.activity_limit = activity_limit
        self.days = days
        self.credentials = credentials if credentials is not None else get_garmin_credentials()
        self.scheduler = scheduler or SyncScheduler(
            interval_ms=max(0, interval_minutes) * 60 * 1000,
            on_sync=self.run_sync,
            on_error=self._report_error,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def prepare(self, close_stale: bool = True):
        """Create the schema and close 'running' logs left by a dead process."""
        with get_connection() as conn:
            init_schema(conn)
            stale = close_stale_sync_logs(conn, _now()) if close_stale else 0
        if stale:
            logger.warning("Closed %d sync log entries left running by a previous process", stale)

    def start(self):
        """Prepare the database and arm auto-sync."""
        self.prepare()
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def run_sync(self) -> dict:
        """One sync wrapped in a sync_log entry; errors are logged then re-raised."""
        with get_connection() as conn:
            log_id = open_sync_log(conn, _now())
        logger.info("=== Garmin sync #%s started ===", log_id)

        try:
            result = GarminSync(
                self.client,
                self.session_store,
                credentials=self.credentials,
                activity_limit=self.activity_limit,
                days=self.days,
            ).run()
        except Exception as e:
            logger.error("Garmin sync #%s failed: %s", log_id, e)
            with get_connection() as conn:
                close_sync_log(conn, log_id, _now(), "error", f"{type(e).__name__}: {e}")
            raise

        with get_connection() as conn:
            close_sync_log(conn, log_id, _now(), "success", format_details(result))
        logger.info("=== Garmin sync #%s complete: %s ===", log_id, format_details(result))
        return {**result, "log_id": log_id}

    def trigger_sync(self) -> dict:
        """Run a sync now. Raises SyncInProgressError if one is already running."""
        result = self.scheduler.trigger_now()
        if result is None:
            raise SyncInProgressError("A sync is already running")
        return result

    def _report_error(self, error: Exception):
        logger.warning("Scheduled sync failed, next run still scheduled: %s", error)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_scheduler_status(self) -> dict:
        status = self.scheduler.get_status()
        return {
            "enabled": status["enabled"],
            "interval_ms": status["interval_ms"],
            "last_run_at": status["last_run_at"],
            "next_run_at": status["next_run_at"],
            "is_running": status["is_running"],
        }

    def login(self):
        """Authenticate with the configured credentials and store the new session."""
        email, password = self.credentials or ("", "")
        if not email or not password:
            raise ConfigurationError("GARMIN_EMAIL and GARMIN_PASSWORD must be set in .env")
        session = self.client.authenticate(email, password)
        self.session_store.save(session)
        logger.info("Logged in to Garmin Connect as %s", session.display_name or email)
        return session

    def is_authenticated(self) -> bool:
        """True while a valid session is stored. Does not contact Garmin."""
        return self.session_store.load() is not None

    def logout(self):
        """Forget the stored session (the server-side session is not revoked)."""
        self.session_store.clear()
        logger.info("Garmin session cleared")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def list_activities(self, limit: int = 100) -> list[dict]:
        with get_connection() as conn:
            return list_activities(conn, limit)

    def list_daily_metrics(self, limit: int = 60) -> list[dict]:
        with get_connection() as conn:
            return list_daily_metrics(conn, limit)

    def list_recent_sync_logs(self, limit: int = 10) -> list[dict]:
        with get_connection() as conn:
            return list_recent_sync_logs(conn, limit)
