"""Sync recent Garmin activities and daily wellness data into the database.

One GarminSync.run() call is one sync invocation:

    ensure session -> fetch activity list -> enrich each activity with its
    detail -> upsert -> for each day of the trailing window fetch the daily
    summary (+ sleep / body battery / stress / HRV in parallel) -> upsert

Opening and closing the sync_log entry is the caller's job (see pipeline.py).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from config import SYNC_ACTIVITY_LIMIT, SYNC_DAYS, get_garmin_credentials
from db import get_connection, upsert_activity, upsert_daily_metric
from errors import ConfigurationError, SessionExpiredError, TransportError
from parsers import has_daily_data, parse_activity, parse_daily_metric

logger = logging.getLogger(__name__)

# Best-effort sub-resources fetched in parallel once a day has a summary
DAY_SUB_FETCHES = {
    "hrv": lambda client, s, d: client.fetch_hrv(s, d),
    "sleep": lambda client, s, d: client.fetch_sleep(s, d),
    "body_battery": lambda client, s, d: client.fetch_body_battery(s, d),
    "stress": lambda client, s, d: client.fetch_stress(s, d),
}


class GarminSync:
    """Run one sync pass against Garmin Connect."""

    def __init__(
        self,
        client,
        session_store,
        credentials: tuple[str, str] | None = None,
        activity_limit: int = SYNC_ACTIVITY_LIMIT,
        days: int = SYNC_DAYS,
        today: date | None = None,
    ):
        self.client = client
        self.session_store = session_store
        self.credentials = credentials if credentials is not None else get_garmin_credentials()
        self.activity_limit = activity_limit
        self.days = days
        self.today = today
        self.auth_count = 0
        self._session = None
        self._reauthenticated = False

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    def _authenticate(self):
        email, password = self.credentials
        if not email or not password:
            raise ConfigurationError(
                "No valid Garmin session and credentials not set. "
                "Configure GARMIN_EMAIL/GARMIN_PASSWORD."
            )
        logger.info("Authenticating with Garmin Connect...")
        self.auth_count += 1
        session = self.client.authenticate(email, password)
        self.session_store.save(session)
        return session

    def _ensure_session(self):
        session = self.session_store.load()
        if session is None:
            session = self._authenticate()
        self._session = session
        return session

    def _call(self, fn, *args):
        """Call fn(session, *args), re-authenticating once per run on expiry."""
        try:
            return fn(self._session, *args)
        except SessionExpiredError as e:
            self.session_store.clear()
            if self._reauthenticated:
                logger.error("Session rejected again after re-authentication: %s", e)
                raise
            logger.warning("Garmin session expired (%s), re-authenticating", e)
            self._reauthenticated = True
            self._session = self._authenticate()
        # A second expiry here propagates and aborts the sync
        try:
            return fn(self._session, *args)
        except SessionExpiredError:
            self.session_store.clear()
            raise

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def sync_activities(self) -> tuple[int, bool]:
        """Upsert the most recent activities. Returns (count, list_failed)."""
        try:
            summaries = self._call(self.client.fetch_activities, self.activity_limit)
        except TransportError as e:
            logger.warning("Activity list unavailable: %s", e)
            return 0, True

        count = 0
        for summary in summaries:
            activity_id = summary.get("activityId") if isinstance(summary, dict) else None
            if activity_id is None:
                logger.warning("  Skipping activity without activityId")
                continue
            detail = self._call(self.client.fetch_activity_detail, activity_id)
            record = parse_activity(summary, detail)
            with get_connection() as conn:
                upsert_activity(conn, record)
            count += 1
        logger.info("  Activities: %d synced", count)
        return count, False

    # ------------------------------------------------------------------
    # Daily window
    # ------------------------------------------------------------------

    def window(self) -> list[date]:
        """Days to sync, newest first."""
        today = self.today or date.today()
        return [today - timedelta(days=i) for i in range(self.days)]

    def _fetch_day(self, session, day: date, pool: ThreadPoolExecutor) -> dict | None:
        summary = self.client.fetch_daily_summary(session, day)
        if not has_daily_data(summary):
            return None
        futures = {
            name: pool.submit(fetch_fn, self.client, session, day)
            for name, fetch_fn in DAY_SUB_FETCHES.items()
        }
        payloads = {name: future.result() for name, future in futures.items()}
        payloads["summary"] = summary
        return payloads

    def sync_days(self) -> tuple[int, int, int]:
        """Upsert daily metrics. Returns (synced, failed, attempted)."""
        synced = failed = 0
        days = self.window()
        with ThreadPoolExecutor(max_workers=len(DAY_SUB_FETCHES)) as pool:
            for day in days:
                try:
                    payloads = self._call(self._fetch_day, day, pool)
                except TransportError as e:
                    logger.warning("  %s: daily summary unavailable: %s", day.isoformat(), e)
                    failed += 1
                    continue
                if payloads is None:
                    logger.debug("  %s: no data", day.isoformat())
                    continue
                record = parse_daily_metric(
                    day,
                    payloads["summary"],
                    sleep=payloads["sleep"],
                    body_battery=payloads["body_battery"],
                    stress=payloads["stress"],
                    hrv=payloads["hrv"],
                )
                with get_connection() as conn:
                    upsert_daily_metric(conn, record)
                synced += 1
        logger.info("  Days: %d synced, %d failed, %d in window", synced, failed, len(days))
        return synced, failed, len(days)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> dict:
        """Run the full sync. Returns {"activities_synced", "days_synced"}."""
        self._reauthenticated = False
        self._ensure_session()

        activities, list_failed = self.sync_activities()
        days, days_failed, days_attempted = self.sync_days()

        if list_failed and days_attempted and days_failed == days_attempted:
            raise TransportError("Garmin Connect unreachable: activity list and every daily summary failed")

        return {"activities_synced": activities, "days_synced": days}
