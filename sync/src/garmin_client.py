"""Garmin Connect API client wrapper with token sessions.

Login goes through garminconnect/garth (SSO sign-in, ticket, OAuth exchange);
the resulting garth token blob is what gets stored as the Session. The sync
engine only sees a Session and the fetch_* methods.

Fetch contract:
    - HTTP 401/403 always raises SessionExpiredError.
    - fetch_activities / fetch_daily_summary raise TransportError on failure.
    - All other fetches are best-effort and return None on any other failure.
    - HTTP 204 or an empty body means "no data" and returns None.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Callable

import requests
from garminconnect import (
    Garmin,
    GarminConnectAuthenticationError,
    GarminConnectConnectionError,
    GarminConnectTooManyRequestsError,
)
from garth.exc import GarthException

from config import GARMIN_API_CALL_DELAY, GARMIN_HTTP_TIMEOUT
from errors import AuthenticationError, SessionExpiredError, TransportError
from session_store import Session, utcnow

logger = logging.getLogger(__name__)

EXPIRED_STATUSES = (401, 403)
RETRY_STATUSES = (429, 500, 502, 503, 504)
RATE_LIMIT_RETRIES = 3

LIBRARY_ERRORS = (
    GarthException,
    GarminConnectAuthenticationError,
    GarminConnectConnectionError,
    GarminConnectTooManyRequestsError,
    requests.RequestException,
)


def _exception_chain(exc: BaseException):
    """Yield exc and every error it wraps (garth .error, __cause__, __context__)."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        inner = getattr(exc, "error", None)
        if isinstance(inner, BaseException):
            exc = inner
        else:
            exc = exc.__cause__ or exc.__context__


def _in_chain(exc: BaseException, types) -> bool:
    return any(isinstance(err, types) for err in _exception_chain(exc))


def _http_response(exc: BaseException) -> requests.Response | None:
    for err in _exception_chain(exc):
        response = getattr(err, "response", None)
        if response is not None and getattr(response, "status_code", None) is not None:
            return response
    return None


def _http_status(exc: BaseException) -> int | None:
    response = _http_response(exc)
    return response.status_code if response is not None else None


def _login_error(exc: BaseException) -> AuthenticationError:
    """Map a failed garminconnect/garth login to an AuthenticationError."""
    for err in _exception_chain(exc):
        if isinstance(err, AuthenticationError):
            return AuthenticationError(str(err), reason=err.reason)

    response = _http_response(exc)
    if response is not None:
        if response.status_code in RETRY_STATUSES:
            return AuthenticationError(
                f"Garmin login unavailable: HTTP {response.status_code}",
                reason=AuthenticationError.TRANSPORT,
            )
        if "sso." in (response.url or ""):
            # Credentials rejected before any ticket was issued
            return AuthenticationError(
                f"Garmin sign-in rejected: HTTP {response.status_code}",
                reason=AuthenticationError.NO_TICKET,
            )
        return AuthenticationError(
            f"Garmin ticket exchange rejected: HTTP {response.status_code}",
            reason=AuthenticationError.NO_SESSION_COOKIE,
        )

    if _in_chain(exc, requests.RequestException):
        return AuthenticationError(f"Login request failed: {exc}", reason=AuthenticationError.TRANSPORT)
    if _in_chain(exc, (GarthException, GarminConnectAuthenticationError)):
        return AuthenticationError(
            f"Garmin sign-in did not return a service ticket: {exc}",
            reason=AuthenticationError.NO_TICKET,
        )
    return AuthenticationError(f"Garmin login failed: {exc}", reason=AuthenticationError.TRANSPORT)


def _mfa_unsupported():
    raise AuthenticationError(
        "Garmin account requires MFA, which unattended sync cannot answer",
        reason=AuthenticationError.NO_TICKET,
    )


class GarminClient:
    """Garmin Connect client built on garminconnect.Garmin."""

    def __init__(
        self,
        timeout: float = None,
        call_delay: float = None,
        rate_limit_wait: float = 30,
        garmin_factory: Callable[..., Garmin] = Garmin,
    ):
        self.timeout = GARMIN_HTTP_TIMEOUT if timeout is None else timeout
        self.call_delay = GARMIN_API_CALL_DELAY if call_delay is None else call_delay
        self.rate_limit_wait = rate_limit_wait
        self._garmin_factory = garmin_factory
        self._lock = threading.Lock()
        self._garmin = None
        self._garmin_token = None

    def _configure(self, garmin: Garmin):
        # Retry transient errors inside garth's own HTTP session
        garmin.garth.configure(
            timeout=self.timeout,
            retries=3,
            status_forcelist=RETRY_STATUSES,
            backoff_factor=2,
        )

    def _use(self, garmin: Garmin, token: str):
        """Make garmin the cached client for token, closing the one it replaces."""
        previous = self._garmin
        self._garmin, self._garmin_token = garmin, token
        if previous is not None and previous is not garmin:
            previous.garth.sess.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> Session:
        """Log in through Garmin SSO and return a token session."""
        garmin = self._garmin_factory(email=username, password=password, prompt_mfa=_mfa_unsupported)
        self._configure(garmin)
        try:
            garmin.login()
        except AuthenticationError:
            garmin.garth.sess.close()
            raise
        except LIBRARY_ERRORS as e:
            garmin.garth.sess.close()
            raise _login_error(e) from e

        if garmin.garth.oauth2_token is None or not garmin.display_name:
            garmin.garth.sess.close()
            raise AuthenticationError(
                "Garmin login did not yield a usable session",
                reason=AuthenticationError.NO_SESSION_COOKIE,
            )

        session = Session(token=garmin.garth.dumps(), created_at=utcnow(), display_name=garmin.display_name)
        with self._lock:
            self._use(garmin, session.token)
        logger.info("Authenticated with Garmin Connect")
        return session

    def _resume(self, session: Session) -> Garmin:
        """Garmin client carrying the session's tokens, reused while the token is unchanged."""
        with self._lock:
            if self._garmin is not None and self._garmin_token == session.token:
                return self._garmin
            garmin = self._garmin_factory()
            self._configure(garmin)
            try:
                garmin.garth.loads(session.token)
            except (ValueError, TypeError, KeyError) as e:
                raise SessionExpiredError("Stored Garmin tokens are unreadable") from e
            garmin.display_name = session.display_name
            self._use(garmin, session.token)
            return garmin

    # ------------------------------------------------------------------
    # Fetch operations
    # ------------------------------------------------------------------

    def _fetch(self, label: str, session: Session, method: str, *args, **kwargs):
        """Call a Garmin method with rate limiting and retry on 429."""
        garmin = self._resume(session)
        for attempt in range(RATE_LIMIT_RETRIES):
            try:
                result = getattr(garmin, method)(*args, **kwargs)
            except LIBRARY_ERRORS as e:
                status = _http_status(e)
                if status in EXPIRED_STATUSES or (
                    status is None and _in_chain(e, GarminConnectAuthenticationError)
                ):
                    raise SessionExpiredError(f"{label} -> HTTP {status or 401}") from e
                rate_limited = status == 429 or _in_chain(e, GarminConnectTooManyRequestsError)
                if rate_limited and attempt < RATE_LIMIT_RETRIES - 1:
                    wait = (attempt + 1) * self.rate_limit_wait
                    logger.warning("Rate limited on %s. Waiting %ss before retry...", label, wait)
                    time.sleep(wait)
                    continue
                raise TransportError(f"{label} failed: {e}") from e
            finally:
                if self.call_delay:
                    time.sleep(self.call_delay)
            return result if result else None
        raise TransportError(f"{label} failed: rate limited")

    def _best_effort(self, label: str, session: Session, method: str, *args, **kwargs):
        try:
            return self._fetch(label, session, method, *args, **kwargs)
        except SessionExpiredError:
            raise
        except TransportError as e:
            logger.warning("  %s unavailable: %s", label, e)
            return None

    def fetch_activities(self, session: Session, limit: int) -> list[dict]:
        """Most recent activity summaries, newest first."""
        data = self._fetch("activity list", session, "get_activities", 0, limit)
        if data is None:
            return []
        if not isinstance(data, list):
            raise TransportError(f"Unexpected activity list payload: {type(data).__name__}")
        return data

    def fetch_activity_detail(self, session: Session, activity_id) -> dict | None:
        return self._best_effort(f"activity {activity_id} detail", session, "get_activity", activity_id)

    def fetch_daily_summary(self, session: Session, day: date) -> dict | None:
        # get_user_summary() indexes the payload, so a 204 would crash it
        return self._fetch(
            f"daily summary {day}",
            session,
            "connectapi",
            f"/usersummary-service/usersummary/daily/{session.display_name}",
            params={"calendarDate": day.isoformat()},
        )

    def fetch_sleep(self, session: Session, day: date) -> dict | None:
        return self._best_effort(f"sleep {day}", session, "get_sleep_data", day.isoformat())

    def fetch_body_battery(self, session: Session, day: date) -> list | None:
        return self._best_effort(
            f"body battery {day}", session, "get_body_battery", day.isoformat(), day.isoformat(),
        )

    def fetch_stress(self, session: Session, day: date) -> dict | None:
        return self._best_effort(f"stress {day}", session, "get_all_day_stress", day.isoformat())

    def fetch_hrv(self, session: Session, day: date) -> dict | None:
        return self._best_effort(f"hrv {day}", session, "get_hrv_data", day.isoformat())
