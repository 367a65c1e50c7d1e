"""Persisted Garmin Connect session (garth token blob) with a bounded lifetime."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from config import SESSION_TTL_DAYS
from db import delete_meta, get_connection, get_meta, set_meta

logger = logging.getLogger(__name__)

SESSION_META_KEY = "garmin_session"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """Authenticated Garmin Connect session.

    Attributes:
        token:        garth token dump (OAuth1 + OAuth2), opaque to the sync engine.
        created_at:   UTC time the handshake completed.
        display_name: Garmin user handle needed by per-user wellness endpoints.
    """

    token: str
    created_at: datetime = field(default_factory=utcnow)
    display_name: str | None = None

    def to_json(self) -> str:
        return json.dumps({
            "token": self.token,
            "created_at": self.created_at.isoformat(),
            "display_name": self.display_name,
        })

    @classmethod
    def from_json(cls, raw: str) -> Session:
        data = json.loads(raw)
        created_at = datetime.fromisoformat(data["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            token=data["token"],
            created_at=created_at,
            display_name=data.get("display_name"),
        )


class SessionStore:
    """Load, save and clear the single stored session in the meta table."""

    def __init__(self, ttl: timedelta | None = None, clock: Callable[[], datetime] = utcnow):
        self.ttl = ttl if ttl is not None else timedelta(days=SESSION_TTL_DAYS)
        self.clock = clock

    def is_valid(self, session: Session, now: datetime | None = None) -> bool:
        """A session is valid while now < created_at + ttl."""
        now = now or self.clock()
        return now < session.created_at + self.ttl

    def load(self) -> Session | None:
        """Return the stored session if present and unexpired, else None."""
        with get_connection() as conn:
            raw = get_meta(conn, SESSION_META_KEY)
        if raw is None:
            return None
        try:
            session = Session.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable stored session: %s", e)
            return None
        if not self.is_valid(session):
            logger.info("Stored session from %s has expired", session.created_at.isoformat())
            return None
        return session

    def save(self, session: Session):
        with get_connection() as conn:
            set_meta(conn, SESSION_META_KEY, session.to_json())

    def clear(self):
        with get_connection() as conn:
            delete_meta(conn, SESSION_META_KEY)
