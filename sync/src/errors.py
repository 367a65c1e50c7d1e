"""Exception types raised by the sync engine."""


class SyncError(Exception):
    """Base class for every error the sync engine reports."""


class ConfigurationError(SyncError):
    """Credentials (or another required setting) are missing."""


class AuthenticationError(SyncError):
    """The Garmin Connect login handshake failed.

    ``reason`` says which step broke so callers can report it; the attempt
    is terminal either way and is never retried internally.
    """

    NO_TICKET = "no_ticket"
    NO_SESSION_COOKIE = "no_session_cookie"
    TRANSPORT = "transport"

    def __init__(self, message: str, reason: str = NO_TICKET):
        super().__init__(message)
        self.reason = reason


class SessionExpiredError(SyncError):
    """Garmin answered 401/403: the stored session is no longer accepted."""


class TransportError(SyncError):
    """Network failure, timeout or unexpected HTTP response."""


class PersistenceError(SyncError):
    """A database read or write failed."""


class SyncInProgressError(SyncError):
    """A manual trigger arrived while a sync was already running."""
