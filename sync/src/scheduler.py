"""Background sync scheduler.

Triggers the sync callback every ``interval_ms`` and on manual request,
with at most one sync in flight. States:

    stopped  -- no timer armed
    armed    -- timer pending for next_run_at
    running  -- a sync is executing right now

A failed run never stops the schedule: the error is reported through the
``on_error`` callback and the ``sync:error`` event, and the next run is
still armed. Timer and clock are injectable so the state machine can be
tested without real waiting.

Events (register with ``on(event, callback)``):
    started      {"interval_ms": int}
    stopped      None
    sync:start   None
    sync:success {"timestamp": datetime, "result": ...}
    sync:error   Exception
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

STOPPED = "stopped"
ARMED = "armed"
RUNNING = "running"

EVENTS = ("started", "stopped", "sync:start", "sync:success", "sync:error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _thread_timer(delay_seconds: float, callback: Callable[[], None]):
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    timer.start()
    return timer


def format_interval(ms: int) -> str:
    hours = ms / (60 * 60 * 1000)
    if hours >= 1:
        return f"{round(hours)}h"
    return f"{round(ms / (60 * 1000))}m"


class SyncScheduler:
    """Run ``on_sync`` on a fixed interval and on demand."""

    def __init__(
        self,
        interval_ms: int,
        on_sync: Callable[[], Any],
        on_error: Callable[[Exception], None] | None = None,
        timer_factory: Callable[[float, Callable[[], None]], Any] = _thread_timer,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            interval_ms:   Delay between runs; <= 0 keeps the scheduler disabled.
            on_sync:       Callable doing one sync; its return value is kept as last_result.
            on_error:      Called with the exception of a failed run.
            timer_factory: (delay_seconds, callback) -> started timer with cancel().
            clock:         Returns the current aware datetime.
        """
        self.interval_ms = interval_ms
        self._on_sync = on_sync
        self._on_error = on_error
        self._timer_factory = timer_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Callable]] = {name: [] for name in EVENTS}

        self._enabled = False
        self._running = False
        self._timer = None
        self._generation = 0
        self.last_run_at: datetime | None = None
        self.next_run_at: datetime | None = None
        self.last_result: Any = None
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable):
        if event not in self._listeners:
            raise ValueError(f"Unknown scheduler event: {event}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable):
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def _emit(self, event: str, payload: Any = None):
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception("[scheduler] %s listener failed", event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        if self._running:
            return RUNNING
        if self._enabled:
            return ARMED
        return STOPPED

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        with self._lock:
            return {
                "enabled": self._enabled,
                "state": self.state,
                "interval_ms": self.interval_ms,
                "last_run_at": self.last_run_at,
                "next_run_at": self.next_run_at,
                "is_running": self._running,
                "last_error": self.last_error,
            }

    def _cancel_timer_locked(self):
        # Any callback from a replaced timer is now stale
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_next_locked(self):
        if not self._enabled:
            self.next_run_at = None
            return
        self._cancel_timer_locked()
        self.next_run_at = self._clock() + timedelta(milliseconds=self.interval_ms)
        generation = self._generation
        self._timer = self._timer_factory(
            self.interval_ms / 1000.0, lambda: self._on_timer(generation)
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self):
        """stopped -> armed. No-op if already enabled."""
        if self.interval_ms <= 0:
            logger.info("[scheduler] Auto-sync disabled (interval is 0)")
            return
        with self._lock:
            if self._enabled:
                return
            self._enabled = True
            # A run already in flight arms the timer when it finishes
            if not self._running:
                self._schedule_next_locked()
        self._emit("started", {"interval_ms": self.interval_ms})
        logger.info("[scheduler] Auto-sync enabled (interval: %s)", format_interval(self.interval_ms))

    def stop(self):
        """Cancel the pending timer. A sync already running is not interrupted."""
        with self._lock:
            if not self._enabled:
                return
            self._cancel_timer_locked()
            self._enabled = False
            self.next_run_at = None
        self._emit("stopped")
        logger.info("[scheduler] Auto-sync disabled")

    def trigger_now(self):
        """Run a sync immediately in the calling thread.

        Returns the sync result, or None if a sync was already running (the
        trigger is dropped, not queued). A failing sync is recorded and
        reported like a scheduled one, then re-raised to the caller.
        """
        with self._lock:
            if self._running:
                logger.info("[scheduler] Sync already running, trigger ignored")
                return None
            self._cancel_timer_locked()
            self.next_run_at = None
            self._running = True
        return self._execute(reraise=True)

    def _on_timer(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            if not self._enabled or self._running:
                return
            self._running = True
        logger.info("[scheduler] Running scheduled sync...")
        self._execute(reraise=False)

    def _execute(self, reraise: bool):
        self._emit("sync:start")
        try:
            result = self._on_sync()
        except Exception as e:
            with self._lock:
                self.last_run_at = self._clock()
                self.last_error = str(e)
                self._running = False
                self._schedule_next_locked()
            logger.error("[scheduler] Sync failed: %s", e)
            self._emit("sync:error", e)
            if self._on_error is not None:
                try:
                    self._on_error(e)
                except Exception:
                    logger.exception("[scheduler] on_error callback failed")
            if reraise:
                raise
            return None

        with self._lock:
            self.last_run_at = self._clock()
            self.last_result = result
            self.last_error = None
            self._running = False
            self._schedule_next_locked()
        self._emit("sync:success", {"timestamp": self.last_run_at, "result": result})
        logger.info("[scheduler] Sync completed")
        return result
