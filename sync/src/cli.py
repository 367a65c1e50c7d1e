"""Garmin health sync command line.

Usage:
    # Run the scheduler in the foreground (Ctrl+C to stop):
    python3 cli.py serve

    # One manual sync:
    python3 cli.py sync

    # Inspect state:
    python3 cli.py status
    python3 cli.py activities --limit 10
    python3 cli.py daily --limit 7
    python3 cli.py logs

    # Sign in and store the Garmin session, or forget it:
    python3 cli.py login
    python3 cli.py logout
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from config import LOG_LEVEL, credentials_configured
from errors import SyncError
from pipeline import SyncService


def _fmt_time(value) -> str:
    if value is None:
        return "--"
    return value.isoformat(timespec="seconds") if hasattr(value, "isoformat") else str(value)


def _fmt_sleep(seconds) -> str:
    if not seconds:
        return "--"
    return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m"


def _fmt_distance(meters) -> str:
    if meters is None:
        return "--"
    if meters >= 1000:
        return f"{meters / 1000:.2f}km"
    return f"{meters:.0f}m"


def cmd_serve(service: SyncService, args) -> int:
    stop_event = threading.Event()

    def _handle_shutdown(signum, frame):
        print("\nShutdown signal received. Stopping scheduler...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    service.start()
    if args.sync_now:
        try:
            service.trigger_sync()
        except SyncError as e:
            print(f"Initial sync failed: {e}")

    status = service.get_scheduler_status()
    if not status["enabled"]:
        print("Auto-sync is disabled (SYNC_INTERVAL_MINUTES=0); nothing to wait for.")
        return 0
    print(f"Scheduler running, next sync at {_fmt_time(status['next_run_at'])}")
    while not stop_event.wait(1.0):
        pass
    service.stop()
    return 0


def cmd_sync(service: SyncService, args) -> int:
    print("Triggering sync...\n")
    try:
        result = service.trigger_sync()
    except SyncError as e:
        print(f"Sync failed: {e}")
        return 1
    print("Sync complete!")
    print(f"   Activities: {result['activities_synced']}")
    print(f"   Days: {result['days_synced']}")
    print(f"   Log ID: {result['log_id']}\n")
    return 0


def cmd_status(service: SyncService, args) -> int:
    status = service.get_scheduler_status()
    print("\nGarmin Health Sync Status\n")
    print(f"  Garmin configured:    {'yes' if credentials_configured() else 'no'}")
    print(f"  Garmin authenticated: {'yes' if service.is_authenticated() else 'no'}")
    print(f"  Auto-sync interval:   {status['interval_ms'] // 60000}m")

    logs = service.list_recent_sync_logs(5)
    if logs:
        print("\n  Recent syncs:")
        for entry in logs:
            print(f"    [{entry['status']:>7}] {_fmt_time(entry['started_at'])}")
            if entry["details"]:
                print(f"              {entry['details']}")
    print("")
    return 0


def cmd_activities(service: SyncService, args) -> int:
    items = service.list_activities(args.limit)
    print(f"\nLast {len(items)} activities\n")
    for act in items:
        day = act["start_time"].strftime("%b %d") if act["start_time"] else "--"
        name = (act["name"] or "")[:30]
        print(f"  {day:>6} | {(act['activity_type'] or ''):<16} | {name:<32} | {_fmt_distance(act['distance_meters'])}")
    print("")
    return 0


def cmd_daily(service: SyncService, args) -> int:
    items = service.list_daily_metrics(args.limit)
    print(f"\nDaily metrics (last {args.limit} days)\n")
    print("  Date       |  Steps | RHR | Battery | Sleep  | HRV")
    print("  " + "-" * 58)
    for m in items:
        steps = f"{m['steps']:>6}" if m["steps"] is not None else "    --"
        rhr = f"{m['resting_heart_rate']:>3}" if m["resting_heart_rate"] is not None else " --"
        battery = f"{m['body_battery']:>3}%" if m["body_battery"] is not None else "  --"
        print(f"  {m['day']} | {steps} | {rhr} | {battery:>7} | {_fmt_sleep(m['sleep_seconds']):>6} | {m['hrv_status'] or '--'}")
    print("")
    return 0


def cmd_logs(service: SyncService, args) -> int:
    for entry in service.list_recent_sync_logs(args.limit):
        print(
            f"  #{entry['id']:<5} {entry['status']:<8} "
            f"{_fmt_time(entry['started_at'])} -> {_fmt_time(entry['ended_at'])}  {entry['details'] or ''}"
        )
    return 0


def cmd_login(service: SyncService, args) -> int:
    try:
        session = service.login()
    except SyncError as e:
        print(f"Login failed: {e}")
        return 1
    print(f"Logged in to Garmin Connect as {session.display_name or '(unknown)'}.")
    return 0


def cmd_logout(service: SyncService, args) -> int:
    service.logout()
    print("Logged out (stored Garmin session cleared).")
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "sync": cmd_sync,
    "status": cmd_status,
    "activities": cmd_activities,
    "daily": cmd_daily,
    "logs": cmd_logs,
    "login": cmd_login,
    "logout": cmd_logout,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Garmin Connect health sync")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the auto-sync scheduler in the foreground")
    serve.add_argument("--sync-now", action="store_true", help="Sync once before waiting")
    sub.add_parser("sync", help="Trigger a manual sync")
    sub.add_parser("status", help="Show authentication state and recent syncs")
    activities = sub.add_parser("activities", help="List recent activities")
    activities.add_argument("--limit", type=int, default=10)
    daily = sub.add_parser("daily", help="Show recent daily metrics")
    daily.add_argument("--limit", type=int, default=7)
    logs = sub.add_parser("logs", help="Show sync history")
    logs.add_argument("--limit", type=int, default=10)
    sub.add_parser("login", help="Sign in to Garmin Connect and store the session")
    sub.add_parser("logout", help="Clear the stored Garmin session")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(message)s")
    service = SyncService()
    try:
        if args.command != "serve":
            # Another process may be mid-sync; leave its running log alone
            service.prepare(close_stale=False)
        return COMMANDS[args.command](service, args)
    except SyncError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
