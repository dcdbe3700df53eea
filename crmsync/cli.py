"""
crmsync command line.

Usage:
    crmsync sync init                              # one-time Google OAuth consent
    crmsync sync [--initial]                       # run contacts, calendar and gmail once
    crmsync sync contacts|calendar|gmail [--initial]
    crmsync sync reset <service|all>               # unstick a service (keeps its cursor)
    crmsync sync status
    crmsync sync daemon [--interval 1h] [--services all]
    crmsync followups [--limit 10]
    crmsync cadence <contact-id> --days 30 [--strength medium]
    crmsync serve                                  # status API
"""
# Load environment variables from .env FIRST, before settings are read
from dotenv import load_dotenv
load_dotenv()

import argparse
import logging
import sys
from typing import Optional

from config.settings import Settings, settings
from crmsync.services.cadence import CadenceError
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.google_auth import AuthenticationError, get_google_auth
from crmsync.services.importer_base import SyncFailedError
from crmsync.services.interaction_store import InteractionStore
from crmsync.services.sync_daemon import DaemonConfigError, SyncDaemon, parse_interval, parse_services
from crmsync.services.sync_runner import build_sync_runner
from crmsync.services.sync_runs import SyncRunStore
from crmsync.services.sync_state import SERVICES, SyncStateStore, SyncStatus
from crmsync.utils.datetime_utils import format_time_since
from crmsync.utils.db_paths import get_crm_db_path

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    SyncStatus.IDLE: "✓",
    SyncStatus.SYNCING: "!",
    SyncStatus.ERROR: "✗",
}


def open_database(cfg: Settings) -> CRMDatabase:
    return CRMDatabase(get_crm_db_path(cfg))


def cmd_sync_init(args, cfg: Settings) -> int:
    auth = get_google_auth(cfg)
    print("Opening browser for Google authorization...")
    auth.run_consent_flow(port=cfg.oauth_port)
    print(f"✓ Authentication token saved to {auth.token_path}")
    return 0


def cmd_sync_run(args, cfg: Settings) -> int:
    """Run one service, or all three when no service is named."""
    runner = build_sync_runner(cfg, open_database(cfg))

    if args.service:
        try:
            result = runner.run_service(args.service, initial=args.initial)
        except SyncFailedError as e:
            print(f"✗ {e}")
            return 1
        print(f"✓ {args.service}: {result.summary()}")
        return 0

    outcomes = runner.run_all(initial=args.initial)
    failed = 0
    for service, outcome in outcomes.items():
        if outcome.succeeded:
            print(f"✓ {service}: {outcome.result.summary()}")
        else:
            failed += 1
            print(f"✗ {service}: {outcome.error}")
    print(f"\n{len(outcomes) - failed} succeeded, {failed} failed")
    return 1 if failed else 0


def cmd_sync_reset(args, cfg: Settings) -> int:
    store = SyncStateStore(open_database(cfg))
    target = args.target.lower()
    if target == "all":
        count = store.reset_all()
        print(f"Reset {count} service(s) to idle")
        return 0
    if target not in SERVICES:
        print(f"Unknown service '{args.target}' (expected {', '.join(SERVICES)} or all)")
        return 1
    if store.reset(target):
        print(f"Reset {target} to idle")
    else:
        print(f"{target} has never synced")
    return 0


def cmd_sync_status(args, cfg: Settings) -> int:
    db = open_database(cfg)
    states = {s.service: s for s in SyncStateStore(db).list_all()}
    runs = SyncRunStore(db)

    print("Sync status:\n")
    for service in SERVICES:
        state = states.get(service)
        if state is None:
            print(f"  - {service}: never synced")
            continue

        icon = STATUS_ICONS[state.status]
        line = f"  {icon} {service}: {state.status.value}, last sync {format_time_since(state.last_sync_time)}"
        last_run = runs.last_run(service)
        if last_run and last_run.duration_seconds is not None:
            line += f" (took {last_run.duration_seconds:.1f}s)"
        print(line)
        if state.incremental_enabled:
            print("      incremental sync enabled")
        if state.error_message:
            print(f"      error: {state.error_message}")
    return 0


def cmd_sync_daemon(args, cfg: Settings) -> int:
    # Validate before touching credentials or the network
    interval = parse_interval(args.interval)
    services = parse_services(args.services)

    db = open_database(cfg)
    runner = build_sync_runner(cfg, db)
    interactions = InteractionStore(db)

    daemon = SyncDaemon(
        run_service=lambda service: runner.run_service(service, trigger="daemon"),
        services=services,
        interval=interval,
        after_cycle=lambda summary: interactions.refresh_priority_scores(),
    )
    daemon.install_signal_handlers()
    daemon.run()
    return 0


def cmd_followups(args, cfg: Settings) -> int:
    rows = InteractionStore(open_database(cfg)).get_followup_list(limit=args.limit)
    if not rows:
        print("No one is overdue for a follow-up.")
        return 0

    for row in rows:
        days = f"{row.days_since_contact} days ago" if row.days_since_contact is not None else "never"
        print(
            f"  {row.priority_score:6.1f}  {row.name:<30} last contact {days} "
            f"(every {row.cadence_days} days, {row.relationship_strength.value})"
        )
    return 0


def cmd_cadence(args, cfg: Settings) -> int:
    store = InteractionStore(open_database(cfg))
    try:
        cadence = store.set_cadence(args.contact_id, args.days, args.strength)
    except LookupError as e:
        print(str(e))
        return 1
    next_due = cadence.next_followup_date.date().isoformat() if cadence.next_followup_date else "after next interaction"
    print(
        f"Cadence set: every {cadence.cadence_days} days ({cadence.relationship_strength.value}), "
        f"next follow-up {next_due}"
    )
    return 0


def cmd_serve(args, cfg: Settings) -> int:
    import uvicorn
    uvicorn.run("crmsync.main:app", host=cfg.host, port=cfg.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crmsync", description="Sync Google data into the local CRM")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Run or manage provider syncs")
    sync.add_argument("--initial", action="store_true", help="Initial import over the full window")
    sync.set_defaults(func=cmd_sync_run, service=None)
    sync_commands = sync.add_subparsers(dest="sync_command")

    init = sync_commands.add_parser("init", help="Authorize Google access (one-time)")
    init.set_defaults(func=cmd_sync_init)

    for service in SERVICES:
        one = sync_commands.add_parser(service, help=f"Sync {service} once")
        one.add_argument("--initial", action="store_true", help="Initial import over the full window")
        one.set_defaults(func=cmd_sync_run, service=service)

    reset = sync_commands.add_parser("reset", help="Force a service back to idle")
    reset.add_argument("target", help="Service name or 'all'")
    reset.set_defaults(func=cmd_sync_reset)

    status = sync_commands.add_parser("status", help="Show sync status per service")
    status.set_defaults(func=cmd_sync_status)

    daemon = sync_commands.add_parser("daemon", help="Sync on a schedule")
    daemon.add_argument("--interval", default=settings.daemon_interval, help="e.g. 5m, 1h, 1h30m (min 5m)")
    daemon.add_argument("--services", default=settings.daemon_services, help="Comma-separated list or 'all'")
    daemon.set_defaults(func=cmd_sync_daemon)

    followups = commands.add_parser("followups", help="List contacts overdue for follow-up")
    followups.add_argument("--limit", type=int, default=10)
    followups.set_defaults(func=cmd_followups)

    cadence = commands.add_parser("cadence", help="Set a contact's follow-up cadence")
    cadence.add_argument("contact_id")
    cadence.add_argument("--days", type=int, required=True)
    cadence.add_argument("--strength", choices=["weak", "medium", "strong"])
    cadence.set_defaults(func=cmd_cadence)

    serve = commands.add_parser("serve", help="Run the sync status API")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None, cfg: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = cfg or settings

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, cfg.log_level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    try:
        return args.func(args, cfg)
    except AuthenticationError as e:
        print(f"Error: {e}")
        return 1
    except (DaemonConfigError, CadenceError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
