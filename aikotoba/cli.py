"""
aikotoba command line.

    aikotoba serve [--host H] [--port P]   run the vault HTTP API
    aikotoba migrate [--dry-run|--status]  bring the schema up to date
    aikotoba sweep                         publish entries whose grace period ran out
    aikotoba consume [--max-iterations N]  fill in-app inboxes from vault events
    aikotoba audit [--entry ID] [--limit N]
    aikotoba version
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import UTC, datetime

from aikotoba.config import get_config


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _build_parser() -> argparse.ArgumentParser:
    api = get_config().api
    parser = argparse.ArgumentParser(prog="aikotoba", description="Keyword notes behind a guessable passcode.")
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("migrate", help="Apply pending SQL migrations")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Only list what would be applied")
    mode.add_argument("--status", action="store_true", help="Show every migration and its state")

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default=api.host)
    p.add_argument("--port", type=int, default=api.port)

    sub.add_parser("sweep", help="Publish entries whose grace period expired")

    p = sub.add_parser("consume", help="Run the inbox consumer")
    p.add_argument("--max-iterations", type=int, default=None, help="Stop after N reads")

    p = sub.add_parser("audit", help="Print recent audit rows as JSON lines")
    p.add_argument("--entry", help="Only rows for this entry id")
    p.add_argument("--type", dest="event_type", help="Only this event type, e.g. vault.stolen")
    p.add_argument("--limit", type=int, default=20)

    sub.add_parser("version", help="Show version")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from aikotoba import __version__

        print(f"aikotoba {__version__}")
        return 0

    commands = {
        "migrate": _cmd_migrate,
        "serve": _cmd_serve,
        "sweep": _cmd_sweep,
        "consume": _cmd_consume,
        "audit": _cmd_audit,
    }
    if args.command not in commands:
        parser.print_help()
        return 0
    _setup_logging()
    return commands[args.command](args)


def _cmd_migrate(args: argparse.Namespace) -> int:
    from aikotoba.db import migrate

    try:
        if args.status:
            for row in migrate.status():
                when = row.applied_at.isoformat() if row.applied_at else "-"
                print(f"{row.version:<6} {row.status:<8} {when:<32} {row.filename}")
            return 0
        versions = migrate.apply(dry_run=args.dry_run)
    except Exception as e:
        print(f"Error: Migration failed: {e}")
        print(f"Database: {get_config().db.describe()} (set AIKOTOBA_DB_* to change)")
        return 1

    if not versions:
        print("Schema is up to date.")
    else:
        verb = "Would apply" if args.dry_run else "Applied"
        print(f"{verb} {len(versions)} migration(s): {', '.join(versions)}")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is not installed; it ships with the aikotoba package dependencies.")
        return 1

    uvicorn.run("aikotoba.api.app:app", host=args.host, port=args.port)
    return 0


def _cmd_sweep(_args: argparse.Namespace) -> int:
    from aikotoba.events.bus import publish
    from aikotoba.vault import build_service
    from aikotoba.vault.errors import StoreUnavailable

    started = datetime.now(UTC)
    try:
        published = build_service().sweep_expired_grace(now=started)
    except StoreUnavailable as e:
        print(f"Error: entry store unavailable: {e}")
        return 1
    publish(
        "system",
        "system.sweep",
        {"entry_ids": published, "count": len(published), "ran_at": started.isoformat()},
        event_id=f"sweep:{started.isoformat()}",
        source="aikotoba.cli",
    )
    print(f"Expired {len(published)} grace period(s).")
    return 0


def _cmd_consume(args: argparse.Namespace) -> int:
    from aikotoba.events.consumers.inbox import InboxConsumer

    InboxConsumer().run(max_iterations=args.max_iterations)
    return 0


def _cmd_audit(args: argparse.Namespace) -> int:
    from aikotoba.audit.logger import query_log

    try:
        records = query_log(entry_id=args.entry, event_type=args.event_type, limit=args.limit)
    except Exception as e:
        print(f"Error: cannot read audit log: {e}")
        return 1
    for record in records:
        print(json.dumps(record.to_dict(), ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
