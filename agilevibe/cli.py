"""Command line entry point: relay server, schema migration and room inspection."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace

from agilevibe.backend.config import BackendSettings, load_settings
from agilevibe.backend.logging_config import configure_logging
from agilevibe.backend.models import Role
from agilevibe.backend.session import RoomSession
from agilevibe.backend.store import create_store


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="agilevibe", description="AgileVibe planning poker")
    parser.add_argument("--room", default=None, help="room id (defaults to AGILEVIBE_ROOM_ID)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="run the websocket relay")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    subparsers.add_parser("migrate", help="create the PostgreSQL tables")
    subparsers.add_parser("status", help="print the room summary once")

    watch = subparsers.add_parser("watch", help="follow the room, optionally joining it")
    watch.add_argument("--name", default="")
    watch.add_argument("--role", choices=[role.value for role in Role], default=Role.OBSERVER.value)
    watch.add_argument("--team", default=None)
    return parser.parse_args(argv)


def run_serve(settings: BackendSettings, host: str | None, port: int | None) -> int:
    import uvicorn

    uvicorn.run(
        "agilevibe.backend.api:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def run_migrate(settings: BackendSettings) -> int:
    from agilevibe.backend.migrate import apply_schema

    if not settings.database_url:
        print("AGILEVIBE_DATABASE_URL is required for migration.", file=sys.stderr)
        return 1
    apply_schema(settings.database_url)
    return 0


def run_status(settings: BackendSettings) -> int:
    session = RoomSession(create_store(settings.database_url), settings.room_id, liveness_window=settings.liveness_window)
    session.open()
    try:
        print(json.dumps(session.summary(), indent=2))
    finally:
        session.close()
    return 0 if session.online else 2


async def _watch(session: RoomSession, name: str, role: Role, team: str | None) -> None:
    session.open()
    if name and session.me is None:
        session.join(name, role, team)
    stop = asyncio.Event()
    runner = asyncio.create_task(session.run(stop))
    last_printed = ""
    try:
        while not runner.done():
            rendered = json.dumps(session.summary(), indent=2)
            if rendered != last_printed:
                print(rendered, flush=True)
                last_printed = rendered
            await asyncio.sleep(session.poll_interval)
    finally:
        stop.set()
        await runner


def run_watch(settings: BackendSettings, name: str, role: str, team: str | None) -> int:
    session = RoomSession.from_settings(settings)
    try:
        asyncio.run(_watch(session, name, Role(role), team))
    except KeyboardInterrupt:
        session.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    if args.room:
        settings = replace(settings, room_id=args.room)
    configure_logging(settings.log_level)

    if args.command == "serve":
        return run_serve(settings, args.host, args.port)
    if args.command == "migrate":
        return run_migrate(settings)
    if args.command == "status":
        return run_status(settings)
    return run_watch(settings, args.name, args.role, args.team)


if __name__ == "__main__":
    raise SystemExit(main())
