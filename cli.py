#!/usr/bin/env python3
"""Command line tools for the Fluxus wallet backend and local session keys"""

import argparse
import asyncio
import sys
import time
from datetime import datetime, timezone
from typing import List

from fluxus.config import settings
from fluxus.core.wallet import (
    SessionExpirySweeper,
    SessionKeyManager,
    SessionRecord,
    get_session_manager,
)
from fluxus.logging_config import setup_logging
from fluxus.services.units import format_units


def print_sessions(sessions: List[SessionRecord]) -> None:
    if not sessions:
        print("No active sessions. Transfers require passkey confirmation.")
        return

    now = int(time.time())
    print(f"\n{'ID':<38} {'Remaining':>12} {'Limit':>12} {'Expires in':>11}  Recipients")
    print("-" * 100)
    for session in sessions:
        seconds_left = max(session.expires_at_sec - now, 0)
        recipients = ", ".join(session.allowed_recipients) or "any"
        print(
            f"{session.id:<38} "
            f"{format_units(session.remaining_spend):>12} "
            f"{format_units(session.spend_limit):>12} "
            f"{_format_duration(seconds_left):>11}  {recipients}"
        )


def _format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "expired"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m{secs:02d}s"


async def _manager() -> SessionKeyManager:
    manager = get_session_manager()
    await manager.store.load()
    return manager


async def cli_list() -> int:
    manager = await _manager()
    print_sessions(manager.list_sessions())
    return 0


async def cli_revoke(session_id: str) -> int:
    manager = await _manager()
    if await manager.revoke_session(session_id):
        print(f"Revoked session {session_id}")
        return 0
    print(f"No session {session_id}")
    return 1


async def cli_revoke_all() -> int:
    manager = await _manager()
    count = await manager.revoke_all_sessions()
    print(f"Revoked {count} session(s)")
    return 0


async def cli_cleanup(watch: bool) -> int:
    manager = await _manager()
    if not watch:
        removed = await manager.cleanup_expired()
        print(f"Removed {removed} expired session(s)")
        return 0

    def notify(removed: int) -> None:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        print(f"[{stamp}] Your session has expired. {removed} session(s) removed.")

    print("Watching for expired sessions (Ctrl+C to stop)")
    async with SessionExpirySweeper(manager, on_expired=notify):
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass
    return 0


def cli_serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run(
        "fluxus.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fluxus wallet tools")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the passkey mapping registry API")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)
    serve.add_argument("--reload", action="store_true")

    sessions = sub.add_parser("sessions", help="Inspect and manage local session keys")
    session_sub = sessions.add_subparsers(dest="action", required=True)
    session_sub.add_parser("list", help="List active sessions")
    revoke = session_sub.add_parser("revoke", help="Revoke one session")
    revoke.add_argument("session_id")
    session_sub.add_parser("revoke-all", help="Revoke every session")
    cleanup = session_sub.add_parser("cleanup", help="Remove expired sessions")
    cleanup.add_argument("--watch", action="store_true", help="Keep sweeping every interval")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return cli_serve(args.host, args.port, args.reload)

    setup_logging("WARNING", stream=sys.stderr)
    try:
        if args.action == "list":
            return asyncio.run(cli_list())
        if args.action == "revoke":
            return asyncio.run(cli_revoke(args.session_id))
        if args.action == "revoke-all":
            return asyncio.run(cli_revoke_all())
        if args.action == "cleanup":
            return asyncio.run(cli_cleanup(args.watch))
    except KeyboardInterrupt:
        print("\nStopped")
        return 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
