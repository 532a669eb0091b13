#!/usr/bin/env python3
"""
Orbit -- operator console for the waitlist directory.

Works directly against the blob store configured in the environment, so it
can be run on the server host without going through the HTTP admin routes.

Usage:
  python main.py list
  python main.py list --status approved
  python main.py approve octocat
  python main.py deny octocat
  python main.py stats
  python main.py reconcile
  python main.py room https://github.com/owner/repo

Environment variables:
  BLOB_STORE_URL   SQLAlchemy URL of the blob store (default: local SQLite file)
  BLOB_KEY_PREFIX  Key prefix inside the store (default: orbit)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Optional

from core.config import get_settings
from core.errors import OrbitError
from core.models import User, UserStatus
from directory.rooms import RoomSessionTracker
from directory.store import UserDirectory
from storage.keys import KeyLayout
from storage.sql import SqlBlobStore


def _print_users(title: str, users: list[User]) -> None:
    print(f"\n{title} ({len(users)})")
    print("─" * 40)
    for user in users:
        email = f"  <{user.email}>" if user.email else ""
        print(f"  {user.handle:<24} {user.updated_at}{email}")


async def _run(args: argparse.Namespace, directory: UserDirectory, rooms: RoomSessionTracker) -> int:
    if args.command == "list":
        statuses = [UserStatus(args.status)] if args.status else list(UserStatus)
        for status in statuses:
            _print_users(status.value.capitalize(), await directory.get_users_by_status(status))
        print()
        return 0

    if args.command in ("approve", "deny"):
        if args.command == "approve":
            user = await directory.approve_user(args.handle)
        else:
            user = await directory.deny_user(args.handle)
        print(f"  {user.handle} is now {user.status.value}.")
        return 0

    if args.command == "stats":
        stats = await directory.get_stats()
        print(
            json.dumps(
                {
                    "totalWaitlisted": stats.total_waitlisted,
                    "totalApproved": stats.total_approved,
                    "totalDenied": stats.total_denied,
                    "lastUpdated": stats.last_updated,
                },
                indent=2,
            )
        )
        return 0

    if args.command == "reconcile":
        report = await directory.reconcile()
        print(f"  Scanned {report.users_scanned} user record(s).")
        for status, handle in report.added:
            print(f"  + {status}: {handle}")
        for status, handle in report.removed:
            print(f"  - {status}: {handle}")
        for key in report.skipped_keys:
            print(f"  [!] corrupt record skipped: {key}")
        if not report.changed:
            print("  Indexes already consistent.")
        return 0

    if args.command == "room":
        room = await rooms.get_room(args.repo_url)
        if room is None:
            print(f"  No room for {args.repo_url}.")
            return 1
        print(f"  {room.owner}/{room.repo} (last activity {room.last_activity})")
        for handle in room.active_users:
            print(f"    {handle}")
        return 0

    return 2


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="orbit-admin",
        description="Manage the Orbit waitlist directory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py list --status waitlisted
  python main.py approve octocat
  BLOB_STORE_URL=sqlite:////srv/orbit/blobs.db python main.py stats
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    list_cmd = sub.add_parser("list", help="List users, grouped by status")
    list_cmd.add_argument(
        "--status",
        choices=[s.value for s in UserStatus],
        default=None,
        help="Only list users in this status",
    )
    approve_cmd = sub.add_parser("approve", help="Approve a GitHub handle")
    approve_cmd.add_argument("handle", metavar="HANDLE")
    deny_cmd = sub.add_parser("deny", help="Deny a GitHub handle")
    deny_cmd.add_argument("handle", metavar="HANDLE")
    sub.add_parser("stats", help="Print aggregate counts as JSON")
    sub.add_parser("reconcile", help="Rebuild status indexes and stats from user records")
    room_cmd = sub.add_parser("room", help="Show who has joined a repository room")
    room_cmd.add_argument("repo_url", metavar="REPO_URL")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    settings = get_settings()
    store = SqlBlobStore(settings.blob_store_url)
    keys = KeyLayout(prefix=settings.blob_key_prefix)
    try:
        return asyncio.run(_run(args, UserDirectory(store, keys=keys), RoomSessionTracker(store, keys=keys)))
    except OrbitError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
