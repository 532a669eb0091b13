"""
directory/rooms.py -- Presence tracking per repository.

A room is one RoomSession record per normalized (owner, repo). Joining adds
the handle once and refreshes last_activity; there is no leave operation and
no eviction, so active_users only grows. Stale rooms are recognizable by
last_activity.

Joins on the same room are serialized in-process with a keyed lock so two
concurrent joins cannot drop each other's handle.

Layer rule: directory/ may import from core/ and storage/ only.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from core.errors import BlobNotFoundError, CorruptRecordError
from core.models import RoomSession
from directory.locks import KeyedLock
from directory.repo_url import parse_repo_url
from directory.store import normalize_handle
from storage.base import KeyValueStore
from storage.keys import KeyLayout

logger = logging.getLogger("orbit.rooms")


def _record_to_room(key: str, data: bytes) -> RoomSession:
    try:
        record = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise CorruptRecordError(key, "invalid JSON") from None
    if not isinstance(record, dict):
        raise CorruptRecordError(key, "room record is not an object")
    users = record.get("activeUsers", [])
    if not isinstance(users, list) or not all(isinstance(u, str) for u in users):
        raise CorruptRecordError(key, "activeUsers is not a list of handles")
    fields = {}
    for name in ("repoUrl", "owner", "repo", "createdAt", "lastActivity"):
        value = record.get(name, "")
        if not isinstance(value, str):
            raise CorruptRecordError(key, f"field {name!r} is not a string")
        fields[name] = value
    return RoomSession(
        repo_url=fields["repoUrl"],
        owner=fields["owner"],
        repo=fields["repo"],
        active_users=list(dict.fromkeys(users)),
        created_at=fields["createdAt"],
        last_activity=fields["lastActivity"],
    )


def _room_to_record(room: RoomSession) -> bytes:
    return json.dumps(
        {
            "repoUrl": room.repo_url,
            "owner": room.owner,
            "repo": room.repo,
            "activeUsers": room.active_users,
            "createdAt": room.created_at,
            "lastActivity": room.last_activity,
        }
    ).encode("utf-8")


class RoomSessionTracker:
    def __init__(
        self,
        store: KeyValueStore,
        keys: KeyLayout | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._keys = keys or KeyLayout()
        self._clock = clock
        self._room_locks = KeyedLock()

    async def add_user_to_room(self, repo_url: str, handle: str) -> RoomSession:
        """Record handle as present in the room for repo_url.

        Raises InvalidRepoUrlError for an unparseable URL and ValidationError
        for an empty handle.
        """
        ref = parse_repo_url(repo_url)
        member = normalize_handle(handle)
        owner, repo = ref.owner.lower(), ref.repo.lower()
        key = self._keys.room(owner, repo)

        async with self._room_locks.hold(key):
            now = self._clock().isoformat()
            room = await self._load(key)
            if room is None:
                room = RoomSession(repo_url=repo_url, owner=owner, repo=repo, created_at=now)
                logger.info("Room %s/%s opened by %s", owner, repo, member)
            if member not in room.active_users:
                room.active_users.append(member)
            room.last_activity = now
            await self._store.put(key, _room_to_record(room))
            return room

    async def get_room(self, repo_url: str) -> Optional[RoomSession]:
        ref = parse_repo_url(repo_url)
        return await self._load(self._keys.room(ref.owner.lower(), ref.repo.lower()))

    async def get_room_users(self, repo_url: str) -> list[str]:
        room = await self.get_room(repo_url)
        return list(room.active_users) if room else []

    async def _load(self, key: str) -> Optional[RoomSession]:
        try:
            data = await self._store.get(key)
        except BlobNotFoundError:
            return None
        return _record_to_room(key, data)
