"""
directory/store.py -- The Orbit user directory (applicant waitlist).

Pattern: Repository + Data Mapper over a KeyValueStore. UserDirectory is the
repository; _record_to_user / _user_to_record / _record_to_stats are the
mappers. Nothing outside this module knows how a user is laid out in the
object store, and every key comes from storage.keys.KeyLayout.

Derived state:
  Status indexes -- one JSON array of handles per status. A user's status
      matches exactly one index membership.
  Stats -- counts recomputed from the three index sizes (never adjusted by
      deltas, so a replayed step cannot double count).

Status transitions (approve_user / deny_user) follow a fixed write order:
  1. load user (UserNotFoundError if absent)
  2. set status            3. persist user
  4. remove from previous index            5. persist that index
  6. recompute + persist stats
  7. add to new index      8. persist that index
  9. recompute + persist stats
The object store offers no multi-key transaction, so a failure between steps
leaves the indexes behind the user record. That failure is logged and
re-raised, never masked. reconcile() is the repair pass: it rebuilds every
index and the stats from the user records.

Concurrency:
  Every write path holds the per-handle lock for its whole sequence, and all
  index/stats read-modify-writes additionally hold one directory-wide index
  lock. Both are in-process only; two processes sharing a bucket still race
  (last write wins) and rely on reconcile().

Security:
  [S1] Deserialization is closed. Records are rebuilt field by field; keys
       such as "__proto__" or "constructor" in stored JSON are ignored and
       never reach the returned User.
  [S2] get_user_by_token() compares tokens with hmac.compare_digest.
  [S3] Handles are stored verbatim apart from lowercasing. HTML escaping is
       the presentation layer's job; "/" is rejected because the handle is
       part of an object key.

Layer rule: directory/ may import from core/ and storage/ only.
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from core.errors import (
    BackendError,
    BlobNotFoundError,
    CorruptRecordError,
    UserNotFoundError,
    ValidationError,
)
from core.models import Stats, User, UserStatus
from directory.locks import KeyedLock
from directory.repo_url import parse_repo_url
from storage.base import KeyValueStore
from storage.keys import KeyLayout

logger = logging.getLogger("orbit.directory")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_handle(handle: str) -> str:
    """Lowercase lookup key for a GitHub handle [S3]."""
    if not isinstance(handle, str) or not handle.strip():
        raise ValidationError("Handle is required.")
    normalized = handle.strip().lower()
    if "/" in normalized or "\\" in normalized:
        raise ValidationError("Handle contains a path separator.")
    return normalized


# ---------------------------------------------------------------------------
# Data mappers [S1]
# ---------------------------------------------------------------------------


def _decode_json(key: str, data: bytes) -> Any:
    try:
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptRecordError(key, f"invalid JSON ({exc.__class__.__name__})") from None


def _required_str(key: str, record: dict, name: str) -> str:
    value = record.get(name)
    if not isinstance(value, str) or not value:
        raise CorruptRecordError(key, f"field {name!r} missing or not a string")
    return value


def _optional_str(key: str, record: dict, name: str) -> Optional[str]:
    value = record.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise CorruptRecordError(key, f"field {name!r} is not a string")
    return value


def _record_to_user(key: str, data: bytes) -> User:
    record = _decode_json(key, data)
    if not isinstance(record, dict):
        raise CorruptRecordError(key, "user record is not an object")
    try:
        status = UserStatus(record.get("status"))
    except ValueError:
        raise CorruptRecordError(key, "unknown status") from None

    raw_metadata = record.get("metadata") or {}
    if not isinstance(raw_metadata, dict):
        raise CorruptRecordError(key, "metadata is not an object")
    # Metadata is opaque but flat: only string values survive the mapper.
    metadata = {str(k): v for k, v in raw_metadata.items() if isinstance(v, str)}

    # Older records stored the login under githubHandle.
    handle = record.get("handle", record.get("githubHandle"))
    if not isinstance(handle, str) or not handle:
        raise CorruptRecordError(key, "field 'handle' missing or not a string")

    return User(
        id=_required_str(key, record, "id"),
        handle=handle.lower(),
        status=status,
        created_at=_required_str(key, record, "createdAt"),
        updated_at=_required_str(key, record, "updatedAt"),
        email=_optional_str(key, record, "email"),
        credential_token=_optional_str(key, record, "credentialToken"),
        metadata=metadata,
    )


def _user_to_record(user: User) -> bytes:
    record = {
        "id": user.id,
        "handle": user.handle,
        "email": user.email,
        "status": user.status.value,
        "credentialToken": user.credential_token,
        "metadata": dict(user.metadata),
        "createdAt": user.created_at,
        "updatedAt": user.updated_at,
    }
    return json.dumps(record).encode("utf-8")


def _record_to_stats(key: str, data: bytes) -> Stats:
    record = _decode_json(key, data)
    if not isinstance(record, dict):
        raise CorruptRecordError(key, "stats record is not an object")
    counts = {}
    for name in ("totalWaitlisted", "totalApproved", "totalDenied"):
        value = record.get(name, 0)
        if not isinstance(value, int) or isinstance(value, bool):
            raise CorruptRecordError(key, f"field {name!r} is not an integer")
        counts[name] = value
    return Stats(
        total_waitlisted=counts["totalWaitlisted"],
        total_approved=counts["totalApproved"],
        total_denied=counts["totalDenied"],
        last_updated=_optional_str(key, record, "lastUpdated") or "",
    )


def _stats_to_record(stats: Stats) -> bytes:
    return json.dumps(
        {
            "totalWaitlisted": stats.total_waitlisted,
            "totalApproved": stats.total_approved,
            "totalDenied": stats.total_denied,
            "lastUpdated": stats.last_updated,
        }
    ).encode("utf-8")


def _record_to_index(key: str, data: bytes) -> list[str]:
    values = _decode_json(key, data)
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise CorruptRecordError(key, "index is not a list of handles")
    # Ordered set: first occurrence wins.
    return list(dict.fromkeys(values))


@dataclass
class ReconcileReport:
    """What reconcile() changed. Empty lists mean the indexes were consistent."""

    users_scanned: int = 0
    added: list[tuple[str, str]] = field(default_factory=list)  # (status, handle)
    removed: list[tuple[str, str]] = field(default_factory=list)  # (status, handle)
    skipped_keys: list[str] = field(default_factory=list)
    stats: Stats = field(default_factory=Stats)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserDirectory:
    """Repository for waitlist users, their status indexes, and stats.

    Usage:
        directory = UserDirectory(SqlBlobStore())
        user = await directory.create_or_update_user("Octocat", email="o@example.com")
        await directory.approve_user("octocat")
        approved = await directory.get_users_by_status(UserStatus.approved)
    """

    parse_repo_url = staticmethod(parse_repo_url)

    def __init__(
        self,
        store: KeyValueStore,
        keys: KeyLayout | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._store = store
        self._keys = keys or KeyLayout()
        self._clock = clock
        self._handle_locks = KeyedLock()
        self._index_lock = asyncio.Lock()

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_or_update_user(
        self,
        handle: str,
        email: Optional[str] = None,
        token: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> User:
        """Insert a waitlisted user, or refresh an existing one.

        On update, id, status, and created_at are preserved; email, token,
        and metadata are overwritten only when passed (metadata is merged).
        """
        normalized = normalize_handle(handle)
        async with self._handle_locks.hold(normalized):
            existing = await self.get_user(normalized)
            now = self._now_iso()

            if existing is not None:
                if email:
                    existing.email = email
                if token:
                    existing.credential_token = token
                if metadata:
                    existing.metadata.update({k: v for k, v in metadata.items() if isinstance(v, str)})
                existing.updated_at = now
                await self._put_user(existing)
                return existing

            user = User(
                id=str(uuid.uuid4()),
                handle=normalized,
                status=UserStatus.waitlisted,
                created_at=now,
                updated_at=now,
                email=email or None,
                credential_token=token or None,
                metadata={k: v for k, v in (metadata or {}).items() if isinstance(v, str)},
            )
            await self._put_user(user)
            step = "add to waitlisted index"
            try:
                async with self._index_lock:
                    await self._add_to_index(UserStatus.waitlisted, normalized)
                    step = "refresh stats"
                    await self._refresh_stats()
            except BackendError:
                # A retry takes the update branch and will not index the user.
                logger.error(
                    "New user %s was stored but step '%s' failed; "
                    "indexes may be inconsistent until reconcile() runs",
                    normalized,
                    step,
                )
                raise
            logger.info("User %s added to waitlist", normalized)
            return user

    async def get_user(self, handle: str) -> Optional[User]:
        """Return the user, or None when no record exists.

        Only a not-found condition maps to None. Corrupt data raises
        CorruptRecordError and backend failures raise BackendError.
        """
        key = self._keys.user(normalize_handle(handle))
        try:
            data = await self._store.get(key)
        except BlobNotFoundError:
            return None
        return _record_to_user(key, data)

    async def get_user_by_token(self, token: str) -> Optional[User]:
        """Find the user whose stored credential token equals token.

        There is no token index: every user key is listed and fetched in
        turn, so this is O(total users). Acceptable at waitlist volume.
        """
        if not token:
            return None
        candidate = token.encode("utf-8")
        for key in await self._store.list(self._keys.users_prefix):
            if not self._keys.is_user_key(key):
                continue
            try:
                user = _record_to_user(key, await self._store.get(key))
            except BlobNotFoundError:
                continue
            except CorruptRecordError as exc:
                logger.warning("Skipping corrupt user record %s: %s", key, exc.reason)
                continue
            if user.credential_token and hmac.compare_digest(user.credential_token.encode("utf-8"), candidate):
                return user
        return None

    async def get_users_by_status(self, status: UserStatus | str) -> list[User]:
        """Return every user referenced by the status index, in index order.

        Dangling entries (no record) and corrupt records are omitted with a
        warning rather than failing the listing. Backend I/O errors propagate.
        """
        status = UserStatus(status)
        handles = await self._read_index(status)

        async def _load(handle: str) -> Optional[User]:
            try:
                user = await self.get_user(handle)
            except CorruptRecordError as exc:
                logger.warning("Omitting %s from %s listing: %s", handle, status.value, exc.reason)
                return None
            except ValidationError:
                logger.warning("Omitting malformed handle %r from %s index", handle, status.value)
                return None
            if user is None:
                logger.warning("Index %s references missing user %s", status.value, handle)
            return user

        users = await asyncio.gather(*(_load(h) for h in handles))
        return [u for u in users if u is not None]

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def approve_user(self, handle: str) -> User:
        return await self._transition(handle, UserStatus.approved)

    async def deny_user(self, handle: str) -> User:
        return await self._transition(handle, UserStatus.denied)

    async def _transition(self, handle: str, target: UserStatus) -> User:
        normalized = normalize_handle(handle)
        async with self._handle_locks.hold(normalized):
            user = await self.get_user(normalized)
            if user is None:
                raise UserNotFoundError()
            if user.status == target:
                return user

            previous = user.status
            user.status = target
            user.updated_at = self._now_iso()
            step = "persist user"
            try:
                await self._put_user(user)
                async with self._index_lock:
                    step = f"remove from {previous.value} index"
                    await self._remove_from_index(previous, normalized)
                    step = "refresh stats"
                    await self._refresh_stats()
                    step = f"add to {target.value} index"
                    await self._add_to_index(target, normalized)
                    step = "refresh stats"
                    await self._refresh_stats()
            except BackendError:
                logger.error(
                    "Status transition %s -> %s for %s failed at step '%s'; "
                    "indexes may be inconsistent until reconcile() runs",
                    previous.value,
                    target.value,
                    normalized,
                    step,
                )
                raise
            logger.info("User %s moved from %s to %s", normalized, previous.value, target.value)
            return user

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_stats(self) -> Stats:
        key = self._keys.stats
        try:
            data = await self._store.get(key)
        except BlobNotFoundError:
            return Stats(last_updated=self._now_iso())
        return _record_to_stats(key, data)

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileReport:
        """Rebuild the three status indexes and the stats from user records.

        Existing index order is kept for handles that stay; newly indexed
        handles are appended in key order. Corrupt user records are reported
        in skipped_keys and left out of every index.
        """
        report = ReconcileReport()
        expected: dict[UserStatus, list[str]] = {s: [] for s in UserStatus}
        for key in await self._store.list(self._keys.users_prefix):
            if not self._keys.is_user_key(key):
                continue
            try:
                user = _record_to_user(key, await self._store.get(key))
            except BlobNotFoundError:
                continue
            except CorruptRecordError as exc:
                logger.warning("reconcile: skipping corrupt record %s: %s", key, exc.reason)
                report.skipped_keys.append(key)
                continue
            report.users_scanned += 1
            expected[user.status].append(user.handle)

        async with self._index_lock:
            for status in UserStatus:
                current = await self._read_index(status)
                wanted = set(expected[status])
                kept = [h for h in current if h in wanted]
                appended = [h for h in expected[status] if h not in set(current)]
                report.removed.extend((status.value, h) for h in current if h not in wanted)
                report.added.extend((status.value, h) for h in appended)
                rebuilt = kept + appended
                if rebuilt != current:
                    await self._write_index(status, rebuilt)
            report.stats = await self._refresh_stats()

        if report.changed:
            logger.warning("reconcile repaired indexes: added=%s removed=%s", report.added, report.removed)
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _put_user(self, user: User) -> None:
        await self._store.put(self._keys.user(user.handle), _user_to_record(user))

    async def _read_index(self, status: UserStatus) -> list[str]:
        key = self._keys.index(status)
        try:
            data = await self._store.get(key)
        except BlobNotFoundError:
            return []
        return _record_to_index(key, data)

    async def _write_index(self, status: UserStatus, handles: list[str]) -> None:
        await self._store.put(self._keys.index(status), json.dumps(handles).encode("utf-8"))

    async def _add_to_index(self, status: UserStatus, handle: str) -> None:
        handles = await self._read_index(status)
        if handle not in handles:
            handles.append(handle)
            await self._write_index(status, handles)

    async def _remove_from_index(self, status: UserStatus, handle: str) -> None:
        handles = await self._read_index(status)
        if handle in handles:
            await self._write_index(status, [h for h in handles if h != handle])

    async def _refresh_stats(self) -> Stats:
        stats = Stats(
            total_waitlisted=len(await self._read_index(UserStatus.waitlisted)),
            total_approved=len(await self._read_index(UserStatus.approved)),
            total_denied=len(await self._read_index(UserStatus.denied)),
            last_updated=self._now_iso(),
        )
        await self._store.put(self._keys.stats, _stats_to_record(stats))
        return stats


__all__ = ["ReconcileReport", "UserDirectory", "normalize_handle"]
