"""
auth/sessions.py -- TTL-expiring store for CLI authorization sessions.

AuthSessionStore is the interface the flow depends on; InMemoryAuthSessionStore
is the process-local implementation. A multi-instance deployment swaps in a
shared cache implementing the same five methods -- the single-use contract
(delete on consume) and compare_and_set() semantics must carry over.

Expiry is enforced twice:
  - lazily: get() and compare_and_set() treat an entry older than the TTL
    exactly like a missing one (and drop it), so expiry never depends on the
    sweep having run;
  - periodically: sweep() deletes every expired entry. The API lifespan runs
    it once per sweep interval (60 s by default).

All access goes through one asyncio.Lock. Request handlers and the sweep run
as separate tasks on the same loop; none of the critical sections await
anything but the lock, so no task ever observes a half-applied update.

Usage:
    sessions = InMemoryAuthSessionStore(ttl_seconds=300)
    await sessions.set(state, AuthSession(code_challenge=c, created_at=time.time()))
    session = await sessions.get(state)      # None once expired
    removed = await sessions.sweep()         # call periodically
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Optional, Protocol, runtime_checkable

from auth.models import AuthSession

_DEFAULT_TTL = 5 * 60  # seconds


@runtime_checkable
class AuthSessionStore(Protocol):
    ttl_seconds: int

    async def get(self, state: str) -> Optional[AuthSession]: ...

    async def set(self, state: str, session: AuthSession) -> None: ...

    async def delete(self, state: str) -> Optional[AuthSession]: ...

    async def compare_and_set(self, state: str, expected: AuthSession, new: AuthSession) -> bool: ...

    async def sweep(self) -> int: ...


class InMemoryAuthSessionStore:
    def __init__(self, ttl_seconds: int = _DEFAULT_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._lock = asyncio.Lock()

    def _expired(self, session: AuthSession, now: float) -> bool:
        return now - session.created_at > self.ttl_seconds

    async def get(self, state: str) -> Optional[AuthSession]:
        """Return the live session for state, or None if absent or expired."""
        async with self._lock:
            session = self._sessions.get(state)
            if session is None:
                return None
            if self._expired(session, self._clock()):
                del self._sessions[state]
                return None
            return session

    async def set(self, state: str, session: AuthSession) -> None:
        async with self._lock:
            self._sessions[state] = session

    async def delete(self, state: str) -> Optional[AuthSession]:
        """Remove and return the session. None if nothing was stored."""
        async with self._lock:
            return self._sessions.pop(state, None)

    async def compare_and_set(self, state: str, expected: AuthSession, new: AuthSession) -> bool:
        """Replace the session only if it still equals expected and is live."""
        async with self._lock:
            current = self._sessions.get(state)
            if current is None or current != expected:
                return False
            if self._expired(current, self._clock()):
                del self._sessions[state]
                return False
            self._sessions[state] = new
            return True

    async def sweep(self) -> int:
        """Delete every expired session. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            stale = [state for state, s in self._sessions.items() if self._expired(s, now)]
            for state in stale:
                del self._sessions[state]
            return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)
