"""
storage/keys.py -- Single source of truth for object key naming.

Every key the directory and the room tracker read or write is built here, so
a migration to a different store (or a different layout) is a change to one
class. Callers pass already-normalized handles and repository parts.

Layout under the configurable prefix (default "orbit"):
  {prefix}/users/{handle}.json
  {prefix}/indices/{waitlist|approved|denied}.json
  {prefix}/metadata/stats.json
  {prefix}/sessions/{owner}/{repo}/active.json
"""

from __future__ import annotations

from dataclasses import dataclass

from core.models import UserStatus

# The waitlisted index predates the status enum and keeps its short name.
_INDEX_NAMES: dict[UserStatus, str] = {
    UserStatus.waitlisted: "waitlist",
    UserStatus.approved: "approved",
    UserStatus.denied: "denied",
}


@dataclass(frozen=True)
class KeyLayout:
    prefix: str = "orbit"

    @property
    def users_prefix(self) -> str:
        return f"{self.prefix}/users/"

    def user(self, handle: str) -> str:
        return f"{self.users_prefix}{handle}.json"

    def index(self, status: UserStatus) -> str:
        return f"{self.prefix}/indices/{_INDEX_NAMES[status]}.json"

    @property
    def stats(self) -> str:
        return f"{self.prefix}/metadata/stats.json"

    def room(self, owner: str, repo: str) -> str:
        return f"{self.prefix}/sessions/{owner}/{repo}/active.json"

    def is_user_key(self, key: str) -> bool:
        return key.startswith(self.users_prefix) and key.endswith(".json")
