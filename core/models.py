"""
core/models.py -- Domain dataclasses for the Orbit user directory.

Pattern: Data class (pure data containers, zero logic). The record mappers
that translate persisted JSON into these shapes live next to the stores that
read them (directory/store.py, directory/rooms.py), the same way a
Repository owns its Data Mapper.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UserStatus(str, Enum):
    waitlisted = "waitlisted"
    approved = "approved"
    denied = "denied"


@dataclass
class User:
    """An applicant on the Orbit waitlist.

    handle is the normalized (lowercase) GitHub login and doubles as the
    storage key. id is generated once on first write and never changes.
    credential_token is the GitHub access token last presented by the user;
    it is what get_user_by_token() matches against.
    """

    id: str
    handle: str
    status: UserStatus
    created_at: str  # ISO 8601 UTC
    updated_at: str  # ISO 8601 UTC
    email: Optional[str] = None
    credential_token: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class Stats:
    """Aggregate waitlist counters, derived from the status index sizes."""

    total_waitlisted: int = 0
    total_approved: int = 0
    total_denied: int = 0
    last_updated: str = ""


@dataclass
class RoomSession:
    """Presence record for one repository.

    owner and repo are normalized to lowercase; repo_url keeps the URL the
    room was first opened with. active_users only grows.
    """

    repo_url: str
    owner: str
    repo: str
    active_users: list[str] = field(default_factory=list)
    created_at: str = ""
    last_activity: str = ""


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"
