"""
auth/models.py -- Domain dataclasses for the CLI authorization flow.

Pattern: Data class (pure data containers, zero logic), mirroring
core/models.py. The flow and the session store do the work.

Layer rule: no imports from api/, directory/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    """Observable states of an AuthSession.

    CONSUMED and EXPIRED are not stored: both are observed as "session not
    found", because consumption and expiry delete the entry.
    """

    pending = "PENDING"
    code_received = "CODE_RECEIVED"


@dataclass(frozen=True)
class AuthSession:
    """One in-flight CLI login, keyed by the client-chosen state value.

    Frozen so the store can hand out instances without copying and
    compare_and_set() can compare by value.

    exchanging is True while a token exchange holds the upstream call; a
    second exchange for the same state sees authorization_pending.
    """

    code_challenge: str
    created_at: float  # epoch seconds
    code: Optional[str] = None
    exchanging: bool = False

    @property
    def state(self) -> SessionState:
        return SessionState.code_received if self.code else SessionState.pending


@dataclass
class ProviderProfile:
    """The subset of the provider's user profile the flow returns."""

    login: str
    id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None

    def as_metadata(self) -> dict[str, str]:
        fields = {
            "avatarUrl": self.avatar_url,
            "name": self.name,
            "company": self.company,
            "location": self.location,
        }
        return {k: v for k, v in fields.items() if v}


@dataclass
class RepoPermissions:
    can_join: bool = True
    can_edit: bool = False
    can_admin: bool = False


@dataclass
class StartResult:
    auth_url: str
    expires_in: int


@dataclass
class CallbackResult:
    """Rendered outcome of the provider redirect."""

    status_code: int
    outcome: str  # "success" | "expired" | "failed"
    html: str


@dataclass
class TokenGrant:
    access_token: str
    user: ProviderProfile
    token_type: str = "bearer"
    scope: str = ""
    extra: dict = field(default_factory=dict)
