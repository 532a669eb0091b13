"""
API request and response models for the Orbit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Request fields that the domain layer validates itself (state, code_challenge,
code_verifier) default to "" rather than being required, so a missing value
reaches the flow and comes back as an OAuth-style error instead of a 422.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import ProviderProfile, TokenGrant
from core.models import RoomSession, Stats, User

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class OAuthErrorResponse(BaseModel):
    """Flat RFC 6749 style error used by the CLI start/token endpoints."""

    model_config = ConfigDict(frozen=True)

    error: str
    error_description: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# CLI authorization
# ---------------------------------------------------------------------------


class CliStartRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code_challenge: str = Field(default="", max_length=256)
    state: str = Field(default="", max_length=1024)
    force_reauth: bool = False


class CliStartResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    auth_url: str
    expires_in: int


class CliTokenRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    state: str = Field(default="", max_length=1024)
    code_verifier: str = Field(default="", max_length=256)


class ProviderUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: ProviderProfile) -> "ProviderUser":
        return cls(login=profile.login, id=profile.id, email=profile.email, name=profile.name)


class CliTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    scope: str
    user: ProviderUser

    @classmethod
    def from_grant(cls, grant: TokenGrant) -> "CliTokenResponse":
        return cls(
            access_token=grant.access_token,
            token_type=grant.token_type,
            scope=grant.scope,
            user=ProviderUser.from_profile(grant.user),
        )


class RoomTokenRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    repository: str = Field(default="", max_length=512)
    branch: str = Field(default="main", max_length=255)
    github_token: str = Field(default="", max_length=512)
    device_id: str = Field(default="", max_length=255)


class RoomPermissions(BaseModel):
    model_config = ConfigDict(frozen=True)

    canJoin: bool
    canEdit: bool
    canAdmin: bool


class RoomTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    scope: str
    permissions: RoomPermissions
    user: dict[str, str]


class RoomTokenVerifyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = True
    payload: dict


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class UserStatusEnum(str, Enum):
    waitlisted = "waitlisted"
    approved = "approved"
    denied = "denied"


class WaitlistAction(str, Enum):
    approve = "approve"
    deny = "deny"


class UserResponse(BaseModel):
    """Public view of a directory record. The credential token never leaves."""

    model_config = ConfigDict(frozen=True)

    id: str
    githubHandle: str
    email: Optional[str] = None
    status: UserStatusEnum
    metadata: dict[str, str] = Field(default_factory=dict)
    createdAt: str
    updatedAt: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            githubHandle=user.handle,
            email=user.email,
            status=user.status.value,
            metadata=dict(user.metadata),
            createdAt=user.created_at,
            updatedAt=user.updated_at,
        )


class StatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    totalWaitlisted: int
    totalApproved: int
    totalDenied: int
    lastUpdated: str

    @classmethod
    def from_stats(cls, stats: Stats) -> "StatsResponse":
        return cls(
            totalWaitlisted=stats.total_waitlisted,
            totalApproved=stats.total_approved,
            totalDenied=stats.total_denied,
            lastUpdated=stats.last_updated,
        )


class WaitlistUsers(BaseModel):
    model_config = ConfigDict(frozen=True)

    waitlisted: list[UserResponse]
    approved: list[UserResponse]
    denied: list[UserResponse]


class WaitlistResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    stats: StatsResponse
    users: WaitlistUsers


class WaitlistByStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]


class WaitlistActionRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    githubHandle: str = Field(min_length=1, max_length=255)
    action: WaitlistAction


class WaitlistActionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    user: UserResponse


class ReconcileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    usersScanned: int
    added: dict[str, list[str]]
    removed: dict[str, list[str]]
    skippedKeys: list[str]
    stats: StatsResponse


class AuthStatusResponse(BaseModel):
    """GET /orbit/auth/status. status is "new" when no record matches."""

    model_config = ConfigDict(frozen=True)

    status: str
    githubHandle: Optional[str] = None
    email: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


class RoomJoinRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    repoUrl: str = Field(min_length=1, max_length=512)


class RoomResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    repoUrl: str
    owner: str
    repo: str
    activeUsers: list[str]
    createdAt: str
    lastActivity: str

    @classmethod
    def from_room(cls, room: RoomSession) -> "RoomResponse":
        return cls(
            repoUrl=room.repo_url,
            owner=room.owner,
            repo=room.repo,
            activeUsers=list(room.active_users),
            createdAt=room.created_at,
            lastActivity=room.last_activity,
        )
