"""
auth/tokens.py -- Room tokens for the collaboration signaling server.

A room token proves that a GitHub user may join the room for one repository
and branch from one device. It is an HS256 JWT signed with SECRET_KEY and
carries:
  sub         GitHub login
  repository  "owner/repo"
  branch      defaults to "main"
  device_id   caller-supplied device identifier
  permissions {canJoin, canEdit, canAdmin} from the repository's GitHub
              permissions (push -> canEdit, admin -> canAdmin)
  iss, iat, exp

A refresh token (type="refresh", 7 days by default) is issued alongside.

Security notes:
  [M6] SECRET_KEY is validated by core.config (>= 32 chars).
  [R1] decode_room_token() returns None on ANY failure, including a refresh
       token presented as an access token. The route turns None into 401.
  [R2] Repository access is re-checked against GitHub on every issue; a
       token is never minted from the caller's claims alone.

Layer rule: no imports from api/ or storage/. From directory/ only the pure
repo_url parser is used. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import RepoPermissions
from auth.provider import OAuthProvider
from core.config import get_settings
from core.errors import RepoAccessDeniedError, ValidationError
from core.models import RepoRef
from directory.repo_url import parse_repo_url

logger = logging.getLogger("orbit.auth.tokens")

_ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def create_room_token(
    login: str,
    repo: RepoRef,
    branch: str,
    device_id: str,
    permissions: RepoPermissions,
    now: datetime | None = None,
) -> dict:
    """Sign an access/refresh pair. Returns the response-shaped dict."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": login,
        "repository": repo.slug,
        "branch": branch,
        "device_id": device_id,
        "permissions": {
            "canJoin": permissions.can_join,
            "canEdit": permissions.can_edit,
            "canAdmin": permissions.can_admin,
        },
        "iat": now,
        "exp": now + timedelta(seconds=settings.room_token_expire_seconds),
        "iss": settings.room_token_issuer,
    }
    refresh = {
        "sub": login,
        "repository": repo.slug,
        "type": "refresh",
        "iat": now,
        "exp": now + timedelta(seconds=settings.room_refresh_token_expire_seconds),
        "iss": settings.room_token_issuer,
    }
    return {
        "access_token": jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM),
        "refresh_token": jwt.encode(refresh, settings.secret_key, algorithm=_ALGORITHM),
        "token_type": "Bearer",
        "expires_in": settings.room_token_expire_seconds,
        "scope": f"repo:{repo.slug}:{branch}",
        "permissions": payload["permissions"],
        "user": {"login": login},
    }


def decode_room_token(token: str) -> dict | None:
    """Verify a room access token. Returns the payload or None [R1]."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[_ALGORITHM],
            issuer=settings.room_token_issuer,
        )
    except JWTError:
        return None
    if payload.get("type") == "refresh":
        return None
    if "repository" not in payload or "permissions" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Issue (GitHub-verified) [R2]
# ---------------------------------------------------------------------------


async def issue_room_token(
    provider: OAuthProvider,
    github_token: str,
    repository: str,
    device_id: str,
    branch: str = "main",
) -> dict:
    """Verify identity and repository access upstream, then sign a room token.

    Raises ValidationError for missing input, InvalidRepoUrlError for an
    unparseable repository, UpstreamError when GitHub rejects the token and
    RepoAccessDeniedError when the repository is not visible to the caller.
    """
    if not repository or not github_token or not device_id:
        raise ValidationError("Missing required parameters: repository, github_token, and device_id")
    ref = parse_repo_url(repository)
    branch = branch or "main"

    profile = await provider.fetch_profile(github_token)
    permissions = await provider.fetch_repo_permissions(github_token, ref.owner, ref.repo)
    if permissions is None:
        logger.info("Room token refused: %s has no access to %s", profile.login, ref.slug)
        raise RepoAccessDeniedError()

    logger.info("Room token issued for %s on %s:%s", profile.login, ref.slug, branch)
    return create_room_token(profile.login, ref, branch, device_id, permissions)
