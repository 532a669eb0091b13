"""
auth/provider.py -- Upstream OAuth provider client (GitHub).

The flow depends on the OAuthProvider protocol; GitHubProvider implements it
with authlib's AsyncOAuth2Client (httpx transport), so every upstream call
suspends the current task instead of blocking a thread.

Supported calls:
  authorize_url()    -- build the browser redirect (no network I/O)
  exchange_code()    -- POST login/oauth/access_token with client_id/secret
  fetch_profile()    -- GET /user, falling back to /user/emails for the email
  fetch_repo_permissions() -- GET /repos/{owner}/{repo} for room tokens

Security notes:
  [H1] When the profile has no public email, only an entry that is both
       primary AND verified on /user/emails is accepted. An unverified
       address could belong to someone else.
  [U1] Every failure (transport error, non-2xx, OAuth error body, malformed
       JSON) is raised as UpstreamError with a generic message. The provider's
       own error text is logged, never returned to the caller.
  [U2] Calls are bounded by UPSTREAM_TIMEOUT_SECONDS.

Layer rule: no imports from api/, directory/, or storage/. Import from core/
is allowed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import urlencode

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from auth.models import ProviderProfile, RepoPermissions
from core.config import Settings
from core.errors import UpstreamError

logger = logging.getLogger("orbit.auth.provider")

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
GITHUB_API_BASE = "https://api.github.com/"


def _json_of(resp: httpx.Response, expected: type) -> Any:
    """Decode a GitHub JSON body, raising ValueError unless it is of the expected type."""
    body = resp.json()
    if not isinstance(body, expected):
        raise ValueError(f"expected a JSON {expected.__name__}, got {type(body).__name__}")
    return body


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@runtime_checkable
class OAuthProvider(Protocol):
    def authorize_url(self, state: str, force_reauth: bool = False) -> str: ...

    async def exchange_code(self, code: str) -> dict[str, Any]: ...

    async def fetch_profile(self, access_token: str) -> ProviderProfile: ...

    async def fetch_repo_permissions(self, access_token: str, owner: str, repo: str) -> Optional[RepoPermissions]: ...


class GitHubProvider:
    """GitHub OAuth App client.

    Usage:
        provider = GitHubProvider.from_settings(get_settings())
        url = provider.authorize_url(state)
        token = await provider.exchange_code(code)
        profile = await provider.fetch_profile(token["access_token"])
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scope: str = "read:user user:email repo",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, redirect_uri: str | None = None) -> "GitHubProvider":
        """Build the CLI-flow client, or the browser sign-up client when redirect_uri is given."""
        return cls(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            redirect_uri=redirect_uri or settings.cli_callback_url,
            scope=settings.github_scope,
            timeout=settings.upstream_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self._client_secret)

    def _client(self, token: dict | None = None) -> AsyncOAuth2Client:
        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self._client_secret,
            redirect_uri=self.redirect_uri,
            token=token,
            token_endpoint_auth_method="client_secret_post",
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Authorization redirect
    # ------------------------------------------------------------------

    def authorize_url(self, state: str, force_reauth: bool = False) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": self.scope,
        }
        if force_reauth:
            # Shows the account picker so the user can re-grant repository access.
            params["prompt"] = "select_account"
        return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for a token dict containing access_token."""
        try:
            async with self._client() as client:
                token = await client.fetch_token(GITHUB_ACCESS_TOKEN_URL, code=code)
        except OAuthError as exc:
            logger.warning("GitHub rejected the code exchange: %s", exc.error)
            raise UpstreamError() from None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GitHub code exchange failed: %s", exc.__class__.__name__)
            raise UpstreamError() from None
        if not token.get("access_token"):
            logger.warning("GitHub token response carried no access_token")
            raise UpstreamError()
        return dict(token)

    # ------------------------------------------------------------------
    # Profile [H1]
    # ------------------------------------------------------------------

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        token = {"access_token": access_token, "token_type": "bearer"}
        try:
            async with self._client(token=token) as client:
                resp = await client.get(GITHUB_API_BASE + "user", headers={"Accept": "application/vnd.github+json"})
                resp.raise_for_status()
                profile = _json_of(resp, dict)
                email = _str_or_none(profile.get("email")) or await self._primary_verified_email(client)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GitHub profile fetch failed: %s", exc.__class__.__name__)
            raise UpstreamError() from None

        login = profile.get("login")
        if not isinstance(login, str) or not login:
            logger.warning("GitHub profile response had no login")
            raise UpstreamError()
        return ProviderProfile(
            login=login,
            id=profile.get("id") if isinstance(profile.get("id"), int) else None,
            email=email,
            name=_str_or_none(profile.get("name")),
            avatar_url=_str_or_none(profile.get("avatar_url")),
            company=_str_or_none(profile.get("company")),
            location=_str_or_none(profile.get("location")),
        )

    async def _primary_verified_email(self, client: AsyncOAuth2Client) -> Optional[str]:
        resp = await client.get(GITHUB_API_BASE + "user/emails", headers={"Accept": "application/vnd.github+json"})
        if resp.status_code in (403, 404):
            # Token lacks the user:email scope; the profile is still usable.
            return None
        resp.raise_for_status()
        for entry in _json_of(resp, list):
            if isinstance(entry, dict) and entry.get("primary") and entry.get("verified"):
                return _str_or_none(entry.get("email"))
        return None

    # ------------------------------------------------------------------
    # Repository access (room tokens)
    # ------------------------------------------------------------------

    async def fetch_repo_permissions(self, access_token: str, owner: str, repo: str) -> Optional[RepoPermissions]:
        """Return the caller's permissions on owner/repo, or None if not visible."""
        token = {"access_token": access_token, "token_type": "bearer"}
        try:
            async with self._client(token=token) as client:
                resp = await client.get(
                    f"{GITHUB_API_BASE}repos/{owner}/{repo}",
                    headers={"Accept": "application/vnd.github+json"},
                )
                if resp.status_code in (403, 404):
                    return None
                resp.raise_for_status()
                permissions = _json_of(resp, dict).get("permissions") or {}
                if not isinstance(permissions, dict):
                    raise ValueError("permissions is not an object")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GitHub repository lookup failed: %s", exc.__class__.__name__)
            raise UpstreamError() from None
        return RepoPermissions(
            can_join=True,
            can_edit=bool(permissions.get("push")),
            can_admin=bool(permissions.get("admin")),
        )
