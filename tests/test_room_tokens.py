"""Unit tests for auth/tokens.py -- room token signing and verification.

Covers:
- create_room_token() claims and scope string
- decode_room_token() rejects expired, tampered, refresh, and foreign-issuer tokens
- issue_room_token() re-checks GitHub identity and repository access
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import RepoPermissions
from auth.tokens import create_room_token, decode_room_token, issue_room_token
from core.config import get_settings
from core.errors import InvalidRepoUrlError, OrbitError, RepoAccessDeniedError, UpstreamError, ValidationError
from core.models import RepoRef

REPO = RepoRef("octo", "hello")


class TestCreateAndDecode:
    def test_claims(self):
        issued = create_room_token("octocat", REPO, "main", "laptop-1", RepoPermissions(can_edit=True))
        payload = decode_room_token(issued["access_token"])
        assert payload["sub"] == "octocat"
        assert payload["repository"] == "octo/hello"
        assert payload["branch"] == "main"
        assert payload["device_id"] == "laptop-1"
        assert payload["permissions"] == {"canJoin": True, "canEdit": True, "canAdmin": False}
        assert payload["iss"] == get_settings().room_token_issuer
        assert payload["exp"] - payload["iat"] == get_settings().room_token_expire_seconds
        assert issued["scope"] == "repo:octo/hello:main"

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        issued = create_room_token("octocat", REPO, "main", "d", RepoPermissions(), now=past)
        assert decode_room_token(issued["access_token"]) is None

    def test_refresh_token_rejected(self):
        issued = create_room_token("octocat", REPO, "main", "d", RepoPermissions())
        assert decode_room_token(issued["refresh_token"]) is None

    def test_tampered_token_rejected(self):
        token = create_room_token("octocat", REPO, "main", "d", RepoPermissions())["access_token"]
        header, payload, signature = token.split(".")
        flipped = signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")
        assert decode_room_token(".".join([header, payload, flipped])) is None

    def test_wrong_key_or_issuer_rejected(self):
        now = datetime.now(timezone.utc)
        claims = {"sub": "x", "repository": "octo/hello", "permissions": {}, "iat": now, "exp": now + timedelta(hours=1)}
        foreign_key = jwt.encode({**claims, "iss": get_settings().room_token_issuer}, "k" * 40, algorithm="HS256")
        foreign_iss = jwt.encode({**claims, "iss": "someone-else"}, get_settings().secret_key, algorithm="HS256")
        assert decode_room_token(foreign_key) is None
        assert decode_room_token(foreign_iss) is None

    def test_garbage_rejected(self):
        assert decode_room_token("not-a-jwt") is None


class TestIssue:
    @pytest.mark.asyncio
    async def test_issue_uses_upstream_identity(self, provider):
        issued = await issue_room_token(provider, "gho_x", "git@github.com:octo/hello.git", "laptop-1")
        payload = decode_room_token(issued["access_token"])
        assert payload["sub"] == "Octocat"
        assert payload["branch"] == "main"
        assert issued["user"] == {"login": "Octocat"}

    @pytest.mark.asyncio
    async def test_no_repository_access(self, provider):
        provider.repo_permissions[("octo", "hidden")] = None
        with pytest.raises(OrbitError) as exc_info:
            await issue_room_token(provider, "gho_x", "octo/hidden", "laptop-1")
        assert isinstance(exc_info.value, RepoAccessDeniedError)
        assert (exc_info.value.code, exc_info.value.status_code) == ("repo_access_denied", 403)

    @pytest.mark.asyncio
    async def test_rejected_github_token(self, provider):
        provider.rejected_tokens.add("gho_bad")
        with pytest.raises(UpstreamError):
            await issue_room_token(provider, "gho_bad", "octo/hello", "laptop-1")

    @pytest.mark.asyncio
    async def test_validation(self, provider):
        with pytest.raises(ValidationError):
            await issue_room_token(provider, "", "octo/hello", "laptop-1")
        with pytest.raises(InvalidRepoUrlError):
            await issue_room_token(provider, "gho_x", "not a repo", "laptop-1")
