"""Unit tests for auth/provider.py -- the GitHub OAuth client.

The provider is exercised against httpx.MockTransport, so no request leaves
the process.

Covers:
- authorize_url(): parameters and force_reauth prompt
- exchange_code(): success, OAuth error body, HTTP failure -> UpstreamError
- fetch_profile(): public email, primary+verified fallback, unverified ignored
- fetch_repo_permissions(): push/admin mapping, 404 -> None
- JSON bodies of the wrong shape -> UpstreamError
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth.provider import GitHubProvider
from core.errors import UpstreamError


def _provider(handler) -> GitHubProvider:
    return GitHubProvider(
        client_id="cid",
        client_secret="csecret",
        redirect_uri="http://localhost:8000/api/v1/auth/cli/callback",
        transport=httpx.MockTransport(handler),
    )


class TestAuthorizeUrl:
    def test_parameters(self):
        url = _provider(lambda r: httpx.Response(500)).authorize_url("st-1")
        parsed = urlparse(url)
        assert parsed.netloc == "github.com"
        params = parse_qs(parsed.query)
        assert params["client_id"] == ["cid"]
        assert params["state"] == ["st-1"]
        assert params["scope"] == ["read:user user:email repo"]
        assert params["redirect_uri"] == ["http://localhost:8000/api/v1/auth/cli/callback"]
        assert "prompt" not in params

    def test_force_reauth(self):
        url = _provider(lambda r: httpx.Response(500)).authorize_url("st-1", force_reauth=True)
        assert parse_qs(urlparse(url).query)["prompt"] == ["select_account"]


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "gho_ok", "token_type": "bearer", "scope": "repo"})

        token = await _provider(handler).exchange_code("the-code")
        assert token["access_token"] == "gho_ok"
        assert seen["url"] == "https://github.com/login/oauth/access_token"
        assert seen["body"]["code"] == ["the-code"]
        assert seen["body"]["client_id"] == ["cid"]

    @pytest.mark.asyncio
    async def test_error_body_is_upstream_error(self):
        def handler(request):
            return httpx.Response(200, json={"error": "bad_verification_code", "error_description": "expired"})

        with pytest.raises(UpstreamError) as exc_info:
            await _provider(handler).exchange_code("stale")
        assert "expired" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(UpstreamError):
            await _provider(handler).exchange_code("code")


class TestFetchProfile:
    @pytest.mark.asyncio
    async def test_public_email(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer gho_x"
            return httpx.Response(200, json={"login": "octocat", "id": 1, "email": "o@example.com", "name": "Octo"})

        profile = await _provider(handler).fetch_profile("gho_x")
        assert (profile.login, profile.email, profile.name) == ("octocat", "o@example.com", "Octo")

    @pytest.mark.asyncio
    async def test_primary_verified_fallback(self):
        def handler(request):
            if request.url.path == "/user":
                return httpx.Response(200, json={"login": "octocat", "id": 1, "email": None})
            return httpx.Response(
                200,
                json=[
                    {"email": "unverified@example.com", "primary": True, "verified": False},
                    {"email": "other@example.com", "primary": False, "verified": True},
                ],
            )

        profile = await _provider(handler).fetch_profile("gho_x")
        assert profile.email is None

        def handler_ok(request):
            if request.url.path == "/user":
                return httpx.Response(200, json={"login": "octocat", "id": 1})
            return httpx.Response(200, json=[{"email": "p@example.com", "primary": True, "verified": True}])

        assert (await _provider(handler_ok).fetch_profile("gho_x")).email == "p@example.com"

    @pytest.mark.asyncio
    async def test_bad_token_is_upstream_error(self):
        with pytest.raises(UpstreamError):
            await _provider(lambda r: httpx.Response(401, json={"message": "Bad credentials"})).fetch_profile("nope")


class TestRepoPermissions:
    @pytest.mark.asyncio
    async def test_maps_push_and_admin(self):
        def handler(request):
            assert request.url.path == "/repos/octo/hello"
            return httpx.Response(200, json={"permissions": {"pull": True, "push": True, "admin": False}})

        perms = await _provider(handler).fetch_repo_permissions("gho_x", "octo", "hello")
        assert (perms.can_join, perms.can_edit, perms.can_admin) == (True, True, False)

    @pytest.mark.asyncio
    async def test_not_visible_is_none(self):
        perms = await _provider(lambda r: httpx.Response(404)).fetch_repo_permissions("gho_x", "octo", "secret")
        assert perms is None


class TestUnexpectedShapes:
    """Well-formed JSON of the wrong shape is an upstream failure, not a crash."""

    @pytest.mark.asyncio
    async def test_emails_object_instead_of_list(self):
        def handler(request):
            if request.url.path == "/user":
                return httpx.Response(200, json={"login": "octocat", "id": 1})
            return httpx.Response(200, json={"message": "weird"})

        with pytest.raises(UpstreamError):
            await _provider(handler).fetch_profile("gho_x")

    @pytest.mark.asyncio
    async def test_user_list_instead_of_object(self):
        with pytest.raises(UpstreamError):
            await _provider(lambda r: httpx.Response(200, json=[{"login": "octocat"}])).fetch_profile("gho_x")

    @pytest.mark.asyncio
    async def test_non_string_fields_are_dropped(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"login": "octocat", "id": "1", "email": 42, "name": ["x"], "company": "GitHub"},
            )

        def emails(request):
            if request.url.path == "/user/emails":
                return httpx.Response(200, json=["not-an-object", {"email": 7, "primary": True, "verified": True}])
            return handler(request)

        profile = await _provider(emails).fetch_profile("gho_x")
        assert profile.id is None
        assert profile.email is None
        assert profile.name is None
        assert profile.company == "GitHub"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[1, 2], {"permissions": ["push"]}])
    async def test_repo_permissions_wrong_shape(self, body):
        with pytest.raises(UpstreamError):
            await _provider(lambda r: httpx.Response(200, json=body)).fetch_repo_permissions("gho_x", "octo", "hello")
