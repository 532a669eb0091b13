"""
tests/conftest.py -- Shared test fixtures for Orbit unit and integration tests.

This module provides:
  - FakeProvider: an in-process OAuthProvider that counts upstream calls
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus handles on the stores behind it
  - provider / blob_store / directory / sessions: fresh per-test instances

Design: the API tests use InMemoryBlobStore rather than SQLite so each test
module starts from an empty directory without touching disk. SqlBlobStore has
its own tests in test_storage.py.

Environment variables must be set before any api/auth/core import so
get_settings() sees them: DEBUG auto-generates SECRET_KEY, ADMIN_SECRET
enables the admin routes, and the CLI rate limits are raised so polling
tests are not throttled.
"""

from __future__ import annotations

import asyncio
import functools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

# CRITICAL: Set env before any auth/core import so get_settings() picks it up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("CLI_START_RATE_LIMIT", "1000/minute")
os.environ.setdefault("CLI_TOKEN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.flow import CLIAuthorizationFlow
from auth.models import ProviderProfile, RepoPermissions
from auth.sessions import InMemoryAuthSessionStore
from core.errors import UpstreamError
from directory.rooms import RoomSessionTracker
from directory.store import UserDirectory
from storage.memory import InMemoryBlobStore

ADMIN_SECRET = os.environ["ADMIN_SECRET"]

# RFC 7636 Appendix B test vector.
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


# ---------------------------------------------------------------------------
# Fake upstream provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """OAuthProvider stand-in with call counters and failure switches.

    exchange_code() turns code "abc" into access token "gho_abc". Set
    fail_exchange to make it raise UpstreamError, or set gate to an
    asyncio.Event to hold the exchange open until the test releases it.
    profile_error, when set, is raised as-is by fetch_profile().
    """

    def __init__(self) -> None:
        self.exchange_calls = 0
        self.fail_exchange = False
        self.gate: Optional[asyncio.Event] = None
        self.profiles: dict[str, ProviderProfile] = {}
        self.rejected_tokens: set[str] = set()
        self.profile_error: Optional[BaseException] = None
        self.repo_permissions: dict[tuple[str, str], Optional[RepoPermissions]] = {}

    def authorize_url(self, state: str, force_reauth: bool = False) -> str:
        url = f"https://github.test/login/oauth/authorize?state={state}"
        return url + "&prompt=select_account" if force_reauth else url

    async def exchange_code(self, code: str) -> dict[str, Any]:
        self.exchange_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_exchange:
            raise UpstreamError()
        return {"access_token": f"gho_{code}", "token_type": "bearer", "scope": "repo"}

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        if self.profile_error is not None:
            raise self.profile_error
        if access_token in self.rejected_tokens:
            raise UpstreamError()
        return self.profiles.get(
            access_token,
            ProviderProfile(login="Octocat", id=1, email="octocat@example.com", name="The Octocat"),
        )

    async def fetch_repo_permissions(self, access_token: str, owner: str, repo: str) -> Optional[RepoPermissions]:
        return self.repo_permissions.get((owner, repo), RepoPermissions(can_join=True, can_edit=True))


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def directory(blob_store) -> UserDirectory:
    return UserDirectory(blob_store)


@pytest.fixture
def sessions() -> InMemoryAuthSessionStore:
    return InMemoryAuthSessionStore(ttl_seconds=300)


@pytest.fixture
def challenge() -> tuple[str, str]:
    """(code_verifier, code_challenge) pair."""
    return VERIFIER, CHALLENGE


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    provider: FakeProvider
    blob_store: InMemoryBlobStore
    directory: UserDirectory
    rooms: RoomSessionTracker
    sessions: InMemoryAuthSessionStore
    admin_headers: dict[str, str] = field(default_factory=lambda: {"X-Admin-Secret": ADMIN_SECRET})

    def run(self, fn, *args, **kwargs):
        """Run an async store call on the app's event loop (seeding and asserting)."""
        return self.client.portal.call(functools.partial(fn, *args, **kwargs))


def _patch_lifespan(harness_parts: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test stores and the fake provider into app.state so
    TestClient routes never touch SQLite or GitHub. The sweep task is a
    long-sleeping coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.blob_store = harness_parts["blob_store"]
        app.state.directory = harness_parts["directory"]
        app.state.rooms = harness_parts["rooms"]
        app.state.auth_sessions = harness_parts["sessions"]
        app.state.provider = harness_parts["provider"]
        app.state.signup_provider = harness_parts["provider"]
        app.state.cli_flow = CLIAuthorizationFlow(
            harness_parts["sessions"],
            harness_parts["provider"],
            directory=harness_parts["directory"],
        )
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    One TestClient per test module for speed; the stores are shared by the
    tests of a module, so tests use distinct handles and state values.
    base_url uses localhost because TrustedHostMiddleware rejects the
    TestClient default host.
    """
    blob_store = InMemoryBlobStore()
    parts = {
        "blob_store": blob_store,
        "directory": UserDirectory(blob_store),
        "rooms": RoomSessionTracker(blob_store),
        "sessions": InMemoryAuthSessionStore(ttl_seconds=300),
        "provider": FakeProvider(),
    }
    app.router.lifespan_context = _patch_lifespan(parts)
    limiter.reset()

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=False) as client:
        yield ApiHarness(client=client, **parts)
