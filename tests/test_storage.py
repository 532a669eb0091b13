"""Unit tests for storage/ -- the KeyValueStore implementations and key layout.

Covers:
- InMemoryBlobStore and SqlBlobStore share get/put/list semantics
- Missing key raises BlobNotFoundError (a NotFoundError)
- list() is prefix-exact: LIKE wildcards in the prefix are literal
- SqlBlobStore persists across instances on the same file
- KeyLayout builds the documented key names
"""

from __future__ import annotations

import pytest

from core.errors import BlobNotFoundError, NotFoundError
from core.models import UserStatus
from storage.base import KeyValueStore
from storage.keys import KeyLayout
from storage.memory import InMemoryBlobStore
from storage.sql import SqlBlobStore

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Each test runs once per backend.

    SqlBlobStore uses a file DB: its calls run in worker threads and a plain
    :memory: database is per-connection.
    """
    if request.param == "memory":
        yield InMemoryBlobStore()
        return
    s = SqlBlobStore(f"sqlite:///{tmp_path / 'blobs.db'}")
    yield s
    s.close()


class TestKeyValueStore:
    def test_implements_protocol(self, store):
        assert isinstance(store, KeyValueStore)

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put("orbit/users/octocat.json", b'{"a": 1}')
        assert await store.get("orbit/users/octocat.json") == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        await store.put("k", b"one")
        await store.put("k", b"two")
        assert await store.get("k") == b"two"

    @pytest.mark.asyncio
    async def test_missing_key_raises_not_found(self, store):
        with pytest.raises(BlobNotFoundError) as exc_info:
            await store.get("orbit/users/nobody.json")
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.key == "orbit/users/nobody.json"

    @pytest.mark.asyncio
    async def test_list_by_prefix_sorted(self, store):
        for key in ("orbit/users/b.json", "orbit/users/a.json", "orbit/indices/waitlist.json"):
            await store.put(key, b"{}")
        assert await store.list("orbit/users/") == ["orbit/users/a.json", "orbit/users/b.json"]
        assert await store.list("nothing/") == []

    @pytest.mark.asyncio
    async def test_list_prefix_wildcards_are_literal(self, store):
        await store.put("orbit/users/a_b.json", b"{}")
        await store.put("orbit/users/axb.json", b"{}")
        await store.put("orbit%/x.json", b"{}")
        assert await store.list("orbit/users/a_") == ["orbit/users/a_b.json"]
        assert await store.list("orbit%") == ["orbit%/x.json"]


class TestSqlBlobStore:
    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'persist.db'}"
        first = SqlBlobStore(url)
        await first.put("orbit/metadata/stats.json", b"{}")
        first.close()

        second = SqlBlobStore(url)
        try:
            assert await second.get("orbit/metadata/stats.json") == b"{}"
        finally:
            second.close()

    @pytest.mark.asyncio
    async def test_binary_payload_round_trips(self, tmp_path):
        s = SqlBlobStore(f"sqlite:///{tmp_path / 'bin.db'}")
        try:
            await s.put("blob", bytes(range(256)))
            assert await s.get("blob") == bytes(range(256))
        finally:
            s.close()


class TestKeyLayout:
    def test_default_layout(self):
        keys = KeyLayout()
        assert keys.user("octocat") == "orbit/users/octocat.json"
        assert keys.index(UserStatus.waitlisted) == "orbit/indices/waitlist.json"
        assert keys.index(UserStatus.approved) == "orbit/indices/approved.json"
        assert keys.index(UserStatus.denied) == "orbit/indices/denied.json"
        assert keys.stats == "orbit/metadata/stats.json"
        assert keys.room("octo", "hello") == "orbit/sessions/octo/hello/active.json"

    def test_custom_prefix(self):
        keys = KeyLayout(prefix="staging")
        assert keys.user("octocat") == "staging/users/octocat.json"
        assert keys.is_user_key("staging/users/octocat.json")
        assert not keys.is_user_key("orbit/users/octocat.json")
        assert not keys.is_user_key("staging/users/octocat.tmp")
