"""
storage/sql.py -- SQLAlchemy Core implementation of the KeyValueStore contract.

One table, one row per object. SQLAlchemy keeps the backend a connection
string away from PostgreSQL or MySQL; the default is a SQLite file next to
this module. The object-storage semantics stay exactly those of a blob
bucket: no transactions across keys, last write wins.

The engine API is synchronous. Each call runs in a worker thread via
asyncio.to_thread so the event loop never blocks on disk or network I/O.

Security:
  All queries use bound parameters. No f-strings in SQL.
  list() uses startswith(..., autoescape=True) so "%" and "_" in a prefix
  match literally.

Error contract:
  A missing row raises BlobNotFoundError. Every SQLAlchemyError is logged
  with its key and re-raised as BackendError, whose message is generic.

Usage:
    store = SqlBlobStore()                               # SQLite default
    store = SqlBlobStore("postgresql://user:pw@host/db") # PostgreSQL
    await store.put("orbit/users/octocat.json", b"{...}")
    data = await store.get("orbit/users/octocat.json")
    store.close()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import BackendError, BlobNotFoundError

logger = logging.getLogger("orbit.storage")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'orbit_blobs.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_objects = Table(
    "objects",
    _metadata,
    Column("key", String(1024), primary_key=True),
    Column("body", LargeBinary, nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqlBlobStore:
    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # KeyValueStore
    # ------------------------------------------------------------------

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._put, key, data)

    async def list(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list, prefix)

    # ------------------------------------------------------------------
    # Synchronous workers
    # ------------------------------------------------------------------

    def _get(self, key: str) -> bytes:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(_objects.c.body).where(_objects.c.key == key)).fetchone()
        except SQLAlchemyError:
            logger.exception("get failed for key %s", key)
            raise BackendError() from None
        if row is None:
            raise BlobNotFoundError(key)
        return bytes(row[0])

    def _put(self, key: str, data: bytes) -> None:
        try:
            with self.engine.begin() as conn:
                updated = conn.execute(
                    _objects.update().where(_objects.c.key == key).values(body=data, updated_at=_now_iso())
                )
                if updated.rowcount == 0:
                    conn.execute(_objects.insert().values(key=key, body=data, updated_at=_now_iso()))
        except SQLAlchemyError:
            logger.exception("put failed for key %s", key)
            raise BackendError() from None

    def _list(self, prefix: str) -> list[str]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(_objects.c.key)
                    .where(_objects.c.key.startswith(prefix, autoescape=True))
                    .order_by(_objects.c.key)
                ).fetchall()
        except SQLAlchemyError:
            logger.exception("list failed for prefix %s", prefix)
            raise BackendError() from None
        return [row[0] for row in rows]

    def close(self) -> None:
        self.engine.dispose()
