"""
storage/memory.py -- Process-local KeyValueStore backed by a dict.

Used by the test suite and by single-process development runs. Values are
copied on the way in and out so callers can never mutate stored state by
holding on to a returned object.
"""

from __future__ import annotations

from core.errors import BlobNotFoundError


class InMemoryBlobStore:
    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._objects: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> bytes:
        try:
            return bytes(self._objects[key])
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def put(self, key: str, data: bytes) -> None:
        self._objects[key] = bytes(data)

    async def list(self, prefix: str) -> list[str]:
        return sorted(k for k in self._objects if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._objects)
