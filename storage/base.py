"""
storage/base.py -- The narrow KeyValueStore contract every backend implements.

Three operations, no multi-key atomicity, no conditional writes:

  get(key)      -> bytes, or raises BlobNotFoundError when the key is absent
  put(key, b)   -> overwrite (last write wins)
  list(prefix)  -> every key starting with prefix, sorted

The not-found / other-failure distinction is load-bearing: the directory
returns None on BlobNotFoundError and propagates everything else. Backends
must therefore raise BlobNotFoundError only for a missing key and wrap every
other failure in BackendError.

Layer rule: storage/ imports only core/ and third-party libraries.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> bytes:
        """Return the bytes stored under key.

        Raises:
            BlobNotFoundError: key does not exist.
            BackendError: any other backend failure.
        """
        ...

    async def put(self, key: str, data: bytes) -> None:
        """Store data under key, replacing any previous value."""
        ...

    async def list(self, prefix: str) -> list[str]:
        """Return all keys that start with prefix, in lexical order."""
        ...
