"""
Cache tier descriptors.

A tier is a named, TTL-bound slot that can read, write and remove
:class:`CacheEntry` objects by subject key.  :class:`CacheStore` walks an
ordered list of tiers (fastest first) with a single promotion loop, so
the memory, session and durable layers differ only in their backing
storage.
"""

from typing import Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from profile_guard.cache.entry import CacheEntry
from profile_guard.cache.storage import KeyValueStorage

MEMORY = "memory"
SESSION = "session"
DURABLE = "durable"


class CacheTier:
    """Base tier descriptor.

    Args:
        name: Tier name used in statistics and logs.
        ttl_seconds: Lifetime of an entry written to this tier.
    """

    durable = False

    def __init__(self, name: str, ttl_seconds: float) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds

    def read(self, key: str, expected_version: Optional[str] = None) -> Optional[CacheEntry]:
        """Return the entry for *key*, or ``None``.

        Serializing tiers raise :class:`SchemaVersionMismatch` before
        decoding a payload written under another *expected_version*.
        """
        raise NotImplementedError

    def write(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, ttl_seconds={self.ttl_seconds})"


class MemoryTier(CacheTier):
    """Process-local tier holding entry objects in a dict."""

    def __init__(self, ttl_seconds: float, name: str = MEMORY) -> None:
        super().__init__(name, ttl_seconds)
        self._store: Dict[str, CacheEntry] = {}

    def read(self, key: str, expected_version: Optional[str] = None) -> Optional[CacheEntry]:
        return self._store.get(key)

    def write(self, key: str, entry: CacheEntry) -> None:
        self._store[key] = entry

    def remove(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._store)

    def items(self) -> List[Tuple[str, CacheEntry]]:
        return list(self._store.items())

    def __len__(self) -> int:
        return len(self._store)


class StorageTier(CacheTier):
    """Tier serializing entries into a :class:`KeyValueStorage` provider.

    Args:
        name: Tier name (``session`` or ``durable``).
        ttl_seconds: Lifetime of an entry written to this tier.
        storage: Backing key/value provider.
        key_prefix: Namespace prepended to subject keys in storage.
        payload_model: Optional pydantic model the payload is parsed into.
        durable: Whether writes must pass the durable eligibility check.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        storage: KeyValueStorage,
        key_prefix: str = "profile_cache_",
        payload_model: Optional[Type[BaseModel]] = None,
        durable: bool = False,
    ) -> None:
        super().__init__(name, ttl_seconds)
        self._storage = storage
        self._key_prefix = key_prefix
        self._payload_model = payload_model
        self.durable = durable

    def _storage_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def read(self, key: str, expected_version: Optional[str] = None) -> Optional[CacheEntry]:
        blob = self._storage.get(self._storage_key(key))
        if blob is None:
            return None
        return CacheEntry.from_blob(blob, self._payload_model, expected_version)

    def write(self, key: str, entry: CacheEntry) -> None:
        self._storage.set(self._storage_key(key), entry.to_blob())

    def remove(self, key: str) -> None:
        self._storage.remove(self._storage_key(key))

    def keys(self) -> List[str]:
        prefix = self._key_prefix
        return [k[len(prefix):] for k in self._storage.keys() if k.startswith(prefix)]
