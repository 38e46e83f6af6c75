"""
Key/value storage providers backing the session and durable cache tiers.

Providers are synchronous and may raise on quota or serialization
failures; :class:`~profile_guard.cache.store.CacheStore` catches every
provider error and counts it instead of propagating.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import redis

from profile_guard.exceptions import StorageError, StorageQuotaExceededError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    """Protocol for string key/value stores (session or durable scope)."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored string, or ``None`` when absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    def remove(self, key: str) -> None:
        """Delete *key*; a missing key is not an error."""
        ...

    def keys(self) -> List[str]:
        """Return every key currently stored."""
        ...


class InMemoryStorage:
    """Process-local dict storage with an optional byte quota.

    Stands in for browser ``sessionStorage``: shared by every component
    holding a reference to the same instance, last write wins.

    Args:
        quota_bytes: Maximum total size of keys plus values.  ``None``
            disables the quota.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._data: Dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def _used_bytes(self, exclude: Optional[str] = None) -> int:
        return sum(
            len(k.encode("utf-8")) + len(v.encode("utf-8"))
            for k, v in self._data.items()
            if k != exclude
        )

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            needed = len(key.encode("utf-8")) + len(value.encode("utf-8"))
            if self._used_bytes(exclude=key) + needed > self._quota_bytes:
                raise StorageQuotaExceededError(
                    f"Storage quota of {self._quota_bytes} bytes exceeded"
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStorage:
    """Durable storage persisted as a single JSON object on disk.

    The file is re-read on every operation so several processes sharing
    the path see each other's writes (last write wins, no locking).

    Args:
        path: Location of the JSON file.  Parent directories are created
            on first write.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self._path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
        except OSError as e:
            raise StorageError(f"Cannot write {self._path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)

    def keys(self) -> List[str]:
        return list(self._load())


class RedisStorage:
    """Redis-backed storage for the durable tier.

    Keys are namespaced as ``{namespace}:{key}``.  When ``ttl_seconds``
    is given, values are written with ``SETEX`` so Redis drops entries
    the cache would treat as expired anyway.

    Args:
        redis_url: Redis connection URL (e.g. redis://localhost:6379/0).
        namespace: Prefix for every key written by this provider.
        ttl_seconds: Optional server-side expiry for written values.
    """

    def __init__(
        self,
        redis_url: str,
        namespace: str = "profile_guard",
        ttl_seconds: Optional[int] = None,
        _redis_client: Optional[Any] = None,
    ) -> None:
        if _redis_client is not None:
            self._client = _redis_client
        else:
            self._client = redis.from_url(redis_url, decode_responses=True)
        self._namespace = namespace.rstrip(":")
        self._ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as e:
            raise StorageError(f"Redis get failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            if self._ttl_seconds:
                self._client.setex(self._key(key), self._ttl_seconds, value)
            else:
                self._client.set(self._key(key), value)
        except redis.RedisError as e:
            raise StorageError(f"Redis set failed: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            raise StorageError(f"Redis delete failed: {e}") from e

    def keys(self) -> List[str]:
        prefix = f"{self._namespace}:"
        try:
            return [
                k[len(prefix):]
                for k in self._client.scan_iter(match=f"{prefix}*")
            ]
        except redis.RedisError as e:
            raise StorageError(f"Redis scan failed: {e}") from e


def build_durable_storage(
    backend: str,
    file_path: str = "data/profile_cache.json",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: Optional[int] = None,
) -> KeyValueStorage:
    """Construct the durable provider named by the ``storage`` settings.

    Args:
        backend: One of ``memory``, ``file``, ``redis``.

    Raises:
        ValueError: If *backend* is unknown.
    """
    if backend == "memory":
        return InMemoryStorage()
    if backend == "file":
        return JsonFileStorage(Path(file_path))
    if backend == "redis":
        return RedisStorage(redis_url, ttl_seconds=ttl_seconds)
    raise ValueError(f"Unknown durable storage backend: {backend!r}")
