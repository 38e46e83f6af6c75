"""Tiered subject-record cache (memory / session / durable)."""

from profile_guard.cache.entry import CacheEntry, CacheStats, Origin
from profile_guard.cache.storage import InMemoryStorage, JsonFileStorage, KeyValueStorage, RedisStorage
from profile_guard.cache.store import CacheStore
from profile_guard.cache.tiers import CacheTier, MemoryTier, StorageTier

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "CacheTier",
    "InMemoryStorage",
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryTier",
    "Origin",
    "RedisStorage",
    "StorageTier",
]
