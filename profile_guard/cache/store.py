"""
Tiered subject-record cache.

Looks entries up in memory, then session, then durable storage.  The
first valid hit is promoted into every faster tier with its original
``created_at``; only ``expires_at`` is refreshed for the destination
tier.  Storage failures never escape ``get``/``set``: they are logged
and counted in :attr:`CacheStats.errors`.
"""

import asyncio
import contextlib
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from profile_guard.cache.entry import CacheEntry, CacheStats, Origin, utcnow
from profile_guard.cache.storage import KeyValueStorage
from profile_guard.cache.tiers import DURABLE, SESSION, CacheTier, MemoryTier, StorageTier
from profile_guard.config import CacheSettings, get_settings
from profile_guard.exceptions import ConfigurationError, SchemaVersionMismatch

logger = logging.getLogger(__name__)

DurablePredicate = Callable[[Any], bool]


def _always_eligible(payload: Any) -> bool:
    return True


class CacheStore:
    """Tiered cache with read-time promotion.

    Args:
        tiers: Tier descriptors ordered fastest first.  TTLs must
            strictly increase along the list.
        durable_predicate: Decides whether an authoritative payload may
            be written to durable tiers.  Defaults to "always".
        schema_version: Version stamped on new entries; stored entries
            with another version are treated as misses.
        cleanup_interval_seconds: Period of the background memory sweep.
        max_stale_entries: Capacity of the registry of expired entries
            kept for stale reuse.
        clock: Returns the current UTC time.

    Raises:
        ConfigurationError: If no tiers are given or TTLs do not
            strictly increase.
    """

    def __init__(
        self,
        tiers: List[CacheTier],
        durable_predicate: Optional[DurablePredicate] = None,
        schema_version: Optional[str] = None,
        cleanup_interval_seconds: Optional[float] = None,
        max_stale_entries: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not tiers:
            raise ConfigurationError("CacheStore needs at least one tier")
        for faster, slower in zip(tiers, tiers[1:]):
            if not faster.ttl_seconds < slower.ttl_seconds:
                raise ConfigurationError(
                    f"Tier TTLs must strictly increase: {faster.name} "
                    f"({faster.ttl_seconds}s) >= {slower.name} ({slower.ttl_seconds}s)"
                )

        self._tiers = list(tiers)
        self._durable_predicate = durable_predicate or _always_eligible
        self._schema_version = (
            schema_version if schema_version is not None
            else get_settings().cache.schema_version
        )
        self._cleanup_interval = (
            cleanup_interval_seconds if cleanup_interval_seconds is not None
            else get_settings().cache.cleanup_interval_seconds
        )
        self._max_stale = (
            max_stale_entries if max_stale_entries is not None
            else get_settings().cache.max_stale_entries
        )
        self._clock = clock

        self._stale: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._requests = 0
        self._tier_hits: Dict[str, int] = {t.name: 0 for t in self._tiers}
        self._tier_misses: Dict[str, int] = {t.name: 0 for t in self._tiers}
        self._misses = 0
        self._errors = 0
        self._last_sweep: Optional[datetime] = None
        self._sweeping = False
        self._sweeper_task: Optional["asyncio.Task[None]"] = None

    @classmethod
    def from_settings(
        cls,
        session_storage: KeyValueStorage,
        durable_storage: KeyValueStorage,
        payload_model: Optional[Type[BaseModel]] = None,
        durable_predicate: Optional[DurablePredicate] = None,
        settings: Optional[CacheSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "CacheStore":
        """Build the standard memory / session / durable stack.

        Args:
            session_storage: Provider for the session-scoped tier.
            durable_storage: Provider for the durable tier.
            payload_model: Pydantic model payloads are parsed into when
                read back from storage.
            durable_predicate: Durable eligibility check.
            settings: Cache settings; defaults to ``get_settings().cache``.
            clock: Returns the current UTC time.
        """
        s = settings or get_settings().cache
        tiers: List[CacheTier] = [
            MemoryTier(s.memory_ttl_seconds),
            StorageTier(
                SESSION, s.session_ttl_seconds, session_storage,
                key_prefix=s.key_prefix, payload_model=payload_model,
            ),
            StorageTier(
                DURABLE, s.durable_ttl_seconds, durable_storage,
                key_prefix=s.key_prefix, payload_model=payload_model,
                durable=True,
            ),
        ]
        return cls(
            tiers,
            durable_predicate=durable_predicate,
            schema_version=s.schema_version,
            cleanup_interval_seconds=s.cleanup_interval_seconds,
            max_stale_entries=s.max_stale_entries,
            clock=clock,
        )

    @property
    def tiers(self) -> List[CacheTier]:
        return list(self._tiers)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached payload for *key*, or ``None`` on a miss."""
        entry = await self.get_entry(key)
        return entry.payload if entry is not None else None

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Look *key* up tier by tier and promote the first valid hit.

        Each tier consulted counts exactly one hit or miss.  A lookup
        missing every tier also counts one overall miss.

        Args:
            key: Subject identifier.

        Returns:
            The entry as stored in the tier that served it, or ``None``.
        """
        if not key:
            return None

        self._requests += 1
        now = self._clock()

        for index, tier in enumerate(self._tiers):
            entry = self._read_valid(tier, key, now)
            if entry is None:
                self._tier_misses[tier.name] += 1
                continue

            self._tier_hits[tier.name] += 1
            if index > 0:
                self._promote(key, entry, self._tiers[:index], now)
            logger.debug(
                "Cache hit",
                extra={"cache_key": key, "tier": tier.name, "origin": entry.origin.value},
            )
            return entry

        self._misses += 1
        logger.debug("Cache miss", extra={"cache_key": key})
        return None

    async def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Return the most recent entry for *key* ignoring expiry.

        Consults the registry of entries dropped on expiry, then every
        tier without the expiry check.  Entries with a foreign schema
        version are never returned.  Does not touch hit/miss counters.
        """
        if not key:
            return None

        candidates: List[CacheEntry] = []
        stale = self._stale.get(key)
        if stale is not None:
            candidates.append(stale)
        for tier in self._tiers:
            try:
                entry = tier.read(key, self._schema_version)
            except SchemaVersionMismatch:
                continue
            except Exception as e:
                self._record_error("read", tier, key, e)
                continue
            if entry is not None and entry.schema_version == self._schema_version:
                candidates.append(entry)

        if not candidates:
            return None
        return max(candidates, key=lambda c: c.created_at)

    def _read_valid(self, tier: CacheTier, key: str, now: datetime) -> Optional[CacheEntry]:
        try:
            entry = tier.read(key, self._schema_version)
        except SchemaVersionMismatch as e:
            self._drop_foreign_version(tier, key, e.found)
            return None
        except ValueError as e:
            # unparseable blob: drop it so the next read is a clean miss
            self._record_error("decode", tier, key, e)
            self._safe_remove(tier, key)
            return None
        except Exception as e:
            self._record_error("read", tier, key, e)
            return None

        if entry is None:
            return None

        if entry.schema_version != self._schema_version:
            self._drop_foreign_version(tier, key, entry.schema_version)
            return None

        if entry.is_expired(now):
            logger.debug("Cache entry expired", extra={"cache_key": key, "tier": tier.name})
            self._remember_stale(key, entry)
            self._safe_remove(tier, key)
            return None

        return entry

    def _promote(
        self,
        key: str,
        entry: CacheEntry,
        destinations: List[CacheTier],
        now: datetime,
    ) -> None:
        for tier in destinations:
            try:
                tier.write(key, entry.with_ttl(now, tier.ttl_seconds))
            except Exception as e:
                self._record_error("promote", tier, key, e)
        logger.debug(
            "Cache entry promoted",
            extra={"cache_key": key, "tiers": [t.name for t in destinations]},
        )

    # ------------------------------------------------------------------
    # Writes and invalidation
    # ------------------------------------------------------------------

    async def set(
        self,
        key: str,
        payload: Any,
        origin: Origin = Origin.AUTHORITATIVE,
    ) -> Optional[CacheEntry]:
        """Store *payload* under *key* in every tier it is allowed into.

        Non-durable tiers are always written.  Durable tiers are written
        only for authoritative payloads accepted by the eligibility
        predicate; otherwise any durable copy of *key* is removed.  A tier
        whose write fails is cleared so it cannot serve an older value.
        Storage failures are counted, never raised.

        Args:
            key: Subject identifier.
            payload: Record to cache.
            origin: Provenance of the payload.

        Returns:
            The entry created for the fastest tier, or ``None`` when the
            key or payload is empty.
        """
        if not key or payload is None:
            logger.warning("Cache set skipped: empty key or payload", extra={"cache_key": key})
            return None

        origin = Origin(origin)
        now = self._clock()
        base = CacheEntry(
            payload=payload,
            created_at=now,
            schema_version=self._schema_version,
            expires_at=now,
            origin=origin,
        )
        durable_ok = origin is Origin.AUTHORITATIVE and self._is_durable_eligible(key, payload)

        written: List[str] = []
        for tier in self._tiers:
            if tier.durable and not durable_ok:
                # an older durable copy must not outlive this overwrite
                self._safe_remove(tier, key)
                continue
            try:
                tier.write(key, base.with_ttl(now, tier.ttl_seconds))
                written.append(tier.name)
            except Exception as e:
                self._record_error("write", tier, key, e)
                self._safe_remove(tier, key)

        logger.debug(
            "Cache set",
            extra={"cache_key": key, "origin": origin.value, "tiers": written},
        )
        return base.with_ttl(now, self._tiers[0].ttl_seconds)

    def _is_durable_eligible(self, key: str, payload: Any) -> bool:
        try:
            return bool(self._durable_predicate(payload))
        except Exception as e:
            self._errors += 1
            logger.warning(
                "Durable eligibility check failed",
                extra={"cache_key": key, "error": str(e)},
            )
            return False

    async def invalidate(self, key: str) -> bool:
        """Remove *key* from every tier and from the stale registry.

        Returns:
            ``True`` if any tier held an entry for *key*.
        """
        if not key:
            return False

        found = self._stale.pop(key, None) is not None
        for tier in self._tiers:
            try:
                found = tier.read(key) is not None or found
            except Exception:
                found = True
            self._safe_remove(tier, key)

        if found:
            logger.info("Cache entry invalidated", extra={"cache_key": key})
        return found

    async def invalidate_all(self) -> int:
        """Remove every entry from every tier.

        Returns:
            Number of tier entries removed.
        """
        removed = 0
        for tier in self._tiers:
            try:
                keys = tier.keys()
            except Exception as e:
                self._record_error("list", tier, "*", e)
                continue
            for key in keys:
                if self._safe_remove(tier, key):
                    removed += 1
        self._stale.clear()
        logger.info("Cache cleared", extra={"entries_removed": removed})
        return removed

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Evict expired entries from memory tiers.

        Other tiers are only checked lazily on read.  A sweep requested
        while another one is running returns ``0`` immediately.

        Returns:
            Number of entries evicted.
        """
        if self._sweeping:
            return 0
        self._sweeping = True
        try:
            now = self._clock()
            evicted = 0
            for tier in self._tiers:
                if not isinstance(tier, MemoryTier):
                    continue
                for key, entry in tier.items():
                    if entry.is_expired(now):
                        tier.remove(key)
                        self._remember_stale(key, entry)
                        evicted += 1
            self._last_sweep = now
        finally:
            self._sweeping = False

        if evicted:
            logger.info("Expired entries cleaned up", extra={"count": evicted})
        return evicted

    def start_sweeper(self) -> None:
        """Start the periodic memory sweep on the running event loop."""
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        self._sweeper_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.debug("Cache sweeper started", extra={"interval": self._cleanup_interval})

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweeper_task = self._sweeper_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self) -> None:
        # the next sleep starts only after the previous sweep returned
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        """Return aggregate cache statistics (no side effects)."""
        hits = sum(self._tier_hits.values())
        total = hits + self._misses
        memory_size = sum(len(t) for t in self._tiers if isinstance(t, MemoryTier))
        return CacheStats(
            requests=self._requests,
            tier_hits=dict(self._tier_hits),
            tier_misses=dict(self._tier_misses),
            misses=self._misses,
            errors=self._errors,
            memory_size=memory_size,
            last_sweep=self._last_sweep,
            total_lookups=total,
            hit_rate=hits / total if total > 0 else 0.0,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remember_stale(self, key: str, entry: CacheEntry) -> None:
        current = self._stale.get(key)
        if current is not None and current.created_at > entry.created_at:
            return
        self._stale[key] = entry
        self._stale.move_to_end(key)
        while len(self._stale) > self._max_stale:
            self._stale.popitem(last=False)

    def _drop_foreign_version(self, tier: CacheTier, key: str, found: str) -> None:
        logger.debug(
            "Cache schema mismatch",
            extra={
                "cache_key": key,
                "tier": tier.name,
                "found": found,
                "expected": self._schema_version,
            },
        )
        self._safe_remove(tier, key)

    def _safe_remove(self, tier: CacheTier, key: str) -> bool:
        try:
            tier.remove(key)
            return True
        except Exception as e:
            self._record_error("remove", tier, key, e)
            return False

    def _record_error(self, action: str, tier: CacheTier, key: str, error: Exception) -> None:
        self._errors += 1
        logger.warning(
            "Cache storage %s failed",
            action,
            extra={"cache_key": key, "tier": tier.name, "error": str(error)},
        )
