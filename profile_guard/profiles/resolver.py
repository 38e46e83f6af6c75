"""
ProfileResolver -- the realized profile pipeline.

Lookup order:

1. Tiered cache.
2. Remote source, retried by the :class:`RecoveryOrchestrator`.
3. Fallback chain: stale cached entry, profile synthesized from local
   session blobs, then ``None`` ("no record available").

The chain ends with an always-succeeding supplier, so :meth:`resolve`
returns ``None`` instead of raising when nothing is available.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from profile_guard.cache.entry import Origin
from profile_guard.cache.store import CacheStore
from profile_guard.config import RecoverySettings, get_settings
from profile_guard.exceptions import ErrorKind, RemoteSourceError
from profile_guard.profiles.models import UserProfile
from profile_guard.profiles.sources import RemoteProfileSource, SessionInspector, synthesize_profile
from profile_guard.recovery.orchestrator import RecoveryOrchestrator, RecoveryOutcome
from profile_guard.recovery.policy import RetryPolicy

logger = logging.getLogger(__name__)

STALE_REUSE = "stale_reuse"
SESSION_SYNTHESIS = "session_synthesis"
NO_RECORD = "no_record"


class ProfileResolver:
    """Resolves subject profiles through cache, remote source and fallbacks.

    Args:
        cache: Tiered profile cache.
        orchestrator: Retry/fallback orchestrator for the remote fetch.
        source: Authoritative profile backend.
        inspector: Local session inspector for the synthesis fallback.
        policy: Retry policy for the remote fetch.
        settings: Recovery settings; defaults to ``get_settings().recovery``.
    """

    def __init__(
        self,
        cache: CacheStore,
        orchestrator: RecoveryOrchestrator,
        source: RemoteProfileSource,
        inspector: Optional[SessionInspector] = None,
        policy: Optional[RetryPolicy] = None,
        settings: Optional[RecoverySettings] = None,
    ) -> None:
        s = settings or get_settings().recovery
        self._cache = cache
        self._orchestrator = orchestrator
        self._source = source
        self._inspector = inspector
        self._policy = policy or RetryPolicy.from_settings(
            max_attempts=s.profile_max_attempts,
            base_delay=s.profile_base_delay_seconds,
        )
        self._allow_session_synthesis = s.allow_session_synthesis
        self._dedupe = s.dedupe_in_flight
        self._in_flight: Dict[str, "asyncio.Future[Optional[UserProfile]]"] = {}

    async def resolve(self, subject_id: str) -> Optional[UserProfile]:
        """Return the best available profile for *subject_id*, or ``None``.

        ``None`` means "no record available" and is a valid,
        non-authoritative outcome.
        """
        if not subject_id:
            logger.warning("Invalid subject id provided to resolve", extra={"subject_id": subject_id})
            return None

        if not self._dedupe:
            return await self._resolve(subject_id)

        pending = self._in_flight.get(subject_id)
        if pending is None:
            pending = asyncio.ensure_future(self._resolve(subject_id))
            self._in_flight[subject_id] = pending
            pending.add_done_callback(lambda _f: self._in_flight.pop(subject_id, None))
        return await asyncio.shield(pending)

    @property
    def in_flight(self) -> int:
        """Number of resolves currently shared by concurrent callers."""
        return len(self._in_flight)

    async def _resolve(self, subject_id: str) -> Optional[UserProfile]:
        try:
            cached = await self._cache.get(subject_id)
            if cached is not None:
                return _as_profile(cached)

            outcome = await self._orchestrator.run(
                lambda: self._fetch(subject_id),
                self._fallback_chain(subject_id),
                self._policy,
            )
            await self._write_back(subject_id, outcome)
            return _as_profile(outcome.value) if outcome.value is not None else None
        except Exception:
            logger.exception("Critical error resolving profile", extra={"subject_id": subject_id})
            return None

    async def _fetch(self, subject_id: str) -> UserProfile:
        record = await self._source.fetch(subject_id)
        if record is None:
            raise RemoteSourceError(ErrorKind.NOT_FOUND, f"Profile not found: {subject_id}")
        return _as_profile(record)

    async def _write_back(self, subject_id: str, outcome: RecoveryOutcome) -> None:
        if outcome.value is None:
            return
        if outcome.origin is Origin.AUTHORITATIVE:
            await self._cache.set(subject_id, outcome.value, Origin.AUTHORITATIVE)
        elif outcome.source == SESSION_SYNTHESIS:
            await self._cache.set(subject_id, outcome.value, Origin.DERIVED)

    def _fallback_chain(self, subject_id: str) -> List[Callable[[], Any]]:
        cache = self._cache

        async def stale_reuse() -> UserProfile:
            entry = await cache.get_stale(subject_id)
            if entry is None:
                raise LookupError(f"No cached entry for {subject_id}")
            logger.info(
                "Reusing stale cached profile",
                extra={"subject_id": subject_id, "created_at": entry.created_at.isoformat()},
            )
            return _as_profile(entry.payload)

        def session_synthesis() -> UserProfile:
            if not self._allow_session_synthesis or self._inspector is None:
                raise LookupError("Session synthesis disabled")
            profile = synthesize_profile(subject_id, self._inspector.blobs())
            if profile is None:
                raise LookupError(f"No session blob for {subject_id}")
            # not verified against the authoritative source
            logger.warning(
                "Profile synthesized from local session data",
                extra={"subject_id": subject_id},
            )
            return profile

        def no_record() -> None:
            return None

        return [stale_reuse, session_synthesis, no_record]


def _as_profile(value: Any) -> UserProfile:
    if isinstance(value, UserProfile):
        return value
    return UserProfile.model_validate(value)
