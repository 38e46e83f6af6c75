"""
Component wiring for the profile pipeline.

Builds each component once and hands the instances to their consumers,
so tests and applications can hold several independent pipelines.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from profile_guard.cache.entry import utcnow
from profile_guard.cache.storage import InMemoryStorage, KeyValueStorage, build_durable_storage
from profile_guard.cache.store import CacheStore
from profile_guard.config import Settings, get_settings
from profile_guard.observability.metrics import MetricsAggregator, MetricsConfig
from profile_guard.profiles.models import UserProfile, is_durable_eligible
from profile_guard.profiles.resolver import ProfileResolver
from profile_guard.profiles.sources import RemoteProfileSource, SessionInspector, StorageSessionInspector
from profile_guard.recovery.executor import RetryExecutor
from profile_guard.recovery.orchestrator import RecoveryOrchestrator
from profile_guard.recovery.policy import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ProfilePipeline:
    """The wired components of one profile pipeline."""

    cache: CacheStore
    executor: RetryExecutor
    orchestrator: RecoveryOrchestrator
    resolver: ProfileResolver
    metrics: MetricsAggregator


def build_pipeline(
    source: RemoteProfileSource,
    session_storage: Optional[KeyValueStorage] = None,
    durable_storage: Optional[KeyValueStorage] = None,
    inspector: Optional[SessionInspector] = None,
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ProfilePipeline:
    """Construct a cache, executor, orchestrator, resolver and aggregator.

    Args:
        source: Authoritative profile backend.
        session_storage: Session-scoped provider; a fresh in-memory one
            when omitted.
        durable_storage: Durable provider; built from the ``storage``
            settings when omitted.
        inspector: Session inspector; scans *session_storage* for the
            configured markers when omitted.
        settings: Settings tree; defaults to :func:`get_settings`.
        clock: Returns the current UTC time.
    """
    s = settings or get_settings()
    session_storage = session_storage if session_storage is not None else InMemoryStorage()
    if durable_storage is None:
        durable_storage = build_durable_storage(
            s.storage.durable_backend,
            file_path=s.storage.file_path,
            redis_url=s.storage.redis_url,
            ttl_seconds=s.cache.durable_ttl_seconds,
        )
    if inspector is None:
        inspector = StorageSessionInspector(session_storage, s.recovery.session_markers)

    cache = CacheStore.from_settings(
        session_storage,
        durable_storage,
        payload_model=UserProfile,
        durable_predicate=is_durable_eligible,
        settings=s.cache,
        clock=clock,
    )
    executor = RetryExecutor(RetryPolicy.from_settings(s.retry))
    orchestrator = RecoveryOrchestrator(executor, latency_window=s.recovery.latency_window)
    resolver = ProfileResolver(cache, orchestrator, source, inspector, settings=s.recovery)
    metrics = MetricsAggregator(cache, orchestrator, MetricsConfig.from_settings(s.metrics))

    logger.info(
        "Profile pipeline built",
        extra={"durable_backend": s.storage.durable_backend},
    )
    return ProfilePipeline(cache, executor, orchestrator, resolver, metrics)
