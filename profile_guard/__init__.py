"""profile-guard: tiered profile cache with retry and fallback recovery."""

from profile_guard.cache import CacheEntry, CacheStats, CacheStore, Origin
from profile_guard.observability.metrics import HealthSnapshot, HealthStatus, MetricsAggregator
from profile_guard.pipeline import ProfilePipeline, build_pipeline
from profile_guard.profiles import ProfileResolver, UserProfile
from profile_guard.recovery import RecoveryOrchestrator, RetryExecutor, RetryPolicy

__version__ = "1.0.0"

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "HealthSnapshot",
    "HealthStatus",
    "MetricsAggregator",
    "Origin",
    "ProfilePipeline",
    "ProfileResolver",
    "RecoveryOrchestrator",
    "RetryExecutor",
    "RetryPolicy",
    "UserProfile",
    "build_pipeline",
]
