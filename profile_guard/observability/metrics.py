"""
MetricsAggregator -- read-only health view over the cache and recovery
counters.

Every method is a pure read of :meth:`CacheStore.stats` and
:meth:`RecoveryOrchestrator.stats`, so dashboards may poll it freely.
Provides a JSON report export and Prometheus text exposition output.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from profile_guard.cache.entry import CacheStats
from profile_guard.config import MetricsSettings, get_settings
from profile_guard.exceptions import ObservabilityError
from profile_guard.recovery.orchestrator import CircuitState, RecoveryStats

logger = logging.getLogger(__name__)


class CacheStatsSource(Protocol):
    def stats(self) -> CacheStats:
        ...


class RecoveryStatsSource(Protocol):
    def stats(self) -> RecoveryStats:
        ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Thresholds for the health gates.

    Attributes:
        hit_rate_threshold_pct: Cache gate passes above this hit rate.
        latency_threshold_ms: Latency gate passes below this average.
        success_rate_threshold_pct: Success gate passes above this rate.
    """

    hit_rate_threshold_pct: float = Field(default=70.0, ge=0.0, le=100.0)
    latency_threshold_ms: float = Field(default=100.0, gt=0.0)
    success_rate_threshold_pct: float = Field(default=95.0, ge=0.0, le=100.0)

    @classmethod
    def from_settings(cls, settings: Optional[MetricsSettings] = None) -> "MetricsConfig":
        s = settings or get_settings().metrics
        return cls(
            hit_rate_threshold_pct=s.hit_rate_threshold_pct,
            latency_threshold_ms=s.latency_threshold_ms,
            success_rate_threshold_pct=s.success_rate_threshold_pct,
        )


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class HealthStatus(str, Enum):
    """Overall health ordinal, best first."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"


class HealthGates(BaseModel):
    """Outcome of each health gate."""

    cache_hit_rate: bool = False
    circuit_closed: bool = False
    latency: bool = False
    success_rate: bool = False

    @property
    def passed(self) -> int:
        return sum([self.cache_hit_rate, self.circuit_closed, self.latency, self.success_rate])


class CacheSnapshot(CacheStats):
    """Cache statistics with the hit rate expressed as a percentage."""

    hit_rate_pct: float = 0.0


class HealthSnapshot(BaseModel):
    """Point-in-time health view.

    Attributes:
        cache: Cache counters plus ``hit_rate_pct``.
        recovery: Recovery counters plus ``success_rate``.
        gates: Individual gate results.
        health: Overall :class:`HealthStatus`.
        timestamp: UTC time the snapshot was taken.
    """

    cache: CacheSnapshot
    recovery: RecoveryStats
    gates: HealthGates
    health: HealthStatus
    timestamp: datetime


def hit_rate_pct(stats: CacheStats) -> float:
    """Sum of tier hits over total lookups, as a percentage (0 if none)."""
    hits = sum(stats.tier_hits.values())
    total = hits + stats.misses
    return (hits / total) * 100 if total > 0 else 0.0


def health_from_gates(passed: int) -> HealthStatus:
    if passed >= 4:
        return HealthStatus.EXCELLENT
    if passed == 3:
        return HealthStatus.GOOD
    if passed == 2:
        return HealthStatus.FAIR
    return HealthStatus.NEEDS_ATTENTION


# ---------------------------------------------------------------------------
# MetricsAggregator
# ---------------------------------------------------------------------------


class MetricsAggregator:
    """Aggregates cache and recovery counters into health snapshots.

    Args:
        cache: Anything exposing ``stats() -> CacheStats``.
        recovery: Anything exposing ``stats() -> RecoveryStats``.
        config: Gate thresholds; defaults come from settings.
        clock: Returns the current UTC time.
    """

    REPORT_TYPE = "PROFILE_CACHE_HEALTH"

    def __init__(
        self,
        cache: CacheStatsSource,
        recovery: RecoveryStatsSource,
        config: Optional[MetricsConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._cache = cache
        self._recovery = recovery
        self._config = config or MetricsConfig.from_settings()
        self._clock = clock

    def snapshot(self) -> HealthSnapshot:
        """Return the current health snapshot (no side effects)."""
        cache_stats = self._cache.stats()
        recovery_stats = self._recovery.stats()
        rate = hit_rate_pct(cache_stats)

        gates = HealthGates(
            cache_hit_rate=rate > self._config.hit_rate_threshold_pct,
            circuit_closed=recovery_stats.current_failure_streak == 0,
            latency=recovery_stats.average_latency_ms < self._config.latency_threshold_ms,
            success_rate=recovery_stats.success_rate > self._config.success_rate_threshold_pct,
        )
        return HealthSnapshot(
            cache=CacheSnapshot(**cache_stats.model_dump(), hit_rate_pct=round(rate, 2)),
            recovery=recovery_stats,
            gates=gates,
            health=health_from_gates(gates.passed),
            timestamp=self._clock(),
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_report(self) -> str:
        """Return a JSON report of the current snapshot plus a summary."""
        snap = self.snapshot()
        rate = snap.cache.hit_rate_pct
        if rate > 80:
            cache_health = "EXCELLENT"
        elif rate > 60:
            cache_health = "GOOD"
        else:
            cache_health = "NEEDS_IMPROVEMENT"

        report = {
            "report_type": self.REPORT_TYPE,
            "timestamp": snap.timestamp.isoformat(),
            "snapshot": snap.model_dump(mode="json"),
            "summary": {
                "cache_health": cache_health,
                "recovery_health": (
                    "HEALTHY" if snap.recovery.circuit_state is CircuitState.CLOSED
                    else "ATTENTION_NEEDED"
                ),
                "overall_status": snap.health.value,
            },
        }
        logger.info(
            "Health report exported",
            extra={"overall_status": snap.health.value},
        )
        return json.dumps(report, indent=2)

    def write_report(self, path: Path) -> Path:
        """Write :meth:`export_report` to *path*.

        Raises:
            ObservabilityError: If the file cannot be written.
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.export_report(), encoding="utf-8")
        except OSError as exc:
            raise ObservabilityError(f"Cannot write health report to {path}: {exc}") from exc
        return path

    def get_prometheus_metrics(self) -> str:
        """Return the snapshot in Prometheus text exposition format."""
        snap = self.snapshot()
        lines: List[str] = []

        def _block(name: str, help_text: str, kind: str, samples: Dict[str, float]) -> None:
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} {kind}")
            for labels, val in sorted(samples.items()):
                suffix = f"{{{labels}}}" if labels else ""
                lines.append(f"{name}{suffix} {val}")

        _block(
            "profile_cache_hits_total", "Cache hits by tier", "counter",
            {f'tier="{t}"': float(v) for t, v in snap.cache.tier_hits.items()},
        )
        _block(
            "profile_cache_tier_misses_total", "Cache misses by tier", "counter",
            {f'tier="{t}"': float(v) for t, v in snap.cache.tier_misses.items()},
        )
        _block("profile_cache_misses_total", "Lookups missing every tier", "counter",
               {"": float(snap.cache.misses)})
        _block("profile_cache_errors_total", "Swallowed storage errors", "counter",
               {"": float(snap.cache.errors)})
        _block("profile_cache_hit_rate", "Cache hit rate percentage", "gauge",
               {"": snap.cache.hit_rate_pct})
        _block("profile_cache_memory_entries", "Entries in the memory tier", "gauge",
               {"": float(snap.cache.memory_size)})
        _block(
            "profile_recovery_operations_total", "Recovery runs by result", "counter",
            {
                'result="success"': float(snap.recovery.successful_operations),
                'result="fallback"': float(snap.recovery.fallback_usages),
                'result="exhausted"': float(snap.recovery.exhausted_operations),
            },
        )
        _block("profile_recovery_retries_total", "Primary retry attempts", "counter",
               {"": float(snap.recovery.retries)})
        _block("profile_recovery_failure_streak", "Consecutive primary failures", "gauge",
               {"": float(snap.recovery.current_failure_streak)})
        _block("profile_recovery_latency_ms", "Average run latency", "gauge",
               {"": snap.recovery.average_latency_ms})
        _block(
            "profile_health_gates_passed", "Number of passing health gates", "gauge",
            {f'health="{snap.health.value}"': float(snap.gates.passed)},
        )
        return "\n".join(lines) + "\n"
