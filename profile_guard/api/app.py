"""
FastAPI application factory exposing profile-guard telemetry.

Read-only: both endpoints render the current
:class:`~profile_guard.observability.metrics.MetricsAggregator` snapshot.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from profile_guard.config import get_settings
from profile_guard.observability.metrics import MetricsAggregator

logger = logging.getLogger(__name__)


def create_app(aggregator: MetricsAggregator, version: Optional[str] = None) -> FastAPI:
    """Create the telemetry app.

    Args:
        aggregator: Source of health snapshots.
        version: Reported service version; defaults to ``api.version``.

    Returns:
        Configured :class:`FastAPI` instance.
    """
    app = FastAPI(
        title="profile-guard telemetry",
        version=version or get_settings().api.version,
    )
    app.state.aggregator = aggregator
    app.state.start_time = time.time()

    @app.get("/health", summary="Profile cache and recovery health snapshot")
    async def health(request: Request) -> Dict[str, Any]:
        """Return the current snapshot with service uptime."""
        agg: MetricsAggregator = request.app.state.aggregator
        snapshot = agg.snapshot()
        return {
            "status": snapshot.health.value,
            "version": request.app.version,
            "uptime_seconds": round(time.time() - request.app.state.start_time, 1),
            "snapshot": snapshot.model_dump(mode="json"),
        }

    @app.get(
        "/metrics",
        response_class=PlainTextResponse,
        summary="Prometheus text exposition",
    )
    async def metrics(request: Request) -> str:
        agg: MetricsAggregator = request.app.state.aggregator
        return agg.get_prometheus_metrics()

    logger.info("Telemetry app created", extra={"version": app.version})
    return app
