"""
Central configuration loader for profile-guard.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``PROFILE_GUARD_`` prefix), and exposes a typed
:class:`Settings` singleton via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # profile_guard/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root

ENV_PREFIX = "PROFILE_GUARD_"


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class CacheSettings:
    memory_ttl_seconds: int = 3600
    session_ttl_seconds: int = 21600
    durable_ttl_seconds: int = 86400
    schema_version: str = "1.0"
    key_prefix: str = "profile_cache_"
    cleanup_interval_seconds: int = 1800
    max_stale_entries: int = 1000


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    jitter_factor: float = 0.1


@dataclass
class RecoverySettings:
    latency_window: int = 100
    profile_max_attempts: int = 2
    profile_base_delay_seconds: float = 0.5
    allow_session_synthesis: bool = True
    dedupe_in_flight: bool = False
    session_markers: List[str] = field(default_factory=lambda: ["supabase", "auth"])


@dataclass
class MetricsSettings:
    latency_threshold_ms: float = 100.0
    hit_rate_threshold_pct: float = 70.0
    success_rate_threshold_pct: float = 95.0


@dataclass
class StorageSettings:
    durable_backend: str = "memory"
    file_path: str = "data/profile_cache.json"
    redis_url: str = "redis://localhost:6379/0"


@dataclass
class ApiSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    version: str = "1.0.0"


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "text"


@dataclass
class Settings:
    """Top-level settings container."""
    cache: CacheSettings = field(default_factory=CacheSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _apply_dict(target: object, data: Dict[str, Any]) -> None:
    """Apply *data* values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if not hasattr(target, key):
            logger.debug("Ignoring unknown config key: %s", key)
            continue
        setattr(target, key, value)


# ---------------------------------------------------------------------------
# Env-var overrides  (PROFILE_GUARD_SECTION_KEY  e.g. PROFILE_GUARD_RETRY_MAX_ATTEMPTS)
# ---------------------------------------------------------------------------

_SECTIONS = [
    "cache", "retry", "recovery", "metrics", "storage", "api", "logging",
]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
    list: lambda v: [item.strip() for item in v.split(",") if item.strip()],
}


def _apply_env_overrides(settings: Settings) -> None:
    """Override scalar fields via ``PROFILE_GUARD_<SECTION>_<KEY>`` env vars."""
    for section_name in _SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"{ENV_PREFIX}{section_name.upper()}_"
        for key in list(vars(section)):
            env_key = prefix + key.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, key)
            cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, key, cast(env_val))
                logger.debug("Env override applied: %s=%s", env_key, env_val)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the application-wide :class:`Settings` singleton.

    On first call (or when ``_force_reload=True``) the function:

    1. Calls ``load_dotenv()`` to populate env vars from ``.env``.
    2. Reads ``config/config.yaml``.
    3. Applies ``PROFILE_GUARD_*`` environment-variable overrides.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        if _settings is not None and not _force_reload:
            return _settings

        dotenv_path = env_path or _project_path(".env")
        load_dotenv(dotenv_path, override=True)

        config_path = yaml_path or _project_path("config", "config.yaml")
        raw = _load_yaml(config_path)

        settings = Settings()
        for section_name in _SECTIONS:
            section_data = raw.get(section_name)
            if isinstance(section_data, dict):
                _apply_dict(getattr(settings, section_name), section_data)

        _apply_env_overrides(settings)

        _settings = settings
        logger.info("Settings loaded from %s", config_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_LOG_FORMATS = {
    "text": "%(asctime)s [%(levelname)-8s] %(name)s - %(message)s",
    "json": (
        '{"time": "%(asctime)s", "level": "%(levelname)s", '
        '"logger": "%(name)s", "message": "%(message)s"}'
    ),
}


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure the root logger from the ``logging`` settings section.

    Args:
        settings: Logging settings; defaults to ``get_settings().logging``.
    """
    if settings is None:
        settings = get_settings().logging
    level = getattr(logging, str(settings.level).upper(), logging.INFO)
    fmt = _LOG_FORMATS.get(settings.format, _LOG_FORMATS["text"])
    logging.basicConfig(level=level, format=fmt, force=True)
    logger.debug("Logging configured", extra={"level": settings.level})
