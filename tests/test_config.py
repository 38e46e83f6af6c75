"""Tests for the central configuration loader (profile_guard/config.py)."""

import logging

import pytest

from profile_guard.config import (
    CacheSettings,
    LoggingSettings,
    RecoverySettings,
    Settings,
    _apply_dict,
    _apply_env_overrides,
    _load_yaml,
    configure_logging,
    get_settings,
)


@pytest.fixture
def empty_env(tmp_path):
    path = tmp_path / ".env"
    path.write_text("")
    return path


# ── YAML loading ────────────────────────────────────────


class TestLoadYaml:
    def test_loads_valid_yaml(self, tmp_path) -> None:
        f = tmp_path / "cfg.yaml"
        f.write_text("retry:\n  max_attempts: 7\n")
        assert _load_yaml(f)["retry"]["max_attempts"] == 7

    def test_returns_empty_dict_for_missing_file(self, tmp_path) -> None:
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_returns_empty_dict_for_non_dict_yaml(self, tmp_path) -> None:
        f = tmp_path / "cfg.yaml"
        f.write_text("- item1\n- item2\n")
        assert _load_yaml(f) == {}


# ── Settings defaults ───────────────────────────────────


class TestSettingsDefaults:
    def test_default_settings_have_expected_values(self) -> None:
        s = Settings()
        assert s.cache.memory_ttl_seconds == 3600
        assert s.cache.session_ttl_seconds == 21600
        assert s.cache.durable_ttl_seconds == 86400
        assert s.retry.max_attempts == 3
        assert s.retry.base_delay_seconds == 1.0
        assert s.retry.max_delay_seconds == 5.0
        assert s.recovery.latency_window == 100
        assert s.recovery.session_markers == ["supabase", "auth"]
        assert s.metrics.latency_threshold_ms == 100.0
        assert s.storage.durable_backend == "memory"

    def test_apply_dict_ignores_unknown_keys(self) -> None:
        section = CacheSettings()
        _apply_dict(section, {"memory_ttl_seconds": 60, "bogus": 1})
        assert section.memory_ttl_seconds == 60
        assert not hasattr(section, "bogus")


# ── get_settings() ──────────────────────────────────────


class TestGetSettings:
    def test_reads_yaml_sections(self, tmp_path, empty_env) -> None:
        cfg = tmp_path / "config.yaml"
        cfg.write_text(
            "cache:\n  memory_ttl_seconds: 120\n"
            "storage:\n  durable_backend: file\n"
        )
        s = get_settings(yaml_path=cfg, env_path=empty_env, _force_reload=True)
        assert s.cache.memory_ttl_seconds == 120
        assert s.storage.durable_backend == "file"
        assert s.cache.session_ttl_seconds == 21600

    def test_is_a_singleton(self, tmp_path, empty_env) -> None:
        cfg = tmp_path / "config.yaml"
        cfg.write_text("")
        first = get_settings(yaml_path=cfg, env_path=empty_env)
        assert get_settings() is first

    def test_project_config_file_loads(self) -> None:
        s = get_settings(_force_reload=True)
        assert s.cache.key_prefix == "profile_cache_"


# ── Env overrides ───────────────────────────────────────


class TestEnvOverrides:
    def test_scalar_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("PROFILE_GUARD_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PROFILE_GUARD_RETRY_JITTER_FACTOR", "0.25")
        monkeypatch.setenv("PROFILE_GUARD_RECOVERY_DEDUPE_IN_FLIGHT", "true")
        s = Settings()
        _apply_env_overrides(s)
        assert s.retry.max_attempts == 5
        assert s.retry.jitter_factor == 0.25
        assert s.recovery.dedupe_in_flight is True

    def test_list_override(self, monkeypatch) -> None:
        monkeypatch.setenv("PROFILE_GUARD_RECOVERY_SESSION_MARKERS", "myapp, session")
        s = Settings()
        _apply_env_overrides(s)
        assert s.recovery.session_markers == ["myapp", "session"]

    def test_invalid_override_is_ignored(self, monkeypatch) -> None:
        monkeypatch.setenv("PROFILE_GUARD_CACHE_MEMORY_TTL_SECONDS", "soon")
        s = Settings()
        _apply_env_overrides(s)
        assert s.cache.memory_ttl_seconds == 3600

    def test_env_wins_over_yaml(self, tmp_path, empty_env, monkeypatch) -> None:
        cfg = tmp_path / "config.yaml"
        cfg.write_text("metrics:\n  latency_threshold_ms: 50\n")
        monkeypatch.setenv("PROFILE_GUARD_METRICS_LATENCY_THRESHOLD_MS", "75")
        s = get_settings(yaml_path=cfg, env_path=empty_env, _force_reload=True)
        assert s.metrics.latency_threshold_ms == 75.0


# ── Logging ─────────────────────────────────────────────


class TestConfigureLogging:
    def test_sets_root_level(self) -> None:
        root = logging.getLogger()
        original = root.level
        try:
            configure_logging(LoggingSettings(level="DEBUG"))
            assert root.level == logging.DEBUG
            configure_logging(LoggingSettings(level="WARNING", format="json"))
            assert root.level == logging.WARNING
        finally:
            root.setLevel(original)

    def test_recovery_settings_defaults(self) -> None:
        s = RecoverySettings()
        assert s.profile_max_attempts == 2
        assert s.allow_session_synthesis is True
