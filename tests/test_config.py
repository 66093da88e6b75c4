"""Tests for the central configuration loader (photoroute/config.py)."""

import pytest
import yaml

from photoroute.config import (
    CacheSettings,
    CreditSettings,
    RoutingSettings,
    Settings,
    _apply_dict,
    _apply_env_overrides,
    _load_yaml,
    get_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings():
    """Reset the singleton before and after each test."""
    reset_settings()
    yield
    reset_settings()


# ── YAML loading ────────────────────────────────────────


class TestLoadYaml:
    """Tests for YAML loading."""

    def test_loads_valid_yaml(self, tmp_path):
        f = tmp_path / "cfg.yaml"
        f.write_text("routing:\n  max_retries: 4\n")
        data = _load_yaml(f)
        assert data["routing"]["max_retries"] == 4

    def test_returns_empty_dict_for_missing_file(self, tmp_path):
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_returns_empty_dict_for_non_dict_yaml(self, tmp_path):
        f = tmp_path / "cfg.yaml"
        f.write_text("- item1\n- item2\n")
        assert _load_yaml(f) == {}


# ── Settings defaults ───────────────────────────────────


class TestSettingsDefaults:
    """Tests for default settings values."""

    def test_default_settings_have_expected_values(self):
        s = Settings()
        assert s.routing.max_retries == 2
        assert s.routing.retry_backoff_seconds == 1.0
        assert s.credits.free_premium == 5
        assert s.credits.pro_budget == 500
        assert s.cache.ttl_seconds == 7 * 24 * 3600
        assert s.cache.max_entries == 50
        assert s.providers.clipdrop.api_key_env == "CLIPDROP_API_KEY"
        assert s.providers.gemini.model == "gemini-2.0-flash-exp"

    def test_provider_timeouts_within_bounds(self):
        endpoints = Settings().providers
        for endpoint in (endpoints.clipdrop, endpoints.fal_flux, endpoints.openai, endpoints.gemini):
            assert 30 <= endpoint.timeout_seconds <= 60


# ── get_settings() from YAML ────────────────────────────


class TestGetSettings:
    """Tests for the settings singleton."""

    def _write_config(self, tmp_path, data):
        f = tmp_path / "config.yaml"
        f.write_text(yaml.dump(data))
        return f

    def test_loads_yaml_values(self, tmp_path):
        cfg = self._write_config(tmp_path, {
            "credits": {"free_budget": 7},
            "cache": {"max_entries": 3},
            "providers": {"openai": {"model": "gpt-image-1"}},
        })
        s = get_settings(yaml_path=cfg, env_path=tmp_path / ".env", _force_reload=True)
        assert s.credits.free_budget == 7
        assert s.credits.free_premium == 5
        assert s.cache.max_entries == 3
        assert s.providers.openai.model == "gpt-image-1"
        assert s.providers.openai.api_key_env == "OPENAI_API_KEY"

    def test_unknown_keys_ignored(self, tmp_path):
        cfg = self._write_config(tmp_path, {"routing": {"nonsense": 1}, "unknown": {"a": 1}})
        s = get_settings(yaml_path=cfg, env_path=tmp_path / ".env", _force_reload=True)
        assert not hasattr(s.routing, "nonsense")

    def test_singleton_returned(self, tmp_path):
        cfg = self._write_config(tmp_path, {})
        first = get_settings(yaml_path=cfg, env_path=tmp_path / ".env", _force_reload=True)
        assert get_settings() is first

    def test_reset_forces_reload(self, tmp_path):
        cfg = self._write_config(tmp_path, {})
        first = get_settings(yaml_path=cfg, env_path=tmp_path / ".env", _force_reload=True)
        reset_settings()
        second = get_settings(yaml_path=cfg, env_path=tmp_path / ".env")
        assert first is not second


# ── Overrides ───────────────────────────────────────────


class TestOverrides:
    """Tests for environment overrides."""

    def test_apply_dict_nested(self):
        s = Settings()
        _apply_dict(s, {"routing": {"max_retries": 5}, "cache": {"ttl_seconds": 10}})
        assert s.routing.max_retries == 5
        assert s.cache.ttl_seconds == 10

    def test_env_override_casts_types(self, monkeypatch):
        monkeypatch.setenv("PHOTOROUTE_ROUTING_MAX_RETRIES", "4")
        monkeypatch.setenv("PHOTOROUTE_ROUTING_RETRY_BACKOFF_SECONDS", "0.25")
        monkeypatch.setenv("PHOTOROUTE_CREDITS_PRO_PREMIUM", "12")
        s = Settings()
        _apply_env_overrides(s)
        assert s.routing.max_retries == 4
        assert s.routing.retry_backoff_seconds == 0.25
        assert s.credits.pro_premium == 12

    def test_invalid_env_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv("PHOTOROUTE_CACHE_MAX_ENTRIES", "many")
        s = Settings()
        _apply_env_overrides(s)
        assert s.cache.max_entries == CacheSettings().max_entries

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        cfg = tmp_path / "config.yaml"
        cfg.write_text(yaml.dump({"credits": {"free_budget": 7}}))
        monkeypatch.setenv("PHOTOROUTE_CREDITS_FREE_BUDGET", "9")
        s = get_settings(yaml_path=cfg, env_path=tmp_path / ".env", _force_reload=True)
        assert s.credits.free_budget == 9


class TestSectionDataclasses:
    """Tests for the settings section dataclasses."""

    def test_independent_instances(self):
        a, b = RoutingSettings(), RoutingSettings()
        a.max_retries = 9
        assert b.max_retries == 2

    def test_credit_settings_fields(self):
        c = CreditSettings(free_budget=1, free_premium=0, pro_budget=2, pro_premium=3)
        assert (c.free_budget, c.free_premium, c.pro_budget, c.pro_premium) == (1, 0, 2, 3)
