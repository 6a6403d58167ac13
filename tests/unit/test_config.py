"""Tests for valora.core.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from valora.core.config import (
    APIConfig,
    RefreshConfig,
    SourcesConfig,
    ValoraConfig,
    _auto_cast,
    load_config,
)
from valora.core.exceptions import ConfigError
from valora.core.models import ArchiveTransport


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the developer's environment and working directory."""
    import os

    for key in list(os.environ):
        if key.startswith("VALORA_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_defaults(self):
        config = load_config()
        assert isinstance(config, ValoraConfig)
        assert config.refresh.metals_interval_seconds == 300
        assert config.refresh.fx_interval_seconds == 600
        assert config.refresh.cooldown_seconds == 10
        assert config.backfill.metals_years == 5
        assert config.backfill.fx_years == 3
        assert config.sources.haremaltin_cf_clearance is None
        assert config.sources.haremaltin_transport == ArchiveTransport.CURL
        assert config.api.port == 5050

    def test_frozen(self):
        config = ValoraConfig()
        with pytest.raises(ValidationError):
            config.api.port = 1


class TestYaml:
    def test_yaml_overrides_defaults(self, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text(
            "refresh:\n  cooldown_seconds: 30\nstorage:\n  sqlite_path: /tmp/x.db\n"
        )
        config = load_config(str(path))
        assert config.refresh.cooldown_seconds == 30
        assert config.storage.sqlite_path == "/tmp/x.db"

    def test_default_file_in_cwd(self, tmp_path):
        (tmp_path / "valora.yml").write_text("api:\n  port: 8080\n")
        assert load_config().api.port == 8080

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yml"))

    def test_missing_env_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VALORA_CONFIG", str(tmp_path / "nope.yml"))
        with pytest.raises(ConfigError, match="VALORA_CONFIG"):
            load_config()

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("refresh: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(str(path)) == ValoraConfig()


class TestEnvVars:
    def test_env_overrides_yaml(self, monkeypatch, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("refresh:\n  cooldown_seconds: 30\n")
        monkeypatch.setenv("VALORA_REFRESH__COOLDOWN_SECONDS", "45")
        assert load_config(str(path)).refresh.cooldown_seconds == 45

    def test_cookie_stays_string(self, monkeypatch):
        monkeypatch.setenv("VALORA_SOURCES__HAREMALTIN_CF_CLEARANCE", "12345")
        cookie = load_config().sources.haremaltin_cf_clearance
        assert cookie.get_secret_value() == "12345"

    def test_blank_cookie_is_none(self, monkeypatch):
        monkeypatch.setenv("VALORA_SOURCES__HAREMALTIN_CF_CLEARANCE", "  ")
        assert load_config().sources.haremaltin_cf_clearance is None

    def test_cookie_not_in_repr(self, monkeypatch):
        monkeypatch.setenv("VALORA_SOURCES__HAREMALTIN_CF_CLEARANCE", "topsecret")
        assert "topsecret" not in repr(load_config())

    def test_bool_cast(self, monkeypatch):
        monkeypatch.setenv("VALORA_BACKFILL__ENABLED", "false")
        assert load_config().backfill.enabled is False

    def test_transport_from_env(self, monkeypatch):
        monkeypatch.setenv("VALORA_SOURCES__HAREMALTIN_TRANSPORT", "httpx")
        assert load_config().sources.haremaltin_transport == ArchiveTransport.HTTPX

    def test_invalid_value_wrapped(self, monkeypatch):
        monkeypatch.setenv("VALORA_REFRESH__METALS_INTERVAL_SECONDS", "0")
        with pytest.raises(ConfigError):
            load_config()


class TestValidation:
    def test_rate_limit_positive(self):
        with pytest.raises(ValidationError):
            SourcesConfig(rate_limit=0)

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            SourcesConfig(request_timeout=0)

    def test_cooldown_non_negative(self):
        with pytest.raises(ValidationError):
            RefreshConfig(cooldown_seconds=-1)

    def test_ttl_non_negative(self):
        with pytest.raises(ValidationError):
            APIConfig(latest_ttl_seconds=-5)

    def test_cache_cleanup_interval_positive(self):
        assert APIConfig().cache_cleanup_seconds == 3600
        with pytest.raises(ValidationError):
            APIConfig(cache_cleanup_seconds=0)


class TestAutoCast:
    @pytest.mark.parametrize(
        "raw, expected",
        [("true", True), ("FALSE", False), ("42", 42), ("1.5", 1.5), ("abc", "abc")],
    )
    def test_cast(self, raw, expected):
        assert _auto_cast(raw) == expected
