"""
Tests for configuration loading and typed settings.
"""

from pathlib import Path

import pytest

from aircache.config import CacheSettings, Config, load_config
from aircache.exceptions import ConfigurationError

ENV_VARS = [
    "AIRTABLE_PERSONAL_TOKEN",
    "AIRTABLE_BASE_ID",
    "BEARER_TOKEN",
    "REFRESH_INTERVAL",
    "STORAGE_PATH",
    "ENABLE_ATTACHMENT_DOWNLOAD",
    "PORT",
    "REDIS_URL",
    "AIRTABLE_WEBHOOK_ID",
    "AIRTABLE_WEBHOOK_SECRET",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


@pytest.mark.unit
class TestConfig:
    def test_dot_access(self):
        config = Config({"storage": {"backend": "duckdb"}})
        assert config.get("storage.backend") == "duckdb"
        assert config.get("storage.missing", "x") == "x"
        assert config["storage.backend"] == "duckdb"
        assert "storage.backend" in config
        assert "storage.url" not in config

    def test_missing_key_raises(self):
        with pytest.raises(KeyError):
            Config({})["nope"]

    def test_section_of_scalar_is_empty(self):
        assert Config({"logging": "loud"}).section("logging") == {}

    def test_rejects_non_mapping(self):
        with pytest.raises(ConfigurationError):
            Config(["a"])


@pytest.mark.unit
class TestLoadConfig:
    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AIRTABLE_BASE_ID", "appXYZ")
        path = _write(tmp_path / "config.yaml", "source:\n  base_id: ${AIRTABLE_BASE_ID}\n  token: ${UNSET_TOKEN_VAR}\n")
        config = load_config(path)
        assert config.get("source.base_id") == "appXYZ"
        assert config.get("source.token") == "${UNSET_TOKEN_VAR}"

    def test_directory_path(self, tmp_path):
        _write(tmp_path / "config.yaml", "batch_size: 10\n")
        assert load_config(tmp_path).get("batch_size") == 10

    def test_env_overlay(self, tmp_path):
        _write(tmp_path / "config.yaml", "batch_size: 10\nstorage:\n  backend: memory\n  prefix: base\n")
        _write(tmp_path / "config.prod.yaml", "storage:\n  backend: redis\n")
        config = load_config(tmp_path / "config.yaml", env="prod")
        assert config.get("storage.backend") == "redis"
        assert config.get("storage.prefix") == "base"
        assert config.get("batch_size") == 10

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_implicit_missing_file_is_empty(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert list(load_config()) == []

    def test_invalid_yaml_reports_line(self, tmp_path):
        path = _write(tmp_path / "config.yaml", "storage:\n  backend: [unclosed\n")
        with pytest.raises(ConfigurationError, match="line"):
            load_config(path)

    def test_non_mapping_file(self, tmp_path):
        path = _write(tmp_path / "config.yaml", "- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)


@pytest.mark.unit
class TestCacheSettings:
    def test_defaults(self):
        settings = CacheSettings.from_config(Config({}))
        assert settings.refresh_interval == 86400
        assert settings.batch_size == 50
        assert settings.lock_ttl == 1800
        assert settings.attachments.enabled is True
        assert settings.attachments.storage_path == "./data/attachments"
        assert settings.attachments.concurrency == 5
        assert settings.service.port == 3000
        assert settings.storage.backend == "memory"
        assert settings.effective_refresh_interval == 86400

    def test_environment_fills_gaps(self, monkeypatch):
        monkeypatch.setenv("AIRTABLE_PERSONAL_TOKEN", "pat123")
        monkeypatch.setenv("AIRTABLE_BASE_ID", "app123")
        monkeypatch.setenv("BEARER_TOKEN", "secret")
        monkeypatch.setenv("REFRESH_INTERVAL", "600")
        monkeypatch.setenv("ENABLE_ATTACHMENT_DOWNLOAD", "false")
        settings = CacheSettings.from_config(Config({}))
        assert settings.source.token == "pat123"
        assert settings.source.base_id == "app123"
        assert settings.service.bearer_token == "secret"
        assert settings.refresh_interval == 600
        assert settings.attachments.enabled is False

    def test_file_wins_over_environment(self, monkeypatch):
        monkeypatch.setenv("AIRTABLE_BASE_ID", "appEnv")
        settings = CacheSettings.from_config(Config({"source": {"base_id": "appFile"}}))
        assert settings.source.base_id == "appFile"

    def test_unresolved_placeholder_counts_as_missing(self):
        settings = CacheSettings.from_config(Config({"service": {"bearer_token": "${BEARER_TOKEN}"}}))
        assert settings.service.bearer_token is None

    def test_webhooks_use_failsafe_interval(self):
        settings = CacheSettings.from_config(
            Config({"webhooks": {"enabled": True, "secret": "c2VjcmV0"}, "failsafe_refresh_interval": 3600})
        )
        assert settings.effective_refresh_interval == 3600

    def test_webhooks_require_secret(self):
        with pytest.raises(ConfigurationError, match="webhooks.secret"):
            CacheSettings.from_config(Config({"webhooks": {"enabled": True}}))

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="storage.backend"):
            CacheSettings.from_config(Config({"storage": {"backend": "mongo"}}))

    def test_bad_integer(self):
        with pytest.raises(ConfigurationError, match="batch_size"):
            CacheSettings.from_config(Config({"batch_size": "lots"}))

    def test_zero_batch_size(self):
        with pytest.raises(ConfigurationError, match="batch_size"):
            CacheSettings.from_config(Config({"batch_size": 0}))

    def test_require_source(self):
        settings = CacheSettings.from_config(Config({}))
        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_source()
        assert exc_info.value.details["missing"] == ["AIRTABLE_PERSONAL_TOKEN", "AIRTABLE_BASE_ID"]
