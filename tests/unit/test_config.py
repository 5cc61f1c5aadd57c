"""Unit tests for configuration management."""

import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from resumable_importer.models.config import ConfigManager, ImporterConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("IMPORTER_"):
            monkeypatch.delenv(name)


def test_importer_config_defaults():
    """Test that ImporterConfig has correct default values."""
    config = ImporterConfig()

    # Request queue
    assert config.max_concurrent == 2
    assert config.request_timeout == 30.0
    assert config.default_retry_after == 60.0

    # Retry policy
    assert config.max_retries == 3
    assert config.base_backoff == 1.0
    assert config.max_backoff == 30.0

    # Rate limiting
    assert config.rate_limit_requests == 60
    assert config.rate_limit_window == 60.0

    # Circuit breaker
    assert config.circuit_breaker_failure_threshold == 5
    assert config.circuit_breaker_reset_timeout == 30.0
    assert config.circuit_breaker_success_threshold == 2
    assert config.circuit_breaker_failure_window == 60.0

    # Offline buffer and import state
    assert config.offline_queue_size == 100
    assert config.auto_save_interval == 5.0
    assert config.max_errors_before_pause == 10
    assert config.enable_checkpointing is True

    # Pagination
    assert config.page_size == 100
    assert config.max_items == 1000

    # Unsave
    assert config.unsave_after_import is False
    assert config.unsave_path == "/api/unsave"


def test_base_url_trailing_slash_is_stripped():
    config = ImporterConfig(base_url="https://api.example.com/")
    assert config.base_url == "https://api.example.com"


def test_invalid_base_url_rejected():
    with pytest.raises(ValidationError, match="must start with http"):
        ImporterConfig(base_url="ftp://example.com")


@pytest.mark.parametrize("field", ["max_concurrent", "rate_limit_requests", "page_size", "max_pages"])
def test_positive_int_fields_rejected_at_zero(field):
    with pytest.raises(ValidationError, match=f"{field} must be positive"):
        ImporterConfig(**{field: 0})


@pytest.mark.parametrize("field", ["request_timeout", "rate_limit_window", "auto_save_interval"])
def test_positive_float_fields_rejected_at_zero(field):
    with pytest.raises(ValidationError, match=f"{field} must be positive"):
        ImporterConfig(**{field: 0.0})


def test_negative_retry_budget_rejected():
    with pytest.raises(ValidationError, match="max_retries must not be negative"):
        ImporterConfig(max_retries=-1)


def test_zero_retries_allowed():
    assert ImporterConfig(max_retries=0).max_retries == 0


def test_listing_url_and_summary_path():
    config = ImporterConfig(username="alice", output_directory="out", summary_filename="run.json")

    assert config.listing_url == "/user/alice/saved"
    assert config.summary_path == Path("out") / "run.json"


def test_from_env_converts_types(monkeypatch):
    monkeypatch.setenv("IMPORTER_MAX_CONCURRENT", "4")
    monkeypatch.setenv("IMPORTER_REQUEST_TIMEOUT", "12.5")
    monkeypatch.setenv("IMPORTER_USERNAME", "bob")

    config = ImporterConfig.from_env()

    assert config.max_concurrent == 4
    assert config.request_timeout == 12.5
    assert config.username == "bob"



def test_from_env_parses_booleans(monkeypatch):
    monkeypatch.setenv("IMPORTER_UNSAVE_AFTER_IMPORT", "true")

    assert ImporterConfig.from_env().unsave_after_import is True


class TestConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "missing.yaml").load_config()
        assert config == ImporterConfig()

    def test_yaml_values_loaded(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"username": "alice", "page_size": 25}))

        config = ConfigManager(config_file).load_config()

        assert config.username == "alice"
        assert config.page_size == 25

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"max_concurrent": 3}))
        monkeypatch.setenv("IMPORTER_MAX_CONCURRENT", "4")

        config = ConfigManager(config_file).load_config()

        assert config.max_concurrent == 4

    def test_cli_overrides_env_and_yaml(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"max_concurrent": 3, "username": "alice"}))
        monkeypatch.setenv("IMPORTER_MAX_CONCURRENT", "4")

        config = ConfigManager(config_file).load_config({"max_concurrent": 5, "username": None})

        assert config.max_concurrent == 5
        assert config.username == "alice"

    def test_invalid_yaml_value_raises(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"page_size": 0}))

        with pytest.raises(ValidationError):
            ConfigManager(config_file).load_config()

    def test_config_property_loads_lazily(self, tmp_path):
        manager = ConfigManager(tmp_path / "missing.yaml")
        assert manager.config.max_concurrent == 2
