"""Configuration management for the resumable importer."""

import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class ImporterConfig(BaseModel):
    """Importer configuration. Durations are in seconds."""

    # Upstream API
    base_url: str = Field(default="https://oauth.reddit.com", description="Upstream API base URL")
    listing_path: str = Field(default="/user/{username}/saved", description="Paginated listing path")
    username: str = Field(default="", description="Account whose listing is imported")
    access_token: Optional[str] = Field(default=None, description="Bearer token for the upstream API")
    user_agent: str = Field(default="resumable-importer/1.0.0", description="User-Agent header")

    # Request queue
    max_concurrent: int = Field(default=2, description="Maximum in-flight requests")
    request_timeout: float = Field(default=30.0, description="Per-request and queue-wait timeout")
    connect_timeout: float = Field(default=10.0, description="HTTP connect timeout")
    default_retry_after: float = Field(default=60.0, description="Delay when a 429 has no Retry-After")

    # Retry policy
    max_retries: int = Field(default=3, description="Maximum retry attempts per request")
    base_backoff: float = Field(default=1.0, description="Base delay for exponential backoff")
    max_backoff: float = Field(default=30.0, description="Maximum backoff delay")

    # Rate limiting
    rate_limit_requests: int = Field(default=60, description="Token bucket size (requests per window)")
    rate_limit_window: float = Field(default=60.0, description="Token bucket refill window")

    # Circuit breaker
    circuit_breaker_failure_threshold: int = Field(default=5, description="Windowed failures before opening")
    circuit_breaker_reset_timeout: float = Field(default=30.0, description="Open time before probing")
    circuit_breaker_success_threshold: int = Field(default=2, description="Probe successes before closing")
    circuit_breaker_failure_window: float = Field(default=60.0, description="Rolling failure window")

    # Offline buffer
    offline_queue_size: int = Field(default=100, description="Maximum buffered offline requests")

    # Import state
    enable_checkpointing: bool = Field(default=True, description="Persist resumable checkpoints")
    auto_save_interval: float = Field(default=5.0, description="Checkpoint auto-save interval")
    max_errors_before_pause: int = Field(default=10, description="Item failures before auto-pause")
    error_log_limit: int = Field(default=100, description="Per-item errors kept in the checkpoint")
    checkpoint_directory: str = Field(default=".import-state", description="Checkpoint directory")
    checkpoint_key: str = Field(default="import-checkpoint", description="Checkpoint record name")

    # Pagination
    page_size: int = Field(default=100, description="Items requested per page")
    fetch_limit: int = Field(default=1000, description="Maximum items to fetch in one run")
    max_items: int = Field(default=1000, description="Hard cap the upstream listing serves")
    max_pages: int = Field(default=50, description="Safety limit on pages per run")

    # Unsave
    unsave_after_import: bool = Field(default=False, description="Unsave imported items upstream when done")
    unsave_path: str = Field(default="/api/unsave", description="Unsave endpoint path")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Output
    output_directory: str = Field(default="imported", description="Directory items are stored in")
    summary_filename: str = Field(default="summary.json", description="Run summary JSON filename")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v.rstrip("/")

    @field_validator(
        "max_concurrent",
        "rate_limit_requests",
        "circuit_breaker_failure_threshold",
        "circuit_breaker_success_threshold",
        "page_size",
        "max_pages",
    )
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got: {v}")
        return v

    @field_validator("request_timeout", "rate_limit_window", "auto_save_interval")
    @classmethod
    def validate_positive_float(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got: {v}")
        return v

    @field_validator("max_retries", "max_errors_before_pause", "offline_queue_size")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative, got: {v}")
        return v

    @property
    def listing_url(self) -> str:
        return self.listing_path.format(username=self.username)

    @property
    def summary_path(self) -> Path:
        return Path(self.output_directory) / self.summary_filename

    @classmethod
    def from_env(cls) -> "ImporterConfig":
        """Create configuration with environment variable overrides."""
        config = cls()

        env_mappings = {
            "IMPORTER_BASE_URL": "base_url",
            "IMPORTER_USERNAME": "username",
            "IMPORTER_ACCESS_TOKEN": "access_token",
            "IMPORTER_MAX_CONCURRENT": "max_concurrent",
            "IMPORTER_REQUEST_TIMEOUT": "request_timeout",
            "IMPORTER_MAX_RETRIES": "max_retries",
            "IMPORTER_RATE_LIMIT_REQUESTS": "rate_limit_requests",
            "IMPORTER_FETCH_LIMIT": "fetch_limit",
            "IMPORTER_UNSAVE_AFTER_IMPORT": "unsave_after_import",
            "IMPORTER_CHECKPOINT_DIR": "checkpoint_directory",
            "IMPORTER_OUTPUT_DIR": "output_directory",
            "IMPORTER_LOG_LEVEL": "log_level",
        }

        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                field_info = cls.model_fields[field_name]
                if field_info.annotation == bool:
                    setattr(config, field_name, value.lower() in ("1", "true", "yes"))
                elif field_info.annotation == int:
                    setattr(config, field_name, int(value))
                elif field_info.annotation == float:
                    setattr(config, field_name, float(value))
                else:
                    setattr(config, field_name, value)

        return config


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[ImporterConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> ImporterConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged ImporterConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        base_config = ImporterConfig(**config_dict)

        env_config = ImporterConfig.from_env()

        merged_dict = base_config.model_dump()
        env_dict = env_config.model_dump()

        # Only override with env values that differ from defaults
        default_dict = ImporterConfig().model_dump()
        for key, value in env_dict.items():
            if value != default_dict[key]:
                merged_dict[key] = value

        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = ImporterConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> ImporterConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
