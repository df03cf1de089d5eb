"""Configuration management for the monitoring SDK."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SDK settings loaded from ``MONITORING_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Ingestion endpoint
    endpoint: str = Field(
        default="http://localhost:8080/api/v1/ingest",
        description="URL that telemetry batches are POSTed to",
    )
    api_key: SecretStr = Field(description="API key sent as a Bearer token")

    # Transport tuning
    max_retries: int = Field(default=3, description="Retries per item before it is dropped")
    retry_delay: float = Field(
        default=1.0, description="Base backoff delay in seconds (doubles per retry)"
    )
    max_retry_delay: float = Field(default=60.0, description="Ceiling for the backoff delay")
    timeout: float = Field(default=10.0, description="Per-request HTTP timeout in seconds")
    batch_size: int = Field(default=100, description="Items per request when flushing")
    use_compression: bool = Field(default=True, description="Gzip request bodies")
    enable_offline_support: bool = Field(
        default=True, description="Queue and persist payloads that cannot be sent"
    )
    max_queue_size: int = Field(default=1000, description="Maximum items held in the queue")
    max_item_age: float = Field(
        default=86400.0, description="Seconds after which queued items expire"
    )
    flush_interval: float = Field(
        default=0.0, description="Seconds between automatic flushes (0 disables)"
    )
    probe_interval: float = Field(
        default=0.0, description="Seconds between connectivity probes (0 disables)"
    )

    # Persistence
    queue_file: str = Field(
        default=".monitoring_sdk/queue.json",
        description="File used by the CLI to persist the queue",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="monitoring_sdk", description="Prefix for log file names")

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate the retry budget is not negative."""
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got: {v}")
        return v

    @field_validator("batch_size", "max_queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate sizes are at least one."""
        if v < 1:
            raise ValueError(f"value must be >= 1, got: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a standard level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got: {v}")
        return v_upper

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars
