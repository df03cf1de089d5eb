"""Tests for configuration management."""

import pytest
from pydantic import SecretStr, ValidationError


def create_test_settings(**kwargs):
    """Helper to create Settings instance without loading .env file."""
    from monitoring_sdk.config import Settings

    return Settings(_env_file=None, **kwargs)


class TestSettingsInitialization:
    """Tests for Settings initialization from environment variables."""

    def test_settings_from_env_minimal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test Settings with only the API key set."""
        monkeypatch.setenv("MONITORING_API_KEY", "key-123")
        monkeypatch.delenv("MONITORING_ENDPOINT", raising=False)

        settings = create_test_settings()
        assert settings.api_key.get_secret_value() == "key-123"
        assert settings.endpoint == "http://localhost:8080/api/v1/ingest"

    def test_settings_from_env_complete(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test Settings picks up every transport variable."""
        monkeypatch.setenv("MONITORING_API_KEY", "key-456")
        monkeypatch.setenv("MONITORING_ENDPOINT", "https://collector.test/ingest")
        monkeypatch.setenv("MONITORING_MAX_RETRIES", "5")
        monkeypatch.setenv("MONITORING_RETRY_DELAY", "0.5")
        monkeypatch.setenv("MONITORING_BATCH_SIZE", "25")
        monkeypatch.setenv("MONITORING_USE_COMPRESSION", "false")
        monkeypatch.setenv("MONITORING_QUEUE_FILE", "/tmp/q.json")
        monkeypatch.setenv("MONITORING_LOG_LEVEL", "debug")

        settings = create_test_settings()
        assert settings.endpoint == "https://collector.test/ingest"
        assert settings.max_retries == 5
        assert settings.retry_delay == 0.5
        assert settings.batch_size == 25
        assert settings.use_compression is False
        assert settings.queue_file == "/tmp/q.json"
        assert settings.log_level == "DEBUG"

    def test_missing_api_key_fails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the API key is required."""
        monkeypatch.delenv("MONITORING_API_KEY", raising=False)

        with pytest.raises(ValidationError):
            create_test_settings()

    def test_defaults(self) -> None:
        """Test default transport tuning."""
        settings = create_test_settings(api_key=SecretStr("k"))
        assert settings.max_retries == 3
        assert settings.retry_delay == 1.0
        assert settings.max_retry_delay == 60.0
        assert settings.timeout == 10.0
        assert settings.batch_size == 100
        assert settings.use_compression is True
        assert settings.enable_offline_support is True
        assert settings.max_queue_size == 1000
        assert settings.flush_interval == 0.0


class TestSettingsValidation:
    """Tests for field validators."""

    def test_negative_max_retries_rejected(self) -> None:
        with pytest.raises(ValidationError, match="max_retries must be >= 0"):
            create_test_settings(api_key=SecretStr("k"), max_retries=-1)

    @pytest.mark.parametrize("field", ["batch_size", "max_queue_size"])
    def test_sizes_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError, match="value must be >= 1"):
            create_test_settings(api_key=SecretStr("k"), **{field: 0})

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="log_level must be one of"):
            create_test_settings(api_key=SecretStr("k"), log_level="LOUD")

    def test_log_level_uppercased(self) -> None:
        settings = create_test_settings(api_key=SecretStr("k"), log_level="warning")
        assert settings.log_level == "WARNING"


class TestSettingsProperties:
    """Tests for derived properties."""

    def test_log_file_path(self) -> None:
        settings = create_test_settings(
            api_key=SecretStr("k"), log_directory="/var/log/sdk", log_file_prefix="telemetry"
        )
        assert settings.log_file_path == "/var/log/sdk/telemetry.log"

    def test_is_development(self) -> None:
        assert create_test_settings(api_key=SecretStr("k"), environment="Development").is_development
        assert not create_test_settings(api_key=SecretStr("k"), environment="production").is_development


class TestGetSettings:
    """Tests for the cached accessor."""

    def test_get_settings_is_cached(self) -> None:
        from monitoring_sdk.config import get_settings

        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
