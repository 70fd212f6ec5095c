# tests/unit/test_config.py
"""Unit tests for settings resolution and runtime profile detection.

Tests cover:
- DeepTracerSettings defaults and derived properties
- Validation of numeric bounds
- require_delivery() raising ConfigurationError
- load_settings() from DEEPTRACER_* variables, PYTHON_ENV fallback, overrides
- RuntimeProfile serverless detection and flush interval defaults
"""

import pytest
from pydantic import ValidationError

from deeptracer.config import (
    DEFAULT_FLUSH_INTERVAL,
    SERVERLESS_FLUSH_INTERVAL,
    DeepTracerSettings,
    RuntimeProfile,
    load_settings,
)
from deeptracer.errors import ConfigurationError
from deeptracer.events import LogLevel


class TestSettingsDefaults:
    def test_defaults(self) -> None:
        settings = DeepTracerSettings()

        assert settings.service == "web"
        assert settings.environment == "production"
        assert settings.batch_size == 50
        assert settings.flush_interval is None
        assert settings.max_breadcrumbs == 20
        assert settings.debug is False
        assert not settings.delivery_configured

    def test_settings_are_frozen(self) -> None:
        settings = DeepTracerSettings()
        with pytest.raises(ValidationError):
            settings.service = "other"  # type: ignore[misc]

    @pytest.mark.parametrize(
        ("environment", "expected"),
        [("production", LogLevel.INFO), ("staging", LogLevel.DEBUG), ("development", LogLevel.DEBUG)],
    )
    def test_min_level_from_environment(self, environment: str, expected: LogLevel) -> None:
        assert DeepTracerSettings(environment=environment).min_level is expected

    def test_explicit_level_wins(self) -> None:
        assert DeepTracerSettings(environment="production", level=LogLevel.ERROR).min_level is LogLevel.ERROR

    def test_secret_key_preferred_over_public_key(self) -> None:
        settings = DeepTracerSettings(secret_key="dt_secret_a", public_key="dt_public_b")
        assert settings.auth_key == "dt_secret_a"

    def test_public_key_used_without_secret(self) -> None:
        assert DeepTracerSettings(public_key="dt_public_b").auth_key == "dt_public_b"

    @pytest.mark.parametrize(
        "fields",
        [{"batch_size": 0}, {"flush_interval": 0}, {"max_breadcrumbs": 0}, {"level": "verbose"}],
    )
    def test_invalid_values_rejected(self, fields: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            DeepTracerSettings(**fields)  # type: ignore[arg-type]


class TestRequireDelivery:
    def test_missing_credential(self) -> None:
        with pytest.raises(ConfigurationError) as excinfo:
            DeepTracerSettings(endpoint="https://ingest.example.com").require_delivery()

        assert excinfo.value.setting == "secret_key"

    def test_missing_endpoint(self) -> None:
        with pytest.raises(ConfigurationError) as excinfo:
            DeepTracerSettings(secret_key="dt_secret_a").require_delivery()

        assert excinfo.value.setting == "endpoint"

    def test_complete_settings_returned(self) -> None:
        settings = DeepTracerSettings(secret_key="dt_secret_a", endpoint="https://ingest.example.com")

        assert settings.require_delivery() is settings
        assert settings.delivery_configured


class TestLoadSettings:
    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEEPTRACER_SECRET_KEY", "dt_secret_env")
        monkeypatch.setenv("DEEPTRACER_ENDPOINT", "https://ingest.example.com")
        monkeypatch.setenv("DEEPTRACER_SERVICE", "billing")
        monkeypatch.setenv("DEEPTRACER_ENVIRONMENT", "staging")
        monkeypatch.setenv("DEEPTRACER_LOG_LEVEL", "WARN")
        monkeypatch.setenv("DEEPTRACER_BATCH_SIZE", "10")
        monkeypatch.setenv("DEEPTRACER_FLUSH_INTERVAL", "0.5")
        monkeypatch.setenv("DEEPTRACER_DEBUG", "true")
        monkeypatch.setenv("DEEPTRACER_MAX_BREADCRUMBS", "5")

        settings = load_settings()

        assert settings.secret_key == "dt_secret_env"
        assert settings.endpoint == "https://ingest.example.com"
        assert settings.service == "billing"
        assert settings.environment == "staging"
        assert settings.level is LogLevel.WARN
        assert settings.batch_size == 10
        assert settings.flush_interval == 0.5
        assert settings.debug is True
        assert settings.max_breadcrumbs == 5

    def test_numeric_looking_service_stays_string(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEEPTRACER_SERVICE", "42")
        assert load_settings().service == "42"

    def test_python_env_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYTHON_ENV", "development")
        assert load_settings().environment == "development"

    def test_prefixed_environment_beats_python_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYTHON_ENV", "development")
        monkeypatch.setenv("DEEPTRACER_ENVIRONMENT", "staging")
        assert load_settings().environment == "staging"

    def test_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEEPTRACER_SERVICE", "from-env")

        settings = load_settings(service="from-code", endpoint=None)

        assert settings.service == "from-code"
        assert settings.endpoint is None

    def test_empty_environment_gives_defaults(self) -> None:
        assert load_settings() == DeepTracerSettings()


class TestRuntimeProfile:
    @pytest.mark.parametrize("indicator", ["VERCEL", "AWS_LAMBDA_FUNCTION_NAME", "FUNCTIONS_WORKER_RUNTIME", "NETLIFY"])
    def test_serverless_indicators(self, indicator: str) -> None:
        profile = RuntimeProfile.detect({indicator: "1"})

        assert profile.serverless
        assert profile.platform == indicator
        assert profile.default_flush_interval == SERVERLESS_FLUSH_INTERVAL

    def test_long_running_process(self) -> None:
        profile = RuntimeProfile.detect({"HOME": "/root"})

        assert not profile.serverless
        assert profile.default_flush_interval == DEFAULT_FLUSH_INTERVAL

    def test_empty_indicator_ignored(self) -> None:
        assert not RuntimeProfile.detect({"VERCEL": ""}).serverless

    def test_detect_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "handler")
        assert RuntimeProfile.detect().serverless
