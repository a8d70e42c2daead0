"""
Tests for configuration management in `pressure_monitor/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- Boolean parsing for alert and database flags
- Pressure limit range validation
- get_config cache behavior
- AppConfig validation (debug only allowed in development)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from pressure_monitor.config import (
    AlertPolicyConfig,
    AppConfig,
    PressureLimitsConfig,
    get_config,
    load_config_from_env,
)
from pressure_monitor.domain.models import AlertStatus, AlertType

ENV_VARS = (
    "ENVIRONMENT",
    "CONTACT_THRESHOLD",
    "INGEST_WORKER_COUNT",
    "STORAGE_RETRY_ATTEMPTS",
    "QUIET_WINDOW_SECONDS",
    "SUPPRESSED_BREACHES_MARK_READING",
    "LOW_PRESSURE_THRESHOLD",
    "HIGH_PRESSURE_THRESHOLD",
    "DATABASE_URL",
    "DATABASE_ECHO",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear the get_config cache and any values a local .env may have set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_load_config_dev_defaults() -> None:
    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.engine.contact_threshold == 0.0
    assert config.alerts.quiet_window_seconds == 30.0
    assert config.alerts.suppressed_breaches_mark_reading is False
    assert config.limits.default_high_threshold == 200
    assert config.database.url == "sqlite://"


def test_production_uses_json_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "prod")

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.logging.format == "json"


def test_engine_and_alert_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTACT_THRESHOLD", "2.5")
    monkeypatch.setenv("INGEST_WORKER_COUNT", "8")
    monkeypatch.setenv("STORAGE_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("QUIET_WINDOW_SECONDS", "45")
    monkeypatch.setenv("SUPPRESSED_BREACHES_MARK_READING", "on")

    config = load_config_from_env()

    assert config.engine.contact_threshold == 2.5
    assert config.engine.worker_count == 8
    assert config.engine.storage_retry_attempts == 5
    assert config.alerts.quiet_window_seconds == 45.0
    assert config.alerts.suppressed_breaches_mark_reading is True


def test_database_echo_boolean_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite:///pressure.db")
    monkeypatch.setenv("DATABASE_ECHO", "YES")

    config = load_config_from_env()

    assert config.database.url == "sqlite:///pressure.db"
    assert config.database.echo is True


def test_logging_level_literal_coercion(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert load_config_from_env().logging.level == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "verbose")
    assert load_config_from_env().logging.level == "INFO"


def test_invalid_threshold_env_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOW_PRESSURE_THRESHOLD", "220")
    monkeypatch.setenv("HIGH_PRESSURE_THRESHOLD", "200")

    with pytest.raises(ValueError):
        load_config_from_env()


def test_get_config_cache() -> None:
    c1 = get_config()
    c2 = get_config()
    assert c1 is c2  # same object due to lru_cache


def test_app_config_debug_only_in_dev_validation() -> None:
    AppConfig(environment="development", debug=True)

    with pytest.raises(ValueError, match="debug mode"):
        AppConfig(environment="production", debug=True)


class TestPressureLimits:
    def test_defaults_are_consistent(self) -> None:
        assert PressureLimitsConfig().validation_errors() == []

    def test_every_inconsistency_is_reported(self) -> None:
        limits = PressureLimitsConfig.model_construct(
            min_value=10,
            max_value=5,
            low_threshold_min=1,
            low_threshold_max=254,
            high_threshold_min=2,
            high_threshold_max=255,
            default_low_threshold=50,
            default_high_threshold=200,
        )

        errors = limits.validation_errors()

        assert any("max_value" in e and "min_value" in e for e in errors)
        assert len(errors) >= 3

    def test_default_thresholds_use_high_limit(self) -> None:
        thresholds = PressureLimitsConfig().default_thresholds(high=150)

        assert thresholds[0].alert_type is AlertType.HIGH_PRESSURE
        assert thresholds[0].value == 150.0


def test_quiet_window_override_per_type() -> None:
    policy = AlertPolicyConfig()

    assert policy.quiet_window_for(AlertType.HIGH_PRESSURE) == 30.0
    assert policy.quiet_window_for(AlertType.SENSOR_FAULT) == 120.0
    assert policy.severity_for(AlertType.HIGH_PRESSURE) is AlertStatus.CRITICAL


def test_severity_none_rejected() -> None:
    with pytest.raises(ValueError):
        AlertPolicyConfig(
            severities={
                AlertType.HIGH_PRESSURE: AlertStatus.NONE,
                AlertType.SENSOR_FAULT: AlertStatus.WARNING,
                AlertType.PROLONGED_EXPOSURE: AlertStatus.WARNING,
            }
        )
