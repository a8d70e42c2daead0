"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical limits are configuration, never hardcoded at evaluation sites
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from pressure_monitor.domain.models import (
    AlertStatus,
    AlertType,
    ComparisonOperator,
    MetricSelector,
    Threshold,
)

# Load environment variables from .env file
load_dotenv()


class EngineConfig(BaseModel):
    """Metric derivation and ingestion settings."""

    contact_threshold: float = Field(
        default=0.0, ge=0.0, description="Cells strictly above this count as body contact"
    )
    saturation_value: float = Field(
        default=255.0, gt=0.0, description="Cell value at which the sensor saturates"
    )
    ppi_threshold: float = Field(
        default=50.0, ge=0.0, description="Cells strictly above this join a PPI cluster"
    )
    ppi_min_cluster_size: int = Field(
        default=10, gt=0, description="Smallest cluster considered for the peak pressure index"
    )
    matrix_shape: tuple[int, int] | None = Field(
        default=None, description="Required (rows, cols) of every frame, if fixed"
    )

    # Concurrency
    worker_count: int = Field(default=4, gt=0, description="Number of ingestion workers")
    queue_size: int = Field(default=1000, gt=0, description="Pending readings per worker")

    # Storage retries
    storage_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for a transaction hitting transient errors"
    )
    storage_retry_backoff_seconds: float = Field(
        default=0.05, ge=0.0, description="Initial backoff, doubled per retry"
    )

    @model_validator(mode="after")
    def shape_is_positive(self) -> "EngineConfig":
        if self.matrix_shape is not None and min(self.matrix_shape) <= 0:
            raise ValueError("matrix_shape dimensions must be positive")
        return self


def _default_severities() -> dict[AlertType, AlertStatus]:
    return {
        AlertType.HIGH_PRESSURE: AlertStatus.CRITICAL,
        AlertType.PROLONGED_EXPOSURE: AlertStatus.WARNING,
        AlertType.SENSOR_FAULT: AlertStatus.WARNING,
    }


class AlertPolicyConfig(BaseModel):
    """Deduplication and severity policy for alerts."""

    quiet_window_seconds: float = Field(
        default=30.0, ge=0.0, description="Suppress duplicate alerts of one type within this span"
    )
    quiet_window_overrides: dict[AlertType, float] = Field(
        default_factory=lambda: {
            AlertType.SENSOR_FAULT: 120.0,
            AlertType.PROLONGED_EXPOSURE: 60.0,
        },
        description="Per alert type quiet windows in seconds",
    )
    severities: dict[AlertType, AlertStatus] = Field(default_factory=_default_severities)
    suppressed_breaches_mark_reading: bool = Field(
        default=False, description="Suppressed breaches also raise the reading's alert status"
    )

    @model_validator(mode="after")
    def severities_are_exhaustive(self) -> "AlertPolicyConfig":
        missing = [t.value for t in AlertType if t not in self.severities]
        if missing:
            raise ValueError(f"severity mapping missing alert types: {', '.join(missing)}")
        if AlertStatus.NONE in self.severities.values():
            raise ValueError("alert types cannot map to severity 'none'")
        if any(v < 0 for v in self.quiet_window_overrides.values()):
            raise ValueError("quiet window overrides must be >= 0")
        return self

    def quiet_window_for(self, alert_type: AlertType) -> float:
        return self.quiet_window_overrides.get(alert_type, self.quiet_window_seconds)

    def severity_for(self, alert_type: AlertType) -> AlertStatus:
        return self.severities[alert_type]


class PressureLimitsConfig(BaseModel):
    """Valid ranges and defaults for per-patient pressure thresholds."""

    min_value: int = Field(default=1, ge=0, description="Sensor baseline, no pressure")
    max_value: int = Field(default=255, ge=1, description="Sensor saturation")
    low_threshold_min: int = Field(default=1, ge=0)
    low_threshold_max: int = Field(default=254, ge=1)
    high_threshold_min: int = Field(default=2, ge=1)
    high_threshold_max: int = Field(default=255, ge=1)
    default_low_threshold: int = Field(default=50, ge=1, description="Early warning level")
    default_high_threshold: int = Field(default=200, ge=1, description="Urgent alert level")

    # Exposure and fault limits feeding the default threshold list
    prolonged_exposure_seconds: float = Field(default=7200.0, gt=0.0)
    saturation_fault_percentage: float = Field(default=5.0, ge=0.0, le=100.0)

    def validation_errors(self) -> list[str]:
        """Every logical inconsistency in the configured ranges."""
        errors: list[str] = []

        if self.max_value <= self.min_value:
            errors.append(
                f"max_value ({self.max_value}) must be greater than min_value ({self.min_value})"
            )

        if self.low_threshold_min < self.min_value:
            errors.append(
                f"low_threshold_min ({self.low_threshold_min}) must be >= "
                f"min_value ({self.min_value})"
            )
        if self.low_threshold_min > self.low_threshold_max:
            errors.append(
                f"low_threshold_min ({self.low_threshold_min}) must be <= "
                f"low_threshold_max ({self.low_threshold_max})"
            )
        if self.low_threshold_max > self.max_value:
            errors.append(
                f"low_threshold_max ({self.low_threshold_max}) must be <= "
                f"max_value ({self.max_value})"
            )

        if self.high_threshold_min < self.min_value:
            errors.append(
                f"high_threshold_min ({self.high_threshold_min}) must be >= "
                f"min_value ({self.min_value})"
            )
        if self.high_threshold_min > self.high_threshold_max:
            errors.append(
                f"high_threshold_min ({self.high_threshold_min}) must be <= "
                f"high_threshold_max ({self.high_threshold_max})"
            )
        if self.high_threshold_max > self.max_value:
            errors.append(
                f"high_threshold_max ({self.high_threshold_max}) must be <= "
                f"max_value ({self.max_value})"
            )

        if self.low_threshold_min >= self.high_threshold_max:
            errors.append(
                f"low_threshold_min ({self.low_threshold_min}) must be less than "
                f"high_threshold_max ({self.high_threshold_max})"
            )

        if not self.low_threshold_min <= self.default_low_threshold <= self.low_threshold_max:
            errors.append(
                f"default_low_threshold ({self.default_low_threshold}) must be between "
                f"{self.low_threshold_min} and {self.low_threshold_max}"
            )
        if not self.high_threshold_min <= self.default_high_threshold <= self.high_threshold_max:
            errors.append(
                f"default_high_threshold ({self.default_high_threshold}) must be between "
                f"{self.high_threshold_min} and {self.high_threshold_max}"
            )
        if self.default_low_threshold >= self.default_high_threshold:
            errors.append(
                f"default_low_threshold ({self.default_low_threshold}) must be less than "
                f"default_high_threshold ({self.default_high_threshold})"
            )

        return errors

    @model_validator(mode="after")
    def ranges_are_consistent(self) -> "PressureLimitsConfig":
        errors = self.validation_errors()
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def validate_patient_limits(self, low: int, high: int) -> None:
        """Reject a patient's low/high pair outside the configured ranges."""
        if not self.low_threshold_min <= low <= self.low_threshold_max:
            raise ValueError(
                f"low threshold {low} outside [{self.low_threshold_min}, {self.low_threshold_max}]"
            )
        if not self.high_threshold_min <= high <= self.high_threshold_max:
            raise ValueError(
                f"high threshold {high} outside "
                f"[{self.high_threshold_min}, {self.high_threshold_max}]"
            )
        if low >= high:
            raise ValueError(f"low threshold {low} must be less than high threshold {high}")

    def default_thresholds(self, high: int | None = None) -> list[Threshold]:
        """Threshold list used when a sensor has no explicit configuration."""
        high_limit = self.default_high_threshold if high is None else high
        return [
            Threshold(
                alert_type=AlertType.HIGH_PRESSURE,
                metric=MetricSelector.PEAK_PRESSURE,
                operator=ComparisonOperator.GE,
                value=float(high_limit),
            ),
            Threshold(
                alert_type=AlertType.SENSOR_FAULT,
                metric=MetricSelector.SATURATION_PERCENTAGE,
                operator=ComparisonOperator.GT,
                value=self.saturation_fault_percentage,
            ),
            Threshold(
                alert_type=AlertType.PROLONGED_EXPOSURE,
                metric=MetricSelector.SESSION_DURATION_SECONDS,
                operator=ComparisonOperator.GE,
                value=self.prolonged_exposure_seconds,
            ),
        ]


class DatabaseConfig(BaseModel):
    """Relational store configuration."""

    url: str = Field(default="sqlite://", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log emitted SQL")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    engine: EngineConfig = Field(default_factory=EngineConfig)
    alerts: AlertPolicyConfig = Field(default_factory=AlertPolicyConfig)
    limits: PressureLimitsConfig = Field(default_factory=PressureLimitsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    engine_config = EngineConfig(
        contact_threshold=float(os.getenv("CONTACT_THRESHOLD", "0")),
        worker_count=int(os.getenv("INGEST_WORKER_COUNT", "4")),
        storage_retry_attempts=int(os.getenv("STORAGE_RETRY_ATTEMPTS", "3")),
    )

    alert_config = AlertPolicyConfig(
        quiet_window_seconds=float(os.getenv("QUIET_WINDOW_SECONDS", "30")),
        suppressed_breaches_mark_reading=_parse_bool(
            os.getenv("SUPPRESSED_BREACHES_MARK_READING"), False
        ),
    )

    limits_config = PressureLimitsConfig(
        default_low_threshold=int(os.getenv("LOW_PRESSURE_THRESHOLD", "50")),
        default_high_threshold=int(os.getenv("HIGH_PRESSURE_THRESHOLD", "200")),
    )

    database_config = DatabaseConfig(
        url=os.getenv("DATABASE_URL", "sqlite://"),
        echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        engine=engine_config,
        alerts=alert_config,
        limits=limits_config,
        database=database_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def print_config_summary(config: AppConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")
    print(f"Database: {config.database.url}")

    print("\nENGINE")
    print(f"Contact Threshold: > {config.engine.contact_threshold}")
    print(f"Workers: {config.engine.worker_count}")
    print(f"Storage Retries: {config.engine.storage_retry_attempts}")

    print("\nALERTS")
    print(f"Quiet Window: {config.alerts.quiet_window_seconds}s")
    for alert_type, severity in config.alerts.severities.items():
        print(f"  {alert_type.value}: {severity.value}")
    print(f"High Pressure Threshold: {config.limits.default_high_threshold}")


if __name__ == "__main__":
    print_config_summary()
