"""
Domain models for bed pressure monitoring.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; persistence lives behind the store protocol.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# A pressure frame as delivered by the sensor: rows of non-negative cell values
PressureMatrix = list[list[float]]


class AlertType(str, Enum):
    """Kinds of threshold breach an alert can record."""

    HIGH_PRESSURE = "high-pressure"
    SENSOR_FAULT = "sensor-fault"
    PROLONGED_EXPOSURE = "prolonged-exposure"


class AlertStatus(str, Enum):
    """Aggregated alert state stamped on a reading."""

    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {AlertStatus.NONE: 0, AlertStatus.WARNING: 1, AlertStatus.CRITICAL: 2}


def highest_status(statuses: list[AlertStatus]) -> AlertStatus:
    """Most severe status wins; an empty list means no alert."""
    return max(statuses, key=lambda s: s.rank, default=AlertStatus.NONE)


class MetricSelector(str, Enum):
    """Scalar a threshold is evaluated against."""

    PEAK_PRESSURE = "peak_pressure"
    CONTACT_AREA_PERCENTAGE = "contact_area_percentage"
    PEAK_PRESSURE_INDEX = "peak_pressure_index"
    SATURATION_PERCENTAGE = "saturation_percentage"
    SESSION_DURATION_SECONDS = "session_duration_seconds"


class ComparisonOperator(str, Enum):
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="

    def compare(self, actual: float, limit: float) -> bool:
        """Exact IEEE comparison, no tolerance."""
        if self is ComparisonOperator.GT:
            return actual > limit
        if self is ComparisonOperator.GE:
            return actual >= limit
        if self is ComparisonOperator.LT:
            return actual < limit
        if self is ComparisonOperator.LE:
            return actual <= limit
        raise ValueError(f"Unknown operator: {self}")


class DerivedMetrics(BaseModel):
    """Scalars computed from one pressure matrix."""

    model_config = ConfigDict(frozen=True)

    peak_pressure: float = Field(ge=0.0)
    contact_area_percentage: float = Field(ge=0.0, le=100.0)
    peak_pressure_index: float = Field(default=0.0, ge=0.0)
    saturation_percentage: float = Field(default=0.0, ge=0.0, le=100.0)


class Threshold(BaseModel):
    """One configured clinical limit."""

    model_config = ConfigDict(frozen=True)

    alert_type: AlertType
    metric: MetricSelector
    operator: ComparisonOperator
    value: float = Field(allow_inf_nan=False)


class Breach(BaseModel):
    """A threshold that matched a reading."""

    model_config = ConfigDict(frozen=True)

    alert_type: AlertType
    threshold_value: float
    actual_value: float


class MonitoringSession(BaseModel):
    """A bounded observation period for one sensor."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    sensor_id: str
    patient_id: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    notes: str | None = None
    created_at: datetime

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class Reading(BaseModel):
    """One persisted sensor sample with its derived metrics."""

    model_config = ConfigDict(frozen=True)

    id: int
    session_id: int
    sensor_id: str
    timestamp: datetime
    matrix: PressureMatrix
    peak_pressure: float
    contact_area_percentage: float
    peak_pressure_index: float = 0.0
    saturation_percentage: float = 0.0
    alert_status: AlertStatus = AlertStatus.NONE
    created_at: datetime


class Alert(BaseModel):
    """A persisted threshold breach and its acknowledgment state."""

    model_config = ConfigDict(frozen=True)

    id: int
    session_id: int
    reading_id: int
    alert_type: AlertType
    threshold_value: float
    actual_value: float
    timestamp: datetime
    acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None

    @model_validator(mode="after")
    def acknowledgment_fields_consistent(self) -> "Alert":
        """Acknowledged alerts carry both actor and instant; others carry neither."""
        has_actor = self.acknowledged_by is not None
        has_time = self.acknowledged_at is not None
        if self.acknowledged and not (has_actor and has_time):
            raise ValueError("acknowledged alert requires acknowledged_by and acknowledged_at")
        if not self.acknowledged and (has_actor or has_time):
            raise ValueError("unacknowledged alert cannot carry acknowledgment fields")
        return self


@dataclass(frozen=True)
class IncomingReading:
    """Raw sample handed to the ingestion pipeline, validated at ingestion."""

    sensor_id: str
    timestamp: datetime
    matrix: PressureMatrix


class AlertOutcome(BaseModel):
    """Result of asking the alert controller to raise one breach."""

    model_config = ConfigDict(frozen=True)

    breach: Breach
    severity: AlertStatus
    alert_id: int | None = None
    suppressed: bool = False


class IngestionOutcome(BaseModel):
    """What a single ingestion committed."""

    model_config = ConfigDict(frozen=True)

    reading_id: int
    session_id: int
    alert_status: AlertStatus
    raised_alert_ids: list[int] = Field(default_factory=list)
    suppressed_alert_types: list[AlertType] = Field(default_factory=list)


class TimeRange(BaseModel):
    """Half-open interval [start, end) used by queries."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
