"""
Threshold evaluation against derived metrics and session context.

Thresholds are configuration data: the evaluator only consumes an ordered list
of ``Threshold`` tuples. A ``ThresholdSource`` decides which list applies to a
sensor or session.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

import structlog

from pressure_monitor.config import PressureLimitsConfig
from pressure_monitor.domain.models import (
    AlertType,
    Breach,
    DerivedMetrics,
    MetricSelector,
    MonitoringSession,
    Threshold,
)

logger = structlog.get_logger(__name__)


def select_metric(
    selector: MetricSelector,
    metrics: DerivedMetrics,
    session: MonitoringSession | None = None,
    timestamp: datetime | None = None,
) -> float | None:
    """Resolve a selector to the observed value; None when the context is unavailable."""
    if selector is MetricSelector.PEAK_PRESSURE:
        return metrics.peak_pressure
    if selector is MetricSelector.CONTACT_AREA_PERCENTAGE:
        return metrics.contact_area_percentage
    if selector is MetricSelector.PEAK_PRESSURE_INDEX:
        return metrics.peak_pressure_index
    if selector is MetricSelector.SATURATION_PERCENTAGE:
        return metrics.saturation_percentage
    if selector is MetricSelector.SESSION_DURATION_SECONDS:
        if session is None or timestamp is None:
            return None
        return (timestamp - session.start_time).total_seconds()
    raise ValueError(f"Unknown metric selector: {selector}")


class ThresholdEvaluator:
    """Reports every configured threshold a reading breaches, in configuration order."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="threshold_evaluator")

    def evaluate(
        self,
        metrics: DerivedMetrics,
        thresholds: Iterable[Threshold],
        session: MonitoringSession | None = None,
        timestamp: datetime | None = None,
    ) -> list[Breach]:
        breaches: list[Breach] = []
        seen_types: set[AlertType] = set()

        for threshold in thresholds:
            # One breach per alert type; the first matching threshold wins
            if threshold.alert_type in seen_types:
                continue

            actual = select_metric(threshold.metric, metrics, session, timestamp)
            if actual is None:
                self.logger.debug(
                    "threshold_skipped_without_context",
                    alert_type=threshold.alert_type.value,
                    metric=threshold.metric.value,
                )
                continue

            if threshold.operator.compare(actual, threshold.value):
                seen_types.add(threshold.alert_type)
                breaches.append(
                    Breach(
                        alert_type=threshold.alert_type,
                        threshold_value=threshold.value,
                        actual_value=actual,
                    )
                )

        return breaches


class ThresholdSource(Protocol):
    """Where the ordered threshold list for a session comes from."""

    def thresholds_for(self, session: MonitoringSession) -> list[Threshold]: ...


class StaticThresholdSource:
    """
    In-process threshold configuration.

    Resolution order: per-sensor list, then per-patient high limit applied to the
    defaults, then the global list.
    """

    def __init__(
        self,
        global_thresholds: list[Threshold] | None = None,
        limits: PressureLimitsConfig | None = None,
    ) -> None:
        self.limits = limits or PressureLimitsConfig()
        self.global_thresholds = (
            list(global_thresholds)
            if global_thresholds is not None
            else self.limits.default_thresholds()
        )
        self._sensor_thresholds: dict[str, list[Threshold]] = {}
        self._patient_high_limits: dict[str, int] = {}

    def set_sensor_thresholds(self, sensor_id: str, thresholds: list[Threshold]) -> None:
        self._sensor_thresholds[sensor_id] = list(thresholds)

    def set_patient_limits(self, patient_id: str, low: int, high: int) -> None:
        """Store a patient's personal limits after range validation."""
        self.limits.validate_patient_limits(low, high)
        self._patient_high_limits[patient_id] = high

    def thresholds_for(self, session: MonitoringSession) -> list[Threshold]:
        if session.sensor_id in self._sensor_thresholds:
            return self._sensor_thresholds[session.sensor_id]
        if session.patient_id is not None and session.patient_id in self._patient_high_limits:
            high = self._patient_high_limits[session.patient_id]
            return self.limits.default_thresholds(high=high)
        return self.global_thresholds
