"""
Tests for threshold evaluation and threshold sources.
"""

import math
from datetime import UTC, datetime, timedelta

import pytest

from pressure_monitor.config import PressureLimitsConfig
from pressure_monitor.domain.models import (
    AlertType,
    ComparisonOperator,
    DerivedMetrics,
    MetricSelector,
    MonitoringSession,
    Threshold,
)
from pressure_monitor.services.threshold_evaluator import (
    StaticThresholdSource,
    ThresholdEvaluator,
    select_metric,
)

START = datetime(2024, 3, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def session() -> MonitoringSession:
    return MonitoringSession(
        id=1,
        name="Ward 3 bed 12",
        sensor_id="bed-12",
        patient_id="patient-7",
        start_time=START,
        created_at=START,
    )


def threshold(
    alert_type: AlertType,
    metric: MetricSelector,
    operator: ComparisonOperator,
    value: float,
) -> Threshold:
    return Threshold(alert_type=alert_type, metric=metric, operator=operator, value=value)


class TestThresholdEvaluator:
    def test_no_breach_returns_empty_list(self) -> None:
        metrics = DerivedMetrics(peak_pressure=5.0, contact_area_percentage=10.0)
        rules = [
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GT, 10
            )
        ]

        assert ThresholdEvaluator().evaluate(metrics, rules) == []

    def test_breach_reports_threshold_and_actual(self) -> None:
        metrics = DerivedMetrics(peak_pressure=12.0, contact_area_percentage=25.0)
        rules = [
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GT, 10
            )
        ]

        (breach,) = ThresholdEvaluator().evaluate(metrics, rules)

        assert breach.alert_type is AlertType.HIGH_PRESSURE
        assert breach.threshold_value == 10.0
        assert breach.actual_value == 12.0

    @pytest.mark.parametrize(
        "operator,limit,expected",
        [
            (ComparisonOperator.GT, 100.0, False),
            (ComparisonOperator.GE, 100.0, True),
            (ComparisonOperator.LT, 100.0, False),
            (ComparisonOperator.LE, 100.0, True),
            (ComparisonOperator.GT, 99.99999999, True),
            (ComparisonOperator.LT, 100.00000001, True),
        ],
    )
    def test_comparisons_are_exact(
        self, operator: ComparisonOperator, limit: float, expected: bool
    ) -> None:
        metrics = DerivedMetrics(peak_pressure=100.0, contact_area_percentage=0.0)
        rules = [threshold(AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, operator, limit)]

        assert bool(ThresholdEvaluator().evaluate(metrics, rules)) is expected

    def test_all_matching_types_reported_in_configuration_order(self) -> None:
        metrics = DerivedMetrics(
            peak_pressure=255.0, contact_area_percentage=100.0, saturation_percentage=100.0
        )
        rules = [
            threshold(
                AlertType.SENSOR_FAULT,
                MetricSelector.SATURATION_PERCENTAGE,
                ComparisonOperator.GT,
                5,
            ),
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GE, 200
            ),
        ]

        breaches = ThresholdEvaluator().evaluate(metrics, rules)

        assert [b.alert_type for b in breaches] == [AlertType.SENSOR_FAULT, AlertType.HIGH_PRESSURE]

    def test_never_two_breaches_of_same_type(self) -> None:
        metrics = DerivedMetrics(peak_pressure=230.0, contact_area_percentage=50.0)
        rules = [
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GE, 200
            ),
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GE, 150
            ),
        ]

        breaches = ThresholdEvaluator().evaluate(metrics, rules)

        assert len(breaches) == 1
        assert breaches[0].threshold_value == 200.0

    def test_session_duration_needs_session_context(self, session: MonitoringSession) -> None:
        metrics = DerivedMetrics(peak_pressure=0.0, contact_area_percentage=0.0)
        rules = [
            threshold(
                AlertType.PROLONGED_EXPOSURE,
                MetricSelector.SESSION_DURATION_SECONDS,
                ComparisonOperator.GE,
                3600,
            )
        ]
        evaluator = ThresholdEvaluator()

        assert evaluator.evaluate(metrics, rules) == []
        later = START + timedelta(hours=2)
        (breach,) = evaluator.evaluate(metrics, rules, session, later)
        assert breach.actual_value == 7200.0


@pytest.mark.parametrize("limit", [math.nan, math.inf, -math.inf])
def test_threshold_rejects_non_finite_limits(limit: float) -> None:
    with pytest.raises(ValueError):
        threshold(
            AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GT, limit
        )


def test_select_metric_reads_each_selector(session: MonitoringSession) -> None:
    metrics = DerivedMetrics(
        peak_pressure=1.0,
        contact_area_percentage=2.0,
        peak_pressure_index=3.0,
        saturation_percentage=4.0,
    )
    at = START + timedelta(seconds=5)

    assert select_metric(MetricSelector.PEAK_PRESSURE, metrics) == 1.0
    assert select_metric(MetricSelector.CONTACT_AREA_PERCENTAGE, metrics) == 2.0
    assert select_metric(MetricSelector.PEAK_PRESSURE_INDEX, metrics) == 3.0
    assert select_metric(MetricSelector.SATURATION_PERCENTAGE, metrics) == 4.0
    assert select_metric(MetricSelector.SESSION_DURATION_SECONDS, metrics, session, at) == 5.0


class TestStaticThresholdSource:
    def test_global_defaults_come_from_limits(self, session: MonitoringSession) -> None:
        source = StaticThresholdSource()

        rules = source.thresholds_for(session)

        assert [r.alert_type for r in rules] == [
            AlertType.HIGH_PRESSURE,
            AlertType.SENSOR_FAULT,
            AlertType.PROLONGED_EXPOSURE,
        ]
        assert rules[0].value == 200.0

    def test_patient_limits_override_global(self, session: MonitoringSession) -> None:
        source = StaticThresholdSource()
        source.set_patient_limits("patient-7", low=40, high=150)

        assert source.thresholds_for(session)[0].value == 150.0

    def test_sensor_thresholds_take_precedence(self, session: MonitoringSession) -> None:
        source = StaticThresholdSource()
        source.set_patient_limits("patient-7", low=40, high=150)
        custom = [
            threshold(
                AlertType.HIGH_PRESSURE, MetricSelector.PEAK_PRESSURE, ComparisonOperator.GT, 10
            )
        ]
        source.set_sensor_thresholds("bed-12", custom)

        assert source.thresholds_for(session) == custom

    @pytest.mark.parametrize("low,high", [(0, 100), (100, 100), (50, 256), (120, 80)])
    def test_invalid_patient_limits_rejected(self, low: int, high: int) -> None:
        source = StaticThresholdSource(limits=PressureLimitsConfig())

        with pytest.raises(ValueError):
            source.set_patient_limits("patient-7", low=low, high=high)
