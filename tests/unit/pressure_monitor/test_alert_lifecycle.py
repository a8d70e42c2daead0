"""
Tests for alert deduplication and acknowledgment.

Testing philosophy:
- Drive alerts through real ingestion so the quiet window sees committed history
- Timestamps come from a manual clock, never the wall clock
"""

import asyncio
from contextlib import contextmanager
from datetime import timedelta

import pytest

from adapters.sql import SqlPressureStore
from pressure_monitor.config import AlertPolicyConfig, AppConfig, EngineConfig
from pressure_monitor.domain.errors import AlertNotFound, AlreadyAcknowledged, ValidationError
from pressure_monitor.domain.models import (
    AlertOutcome,
    AlertStatus,
    AlertType,
    Breach,
    ComparisonOperator,
    MetricSelector,
    Threshold,
)
from pressure_monitor.services.alert_lifecycle import AlertLifecycleController
from pressure_monitor.services.monitoring_engine import PressureMonitoringEngine
from pressure_monitor.services.threshold_evaluator import StaticThresholdSource

HOT_FRAME = [[0, 0], [12, 0]]


def build_engine(
    store: SqlPressureStore, clock, policy: AlertPolicyConfig | None = None
) -> PressureMonitoringEngine:
    config = AppConfig(
        engine=EngineConfig(storage_retry_backoff_seconds=0.0),
        alerts=policy or AlertPolicyConfig(quiet_window_seconds=30.0),
    )
    thresholds = StaticThresholdSource(
        global_thresholds=[
            Threshold(
                alert_type=AlertType.HIGH_PRESSURE,
                metric=MetricSelector.PEAK_PRESSURE,
                operator=ComparisonOperator.GT,
                value=10,
            )
        ]
    )
    return PressureMonitoringEngine(store, config, thresholds=thresholds, clock=clock)


async def unacknowledged(engine: PressureMonitoringEngine, clock) -> list:
    return await engine.query_alerts(
        clock.now - timedelta(days=1),
        clock.now + timedelta(days=1),
        sensor_id="bed-1",
        acknowledged=False,
    )


async def test_duplicate_within_window_is_suppressed(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")

    first = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    second = await engine.ingest("bed-1", clock.advance(5), HOT_FRAME)

    assert len(first.raised_alert_ids) == 1
    assert second.raised_alert_ids == []
    assert second.suppressed_alert_types == [AlertType.HIGH_PRESSURE]
    assert len(await unacknowledged(engine, clock)) == 1


async def test_suppressed_breach_leaves_reading_unmarked(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")

    await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    second = await engine.ingest("bed-1", clock.advance(5), HOT_FRAME)

    assert second.alert_status is AlertStatus.NONE


async def test_suppressed_breach_can_mark_reading(store: SqlPressureStore, clock) -> None:
    policy = AlertPolicyConfig(quiet_window_seconds=30.0, suppressed_breaches_mark_reading=True)
    engine = build_engine(store, clock, policy)
    await engine.open_session("bed-1", "Night shift")

    await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    second = await engine.ingest("bed-1", clock.advance(5), HOT_FRAME)

    assert second.alert_status is AlertStatus.CRITICAL


async def test_new_alert_after_window_elapses(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")

    await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    later = await engine.ingest("bed-1", clock.advance(30), HOT_FRAME)

    assert len(later.raised_alert_ids) == 1
    assert len(await unacknowledged(engine, clock)) == 2


async def test_acknowledgment_rearms_alert_type(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")

    first = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    await engine.acknowledge_alert(first.raised_alert_ids[0], "nurse.kim")
    third = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)

    assert len(third.raised_alert_ids) == 1
    assert third.raised_alert_ids != first.raised_alert_ids
    assert len(await unacknowledged(engine, clock)) == 1


async def test_zero_quiet_window_never_suppresses(store: SqlPressureStore, clock) -> None:
    engine = build_engine(
        store, clock, AlertPolicyConfig(quiet_window_seconds=0.0, quiet_window_overrides={})
    )
    await engine.open_session("bed-1", "Night shift")

    for _ in range(3):
        await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)

    assert len(await unacknowledged(engine, clock)) == 3


async def test_windows_are_per_session(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    first = await engine.open_session("bed-1", "First")
    await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    await engine.close_session(first.id, clock.advance(1))
    await engine.open_session("bed-1", "Second")

    outcome = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)

    assert len(outcome.raised_alert_ids) == 1


async def test_acknowledge_sets_actor_and_time(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")
    outcome = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    acked_at = clock.advance(120)

    alert = await engine.acknowledge_alert(outcome.raised_alert_ids[0], "nurse.kim", acked_at)

    assert alert.acknowledged
    assert alert.acknowledged_by == "nurse.kim"
    assert alert.acknowledged_at == acked_at


async def test_double_acknowledge_yields_one_success(store: SqlPressureStore, clock) -> None:
    engine = build_engine(store, clock)
    await engine.open_session("bed-1", "Night shift")
    outcome = await engine.ingest("bed-1", clock.advance(1), HOT_FRAME)
    alert_id = outcome.raised_alert_ids[0]

    results = await asyncio.gather(
        engine.acknowledge_alert(alert_id, "nurse.kim"),
        engine.acknowledge_alert(alert_id, "nurse.lee"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, AlreadyAcknowledged)]
    assert len(successes) == 1
    assert len(failures) == 1
    (alert,) = await engine.query_alerts(
        clock.now - timedelta(days=1), clock.now + timedelta(days=1), sensor_id="bed-1"
    )
    assert alert.acknowledged_by == successes[0].acknowledged_by


async def test_acknowledge_unknown_alert_fails(engine: PressureMonitoringEngine) -> None:
    with pytest.raises(AlertNotFound):
        await engine.acknowledge_alert(12345, "nurse.kim")


async def test_acknowledge_requires_actor(engine: PressureMonitoringEngine) -> None:
    with pytest.raises(ValidationError):
        await engine.acknowledge_alert(1, "  ")


def test_reading_status_takes_highest_severity(store: SqlPressureStore) -> None:
    controller = AlertLifecycleController(store)
    outcomes = [
        AlertOutcome(
            breach=Breach(alert_type=AlertType.SENSOR_FAULT, threshold_value=5, actual_value=9),
            severity=AlertStatus.WARNING,
            alert_id=1,
        ),
        AlertOutcome(
            breach=Breach(
                alert_type=AlertType.HIGH_PRESSURE, threshold_value=200, actual_value=210
            ),
            severity=AlertStatus.CRITICAL,
            alert_id=2,
        ),
    ]

    assert controller.reading_status(outcomes) is AlertStatus.CRITICAL
    assert controller.reading_status([]) is AlertStatus.NONE


def test_policy_requires_every_alert_type_mapped() -> None:
    with pytest.raises(ValueError):
        AlertPolicyConfig(severities={AlertType.HIGH_PRESSURE: AlertStatus.CRITICAL})


class VanishingAlertTransaction:
    """Acknowledges successfully, but the alert is gone when read back."""

    def acknowledge_alert(self, alert_id, actor, at_time) -> bool:
        return True

    def get_alert(self, alert_id) -> None:
        return None


class VanishingAlertStore:
    @contextmanager
    def transaction(self):
        yield VanishingAlertTransaction()


async def test_alert_missing_after_acknowledge_is_not_found(clock) -> None:
    controller = AlertLifecycleController(
        VanishingAlertStore(),  # type: ignore[arg-type]
        config=EngineConfig(storage_retry_backoff_seconds=0.0),
    )

    with pytest.raises(AlertNotFound):
        await controller.acknowledge_alert(7, "nurse.kim", clock.now)
