"""Shared fixtures: an in-memory SQLite store and a controllable clock."""

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest

from adapters.sql import SqlPressureStore
from pressure_monitor.config import AppConfig, EngineConfig
from pressure_monitor.services.monitoring_engine import PressureMonitoringEngine

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock so timestamps in tests are exact."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Iterator[SqlPressureStore]:
    store = SqlPressureStore()
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(engine=EngineConfig(storage_retry_backoff_seconds=0.0, worker_count=3))


@pytest.fixture
def engine(
    store: SqlPressureStore, app_config: AppConfig, clock: FakeClock
) -> PressureMonitoringEngine:
    return PressureMonitoringEngine(store, app_config, clock=clock)
