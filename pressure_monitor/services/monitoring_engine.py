"""
The engine facade handed to the request/response layer.

This wires the monitoring pipeline together:
1. Metric derivation and threshold evaluation (pure)
2. Session lifecycle and alert lifecycle (transactional)
3. Ingestion orchestration and the worker pool
4. Time-range queries for reporting

The facade owns no persistence of its own: it is given a ``PressureStore``.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

import structlog

from pressure_monitor.config import AppConfig, get_config
from pressure_monitor.domain.models import (
    Alert,
    IngestionOutcome,
    MonitoringSession,
    Reading,
    utc_now,
)
from pressure_monitor.services.alert_lifecycle import AlertLifecycleController
from pressure_monitor.services.ingestion import IngestionPipeline, IngestionWorkerPool
from pressure_monitor.services.metric_deriver import MetricDeriver
from pressure_monitor.services.query_engine import TimeRangeQueryEngine
from pressure_monitor.services.sensor_locks import SensorLockRegistry
from pressure_monitor.services.session_manager import SessionManager
from pressure_monitor.services.store import PressureStore
from pressure_monitor.services.threshold_evaluator import (
    StaticThresholdSource,
    ThresholdEvaluator,
    ThresholdSource,
)

logger = structlog.get_logger(__name__)


class PressureMonitoringEngine:
    """Single entry point for ingestion, session, alert and query operations."""

    def __init__(
        self,
        store: PressureStore,
        config: AppConfig | None = None,
        thresholds: ThresholdSource | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.clock = clock
        self.thresholds = thresholds or StaticThresholdSource(limits=self.config.limits)
        self.locks = SensorLockRegistry()
        self.logger = logger.bind(component="monitoring_engine")

        self.sessions = SessionManager(store, self.locks, self.config.engine, clock)
        self.alerts = AlertLifecycleController(store, self.config.alerts, self.config.engine)
        self.pipeline = IngestionPipeline(
            store,
            self.sessions,
            self.alerts,
            self.thresholds,
            self.locks,
            config=self.config.engine,
            deriver=MetricDeriver(self.config.engine),
            evaluator=ThresholdEvaluator(),
            clock=clock,
        )
        self.queries = TimeRangeQueryEngine(store, self.config.engine)

        self.logger.info(
            "engine_initialized",
            environment=self.config.environment,
            workers=self.config.engine.worker_count,
            quiet_window_seconds=self.config.alerts.quiet_window_seconds,
        )

    # Ingestion

    async def ingest(
        self, sensor_id: str, timestamp: datetime, matrix: Sequence[Sequence[float]]
    ) -> IngestionOutcome:
        return await self.pipeline.ingest(sensor_id, timestamp, matrix)

    def worker_pool(self) -> IngestionWorkerPool:
        return IngestionWorkerPool(self.pipeline, self.config.engine)

    # Sessions

    async def open_session(
        self,
        sensor_id: str,
        name: str,
        patient_id: str | None = None,
        notes: str | None = None,
        start_time: datetime | None = None,
    ) -> MonitoringSession:
        return await self.sessions.open_session(sensor_id, name, patient_id, notes, start_time)

    async def close_session(
        self, session_id: int, end_time: datetime | None = None
    ) -> MonitoringSession:
        return await self.sessions.close_session(session_id, end_time or self.clock())

    async def resolve_open_session(self, sensor_id: str) -> MonitoringSession:
        return await self.sessions.resolve_open_session(sensor_id)

    async def get_session(self, session_id: int) -> MonitoringSession:
        return await self.sessions.get_session(session_id)

    async def list_sessions(
        self, sensor_id: str | None = None, patient_id: str | None = None
    ) -> list[MonitoringSession]:
        return await self.sessions.list_sessions(sensor_id, patient_id)

    async def delete_session(self, session_id: int) -> None:
        await self.sessions.delete_session(session_id)

    # Alerts

    async def acknowledge_alert(
        self, alert_id: int, actor: str, at_time: datetime | None = None
    ) -> Alert:
        return await self.alerts.acknowledge_alert(alert_id, actor, at_time or self.clock())

    # Queries

    async def query_readings(
        self,
        start: datetime,
        end: datetime,
        *,
        sensor_id: str | None = None,
        session_id: int | None = None,
        bucket_width: timedelta | None = None,
    ) -> list[Reading]:
        return await self.queries.query_readings(
            start, end, sensor_id=sensor_id, session_id=session_id, bucket_width=bucket_width
        )

    async def query_alerts(
        self,
        start: datetime,
        end: datetime,
        *,
        sensor_id: str | None = None,
        session_id: int | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]:
        return await self.queries.query_alerts(
            start, end, sensor_id=sensor_id, session_id=session_id, acknowledged=acknowledged
        )
