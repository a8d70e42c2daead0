"""
Reading ingestion: the orchestrator from raw frame to committed reading and alerts.

Key patterns:
- One transaction per reading: session resolution, reading insert, alert
  creation and the final status update commit together or not at all
- Per-sensor serialization through ``SensorLockRegistry``
- A sharded worker pool so same-sensor readings are processed in arrival order
- ``Result`` values for expected failures coming back from the pool
"""

import asyncio
import time
import zlib
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Generic, TypeVar

import structlog

from pressure_monitor.config import EngineConfig
from pressure_monitor.domain.errors import PressureMonitorError, ValidationError
from pressure_monitor.domain.models import (
    AlertStatus,
    IncomingReading,
    IngestionOutcome,
    as_utc,
    utc_now,
)
from pressure_monitor.services.alert_lifecycle import AlertLifecycleController
from pressure_monitor.services.metric_deriver import MetricDeriver
from pressure_monitor.services.sensor_locks import SensorLockRegistry
from pressure_monitor.services.session_manager import SessionManager
from pressure_monitor.services.store import PressureStore, StoreTransaction, TransactionRunner
from pressure_monitor.services.threshold_evaluator import ThresholdEvaluator, ThresholdSource

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Why: a worker pool cannot raise into the caller; the outcome of each
    submitted reading is carried back as a value instead.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


IngestionResult = Result[IngestionOutcome, PressureMonitorError]


class IngestionPipeline:
    """
    Ingests one reading at a time per sensor.

    Steps, all inside one transaction under the sensor's lock:
    1. resolve the open session (``NoOpenSession`` otherwise)
    2. derive metrics (``InvalidMatrix`` aborts before anything is written)
    3. persist the reading with status ``none``
    4. evaluate the session's thresholds
    5. hand each breach to the alert controller
    6. stamp the aggregated severity on the reading
    """

    def __init__(
        self,
        store: PressureStore,
        sessions: SessionManager,
        alerts: AlertLifecycleController,
        thresholds: ThresholdSource,
        locks: SensorLockRegistry,
        config: EngineConfig | None = None,
        deriver: MetricDeriver | None = None,
        evaluator: ThresholdEvaluator | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        self.sessions = sessions
        self.alerts = alerts
        self.thresholds = thresholds
        self.locks = locks
        self.deriver = deriver or MetricDeriver(self.config)
        self.evaluator = evaluator or ThresholdEvaluator()
        self.clock = clock
        self._transactions = TransactionRunner(store, self.config)
        self.logger = logger.bind(component="ingestion_pipeline")

    async def ingest(
        self, sensor_id: str, timestamp: datetime, matrix: Sequence[Sequence[float]]
    ) -> IngestionOutcome:
        """
        Ingest one frame for a sensor.

        Raises:
            NoOpenSession: the sensor has no open session.
            InvalidMatrix: the frame is empty, ragged or has negative cells.
            ValidationError: missing sensor id or timestamp.
            StorageError: persistence kept failing after retries.
        """
        if not sensor_id:
            raise ValidationError("sensor_id is required", field="sensor_id")
        if not isinstance(timestamp, datetime):
            raise ValidationError("timestamp must be a datetime", field="timestamp")
        instant = as_utc(timestamp)

        def work(tx: StoreTransaction) -> IngestionOutcome:
            return self._ingest_in(tx, sensor_id, instant, matrix)

        start_time = time.perf_counter()
        try:
            # Cancellation can only land while waiting for the lock or between retries
            async with self.locks.hold(sensor_id):
                outcome = await self._transactions.run(work, "ingest")
        except PressureMonitorError as e:
            self.logger.warning(
                "reading_rejected", sensor_id=sensor_id, error_kind=e.kind, error=str(e)
            )
            raise

        self.logger.info(
            "reading_ingested",
            sensor_id=sensor_id,
            session_id=outcome.session_id,
            reading_id=outcome.reading_id,
            alert_status=outcome.alert_status.value,
            alerts_raised=len(outcome.raised_alert_ids),
            alerts_suppressed=len(outcome.suppressed_alert_types),
            duration_seconds=round(time.perf_counter() - start_time, 4),
        )
        return outcome

    def _ingest_in(
        self,
        tx: StoreTransaction,
        sensor_id: str,
        timestamp: datetime,
        matrix: Sequence[Sequence[float]],
    ) -> IngestionOutcome:
        session = self.sessions.resolve_in(tx, sensor_id)
        frame, metrics = self.deriver.derive(matrix)

        reading = tx.add_reading(
            session_id=session.id,
            sensor_id=sensor_id,
            timestamp=timestamp,
            matrix=frame,
            metrics=metrics,
            created_at=self.clock(),
        )

        breaches = self.evaluator.evaluate(
            metrics, self.thresholds.thresholds_for(session), session, reading.timestamp
        )
        outcomes = [self.alerts.raise_alert(tx, session, reading, breach) for breach in breaches]

        status = self.alerts.reading_status(outcomes)
        if status is not AlertStatus.NONE:
            tx.set_reading_status(reading.id, status)

        return IngestionOutcome(
            reading_id=reading.id,
            session_id=session.id,
            alert_status=status,
            raised_alert_ids=[o.alert_id for o in outcomes if o.alert_id is not None],
            suppressed_alert_types=[o.breach.alert_type for o in outcomes if o.suppressed],
        )


_WorkItem = tuple[IncomingReading, "asyncio.Future[IngestionResult]"]


class IngestionWorkerPool:
    """
    Concurrent ingestion across sensors, FIFO within a sensor.

    Design principles:
    - Readings are sharded by sensor id, so one worker owns each sensor's stream
    - Workers never die on a bad reading; failures come back as ``Result.err``
    - A caller may cancel its future before the reading is picked up; once a
      worker starts a reading it runs to completion
    """

    def __init__(self, pipeline: IngestionPipeline, config: EngineConfig | None = None) -> None:
        self.pipeline = pipeline
        self.config = config or EngineConfig()
        self.logger = logger.bind(component="ingestion_pool")
        self._queues: list[asyncio.Queue[_WorkItem | None]] = []
        self._workers: list[asyncio.Task[None]] = []
        self._is_running = False
        self.processed = 0
        self.failed = 0

    def shard_for(self, sensor_id: str) -> int:
        return zlib.crc32(sensor_id.encode("utf-8")) % self.config.worker_count

    @asynccontextmanager
    async def running(self) -> AsyncIterator["IngestionWorkerPool"]:
        """Start the workers; on exit, drain queued readings and stop."""
        self._queues = [
            asyncio.Queue(maxsize=self.config.queue_size) for _ in range(self.config.worker_count)
        ]
        self._workers = [
            asyncio.create_task(self._worker(index, queue), name=f"ingest-worker-{index}")
            for index, queue in enumerate(self._queues)
        ]
        self._is_running = True
        self.logger.info("ingestion_pool_started", workers=self.config.worker_count)

        try:
            yield self
        finally:
            self._is_running = False
            for queue in self._queues:
                await queue.put(None)
            await asyncio.gather(*self._workers, return_exceptions=True)
            self.logger.info(
                "ingestion_pool_stopped", processed=self.processed, failed=self.failed
            )

    async def submit(self, reading: IncomingReading) -> "asyncio.Future[IngestionResult]":
        """Queue a reading; the returned future resolves to its ``Result``."""
        if not self._is_running:
            raise RuntimeError("Worker pool not running - use running()")

        future: asyncio.Future[IngestionResult] = asyncio.get_running_loop().create_future()
        await self._queues[self.shard_for(reading.sensor_id)].put((reading, future))
        return future

    async def ingest_many(self, readings: Sequence[IncomingReading]) -> list[IngestionResult]:
        """Submit in order and wait for every result (same order as the input)."""
        futures = [await self.submit(reading) for reading in readings]
        return list(await asyncio.gather(*futures))

    async def _worker(self, index: int, queue: "asyncio.Queue[_WorkItem | None]") -> None:
        log = self.logger.bind(worker=index)
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                reading, future = item
                if future.cancelled():
                    log.info("reading_cancelled_before_start", sensor_id=reading.sensor_id)
                    continue

                try:
                    outcome = await self.pipeline.ingest(
                        reading.sensor_id, reading.timestamp, reading.matrix
                    )
                    result: IngestionResult = Result.ok(outcome)
                    self.processed += 1
                except PressureMonitorError as e:
                    result = Result.err(e)
                    self.failed += 1
                except Exception as e:
                    log.exception("unexpected_ingestion_error", sensor_id=reading.sensor_id)
                    self.failed += 1
                    if not future.done():
                        future.set_exception(e)
                    continue

                if not future.done():
                    future.set_result(result)
            finally:
                queue.task_done()
