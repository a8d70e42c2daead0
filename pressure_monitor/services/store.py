"""
Persistence protocol consumed by the engine, plus the transactional retry loop.

Why Protocol over ABC: the engine only needs the shape of the store; the
SQLAlchemy adapter (``adapters.sql``) and test doubles satisfy it structurally.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, TypeVar

import structlog

from pressure_monitor.config import EngineConfig
from pressure_monitor.domain.errors import FatalStorageError, StorageError
from pressure_monitor.domain.models import (
    Alert,
    AlertStatus,
    AlertType,
    Breach,
    DerivedMetrics,
    MonitoringSession,
    PressureMatrix,
    Reading,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StoreTransaction(Protocol):
    """Operations available inside one atomic unit of work."""

    def add_session(
        self,
        *,
        name: str,
        sensor_id: str,
        patient_id: str | None,
        start_time: datetime,
        notes: str | None,
        created_at: datetime,
    ) -> MonitoringSession: ...

    def get_session(self, session_id: int) -> MonitoringSession | None: ...

    def find_open_session(self, sensor_id: str) -> MonitoringSession | None: ...

    def list_sessions(
        self, sensor_id: str | None = None, patient_id: str | None = None
    ) -> list[MonitoringSession]: ...

    def close_session(self, session_id: int, end_time: datetime) -> MonitoringSession: ...

    def delete_session(self, session_id: int) -> bool: ...

    def add_reading(
        self,
        *,
        session_id: int,
        sensor_id: str,
        timestamp: datetime,
        matrix: PressureMatrix,
        metrics: DerivedMetrics,
        created_at: datetime,
    ) -> Reading: ...

    def set_reading_status(self, reading_id: int, status: AlertStatus) -> None: ...

    def count_readings(self, sensor_id: str) -> int: ...

    def latest_unacknowledged_alert(
        self, session_id: int, alert_type: AlertType
    ) -> Alert | None: ...

    def add_alert(
        self, *, session_id: int, reading_id: int, breach: Breach, timestamp: datetime
    ) -> Alert: ...

    def get_alert(self, alert_id: int) -> Alert | None: ...

    def acknowledge_alert(self, alert_id: int, actor: str, at_time: datetime) -> bool:
        """Conditionally acknowledge; False when the alert is missing or already acknowledged."""
        ...

    def readings_in_range(
        self,
        *,
        start: datetime,
        end: datetime,
        sensor_id: str | None = None,
        session_id: int | None = None,
    ) -> list[Reading]: ...

    def alerts_in_range(
        self,
        *,
        start: datetime,
        end: datetime,
        sensor_id: str | None = None,
        session_id: int | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]: ...


class PressureStore(Protocol):
    """A transactional store: commit on clean exit, roll back on any exception.

    Implementations raise ``StorageError`` for transient failures inside the unit
    of work and ``FatalStorageError`` when the commit itself fails.
    """

    def transaction(self) -> AbstractContextManager[StoreTransaction]: ...


async def run_transaction(
    store: PressureStore,
    work: Callable[[StoreTransaction], T],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.05,
    operation: str = "transaction",
) -> T:
    """
    Run ``work`` in a fresh transaction, retrying transient storage failures.

    ``work`` is synchronous, so once a transaction starts it cannot be interrupted
    by cancellation; the only await points are between attempts, where nothing
    has been committed.
    """
    log = logger.bind(component="store", operation=operation)

    for attempt in range(1, attempts + 1):
        try:
            with store.transaction() as tx:
                return work(tx)
        except FatalStorageError as e:
            log.error("storage_fatal_error", attempt=attempt, error=str(e))
            raise
        except StorageError as e:
            if attempt == attempts:
                log.error("storage_retries_exhausted", attempts=attempts, error=str(e))
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            log.warning("storage_retry", attempt=attempt, delay_seconds=delay, error=str(e))
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable: attempts must be >= 1")


class TransactionRunner:
    """Binds a store to the configured retry policy."""

    def __init__(self, store: PressureStore, config: EngineConfig | None = None) -> None:
        self.store = store
        self.config = config or EngineConfig()

    async def run(self, work: Callable[[StoreTransaction], T], operation: str = "transaction") -> T:
        return await run_transaction(
            self.store,
            work,
            attempts=self.config.storage_retry_attempts,
            backoff_seconds=self.config.storage_retry_backoff_seconds,
            operation=operation,
        )
