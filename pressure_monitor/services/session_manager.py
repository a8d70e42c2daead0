"""
Monitoring session lifecycle: Open -> Closed (terminal, no reopening).
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from pressure_monitor.config import EngineConfig
from pressure_monitor.domain.errors import (
    AlreadyClosed,
    ConflictingSession,
    InvalidEndTime,
    NoOpenSession,
    SessionNotFound,
    ValidationError,
)
from pressure_monitor.domain.models import MonitoringSession, as_utc, utc_now
from pressure_monitor.services.sensor_locks import SensorLockRegistry
from pressure_monitor.services.store import PressureStore, StoreTransaction, TransactionRunner

logger = structlog.get_logger(__name__)


class SessionManager:
    """Owns session state; all writes for a sensor run under that sensor's lock."""

    def __init__(
        self,
        store: PressureStore,
        locks: SensorLockRegistry,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.locks = locks
        self.config = config or EngineConfig()
        self.clock = clock
        self._transactions = TransactionRunner(store, self.config)
        self.logger = logger.bind(component="session_manager")

    async def open_session(
        self,
        sensor_id: str,
        name: str,
        patient_id: str | None = None,
        notes: str | None = None,
        start_time: datetime | None = None,
    ) -> MonitoringSession:
        """
        Open a session for a sensor.

        Raises:
            ValidationError: blank or oversized sensor id or name.
            ConflictingSession: the sensor already has an open session.
        """
        if not sensor_id or len(sensor_id) > 50:
            raise ValidationError("sensor_id must be 1-50 characters", field="sensor_id")
        if not name or not name.strip() or len(name) > 100:
            raise ValidationError("name must be 1-100 characters", field="name")

        now = self.clock()
        start = as_utc(start_time) if start_time is not None else now

        def work(tx: StoreTransaction) -> MonitoringSession:
            existing = tx.find_open_session(sensor_id)
            if existing is not None:
                raise ConflictingSession(
                    "an open session already exists for this sensor",
                    sensor_id=sensor_id,
                    session_id=existing.id,
                )
            return tx.add_session(
                name=name.strip(),
                sensor_id=sensor_id,
                patient_id=patient_id,
                start_time=start,
                notes=notes,
                created_at=now,
            )

        async with self.locks.hold(sensor_id):
            session = await self._transactions.run(work, "open_session")

        self.logger.info(
            "session_opened", session_id=session.id, sensor_id=sensor_id, patient_id=patient_id
        )
        return session

    async def close_session(self, session_id: int, end_time: datetime) -> MonitoringSession:
        """
        Close an open session.

        Raises:
            SessionNotFound: unknown session id.
            AlreadyClosed: the session already has an end time.
            InvalidEndTime: ``end_time`` precedes the session's start.
        """
        end = as_utc(end_time)
        current = await self.get_session(session_id)

        def work(tx: StoreTransaction) -> MonitoringSession:
            session = tx.get_session(session_id)
            if session is None:
                raise SessionNotFound("session does not exist", session_id=session_id)
            if not session.is_open:
                raise AlreadyClosed("session is already closed", session_id=session_id)
            if end < session.start_time:
                raise InvalidEndTime(
                    "end time precedes session start",
                    session_id=session_id,
                    start_time=session.start_time.isoformat(),
                    end_time=end.isoformat(),
                )
            return tx.close_session(session_id, end)

        # Wait for any in-flight ingestion on this sensor before closing
        async with self.locks.hold(current.sensor_id):
            session = await self._transactions.run(work, "close_session")

        self.logger.info("session_closed", session_id=session_id, sensor_id=session.sensor_id)
        return session

    def resolve_in(self, tx: StoreTransaction, sensor_id: str) -> MonitoringSession:
        """Resolve the open session inside an existing transaction."""
        session = tx.find_open_session(sensor_id)
        if session is None:
            raise NoOpenSession("no open session for sensor", sensor_id=sensor_id)
        return session

    async def resolve_open_session(self, sensor_id: str) -> MonitoringSession:
        """
        The sensor's current open session.

        Raises:
            NoOpenSession: the sensor has no open session.
        """
        return await self._transactions.run(
            lambda tx: self.resolve_in(tx, sensor_id), "resolve_open_session"
        )

    async def get_session(self, session_id: int) -> MonitoringSession:
        session = await self._transactions.run(
            lambda tx: tx.get_session(session_id), "get_session"
        )
        if session is None:
            raise SessionNotFound("session does not exist", session_id=session_id)
        return session

    async def list_sessions(
        self, sensor_id: str | None = None, patient_id: str | None = None
    ) -> list[MonitoringSession]:
        return await self._transactions.run(
            lambda tx: tx.list_sessions(sensor_id=sensor_id, patient_id=patient_id),
            "list_sessions",
        )

    async def delete_session(self, session_id: int) -> None:
        """Administrative removal; readings and alerts go with the session."""
        current = await self.get_session(session_id)

        async with self.locks.hold(current.sensor_id):
            deleted = await self._transactions.run(
                lambda tx: tx.delete_session(session_id), "delete_session"
            )

        if not deleted:
            raise SessionNotFound("session does not exist", session_id=session_id)
        self.logger.warning("session_deleted", session_id=session_id, sensor_id=current.sensor_id)
