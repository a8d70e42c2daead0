"""
SQLAlchemy implementation of the ``PressureStore`` protocol.

Each ``transaction()`` is one database transaction: commit on clean exit,
rollback on any exception. Transient driver failures inside the unit of work
surface as ``StorageError`` (nothing committed, safe to retry); a failure while
committing surfaces as ``FatalStorageError`` because the outcome is unknown.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import Select, create_engine, event, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from adapters.sql.tables import AlertRow, Base, ReadingRow, SessionRow
from pressure_monitor.config import DatabaseConfig
from pressure_monitor.domain.errors import (
    AlreadyClosed,
    ConflictingSession,
    FatalStorageError,
    SessionNotFound,
    StorageError,
)
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

TRANSIENT_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)


def _to_session(row: SessionRow) -> MonitoringSession:
    return MonitoringSession.model_validate(row, from_attributes=True)


def _to_reading(row: ReadingRow) -> Reading:
    return Reading.model_validate(row, from_attributes=True)


def _to_alert(row: AlertRow) -> Alert:
    return Alert.model_validate(row, from_attributes=True)


class SqlStoreTransaction:
    """Unit-of-work operations bound to one SQLAlchemy ``Session``."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # Sessions

    def add_session(
        self,
        *,
        name: str,
        sensor_id: str,
        patient_id: str | None,
        start_time: datetime,
        notes: str | None,
        created_at: datetime,
    ) -> MonitoringSession:
        row = SessionRow(
            name=name,
            sensor_id=sensor_id,
            patient_id=patient_id,
            start_time=start_time,
            notes=notes,
            created_at=created_at,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            # The partial unique index caught a concurrent open session
            raise ConflictingSession(
                "an open session already exists for this sensor", sensor_id=sensor_id
            ) from e
        return _to_session(row)

    def get_session(self, session_id: int) -> MonitoringSession | None:
        row = self.db.get(SessionRow, session_id)
        return _to_session(row) if row is not None else None

    def find_open_session(self, sensor_id: str) -> MonitoringSession | None:
        row = self.db.scalars(
            select(SessionRow).where(
                SessionRow.sensor_id == sensor_id, SessionRow.end_time.is_(None)
            )
        ).first()
        return _to_session(row) if row is not None else None

    def list_sessions(
        self, sensor_id: str | None = None, patient_id: str | None = None
    ) -> list[MonitoringSession]:
        query = select(SessionRow)
        if sensor_id is not None:
            query = query.where(SessionRow.sensor_id == sensor_id)
        if patient_id is not None:
            query = query.where(SessionRow.patient_id == patient_id)
        rows = self.db.scalars(query.order_by(SessionRow.start_time, SessionRow.id))
        return [_to_session(row) for row in rows]

    def close_session(self, session_id: int, end_time: datetime) -> MonitoringSession:
        result = self.db.execute(
            update(SessionRow)
            .where(SessionRow.id == session_id, SessionRow.end_time.is_(None))
            .values(end_time=end_time)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if self.db.get(SessionRow, session_id) is None:
                raise SessionNotFound("session does not exist", session_id=session_id)
            raise AlreadyClosed("session is already closed", session_id=session_id)
        row = self.db.get(SessionRow, session_id, populate_existing=True)
        if row is None:
            raise SessionNotFound("session does not exist", session_id=session_id)
        return _to_session(row)

    def delete_session(self, session_id: int) -> bool:
        row = self.db.get(SessionRow, session_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    # Readings

    def add_reading(
        self,
        *,
        session_id: int,
        sensor_id: str,
        timestamp: datetime,
        matrix: PressureMatrix,
        metrics: DerivedMetrics,
        created_at: datetime,
    ) -> Reading:
        row = ReadingRow(
            session_id=session_id,
            sensor_id=sensor_id,
            timestamp=timestamp,
            matrix=matrix,
            peak_pressure=metrics.peak_pressure,
            contact_area_percentage=metrics.contact_area_percentage,
            peak_pressure_index=metrics.peak_pressure_index,
            saturation_percentage=metrics.saturation_percentage,
            alert_status=AlertStatus.NONE.value,
            created_at=created_at,
        )
        self.db.add(row)
        self.db.flush()
        return _to_reading(row)

    def set_reading_status(self, reading_id: int, status: AlertStatus) -> None:
        self.db.execute(
            update(ReadingRow)
            .where(ReadingRow.id == reading_id)
            .values(alert_status=status.value)
            .execution_options(synchronize_session=False)
        )

    def count_readings(self, sensor_id: str) -> int:
        return self.db.scalar(
            select(func.count()).select_from(ReadingRow).where(ReadingRow.sensor_id == sensor_id)
        ) or 0

    def readings_in_range(
        self,
        *,
        start: datetime,
        end: datetime,
        sensor_id: str | None = None,
        session_id: int | None = None,
    ) -> list[Reading]:
        query = select(ReadingRow).where(ReadingRow.timestamp >= start, ReadingRow.timestamp < end)
        if sensor_id is not None:
            query = query.where(ReadingRow.sensor_id == sensor_id)
        if session_id is not None:
            query = query.where(ReadingRow.session_id == session_id)
        rows = self.db.scalars(query.order_by(ReadingRow.timestamp, ReadingRow.id))
        return [_to_reading(row) for row in rows]

    # Alerts

    def latest_unacknowledged_alert(self, session_id: int, alert_type: AlertType) -> Alert | None:
        row = self.db.scalars(
            select(AlertRow)
            .where(
                AlertRow.session_id == session_id,
                AlertRow.alert_type == alert_type.value,
                AlertRow.acknowledged.is_(False),
            )
            .order_by(AlertRow.timestamp.desc(), AlertRow.id.desc())
            .limit(1)
        ).first()
        return _to_alert(row) if row is not None else None

    def add_alert(
        self, *, session_id: int, reading_id: int, breach: Breach, timestamp: datetime
    ) -> Alert:
        row = AlertRow(
            session_id=session_id,
            reading_id=reading_id,
            alert_type=breach.alert_type.value,
            threshold_value=breach.threshold_value,
            actual_value=breach.actual_value,
            timestamp=timestamp,
            acknowledged=False,
        )
        self.db.add(row)
        self.db.flush()
        return _to_alert(row)

    def get_alert(self, alert_id: int) -> Alert | None:
        row = self.db.get(AlertRow, alert_id)
        return _to_alert(row) if row is not None else None

    def acknowledge_alert(self, alert_id: int, actor: str, at_time: datetime) -> bool:
        # Single conditional UPDATE: the alert is never partially acknowledged
        result = self.db.execute(
            update(AlertRow)
            .where(AlertRow.id == alert_id, AlertRow.acknowledged.is_(False))
            .values(acknowledged=True, acknowledged_by=actor, acknowledged_at=at_time)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def alerts_in_range(
        self,
        *,
        start: datetime,
        end: datetime,
        sensor_id: str | None = None,
        session_id: int | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]:
        query: Select[Any] = select(AlertRow).where(
            AlertRow.timestamp >= start, AlertRow.timestamp < end
        )
        if sensor_id is not None:
            query = query.join(SessionRow, AlertRow.session_id == SessionRow.id).where(
                SessionRow.sensor_id == sensor_id
            )
        if session_id is not None:
            query = query.where(AlertRow.session_id == session_id)
        if acknowledged is not None:
            query = query.where(AlertRow.acknowledged.is_(acknowledged))
        rows = self.db.scalars(query.order_by(AlertRow.timestamp, AlertRow.id))
        return [_to_alert(row) for row in rows]


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlPressureStore:
    """Relational store backed by any SQLAlchemy-supported database."""

    def __init__(self, config: DatabaseConfig | None = None, engine: Engine | None = None) -> None:
        self.config = config or DatabaseConfig()
        self.engine = engine or self._create_engine(self.config)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        self.logger = logger.bind(component="sql_store", dialect=self.engine.dialect.name)

    @staticmethod
    def _create_engine(config: DatabaseConfig) -> Engine:
        if config.url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            # In-memory databases live on one connection; share it across sessions
            if config.url in {"sqlite://", "sqlite:///:memory:"}:
                kwargs["poolclass"] = StaticPool
            engine = create_engine(config.url, echo=config.echo, **kwargs)
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine

        return create_engine(
            config.url, echo=config.echo, pool_pre_ping=True, pool_size=10, max_overflow=20
        )

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        self.logger.info("schema_created")

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[SqlStoreTransaction]:
        db = self._session_factory()
        try:
            try:
                yield SqlStoreTransaction(db)
                db.flush()
            except TRANSIENT_ERRORS as e:
                db.rollback()
                raise StorageError("transient storage failure", error=str(e)) from e
            except SQLAlchemyError as e:
                db.rollback()
                raise FatalStorageError("storage rejected the operation", error=str(e)) from e
            except BaseException:
                db.rollback()
                raise

            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise FatalStorageError("commit failed; outcome unknown", error=str(e)) from e
        finally:
            db.close()
